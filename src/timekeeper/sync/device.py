"""Device identification sent with every sync push."""

from __future__ import annotations

import platform
import socket
import sys
from dataclasses import dataclass


def get_device_name() -> str:
    """Get the device/laptop name for identification."""
    try:
        hostname = socket.gethostname()

        # On macOS, remove .local suffix
        if hostname.endswith(".local"):
            hostname = hostname[:-6]

        if not hostname or hostname in ["localhost", "unknown"]:
            hostname = platform.node()
            if hostname.endswith(".local"):
                hostname = hostname[:-6]

        return hostname or f"{sys.platform}-{platform.machine()}"
    except OSError:
        return f"{sys.platform}-{platform.machine()}"


@dataclass(frozen=True)
class DeviceIdentity:
    """Who is pushing: a stable install id plus human-readable metadata."""

    device_id: str
    device_name: str
    platform: str

    @classmethod
    def for_this_machine(cls, device_id: str) -> DeviceIdentity:
        return cls(device_id=device_id, device_name=get_device_name(), platform=sys.platform)
