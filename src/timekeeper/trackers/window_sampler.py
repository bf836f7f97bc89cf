"""Foreground window sampling.

The segmenter treats a sampler as an opaque polling function: ``sample()``
returns the focused window or None when nothing is focused (lock screen,
transient states). Failures raise ``SamplerError``.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class SamplerError(Exception):
    """The platform could not be queried for the focused window."""


@dataclass(frozen=True)
class WindowInfo:
    """The focused window at sampling time."""

    app_name: str
    title: str
    process_path: str = ""


class WindowSampler(Protocol):
    def sample(self) -> WindowInfo | None: ...


class MacWindowSampler:
    """Samples the frontmost application and its window title on macOS.

    Uses NSWorkspace for the application and the CGWindowList for the
    title, so no Accessibility permission is required.
    """

    def sample(self) -> WindowInfo | None:
        try:
            from AppKit import NSWorkspace
        except ImportError as e:
            raise SamplerError("AppKit not available") from e

        try:
            active = NSWorkspace.sharedWorkspace().frontmostApplication()
        except Exception as e:
            raise SamplerError(f"Error getting frontmost application: {e}") from e

        if active is None:
            return None

        app_name = active.localizedName() or "Unknown"
        pid = active.processIdentifier()
        title = self.get_window_title(pid) or "Untitled"

        process_path = ""
        try:
            url = active.executableURL() or active.bundleURL()
            if url is not None:
                process_path = url.path() or ""
        except Exception as e:
            logger.debug(f"Error getting process path for PID {pid}: {e}")

        return WindowInfo(app_name=app_name, title=title, process_path=process_path)

    def get_window_title(self, pid: int) -> str | None:
        """Title of the first on-screen window owned by ``pid``."""
        try:
            from Quartz import (
                CGWindowListCopyWindowInfo,
                kCGNullWindowID,
                kCGWindowListOptionOnScreenOnly,
            )

            window_list = CGWindowListCopyWindowInfo(
                kCGWindowListOptionOnScreenOnly,
                kCGNullWindowID,
            )

            if not window_list:
                return None

            for window in window_list:
                if window.get("kCGWindowOwnerPID") == pid:
                    name = window.get("kCGWindowName")
                    if name:
                        return name

            return None

        except Exception as e:
            logger.debug(f"Error getting window title for PID {pid}: {e}")
            return None


class NullWindowSampler:
    """Sampler for platforms without a window API. Never reports a window."""

    def sample(self) -> WindowInfo | None:
        return None


def get_window_sampler() -> WindowSampler:
    """Return the sampler for the running platform."""
    if sys.platform == "darwin":
        return MacWindowSampler()

    logger.warning(f"No window sampler for platform {sys.platform}; tracking will record nothing")
    return NullWindowSampler()
