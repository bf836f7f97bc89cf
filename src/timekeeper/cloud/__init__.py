"""Cloud service: device sync tokens and the desktop-sync receiver."""

from timekeeper.cloud.app import create_app
from timekeeper.cloud.config import CloudSettings

__all__ = ["CloudSettings", "create_app"]
