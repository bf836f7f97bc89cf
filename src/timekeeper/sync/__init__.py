"""Desktop-to-cloud sync."""

from timekeeper.sync.device import DeviceIdentity, get_device_name
from timekeeper.sync.sync_engine import SyncEngine, SyncResult, SyncTrigger

__all__ = ["DeviceIdentity", "SyncEngine", "SyncResult", "SyncTrigger", "get_device_name"]
