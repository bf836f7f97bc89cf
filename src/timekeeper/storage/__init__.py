"""Storage layer for the activity log and sync queue."""

from timekeeper.storage.activity_store import ActivityStore, QueueSnapshot
from timekeeper.storage.database import Database, init_database

__all__ = ["ActivityStore", "Database", "QueueSnapshot", "init_database"]
