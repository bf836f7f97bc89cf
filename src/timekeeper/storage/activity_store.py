"""Local activity log and sync queue."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from timekeeper.storage.database import Database
from timekeeper.trackers.activity import Activity

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"
LAST_SYNC_KEY = "last_sync_time"


@dataclass
class QueueSnapshot:
    """The sync queue as it was when a push started."""

    activities: list[Activity] = field(default_factory=list)
    max_id: int = 0

    def __len__(self) -> int:
        return len(self.activities)


class ActivityStore:
    """Persists finalized activities and the pending-upload queue.

    The log and the queue are independent: the log is pruned by retention
    age, the queue only by successful pushes.
    """

    def __init__(self, db: Database):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db

    async def append_activity(self, activity: Activity) -> None:
        await self.append_activities([activity])

    async def append_activities(self, activities: list[Activity]) -> None:
        """Append to the log and enqueue for sync in one transaction."""
        if not activities:
            return

        async with self._db.transaction() as conn:
            for activity in activities:
                await conn.execute(
                    """INSERT OR IGNORE INTO activities (
                        id, application_name, window_title, process_path,
                        start_time, end_time, duration, project_id, task_id,
                        is_idle, category_id, category_auto_assigned,
                        category_confidence, source
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        activity.id,
                        activity.application_name,
                        activity.window_title,
                        activity.process_path,
                        activity.start_time.isoformat(),
                        activity.end_time.isoformat() if activity.end_time else None,
                        activity.duration,
                        activity.project_id,
                        activity.task_id,
                        activity.is_idle,
                        activity.category_id,
                        activity.category_auto_assigned,
                        activity.category_confidence,
                        activity.source,
                    ),
                )
                await conn.execute(
                    "INSERT INTO sync_queue (activity_id, payload) VALUES (?, ?)",
                    (activity.id, json.dumps(activity.to_dict())),
                )

        logger.debug(f"Stored {len(activities)} activities")

    async def recent_activities(self, limit: int = 100) -> list[Activity]:
        """Most recent activities first."""
        rows = await self._db.fetch_all(
            "SELECT * FROM activities ORDER BY start_time DESC LIMIT ?",
            (limit,),
        )
        return [_row_to_activity(row) for row in rows]

    async def activity_count(self) -> int:
        row = await self._db.fetch_one("SELECT COUNT(*) AS n FROM activities")
        return row["n"] if row else 0

    async def prune_activities(self, retention_days: int, now: datetime | None = None) -> int:
        """Drop log entries that ended before the retention window."""
        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(days=retention_days)).isoformat()
        deleted = await self._db.execute(
            "DELETE FROM activities WHERE end_time < ?",
            (cutoff,),
        )
        if deleted:
            logger.info(f"Pruned {deleted} activities older than {retention_days} days")
        return deleted

    # Sync queue

    async def get_sync_queue(self) -> QueueSnapshot:
        """Snapshot the queue.

        Entries that cannot be decoded are moved to ``sync_quarantine`` so a
        later ``clear_sync_queue(max_id)`` never drops them unsent.
        """
        rows = await self._db.fetch_all("SELECT id, payload FROM sync_queue ORDER BY id")
        if not rows:
            return QueueSnapshot()

        activities = []
        unreadable = []
        for row in rows:
            try:
                activities.append(Activity.from_dict(json.loads(row["payload"])))
            except (ValueError, KeyError, TypeError) as e:
                unreadable.append((row["id"], row["payload"], str(e)))

        if unreadable:
            async with self._db.transaction() as conn:
                for entry_id, payload, error in unreadable:
                    await conn.execute(
                        "INSERT OR REPLACE INTO sync_quarantine (id, payload, error) VALUES (?, ?, ?)",
                        (entry_id, payload, error),
                    )
                    await conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry_id,))
            logger.error(
                f"Moved {len(unreadable)} unreadable queue entries to sync_quarantine "
                f"(ids {', '.join(str(u[0]) for u in unreadable)})"
            )

        return QueueSnapshot(activities=activities, max_id=rows[-1]["id"])

    async def clear_sync_queue(self, up_to_id: int | None = None) -> int:
        """Remove queued entries up to and including ``up_to_id`` (all if None)."""
        if up_to_id is None:
            return await self._db.execute("DELETE FROM sync_queue")
        return await self._db.execute("DELETE FROM sync_queue WHERE id <= ?", (up_to_id,))

    async def queue_size(self) -> int:
        row = await self._db.fetch_one("SELECT COUNT(*) AS n FROM sync_queue")
        return row["n"] if row else 0

    async def quarantine_size(self) -> int:
        row = await self._db.fetch_one("SELECT COUNT(*) AS n FROM sync_quarantine")
        return row["n"] if row else 0

    # Device state

    async def get_or_create_device_id(self) -> str:
        """Stable per-install device id."""
        device_id = await self._db.get_state(DEVICE_ID_KEY)
        if not device_id:
            device_id = str(uuid.uuid4())
            await self._db.set_state(DEVICE_ID_KEY, device_id)
            logger.info(f"Generated device id {device_id}")
        return device_id

    async def get_last_sync_time(self) -> datetime | None:
        value = await self._db.get_state(LAST_SYNC_KEY)
        return datetime.fromisoformat(value) if value else None

    async def set_last_sync_time(self, when: datetime) -> None:
        await self._db.set_state(LAST_SYNC_KEY, when.isoformat())


def _row_to_activity(row: dict) -> Activity:
    return Activity(
        id=row["id"],
        application_name=row["application_name"],
        window_title=row["window_title"] or "",
        process_path=row["process_path"] or "",
        start_time=datetime.fromisoformat(row["start_time"]),
        end_time=datetime.fromisoformat(row["end_time"]) if row["end_time"] else None,
        duration=row["duration"],
        project_id=row["project_id"],
        task_id=row["task_id"],
        is_idle=bool(row["is_idle"]),
        category_id=row["category_id"] or "uncategorized",
        category_auto_assigned=bool(row["category_auto_assigned"]),
        category_confidence=row["category_confidence"] or 50,
        source=row["source"] or "desktop",
    )
