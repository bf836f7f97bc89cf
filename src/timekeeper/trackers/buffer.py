"""Activity buffer bridging the synchronous tracker and the async store."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

from timekeeper.trackers.activity import Activity

if TYPE_CHECKING:
    from timekeeper.storage.activity_store import ActivityStore

logger = logging.getLogger(__name__)


class ActivityBuffer:
    """Buffer for batching finalized activities before database writes.

    Activities are collected in memory and flushed to the store
    periodically, when the buffer reaches a certain size, before every
    sync push, and on shutdown.
    """

    DEFAULT_FLUSH_INTERVAL = 30  # seconds
    DEFAULT_MAX_SIZE = 50  # activities

    def __init__(
        self,
        store: ActivityStore | None = None,
        flush_interval: int = DEFAULT_FLUSH_INTERVAL,
        max_size: int = DEFAULT_MAX_SIZE,
    ):
        self._store = store
        self._flush_interval = flush_interval
        self._max_size = max_size

        self._activities: list[Activity] = []
        self._lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._flush_task: asyncio.Task | None = None
        self._pending_flushes: set[asyncio.Task] = set()
        self._running = False

    def add(self, activity: Activity) -> None:
        """Add a finalized activity to the buffer.

        Thread-safe. Schedules an immediate flush if the buffer is full and
        an event loop is running.
        """
        with self._lock:
            self._activities.append(activity)
            count = len(self._activities)

        logger.debug(f"Buffered activity: {activity.application_name} ({count} in buffer)")

        if count >= self._max_size and self._running:
            logger.debug("Buffer full, triggering flush")
            task = asyncio.get_running_loop().create_task(self.flush())
            self._pending_flushes.add(task)
            task.add_done_callback(self._on_flush_done)

    def _on_flush_done(self, task: asyncio.Task) -> None:
        self._pending_flushes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                f"Background flush failed, {self.pending_count} activities kept in buffer: {error}"
            )

    async def flush(self) -> int:
        """Write buffered activities to the store.

        Returns the number of activities flushed. On failure the activities
        are put back and the error is re-raised.
        """
        if self._store is None:
            logger.warning("No store configured, cannot flush")
            return 0

        async with self._flush_lock:
            with self._lock:
                if not self._activities:
                    return 0
                activities = self._activities.copy()
                self._activities.clear()

            try:
                await self._store.append_activities(activities)
            except Exception as e:
                with self._lock:
                    self._activities = activities + self._activities
                logger.error(f"Failed to flush activities: {e}")
                raise

        logger.debug(f"Flushed {len(activities)} activities to store")
        return len(activities)

    async def start(self) -> None:
        """Start the periodic flush task."""
        if self._running:
            return

        self._running = True
        self._flush_task = asyncio.create_task(self._periodic_flush())
        logger.info(f"Buffer started (flush every {self._flush_interval}s)")

    async def stop(self) -> None:
        """Stop the periodic flush task and flush remaining activities."""
        if not self._running:
            return

        self._running = False

        if self._flush_task:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        if self._pending_flushes:
            await asyncio.gather(*self._pending_flushes, return_exceptions=True)

        await self.flush()
        logger.info("Buffer stopped")

    async def _periodic_flush(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._flush_interval)
                if self._running:
                    await self.flush()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic flush: {e}")

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._activities)

    @property
    def is_running(self) -> bool:
        return self._running
