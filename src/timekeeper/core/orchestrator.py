"""Main daemon orchestrator coordinating all tracking components."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Any

from timekeeper.core.config import Config, get_config
from timekeeper.storage.activity_store import ActivityStore
from timekeeper.storage.database import Database, init_database
from timekeeper.sync.device import DeviceIdentity
from timekeeper.sync.sync_engine import SessionFactory, SyncEngine, SyncResult, SyncTrigger
from timekeeper.trackers.activity import Activity
from timekeeper.trackers.buffer import ActivityBuffer
from timekeeper.trackers.categorizer import DEFAULT_RULES, Categorizer, CategoryRule
from timekeeper.trackers.idle_detector import IdleSource, select_idle_source
from timekeeper.trackers.segmenter import ActivitySegmenter, TrackerObserver, TrackerStatus
from timekeeper.trackers.window_sampler import WindowSampler, get_window_sampler

logger = logging.getLogger(__name__)

PID_FILE_NAME = "daemon.pid"


def build_categorizer(config: Config) -> Categorizer:
    """Categorizer with the configured custom rules ahead of the defaults."""
    custom = [
        CategoryRule(
            category_id=rule.category_id,
            type=rule.type,
            pattern=rule.pattern,
            match_type=rule.match_type,
        )
        for rule in config.categorization.rules
    ]
    return Categorizer(rules=custom + list(DEFAULT_RULES))


class Orchestrator(TrackerObserver):
    """Main daemon coordinator for Timekeeper.

    Owns the segmenter, buffer, store and sync engine, drives the poll loop
    and routes tracker events: finalized activities go to the buffer, idle
    onset triggers an idle sync.
    """

    def __init__(
        self,
        config: Config | None = None,
        sampler: WindowSampler | None = None,
        idle_source: IdleSource | None = None,
        session_factory: SessionFactory | None = None,
        handle_signals: bool = True,
    ):
        self.config = config or get_config()
        self._sampler = sampler
        self._idle_source = idle_source
        self._session_factory = session_factory
        self._handle_signals = handle_signals

        self._started = False
        self._running = False

        # Core components (initialized in start())
        self.db: Database | None = None
        self.store: ActivityStore | None = None
        self.segmenter: ActivitySegmenter | None = None
        self.buffer: ActivityBuffer | None = None
        self.sync_engine: SyncEngine | None = None

        self._poll_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._signals_installed = False
        self._stop_task: asyncio.Task | None = None
        self._stopping = False

        # PID file for daemon management
        self._pid_file = self.config.data_dir / PID_FILE_NAME

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the daemon and all tracking components."""
        if self._started:
            logger.warning("Orchestrator already running")
            return

        logger.info("Starting Timekeeper daemon...")
        self._started = True

        try:
            # Handlers go in before the PID file makes this process signalable
            if self._handle_signals:
                self._setup_signal_handlers()

            self.config.ensure_directories()
            self._write_pid_file()

            self.db = await init_database(self.config.db_path)
            self.store = ActivityStore(self.db)
            await self.store.prune_activities(self.config.storage.retention_days)

            device_id = await self.store.get_or_create_device_id()
            device = DeviceIdentity.for_this_machine(device_id)

            sampler = self._sampler or get_window_sampler()
            idle_source = self._idle_source or select_idle_source()

            self.buffer = ActivityBuffer(
                store=self.store,
                flush_interval=self.config.tracking.buffer_flush_seconds,
            )

            self.segmenter = ActivitySegmenter(
                config=self.config.tracking,
                sampler=sampler,
                idle_source=idle_source,
                categorizer=build_categorizer(self.config),
                observers=[self],
            )

            self.sync_engine = SyncEngine(
                config=self.config.sync,
                store=self.store,
                device=device,
                session_factory=self._session_factory,
                before_push=self.buffer.flush,
            )

            await self.buffer.start()
            self.segmenter.start()

            self._running = True

            self._poll_task = asyncio.create_task(self._poll_loop())
            await self.sync_engine.start()

            logger.info(f"Timekeeper daemon started (device: {device_id[:8]}...)")

        except Exception as e:
            logger.error(f"Failed to start daemon: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the daemon, finalize the open activity and attempt a close sync."""
        if self._stopping or not self._started:
            return

        logger.info("Stopping Timekeeper daemon...")
        self._stopping = True
        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        # Finalizing the open activity routes it into the buffer
        if self.segmenter:
            self.segmenter.stop()

        if self.buffer:
            try:
                await self.buffer.stop()
            except Exception as e:
                logger.error(f"Final buffer flush failed: {e}")

        if self.sync_engine:
            await self.sync_engine.stop()
            result = await self.sync_engine.sync_on_close()
            if result is not None and not result.success and not result.not_configured:
                logger.warning(f"Sync on close failed: {result.error}")

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        if self.db:
            await self.db.close()
            self.db = None

        self._remove_signal_handlers()
        self._remove_pid_file()
        self._stopping = False
        self._started = False

        logger.info("Timekeeper daemon stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                self.segmenter.tick()
            except Exception as e:
                logger.error(f"Tracker tick failed: {e}")
            try:
                await asyncio.sleep(self.config.tracking.poll_interval_ms / 1000)
            except asyncio.CancelledError:
                break

    # Tracker events

    def on_activity(self, activity: Activity) -> None:
        if self.buffer:
            self.buffer.add(activity)

    def on_idle_start(self) -> None:
        logger.debug("User went idle")
        if self.sync_engine and self._running:
            self._spawn(self.sync_engine.on_idle_start())

    def on_idle_end(self, idle_seconds: float) -> None:
        logger.debug(f"User returned after {idle_seconds:.0f}s idle")

    def on_status_change(self, status: TrackerStatus) -> None:
        logger.info(f"Tracker {status.value}")

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # Control

    async def sync_now(self) -> SyncResult:
        """Manual push."""
        if self.sync_engine is None:
            return SyncResult(success=False, error="Daemon not running")
        return await self.sync_engine.push(SyncTrigger.MANUAL)

    def pause(self) -> None:
        if self.segmenter:
            self.segmenter.pause()

    def resume(self) -> None:
        if self.segmenter:
            self.segmenter.resume()

    def apply_config(self, partial: dict[str, Any]) -> Config:
        """Merge partial settings and push them to running components.

        Raises ``pydantic.ValidationError`` and leaves the running
        configuration untouched when the result is invalid.
        """
        new_config = self.config.merge(partial)
        self.config = new_config

        if self.segmenter:
            self.segmenter.apply_settings(new_config.tracking)
        if self.sync_engine:
            self.sync_engine.update_config(new_config.sync)
        return new_config

    # Signals and PID file

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)
        loop.add_signal_handler(signal.SIGUSR1, self._handle_sync_request)
        self._signals_installed = True

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT, signal.SIGUSR1):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        if self._stop_task is None:
            self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    def _handle_sync_request(self) -> None:
        """SIGUSR1 from `timekeeper sync`: push through this process's engine."""
        if not self._running or self._stopping:
            logger.debug("Ignoring sync request, daemon not running")
            return
        logger.info("Sync requested by signal")
        self._spawn(self._requested_sync())

    async def _requested_sync(self) -> None:
        result = await self.sync_now()
        if result.success:
            logger.info(f"Requested sync pushed {result.synced} activities")
        elif result.skipped:
            logger.info("Requested sync folded into the push already in flight")
        else:
            logger.warning(f"Requested sync failed: {result.error}")

    def _write_pid_file(self) -> None:
        self._pid_file.parent.mkdir(parents=True, exist_ok=True)
        self._pid_file.write_text(str(os.getpid()))
        logger.debug(f"PID file written: {self._pid_file}")

    def _remove_pid_file(self) -> None:
        if self._pid_file.exists():
            self._pid_file.unlink()
            logger.debug("PID file removed")


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until stopped."""
    orchestrator = Orchestrator(config)

    try:
        await orchestrator.start()
        while orchestrator.is_running:
            await asyncio.sleep(1)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        await orchestrator.stop()
