"""Sync engine pushing queued activities to the desktop-sync endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import aiohttp

from timekeeper.core.config import SyncConfig
from timekeeper.storage.activity_store import ActivityStore
from timekeeper.sync.device import DeviceIdentity

logger = logging.getLogger(__name__)

SYNC_PATH = "/functions/v1/desktop-sync"

SessionFactory = Callable[[aiohttp.ClientTimeout], aiohttp.ClientSession]
SyncListener = Callable[["SyncResult"], None]


class SyncTrigger(str, Enum):
    """What asked for a push."""

    MANUAL = "manual"
    PERIODIC = "periodic"
    IDLE = "idle"
    STARTUP = "startup"
    CLOSE = "close"


@dataclass
class SyncResult:
    """Outcome of one push attempt. Push never raises; it returns one of these."""

    success: bool
    synced: int = 0
    trigger: SyncTrigger = SyncTrigger.MANUAL
    error: str | None = None
    status_code: int | None = None
    not_configured: bool = False
    skipped: bool = False
    rate_limited: bool = False
    retry_after: float | None = None
    auth_error: bool = False
    server_response: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["trigger"] = self.trigger.value
        return data


def _default_session_factory(timeout: aiohttp.ClientTimeout) -> aiohttp.ClientSession:
    return aiohttp.ClientSession(timeout=timeout)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class SyncEngine:
    """Delivers the local sync queue to the backend.

    Every trigger (timer, idle, startup, close, manual) goes through
    ``push``. Only one push runs at a time; a trigger that arrives while a
    push is in flight is dropped, since the next push picks up everything
    queued in the meantime.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: ActivityStore,
        device: DeviceIdentity,
        session_factory: SessionFactory | None = None,
        before_push: Callable[[], Awaitable[Any]] | None = None,
    ):
        self.config = config
        self._store = store
        self._device = device
        self._session_factory = session_factory or _default_session_factory
        self._before_push = before_push

        self._in_flight = False
        self._auth_suspended = False
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._periodic_task: asyncio.Task | None = None
        self._listeners: list[SyncListener] = []
        self._last_result: SyncResult | None = None

    # Properties

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def auth_suspended(self) -> bool:
        """True after the backend rejected the device token."""
        return self._auth_suspended

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    @property
    def endpoint(self) -> str:
        return f"{self.config.url.strip().rstrip('/')}{SYNC_PATH}"

    def add_listener(self, listener: SyncListener) -> None:
        """Register a callback receiving every ``SyncResult``."""
        self._listeners.append(listener)

    def update_config(self, config: SyncConfig) -> None:
        """Apply new sync settings; reschedules the timer when running."""
        credentials_changed = (config.url, config.token, config.gateway_key) != (
            self.config.url,
            self.config.token,
            self.config.gateway_key,
        )
        self.config = config
        if credentials_changed and self._auth_suspended:
            logger.info("Sync credentials changed, resuming automatic sync")
            self._auth_suspended = False

        if self._running:
            self._schedule_periodic()

    # Push

    async def push(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncResult:
        """Push the whole queue in one request."""
        if self._in_flight:
            logger.debug(f"Sync already in progress, ignoring {trigger.value} trigger")
            return SyncResult(
                success=False, trigger=trigger, skipped=True, error="Sync already in progress"
            )

        self._in_flight = True
        try:
            result = await self._push(trigger)
        except Exception as e:
            logger.error(f"Unexpected sync error: {e}")
            result = SyncResult(success=False, trigger=trigger, error=str(e))
        finally:
            self._in_flight = False

        if result.auth_error:
            self._auth_suspended = True
        elif result.success and trigger is SyncTrigger.MANUAL:
            self._auth_suspended = False

        self._last_result = result
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Sync listener failed: {e}")
        return result

    async def _push(self, trigger: SyncTrigger) -> SyncResult:
        if not self.is_configured:
            logger.info("Sync not configured (missing url or token)")
            return SyncResult(
                success=False, trigger=trigger, not_configured=True, error="Sync not configured"
            )
        if not self.config.gateway_key.strip():
            logger.warning("Sync gateway key missing")
            return SyncResult(
                success=False, trigger=trigger, not_configured=True, error="Gateway key missing"
            )

        if self._before_push is not None:
            try:
                await self._before_push()
            except Exception as e:
                logger.warning(f"Pre-sync flush failed: {e}")

        snapshot = await self._store.get_sync_queue()
        if not snapshot.activities:
            if snapshot.max_id:
                await self._store.clear_sync_queue(snapshot.max_id)
            return SyncResult(success=True, trigger=trigger, synced=0)

        payload = {
            "activities": [a.to_sync_dict() for a in snapshot.activities],
            "deviceId": self._device.device_id,
            "deviceName": self._device.device_name,
            "platform": self._device.platform,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "syncType": "push",
        }

        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        try:
            async with self._session_factory(timeout) as session:
                async with session.post(
                    self.endpoint, json=payload, headers=self._headers()
                ) as resp:
                    status = resp.status
                    retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
                    text = await resp.text()
                    body = self._parse_body(resp, text)
        except asyncio.TimeoutError:
            logger.error(f"Sync timed out after {self.config.request_timeout_seconds}s")
            return SyncResult(success=False, trigger=trigger, error="Sync request timed out")
        except aiohttp.ClientError as e:
            logger.error(f"Network error during sync: {e}")
            return SyncResult(success=False, trigger=trigger, error=f"Network error: {e}")

        if 200 <= status < 300:
            await self._store.clear_sync_queue(snapshot.max_id)
            await self._store.set_last_sync_time(datetime.now(timezone.utc))
            logger.info(f"Synced {len(snapshot)} activities ({trigger.value})")
            return SyncResult(
                success=True,
                trigger=trigger,
                synced=len(snapshot),
                status_code=status,
                server_response=body,
            )

        message = self._error_message(body, text, status)

        if status == 429:
            logger.warning(f"Sync rate limited (retry after {retry_after}s)")
            return SyncResult(
                success=False,
                trigger=trigger,
                status_code=status,
                error=message,
                rate_limited=True,
                retry_after=retry_after,
            )

        if status in (401, 403):
            logger.error(f"Sync rejected by backend: {message}")
            return SyncResult(
                success=False, trigger=trigger, status_code=status, error=message, auth_error=True
            )

        logger.error(f"desktop-sync failed: HTTP {status} - {message}")
        return SyncResult(success=False, trigger=trigger, status_code=status, error=message)

    def _headers(self) -> dict[str, str]:
        gateway_key = self.config.gateway_key.strip()
        return {
            "Content-Type": "application/json",
            "apikey": gateway_key,
            "Authorization": f"Bearer {gateway_key}",
            "x-sync-token": self.config.token.strip(),
            "x-device-id": self._device.device_id,
        }

    @staticmethod
    def _parse_body(resp: aiohttp.ClientResponse, text: str) -> dict[str, Any] | None:
        if not text:
            return None
        try:
            data = json.loads(text)
        except ValueError:
            logger.debug(f"Non-JSON sync response ({resp.content_type})")
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _error_message(body: dict[str, Any] | None, text: str, status: int) -> str:
        if body:
            message = body.get("error") or body.get("message") or body.get("detail")
            if message:
                return str(message)
        return text.strip() or f"HTTP {status}"

    # Triggers

    async def start(self) -> None:
        """Start the periodic timer and the delayed startup sync."""
        if self._running:
            return
        self._running = True

        self._schedule_periodic()

        if self.config.settings.sync_on_startup:
            self._tasks.append(asyncio.create_task(self._startup_sync()))

    async def stop(self) -> None:
        """Stop timers. Does not perform a close-time sync."""
        self._running = False
        if self._periodic_task is not None:
            self._tasks.append(self._periodic_task)
            self._periodic_task = None
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("Sync engine stopped")

    async def on_idle_start(self) -> SyncResult | None:
        if not self.config.settings.sync_on_idle:
            return None
        return await self._automatic_push(SyncTrigger.IDLE)

    async def sync_on_close(self) -> SyncResult | None:
        """Best-effort push before exit, bounded by ``close_timeout_seconds``."""
        if not self.config.settings.sync_on_close:
            return None
        try:
            return await asyncio.wait_for(
                self._automatic_push(SyncTrigger.CLOSE),
                timeout=self.config.close_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Sync on close gave up after {self.config.close_timeout_seconds}s"
            )
            return SyncResult(
                success=False, trigger=SyncTrigger.CLOSE, error="Sync on close timed out"
            )

    async def _automatic_push(self, trigger: SyncTrigger) -> SyncResult:
        if self._auth_suspended:
            logger.debug(f"Skipping {trigger.value} sync, device token was rejected")
            return SyncResult(
                success=False,
                trigger=trigger,
                skipped=True,
                auth_error=True,
                error="Automatic sync paused until the sync token is replaced",
            )
        return await self.push(trigger)

    def _schedule_periodic(self) -> None:
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None

        settings = self.config.settings
        if not settings.auto_sync_enabled:
            logger.info("Auto-sync disabled")
            return
        if not self.is_configured:
            logger.info("Auto-sync skipped, sync not configured")
            return
        self._periodic_task = asyncio.create_task(
            self._sync_loop(settings.sync_interval_minutes * 60)
        )
        logger.info(f"Auto-sync every {settings.sync_interval_minutes} minutes")

    async def _sync_loop(self, interval: float) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
                if self._running:
                    await self._automatic_push(SyncTrigger.PERIODIC)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Sync loop error: {e}")

    async def _startup_sync(self) -> None:
        try:
            # Give the network a moment after login/boot
            await asyncio.sleep(self.config.startup_delay_seconds)
            await self._automatic_push(SyncTrigger.STARTUP)
        except asyncio.CancelledError:
            pass

    @property
    def status(self) -> dict[str, Any]:
        """Get sync status."""
        return {
            "configured": self.is_configured,
            "endpoint": self.endpoint if self.is_configured else None,
            "device_id": self._device.device_id,
            "in_flight": self._in_flight,
            "auth_suspended": self._auth_suspended,
            "auto_sync_enabled": self.config.settings.auto_sync_enabled,
            "interval_minutes": self.config.settings.sync_interval_minutes,
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }
