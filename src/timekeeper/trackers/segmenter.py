"""Activity segmentation state machine.

Turns a noisy once-per-second window poll into a clean sequence of
non-overlapping ``Activity`` records. The host calls ``tick()`` on a fixed
interval; each tick fully completes, including observer notifications,
before the next one starts.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum

from timekeeper.core.config import TrackerConfig
from timekeeper.trackers.activity import Activity
from timekeeper.trackers.categorizer import (
    CONFIDENCE_DEFAULT,
    UNCATEGORIZED,
    Categorization,
    Categorizer,
)
from timekeeper.trackers.idle_detector import IdleSource
from timekeeper.trackers.window_sampler import WindowSampler

logger = logging.getLogger(__name__)

_COUNTER_RE = re.compile(r"\(\d+\)")
_CLOCK_RE = re.compile(r"\d{1,2}:\d{2}(:\d{2})?")
_SPACE_RE = re.compile(r"\s+")


def normalize_title(title: str | None) -> str:
    """Strip unread counters and clocks so cosmetic title churn is ignored.

    >>> normalize_title("Inbox (12) - Mail")
    'inbox - mail'
    """
    text = _COUNTER_RE.sub("", title or "")
    text = _CLOCK_RE.sub("", text)
    return _SPACE_RE.sub(" ", text).strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackerStatus(str, Enum):
    """Lifecycle state of the tracker."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class TrackerObserver:
    """Receives finalized activities and lifecycle events.

    Subclass and override what you need; every hook defaults to a no-op.
    """

    def on_activity(self, activity: Activity) -> None:
        pass

    def on_idle_start(self) -> None:
        pass

    def on_idle_end(self, idle_seconds: float) -> None:
        pass

    def on_status_change(self, status: TrackerStatus) -> None:
        pass


class ActivitySegmenter:
    """Segments window samples into activities.

    States are implicit: no open activity, an open normal activity, or an
    open idle activity (``is_idle``). At most one activity is open.
    """

    def __init__(
        self,
        config: TrackerConfig,
        sampler: WindowSampler,
        idle_source: IdleSource,
        categorizer: Categorizer | None = None,
        clock: Callable[[], datetime] | None = None,
        observers: list[TrackerObserver] | None = None,
    ):
        self._config = config
        self._sampler = sampler
        self._idle_source = idle_source
        self._categorizer = categorizer or Categorizer()
        self._clock = clock or _utcnow
        self._observers: list[TrackerObserver] = list(observers or [])

        self._status = TrackerStatus.STOPPED
        self._is_idle = False
        self._current: Activity | None = None
        self._last_switch_time: datetime | None = None
        # End of the last emitted activity; nothing new may start before it
        self._last_emitted_end: datetime | None = None

    # Properties

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def status(self) -> TrackerStatus:
        return self._status

    @property
    def is_tracking(self) -> bool:
        return self._status is not TrackerStatus.STOPPED

    @property
    def is_paused(self) -> bool:
        return self._status is TrackerStatus.PAUSED

    @property
    def is_idle(self) -> bool:
        return self._is_idle

    @property
    def current_activity(self) -> Activity | None:
        return self._current

    @property
    def categorizer(self) -> Categorizer:
        return self._categorizer

    @property
    def idle_source(self) -> IdleSource:
        return self._idle_source

    def add_observer(self, observer: TrackerObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: TrackerObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def apply_settings(self, config: TrackerConfig) -> None:
        """Swap in new tracker settings. Takes effect on the next tick."""
        self._config = config
        logger.info(
            f"Tracker settings updated (idle={config.idle_threshold_seconds}s, "
            f"min={config.min_activity_duration_seconds}s, "
            f"debounce={config.switch_debounce_seconds}s)"
        )

    # Lifecycle

    def start(self) -> None:
        if self._status is not TrackerStatus.STOPPED:
            return
        self._is_idle = False
        self._set_status(TrackerStatus.RUNNING)

    def stop(self, now: datetime | None = None) -> None:
        """Stop tracking, finalizing any open activity first."""
        if self._current is not None:
            self._finalize(now or self._clock())
        self._is_idle = False
        if self._status is not TrackerStatus.STOPPED:
            self._set_status(TrackerStatus.STOPPED)

    def pause(self, now: datetime | None = None) -> None:
        if self._status is not TrackerStatus.RUNNING:
            return
        if self._current is not None:
            self._finalize(now or self._clock())
        self._is_idle = False
        self._set_status(TrackerStatus.PAUSED)

    def resume(self) -> None:
        if self._status is not TrackerStatus.PAUSED:
            return
        self._set_status(TrackerStatus.RUNNING)

    def record_user_activity(self, now: datetime | None = None) -> None:
        """Forward a user input event to the fallback idle source."""
        if self._idle_source.is_system:
            return
        self._idle_source.record_activity(now or self._clock())

    # Polling

    def tick(self, now: datetime | None = None) -> None:
        """Run one poll: idle check, sample, segment."""
        if self._status is not TrackerStatus.RUNNING:
            return

        now = now or self._clock()

        try:
            idle_seconds = self._idle_source.idle_seconds(now)
        except Exception as e:
            logger.error(f"Error reading idle time: {e}")
            return

        if self._check_idle(now, idle_seconds):
            return

        try:
            window = self._sampler.sample()
        except Exception as e:
            logger.error(f"Error polling active window: {e}")
            return

        if window is None:
            # Lock screen or transient state
            if self._current is not None:
                self._finalize(now)
            return

        app_name = window.app_name or "Unknown"
        window_title = window.title or "Untitled"
        process_path = window.process_path or ""

        if self.is_excluded(app_name, window_title):
            if self._current is not None:
                self._finalize(now)
            return

        if self._should_start_new_activity(app_name, window_title):
            if self._is_debounced(now):
                current = self._current
                current.application_name = app_name
                current.window_title = window_title
                current.process_path = process_path
            else:
                if self._current is not None:
                    self._finalize(now)
                self._open_activity(app_name, window_title, process_path, now)

        if self._current is not None:
            self._current.duration = self._current.elapsed_seconds(now)

    def is_excluded(self, app_name: str | None, window_title: str | None) -> bool:
        """Case-insensitive substring match against the exclude lists."""
        app = (app_name or "").lower()
        title = (window_title or "").lower()
        return any(str(x).lower() in app for x in self._config.exclude_apps) or any(
            str(x).lower() in title for x in self._config.exclude_titles
        )

    # Internals

    def _check_idle(self, now: datetime, idle_seconds: float) -> bool:
        """Handle idle transitions. Returns True when the tick is consumed."""
        idle_now = idle_seconds >= self._config.idle_threshold_seconds

        if not self._is_idle and idle_now:
            self._is_idle = True

            # Attribute idle time to when input actually stopped
            idle_start = now - timedelta(seconds=idle_seconds)
            if self._current is not None:
                self._finalize(max(idle_start, self._current.start_time))

            # Never start before anything already emitted
            if self._last_emitted_end is not None and idle_start < self._last_emitted_end:
                idle_start = self._last_emitted_end

            self._current = Activity.open_idle(idle_start)
            self._current.duration = self._current.elapsed_seconds(now)
            logger.info(f"Idle detected ({idle_seconds:.0f}s without input)")
            self._notify("on_idle_start")
            return True

        if self._is_idle and not idle_now:
            self._is_idle = False
            if self._current is not None and self._current.is_idle:
                self._finalize(now)
            logger.info("User active again")
            # Fired whether or not the idle segment itself was kept
            self._notify("on_idle_end", idle_seconds)
            return False

        if self._is_idle:
            if self._current is not None:
                self._current.duration = self._current.elapsed_seconds(now)
            return True

        return False

    def _should_start_new_activity(self, app_name: str, window_title: str) -> bool:
        current = self._current
        if current is None:
            return True
        if current.application_name != app_name:
            return True
        return normalize_title(current.window_title) != normalize_title(window_title)

    def _is_debounced(self, now: datetime) -> bool:
        current = self._current
        if current is None or current.is_idle or self._last_switch_time is None:
            return False
        since_last_switch = (now - self._last_switch_time).total_seconds()
        return since_last_switch < self._config.switch_debounce_seconds

    def _categorize(self, app_name: str, window_title: str) -> Categorization:
        if not self._config.auto_categorize:
            return Categorization(UNCATEGORIZED, True, CONFIDENCE_DEFAULT)
        return self._categorizer.categorize(app_name, window_title)

    def _open_activity(
        self, app_name: str, window_title: str, process_path: str, now: datetime
    ) -> None:
        categorization = self._categorize(app_name, window_title)
        self._current = Activity.open(
            app_name,
            window_title,
            process_path,
            now,
            category_id=categorization.category_id,
            category_auto_assigned=categorization.auto_assigned,
            category_confidence=categorization.confidence,
        )
        self._last_switch_time = now
        logger.debug(f"Started activity: {app_name} - {window_title} [{categorization.category_id}]")

    def _finalize(self, end_time: datetime) -> Activity | None:
        """Close the open activity and emit it if it is long enough."""
        activity = self._current
        if activity is None:
            return None

        self._current = None
        activity.end_time = end_time
        activity.duration = activity.elapsed_seconds(end_time)

        if activity.duration < self._config.min_activity_duration_seconds:
            logger.debug(
                f"Discarded {activity.application_name} ({activity.duration}s < "
                f"{self._config.min_activity_duration_seconds}s)"
            )
            return None

        self._last_emitted_end = end_time
        logger.debug(f"Finalized {activity.application_name} ({activity.duration}s)")
        self._notify("on_activity", activity)
        return activity

    def _set_status(self, status: TrackerStatus) -> None:
        self._status = status
        logger.info(f"Tracker {status.value}")
        self._notify("on_status_change", status)

    def _notify(self, hook: str, *args: object) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                logger.error(f"Observer {type(observer).__name__}.{hook} failed: {e}")
