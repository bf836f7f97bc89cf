"""Fakes and builders shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from timekeeper.trackers.activity import Activity
from timekeeper.trackers.idle_detector import IdleSource
from timekeeper.trackers.segmenter import TrackerObserver
from timekeeper.trackers.window_sampler import WindowInfo

T0 = datetime(2024, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """Timestamp ``seconds`` after T0."""
    return T0 + timedelta(seconds=seconds)


class FakeSampler:
    """Window sampler returning whatever the test sets."""

    def __init__(self, window: WindowInfo | None = None):
        self.window = window
        self.error: Exception | None = None
        self.calls = 0

    def set(self, app_name: str | None, title: str = "", process_path: str = "") -> None:
        self.window = WindowInfo(app_name, title, process_path) if app_name else None

    def sample(self) -> WindowInfo | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.window


class FakeIdleSource(IdleSource):
    """Idle source reporting a fixed value."""

    is_system = True

    def __init__(self, seconds: float = 0.0):
        self.seconds = seconds

    def idle_seconds(self, now: datetime) -> float:
        return self.seconds


class Recorder(TrackerObserver):
    """Collects everything the segmenter publishes."""

    def __init__(self):
        self.activities: list[Activity] = []
        self.idle_starts = 0
        self.idle_ends: list[float] = []
        self.statuses = []

    def on_activity(self, activity: Activity) -> None:
        self.activities.append(activity)

    def on_idle_start(self) -> None:
        self.idle_starts += 1

    def on_idle_end(self, idle_seconds: float) -> None:
        self.idle_ends.append(idle_seconds)

    def on_status_change(self, status) -> None:
        self.statuses.append(status)


def make_activity(start: float, duration: int, app_name: str = "Code", **kwargs) -> Activity:
    """A finalized activity starting ``start`` seconds after T0."""
    activity = Activity.open(app_name, kwargs.pop("title", "main.py"), "/Applications/Code.app", at(start))
    activity.end_time = at(start + duration)
    activity.duration = duration
    for key, value in kwargs.items():
        setattr(activity, key, value)
    return activity
