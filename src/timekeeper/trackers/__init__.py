"""Activity tracking components."""

from timekeeper.trackers.activity import Activity
from timekeeper.trackers.buffer import ActivityBuffer
from timekeeper.trackers.categorizer import Categorization, Categorizer, CategoryRule
from timekeeper.trackers.idle_detector import (
    IdleSource,
    LastInputIdleSource,
    SystemIdleSource,
    select_idle_source,
)
from timekeeper.trackers.segmenter import ActivitySegmenter, TrackerObserver, TrackerStatus
from timekeeper.trackers.window_sampler import WindowInfo, WindowSampler, get_window_sampler

__all__ = [
    "Activity",
    "ActivityBuffer",
    "ActivitySegmenter",
    "Categorization",
    "Categorizer",
    "CategoryRule",
    "IdleSource",
    "LastInputIdleSource",
    "SystemIdleSource",
    "TrackerObserver",
    "TrackerStatus",
    "WindowInfo",
    "WindowSampler",
    "get_window_sampler",
    "select_idle_source",
]
