"""Idle detection strategies.

Two interchangeable sources report how long the user has been idle:

- ``SystemIdleSource`` asks CGEventSource for the seconds since the last
  mouse or keyboard input (the preferred signal).
- ``LastInputIdleSource`` measures time since the last user activity the
  host reported through ``record_activity`` (legacy fallback).

``select_idle_source`` picks one once at startup.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class IdleSource(ABC):
    """Reports seconds since the user last interacted with the device."""

    is_system: bool = False

    @abstractmethod
    def idle_seconds(self, now: datetime) -> float:
        """Seconds of inactivity as of ``now``."""

    def record_activity(self, now: datetime) -> None:
        """Note a user input event. Only meaningful for the fallback source."""


class SystemIdleSource(IdleSource):
    """Idle time from CGEventSourceSecondsSinceLastEventType."""

    is_system = True

    @staticmethod
    def is_available() -> bool:
        """Check whether the Quartz event source API can be loaded."""
        try:
            from Quartz import CGEventSourceSecondsSinceLastEventType  # noqa: F401

            return True
        except ImportError:
            return False
        except Exception as e:
            logger.debug(f"Quartz unavailable: {e}")
            return False

    def get_mouse_idle_seconds(self) -> float:
        """Get seconds since last mouse movement."""
        try:
            from Quartz import (
                CGEventSourceSecondsSinceLastEventType,
                kCGEventMouseMoved,
                kCGEventSourceStateCombinedSessionState,
            )

            return CGEventSourceSecondsSinceLastEventType(
                kCGEventSourceStateCombinedSessionState,
                kCGEventMouseMoved,
            )
        except Exception as e:
            logger.debug(f"Error getting mouse idle time: {e}")
            return 0.0

    def get_keyboard_idle_seconds(self) -> float:
        """Get seconds since last keyboard input."""
        try:
            from Quartz import (
                CGEventSourceSecondsSinceLastEventType,
                kCGEventKeyDown,
                kCGEventSourceStateCombinedSessionState,
            )

            return CGEventSourceSecondsSinceLastEventType(
                kCGEventSourceStateCombinedSessionState,
                kCGEventKeyDown,
            )
        except Exception as e:
            logger.debug(f"Error getting keyboard idle time: {e}")
            return 0.0

    def idle_seconds(self, now: datetime) -> float:
        return min(self.get_mouse_idle_seconds(), self.get_keyboard_idle_seconds())


class LastInputIdleSource(IdleSource):
    """Idle time measured from the last reported user activity.

    Less accurate than the system signal: it only knows about input the
    host forwards via ``record_activity``.
    """

    def __init__(self, started_at: datetime | None = None):
        self._last_activity = started_at or datetime.now(timezone.utc)

    @property
    def last_activity(self) -> datetime:
        return self._last_activity

    def record_activity(self, now: datetime) -> None:
        self._last_activity = now

    def idle_seconds(self, now: datetime) -> float:
        return max(0.0, (now - self._last_activity).total_seconds())


def select_idle_source(prefer_system: bool = True) -> IdleSource:
    """Pick the idle strategy for this process."""
    if prefer_system and SystemIdleSource.is_available():
        logger.info("Using system idle signal")
        return SystemIdleSource()

    logger.warning("System idle signal unavailable, falling back to last-input tracking")
    return LastInputIdleSource()
