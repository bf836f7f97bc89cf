"""Activity records produced by the segmenter."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

IDLE_APP_NAME = "System"
IDLE_WINDOW_TITLE = "Idle"
SOURCE_DESKTOP = "desktop"


@dataclass
class Activity:
    """A contiguous span of device attention.

    ``end_time`` is None while the segment is open. Timestamps are
    timezone-aware UTC datetimes; ``duration`` is whole seconds.
    """

    id: str
    application_name: str
    window_title: str
    process_path: str
    start_time: datetime
    end_time: datetime | None = None
    duration: int = 0
    project_id: str | None = None
    task_id: str | None = None
    is_idle: bool = False
    category_id: str = "uncategorized"
    category_auto_assigned: bool = True
    category_confidence: int = 50
    source: str = SOURCE_DESKTOP

    @classmethod
    def open(
        cls,
        application_name: str,
        window_title: str,
        process_path: str,
        start_time: datetime,
        category_id: str = "uncategorized",
        category_auto_assigned: bool = True,
        category_confidence: int = 50,
    ) -> Activity:
        """Start a new open segment with a fresh id."""
        return cls(
            id=str(uuid.uuid4()),
            application_name=application_name,
            window_title=window_title,
            process_path=process_path,
            start_time=start_time,
            category_id=category_id,
            category_auto_assigned=category_auto_assigned,
            category_confidence=category_confidence,
        )

    @classmethod
    def open_idle(cls, start_time: datetime) -> Activity:
        """Start a synthetic idle segment."""
        activity = cls.open(
            IDLE_APP_NAME,
            IDLE_WINDOW_TITLE,
            "",
            start_time,
            category_id="uncategorized",
            category_auto_assigned=True,
            category_confidence=100,
        )
        activity.is_idle = True
        return activity

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def is_coded(self) -> bool:
        """True once both a project and a task have been assigned."""
        return bool(self.project_id) and bool(self.task_id)

    def elapsed_seconds(self, now: datetime) -> int:
        """Whole seconds between start and ``now``, never negative."""
        return max(0, math.floor((now - self.start_time).total_seconds()))

    def to_dict(self) -> dict[str, Any]:
        """Full record for the local activity log."""
        return {
            "id": self.id,
            "applicationName": self.application_name,
            "windowTitle": self.window_title,
            "processPath": self.process_path,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "projectId": self.project_id,
            "taskId": self.task_id,
            "isCoded": self.is_coded,
            "isIdle": self.is_idle,
            "categoryId": self.category_id,
            "categoryAutoAssigned": self.category_auto_assigned,
            "categoryConfidence": self.category_confidence,
            "source": self.source,
        }

    def to_sync_dict(self) -> dict[str, Any]:
        """The subset of fields sent in a desktop-sync push."""
        return {
            "applicationName": self.application_name,
            "windowTitle": self.window_title or "",
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "projectId": self.project_id,
            "taskId": self.task_id,
            "isCoded": self.is_coded,
            "isIdle": self.is_idle,
            "categoryId": self.category_id,
            "categoryAutoAssigned": self.category_auto_assigned,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Activity:
        """Rebuild an activity from ``to_dict`` output."""
        end_time = data.get("endTime")
        return cls(
            id=data["id"],
            application_name=data["applicationName"],
            window_title=data.get("windowTitle") or "",
            process_path=data.get("processPath") or "",
            start_time=datetime.fromisoformat(data["startTime"]),
            end_time=datetime.fromisoformat(end_time) if end_time else None,
            duration=int(data.get("duration") or 0),
            project_id=data.get("projectId"),
            task_id=data.get("taskId"),
            is_idle=bool(data.get("isIdle", False)),
            category_id=data.get("categoryId") or "uncategorized",
            category_auto_assigned=bool(data.get("categoryAutoAssigned", True)),
            category_confidence=int(data.get("categoryConfidence") or 50),
            source=data.get("source") or SOURCE_DESKTOP,
        )
