"""Tests for the Activity model."""

from tests.helpers import T0, at, make_activity
from timekeeper.trackers.activity import Activity

SYNC_FIELDS = {
    "applicationName",
    "windowTitle",
    "startTime",
    "endTime",
    "duration",
    "projectId",
    "taskId",
    "isCoded",
    "isIdle",
    "categoryId",
    "categoryAutoAssigned",
}


def test_open_generates_unique_ids():
    first = Activity.open("Code", "a.py", "", T0)
    second = Activity.open("Code", "a.py", "", T0)
    assert first.id != second.id
    assert first.is_open
    assert first.source == "desktop"


def test_open_idle_defaults():
    idle = Activity.open_idle(T0)
    assert idle.is_idle
    assert (idle.application_name, idle.window_title, idle.process_path) == ("System", "Idle", "")
    assert idle.category_id == "uncategorized"
    assert idle.category_confidence == 100


def test_is_coded_requires_project_and_task():
    activity = make_activity(0, 60, project_id="p1")
    assert not activity.is_coded
    activity.task_id = "t1"
    assert activity.is_coded


def test_elapsed_seconds_floors():
    activity = Activity.open("Code", "a.py", "", T0)
    assert activity.elapsed_seconds(at(59.9)) == 59
    assert activity.elapsed_seconds(at(-5)) == 0


def test_sync_dict_has_wire_fields_only():
    payload = make_activity(0, 90, project_id="p1", task_id="t1").to_sync_dict()
    assert set(payload) == SYNC_FIELDS
    assert payload["isCoded"] is True
    assert payload["duration"] == 90
    assert payload["startTime"] == T0.isoformat()


def test_dict_round_trip_preserves_record():
    activity = make_activity(0, 90, category_id="research", category_confidence=80)
    assert Activity.from_dict(activity.to_dict()) == activity
