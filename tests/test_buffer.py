"""Tests for the activity buffer."""

import asyncio

import pytest

from tests.helpers import make_activity
from timekeeper.trackers.buffer import ActivityBuffer


class FailingStore:
    def __init__(self):
        self.calls = 0

    async def append_activities(self, activities):
        self.calls += 1
        raise OSError("disk full")


async def test_flush_writes_to_store(store):
    buffer = ActivityBuffer(store)
    buffer.add(make_activity(0, 60))
    buffer.add(make_activity(60, 60))

    assert buffer.pending_count == 2
    assert await buffer.flush() == 2
    assert buffer.pending_count == 0
    assert await store.queue_size() == 2


async def test_flush_empty_buffer(store):
    assert await ActivityBuffer(store).flush() == 0


async def test_failed_flush_keeps_activities():
    failing = FailingStore()
    buffer = ActivityBuffer(failing)
    buffer.add(make_activity(0, 60))

    with pytest.raises(OSError):
        await buffer.flush()

    assert failing.calls == 1
    assert buffer.pending_count == 1


async def test_stop_flushes_remaining(store):
    buffer = ActivityBuffer(store, flush_interval=3600)
    await buffer.start()
    assert buffer.is_running

    buffer.add(make_activity(0, 60))
    await buffer.stop()

    assert not buffer.is_running
    assert await store.queue_size() == 1


async def test_full_buffer_flush_failure_is_logged(caplog):
    failing = FailingStore()
    buffer = ActivityBuffer(failing, flush_interval=3600, max_size=2)
    await buffer.start()

    buffer.add(make_activity(0, 60))
    buffer.add(make_activity(60, 60))
    for _ in range(20):
        if "Background flush failed" in caplog.text:
            break
        await asyncio.sleep(0.01)

    assert failing.calls == 1
    assert buffer.pending_count == 2
    assert "Background flush failed, 2 activities kept in buffer" in caplog.text

    with pytest.raises(OSError):
        await buffer.stop()
    assert buffer.pending_count == 2
