"""Tests for the daemon orchestrator."""

import asyncio
import os
import signal

import pytest
from pydantic import ValidationError

from tests.helpers import FakeIdleSource, FakeSampler
from timekeeper.core.config import Config
from timekeeper.core.orchestrator import Orchestrator, build_categorizer
from timekeeper.storage.activity_store import ActivityStore
from timekeeper.storage.database import init_database
from timekeeper.sync.sync_engine import SyncTrigger


@pytest.fixture
def daemon_config(tmp_path):
    return Config(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        config_dir=tmp_path / "config",
        tracking={"poll_interval_ms": 100, "min_activity_duration_seconds": 0},
    )


@pytest.fixture
def daemon_sampler():
    sampler = FakeSampler()
    sampler.set("Code", "orchestrator.py - timekeeper")
    return sampler


@pytest.fixture
def daemon_idle():
    return FakeIdleSource()


@pytest.fixture
async def orchestrator(daemon_config, daemon_sampler, daemon_idle):
    orchestrator = Orchestrator(
        daemon_config,
        sampler=daemon_sampler,
        idle_source=daemon_idle,
        handle_signals=False,
    )
    await orchestrator.start()
    yield orchestrator
    await orchestrator.stop()


async def wait_for(predicate, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.05)


async def test_start_writes_pid_file(orchestrator, daemon_config):
    assert orchestrator.is_running
    assert (daemon_config.data_dir / "daemon.pid").exists()
    assert (daemon_config.data_dir / "daemon.pid").read_text() == str(os.getpid())


async def test_poll_loop_opens_activity(orchestrator, daemon_sampler):
    await wait_for(lambda: orchestrator.segmenter.current_activity is not None)
    assert orchestrator.segmenter.current_activity.application_name == "Code"
    assert daemon_sampler.calls >= 1


async def test_stop_persists_open_activity(daemon_config, daemon_sampler, daemon_idle):
    orchestrator = Orchestrator(
        daemon_config, sampler=daemon_sampler, idle_source=daemon_idle, handle_signals=False
    )
    await orchestrator.start()
    await wait_for(lambda: orchestrator.segmenter.current_activity is not None)

    await orchestrator.stop()

    assert not orchestrator.is_running
    assert not (daemon_config.data_dir / "daemon.pid").exists()

    db = await init_database(daemon_config.db_path)
    try:
        store = ActivityStore(db)
        recent = await store.recent_activities()
        assert [a.application_name for a in recent] == ["Code"]
        assert await store.queue_size() == 1
    finally:
        await db.close()


async def test_idle_onset_triggers_idle_sync(orchestrator, daemon_idle):
    await wait_for(lambda: orchestrator.segmenter.current_activity is not None)

    daemon_idle.seconds = 400
    await wait_for(lambda: orchestrator.sync_engine.last_result is not None)

    result = orchestrator.sync_engine.last_result
    assert result.trigger is SyncTrigger.IDLE
    assert result.not_configured
    assert orchestrator.segmenter.is_idle


async def test_sync_now_without_credentials(orchestrator):
    result = await orchestrator.sync_now()
    assert not result.success
    assert result.not_configured
    assert result.trigger is SyncTrigger.MANUAL


async def test_pause_and_resume(orchestrator):
    await wait_for(lambda: orchestrator.segmenter.current_activity is not None)

    orchestrator.pause()
    assert orchestrator.segmenter.is_paused
    assert orchestrator.segmenter.current_activity is None

    orchestrator.resume()
    assert not orchestrator.segmenter.is_paused


async def test_apply_config(orchestrator):
    orchestrator.apply_config({"tracking": {"idle_threshold_seconds": 120}})
    assert orchestrator.segmenter.config.idle_threshold_seconds == 120

    orchestrator.apply_config({"sync": {"settings": {"sync_interval_minutes": 5}}})
    assert orchestrator.sync_engine.config.settings.sync_interval_minutes == 5

    with pytest.raises(ValidationError):
        orchestrator.apply_config({"sync": {"settings": {"sync_interval_minutes": 7}}})
    assert orchestrator.config.sync.settings.sync_interval_minutes == 5


def test_custom_rules_take_precedence(config):
    config = config.merge(
        {"categorization": {"rules": [{"category_id": "design", "type": "app", "pattern": "Code"}]}}
    )
    assert build_categorizer(config).categorize("Code", "main.py").category_id == "design"


async def test_sync_request_pushes_through_daemon_engine(orchestrator):
    orchestrator._handle_sync_request()
    await wait_for(lambda: orchestrator.sync_engine.last_result is not None)

    assert orchestrator.sync_engine.last_result.trigger is SyncTrigger.MANUAL


async def test_sigusr1_requests_sync(daemon_config, daemon_sampler, daemon_idle):
    orchestrator = Orchestrator(daemon_config, sampler=daemon_sampler, idle_source=daemon_idle)
    await orchestrator.start()
    try:
        os.kill(os.getpid(), signal.SIGUSR1)
        await wait_for(lambda: orchestrator.sync_engine.last_result is not None)
        assert orchestrator.sync_engine.last_result.trigger is SyncTrigger.MANUAL
        assert orchestrator.is_running
    finally:
        await orchestrator.stop()


async def test_failed_start_cleans_up(daemon_config, daemon_sampler, daemon_idle, monkeypatch):
    async def broken(path):
        raise OSError("read-only volume")

    monkeypatch.setattr("timekeeper.core.orchestrator.init_database", broken)
    orchestrator = Orchestrator(daemon_config, sampler=daemon_sampler, idle_source=daemon_idle)

    with pytest.raises(OSError):
        await orchestrator.start()

    assert not (daemon_config.data_dir / "daemon.pid").exists()
    assert not orchestrator.is_running
