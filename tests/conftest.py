"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from tests.helpers import T0, FakeIdleSource, FakeSampler, Recorder
from timekeeper.core.config import Config, TrackerConfig
from timekeeper.storage.activity_store import ActivityStore
from timekeeper.storage.database import init_database
from timekeeper.trackers.segmenter import ActivitySegmenter


@pytest.fixture
def tracker_config():
    return TrackerConfig(
        idle_threshold_seconds=300,
        min_activity_duration_seconds=60,
        switch_debounce_seconds=7,
    )


@pytest.fixture
def sampler():
    sampler = FakeSampler()
    sampler.set("Code", "main.ts — proj", "/Applications/Code.app")
    return sampler


@pytest.fixture
def idle_source():
    return FakeIdleSource()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def segmenter(tracker_config, sampler, idle_source, recorder):
    segmenter = ActivitySegmenter(
        tracker_config,
        sampler,
        idle_source,
        clock=lambda: T0,
        observers=[recorder],
    )
    segmenter.start()
    return segmenter


@pytest.fixture
def config(tmp_path):
    """Config rooted in a temporary directory with sync pointed nowhere."""
    return Config(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        config_dir=tmp_path / "config",
    )


@pytest.fixture
async def db(tmp_path):
    database = await init_database(tmp_path / "timekeeper.db")
    yield database
    await database.close()


@pytest.fixture
async def store(db):
    return ActivityStore(db)
