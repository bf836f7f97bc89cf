"""Tests for configuration loading and merging."""

import pytest
import yaml
from pydantic import ValidationError

from timekeeper.core.config import Config, ConfigError, SyncConfig, SyncSettings


def test_defaults(config):
    assert config.tracking.poll_interval_ms == 1000
    assert config.tracking.idle_threshold_seconds == 300
    assert config.tracking.min_activity_duration_seconds == 60
    assert config.tracking.switch_debounce_seconds == 7
    assert config.sync.settings.sync_interval_minutes == 15
    assert config.sync.request_timeout_seconds == 30
    assert config.storage.retention_days == 30
    assert config.db_path.name == "timekeeper.db"


@pytest.mark.parametrize("minutes", [5, 15, 30])
def test_allowed_sync_intervals(minutes):
    assert SyncSettings(sync_interval_minutes=minutes).sync_interval_minutes == minutes


@pytest.mark.parametrize("minutes", [0, 10, 60])
def test_rejected_sync_intervals(minutes):
    with pytest.raises(ValidationError):
        SyncSettings(sync_interval_minutes=minutes)


def test_is_configured():
    assert not SyncConfig().is_configured
    assert not SyncConfig(url="https://api.example.com").is_configured
    assert not SyncConfig(url="https://api.example.com", token="   ").is_configured
    assert SyncConfig(url="https://api.example.com", token="abc").is_configured


class TestMerge:
    def test_merges_nested_values(self, config):
        base = config.merge({"sync": {"url": "https://api.example.com"}})
        merged = base.merge({"sync": {"settings": {"sync_interval_minutes": 5}}})

        assert merged.sync.settings.sync_interval_minutes == 5
        assert merged.sync.url == "https://api.example.com"
        assert merged.sync.settings.sync_on_idle is True

    def test_ignores_unknown_keys(self, config):
        merged = config.merge({"not_a_setting": 1, "tracking": {"idle_threshold_seconds": 120}})
        assert merged.tracking.idle_threshold_seconds == 120
        assert not hasattr(merged, "not_a_setting")

    def test_invalid_values_raise(self, config):
        with pytest.raises(ValidationError):
            config.merge({"sync": {"settings": {"sync_interval_minutes": 7}}})
        with pytest.raises(ValidationError):
            config.merge({"tracking": {"poll_interval_ms": 0}})
        assert config.sync.settings.sync_interval_minutes == 15


class TestFiles:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "tracking:\n"
            "  idle_threshold_seconds: 120\n"
            "  exclude_apps: [1Password]\n"
            "categorization:\n"
            "  rules:\n"
            "    - {category_id: design, type: app, pattern: Figma}\n"
        )

        config = Config.load(path)

        assert config.tracking.idle_threshold_seconds == 120
        assert config.tracking.exclude_apps == ["1Password"]
        assert config.categorization.rules[0].pattern == "Figma"

    def test_missing_file_uses_defaults(self, tmp_path):
        assert Config.load(tmp_path / "absent.yaml").tracking.idle_threshold_seconds == 300

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("tracking: [unclosed\n")
        with pytest.raises(ConfigError):
            Config.load(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            Config.load(path)

    def test_save_omits_credentials(self, config, tmp_path):
        config = config.merge({"sync": {"url": "https://api.example.com", "token": "secret", "gateway_key": "gw"}})
        path = tmp_path / "saved.yaml"

        config.save(path)

        data = yaml.safe_load(path.read_text())
        assert data["sync"]["url"] == "https://api.example.com"
        assert "token" not in data["sync"]
        assert "gateway_key" not in data["sync"]
        assert oct(path.stat().st_mode & 0o777) == "0o600"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("TIMEKEEPER_SYNC__URL", "https://env.example.com")
    monkeypatch.setenv("TIMEKEEPER_TRACKING__IDLE_THRESHOLD_SECONDS", "90")

    config = Config(data_dir=tmp_path)

    assert config.sync.url == "https://env.example.com"
    assert config.tracking.idle_threshold_seconds == 90


def test_environment_overrides_yaml_file(monkeypatch, tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "sync:\n"
        "  url: https://yaml.example.com\n"
        "  settings:\n"
        "    sync_interval_minutes: 30\n"
        "tracking:\n"
        "  idle_threshold_seconds: 120\n"
    )
    monkeypatch.setenv("TIMEKEEPER_SYNC__URL", "https://env.example.com")

    config = Config.load(path)

    assert config.sync.url == "https://env.example.com"
    # Keys the environment does not set still come from the file
    assert config.sync.settings.sync_interval_minutes == 30
    assert config.tracking.idle_threshold_seconds == 120
