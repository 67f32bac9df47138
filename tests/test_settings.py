"""Tests for the settings manager"""
import json

import pytest

from settings import SettingsManager


def test_defaults_without_file(tmp_path):
    manager = SettingsManager(tmp_path / "settings.json")
    assert manager.get("quota.hourly_limit") == 20
    assert manager.get("recognition.min_confidence") == 0.60
    assert manager.get("unknown.key", "fallback") == "fallback"
    assert not (tmp_path / "settings.json").exists()


def test_loads_and_converts_saved_values(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"quota.hourly_limit": "10", "capture.max_duration_ms": 999999}), encoding="utf-8")
    manager = SettingsManager(path)
    assert manager.get("quota.hourly_limit") == 10
    # Out of bounds falls back to the default
    assert manager.get("capture.max_duration_ms") == 10000


def test_corrupt_file_is_backed_up(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{broken", encoding="utf-8")
    manager = SettingsManager(path)
    assert manager.get("server.port") == 9020
    assert (tmp_path / "settings.json.corrupted").exists()


def test_set_and_save(tmp_path):
    path = tmp_path / "settings.json"
    manager = SettingsManager(path)
    assert manager.set("server.port", "9100") is True
    manager.save_to_config()
    assert json.loads(path.read_text(encoding="utf-8"))["server.port"] == 9100


def test_set_unknown_key(tmp_path):
    with pytest.raises(KeyError):
        SettingsManager(tmp_path / "settings.json").set("nope", 1)


def test_credentials_are_not_settings(tmp_path):
    all_settings = SettingsManager(tmp_path / "settings.json").get_all()
    keys = {key for group in all_settings.values() for key in group}
    assert not any("secret" in key or "access_key" in key for key in keys)
