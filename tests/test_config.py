#!/usr/bin/env python3
from datetime import timedelta
import os
import pytest
from charger_availability.config import CONFIG_FILEPATH_VARIABLE, Config, load_config


def get_absolute_filepath(relative_filepath: str) -> str:
    return os.path.join(os.path.dirname(__file__), relative_filepath)


def test_defaults(monkeypatch) -> None:
    monkeypatch.delenv(CONFIG_FILEPATH_VARIABLE, raising=False)
    config = load_config()
    assert config.default_duration == timedelta(minutes=60)
    assert config.slot_times[0] == "09:00" and config.slot_times[-1] == "20:30"
    assert len(config.slot_times) == 24
    with pytest.raises(AssertionError):
        Config(default_duration_minutes=0)


def test_example_config() -> None:
    config = load_config(get_absolute_filepath("../config.example.yaml"))
    assert config.timezone == "Europe/Berlin"
    assert config.mqtt_topic == "bookings/changed"


def test_load_config_from_environment(tmp_path, monkeypatch) -> None:
    filepath = tmp_path / "config.yaml"
    filepath.write_text("timezone: Europe/Berlin\nminimum_duration_minutes: 15\n")
    monkeypatch.setenv(CONFIG_FILEPATH_VARIABLE, str(filepath))
    config = load_config()
    assert config.minimum_duration == timedelta(minutes=15)
    assert config.database_url == Config().database_url


def test_invalid_config_files(tmp_path) -> None:
    filepath = tmp_path / "config.yaml"
    filepath.write_text("timezone: UTC\ncharger_count: 3\n")
    with pytest.raises(ValueError, match="charger_count"):
        load_config(str(filepath))
    filepath.write_text("- timezone\n")
    with pytest.raises(ValueError):
        load_config(str(filepath))
