"""Tests for settings file parsing and validation."""
import pytest
from pathlib import Path
from shared.settings import (
    Settings, SettingsError, load_settings, save_settings, parse_settings,
)

EXAMPLE_TOML = """\
[arbiter]
port = 9500
debounce_ms = 300

[clock]
cycles = 4

[playback]
profile = "constrained"
media = "movie.mp4"

[reconnect]
max_attempts = 2
"""


def test_load_example(tmp_path):
    path = tmp_path / "watchsync.toml"
    path.write_text(EXAMPLE_TOML)
    settings = load_settings(path)
    assert settings.arbiter.port == 9500
    assert settings.arbiter.debounce_ms == 300
    assert settings.arbiter.host == "0.0.0.0"
    assert settings.clock.cycles == 4
    assert settings.clock.probe_delay_ms == 500
    assert settings.playback.profile == "constrained"
    assert settings.reconnect.max_attempts == 2
    assert settings.reconnect.max_ms == 30000
    assert settings.validate() == []


def test_defaults():
    settings = Settings()
    assert settings.arbiter.debounce_ms == 250
    assert settings.clock.cycles == 10
    assert settings.clock.resync_interval_s == 120.0
    assert settings.reconnect.initial_ms == 1000
    assert settings.validate() == []


def test_missing_default_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_settings() == Settings()


def test_unreadable_file_raises(tmp_path):
    with pytest.raises(SettingsError):
        load_settings(tmp_path / "nope.toml")
    bad = tmp_path / "bad.toml"
    bad.write_text("[arbiter\nport = ")
    with pytest.raises(SettingsError):
        load_settings(bad)


def test_validate_reports_errors():
    settings = parse_settings({
        "arbiter": {"port": 0},
        "clock": {"cycles": 0},
        "playback": {"profile": "tv"},
        "reconnect": {"initial_ms": 5000, "max_ms": 1000},
    })
    errors = settings.validate()
    assert any("arbiter.port" in e for e in errors)
    assert any("clock.cycles" in e for e in errors)
    assert any("playback.profile" in e for e in errors)
    assert any("reconnect.max_ms" in e for e in errors)


def test_save_round_trip(tmp_path):
    settings = Settings()
    settings.arbiter.advertise = False
    settings.playback.media = "clips/a.mp4"
    path = tmp_path / "out.toml"
    save_settings(settings, path)
    assert load_settings(path) == settings
