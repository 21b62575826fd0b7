"""watchsync settings file (TOML) parsing and validation."""
from __future__ import annotations
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SETTINGS_PATH = Path("watchsync.toml")

PROFILE_NAMES = ("desktop", "constrained")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class SettingsError(Exception):
    """Settings file is unreadable or invalid."""


@dataclass
class ArbiterSettings:
    host: str = "0.0.0.0"
    port: int = 9430
    debounce_ms: int = 250
    advertise: bool = True
    name: str = "watchsync"


@dataclass
class ClockSettings:
    cycles: int = 10
    probe_delay_ms: int = 500
    resync_interval_s: float = 120.0
    initial_delay_ms: int = 100


@dataclass
class PlaybackSettings:
    profile: str = "desktop"  # "desktop" | "constrained"
    verify_delay_ms: int = 100
    status_interval_s: float = 2.0
    status_stale_s: float = 10.0
    media: str = ""
    media_root: str = "."


@dataclass
class ReconnectSettings:
    initial_ms: int = 1000
    max_ms: int = 30000
    max_attempts: int = 5


@dataclass
class LoggingSettings:
    dir: str = "logs"
    level: str = "INFO"


@dataclass
class Settings:
    arbiter: ArbiterSettings = field(default_factory=ArbiterSettings)
    clock: ClockSettings = field(default_factory=ClockSettings)
    playback: PlaybackSettings = field(default_factory=PlaybackSettings)
    reconnect: ReconnectSettings = field(default_factory=ReconnectSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def validate(self) -> list[str]:
        errors = []
        if not (0 < self.arbiter.port < 65536):
            errors.append(f"arbiter.port must be 1-65535, got {self.arbiter.port}")
        if self.arbiter.debounce_ms < 0:
            errors.append("arbiter.debounce_ms must be >= 0")
        if self.clock.cycles < 1:
            errors.append("clock.cycles must be >= 1")
        if self.clock.probe_delay_ms < 0:
            errors.append("clock.probe_delay_ms must be >= 0")
        if self.clock.resync_interval_s <= 0:
            errors.append("clock.resync_interval_s must be > 0")
        if self.playback.profile not in PROFILE_NAMES:
            errors.append(f"Invalid playback.profile: {self.playback.profile}")
        if self.playback.verify_delay_ms < 0:
            errors.append("playback.verify_delay_ms must be >= 0")
        if self.playback.status_interval_s <= 0:
            errors.append("playback.status_interval_s must be > 0")
        if self.reconnect.initial_ms <= 0:
            errors.append("reconnect.initial_ms must be > 0")
        if self.reconnect.max_ms < self.reconnect.initial_ms:
            errors.append("reconnect.max_ms must be >= reconnect.initial_ms")
        if self.reconnect.max_attempts < 0:
            errors.append("reconnect.max_attempts must be >= 0")
        if self.logging.level.upper() not in LOG_LEVELS:
            errors.append(f"Invalid logging.level: {self.logging.level}")
        return errors


def _parse_section(cls, raw: dict):
    defaults = cls()
    values = {}
    for name in defaults.__dataclass_fields__:
        values[name] = raw.get(name, getattr(defaults, name))
    return cls(**values)


def parse_settings(data: dict) -> Settings:
    return Settings(
        arbiter=_parse_section(ArbiterSettings, data.get("arbiter", {})),
        clock=_parse_section(ClockSettings, data.get("clock", {})),
        playback=_parse_section(PlaybackSettings, data.get("playback", {})),
        reconnect=_parse_section(ReconnectSettings, data.get("reconnect", {})),
        logging=_parse_section(LoggingSettings, data.get("logging", {})),
    )


def load_settings(path: Path | None = None) -> Settings:
    """Load a watchsync.toml file. A missing default file yields default settings."""
    if path is None:
        path = DEFAULT_SETTINGS_PATH
        if not path.exists():
            return Settings()
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise SettingsError(f"Cannot read settings {path}: {e}") from e
    return parse_settings(data)


def _toml_value(value) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


def save_settings(settings: Settings, path: Path) -> None:
    """Save a Settings object to a TOML file."""
    lines = []
    for section in ("arbiter", "clock", "playback", "reconnect", "logging"):
        obj = getattr(settings, section)
        lines.append(f"[{section}]")
        for name in obj.__dataclass_fields__:
            lines.append(f"{name} = {_toml_value(getattr(obj, name))}")
        lines.append("")
    path.write_text("\n".join(lines), encoding="utf-8")
