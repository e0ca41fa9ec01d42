"""Settings loading for the Nami monitor."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import tzinfo
import logging
import os
from pathlib import Path
from typing import Any, Mapping
import tomllib
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LOGGER = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path(__file__).with_name("defaults.toml")

SETTINGS_PATH_ENV = "NAMI_SETTINGS_PATH"
LOG_PATH_ENV = "NAMI_LOG_PATH"
STATE_PATH_ENV = "NAMI_STATE_PATH"
REPORTS_DIR_ENV = "NAMI_REPORTS_DIR"

DEFAULT_LOG_PATH = Path("~/AppData/Local/OtoyRndrNetwork/rndr_log.txt")
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_PRUNE_INTERVAL_SECONDS = 30 * 60.0
DEFAULT_RECENT_LINES = 25


def default_data_dir() -> Path:
    """Return ``$XDG_DATA_HOME/nami`` or ``~/.local/share/nami``."""

    base = os.getenv("XDG_DATA_HOME")
    root = Path(base) if base else Path("~/.local/share").expanduser()
    return root / "nami"


@dataclass(frozen=True)
class NamiSettings:
    """Resolved runtime settings."""

    log_path: Path = DEFAULT_LOG_PATH.expanduser()
    state_path: Path = field(default_factory=lambda: default_data_dir() / "state.json")
    reports_dir: Path = field(default_factory=lambda: default_data_dir() / "reports")
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    prune_interval_seconds: float = DEFAULT_PRUNE_INTERVAL_SECONDS
    recent_lines: int = DEFAULT_RECENT_LINES
    timezone: str | None = None

    @property
    def tz(self) -> tzinfo | None:
        """Zone of the log timestamps; ``None`` means the local zone."""

        if not self.timezone:
            return None
        return ZoneInfo(self.timezone)

    def to_dict(self) -> dict[str, Any]:
        return {
            "log_path": str(self.log_path),
            "state_path": str(self.state_path),
            "reports_dir": str(self.reports_dir),
            "poll_interval_seconds": self.poll_interval_seconds,
            "prune_interval_seconds": self.prune_interval_seconds,
            "recent_lines": self.recent_lines,
            "timezone": self.timezone,
        }


@dataclass(frozen=True)
class SettingsLoadResult:
    """Outcome of loading Nami settings."""

    settings: NamiSettings
    settings_path: Path | None
    warnings: tuple[str, ...] = ()


def _load_settings(
    path: str | os.PathLike[str] | None,
) -> tuple[dict[str, object], Path | None, list[str]]:
    """Load configuration data from a TOML file, falling back to defaults."""

    warnings: list[str] = []
    candidates: list[Path] = []
    if path is not None:
        candidates.append(Path(path))
    env_path = os.getenv(SETTINGS_PATH_ENV)
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(DEFAULT_SETTINGS_PATH)

    for candidate in candidates:
        expanded = candidate.expanduser()
        try:
            with expanded.open("rb") as handle:
                return tomllib.load(handle), expanded, warnings
        except FileNotFoundError as exc:
            message = (
                f"Settings file {expanded} not found ({exc}); falling back to defaults"
            )
            LOGGER.warning(message)
            warnings.append(message)
        except tomllib.TOMLDecodeError as exc:
            message = f"Unable to parse settings file {expanded} ({exc}); falling back to defaults"
            LOGGER.warning(message)
            warnings.append(message)
        except OSError as exc:
            message = f"Unable to read settings file {expanded} ({exc}); falling back to defaults"
            LOGGER.warning(message)
            warnings.append(message)
    return {}, None, warnings


def _positive_float(
    raw: Mapping[str, object], name: str, default: float, warnings: list[str]
) -> float:
    value = raw.get(name)
    if value is None:
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        parsed = -1.0
    if isinstance(value, bool) or parsed <= 0:
        message = f"Ignoring invalid {name} override {value!r}; using default {default}"
        LOGGER.warning(message)
        warnings.append(message)
        return default
    return parsed


def _non_negative_int(
    raw: Mapping[str, object], name: str, default: int, warnings: list[str]
) -> int:
    value = raw.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        message = f"Ignoring invalid {name} override {value!r}; using default {default}"
        LOGGER.warning(message)
        warnings.append(message)
        return default
    return value


def _path_value(
    raw: Mapping[str, object], name: str, env: str, default: Path
) -> Path:
    override = os.getenv(env)
    if override:
        return Path(override).expanduser()
    value = raw.get(name)
    if isinstance(value, str) and value.strip():
        return Path(value).expanduser()
    return default


def _timezone_value(raw: Mapping[str, object], warnings: list[str]) -> str | None:
    value = raw.get("timezone")
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        message = f"Unknown timezone {value!r}; log timestamps are read as local time"
        LOGGER.warning(message)
        warnings.append(message)
        return None
    return value


def load_settings(path: str | os.PathLike[str] | None = None) -> SettingsLoadResult:
    """Resolve settings from TOML candidates and environment overrides.

    Candidates are tried in order: ``path``, ``$NAMI_SETTINGS_PATH`` and the
    packaged ``defaults.toml``. ``NAMI_LOG_PATH``, ``NAMI_STATE_PATH`` and
    ``NAMI_REPORTS_DIR`` override the matching file values. Invalid values
    fall back to defaults and are reported on the result.
    """

    raw, resolved_path, warnings = _load_settings(path)
    base = NamiSettings()
    settings = replace(
        base,
        log_path=_path_value(raw, "log_path", LOG_PATH_ENV, base.log_path),
        state_path=_path_value(raw, "state_path", STATE_PATH_ENV, base.state_path),
        reports_dir=_path_value(raw, "reports_dir", REPORTS_DIR_ENV, base.reports_dir),
        poll_interval_seconds=_positive_float(
            raw, "poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS, warnings
        ),
        prune_interval_seconds=_positive_float(
            raw, "prune_interval_seconds", DEFAULT_PRUNE_INTERVAL_SECONDS, warnings
        ),
        recent_lines=_non_negative_int(
            raw, "recent_lines", DEFAULT_RECENT_LINES, warnings
        ),
        timezone=_timezone_value(raw, warnings),
    )
    return SettingsLoadResult(
        settings=settings, settings_path=resolved_path, warnings=tuple(warnings)
    )


__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "NamiSettings",
    "SettingsLoadResult",
    "default_data_dir",
    "load_settings",
]
