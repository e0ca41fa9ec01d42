"""Persistent JSON blob holding the tail offset and the aggregate statistics.

The blob is shared with other subsystems of the render node monitor (hosting
flag, preferred network adapter, GPU and process snapshots). Those keys are
never interpreted here: every save re-reads the file and only replaces the
keys owned by this package.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import structlog

from .aggregator import StatsState
from .errors import StateStoreError

logger = structlog.get_logger(__name__)

OWNED_KEYS = ("lastPosition", "logIdentity", "stats")

# Written once when the blob is created so the other subsystems find their
# keys in place.
DEFAULT_FOREIGN_KEYS: dict[str, Any] = {
    "isHostingEnabled": True,
    "preferredAdapter": None,
    "gpuInfo": [],
    "rndrStatus": False,
    "watchdogStatus": False,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialise_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class LogIdentity:
    """Identifies the log file an offset refers to."""

    device: int
    inode: int

    @classmethod
    def of(cls, path: Path) -> "LogIdentity":
        info = path.stat()
        return cls(device=int(info.st_dev), inode=int(info.st_ino))

    @classmethod
    def from_dict(cls, data: object) -> "LogIdentity | None":
        if not isinstance(data, Mapping):
            return None
        try:
            return cls(device=int(data["device"]), inode=int(data["inode"]))
        except (KeyError, TypeError, ValueError):
            return None

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class PersistedState:
    """In-memory form of the parts of the blob owned by this package."""

    last_position: int = 0
    log_identity: LogIdentity | None = None
    stats: StatsState = field(default_factory=StatsState)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload = dict(self.extra)
        payload["lastPosition"] = self.last_position
        payload["logIdentity"] = (
            self.log_identity.to_dict() if self.log_identity is not None else None
        )
        payload["stats"] = self.stats.to_dict()
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PersistedState":
        position = payload.get("lastPosition", 0)
        if isinstance(position, bool) or not isinstance(position, int) or position < 0:
            logger.warning("render_log.state.invalid_position", value=position)
            position = 0
        extra = {key: value for key, value in payload.items() if key not in OWNED_KEYS}
        return cls(
            last_position=position,
            log_identity=LogIdentity.from_dict(payload.get("logIdentity")),
            stats=StatsState.from_dict(payload.get("stats")),
            extra=extra,
        )


@dataclass(slots=True)
class StateStoreStats:
    """Counters describing store activity, reported by the status API."""

    loads: int = 0
    saves: int = 0
    load_failures: int = 0
    save_failures: int = 0
    last_load_at: datetime | None = None
    last_save_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["last_load_at"] = _serialise_datetime(self.last_load_at)
        data["last_save_at"] = _serialise_datetime(self.last_save_at)
        return data


class StateStore:
    """JSON file backed store for :class:`PersistedState`."""

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)
        self._stats = StateStoreStats()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def stats(self) -> StateStoreStats:
        return self._stats

    def _read_payload(self) -> dict[str, Any] | None:
        """Return the raw blob, or ``None`` when missing or unreadable."""

        if not self._path.exists():
            return None
        try:
            raw_data = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning(
                "render_log.state.read_failed", path=str(self._path), error=str(exc)
            )
            self._record_failure(exc, loading=True)
            return None
        try:
            payload = json.loads(raw_data or "{}")
        except json.JSONDecodeError as exc:
            logger.warning(
                "render_log.state.decode_failed", path=str(self._path), error=str(exc)
            )
            self._record_failure(exc, loading=True)
            return None
        if not isinstance(payload, dict):
            logger.warning("render_log.state.invalid_payload", path=str(self._path))
            self._stats.load_failures += 1
            self._stats.last_error = "payload is not an object"
            return None
        return payload

    def _record_failure(self, exc: Exception, *, loading: bool) -> None:
        if loading:
            self._stats.load_failures += 1
        else:
            self._stats.save_failures += 1
        self._stats.last_error = str(exc)

    def load(self) -> PersistedState:
        """Load the persisted state, falling back to defaults when corrupt."""

        self._stats.loads += 1
        self._stats.last_load_at = _utcnow()
        payload = self._read_payload()
        if payload is None:
            return PersistedState(extra=dict(DEFAULT_FOREIGN_KEYS))
        return PersistedState.from_payload(payload)

    def save(self, state: PersistedState) -> None:
        """Write ``state`` while preserving keys owned by other subsystems."""

        current = self._read_payload()
        merged: dict[str, Any] = dict(DEFAULT_FOREIGN_KEYS)
        merged.update(state.extra)
        if current is not None:
            merged.update(
                {key: value for key, value in current.items() if key not in OWNED_KEYS}
            )
        state.extra = {key: value for key, value in merged.items() if key not in OWNED_KEYS}
        payload = state.to_payload()
        try:
            self._write_payload(payload)
        except OSError as exc:
            self._record_failure(exc, loading=False)
            logger.error(
                "render_log.state.write_failed", path=str(self._path), error=str(exc)
            )
            raise StateStoreError(
                f"Unable to write state file '{self._path}': {exc}",
                context={"path": str(self._path)},
            ) from exc
        self._stats.saves += 1
        self._stats.last_save_at = _utcnow()

    def _write_payload(self, payload: Mapping[str, Any]) -> None:
        serialised = json.dumps(payload, indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            tmp_path.write_text(serialised, encoding="utf-8")
            os.replace(tmp_path, self._path)
        finally:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass


__all__ = [
    "DEFAULT_FOREIGN_KEYS",
    "LogIdentity",
    "PersistedState",
    "StateStore",
    "StateStoreStats",
]
