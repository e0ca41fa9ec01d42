"""Lifetime, trailing-24h and epoch statistics for render job outcomes.

The statistics live in an explicit :class:`StatsState` value. The module level
functions mutate a well-defined part of that value and can be tested on their
own; :class:`StatsAggregator` binds a state to a clock for the live pipeline.

Counts and summed seconds of the ``daily`` and ``epoch`` buckets are never
stored; they are derived from the point lists whenever a snapshot is taken.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from .correlator import JobOutcome, OutcomeStatus
from .epoch import EpochWindow, epoch_for_id, epoch_start

DAY_MS = 24 * 60 * 60 * 1000


def current_time_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class JobPoint:
    """A single outcome recorded in a windowed bucket."""

    ts_ms: int
    seconds: float
    correlation_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tsMs": self.ts_ms,
            "seconds": self.seconds,
            "correlationKey": self.correlation_key,
        }


def migrate_point(raw: object) -> JobPoint | None:
    """Normalise a persisted point into a :class:`JobPoint`.

    Two shapes exist on disk: the structured mapping written by this package
    and a bare timestamp number left by older releases, which is migrated with
    an unknown (zero) duration. Anything else is discarded.
    """

    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return JobPoint(ts_ms=int(raw), seconds=0.0)
    if isinstance(raw, Mapping):
        ts_value = raw.get("tsMs", raw.get("ts_ms"))
        if isinstance(ts_value, bool) or not isinstance(ts_value, (int, float)):
            return None
        seconds = raw.get("seconds", 0.0)
        try:
            seconds_value = float(seconds)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            seconds_value = 0.0
        key = raw.get("correlationKey", raw.get("correlation_key"))
        return JobPoint(
            ts_ms=int(ts_value),
            seconds=seconds_value,
            correlation_key=key if isinstance(key, str) else None,
        )
    return None


def _migrate_points(raw: object) -> list[JobPoint]:
    if not isinstance(raw, list):
        return []
    points = (migrate_point(item) for item in raw)
    return [point for point in points if point is not None]


@dataclass
class OutcomeBucket:
    """Success and failure points observed inside one window."""

    success: list[JobPoint] = field(default_factory=list)
    failed: list[JobPoint] = field(default_factory=list)

    def points_for(self, status: OutcomeStatus) -> list[JobPoint]:
        return self.success if status is OutcomeStatus.SUCCESS else self.failed

    def clear(self) -> None:
        self.success = []
        self.failed = []

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": [point.to_dict() for point in self.success],
            "failed": [point.to_dict() for point in self.failed],
        }

    @classmethod
    def from_dict(cls, data: object) -> "OutcomeBucket":
        if not isinstance(data, Mapping):
            return cls()
        return cls(
            success=_migrate_points(data.get("success")),
            failed=_migrate_points(data.get("failed")),
        )


@dataclass
class LifetimeTotals:
    success_count: int = 0
    failed_count: int = 0
    success_seconds: float = 0.0
    failed_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "successSeconds": self.success_seconds,
            "failedSeconds": self.failed_seconds,
        }

    @classmethod
    def from_dict(cls, data: object) -> "LifetimeTotals":
        if not isinstance(data, Mapping):
            return cls()

        def _number(name: str, cast: Callable[[Any], Any], default: Any) -> Any:
            try:
                return cast(data.get(name, default))
            except (TypeError, ValueError):
                return default

        return cls(
            success_count=_number("successCount", int, 0),
            failed_count=_number("failedCount", int, 0),
            success_seconds=_number("successSeconds", float, 0.0),
            failed_seconds=_number("failedSeconds", float, 0.0),
        )


@dataclass
class StatsState:
    """Mutable aggregate state persisted between runs."""

    lifetime: LifetimeTotals = field(default_factory=LifetimeTotals)
    daily: OutcomeBucket = field(default_factory=OutcomeBucket)
    epoch: OutcomeBucket = field(default_factory=OutcomeBucket)
    epoch_id: str | None = None
    last_outcome_timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        epoch = self.epoch.to_dict()
        epoch["id"] = self.epoch_id
        return {
            "lifetime": self.lifetime.to_dict(),
            "daily": self.daily.to_dict(),
            "epoch": epoch,
            "lastOutcomeTimestamp": self.last_outcome_timestamp,
        }

    @classmethod
    def from_dict(cls, data: object) -> "StatsState":
        """Rebuild state from its persisted form, migrating legacy shapes."""

        if not isinstance(data, Mapping):
            return cls()
        lifetime = LifetimeTotals.from_dict(data.get("lifetime"))
        last_outcome = data.get("lastOutcomeTimestamp")

        # Legacy blobs only kept frame counters.
        legacy = data.get("lifetimeFrames")
        if "lifetime" not in data and isinstance(legacy, Mapping):
            lifetime = LifetimeTotals(
                success_count=_as_int(legacy.get("successful")),
                failed_count=_as_int(legacy.get("failed")),
            )
        if last_outcome is None:
            last_outcome = data.get("lastFrameTime")

        epoch_data = data.get("epoch")
        epoch_id = epoch_data.get("id") if isinstance(epoch_data, Mapping) else None
        return cls(
            lifetime=lifetime,
            daily=OutcomeBucket.from_dict(data.get("daily")),
            epoch=OutcomeBucket.from_dict(epoch_data),
            epoch_id=epoch_id if isinstance(epoch_id, str) else None,
            last_outcome_timestamp=(
                last_outcome if isinstance(last_outcome, str) else None
            ),
        )


def _as_int(value: object) -> int:
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return 0


def timestamp_ms(value: str | None) -> int | None:
    """Parse a stored outcome timestamp back into epoch milliseconds."""

    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return int(parsed.timestamp() * 1000)


def roll_epoch(state: StatsState, at_ms: int) -> bool:
    """Reset the epoch bucket when ``at_ms`` lies in a new epoch.

    The previous epoch is taken from ``last_outcome_timestamp``, so rollover
    happens exactly once per boundary crossing and is driven by log data, not
    by a timer. Returns ``True`` when the bucket was reset.
    """

    window = epoch_start(at_ms)
    previous_ms = timestamp_ms(state.last_outcome_timestamp)
    if previous_ms is None:
        if state.epoch_id is None:
            state.epoch_id = window.id
        return False
    if epoch_start(previous_ms).id == window.id:
        if state.epoch_id is None:
            state.epoch_id = window.id
        return False
    state.epoch.clear()
    state.epoch_id = window.id
    return True


def apply_outcome(state: StatsState, outcome: JobOutcome, *, now_ms: int) -> None:
    """Fold ``outcome`` into ``state``."""

    lifetime = state.lifetime
    if outcome.status is OutcomeStatus.SUCCESS:
        lifetime.success_count += 1
        lifetime.success_seconds += outcome.inferred_seconds
    else:
        lifetime.failed_count += 1
        lifetime.failed_seconds += outcome.inferred_seconds

    roll_epoch(state, outcome.ended_at_ms)

    point = JobPoint(
        ts_ms=outcome.ended_at_ms,
        seconds=outcome.inferred_seconds,
        correlation_key=outcome.correlation_key,
    )
    if outcome.ended_at_ms > now_ms - DAY_MS:
        state.daily.points_for(outcome.status).append(point)
    current = epoch_start(now_ms)
    if current.contains(outcome.ended_at_ms):
        state.epoch.points_for(outcome.status).append(point)
    elif not state.epoch.success and not state.epoch.failed:
        # An empty bucket carries the epoch it is collecting for.
        state.epoch_id = current.id
    state.last_outcome_timestamp = outcome.iso_utc


def prune(state: StatsState, now_ms: int) -> int:
    """Drop daily points that left the trailing 24h window.

    The epoch bucket is only emptied on rollover. Returns the number of points
    removed; calling it again without time passing removes nothing.
    """

    cutoff = now_ms - DAY_MS
    removed = 0
    for status in OutcomeStatus:
        points = state.daily.points_for(status)
        kept = [point for point in points if point.ts_ms > cutoff]
        removed += len(points) - len(kept)
        if status is OutcomeStatus.SUCCESS:
            state.daily.success = kept
        else:
            state.daily.failed = kept
    return removed


@dataclass(frozen=True)
class BucketSnapshot:
    """Read-only view of one windowed bucket."""

    success_count: int
    failed_count: int
    success_seconds: float
    failed_seconds: float
    success: tuple[JobPoint, ...]
    failed: tuple[JobPoint, ...]
    window: EpochWindow | None = None

    @property
    def total_count(self) -> int:
        return self.success_count + self.failed_count

    @classmethod
    def from_bucket(
        cls, bucket: OutcomeBucket, *, window: EpochWindow | None = None
    ) -> "BucketSnapshot":
        success = tuple(bucket.success)
        failed = tuple(bucket.failed)
        return cls(
            success_count=len(success),
            failed_count=len(failed),
            success_seconds=sum(point.seconds for point in success),
            failed_seconds=sum(point.seconds for point in failed),
            success=success,
            failed=failed,
            window=window,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "successSeconds": self.success_seconds,
            "failedSeconds": self.failed_seconds,
            "success": [point.to_dict() for point in self.success],
            "failed": [point.to_dict() for point in self.failed],
        }
        if self.window is not None:
            data["id"] = self.window.id
            data["startMs"] = self.window.start_ms
            data["endMs"] = self.window.end_ms
        return data


@dataclass(frozen=True)
class DisplayStats:
    """Snapshot handed to display and API consumers."""

    lifetime: LifetimeTotals
    daily: BucketSnapshot
    epoch: BucketSnapshot
    last_outcome_timestamp: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lifetime": self.lifetime.to_dict(),
            "daily": self.daily.to_dict(),
            "epoch": self.epoch.to_dict(),
            "lastOutcomeTimestamp": self.last_outcome_timestamp,
        }


def snapshot(state: StatsState) -> DisplayStats:
    """Return a side-effect free view of ``state``."""

    window: EpochWindow | None = None
    if state.epoch_id is not None:
        try:
            window = epoch_for_id(state.epoch_id)
        except ValueError:
            window = None
    lifetime = state.lifetime
    return DisplayStats(
        lifetime=LifetimeTotals(
            success_count=lifetime.success_count,
            failed_count=lifetime.failed_count,
            success_seconds=lifetime.success_seconds,
            failed_seconds=lifetime.failed_seconds,
        ),
        daily=BucketSnapshot.from_bucket(state.daily),
        epoch=BucketSnapshot.from_bucket(state.epoch, window=window),
        last_outcome_timestamp=state.last_outcome_timestamp,
    )


class StatsAggregator:
    """Bind a :class:`StatsState` to a clock for the live pipeline."""

    def __init__(
        self,
        state: StatsState | None = None,
        *,
        clock: Callable[[], int] = current_time_ms,
    ) -> None:
        self.state = state if state is not None else StatsState()
        self._clock = clock

    def now_ms(self) -> int:
        return self._clock()

    def apply_outcome(self, outcome: JobOutcome) -> None:
        apply_outcome(self.state, outcome, now_ms=self._clock())

    def apply_outcomes(self, outcomes: Iterable[JobOutcome]) -> None:
        for outcome in outcomes:
            self.apply_outcome(outcome)

    def prune(self, now_ms: int | None = None) -> int:
        return prune(self.state, self._clock() if now_ms is None else now_ms)

    def snapshot(self) -> DisplayStats:
        return snapshot(self.state)

    def reset(self) -> None:
        self.state = StatsState()


__all__ = [
    "BucketSnapshot",
    "DAY_MS",
    "DisplayStats",
    "JobPoint",
    "LifetimeTotals",
    "OutcomeBucket",
    "StatsAggregator",
    "StatsState",
    "apply_outcome",
    "current_time_ms",
    "migrate_point",
    "prune",
    "roll_epoch",
    "snapshot",
]
