"""Pair "job started" lines with the success or failure lines that end them.

The render client does not tag its outcome lines with a job identifier, so the
configuration hash is used as a correlation key. A hash can be reused by
sequential jobs; the most recent still-open start for a key is assumed to
belong to the most recent outcome. That tie-break can mis-pair interleaved
jobs that share a hash and is kept deliberately.

An outcome without a hash only pairs with starts that had no hash either.
The offline analyzer in :mod:`.batch` instead gives such an outcome to the job
whose milestones it is tracking, so durations for hashless lines can differ
between live statistics and reports.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from .epoch import ms_to_datetime

HOUR_MS = 60 * 60 * 1000

PAIRING_WINDOW_MS = 12 * HOUR_MS
PENDING_RETENTION_MS = 24 * HOUR_MS
MAX_PENDING_STARTS = 5000
MAX_JOB_SECONDS = 6 * 60 * 60


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(slots=True, eq=False)
class PendingStart:
    """A start line that has not been matched to an outcome yet."""

    correlation_key: str | None
    started_at_ms: int
    consumed: bool = field(default=False, repr=False)


@dataclass(frozen=True)
class JobOutcome:
    """Terminal result for a job together with its inferred duration."""

    correlation_key: str | None
    started_at_ms: int | None
    ended_at_ms: int
    status: OutcomeStatus
    reported_seconds: float | None
    inferred_seconds: float

    @property
    def timestamp_utc_ms(self) -> int:
        return self.ended_at_ms

    @property
    def iso_utc(self) -> str:
        return ms_to_datetime(self.ended_at_ms).isoformat().replace("+00:00", "Z")

    @property
    def matched(self) -> bool:
        return self.started_at_ms is not None


def infer_seconds(
    started_at_ms: int | None, ended_at_ms: int, reported_seconds: float | None
) -> float:
    """Choose the duration recorded for an outcome.

    An explicit reported duration wins over the wall-clock delta. Values that
    are negative or longer than :data:`MAX_JOB_SECONDS` are treated as unknown
    and recorded as ``0``.
    """

    if reported_seconds is not None:
        seconds = float(reported_seconds)
    elif started_at_ms is not None:
        seconds = max(0.0, (ended_at_ms - started_at_ms) / 1000)
    else:
        seconds = 0.0
    if seconds < 0 or seconds > MAX_JOB_SECONDS:
        return 0.0
    return seconds


class JobCorrelator:
    """Bounded matcher between start lines and outcome lines.

    ``_pending`` holds every start in arrival order (oldest first); matched
    entries are flagged as consumed and dropped lazily when they reach the
    front. ``_by_key`` indexes the open starts of each key in arrival order
    so that the newest-first search does not walk the whole sequence.
    """

    def __init__(
        self,
        *,
        pairing_window_ms: int = PAIRING_WINDOW_MS,
        retention_ms: int = PENDING_RETENTION_MS,
        max_pending: int = MAX_PENDING_STARTS,
    ) -> None:
        self.pairing_window_ms = pairing_window_ms
        self.retention_ms = retention_ms
        self.max_pending = max_pending
        self._pending: deque[PendingStart] = deque()
        self._by_key: dict[str | None, list[PendingStart]] = {}
        self._open = 0
        self.unmatched_outcomes = 0
        self.evicted_starts = 0

    def __len__(self) -> int:
        return self._open

    def pending(self) -> list[PendingStart]:
        """Return the open starts, oldest first."""

        return [entry for entry in self._pending if not entry.consumed]

    def on_start(self, key: str | None, at_ms: int) -> None:
        entry = PendingStart(correlation_key=key, started_at_ms=at_ms)
        self._pending.append(entry)
        self._by_key.setdefault(key, []).append(entry)
        self._open += 1
        self._evict(at_ms)

    def on_success(
        self, key: str | None, at_ms: int, explicit_seconds: float | None = None
    ) -> JobOutcome:
        return self._resolve(key, at_ms, OutcomeStatus.SUCCESS, explicit_seconds)

    def on_failure(self, key: str | None, at_ms: int) -> JobOutcome:
        # Failure lines never carry a render time.
        return self._resolve(key, at_ms, OutcomeStatus.FAILED, None)

    def _resolve(
        self,
        key: str | None,
        at_ms: int,
        status: OutcomeStatus,
        reported_seconds: float | None,
    ) -> JobOutcome:
        start = self._take_latest(key, at_ms)
        if start is None:
            self.unmatched_outcomes += 1
        started_at_ms = start.started_at_ms if start is not None else None
        outcome = JobOutcome(
            correlation_key=key,
            started_at_ms=started_at_ms,
            ended_at_ms=at_ms,
            status=status,
            reported_seconds=reported_seconds,
            inferred_seconds=infer_seconds(started_at_ms, at_ms, reported_seconds),
        )
        self._evict(at_ms)
        return outcome

    def _take_latest(self, key: str | None, at_ms: int) -> PendingStart | None:
        candidates = self._by_key.get(key)
        if not candidates:
            return None
        for index in range(len(candidates) - 1, -1, -1):
            entry = candidates[index]
            age = at_ms - entry.started_at_ms
            if 0 <= age <= self.pairing_window_ms:
                del candidates[index]
                if not candidates:
                    del self._by_key[key]
                entry.consumed = True
                self._open -= 1
                return entry
        return None

    def _evict(self, now_ms: int) -> None:
        cutoff = now_ms - self.retention_ms
        while self._pending:
            head = self._pending[0]
            if head.consumed:
                self._pending.popleft()
                continue
            if head.started_at_ms < cutoff or self._open > self.max_pending:
                self._pending.popleft()
                self._drop_from_index(head)
                self.evicted_starts += 1
                continue
            break

    def _drop_from_index(self, entry: PendingStart) -> None:
        entry.consumed = True
        self._open -= 1
        candidates = self._by_key.get(entry.correlation_key)
        if not candidates:
            return
        # The evicted entry is the oldest open start, hence first for its key.
        if candidates[0] is entry:
            candidates.pop(0)
        else:
            candidates.remove(entry)
        if not candidates:
            del self._by_key[entry.correlation_key]


__all__ = [
    "JobCorrelator",
    "JobOutcome",
    "MAX_JOB_SECONDS",
    "MAX_PENDING_STARTS",
    "OutcomeStatus",
    "PAIRING_WINDOW_MS",
    "PENDING_RETENTION_MS",
    "PendingStart",
    "infer_seconds",
]
