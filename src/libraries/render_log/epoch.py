"""Fixed-length accounting windows anchored to a global reference instant.

Epochs are seven day windows counted from :data:`EPOCH_ANCHOR`. They are
contiguous and independent of calendar weeks, so the boundary falls on the
same weekday and time of day (UTC) as the anchor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

EPOCH_ANCHOR = datetime(2025, 8, 26, 23, 17, 23, tzinfo=timezone.utc)
EPOCH_DURATION = timedelta(days=7)

EPOCH_ANCHOR_MS = int(EPOCH_ANCHOR.timestamp() * 1000)
EPOCH_DURATION_MS = int(EPOCH_DURATION.total_seconds() * 1000)

REPORT_FILENAME_TEMPLATE = "epoch-report-ending-{end}.csv"


def ms_to_datetime(value_ms: int) -> datetime:
    """Return an aware UTC datetime for epoch milliseconds."""

    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=value_ms)


@dataclass(frozen=True)
class EpochWindow:
    """A single epoch expressed in epoch milliseconds."""

    id: str
    start_ms: int
    end_ms: int

    @property
    def start(self) -> datetime:
        return ms_to_datetime(self.start_ms)

    @property
    def end(self) -> datetime:
        return ms_to_datetime(self.end_ms)

    def contains(self, at_ms: int) -> bool:
        return self.start_ms <= at_ms < self.end_ms

    def label(self) -> str:
        """Human readable ``start - last day`` label used by epoch listings."""

        last = ms_to_datetime(self.end_ms - 1)
        return f"{self.start.date().isoformat()} - {last.date().isoformat()}"


def _window(index: int) -> EpochWindow:
    start_ms = EPOCH_ANCHOR_MS + index * EPOCH_DURATION_MS
    return EpochWindow(
        id=ms_to_datetime(start_ms).date().isoformat(),
        start_ms=start_ms,
        end_ms=start_ms + EPOCH_DURATION_MS,
    )


def epoch_index(at_ms: int) -> int:
    """Return how many whole epochs separate ``at_ms`` from the anchor."""

    # Floor division keeps instants before the anchor in negative windows.
    return (int(at_ms) - EPOCH_ANCHOR_MS) // EPOCH_DURATION_MS


def epoch_start(at_ms: int) -> EpochWindow:
    """Return the epoch window containing ``at_ms``."""

    return _window(epoch_index(at_ms))


def next_epoch_start(at_ms: int) -> EpochWindow:
    """Return the window immediately after the one containing ``at_ms``."""

    return _window(epoch_index(at_ms) + 1)


def epoch_for_id(epoch_id: str) -> EpochWindow:
    """Resolve a window from its ISO date identifier.

    Raises :class:`ValueError` when ``epoch_id`` is not an ISO date.
    """

    day = date.fromisoformat(epoch_id)
    # Any instant on that date after the anchor's time of day lies in the
    # window that starts on it.
    moment = datetime.combine(day, EPOCH_ANCHOR.timetz()) + timedelta(seconds=1)
    return epoch_start(int(moment.timestamp() * 1000))


def epoch_report_filename(epoch_id: str) -> str:
    """Return the CSV file name for an epoch, derived from its end date."""

    end_day = date.fromisoformat(epoch_id) + EPOCH_DURATION
    return REPORT_FILENAME_TEMPLATE.format(end=end_day.isoformat())


__all__ = [
    "EPOCH_ANCHOR",
    "EPOCH_ANCHOR_MS",
    "EPOCH_DURATION",
    "EPOCH_DURATION_MS",
    "EpochWindow",
    "epoch_for_id",
    "epoch_index",
    "epoch_report_filename",
    "epoch_start",
    "ms_to_datetime",
    "next_epoch_start",
]
