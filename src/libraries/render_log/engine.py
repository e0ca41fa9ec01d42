"""Line pipeline feeding parsed events through the correlator into the stats."""

from __future__ import annotations

from collections import deque
from datetime import tzinfo
from typing import Callable, Iterable

import structlog

from .aggregator import DisplayStats, StatsAggregator, StatsState, current_time_ms
from .correlator import JobCorrelator, JobOutcome
from .parser import LogEvent, LogEventParser, LogLine

logger = structlog.get_logger(__name__)

DEFAULT_RECENT_LINES = 25


class RenderStatsEngine:
    """Apply render log lines to a :class:`StatsState`.

    The engine owns the correlator and a short history of recent lines; the
    statistics themselves live in the state value it is given, which callers
    persist.
    """

    def __init__(
        self,
        state: StatsState | None = None,
        *,
        tz: tzinfo | None = None,
        clock: Callable[[], int] = current_time_ms,
        recent_lines: int = DEFAULT_RECENT_LINES,
    ) -> None:
        self.parser = LogEventParser(tz)
        self.correlator = JobCorrelator()
        self.aggregator = StatsAggregator(state, clock=clock)
        self._recent: deque[str] = deque(maxlen=max(recent_lines, 0))
        self.failed_lines = 0

    @property
    def state(self) -> StatsState:
        return self.aggregator.state

    def recent_lines(self) -> list[str]:
        return list(self._recent)

    def feed_line(self, raw: str) -> JobOutcome | None:
        """Process one raw line and return the outcome it produced, if any."""

        parsed = self.parser.parse(raw)
        if parsed is None:
            return None
        self._recent.append(parsed.raw)
        return self.apply(parsed)

    def feed_lines(self, lines: Iterable[str]) -> list[JobOutcome]:
        """Process ``lines``; a failing line is logged and skipped."""

        outcomes: list[JobOutcome] = []
        for raw in lines:
            try:
                outcome = self.feed_line(raw)
            except Exception as exc:  # pragma: no cover - defensive guard
                self.failed_lines += 1
                logger.warning(
                    "render_log.engine.line_failed", line=raw[:200], error=str(exc)
                )
                continue
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def apply(self, line: LogLine) -> JobOutcome | None:
        if line.event is LogEvent.JOB_STARTED:
            self.correlator.on_start(line.config_hash, line.at_ms)
            return None
        if line.event is LogEvent.JOB_SUCCEEDED:
            outcome = self.correlator.on_success(
                line.config_hash, line.at_ms, line.render_seconds
            )
        elif line.event is LogEvent.JOB_FAILED:
            outcome = self.correlator.on_failure(line.config_hash, line.at_ms)
        else:
            return None
        self.aggregator.apply_outcome(outcome)
        return outcome

    def prune(self, now_ms: int | None = None) -> int:
        return self.aggregator.prune(now_ms)

    def snapshot(self) -> DisplayStats:
        return self.aggregator.snapshot()

    def adopt_state(self, state: StatsState) -> None:
        """Continue from previously persisted statistics."""

        self.aggregator.state = state

    def reset(self) -> None:
        """Forget all statistics, open starts and recent lines."""

        self.aggregator.reset()
        self.correlator = JobCorrelator()
        self._recent.clear()

    def diagnostics(self) -> dict[str, int]:
        return {
            "rejectedLines": self.parser.rejected,
            "failedLines": self.failed_lines,
            "pendingStarts": len(self.correlator),
            "unmatchedOutcomes": self.correlator.unmatched_outcomes,
            "evictedStarts": self.correlator.evicted_starts,
        }


__all__ = ["DEFAULT_RECENT_LINES", "RenderStatsEngine"]
