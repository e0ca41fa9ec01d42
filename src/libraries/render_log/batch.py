"""One-shot analysis of a whole render log with per-job phase timings.

The live pipeline only needs outcomes and durations. For offline reporting the
analyzer rebuilds each job's lifecycle from the milestone lines the render
client writes between "starting a new render job" and the outcome: system
asset and core initialisation, scene and renderer loading, output info and
the render itself.

Milestones carry no hash, so they are stamped on the most recent pending job.
Outcomes attach to the newest pending job with the same configuration hash,
or to the most recent pending job when the line carries no hash. The live
correlator is stricter and pairs a hashless outcome only with a hashless
start, because it has no milestone context to go on.
"""

from __future__ import annotations

import os
from collections import Counter
from dataclasses import dataclass
from datetime import tzinfo
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable

from .aggregator import JobPoint
from .epoch import EpochWindow, epoch_start, ms_to_datetime
from .errors import LogFileNotFoundError
from .parser import LogEvent, LogEventParser, LogLine

ProgressCallback = Callable[[int, int], None]


class JobStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


_MILESTONE_FIELDS: dict[LogEvent, str] = {
    LogEvent.ASSETS_INIT_STARTED: "assets_init_started_ms",
    LogEvent.ASSETS_INIT_FINISHED: "assets_init_finished_ms",
    LogEvent.CORE_INIT_STARTED: "core_init_started_ms",
    LogEvent.CORE_INIT_FINISHED: "core_init_finished_ms",
    LogEvent.SCENE_LOADED: "scene_loaded_ms",
    LogEvent.RENDERER_LOADED: "renderer_loaded_ms",
    LogEvent.OUTPUT_INFO: "output_info_ms",
    LogEvent.RENDER_STARTED: "render_started_ms",
    LogEvent.RENDER_FINISHED: "render_finished_ms",
}

# Latest milestone first; the first one recorded before the render started
# anchors the time-to-first-pixel measurement.
_FIRST_PIXEL_ANCHORS = (
    "output_info_ms",
    "renderer_loaded_ms",
    "scene_loaded_ms",
    "core_init_finished_ms",
    "assets_init_finished_ms",
    "started_at_ms",
)


def _seconds_between(start_ms: int | None, end_ms: int | None) -> float | None:
    if start_ms is None or end_ms is None:
        return None
    return (end_ms - start_ms) / 1000


@dataclass
class JobRecord:
    """Lifecycle of one render job reconstructed from the log."""

    index: int
    config_hash: str | None
    started_at_ms: int
    status: JobStatus = JobStatus.PENDING
    ended_at_ms: int | None = None
    reported_seconds: float | None = None
    assets_init_started_ms: int | None = None
    assets_init_finished_ms: int | None = None
    core_init_started_ms: int | None = None
    core_init_finished_ms: int | None = None
    scene_loaded_ms: int | None = None
    renderer_loaded_ms: int | None = None
    output_info_ms: int | None = None
    render_started_ms: int | None = None
    render_finished_ms: int | None = None

    def stamp(self, event: LogEvent, at_ms: int) -> None:
        """Record a milestone; the first occurrence of each one wins."""

        name = _MILESTONE_FIELDS[event]
        if getattr(self, name) is None:
            setattr(self, name, at_ms)

    @property
    def wall_seconds(self) -> float | None:
        return _seconds_between(self.render_started_ms, self.render_finished_ms)

    @property
    def overhead_seconds(self) -> float | None:
        wall = self.wall_seconds
        if wall is None or self.reported_seconds is None:
            return None
        return wall - self.reported_seconds

    @property
    def first_pixel_anchor(self) -> str | None:
        if self.render_started_ms is None:
            return None
        for name in _FIRST_PIXEL_ANCHORS:
            value = getattr(self, name)
            if value is not None and value <= self.render_started_ms:
                return name
        return None

    @property
    def time_to_first_pixel(self) -> float | None:
        anchor = self.first_pixel_anchor
        if anchor is None:
            return None
        return _seconds_between(getattr(self, anchor), self.render_started_ms)

    @property
    def asset_init_seconds(self) -> float | None:
        return _seconds_between(self.assets_init_started_ms, self.assets_init_finished_ms)

    @property
    def core_init_seconds(self) -> float | None:
        return _seconds_between(self.core_init_started_ms, self.core_init_finished_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "configHash": self.config_hash,
            "status": self.status.value,
            "startedAt": ms_to_datetime(self.started_at_ms).isoformat(),
            "endedAt": (
                ms_to_datetime(self.ended_at_ms).isoformat()
                if self.ended_at_ms is not None
                else None
            ),
            "reportedSeconds": self.reported_seconds,
            "wallSeconds": self.wall_seconds,
            "overheadSeconds": self.overhead_seconds,
            "timeToFirstPixel": self.time_to_first_pixel,
            "firstPixelAnchor": self.first_pixel_anchor,
            "assetInitSeconds": self.asset_init_seconds,
            "coreInitSeconds": self.core_init_seconds,
        }


@dataclass(frozen=True)
class HashSummary:
    """Outcome aggregates for one configuration hash."""

    config_hash: str | None
    success: int
    failed: int
    canceled: int
    average_reported_seconds: float | None
    average_wall_seconds: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "configHash": self.config_hash,
            "success": self.success,
            "failed": self.failed,
            "canceled": self.canceled,
            "averageReportedSeconds": self.average_reported_seconds,
            "averageWallSeconds": self.average_wall_seconds,
        }


@dataclass
class _HashTally:
    success: int = 0
    failed: int = 0
    canceled: int = 0
    reported_total: float = 0.0
    reported_samples: int = 0
    wall_total: float = 0.0
    wall_samples: int = 0

    def summary(self, config_hash: str | None) -> HashSummary:
        return HashSummary(
            config_hash=config_hash,
            success=self.success,
            failed=self.failed,
            canceled=self.canceled,
            average_reported_seconds=(
                self.reported_total / self.reported_samples
                if self.reported_samples
                else None
            ),
            average_wall_seconds=(
                self.wall_total / self.wall_samples if self.wall_samples else None
            ),
        )


@dataclass(frozen=True)
class EpochSummary:
    """Successful jobs with a reported render time inside one epoch."""

    window: EpochWindow
    points: tuple[JobPoint, ...]

    @property
    def id(self) -> str:
        return self.window.id

    @property
    def label(self) -> str:
        return self.window.label()

    @property
    def frame_count(self) -> int:
        return len(self.points)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "frameCount": self.frame_count}


@dataclass(frozen=True)
class BatchReport:
    """Result of a full pass over a render log."""

    jobs: tuple[JobRecord, ...]
    lines: int
    rejected_lines: int
    unmatched: dict[str, int]
    per_hash: tuple[HashSummary, ...]
    epochs: tuple[EpochSummary, ...]
    total_reported_seconds: float = 0.0

    def _total(self, attribute: str) -> int:
        return sum(getattr(item, attribute) for item in self.per_hash)

    @property
    def success_count(self) -> int:
        return self._total("success")

    @property
    def failed_count(self) -> int:
        return self._total("failed")

    @property
    def canceled_count(self) -> int:
        return self._total("canceled")

    @property
    def pending_count(self) -> int:
        return sum(1 for job in self.jobs if job.status is JobStatus.PENDING)

    @property
    def total_wall_seconds(self) -> float:
        return sum(job.wall_seconds or 0.0 for job in self.jobs)

    def epoch(self, epoch_id: str) -> EpochSummary | None:
        for summary in self.epochs:
            if summary.id == epoch_id:
                return summary
        return None

    def to_dict(self, *, include_jobs: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "lines": self.lines,
            "rejectedLines": self.rejected_lines,
            "jobs": len(self.jobs),
            "success": self.success_count,
            "failed": self.failed_count,
            "canceled": self.canceled_count,
            "pending": self.pending_count,
            "unmatched": dict(self.unmatched),
            "totalReportedSeconds": self.total_reported_seconds,
            "totalWallSeconds": self.total_wall_seconds,
            "perHash": [item.to_dict() for item in self.per_hash],
            "epochs": [item.to_dict() for item in self.epochs],
        }
        if include_jobs:
            data["jobRecords"] = [job.to_dict() for job in self.jobs]
        return data


class BatchAnalyzer:
    """Stateful single pass over a render log."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self.parser = LogEventParser(tz)
        self.jobs: list[JobRecord] = []
        self.lines = 0
        self.unmatched: Counter[str] = Counter()
        self._current: JobRecord | None = None
        self._pending_by_hash: dict[str | None, list[JobRecord]] = {}
        self._tallies: dict[str | None, _HashTally] = {}
        self._epoch_points: dict[str, list[JobPoint]] = {}

    def feed_lines(self, lines: Iterable[str]) -> None:
        for raw in lines:
            self.feed_line(raw)

    def feed_line(self, raw: str) -> None:
        self.lines += 1
        line = self.parser.parse(raw)
        if line is None or line.event is None:
            return
        event = line.event
        if event is LogEvent.JOB_STARTED:
            self._start(line)
        elif event in _MILESTONE_FIELDS:
            if self._current is not None:
                self._current.stamp(event, line.at_ms)
        elif event is LogEvent.JOB_SUCCEEDED:
            self._finish(line, JobStatus.SUCCESS)
            if line.render_seconds is not None:
                self._record_epoch_point(line)
        elif event is LogEvent.JOB_FAILED:
            self._finish(line, JobStatus.FAILED)
        elif event is LogEvent.JOB_CANCELED:
            self._finish(line, JobStatus.CANCELED)

    def _start(self, line: LogLine) -> None:
        record = JobRecord(
            index=len(self.jobs),
            config_hash=line.config_hash,
            started_at_ms=line.at_ms,
        )
        self.jobs.append(record)
        self._pending_by_hash.setdefault(record.config_hash, []).append(record)
        self._current = record

    def _take_pending(self, config_hash: str | None) -> JobRecord | None:
        if config_hash is not None:
            candidates = self._pending_by_hash.get(config_hash)
            record = candidates[-1] if candidates else None
        else:
            record = self._current
        if record is None:
            return None
        bucket = self._pending_by_hash.get(record.config_hash, [])
        bucket.remove(record)
        if not bucket:
            self._pending_by_hash.pop(record.config_hash, None)
        if record is self._current:
            self._current = self._latest_pending()
        return record

    def _latest_pending(self) -> JobRecord | None:
        latest: JobRecord | None = None
        for records in self._pending_by_hash.values():
            if records and (latest is None or records[-1].index > latest.index):
                latest = records[-1]
        return latest

    def _finish(self, line: LogLine, status: JobStatus) -> None:
        record = self._take_pending(line.config_hash)
        key = line.config_hash
        if record is not None and key is None:
            # Hashless outcomes count towards the job they were matched with.
            key = record.config_hash
        tally = self._tallies.setdefault(key, _HashTally())
        if status is JobStatus.SUCCESS:
            tally.success += 1
            if line.render_seconds is not None:
                tally.reported_total += line.render_seconds
                tally.reported_samples += 1
        elif status is JobStatus.FAILED:
            tally.failed += 1
        else:
            tally.canceled += 1

        if record is None:
            self.unmatched[status.value] += 1
            return
        record.status = status
        record.ended_at_ms = line.at_ms
        if status is JobStatus.SUCCESS:
            record.reported_seconds = line.render_seconds
            if record.render_finished_ms is None and record.render_started_ms is not None:
                record.render_finished_ms = line.at_ms
            wall = record.wall_seconds
            if wall is not None:
                tally.wall_total += wall
                tally.wall_samples += 1

    def _record_epoch_point(self, line: LogLine) -> None:
        window = epoch_start(line.at_ms)
        self._epoch_points.setdefault(window.id, []).append(
            JobPoint(
                ts_ms=line.at_ms,
                seconds=float(line.render_seconds or 0.0),
                correlation_key=line.config_hash,
            )
        )

    def report(self) -> BatchReport:
        per_hash = sorted(
            (tally.summary(key) for key, tally in self._tallies.items()),
            key=lambda item: (-item.success, item.config_hash or ""),
        )
        epochs = sorted(
            (
                EpochSummary(window=epoch_start(points[0].ts_ms), points=tuple(points))
                for points in self._epoch_points.values()
            ),
            key=lambda item: item.window.start_ms,
            reverse=True,
        )
        return BatchReport(
            jobs=tuple(self.jobs),
            lines=self.lines,
            rejected_lines=self.parser.rejected,
            unmatched={status: self.unmatched[status] for status in ("success", "failed", "canceled")},
            per_hash=tuple(per_hash),
            epochs=tuple(epochs),
            total_reported_seconds=sum(
                tally.reported_total for tally in self._tallies.values()
            ),
        )


def analyze_log(
    path: os.PathLike[str] | str,
    *,
    tz: tzinfo | None = None,
    progress: ProgressCallback | None = None,
) -> BatchReport:
    """Run :class:`BatchAnalyzer` over the file at ``path``.

    ``progress`` receives ``(bytes_processed, total_bytes)`` after each line.
    Raises :class:`LogFileNotFoundError` for a missing file; other read
    errors propagate as :class:`OSError`.
    """

    log_path = Path(path)
    if not log_path.is_file():
        raise LogFileNotFoundError(log_path)
    total = log_path.stat().st_size
    analyzer = BatchAnalyzer(tz)
    processed = 0
    with log_path.open("rb") as handle:
        for raw in handle:
            processed += len(raw)
            analyzer.feed_line(raw.decode("utf-8", errors="replace"))
            if progress is not None:
                progress(processed, total)
    return analyzer.report()


__all__ = [
    "BatchAnalyzer",
    "BatchReport",
    "EpochSummary",
    "HashSummary",
    "JobRecord",
    "JobStatus",
    "analyze_log",
]
