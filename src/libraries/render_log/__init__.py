"""Render node log parsing, job correlation and epoch statistics."""

from .aggregator import (
    BucketSnapshot,
    DisplayStats,
    JobPoint,
    LifetimeTotals,
    OutcomeBucket,
    StatsAggregator,
    StatsState,
    current_time_ms,
)
from .batch import BatchAnalyzer, BatchReport, EpochSummary, HashSummary, JobRecord, analyze_log
from .correlator import JobCorrelator, JobOutcome, OutcomeStatus
from .engine import RenderStatsEngine
from .epoch import EpochWindow, epoch_for_id, epoch_report_filename, epoch_start, next_epoch_start
from .errors import LogFileNotFoundError, LogReadError, RenderLogError, StateStoreError
from .parser import LogEvent, LogEventParser, LogLine, parse_line
from .report import export_epoch, write_epoch_report
from .state_store import PersistedState, StateStore
from .tailer import LogTailer, TailResult

__all__ = [
    "BatchAnalyzer",
    "BatchReport",
    "BucketSnapshot",
    "DisplayStats",
    "EpochSummary",
    "EpochWindow",
    "HashSummary",
    "JobCorrelator",
    "JobOutcome",
    "JobPoint",
    "JobRecord",
    "LifetimeTotals",
    "LogEvent",
    "LogEventParser",
    "LogFileNotFoundError",
    "LogReadError",
    "LogLine",
    "LogTailer",
    "OutcomeBucket",
    "OutcomeStatus",
    "PersistedState",
    "RenderLogError",
    "RenderStatsEngine",
    "StateStore",
    "StateStoreError",
    "StatsAggregator",
    "StatsState",
    "TailResult",
    "analyze_log",
    "current_time_ms",
    "epoch_for_id",
    "epoch_report_filename",
    "epoch_start",
    "export_epoch",
    "next_epoch_start",
    "parse_line",
    "write_epoch_report",
]
