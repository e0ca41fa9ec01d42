"""Pydantic response models served by the Nami status API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from libraries.render_log.aggregator import (
    BucketSnapshot,
    DisplayStats,
    JobPoint,
    LifetimeTotals,
)


class JobPointView(BaseModel):
    """One job outcome within a windowed bucket."""

    ts_ms: int = Field(..., alias="tsMs")
    seconds: float
    correlation_key: str | None = Field(None, alias="correlationKey")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entity(cls, point: JobPoint) -> "JobPointView":
        return cls(
            ts_ms=point.ts_ms,
            seconds=point.seconds,
            correlation_key=point.correlation_key,
        )


class LifetimeView(BaseModel):
    """Unbounded outcome counters."""

    success_count: int = Field(..., alias="successCount")
    failed_count: int = Field(..., alias="failedCount")
    success_seconds: float = Field(..., alias="successSeconds")
    failed_seconds: float = Field(..., alias="failedSeconds")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entity(cls, totals: LifetimeTotals) -> "LifetimeView":
        return cls(
            success_count=totals.success_count,
            failed_count=totals.failed_count,
            success_seconds=totals.success_seconds,
            failed_seconds=totals.failed_seconds,
        )


class BucketView(BaseModel):
    """Counts, summed seconds and points of the daily or epoch window."""

    success_count: int = Field(..., alias="successCount")
    failed_count: int = Field(..., alias="failedCount")
    success_seconds: float = Field(..., alias="successSeconds")
    failed_seconds: float = Field(..., alias="failedSeconds")
    success: list[JobPointView] = Field(default_factory=list)
    failed: list[JobPointView] = Field(default_factory=list)
    epoch_id: str | None = Field(None, alias="id")
    start_ms: int | None = Field(None, alias="startMs")
    end_ms: int | None = Field(None, alias="endMs")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entity(cls, bucket: BucketSnapshot) -> "BucketView":
        window = bucket.window
        return cls(
            success_count=bucket.success_count,
            failed_count=bucket.failed_count,
            success_seconds=bucket.success_seconds,
            failed_seconds=bucket.failed_seconds,
            success=[JobPointView.from_entity(point) for point in bucket.success],
            failed=[JobPointView.from_entity(point) for point in bucket.failed],
            epoch_id=window.id if window is not None else None,
            start_ms=window.start_ms if window is not None else None,
            end_ms=window.end_ms if window is not None else None,
        )


class StatsView(BaseModel):
    """Display snapshot of the render statistics."""

    lifetime: LifetimeView
    daily: BucketView
    epoch: BucketView
    last_outcome_timestamp: str | None = Field(None, alias="lastOutcomeTimestamp")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entity(cls, stats: DisplayStats) -> "StatsView":
        return cls(
            lifetime=LifetimeView.from_entity(stats.lifetime),
            daily=BucketView.from_entity(stats.daily),
            epoch=BucketView.from_entity(stats.epoch),
            last_outcome_timestamp=stats.last_outcome_timestamp,
        )


class StatusResponse(BaseModel):
    """Payload of ``GET /api/status``."""

    hostname: str
    log_available: bool = Field(..., alias="logAvailable")
    log_path: str = Field(..., alias="logPath")
    last_error: str | None = Field(None, alias="lastError")
    stats: StatsView
    recent_logs: list[str] = Field(default_factory=list, alias="recentLogs")
    last_update: datetime | None = Field(None, alias="lastUpdate")
    diagnostics: dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """Payload of ``GET /health``."""

    status: str
    version: str
    log_available: bool = Field(..., alias="logAvailable")

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "BucketView",
    "HealthResponse",
    "JobPointView",
    "LifetimeView",
    "StatsView",
    "StatusResponse",
]
