"""CSV export of the successful jobs of one epoch."""

from __future__ import annotations

import csv
import io
import os
from datetime import tzinfo
from pathlib import Path
from typing import Iterable, Sequence

import structlog

from .aggregator import JobPoint
from .epoch import epoch_report_filename, ms_to_datetime
from .parser import TIMESTAMP_FORMAT

logger = structlog.get_logger(__name__)

REPORT_HEADER = ("Timestamp", "RenderTime(s)")


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


def export_epoch(
    epoch_id: str, points: Sequence[JobPoint], tz: tzinfo | None = None
) -> str | None:
    """Return the CSV report for ``points`` or ``None`` when there are none.

    Rows keep the order of ``points``; timestamps are written in ``tz`` (local
    time when omitted) using the same layout as the render log.
    """

    if not points:
        return None
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(REPORT_HEADER)
    for point in points:
        when = ms_to_datetime(point.ts_ms).astimezone(tz)
        writer.writerow([when.strftime(TIMESTAMP_FORMAT), _format_seconds(point.seconds)])
    logger.debug("render_log.report.exported", epoch=epoch_id, rows=len(points))
    return buffer.getvalue()


def write_epoch_report(
    directory: os.PathLike[str] | str,
    epoch_id: str,
    points: Iterable[JobPoint],
    tz: tzinfo | None = None,
) -> Path | None:
    """Write the epoch report into ``directory``; empty epochs write nothing."""

    content = export_epoch(epoch_id, list(points), tz)
    if content is None:
        logger.info("render_log.report.skipped_empty", epoch=epoch_id)
        return None
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / epoch_report_filename(epoch_id)
    target.write_text(content, encoding="utf-8")
    logger.info("render_log.report.written", epoch=epoch_id, path=str(target))
    return target


__all__ = ["REPORT_HEADER", "export_epoch", "write_epoch_report"]
