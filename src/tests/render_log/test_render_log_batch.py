from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from libraries.render_log.batch import BatchAnalyzer, JobStatus, analyze_log
from libraries.render_log.errors import LogFileNotFoundError

UTC = timezone.utc


@pytest.fixture()
def lifecycle(log_line: Callable[..., str]) -> Callable[..., list[str]]:
    """Full milestone sequence for one job starting at ``start``."""

    def _lines(start: datetime, config_hash: str = "abc123") -> list[str]:
        def at(seconds: int, message: str) -> str:
            return log_line(start + timedelta(seconds=seconds), message)

        return [
            at(0, f"starting a new render job with config hash: {config_hash}"),
            at(1, "initializing system assets"),
            at(4, "system assets initialized"),
            at(5, "initializing octane core"),
            at(7, "core initialized"),
            at(10, "scene loaded"),
            at(12, "render settings loaded"),
            at(13, "output info determined"),
            at(15, "render started"),
            at(57, "sent render finished, job completed successfully "
                   f"(render time 40.0 seconds) config hash: {config_hash}"),
        ]

    return _lines


def test_job_lifecycle_timings(now: datetime, lifecycle) -> None:
    analyzer = BatchAnalyzer(UTC)

    analyzer.feed_lines(lifecycle(now))
    report = analyzer.report()

    assert len(report.jobs) == 1
    job = report.jobs[0]
    assert job.status is JobStatus.SUCCESS
    assert job.reported_seconds == 40.0
    assert job.wall_seconds == 42.0
    assert job.overhead_seconds == 2.0
    assert job.first_pixel_anchor == "output_info_ms"
    assert job.time_to_first_pixel == 2.0
    assert job.asset_init_seconds == 3.0
    assert job.core_init_seconds == 2.0


def test_first_pixel_falls_back_to_job_start(now: datetime, log_line) -> None:
    analyzer = BatchAnalyzer(UTC)
    analyzer.feed_lines(
        [
            log_line(now, "starting a new render job with config hash: k1"),
            log_line(now + timedelta(seconds=9), "render started"),
            log_line(now + timedelta(seconds=30), "job failed, config hash: k1"),
        ]
    )

    job = analyzer.report().jobs[0]

    assert job.status is JobStatus.FAILED
    assert job.first_pixel_anchor == "started_at_ms"
    assert job.time_to_first_pixel == 9.0
    assert job.wall_seconds is None


def test_outcomes_attach_by_hash_and_count_unmatched(now: datetime, log_line) -> None:
    analyzer = BatchAnalyzer(UTC)
    analyzer.feed_lines(
        [
            log_line(now, "starting a new render job with config hash: aaa"),
            log_line(now + timedelta(seconds=1), "starting a new render job with config hash: bbb"),
            log_line(now + timedelta(seconds=20), "job failed, config hash: aaa"),
            log_line(now + timedelta(seconds=30), "job was cancelled"),
            log_line(now + timedelta(seconds=40), "job failed, config hash: ccc"),
        ]
    )

    report = analyzer.report()

    assert [job.status for job in report.jobs] == [JobStatus.FAILED, JobStatus.CANCELED]
    assert report.unmatched == {"success": 0, "failed": 1, "canceled": 0}
    assert report.failed_count == 2
    assert report.canceled_count == 1
    assert report.pending_count == 0


def test_per_hash_sorted_by_success(now: datetime, lifecycle) -> None:
    analyzer = BatchAnalyzer(UTC)
    analyzer.feed_lines(lifecycle(now, "one"))
    analyzer.feed_lines(lifecycle(now + timedelta(minutes=5), "two"))
    analyzer.feed_lines(lifecycle(now + timedelta(minutes=10), "two"))

    per_hash = analyzer.report().per_hash

    assert [item.config_hash for item in per_hash] == ["two", "one"]
    assert per_hash[0].success == 2
    assert per_hash[0].average_reported_seconds == 40.0
    assert per_hash[0].average_wall_seconds == 42.0


def test_epochs_are_listed_newest_first(lifecycle) -> None:
    older = datetime(2025, 8, 30, 12, tzinfo=UTC)
    newer = datetime(2025, 9, 4, 12, tzinfo=UTC)
    analyzer = BatchAnalyzer(UTC)
    analyzer.feed_lines(lifecycle(older))
    analyzer.feed_lines(lifecycle(newer))
    analyzer.feed_lines(lifecycle(newer + timedelta(hours=1)))

    epochs = analyzer.report().epochs

    assert [(item.id, item.frame_count) for item in epochs] == [
        ("2025-09-02", 2),
        ("2025-08-26", 1),
    ]
    assert epochs[0].label == "2025-09-02 - 2025-09-09"
    assert epochs[0].points[0].seconds == 40.0


def test_analyze_log_reports_progress(now: datetime, write_log, lifecycle) -> None:
    path = write_log(lifecycle(now))
    calls: list[tuple[int, int]] = []

    report = analyze_log(path, tz=UTC, progress=lambda done, total: calls.append((done, total)))

    assert report.success_count == 1
    assert report.lines == 10
    assert calls[-1] == (path.stat().st_size, path.stat().st_size)


def test_analyze_log_missing_file(tmp_path: Path) -> None:
    with pytest.raises(LogFileNotFoundError):
        analyze_log(tmp_path / "missing.txt")


def test_hashless_outcome_closes_the_current_job(now: datetime, log_line) -> None:
    analyzer = BatchAnalyzer(UTC)
    analyzer.feed_lines(
        [
            log_line(now, "starting a new render job with config hash: abc"),
            log_line(
                now + timedelta(seconds=30),
                "sent render finished, job completed successfully "
                "(render time 20.0 seconds)",
            ),
        ]
    )

    report = analyzer.report()

    assert [job.status for job in report.jobs] == [JobStatus.SUCCESS]
    assert report.jobs[0].reported_seconds == 20.0
    assert report.unmatched["success"] == 0
    assert report.pending_count == 0
