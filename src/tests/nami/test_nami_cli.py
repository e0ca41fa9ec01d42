from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Callable
from unittest.mock import Mock

from typer.testing import CliRunner

from apps.nami.app import app
from apps.nami.utils.errors import ExitCode
from apps.nami.version import NAMI_VERSION

runner = CliRunner()


def _write_log(path: Path, lines: list[str]) -> Path:
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == NAMI_VERSION


def test_analyze_json_summary(
    tmp_path: Path, recent: datetime, local_job_lines: Callable[..., list[str]]
) -> None:
    log_path = _write_log(tmp_path / "rndr_log.txt", local_job_lines(recent))

    result = runner.invoke(
        app, ["analyze", str(log_path), "--format", "json", "--no-progress", "--jobs"]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["success"] == 1
    assert payload["totalReportedSeconds"] == 40.0
    assert payload["perHash"][0]["configHash"] == "abc123"
    assert payload["jobRecords"][0]["status"] == "success"


def test_analyze_table_summary(
    tmp_path: Path, recent: datetime, local_job_lines: Callable[..., list[str]]
) -> None:
    log_path = _write_log(tmp_path / "rndr_log.txt", local_job_lines(recent))

    result = runner.invoke(app, ["analyze", str(log_path), "--no-progress"])

    assert result.exit_code == 0, result.output
    assert "Successful" in result.stdout
    assert "abc123" in result.stdout


def test_analyze_missing_log_exits_with_io_code(tmp_path: Path) -> None:
    result = runner.invoke(app, ["analyze", str(tmp_path / "missing.txt"), "--no-progress"])

    assert result.exit_code == ExitCode.IO


def test_epochs_json_listing(
    tmp_path: Path, recent: datetime, local_job_lines: Callable[..., list[str]]
) -> None:
    log_path = _write_log(tmp_path / "rndr_log.txt", local_job_lines(recent))

    result = runner.invoke(app, ["epochs", str(log_path), "--format", "json", "--no-progress"])

    assert result.exit_code == 0, result.output
    listing = json.loads(result.stdout)
    assert len(listing) == 1
    assert listing[0]["frameCount"] == 1


def test_report_writes_csv_and_skips_empty_epochs(
    tmp_path: Path, recent: datetime, local_job_lines: Callable[..., list[str]]
) -> None:
    log_path = _write_log(tmp_path / "rndr_log.txt", local_job_lines(recent))
    output_dir = tmp_path / "reports"

    result = runner.invoke(
        app,
        ["report", str(log_path), "--output-dir", str(output_dir), "--no-progress"],
    )

    assert result.exit_code == 0, result.output
    reports = list(output_dir.glob("epoch-report-ending-*.csv"))
    assert len(reports) == 1
    assert reports[0].read_text(encoding="utf-8").splitlines()[0] == "Timestamp,RenderTime(s)"

    empty = runner.invoke(
        app,
        [
            "report",
            str(log_path),
            "--epoch",
            "2020-01-07",
            "--output-dir",
            str(tmp_path / "empty"),
            "--no-progress",
        ],
    )

    assert empty.exit_code == 0, empty.output
    assert "skipped" in empty.stdout
    assert not (tmp_path / "empty").exists()


def test_report_rejects_invalid_epoch(tmp_path: Path) -> None:
    log_path = _write_log(tmp_path / "rndr_log.txt", [])

    result = runner.invoke(app, ["report", str(log_path), "--epoch", "last-week"])

    assert result.exit_code == ExitCode.VALIDATION


def test_stats_catches_up_and_persists(
    tmp_path: Path,
    settings_file: Path,
    recent: datetime,
    local_job_lines: Callable[..., list[str]],
) -> None:
    _write_log(tmp_path / "rndr_log.txt", local_job_lines(recent))

    result = runner.invoke(app, ["stats", "--settings", str(settings_file), "--format", "json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["lifetime"]["successCount"] == 1
    assert payload["daily"]["successSeconds"] == 40.0
    assert (tmp_path / "state.json").exists()


def test_stats_missing_log_exits_with_io_code(settings_file: Path) -> None:
    result = runner.invoke(app, ["stats", "--settings", str(settings_file)])

    assert result.exit_code == ExitCode.IO


def test_unparseable_settings_file_exits_with_config_code(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    broken.write_text("log_path = [unterminated\n", encoding="utf-8")

    result = runner.invoke(app, ["stats", "--settings", str(broken)])

    assert result.exit_code == ExitCode.CONFIG
    assert "could not be loaded" in result.output


def test_resync_replays_log(
    tmp_path: Path,
    settings_file: Path,
    recent: datetime,
    local_job_lines: Callable[..., list[str]],
) -> None:
    _write_log(tmp_path / "rndr_log.txt", local_job_lines(recent))

    result = runner.invoke(app, ["resync", "--settings", str(settings_file)])

    assert result.exit_code == 0, result.output
    assert "Replayed 2 lines" in result.stdout


def test_settings_json_output(settings_file: Path, tmp_path: Path) -> None:
    result = runner.invoke(app, ["settings", "--settings", str(settings_file), "--format", "json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["log_path"] == str(tmp_path / "rndr_log.txt")
    assert payload["settings_path"] == str(settings_file)
    assert payload["warnings"] == []


def test_settings_warnings_exit_non_zero(tmp_path: Path) -> None:
    bad = tmp_path / "bad.toml"
    bad.write_text("recent_lines = -1\n", encoding="utf-8")

    result = runner.invoke(app, ["settings", "--settings", str(bad)])

    assert result.exit_code == 1
    assert "Warnings:" in result.stdout


def test_serve_command_invokes_uvicorn(mocker) -> None:
    uvicorn_mock = SimpleNamespace(run=Mock())
    mocker.patch("apps.nami.app._load_uvicorn", return_value=uvicorn_mock)

    result = runner.invoke(
        app,
        ["web", "serve", "--host", "0.0.0.0", "--port", "9100", "--log-level", "debug"],
    )

    assert result.exit_code == 0, result.output
    uvicorn_mock.run.assert_called_once_with(
        "apps.nami.web:app",
        host="0.0.0.0",
        port=9100,
        reload=False,
        log_level="debug",
    )
