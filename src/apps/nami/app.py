"""Typer CLI entry points for the Nami render node monitor."""

import asyncio
import json
import logging
import os
import sys
from importlib import import_module
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog
import typer

from apps.nami.config import SETTINGS_PATH_ENV, NamiSettings, load_settings
from apps.nami.service import MonitorService
from apps.nami.utils.errors import (
    NamiConfigError,
    NamiError,
    NamiIOError,
    NamiValidationError,
)
from apps.nami.utils.progress import progress_tracker
from apps.nami.version import NAMI_VERSION
from libraries.render_log.aggregator import DisplayStats
from libraries.render_log.batch import BatchReport, analyze_log
from libraries.render_log.epoch import epoch_for_id
from libraries.render_log.errors import RenderLogError
from libraries.render_log.report import write_epoch_report

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8075


app = typer.Typer(
    name="nami",
    help=(
        "Render node log statistics. Use `nami analyze` for a one-off pass over a "
        "render log or `nami web serve` to run the live status API."
    ),
)
settings_app = typer.Typer(
    name="settings",
    help="Inspect the resolved Nami settings.",
    invoke_without_command=True,
)
web_app = typer.Typer(name="web", help="Web interface helpers for Nami.")
app.add_typer(settings_app)
app.add_typer(web_app)


def configure_logging(level: str) -> None:
    """Route structlog output to stderr, filtered at ``level``."""

    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level '{level}'.")
    logging.basicConfig(level=numeric, stream=sys.stderr, format="%(message)s")
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        "warning",
        "--log-level",
        help="Minimum level of diagnostic log output (debug, info, warning, error).",
        show_default=True,
    ),
) -> None:
    configure_logging(log_level)


def _load_uvicorn() -> Any:
    """Dynamically import uvicorn to keep it optional for non-web commands."""

    try:
        return import_module("uvicorn")
    except ImportError as exc:
        raise typer.BadParameter(
            "uvicorn is required for this command. Install it with "
            "`pip install nami[uvicorn]`."
        ) from exc


def _exit_with(exc: NamiError) -> typer.Exit:
    typer.secho(f"{exc.heading}: {exc}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=int(exc.exit_code))


def _check_format(output_format: str) -> str:
    fmt = str(output_format).lower()
    if fmt not in {"table", "json"}:
        raise typer.BadParameter("format must be either 'table' or 'json'.")
    return fmt


def _format_value(value: object) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:,.2f}"
    if isinstance(value, int):
        return f"{value:,}"
    return str(value)


def _format_rows(rows: Mapping[str, object]) -> list[str]:
    width = max(len(label) for label in rows)
    return [f"{label:<{width}} : {_format_value(value)}" for label, value in rows.items()]


def _validate_settings_path(settings_path: Path | None) -> Path | None:
    """Ensure an optional settings path exists and is readable."""

    if settings_path is None:
        return None

    resolved = settings_path.expanduser()
    if not resolved.exists():
        raise typer.BadParameter(f"Settings file '{resolved}' does not exist.")
    if not os.access(resolved, os.R_OK):
        raise typer.BadParameter(f"Settings file '{resolved}' is not readable.")

    return resolved


def _resolve_settings(settings_path: Path | None) -> NamiSettings:
    requested = _validate_settings_path(settings_path)
    result = load_settings(requested)
    for message in result.warnings:
        typer.secho(f"Warning: {message}", fg=typer.colors.YELLOW, err=True)
    if requested is not None and result.settings_path != requested:
        raise _exit_with(
            NamiConfigError(f"Settings file '{requested}' could not be loaded.")
        )
    return result.settings


def _run_analysis(
    log_path: Path, settings: NamiSettings, *, show_progress: bool
) -> BatchReport:
    try:
        if not show_progress:
            return analyze_log(log_path, tz=settings.tz)
        total = log_path.stat().st_size if log_path.is_file() else 0
        with progress_tracker(
            "Analysing render log",
            total=total,
            task_description=log_path.name,
        ) as handle:
            return analyze_log(log_path, tz=settings.tz, progress=handle.report)
    except RenderLogError as exc:
        raise _exit_with(NamiError.from_library(exc)) from exc
    except OSError as exc:
        raise _exit_with(
            NamiIOError(f"Unable to read render log '{log_path}': {exc}")
        ) from exc


def _format_report_table(report: BatchReport, *, include_jobs: bool) -> str:
    lines = _format_rows(
        {
            "Lines read": report.lines,
            "Rejected lines": report.rejected_lines,
            "Jobs started": len(report.jobs),
            "Successful": report.success_count,
            "Failed": report.failed_count,
            "Canceled": report.canceled_count,
            "Still pending": report.pending_count,
            "Unmatched outcomes": sum(report.unmatched.values()),
            "Reported render (s)": report.total_reported_seconds,
            "Wall render (s)": report.total_wall_seconds,
        }
    )
    if report.per_hash:
        lines.append("")
        header = "Per configuration hash"
        lines.extend([header, "-" * len(header)])
        for item in report.per_hash:
            lines.append(
                f"{item.config_hash or '(none)':<16} ok {item.success:>5}  "
                f"failed {item.failed:>4}  canceled {item.canceled:>4}  "
                f"avg reported {_format_value(item.average_reported_seconds)}s  "
                f"avg wall {_format_value(item.average_wall_seconds)}s"
            )
    if include_jobs and report.jobs:
        lines.append("")
        header = "Jobs"
        lines.extend([header, "-" * len(header)])
        for job in report.jobs:
            lines.append(
                f"#{job.index:<5} {job.status.value:<9} {job.config_hash or '(none)':<16} "
                f"reported {_format_value(job.reported_seconds)}  "
                f"wall {_format_value(job.wall_seconds)}  "
                f"overhead {_format_value(job.overhead_seconds)}  "
                f"first pixel {_format_value(job.time_to_first_pixel)}"
            )
    return "\n".join(lines)


def _format_stats_table(stats: DisplayStats) -> str:
    return "\n".join(
        _format_rows(
            {
                "Lifetime successful": stats.lifetime.success_count,
                "Lifetime failed": stats.lifetime.failed_count,
                "Lifetime render (s)": stats.lifetime.success_seconds,
                "Last 24h successful": stats.daily.success_count,
                "Last 24h failed": stats.daily.failed_count,
                "Last 24h render (s)": stats.daily.success_seconds,
                "Epoch": stats.epoch.window.label() if stats.epoch.window else None,
                "Epoch successful": stats.epoch.success_count,
                "Epoch failed": stats.epoch.failed_count,
                "Epoch render (s)": stats.epoch.success_seconds,
                "Last outcome": stats.last_outcome_timestamp,
            }
        )
    )


SETTINGS_OPTION = typer.Option(
    None,
    "--settings",
    help="Optional path to a Nami settings file.",
)
FORMAT_OPTION = typer.Option(
    "table",
    "--format",
    "-f",
    help="Output format (table or json).",
    case_sensitive=False,
)


@app.command("version")
def version() -> None:
    """Display the current Nami release version."""

    typer.echo(NAMI_VERSION)


@app.command("analyze")
def analyze(
    log_path: Path = typer.Argument(..., help="Render log file to analyse."),
    output_format: str = FORMAT_OPTION,
    jobs: bool = typer.Option(False, "--jobs", help="Include per-job timings."),
    progress: bool = typer.Option(
        True, "--progress/--no-progress", help="Show a progress bar on stderr."
    ),
    settings_path: Optional[Path] = SETTINGS_OPTION,
) -> None:
    """Run a full pass over a render log and summarise every job."""

    fmt = _check_format(output_format)
    settings = _resolve_settings(settings_path)
    report = _run_analysis(log_path, settings, show_progress=progress)
    if fmt == "json":
        typer.echo(json.dumps(report.to_dict(include_jobs=jobs), indent=2))
    else:
        typer.echo(_format_report_table(report, include_jobs=jobs))


@app.command("epochs")
def epochs(
    log_path: Path = typer.Argument(..., help="Render log file to analyse."),
    output_format: str = FORMAT_OPTION,
    progress: bool = typer.Option(True, "--progress/--no-progress"),
    settings_path: Optional[Path] = SETTINGS_OPTION,
) -> None:
    """List the epochs that contain successful jobs, newest first."""

    fmt = _check_format(output_format)
    settings = _resolve_settings(settings_path)
    report = _run_analysis(log_path, settings, show_progress=progress)
    if fmt == "json":
        typer.echo(json.dumps([item.to_dict() for item in report.epochs], indent=2))
        return
    if not report.epochs:
        typer.echo("No successful jobs with a reported render time were found.")
        return
    for item in report.epochs:
        typer.echo(f"{item.id}  {item.label:<25}  {item.frame_count:>6} frames")


@app.command("report")
def report(
    log_path: Path = typer.Argument(..., help="Render log file to analyse."),
    epoch_ids: Optional[list[str]] = typer.Option(
        None,
        "--epoch",
        "-e",
        help="Epoch id (its start date, YYYY-MM-DD). Repeat for several; defaults to all.",
    ),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", "-o", help="Directory for the CSV reports."
    ),
    progress: bool = typer.Option(True, "--progress/--no-progress"),
    settings_path: Optional[Path] = SETTINGS_OPTION,
) -> None:
    """Write one CSV report per epoch; epochs without jobs are skipped."""

    settings = _resolve_settings(settings_path)
    selected: list[str] = []
    for epoch_id in epoch_ids or []:
        try:
            selected.append(epoch_for_id(epoch_id).id)
        except ValueError as exc:
            raise _exit_with(
                NamiValidationError(f"'{epoch_id}' is not a valid epoch id (YYYY-MM-DD).")
            ) from exc

    batch = _run_analysis(log_path, settings, show_progress=progress)
    targets = selected or [item.id for item in batch.epochs]
    directory = output_dir or settings.reports_dir
    for epoch_id in targets:
        summary = batch.epoch(epoch_id)
        points = summary.points if summary is not None else ()
        try:
            written = write_epoch_report(directory, epoch_id, points, settings.tz)
        except OSError as exc:
            raise _exit_with(
                NamiIOError(f"Unable to write report for epoch {epoch_id}: {exc}")
            ) from exc
        if written is None:
            typer.echo(f"{epoch_id}: no successful jobs, skipped")
        else:
            typer.echo(f"{epoch_id}: {len(points)} jobs written to {written}")


def _start_monitor(settings: NamiSettings) -> MonitorService:
    service = MonitorService(settings)
    try:
        started = service.start()
    except RenderLogError as exc:
        raise _exit_with(NamiError.from_library(exc)) from exc
    if not started:
        raise _exit_with(
            NamiIOError(f"Render log '{settings.log_path}' was not found.")
        )
    return service


@app.command("stats")
def stats(
    output_format: str = FORMAT_OPTION,
    settings_path: Optional[Path] = SETTINGS_OPTION,
) -> None:
    """Catch up with the configured render log and print the statistics."""

    fmt = _check_format(output_format)
    service = _start_monitor(_resolve_settings(settings_path))
    current = service.engine.snapshot()
    if fmt == "json":
        typer.echo(json.dumps(current.to_dict(), indent=2))
    else:
        typer.echo(_format_stats_table(current))


@app.command("resync")
def resync(settings_path: Optional[Path] = SETTINGS_OPTION) -> None:
    """Discard persisted statistics and rebuild them from the whole log."""

    settings = _resolve_settings(settings_path)
    service = MonitorService(settings)
    try:
        result = service.resync()
    except RenderLogError as exc:
        raise _exit_with(NamiError.from_library(exc)) from exc
    typer.echo(
        f"Replayed {result.lines:,} lines ({len(result.outcomes):,} job outcomes) "
        f"from {settings.log_path}"
    )
    typer.echo(_format_stats_table(service.engine.snapshot()))


@app.command("watch")
def watch(
    duration: float = typer.Option(
        0.0,
        "--duration",
        min=0.0,
        help="Stop after this many seconds; 0 keeps watching until interrupted.",
    ),
    settings_path: Optional[Path] = SETTINGS_OPTION,
) -> None:
    """Follow the render log and print a summary whenever statistics change."""

    settings = _resolve_settings(settings_path)
    service = MonitorService(settings)

    def _print(current: DisplayStats) -> None:
        typer.echo(
            f"24h ok {current.daily.success_count} failed {current.daily.failed_count} | "
            f"epoch ok {current.epoch.success_count} failed {current.epoch.failed_count} | "
            f"lifetime ok {current.lifetime.success_count}"
        )

    service.add_listener(_print)

    async def _watch() -> None:
        service.start_background_tasks()
        try:
            if duration:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            await service.stop_background_tasks()

    typer.echo(f"Watching {settings.log_path} (Ctrl+C to stop)")
    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        typer.echo("Stopped.")


@settings_app.callback(invoke_without_command=True)
def settings(
    ctx: typer.Context,
    settings_path: Optional[Path] = SETTINGS_OPTION,
    output_format: str = FORMAT_OPTION,
) -> None:
    """Display the resolved Nami configuration values."""

    if ctx.invoked_subcommand is not None:
        return

    fmt = _check_format(output_format)
    result = load_settings(_validate_settings_path(settings_path))
    payload: dict[str, object] = dict(result.settings.to_dict())
    if result.settings_path is not None:
        payload["settings_path"] = str(result.settings_path)
    payload["warnings"] = list(result.warnings)

    if fmt == "json":
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    else:
        if result.settings_path is not None:
            typer.echo(f"Settings file: {result.settings_path}")
            typer.echo("")
        typer.echo("\n".join(_format_rows(result.settings.to_dict())))

    if result.warnings:
        typer.echo("")
        typer.echo("Warnings:")
        for message in result.warnings:
            typer.echo(f"- {message}")
        raise typer.Exit(code=1)


@web_app.command("serve")
def serve(
    host: str = typer.Option(
        DEFAULT_HOST,
        "--host",
        "-h",
        help="Host interface to bind the status API to.",
        show_default=True,
    ),
    port: int = typer.Option(
        DEFAULT_PORT,
        "--port",
        "-p",
        min=1,
        max=65535,
        help="Port to expose the status API on.",
        show_default=True,
    ),
    reload: bool = typer.Option(
        False,
        "--reload/--no-reload",
        help="Automatically reload when source files change.",
        show_default=True,
    ),
    log_level: str = typer.Option(
        "info",
        "--log-level",
        help="Log level passed to uvicorn.",
        show_default=True,
    ),
    settings_path: Optional[Path] = SETTINGS_OPTION,
) -> None:
    """Launch the Nami status API using uvicorn."""

    typer.echo(f"Starting Nami status API on http://{host}:{port}")
    uvicorn = _load_uvicorn()

    validated_settings_path = _validate_settings_path(settings_path)
    if validated_settings_path is not None:
        os.environ[SETTINGS_PATH_ENV] = str(validated_settings_path)
    else:
        os.environ.pop(SETTINGS_PATH_ENV, None)

    uvicorn.run(
        "apps.nami.web:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


__all__ = ["app", "configure_logging"]
