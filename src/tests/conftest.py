"""Shared pytest fixtures for the render log and Nami tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
import structlog

# Inside the epoch that starts 2025-09-02 23:17:23 UTC.
NOW = datetime(2025, 9, 5, 12, 0, 0, tzinfo=timezone.utc)


def to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    structlog.reset_defaults()


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def clock() -> Callable[[], int]:
    return lambda: to_ms(NOW)


@pytest.fixture()
def log_line() -> Callable[..., str]:
    """Build a render client log line for ``when`` (UTC)."""

    def _line(
        when: datetime, message: str, *, level: str = "INFO", thread: int = 4120
    ) -> str:
        return f"{when:%Y-%m-%d %H:%M:%S} {level}: [{thread}] {message}"

    return _line


@pytest.fixture()
def job_lines(log_line: Callable[..., str]) -> Callable[..., list[str]]:
    """Return the start and success lines of one job."""

    def _job(
        start: datetime,
        *,
        config_hash: str = "abc123",
        wall_seconds: float = 42,
        render_seconds: float | None = 40.0,
    ) -> list[str]:
        end = start + timedelta(seconds=wall_seconds)
        suffix = (
            f" (render time {render_seconds} seconds)" if render_seconds is not None else ""
        )
        return [
            log_line(start, f"starting a new render job with config hash: {config_hash}"),
            log_line(
                end,
                f"sent render finished, job completed successfully{suffix} "
                f"config hash: {config_hash}",
            ),
        ]

    return _job


@pytest.fixture()
def write_log(tmp_path: Path) -> Callable[[list[str]], Path]:
    path = tmp_path / "rndr_log.txt"

    def _write(lines: list[str], *, append: bool = False) -> Path:
        text = "".join(f"{line}\n" for line in lines)
        with path.open("a" if append else "w", encoding="utf-8") as handle:
            handle.write(text)
        return path

    return _write
