"""Fixtures wiring Nami settings to temporary files."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
from _pytest.monkeypatch import MonkeyPatch

from apps.nami.config import NamiSettings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: MonkeyPatch, tmp_path: Path) -> None:
    for name in ("NAMI_SETTINGS_PATH", "NAMI_LOG_PATH", "NAMI_STATE_PATH", "NAMI_REPORTS_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


@pytest.fixture()
def recent() -> datetime:
    """A moment inside the live 24 hour window, truncated to whole seconds."""

    return (datetime.now(timezone.utc) - timedelta(hours=1)).replace(microsecond=0)


@pytest.fixture()
def local_job_lines() -> Callable[[datetime, str], list[str]]:
    """Start and success lines written in this machine's local time."""

    def _job(start: datetime, config_hash: str = "abc123") -> list[str]:
        local_start = start.astimezone()
        end = local_start + timedelta(seconds=42)
        return [
            f"{local_start:%Y-%m-%d %H:%M:%S} INFO: [4120] starting a new render job "
            f"with config hash: {config_hash}",
            f"{end:%Y-%m-%d %H:%M:%S} INFO: [4120] sent render finished, job completed "
            f"successfully (render time 40.0 seconds) config hash: {config_hash}",
        ]

    return _job


@pytest.fixture()
def settings_file(tmp_path: Path) -> Path:
    path = tmp_path / "nami.toml"
    path.write_text(
        f'log_path = "{(tmp_path / "rndr_log.txt").as_posix()}"\n'
        f'state_path = "{(tmp_path / "state.json").as_posix()}"\n'
        f'reports_dir = "{(tmp_path / "reports").as_posix()}"\n'
        "poll_interval_seconds = 0.05\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def settings(tmp_path: Path) -> NamiSettings:
    return NamiSettings(
        log_path=tmp_path / "rndr_log.txt",
        state_path=tmp_path / "state.json",
        reports_dir=tmp_path / "reports",
        poll_interval_seconds=0.05,
    )
