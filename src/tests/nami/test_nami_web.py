from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

import pytest
from _pytest.monkeypatch import MonkeyPatch
from fastapi.testclient import TestClient

from apps.nami.version import NAMI_VERSION
from apps.nami.web import app, get_monitor_service


@pytest.fixture()
def client(settings_file: Path, monkeypatch: MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setenv("NAMI_SETTINGS_PATH", str(settings_file))
    get_monitor_service.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_monitor_service.cache_clear()


def test_status_reports_missing_log(client: TestClient) -> None:
    health = client.get("/health").json()
    response = client.get("/api/status")

    assert health == {"status": "ok", "version": NAMI_VERSION, "logAvailable": False}
    assert response.status_code == 200
    payload = response.json()
    assert payload["logAvailable"] is False
    assert payload["stats"]["lifetime"]["successCount"] == 0
    assert payload["recentLogs"] == []


def test_status_serves_live_statistics(
    tmp_path: Path,
    settings_file: Path,
    monkeypatch: MonkeyPatch,
    recent: datetime,
    local_job_lines: Callable[..., list[str]],
) -> None:
    (tmp_path / "rndr_log.txt").write_text(
        "".join(f"{line}\n" for line in local_job_lines(recent)), encoding="utf-8"
    )
    monkeypatch.setenv("NAMI_SETTINGS_PATH", str(settings_file))
    get_monitor_service.cache_clear()

    with TestClient(app) as client:
        payload = client.get("/api/status").json()

    get_monitor_service.cache_clear()
    assert payload["logAvailable"] is True
    assert payload["logPath"] == str(tmp_path / "rndr_log.txt")
    assert payload["stats"]["lifetime"]["successCount"] == 1
    assert payload["stats"]["daily"]["successSeconds"] == 40.0
    assert payload["stats"]["daily"]["success"][0]["correlationKey"] == "abc123"
    assert payload["stats"]["epoch"]["id"] is not None
    assert len(payload["recentLogs"]) == 2
    assert payload["lastUpdate"] is not None
