import json
from pathlib import Path

import pytest

from libraries.render_log.aggregator import LifetimeTotals, StatsState
from libraries.render_log.errors import StateStoreError
from libraries.render_log.state_store import (
    DEFAULT_FOREIGN_KEYS,
    LogIdentity,
    PersistedState,
    StateStore,
)


def test_missing_file_loads_defaults(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")

    state = store.load()

    assert state.last_position == 0
    assert state.log_identity is None
    assert state.extra == DEFAULT_FOREIGN_KEYS


def test_corrupt_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    store = StateStore(path)

    state = store.load()

    assert state.last_position == 0
    assert store.stats.load_failures == 1


def test_non_object_payload_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("[1, 2]", encoding="utf-8")

    assert StateStore(path).load().last_position == 0


def test_invalid_position_is_reset(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"lastPosition": -4}), encoding="utf-8")

    assert StateStore(path).load().last_position == 0


def test_save_preserves_foreign_keys(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps({"isHostingEnabled": False, "gpuInfo": ["RTX"], "lastPosition": 3}),
        encoding="utf-8",
    )
    store = StateStore(path)
    state = store.load()
    # Another subsystem rewrites its own keys between our load and save.
    path.write_text(
        json.dumps({"isHostingEnabled": True, "gpuInfo": ["RTX", "A6000"]}),
        encoding="utf-8",
    )

    state.last_position = 120
    state.log_identity = LogIdentity(device=1, inode=2)
    state.stats = StatsState(lifetime=LifetimeTotals(success_count=4))
    store.save(state)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["isHostingEnabled"] is True
    assert payload["gpuInfo"] == ["RTX", "A6000"]
    assert payload["lastPosition"] == 120
    assert payload["logIdentity"] == {"device": 1, "inode": 2}
    assert payload["stats"]["lifetime"]["successCount"] == 4
    assert not path.with_suffix(".json.tmp").exists()

    reloaded = store.load()
    assert reloaded.last_position == 120
    assert reloaded.log_identity == LogIdentity(device=1, inode=2)
    assert reloaded.stats.lifetime.success_count == 4


def test_first_save_writes_default_foreign_keys(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"
    store = StateStore(path)

    store.save(PersistedState(last_position=7))

    payload = json.loads(path.read_text(encoding="utf-8"))
    for key, value in DEFAULT_FOREIGN_KEYS.items():
        assert payload[key] == value
    assert store.stats.saves == 1


def test_write_failure_raises_state_store_error(tmp_path: Path, mocker) -> None:
    store = StateStore(tmp_path / "state.json")
    mocker.patch.object(store, "_write_payload", side_effect=OSError("disk full"))

    with pytest.raises(StateStoreError):
        store.save(PersistedState())

    assert store.stats.save_failures == 1
