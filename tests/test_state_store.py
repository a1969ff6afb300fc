from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mediaoffload.core.config import get_settings
from mediaoffload.db.init_db import initialize_database
from mediaoffload.db.session import get_session_factory, reset_session_state
from mediaoffload.jobs.types import RunStatus
from mediaoffload.state.store import BulkOffloadStateRepository, StateStore


def make_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> StateStore:
    monkeypatch.setenv("MEDIAOFFLOAD_STATE_ROOT", (tmp_path / "state").as_posix())
    monkeypatch.setenv("MEDIAOFFLOAD_UPLOADS_ROOT", (tmp_path / "uploads").as_posix())

    get_settings.cache_clear()
    reset_session_state()
    initialize_database()
    return StateStore(get_session_factory())


def test_set_get_delete_round_trip(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = make_store(tmp_path, monkeypatch)

    assert store.get("missing", "fallback") == "fallback"
    store.set("bulk_offload_cancelled", True)
    assert store.get("bulk_offload_cancelled") is True
    assert store.delete("bulk_offload_cancelled") is True
    assert store.get("bulk_offload_cancelled") is None


def test_expired_entries_read_as_absent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = make_store(tmp_path, monkeypatch)
    store.set("delete_error_admin", {"media_id": 7}, ttl_seconds=120)
    assert store.get("delete_error_admin") == {"media_id": 7}

    later = datetime.now(tz=timezone.utc) + timedelta(seconds=121)
    monkeypatch.setattr(store, "_now", lambda: later)

    assert store.get("delete_error_admin") is None


def test_purge_expired_removes_only_stale_entries(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = make_store(tmp_path, monkeypatch)
    store.set("short", 1, ttl_seconds=5)
    store.set("durable", 2)

    later = datetime.now(tz=timezone.utc) + timedelta(seconds=10)
    monkeypatch.setattr(store, "_now", lambda: later)

    assert store.purge_expired() == 1
    assert store.get("durable") == 2


def test_compare_and_set_requires_expected_value(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = make_store(tmp_path, monkeypatch)

    assert store.compare_and_set("counter", None, {"n": 1}) is True
    assert store.compare_and_set("counter", None, {"n": 99}) is False
    assert store.compare_and_set("counter", {"n": 0}, {"n": 99}) is False
    assert store.compare_and_set("counter", {"n": 1}, {"n": 2}) is True
    assert store.get("counter") == {"n": 2}


def test_repository_defaults_to_empty_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repository = BulkOffloadStateRepository(make_store(tmp_path, monkeypatch))

    state = repository.get_state()

    assert state.total == 0
    assert state.processed == 0
    assert state.status == RunStatus.NONE
    assert state.last_update is None


def test_processed_never_exceeds_total(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repository = BulkOffloadStateRepository(make_store(tmp_path, monkeypatch))
    repository.update_state(total=2, processed=0, errors=0, status=RunStatus.PROCESSING)

    for _ in range(4):
        state = repository.record_item(succeeded=False)

    assert state.processed == 2
    assert state.errors == 2
    assert repository.update_state(processed=10).processed == 2


def test_last_update_is_monotonic(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repository = BulkOffloadStateRepository(make_store(tmp_path, monkeypatch))
    first = repository.update_state(total=1, status=RunStatus.READY)

    earlier = first.last_update - timedelta(hours=1)
    monkeypatch.setattr(repository, "_now", lambda: earlier)
    second = repository.update_state(status=RunStatus.PROCESSING)

    assert second.last_update == first.last_update
    assert repository.get_state().status == RunStatus.PROCESSING


def test_update_state_rejects_unknown_fields(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repository = BulkOffloadStateRepository(make_store(tmp_path, monkeypatch))

    with pytest.raises(ValueError):
        repository.update_state(percentage=50)


def test_cancel_flag_and_run_id_are_independent_keys(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repository = BulkOffloadStateRepository(make_store(tmp_path, monkeypatch))

    assert repository.is_cancel_requested() is False
    repository.request_cancel()
    repository.set_run_id("run-1")
    repository.clear_state()

    assert repository.is_cancel_requested() is True
    assert repository.get_run_id() == "run-1"

    repository.clear_cancel_request()
    repository.clear_run_id()
    assert repository.is_cancel_requested() is False
    assert repository.get_run_id() is None
