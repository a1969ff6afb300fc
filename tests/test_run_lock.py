from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mediaoffload.core.config import get_settings
from mediaoffload.db.init_db import initialize_database
from mediaoffload.db.session import get_session_factory, reset_session_state
from mediaoffload.jobs.lock_service import RunLockService
from mediaoffload.jobs.queue import OffloadQueue


def setup_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEDIAOFFLOAD_STATE_ROOT", (tmp_path / "state").as_posix())
    monkeypatch.setenv("MEDIAOFFLOAD_UPLOADS_ROOT", (tmp_path / "uploads").as_posix())
    monkeypatch.setenv("MEDIAOFFLOAD_RUN_LOCK_TTL_SECONDS", "60")

    get_settings.cache_clear()
    reset_session_state()
    initialize_database()


def make_locks(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> RunLockService:
    setup_env(tmp_path, monkeypatch)
    return RunLockService(get_settings(), get_session_factory())


def test_lock_has_a_single_owner(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    locks = make_locks(tmp_path, monkeypatch)

    assert locks.acquire("run-a") is True
    assert locks.acquire("run-b") is False
    assert locks.holder() == "run-a"
    assert locks.is_owned_and_alive("run-a") is True
    assert locks.is_owned_and_alive("run-b") is False


def test_release_by_non_owner_is_a_no_op(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    locks = make_locks(tmp_path, monkeypatch)
    locks.acquire("run-a")

    locks.release("run-b")
    assert locks.is_held() is True

    locks.release("run-a")
    assert locks.is_held() is False
    assert locks.holder() is None


def test_expired_lock_still_has_a_holder_but_can_be_taken_over(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    locks = make_locks(tmp_path, monkeypatch)
    locks.acquire("run-a")

    later = datetime.now(tz=timezone.utc) + timedelta(seconds=61)
    monkeypatch.setattr(locks, "_now", lambda: later)

    assert locks.is_held() is False
    assert locks.holder() == "run-a"
    assert locks.acquire("run-b") is True
    assert locks.holder() == "run-b"


def test_force_release_ignores_ownership(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    locks = make_locks(tmp_path, monkeypatch)
    locks.acquire("run-a")

    assert locks.force_release() is True
    assert locks.force_release() is False
    assert locks.refresh("run-a") is False


def test_concurrent_acquire_has_exactly_one_winner(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    locks = make_locks(tmp_path, monkeypatch)
    barrier = threading.Barrier(2)
    results: list[bool] = []
    guard = threading.Lock()

    def acquire(owner: str) -> None:
        barrier.wait(timeout=2)
        acquired = locks.acquire(owner)
        with guard:
            results.append(acquired)

    threads = [threading.Thread(target=acquire, args=(owner,)) for owner in ("run-a", "run-b")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [False, True]


def test_queue_claims_in_order_and_tracks_completion(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    setup_env(tmp_path, monkeypatch)
    queue = OffloadQueue(get_session_factory())
    queue.replace("run-a", [30, 10, 20])

    first = queue.claim_next("run-a")
    second = queue.claim_next("run-a")
    assert first is not None and second is not None
    assert (first.media_id, second.media_id) == (30, 10)

    queue.complete(first.id, succeeded=True)
    assert queue.unfinished_count("run-a") == 2
    assert queue.claim_next("run-b") is None

    queue.replace("run-b", [40])
    assert queue.unfinished_count("run-a") == 0
    assert queue.clear() == 1


def test_concurrent_claims_never_share_an_entry(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    setup_env(tmp_path, monkeypatch)
    queue = OffloadQueue(get_session_factory())
    queue.replace("run-a", list(range(1, 21)))
    claimed: list[int] = []
    guard = threading.Lock()

    def drain() -> None:
        while True:
            entry = queue.claim_next("run-a")
            if entry is None:
                return
            with guard:
                claimed.append(entry.media_id)

    threads = [threading.Thread(target=drain) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(claimed) == list(range(1, 21))
