from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from mediaoffload.db.models import StateEntry
from mediaoffload.jobs.types import JobState, RunStatus

_MISSING = object()


class StateConflictError(RuntimeError):
    pass


class StateStore:
    """Durable key/value store backed by the ``state_entries`` table.

    Every write bumps a per-key version so ``compare_and_set`` can detect a
    concurrent writer. Entries may carry an expiry, after which they read as
    absent and are purged lazily.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _coerce_utc(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _is_expired(self, entry: StateEntry, now: datetime) -> bool:
        expires_at = self._coerce_utc(entry.expires_at)
        return expires_at is not None and expires_at <= now

    def _load(self, session: Session, key: str) -> StateEntry | None:
        entry = session.get(StateEntry, key)
        if entry is None:
            return None
        if self._is_expired(entry, self._now()):
            session.delete(entry)
            session.commit()
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        with self._session_factory() as session:
            entry = self._load(session, key)
            if entry is None:
                return default
            return entry.value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        now = self._now()
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds is not None else None
        with self._session_factory() as session:
            entry = session.get(StateEntry, key)
            if entry is None:
                session.add(StateEntry(key=key, value=value, version=1, expires_at=expires_at, updated_at=now))
            else:
                entry.value = value
                entry.version = entry.version + 1
                entry.expires_at = expires_at
                entry.updated_at = now
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise StateConflictError(f"Concurrent insert for state key: {key}") from exc

    def delete(self, key: str) -> bool:
        with self._session_factory() as session:
            result = session.execute(delete(StateEntry).where(StateEntry.key == key))
            session.commit()
            return bool(result.rowcount)

    def compare_and_set(self, key: str, expected: Any, value: Any) -> bool:
        """Write ``value`` only if the stored value still equals ``expected``.

        ``expected=None`` means the key must be absent.
        """
        now = self._now()
        with self._session_factory() as session:
            entry = self._load(session, key)
            if entry is None:
                if expected is not None:
                    return False
                session.add(StateEntry(key=key, value=value, version=1, updated_at=now))
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    return False
                return True

            if entry.value != expected:
                return False
            result = session.execute(
                update(StateEntry)
                .where(StateEntry.key == key, StateEntry.version == entry.version)
                .values(value=value, version=entry.version + 1, updated_at=now)
            )
            session.commit()
            return result.rowcount == 1

    def purge_expired(self) -> int:
        with self._session_factory() as session:
            result = session.execute(
                delete(StateEntry).where(StateEntry.expires_at.is_not(None), StateEntry.expires_at <= self._now())
            )
            session.commit()
            return int(result.rowcount or 0)


class BulkOffloadStateRepository:
    STATE_KEY = "bulk_offload_data"
    CANCEL_KEY = "bulk_offload_cancelled"
    RUN_KEY = "bulk_offload_run_id"
    ALLOWED_FIELDS = frozenset({"total", "processed", "errors", "oversized_skipped", "status"})
    MAX_CAS_ATTEMPTS = 5

    def __init__(self, store: StateStore):
        self._store = store

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _decode(self, raw: dict[str, Any] | None) -> JobState:
        if not raw:
            return JobState()
        last_update = raw.get("last_update")
        return JobState(
            total=int(raw.get("total") or 0),
            processed=int(raw.get("processed") or 0),
            errors=int(raw.get("errors") or 0),
            oversized_skipped=int(raw.get("oversized_skipped") or 0),
            status=RunStatus(raw.get("status") or ""),
            last_update=datetime.fromisoformat(last_update) if last_update else None,
        )

    def _encode(self, state: JobState) -> dict[str, Any]:
        return {
            "total": state.total,
            "processed": state.processed,
            "errors": state.errors,
            "oversized_skipped": state.oversized_skipped,
            "status": state.status.value,
            "last_update": state.last_update.isoformat() if state.last_update else None,
        }

    def get_state(self) -> JobState:
        return self._decode(self._store.get(self.STATE_KEY))

    def _mutate(self, mutator: Callable[[JobState], None]) -> JobState:
        for _ in range(self.MAX_CAS_ATTEMPTS):
            raw = self._store.get(self.STATE_KEY)
            state = self._decode(raw)
            previous_update = state.last_update
            mutator(state)
            now = self._now()
            state.last_update = now if previous_update is None else max(previous_update, now)
            if self._store.compare_and_set(self.STATE_KEY, raw, self._encode(state)):
                return state
        raise StateConflictError("Bulk offload state changed concurrently; giving up")

    def update_state(self, **changes: Any) -> JobState:
        unknown = set(changes) - self.ALLOWED_FIELDS
        if unknown:
            raise ValueError(f"Unknown bulk offload state fields: {sorted(unknown)}")

        def apply(state: JobState) -> None:
            for name, value in changes.items():
                if name == "status":
                    value = RunStatus(value)
                setattr(state, name, value)
            state.processed = min(state.processed, state.total)

        return self._mutate(apply)

    def record_item(self, *, succeeded: bool) -> JobState:
        def apply(state: JobState) -> None:
            state.processed = min(state.processed + 1, state.total)
            if not succeeded:
                state.errors = min(state.errors + 1, state.total)

        return self._mutate(apply)

    def clear_state(self) -> None:
        self._store.delete(self.STATE_KEY)

    def is_cancel_requested(self) -> bool:
        return bool(self._store.get(self.CANCEL_KEY, False))

    def request_cancel(self) -> None:
        self._store.set(self.CANCEL_KEY, True)

    def clear_cancel_request(self) -> None:
        self._store.delete(self.CANCEL_KEY)

    def get_run_id(self) -> str | None:
        value = self._store.get(self.RUN_KEY)
        return str(value) if value else None

    def set_run_id(self, run_id: str) -> None:
        self._store.set(self.RUN_KEY, run_id)

    def clear_run_id(self) -> None:
        self._store.delete(self.RUN_KEY)
