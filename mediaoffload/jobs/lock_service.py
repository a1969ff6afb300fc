from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from mediaoffload.core.config import Settings
from mediaoffload.db.models import RunLock

BULK_OFFLOAD_LOCK_KEY = "bulk_offload_process_lock"


class RunLockService:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _coerce_utc(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _ttl(self) -> timedelta:
        return timedelta(seconds=self._settings.run_lock_ttl_seconds)

    def acquire(self, owner_run_id: str, lock_key: str = BULK_OFFLOAD_LOCK_KEY) -> bool:
        now = self._now()
        with self._session_factory() as session:
            session.execute(
                delete(RunLock).where(
                    RunLock.lock_key == lock_key,
                    RunLock.expires_at <= now,
                )
            )
            session.add(
                RunLock(
                    lock_key=lock_key,
                    owner_run_id=owner_run_id,
                    acquired_at=now,
                    heartbeat_at=now,
                    expires_at=now + self._ttl(),
                )
            )
            try:
                session.commit()
                return True
            except IntegrityError:
                session.rollback()
                return False

    def refresh(self, owner_run_id: str, lock_key: str = BULK_OFFLOAD_LOCK_KEY) -> bool:
        now = self._now()
        with self._session_factory() as session:
            lock = session.scalar(
                select(RunLock).where(
                    RunLock.lock_key == lock_key,
                    RunLock.owner_run_id == owner_run_id,
                )
            )
            if lock is None:
                return False

            lock.heartbeat_at = now
            lock.expires_at = now + self._ttl()
            session.commit()
            return True

    def release(self, owner_run_id: str, lock_key: str = BULK_OFFLOAD_LOCK_KEY) -> None:
        with self._session_factory() as session:
            session.execute(
                delete(RunLock).where(
                    RunLock.lock_key == lock_key,
                    RunLock.owner_run_id == owner_run_id,
                )
            )
            session.commit()

    def force_release(self, lock_key: str = BULK_OFFLOAD_LOCK_KEY) -> bool:
        with self._session_factory() as session:
            result = session.execute(delete(RunLock).where(RunLock.lock_key == lock_key))
            session.commit()
            return bool(result.rowcount)

    def holder(self, lock_key: str = BULK_OFFLOAD_LOCK_KEY) -> str | None:
        with self._session_factory() as session:
            lock = session.get(RunLock, lock_key)
            return None if lock is None else lock.owner_run_id

    def is_held(self, lock_key: str = BULK_OFFLOAD_LOCK_KEY) -> bool:
        now = self._now()
        with self._session_factory() as session:
            lock = session.get(RunLock, lock_key)
            if lock is None:
                return False
            return self._coerce_utc(lock.expires_at) > now

    def is_owned_and_alive(self, owner_run_id: str, lock_key: str = BULK_OFFLOAD_LOCK_KEY) -> bool:
        now = self._now()
        with self._session_factory() as session:
            lock = session.scalar(
                select(RunLock).where(
                    RunLock.lock_key == lock_key,
                    RunLock.owner_run_id == owner_run_id,
                )
            )
            if lock is None:
                return False
            return self._coerce_utc(lock.expires_at) > now
