from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from mediaoffload.db.models import OffloadQueueItem


@dataclass(frozen=True)
class QueueEntry:
    id: int
    run_id: str
    position: int
    media_id: int


class OffloadQueue:
    MAX_CLAIM_ATTEMPTS = 5

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def replace(self, run_id: str, media_ids: Sequence[int]) -> int:
        with self._session_factory() as session:
            session.execute(delete(OffloadQueueItem))
            session.add_all(
                OffloadQueueItem(run_id=run_id, position=position, media_id=media_id, done=False)
                for position, media_id in enumerate(media_ids)
            )
            session.commit()
        return len(media_ids)

    def claim_next(self, run_id: str) -> QueueEntry | None:
        for _ in range(self.MAX_CLAIM_ATTEMPTS):
            with self._session_factory() as session:
                row = session.scalar(
                    select(OffloadQueueItem)
                    .where(OffloadQueueItem.run_id == run_id, OffloadQueueItem.claimed_at.is_(None))
                    .order_by(OffloadQueueItem.position.asc())
                    .limit(1)
                )
                if row is None:
                    return None
                result = session.execute(
                    update(OffloadQueueItem)
                    .where(OffloadQueueItem.id == row.id, OffloadQueueItem.claimed_at.is_(None))
                    .values(claimed_at=self._now())
                )
                session.commit()
                if result.rowcount == 1:
                    return QueueEntry(id=row.id, run_id=row.run_id, position=row.position, media_id=row.media_id)
        return None

    def complete(self, entry_id: int, *, succeeded: bool) -> None:
        with self._session_factory() as session:
            session.execute(
                update(OffloadQueueItem)
                .where(OffloadQueueItem.id == entry_id)
                .values(done=True, succeeded=succeeded, processed_at=self._now())
            )
            session.commit()

    def unfinished_count(self, run_id: str) -> int:
        with self._session_factory() as session:
            count = session.scalar(
                select(func.count(OffloadQueueItem.id)).where(
                    OffloadQueueItem.run_id == run_id,
                    OffloadQueueItem.done.is_(False),
                )
            )
            return int(count or 0)

    def clear(self, run_id: str | None = None) -> int:
        with self._session_factory() as session:
            stmt = delete(OffloadQueueItem)
            if run_id is not None:
                stmt = stmt.where(OffloadQueueItem.run_id == run_id)
            result = session.execute(stmt)
            session.commit()
            return int(result.rowcount or 0)
