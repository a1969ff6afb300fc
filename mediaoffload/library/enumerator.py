from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from sqlalchemy import ColumnElement, and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from mediaoffload.core.config import Settings
from mediaoffload.core.path_safety import PathSafetyError, resolve_under_uploads, validate_upload_relative_path
from mediaoffload.db.models import MediaFile
from mediaoffload.library.types import DerivedFile, DerivedFileKind, LibraryCounts, MediaSnapshot, WorkItem

BYTES_PER_MB = 1024 * 1024


class MediaNotFoundError(RuntimeError):
    pass


class MediaConflictError(RuntimeError):
    pass


def _has_error_clause() -> ColumnElement[bool]:
    return and_(MediaFile.error_log.is_not(None), MediaFile.error_log != "")


def _no_error_clause() -> ColumnElement[bool]:
    return or_(MediaFile.error_log.is_(None), MediaFile.error_log == "")


class MediaLibraryEnumerator:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _to_work_item(self, row: MediaFile) -> WorkItem:
        return WorkItem(
            id=row.id,
            relative_path=row.relative_path,
            uploaded_at=row.uploaded_at,
            has_error=bool(row.error_log),
            offloaded=row.offloaded,
        )

    def _to_snapshot(self, row: MediaFile) -> MediaSnapshot:
        return MediaSnapshot(
            id=row.id,
            relative_path=row.relative_path,
            mime_type=row.mime_type,
            uploaded_at=row.uploaded_at,
            derived_files=tuple(parse_derived_files(row.derived_files)),
            offloaded=row.offloaded,
            remote_path=row.remote_path,
            offloaded_at=row.offloaded_at,
            provider=row.provider,
            bucket=row.bucket,
            error_log=row.error_log,
        )

    def list_pending(self, limit: int, *, only_previously_failed: bool = False) -> list[WorkItem]:
        if limit <= 0:
            return []
        error_filter = _has_error_clause() if only_previously_failed else _no_error_clause()
        with self._session_factory() as session:
            rows = session.scalars(
                select(MediaFile)
                .where(MediaFile.offloaded.is_(False), error_filter)
                .order_by(MediaFile.uploaded_at.asc(), MediaFile.id.asc())
                .limit(limit)
            ).all()
            return [self._to_work_item(row) for row in rows]

    def local_path(self, relative_path: str) -> Path:
        return resolve_under_uploads(self._settings.uploads_root, relative_path)

    def file_size_mb(self, item: WorkItem) -> float | None:
        try:
            path = self.local_path(item.relative_path)
        except PathSafetyError:
            return None
        if not path.is_file():
            return None
        return path.stat().st_size / BYTES_PER_MB

    def get_media(self, media_id: int) -> MediaSnapshot:
        with self._session_factory() as session:
            row = session.get(MediaFile, media_id)
            if row is None:
                raise MediaNotFoundError(f"Media not found: {media_id}")
            return self._to_snapshot(row)

    def get_work_item(self, media_id: int) -> WorkItem | None:
        with self._session_factory() as session:
            row = session.get(MediaFile, media_id)
            return None if row is None else self._to_work_item(row)

    def register_media(
        self,
        *,
        relative_path: str,
        mime_type: str | None = None,
        derived_files: Sequence[DerivedFile] = (),
        uploaded_at: datetime | None = None,
    ) -> MediaSnapshot:
        validate_upload_relative_path(relative_path)
        row = MediaFile(
            relative_path=relative_path,
            mime_type=mime_type,
            uploaded_at=uploaded_at or self._now(),
            derived_files=[{"file": item.file, "kind": item.kind.value} for item in derived_files],
            offloaded=False,
        )
        with self._session_factory() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise MediaConflictError(f"Media already registered: {relative_path}") from exc
            session.refresh(row)
            return self._to_snapshot(row)

    def remove_media(self, media_id: int) -> bool:
        with self._session_factory() as session:
            result = session.execute(delete(MediaFile).where(MediaFile.id == media_id))
            session.commit()
            return bool(result.rowcount)

    def mark_offloaded(self, media_id: int, *, remote_path: str, provider: str, bucket: str) -> None:
        with self._session_factory() as session:
            row = session.get(MediaFile, media_id)
            if row is None:
                raise MediaNotFoundError(f"Media not found: {media_id}")
            row.offloaded = True
            row.remote_path = remote_path
            row.provider = provider
            row.bucket = bucket
            row.offloaded_at = self._now()
            row.error_log = None
            session.commit()

    def mark_error(self, media_id: int, message: str) -> None:
        with self._session_factory() as session:
            row = session.get(MediaFile, media_id)
            if row is None:
                raise MediaNotFoundError(f"Media not found: {media_id}")
            row.error_log = message or "Unknown offload error"
            session.commit()

    def clear_error(self, media_id: int) -> None:
        with self._session_factory() as session:
            row = session.get(MediaFile, media_id)
            if row is None:
                raise MediaNotFoundError(f"Media not found: {media_id}")
            row.error_log = None
            session.commit()

    def counts(self) -> LibraryCounts:
        with self._session_factory() as session:
            offloaded = session.scalar(select(func.count(MediaFile.id)).where(MediaFile.offloaded.is_(True)))
            unoffloaded = session.scalar(select(func.count(MediaFile.id)).where(MediaFile.offloaded.is_(False)))
            errored = session.scalar(
                select(func.count(MediaFile.id)).where(MediaFile.offloaded.is_(False), _has_error_clause())
            )
        return LibraryCounts(
            offloaded=int(offloaded or 0),
            unoffloaded=int(unoffloaded or 0),
            errored=int(errored or 0),
        )


def parse_derived_files(raw: Sequence[dict[str, Any]] | None) -> list[DerivedFile]:
    items: list[DerivedFile] = []
    for entry in raw or []:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("file") or "").strip()
        if not name:
            continue
        try:
            kind = DerivedFileKind(str(entry.get("kind") or DerivedFileKind.SIZE.value))
        except ValueError:
            continue
        items.append(DerivedFile(file=name, kind=kind))
    return items


def media_snapshot_to_dict(media: MediaSnapshot) -> dict[str, Any]:
    return {
        "id": media.id,
        "relative_path": media.relative_path,
        "mime_type": media.mime_type,
        "uploaded_at": media.uploaded_at,
        "derived_files": [{"file": item.file, "kind": item.kind.value} for item in media.derived_files],
        "offloaded": media.offloaded,
        "remote_path": media.remote_path,
        "offloaded_at": media.offloaded_at,
        "provider": media.provider,
        "bucket": media.bucket,
        "error_log": media.error_log,
    }
