from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath

from mediaoffload.core.config import Settings
from mediaoffload.core.path_safety import PathSafetyError, join_object_key
from mediaoffload.library.enumerator import MediaLibraryEnumerator
from mediaoffload.library.types import MediaSnapshot
from mediaoffload.state.store import StateStore
from mediaoffload.storage.bulk_delete import BulkDeleteExecutor, normalize_keys

logger = logging.getLogger(__name__)

DELETE_NOTICE_PREFIX = "delete_error_"
DEFAULT_DELETE_WARNING = "Cloud deletion failed for a media item. The file may remain in cloud storage."


class DeleteKeyResolutionError(RuntimeError):
    pass


@dataclass(frozen=True)
class DeleteNotice:
    media_id: int
    message: str


@dataclass(frozen=True)
class DeleteOutcome:
    media_id: int
    deleted: bool
    remote_ok: bool
    warning: str | None = None


def build_delete_keys(media: MediaSnapshot) -> list[str]:
    if media.remote_path is None:
        raise DeleteKeyResolutionError(f"Unable to find storage key for media ID {media.id}")

    prefix = media.remote_path
    file_name = PurePosixPath(media.relative_path).name
    try:
        keys = [join_object_key(prefix, file_name)]
        keys.extend(join_object_key(prefix, derived.file) for derived in media.derived_files)
    except PathSafetyError as exc:
        raise DeleteKeyResolutionError(f"Invalid storage key for media ID {media.id}: {exc}") from exc
    return normalize_keys(keys)


class RemoteDeleteService:
    def __init__(
        self,
        settings: Settings,
        library: MediaLibraryEnumerator,
        executor: BulkDeleteExecutor,
        store: StateStore,
    ):
        self._settings = settings
        self._library = library
        self._executor = executor
        self._store = store

    def _notice_key(self, user_id: str) -> str:
        return f"{DELETE_NOTICE_PREFIX}{user_id}"

    def delete_remote_files(self, media: MediaSnapshot, *, user_id: str | None = None) -> bool:
        if not media.offloaded:
            return True
        try:
            keys = build_delete_keys(media)
        except DeleteKeyResolutionError as exc:
            self._handle_failure(media.id, str(exc), user_id)
            return False

        if self._executor.delete_all(keys):
            return True
        self._handle_failure(media.id, "Cloud file deletion failed", user_id)
        return False

    def delete_media(self, media_id: int, *, user_id: str | None = None) -> DeleteOutcome:
        media = self._library.get_media(media_id)
        remote_ok = self.delete_remote_files(media, user_id=user_id)
        self._remove_local_files(media)
        deleted = self._library.remove_media(media_id)
        # a stored notice is the only failure report a known user gets
        warning = None if remote_ok or user_id else DEFAULT_DELETE_WARNING
        return DeleteOutcome(media_id=media_id, deleted=deleted, remote_ok=remote_ok, warning=warning)

    def pop_delete_notice(self, user_id: str) -> DeleteNotice | None:
        key = self._notice_key(user_id)
        payload = self._store.get(key)
        if not isinstance(payload, dict):
            return None
        self._store.delete(key)
        message = str(payload.get("message") or "") or DEFAULT_DELETE_WARNING
        return DeleteNotice(media_id=int(payload.get("media_id") or 0), message=message)

    def _handle_failure(self, media_id: int, message: str, user_id: str | None) -> None:
        logger.error(
            "Cloud file deletion failed for media ID %s. The file may remain in cloud storage: %s",
            media_id,
            message,
        )
        if not user_id:
            return
        self._store.set(
            self._notice_key(user_id),
            {"media_id": media_id, "message": message},
            ttl_seconds=self._settings.delete_notice_ttl_seconds,
        )

    def _remove_local_files(self, media: MediaSnapshot) -> None:
        try:
            primary = self._library.local_path(media.relative_path)
        except PathSafetyError:
            return
        candidates = [primary, *(primary.parent / PurePosixPath(item.file).name for item in media.derived_files)]
        for path in candidates:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove local file %s: %s", path, exc)
