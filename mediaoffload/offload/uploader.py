from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Callable

from mediaoffload.core.config import Settings
from mediaoffload.core.path_safety import PathSafetyError, join_object_key
from mediaoffload.library.enumerator import MediaLibraryEnumerator, MediaNotFoundError
from mediaoffload.library.types import MediaSnapshot, WorkItem
from mediaoffload.storage.client import ObjectStorageClient, ObjectStorageError

logger = logging.getLogger(__name__)

MISSING_LOCAL_FILE_ERROR = "File not found on local storage"
SKIPPED_BY_POLICY_ERROR = "Offload skipped by policy"


def remote_prefix_for(base_prefix: str, relative_path: str) -> str:
    parent = PurePosixPath(relative_path).parent.as_posix()
    parts = [part for part in (base_prefix, "" if parent == "." else parent) if part]
    return "/".join(parts)


class MediaOffloadWorker:
    def __init__(
        self,
        settings: Settings,
        library: MediaLibraryEnumerator,
        storage: ObjectStorageClient,
        *,
        should_offload: Callable[[WorkItem], bool] | None = None,
    ):
        self._settings = settings
        self._library = library
        self._storage = storage
        self._should_offload = should_offload or (lambda _item: True)

    def offload(self, item: WorkItem) -> bool:
        if not self._should_offload(item):
            self._library.mark_error(item.id, SKIPPED_BY_POLICY_ERROR)
            return False

        try:
            media = self._library.get_media(item.id)
        except MediaNotFoundError:
            logger.warning("Media %s vanished before offload", item.id)
            return False

        try:
            uploaded = self._upload_media(media)
        except (ObjectStorageError, PathSafetyError, OSError) as exc:
            logger.warning("Offload failed for media %s: %s", media.id, exc)
            self._library.mark_error(media.id, str(exc))
            return False

        if uploaded is None:
            self._library.mark_error(media.id, MISSING_LOCAL_FILE_ERROR)
            return False

        remote_path = remote_prefix_for(self._settings.storage_base_prefix, media.relative_path)
        self._library.mark_offloaded(
            media.id,
            remote_path=remote_path,
            provider=self._storage.provider_name,
            bucket=self._storage.bucket,
        )
        if self._settings.delete_local_after_offload:
            self._remove_local_copies(uploaded)
        return True

    def _upload_media(self, media: MediaSnapshot) -> list[Path] | None:
        primary = self._library.local_path(media.relative_path)
        if not primary.is_file():
            return None

        prefix = remote_prefix_for(self._settings.storage_base_prefix, media.relative_path)
        self._storage.put_object(primary, join_object_key(prefix, primary.name))
        uploaded = [primary]

        for derived in media.derived_files:
            local = primary.parent / PurePosixPath(derived.file).name
            if not local.is_file():
                logger.debug("Skipping missing derived file %s for media %s", derived.file, media.id)
                continue
            self._storage.put_object(local, join_object_key(prefix, local.name))
            uploaded.append(local)
        return uploaded

    def _remove_local_copies(self, paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove local copy %s: %s", path, exc)
