from __future__ import annotations

import logging
from typing import Iterable, Iterator, Sequence

from mediaoffload.core.config import MAX_DELETE_CHUNK_SIZE
from mediaoffload.storage.client import ObjectStorageClient, ObjectStorageError

logger = logging.getLogger(__name__)


def normalize_keys(keys: Iterable[str | None]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for raw in keys:
        if raw is None:
            continue
        key = raw.strip()
        if not key or key in seen:
            continue
        seen.add(key)
        ordered.append(key)
    return ordered


def chunked(keys: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(keys), size):
        yield list(keys[start : start + size])


class BulkDeleteExecutor:
    def __init__(self, storage: ObjectStorageClient, *, chunk_size: int = MAX_DELETE_CHUNK_SIZE):
        if chunk_size <= 0 or chunk_size > MAX_DELETE_CHUNK_SIZE:
            raise ValueError(f"chunk_size must be in [1, {MAX_DELETE_CHUNK_SIZE}]")
        self._storage = storage
        self._chunk_size = chunk_size

    def delete_all(self, keys: Iterable[str | None]) -> bool:
        normalized = normalize_keys(keys)
        if not normalized:
            return True

        ok = True
        for chunk in chunked(normalized, self._chunk_size):
            try:
                errors = self._storage.delete_objects(chunk)
            except ObjectStorageError as exc:
                logger.warning("Batch delete failed for %d keys, falling back to single deletes: %s", len(chunk), exc)
                ok = False
                self._delete_individually(chunk)
                continue

            if errors:
                ok = False
                logger.warning(
                    "Batch delete reported %d per-key errors (first: %s %s), falling back to single deletes",
                    len(errors),
                    errors[0].key,
                    errors[0].code,
                )
                self._delete_individually(chunk)
        return ok

    def _delete_individually(self, keys: Sequence[str]) -> int:
        failures = 0
        for key in keys:
            try:
                self._storage.delete_object(key)
            except ObjectStorageError as exc:
                failures += 1
                logger.error("Single delete failed for %s: %s", key, exc)
        return failures
