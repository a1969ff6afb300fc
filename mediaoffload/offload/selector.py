from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from mediaoffload.library.types import WorkItem


class WorkItemSource(Protocol):
    def list_pending(self, limit: int, *, only_previously_failed: bool = False) -> list[WorkItem]: ...

    def file_size_mb(self, item: WorkItem) -> float | None: ...


@dataclass(frozen=True)
class BatchSelection:
    items: list[WorkItem] = field(default_factory=list)
    oversized: list[WorkItem] = field(default_factory=list)
    total_mb: float = 0.0

    @property
    def oversized_count(self) -> int:
        return len(self.oversized)

    @property
    def is_empty(self) -> bool:
        return not self.items


class CandidateSelector:
    """Picks the next bounded slice of offload work.

    Fresh items (never offloaded, never failed) are admitted first under the
    strict per-item cap; leftover capacity goes to previously failed items under
    the looser retry cap. Both lanes share one item-count and byte ceiling.
    Items whose size cannot be resolved cost nothing and are always admitted.
    """

    def __init__(self, source: WorkItemSource, *, retry_item_max_mb: float):
        self._source = source
        self._retry_item_max_mb = retry_item_max_mb

    def select_batch(self, max_count: int, max_count_mb: float, per_item_max_mb: float) -> BatchSelection:
        if max_count <= 0:
            return BatchSelection()

        batch: list[WorkItem] = []
        oversized: list[WorkItem] = []
        running_mb = 0.0

        fresh = self._source.list_pending(max_count * 2, only_previously_failed=False)
        for item in fresh:
            if len(batch) >= max_count:
                break
            size_mb = self._source.file_size_mb(item)
            if size_mb is None:
                batch.append(item)
                continue
            if size_mb > per_item_max_mb:
                oversized.append(item)
                continue
            if running_mb + size_mb > max_count_mb:
                break
            batch.append(item)
            running_mb += size_mb

        remaining = max_count - len(batch)
        if remaining > 0:
            selected_ids = {item.id for item in batch}
            retries = self._source.list_pending(remaining * 2, only_previously_failed=True)
            for item in retries:
                if len(batch) >= max_count:
                    break
                if item.id in selected_ids:
                    continue
                size_mb = self._source.file_size_mb(item)
                if size_mb is None:
                    batch.append(item)
                    continue
                if size_mb > self._retry_item_max_mb:
                    continue
                if running_mb + size_mb > max_count_mb:
                    break
                batch.append(item)
                running_mb += size_mb

        return BatchSelection(items=batch, oversized=oversized, total_mb=running_mb)
