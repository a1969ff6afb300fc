from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from uuid import uuid4

from mediaoffload.core.config import Settings
from mediaoffload.core.security import AccessPolicy, Capability, Principal
from mediaoffload.jobs.lock_service import RunLockService
from mediaoffload.jobs.queue import OffloadQueue, QueueEntry
from mediaoffload.jobs.types import JobState, RunStatus, StartResult, TickOutcome, TickResult
from mediaoffload.library.enumerator import MediaLibraryEnumerator
from mediaoffload.library.types import WorkItem
from mediaoffload.offload.selector import CandidateSelector
from mediaoffload.state.store import BulkOffloadStateRepository

logger = logging.getLogger(__name__)

CANCEL_MESSAGE = "Bulk offload cancelled successfully."


class AlreadyRunningError(RuntimeError):
    pass


class RunLockLostError(RuntimeError):
    pass


class OffloadWorker(Protocol):
    def offload(self, item: WorkItem) -> bool: ...


@dataclass(frozen=True)
class ProgressSnapshot:
    processed: int
    total: int
    status: RunStatus
    errors: int
    oversized_skipped: int
    cancel_requested: bool
    last_update: datetime | None


class BulkOffloadController:
    """Drives one bulk offload run at a time.

    ``start`` selects a batch and takes the run lock, ``tick`` processes exactly
    one queued item, and the run ends when the queue drains or a cancellation
    request is observed between items.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        state: BulkOffloadStateRepository,
        locks: RunLockService,
        queue: OffloadQueue,
        selector: CandidateSelector,
        library: MediaLibraryEnumerator,
        worker: OffloadWorker,
        policy: AccessPolicy,
    ):
        self._settings = settings
        self._state = state
        self._locks = locks
        self._queue = queue
        self._selector = selector
        self._library = library
        self._worker = worker
        self._policy = policy

    def start(self, principal: Principal, token: str | None) -> StartResult:
        self._policy.require(principal, Capability.MANAGE_OPTIONS)
        self._policy.verify_token(principal, token)
        return self.start_run()

    def start_run(self) -> StartResult:
        if self._locks.is_held():
            raise AlreadyRunningError("A bulk offload run is already in progress")

        run_id = str(uuid4())
        if not self._locks.acquire(run_id):
            raise AlreadyRunningError("A bulk offload run is already in progress")

        try:
            self._state.clear_cancel_request()
            self._state.update_state(total=0, processed=0, errors=0, oversized_skipped=0, status=RunStatus.READY)
            selection = self._selector.select_batch(
                self._settings.bulk_batch_max_items,
                self._settings.bulk_batch_max_mb,
                self._settings.bulk_item_max_mb,
            )
            oversize_message = (
                f"File exceeds maximum size ({self._settings.bulk_item_max_mb:g} MB) for bulk processing"
            )
            for item in selection.oversized:
                self._library.mark_error(item.id, oversize_message)

            if selection.is_empty:
                self._queue.clear()
                self._state.clear_state()
                self._state.clear_run_id()
                self._locks.release(run_id)
                logger.info("Bulk offload found no eligible media")
                return StartResult(run_id=None, total=0, oversized_skipped=selection.oversized_count)

            self._queue.replace(run_id, [item.id for item in selection.items])
            self._state.set_run_id(run_id)
            self._state.update_state(
                total=len(selection.items),
                processed=0,
                errors=0,
                oversized_skipped=selection.oversized_count,
                status=RunStatus.READY,
            )
            self._state.update_state(status=RunStatus.PROCESSING)
        except Exception:
            self._locks.release(run_id)
            raise

        if not self._locks.is_owned_and_alive(run_id):
            self._discard_unlocked_run(run_id)
            raise RunLockLostError("The run lock was released before the bulk offload run could start")

        logger.info(
            "Bulk offload run %s started with %d items (%.1f MB, %d oversized skipped)",
            run_id,
            len(selection.items),
            selection.total_mb,
            selection.oversized_count,
        )
        return StartResult(run_id=run_id, total=len(selection.items), oversized_skipped=selection.oversized_count)

    def get_progress(self) -> ProgressSnapshot:
        state = self._state.get_state()
        return ProgressSnapshot(
            processed=state.processed,
            total=state.total,
            status=state.status,
            errors=state.errors,
            oversized_skipped=state.oversized_skipped,
            cancel_requested=self._state.is_cancel_requested(),
            last_update=state.last_update,
        )

    def progress_for(self, principal: Principal, token: str | None) -> ProgressSnapshot:
        self._policy.verify_token(principal, token)
        self._policy.require(principal, Capability.UPLOAD_FILES)
        return self.get_progress()

    def cancel(self, principal: Principal, token: str | None) -> str:
        self._policy.verify_token(principal, token)
        self.request_cancel()
        return CANCEL_MESSAGE

    def request_cancel(self) -> None:
        self._state.request_cancel()
        logger.info("Bulk offload cancellation requested")

    def tick(self) -> TickResult:
        run_id = self._state.get_run_id()
        state = self._state.get_state()
        if run_id is None or state.status != RunStatus.PROCESSING:
            return TickResult(outcome=TickOutcome.IDLE, run_id=run_id, state=state)

        if not self._locks.is_owned_and_alive(run_id):
            logger.warning("Bulk offload run %s no longer holds the run lock", run_id)
            return TickResult(outcome=TickOutcome.ABANDONED, run_id=run_id, state=state)

        if self._state.is_cancel_requested():
            return self._finish_cancelled(run_id)

        entry = self._queue.claim_next(run_id)
        if entry is None:
            if self._queue.unfinished_count(run_id) > 0:
                return TickResult(outcome=TickOutcome.IDLE, run_id=run_id, state=state)
            return self._finish_completed(run_id)

        self._locks.refresh(run_id)
        succeeded = self._process_entry(entry)
        self._queue.complete(entry.id, succeeded=succeeded)

        if not self._locks.is_owned_and_alive(run_id):
            logger.warning("Run lock for %s was released while media %s was in flight", run_id, entry.media_id)
            return TickResult(
                outcome=TickOutcome.ABANDONED,
                run_id=run_id,
                media_id=entry.media_id,
                succeeded=succeeded,
                state=self._state.get_state(),
            )

        updated = self._state.record_item(succeeded=succeeded)
        return TickResult(
            outcome=TickOutcome.PROCESSED,
            run_id=run_id,
            media_id=entry.media_id,
            succeeded=succeeded,
            state=updated,
        )

    def run_until_idle(self, *, max_ticks: int | None = None, time_limit_seconds: float | None = None) -> list[TickResult]:
        results: list[TickResult] = []
        deadline = None if time_limit_seconds is None else time.monotonic() + time_limit_seconds
        while max_ticks is None or len(results) < max_ticks:
            result = self.tick()
            results.append(result)
            if result.outcome != TickOutcome.PROCESSED:
                break
            if deadline is not None and time.monotonic() >= deadline:
                break
        return results

    def _process_entry(self, entry: QueueEntry) -> bool:
        item = self._library.get_work_item(entry.media_id)
        if item is None:
            logger.warning("Queued media %s no longer exists", entry.media_id)
            return False
        if item.offloaded:
            return True

        try:
            return bool(self._worker.offload(item))
        except Exception as exc:
            logger.exception("Offload worker raised for media %s", item.id)
            self._library.mark_error(item.id, str(exc) or exc.__class__.__name__)
            return False

    def _finish_completed(self, run_id: str) -> TickResult:
        state = self._state.update_state(status=RunStatus.COMPLETED)
        self._end_run(run_id)
        logger.info(
            "Bulk offload run %s completed: %d/%d processed, %d errors",
            run_id,
            state.processed,
            state.total,
            state.errors,
        )
        return TickResult(outcome=TickOutcome.COMPLETED, run_id=run_id, state=state)

    def _finish_cancelled(self, run_id: str) -> TickResult:
        state = self._state.update_state(status=RunStatus.CANCELLED)
        self._state.clear_cancel_request()
        self._end_run(run_id)
        logger.info("Bulk offload run %s cancelled after %d/%d items", run_id, state.processed, state.total)
        return TickResult(outcome=TickOutcome.CANCELLED, run_id=run_id, state=state)

    def _end_run(self, run_id: str) -> None:
        self._queue.clear(run_id)
        self._state.clear_run_id()
        self._locks.release(run_id)

    def _discard_unlocked_run(self, run_id: str) -> None:
        logger.warning("Bulk offload run %s lost its run lock during startup", run_id)
        self._queue.clear(run_id)
        if self._state.get_run_id() == run_id:
            self._state.clear_run_id()
            self._state.update_state(status=RunStatus.READY)


def progress_to_dict(snapshot: ProgressSnapshot) -> dict[str, Any]:
    return {
        "processed": snapshot.processed,
        "total": snapshot.total,
        "status": snapshot.status.value,
        "errors": snapshot.errors,
        "oversized_skipped": snapshot.oversized_skipped,
        "cancel_requested": snapshot.cancel_requested,
        "last_update": snapshot.last_update,
    }


def job_state_to_dict(state: JobState) -> dict[str, Any]:
    return {
        "total": state.total,
        "processed": state.processed,
        "errors": state.errors,
        "oversized_skipped": state.oversized_skipped,
        "status": state.status.value,
        "last_update": state.last_update,
    }
