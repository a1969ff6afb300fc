from __future__ import annotations

import logging
from datetime import datetime, timezone

from mediaoffload.core.config import Settings
from mediaoffload.jobs.lock_service import RunLockService
from mediaoffload.jobs.queue import OffloadQueue
from mediaoffload.jobs.types import RunStatus, StallCheckResult
from mediaoffload.state.store import BulkOffloadStateRepository

logger = logging.getLogger(__name__)


class StallMonitor:
    """Force-unlocks a run whose progress record stopped advancing.

    A lock row counts as held here even past its expiry: a process killed
    mid-batch leaves both the row and a ``processing`` status behind, and
    both must be reset before the next start reselects work.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        state: BulkOffloadStateRepository,
        locks: RunLockService,
        queue: OffloadQueue,
    ):
        self._settings = settings
        self._state = state
        self._locks = locks
        self._queue = queue

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def check(self, now: datetime | None = None) -> StallCheckResult:
        current = now or self._now()
        holder = self._locks.holder()
        if holder is None:
            return StallCheckResult(recovered=False, run_id=None, idle_seconds=None)

        last_update = self._state.get_state().last_update
        idle_seconds = None if last_update is None else (current - last_update).total_seconds()
        if idle_seconds is not None and idle_seconds <= self._settings.stall_timeout_seconds:
            return StallCheckResult(recovered=False, run_id=holder, idle_seconds=idle_seconds)

        self._locks.force_release()
        self._state.clear_cancel_request()
        self._queue.clear()
        self._state.clear_run_id()
        self._state.update_state(status=RunStatus.READY)

        logger.warning(
            "Detected and unlocked stalled bulk offload run %s (idle for %s seconds)",
            holder,
            "unknown" if idle_seconds is None else int(idle_seconds),
        )
        return StallCheckResult(recovered=True, run_id=holder, idle_seconds=idle_seconds)
