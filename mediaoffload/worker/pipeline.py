from __future__ import annotations

import logging
import time
from typing import Callable

from mediaoffload.core.config import Settings, get_settings
from mediaoffload.core.security import AccessPolicy
from mediaoffload.db.session import get_session_factory
from mediaoffload.jobs.controller import BulkOffloadController
from mediaoffload.jobs.lock_service import RunLockService
from mediaoffload.jobs.queue import OffloadQueue
from mediaoffload.jobs.stall_monitor import StallMonitor
from mediaoffload.jobs.types import StallCheckResult, TickOutcome, TickResult
from mediaoffload.library.enumerator import MediaLibraryEnumerator
from mediaoffload.offload.deletion import RemoteDeleteService
from mediaoffload.offload.selector import CandidateSelector
from mediaoffload.offload.uploader import MediaOffloadWorker
from mediaoffload.state.store import BulkOffloadStateRepository, StateStore
from mediaoffload.storage.bulk_delete import BulkDeleteExecutor
from mediaoffload.storage.client import ObjectStorageClient, S3ObjectStorage

logger = logging.getLogger(__name__)


def build_storage(settings: Settings | None = None) -> ObjectStorageClient:
    return S3ObjectStorage(settings or get_settings())


def build_controller(
    settings: Settings | None = None,
    *,
    storage: ObjectStorageClient | None = None,
) -> BulkOffloadController:
    settings = settings or get_settings()
    session_factory = get_session_factory()
    library = MediaLibraryEnumerator(settings, session_factory)
    worker = MediaOffloadWorker(settings, library, storage or build_storage(settings))
    return BulkOffloadController(
        settings,
        state=BulkOffloadStateRepository(StateStore(session_factory)),
        locks=RunLockService(settings, session_factory),
        queue=OffloadQueue(session_factory),
        selector=CandidateSelector(library, retry_item_max_mb=settings.bulk_retry_item_max_mb),
        library=library,
        worker=worker,
        policy=AccessPolicy(settings),
    )


def build_stall_monitor(settings: Settings | None = None) -> StallMonitor:
    settings = settings or get_settings()
    session_factory = get_session_factory()
    return StallMonitor(
        settings,
        state=BulkOffloadStateRepository(StateStore(session_factory)),
        locks=RunLockService(settings, session_factory),
        queue=OffloadQueue(session_factory),
    )


def build_delete_service(
    settings: Settings | None = None,
    *,
    storage: ObjectStorageClient | None = None,
) -> RemoteDeleteService:
    settings = settings or get_settings()
    session_factory = get_session_factory()
    executor = BulkDeleteExecutor(storage or build_storage(settings), chunk_size=settings.delete_chunk_size)
    return RemoteDeleteService(
        settings,
        MediaLibraryEnumerator(settings, session_factory),
        executor,
        StateStore(session_factory),
    )


def run_stall_check(settings: Settings | None = None) -> StallCheckResult:
    return build_stall_monitor(settings).check()


def run_worker_once(
    *,
    settings: Settings | None = None,
    storage: ObjectStorageClient | None = None,
    max_ticks: int | None = None,
    time_limit_seconds: float | None = None,
) -> list[TickResult]:
    controller = build_controller(settings, storage=storage)
    return controller.run_until_idle(max_ticks=max_ticks, time_limit_seconds=time_limit_seconds)


def run_worker_loop(
    *,
    settings: Settings | None = None,
    storage: ObjectStorageClient | None = None,
    should_stop: Callable[[], bool] = lambda: False,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    settings = settings or get_settings()
    controller = build_controller(settings, storage=storage)
    monitor = build_stall_monitor(settings)
    next_stall_check = time.monotonic()

    while not should_stop():
        if time.monotonic() >= next_stall_check:
            result = monitor.check()
            if result.recovered:
                logger.info("Stall check recovered run %s", result.run_id)
            next_stall_check = time.monotonic() + settings.stall_check_interval_seconds

        results = controller.run_until_idle()
        last = results[-1] if results else None
        if last is not None and last.outcome in (TickOutcome.COMPLETED, TickOutcome.CANCELLED):
            continue
        sleep(settings.worker_poll_seconds)
