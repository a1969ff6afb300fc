from __future__ import annotations

from fastapi import Depends, Header

from mediaoffload.core.config import get_settings
from mediaoffload.core.security import AccessPolicy, Principal
from mediaoffload.db.session import get_session_factory
from mediaoffload.jobs.controller import BulkOffloadController
from mediaoffload.jobs.stall_monitor import StallMonitor
from mediaoffload.library.enumerator import MediaLibraryEnumerator
from mediaoffload.offload.deletion import RemoteDeleteService
from mediaoffload.storage.client import ObjectStorageClient
from mediaoffload.worker.pipeline import build_controller, build_delete_service, build_stall_monitor, build_storage


def get_access_policy() -> AccessPolicy:
    return AccessPolicy(get_settings())


def get_principal(
    x_api_key: str | None = Header(default=None),
    policy: AccessPolicy = Depends(get_access_policy),
) -> Principal:
    return policy.resolve_principal(x_api_key)


def get_storage() -> ObjectStorageClient:
    return build_storage(get_settings())


def get_library() -> MediaLibraryEnumerator:
    return MediaLibraryEnumerator(get_settings(), get_session_factory())


def get_controller(storage: ObjectStorageClient = Depends(get_storage)) -> BulkOffloadController:
    return build_controller(get_settings(), storage=storage)


def get_stall_monitor() -> StallMonitor:
    return build_stall_monitor(get_settings())


def get_delete_service(storage: ObjectStorageClient = Depends(get_storage)) -> RemoteDeleteService:
    return build_delete_service(get_settings(), storage=storage)
