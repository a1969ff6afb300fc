from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from mediaoffload.api.deps import get_access_policy, get_delete_service, get_library, get_principal
from mediaoffload.api.schemas.media import (
    DeleteMediaResponse,
    DeleteNoticeResponse,
    MediaResponse,
    MediaStatsResponse,
    RegisterMediaRequest,
)
from mediaoffload.core.path_safety import PathSafetyError
from mediaoffload.core.security import AccessPolicy, Capability, PermissionDeniedError, Principal
from mediaoffload.library.enumerator import (
    MediaConflictError,
    MediaLibraryEnumerator,
    MediaNotFoundError,
    media_snapshot_to_dict,
)
from mediaoffload.library.types import DerivedFile
from mediaoffload.offload.deletion import RemoteDeleteService

router = APIRouter(prefix="/media", tags=["media"])


def _require(policy: AccessPolicy, principal: Principal, capability: Capability) -> None:
    try:
        policy.require(principal, capability)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


@router.get("/stats", response_model=MediaStatsResponse)
def get_media_stats(
    principal: Principal = Depends(get_principal),
    policy: AccessPolicy = Depends(get_access_policy),
    library: MediaLibraryEnumerator = Depends(get_library),
) -> MediaStatsResponse:
    _require(policy, principal, Capability.UPLOAD_FILES)
    counts = library.counts()
    return MediaStatsResponse(offloaded=counts.offloaded, unoffloaded=counts.unoffloaded, errored=counts.errored)


@router.post("", response_model=MediaResponse, status_code=status.HTTP_201_CREATED)
def register_media(
    request: RegisterMediaRequest,
    principal: Principal = Depends(get_principal),
    policy: AccessPolicy = Depends(get_access_policy),
    library: MediaLibraryEnumerator = Depends(get_library),
) -> MediaResponse:
    _require(policy, principal, Capability.UPLOAD_FILES)
    try:
        media = library.register_media(
            relative_path=request.relative_path,
            mime_type=request.mime_type,
            derived_files=[DerivedFile(file=item.file, kind=item.kind) for item in request.derived_files],
            uploaded_at=request.uploaded_at,
        )
    except PathSafetyError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except MediaConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return MediaResponse.model_validate(media_snapshot_to_dict(media))


@router.get("/delete-notice", response_model=DeleteNoticeResponse)
def pop_delete_notice(
    principal: Principal = Depends(get_principal),
    policy: AccessPolicy = Depends(get_access_policy),
    service: RemoteDeleteService = Depends(get_delete_service),
) -> DeleteNoticeResponse:
    _require(policy, principal, Capability.UPLOAD_FILES)
    notice = service.pop_delete_notice(principal.subject)
    if notice is None:
        return DeleteNoticeResponse(media_id=None, message=None)
    return DeleteNoticeResponse(media_id=notice.media_id, message=notice.message)


@router.get("/{media_id}", response_model=MediaResponse)
def get_media(
    media_id: int,
    principal: Principal = Depends(get_principal),
    policy: AccessPolicy = Depends(get_access_policy),
    library: MediaLibraryEnumerator = Depends(get_library),
) -> MediaResponse:
    _require(policy, principal, Capability.UPLOAD_FILES)
    try:
        media = library.get_media(media_id)
    except MediaNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return MediaResponse.model_validate(media_snapshot_to_dict(media))


@router.delete("/{media_id}", response_model=DeleteMediaResponse)
def delete_media(
    media_id: int,
    principal: Principal = Depends(get_principal),
    policy: AccessPolicy = Depends(get_access_policy),
    service: RemoteDeleteService = Depends(get_delete_service),
) -> DeleteMediaResponse:
    _require(policy, principal, Capability.UPLOAD_FILES)
    try:
        outcome = service.delete_media(media_id, user_id=principal.subject)
    except MediaNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return DeleteMediaResponse(deleted=outcome.deleted, remote_ok=outcome.remote_ok, warning=outcome.warning)
