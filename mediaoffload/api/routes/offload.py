from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from mediaoffload.api.deps import get_access_policy, get_controller, get_principal
from mediaoffload.api.schemas.offload import (
    ActionTokenRequest,
    ActionTokenResponse,
    CancelOffloadResponse,
    JobStateResponse,
    ProgressResponse,
    StartOffloadResponse,
    TickResponse,
)
from mediaoffload.core.config import get_settings
from mediaoffload.core.security import AccessPolicy, Capability, InvalidTokenError, PermissionDeniedError, Principal
from mediaoffload.jobs.controller import (
    AlreadyRunningError,
    BulkOffloadController,
    RunLockLostError,
    job_state_to_dict,
    progress_to_dict,
)

router = APIRouter(prefix="/offload", tags=["offload"])


@router.get("/token", response_model=ActionTokenResponse)
def issue_action_token(
    principal: Principal = Depends(get_principal),
    policy: AccessPolicy = Depends(get_access_policy),
) -> ActionTokenResponse:
    try:
        policy.require(principal, Capability.UPLOAD_FILES)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return ActionTokenResponse(token=policy.issue_token(principal))


@router.post("/start", response_model=StartOffloadResponse)
def start_offload(
    request: ActionTokenRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    controller: BulkOffloadController = Depends(get_controller),
) -> StartOffloadResponse:
    try:
        result = controller.start(principal, request.token)
    except (PermissionDeniedError, InvalidTokenError) as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except (AlreadyRunningError, RunLockLostError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    if result.total > 0 and get_settings().inline_dispatch:
        background_tasks.add_task(controller.run_until_idle)
    return StartOffloadResponse(total=result.total, oversized_skipped=result.oversized_skipped, run_id=result.run_id)


@router.get("/progress", response_model=ProgressResponse)
def get_progress(
    token: str | None = None,
    principal: Principal = Depends(get_principal),
    controller: BulkOffloadController = Depends(get_controller),
) -> ProgressResponse:
    try:
        snapshot = controller.progress_for(principal, token)
    except (PermissionDeniedError, InvalidTokenError) as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return ProgressResponse.model_validate(progress_to_dict(snapshot))


@router.post("/cancel", response_model=CancelOffloadResponse)
def cancel_offload(
    request: ActionTokenRequest,
    principal: Principal = Depends(get_principal),
    controller: BulkOffloadController = Depends(get_controller),
) -> CancelOffloadResponse:
    try:
        message = controller.cancel(principal, request.token)
    except InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return CancelOffloadResponse(message=message)


@router.post("/tick", response_model=TickResponse)
def run_ticks(
    max_ticks: int = Query(default=1, ge=1, le=500),
    principal: Principal = Depends(get_principal),
    policy: AccessPolicy = Depends(get_access_policy),
    controller: BulkOffloadController = Depends(get_controller),
) -> TickResponse:
    try:
        policy.require(principal, Capability.MANAGE_OPTIONS)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    results = controller.run_until_idle(max_ticks=max_ticks)
    last = results[-1]
    state = None if last.state is None else JobStateResponse.model_validate(job_state_to_dict(last.state))
    return TickResponse(ticks=len(results), outcome=last.outcome.value, state=state)
