from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from mediaoffload.api.deps import get_access_policy, get_principal, get_stall_monitor
from mediaoffload.api.schemas.offload import StallCheckResponse
from mediaoffload.core.security import AccessPolicy, Capability, PermissionDeniedError, Principal
from mediaoffload.jobs.stall_monitor import StallMonitor

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/stall-check", response_model=StallCheckResponse)
def run_stall_check(
    principal: Principal = Depends(get_principal),
    policy: AccessPolicy = Depends(get_access_policy),
    monitor: StallMonitor = Depends(get_stall_monitor),
) -> StallCheckResponse:
    try:
        policy.require(principal, Capability.MANAGE_OPTIONS)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    result = monitor.check()
    return StallCheckResponse(recovered=result.recovered, run_id=result.run_id, idle_seconds=result.idle_seconds)
