from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from assistant_gateway.api.deps import get_lifecycle, get_supervisor
from assistant_gateway.api.schemas import (
    DiagnosticsResponse,
    OperationLogEntryResponse,
    OperationsActionResponse,
    OperationsStatusResponse,
)
from assistant_gateway.operations.supervisor import OperationsActionResult, OperationsSupervisor
from assistant_gateway.sessions import ClientLifecycleManager

router = APIRouter(prefix="/operations", tags=["operations"])


@router.get("/status", response_model=OperationsStatusResponse)
async def get_status(supervisor: OperationsSupervisor = Depends(get_supervisor)) -> OperationsStatusResponse:
    return OperationsStatusResponse.model_validate(await supervisor.get_status())


@router.post("/frontend/start", response_model=OperationsActionResponse)
async def start_frontend(supervisor: OperationsSupervisor = Depends(get_supervisor)) -> OperationsActionResponse:
    return OperationsActionResponse.model_validate(await supervisor.start_frontend())


@router.post("/frontend/stop", response_model=OperationsActionResponse)
async def stop_frontend(supervisor: OperationsSupervisor = Depends(get_supervisor)) -> OperationsActionResponse:
    return OperationsActionResponse.model_validate(await supervisor.stop_frontend())


@router.post("/frontend/restart", response_model=OperationsActionResponse)
async def restart_frontend(supervisor: OperationsSupervisor = Depends(get_supervisor)) -> OperationsActionResponse:
    return OperationsActionResponse.model_validate(await supervisor.restart_frontend())


@router.post("/diagnostics", response_model=DiagnosticsResponse)
async def run_diagnostics(supervisor: OperationsSupervisor = Depends(get_supervisor)) -> DiagnosticsResponse:
    return DiagnosticsResponse.model_validate(await supervisor.run_diagnostics())


@router.post("/heal", response_model=OperationsActionResponse)
async def heal(
    supervisor: OperationsSupervisor = Depends(get_supervisor),
    lifecycle: ClientLifecycleManager = Depends(get_lifecycle),
) -> OperationsActionResponse:
    await lifecycle.reset_client()
    result = OperationsActionResult(
        action="heal",
        status="completed",
        message="Assistant client reset completed.",
        snapshot=await supervisor.get_status(),
    )
    return OperationsActionResponse.model_validate(result)


@router.get("/logs", response_model=list[OperationLogEntryResponse])
async def get_logs(
    count: int = Query(50),
    supervisor: OperationsSupervisor = Depends(get_supervisor),
) -> list[OperationLogEntryResponse]:
    # Out-of-range counts are clamped rather than rejected.
    return [OperationLogEntryResponse.model_validate(e) for e in supervisor.get_recent_logs(count)]
