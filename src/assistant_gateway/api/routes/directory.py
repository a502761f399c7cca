from __future__ import annotations

from fastapi import APIRouter, Depends

from assistant_gateway.api.deps import get_runtime
from assistant_gateway.api.schemas import (
    CurrentDirectoryResponse,
    DirectoryItem,
    DirectoryListResponse,
    SwitchDirectoryRequest,
    SwitchDirectoryResponse,
)
from assistant_gateway.bootstrap import GatewayRuntime
from assistant_gateway.directories import list_directories, validate_switch_target

router = APIRouter(prefix="/directory", tags=["directory"])


@router.get("", response_model=DirectoryListResponse)
async def get_available_directories(runtime: GatewayRuntime = Depends(get_runtime)) -> DirectoryListResponse:
    base_directory = runtime.lifecycle.base_directory
    entries = list_directories(base_directory)
    return DirectoryListResponse(
        base_directory=base_directory,
        current_directory=runtime.lifecycle.get_current_directory(),
        directories=[DirectoryItem(name=e.name, full_path=e.full_path) for e in entries],
    )


@router.get("/current", response_model=CurrentDirectoryResponse)
async def get_current_directory(runtime: GatewayRuntime = Depends(get_runtime)) -> CurrentDirectoryResponse:
    return CurrentDirectoryResponse(
        current_directory=runtime.lifecycle.get_current_directory(),
        base_directory=runtime.lifecycle.base_directory,
    )


@router.post("/switch", response_model=SwitchDirectoryResponse)
async def switch_directory(
    request: SwitchDirectoryRequest,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> SwitchDirectoryResponse:
    path = validate_switch_target(
        request.directory_path,
        runtime.lifecycle.base_directory,
        restrict_to_base=runtime.config.restrict_to_working_directory,
    )
    await runtime.lifecycle.switch_directory(path)
    return SwitchDirectoryResponse(message="Directory switched successfully", current_directory=path)
