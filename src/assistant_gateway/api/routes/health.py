from __future__ import annotations

from fastapi import APIRouter, Depends

from assistant_gateway.api.deps import get_runtime
from assistant_gateway.bootstrap import GatewayRuntime

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check(runtime: GatewayRuntime = Depends(get_runtime)) -> dict:
    """Liveness plus a few cheap facts about the runtime."""
    return {
        "status": "healthy",
        "clientReady": runtime.lifecycle.client is not None,
        "activeSessions": len(runtime.registry.get_active_sessions()),
        "currentDirectory": runtime.lifecycle.get_current_directory(),
    }
