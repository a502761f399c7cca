from __future__ import annotations

from fastapi import Depends, Request

from assistant_gateway.bootstrap import GatewayRuntime
from assistant_gateway.operations.supervisor import OperationsSupervisor
from assistant_gateway.sessions import ClientLifecycleManager, SessionRegistry


def get_runtime(request: Request) -> GatewayRuntime:
    return request.app.state.runtime


def get_registry(runtime: GatewayRuntime = Depends(get_runtime)) -> SessionRegistry:
    return runtime.registry


def get_lifecycle(runtime: GatewayRuntime = Depends(get_runtime)) -> ClientLifecycleManager:
    return runtime.lifecycle


def get_supervisor(runtime: GatewayRuntime = Depends(get_runtime)) -> OperationsSupervisor:
    return runtime.supervisor
