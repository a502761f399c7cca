"""Chat endpoints: session lifecycle, prompts, model switches and batches."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from loguru import logger

from assistant_gateway.api.deps import get_registry, get_runtime
from assistant_gateway.api.schemas import (
    BatchRequest,
    BatchResultResponse,
    CreateSessionRequest,
    MessageResponse,
    SendMessageRequest,
    SendMessageResponse,
    SessionResponse,
    SessionStatusResponse,
    UpdateModelRequest,
    UpdateModelResponse,
)
from assistant_gateway.bootstrap import GatewayRuntime
from assistant_gateway.errors import InvalidArgumentError, SessionNotFoundError
from assistant_gateway.sessions import SessionRegistry, SessionStatusInfo

WEB_CHANNEL = "web"

router = APIRouter(prefix="/chat", tags=["chat"])


def _status_response(info: SessionStatusInfo) -> SessionStatusResponse:
    return SessionStatusResponse(
        session_id=info.session_id,
        model=info.model,
        channel=info.channel,
        status=info.status.value,
        created_at=info.created_at,
        last_updated_at=info.last_updated_at,
        last_prompt=info.last_prompt,
        last_response=info.last_response,
        last_response_preview=info.last_response_preview,
        last_error=info.last_error,
    )


def _require(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise InvalidArgumentError(f"{field} is required")
    return value.strip()


@router.post("/session", response_model=SessionResponse)
async def create_session(
    request: CreateSessionRequest,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> SessionResponse:
    model = (request.model or "").strip() or runtime.config.default_model
    session_id = await runtime.registry.create_session(model, WEB_CHANNEL)
    info = runtime.registry.get_session_status(session_id)
    if info is None:
        # Torn down by a concurrent reset before we could read it back.
        raise SessionNotFoundError(session_id)
    return SessionResponse(
        session_id=info.session_id,
        model=info.model,
        channel=info.channel,
        created_at=info.created_at,
        status=info.status.value,
        last_updated_at=info.last_updated_at,
    )


@router.post("/send", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> SendMessageResponse:
    session_id = _require(request.session_id, "SessionId")
    prompt = _require(request.prompt, "Prompt")

    messages = await registry.send_message(session_id, prompt)
    info = registry.get_session_status(session_id)
    return SendMessageResponse(
        session_id=session_id,
        content=messages[-1].content if messages else "",
        is_complete=True,
        status=info.status.value if info else "idle",
        last_updated_at=info.last_updated_at if info else None,
    )


@router.post("/model", response_model=UpdateModelResponse)
async def update_model(
    request: UpdateModelRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> UpdateModelResponse:
    session_id = _require(request.session_id, "SessionId")
    model = _require(request.model, "Model")

    await registry.update_session_model(session_id, model)
    logger.info(f"Session {session_id} switched to model {model}")
    return UpdateModelResponse(message="Model updated successfully", model=model)


@router.get("/sessions", response_model=list[str])
async def list_sessions(registry: SessionRegistry = Depends(get_registry)) -> list[str]:
    return registry.get_active_sessions()


@router.get("/status", response_model=list[SessionStatusResponse])
async def list_statuses(
    channel: str | None = None,
    registry: SessionRegistry = Depends(get_registry),
) -> list[SessionStatusResponse]:
    return [_status_response(info) for info in registry.get_session_statuses(channel)]


@router.get("/status/{session_id}", response_model=SessionStatusResponse)
async def get_status(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionStatusResponse:
    info = registry.get_session_status(session_id)
    if info is None:
        raise SessionNotFoundError(session_id)
    return _status_response(info)


@router.post("/batch", response_model=list[BatchResultResponse])
async def send_batch(
    request: BatchRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> list[BatchResultResponse]:
    results = await registry.send_batch(request.session_ids, request.prompt or "")
    return [
        BatchResultResponse(session_id=r.session_id, status=r.status, content=r.content, error=r.error)
        for r in results
    ]


@router.delete("/session/{session_id}", response_model=MessageResponse)
async def delete_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> MessageResponse:
    await registry.delete_session(session_id)
    return MessageResponse(message="Session deleted")
