from __future__ import annotations

from fastapi import APIRouter, Depends

from assistant_gateway.api.deps import get_runtime
from assistant_gateway.api.schemas import ChannelInfoResponse, TelegramSettingsResponse
from assistant_gateway.bootstrap import GatewayRuntime

router = APIRouter(prefix="/channel", tags=["channel"])


@router.get("", response_model=list[ChannelInfoResponse])
async def get_channels(runtime: GatewayRuntime = Depends(get_runtime)) -> list[ChannelInfoResponse]:
    infos = runtime.channels.describe(telegram_enabled=runtime.config.telegram.enabled)
    return [ChannelInfoResponse(name=i.name, enabled=i.enabled, status=i.status) for i in infos]


@router.get("/telegram", response_model=TelegramSettingsResponse)
async def get_telegram_settings(runtime: GatewayRuntime = Depends(get_runtime)) -> TelegramSettingsResponse:
    telegram = runtime.config.telegram
    return TelegramSettingsResponse(
        enabled=telegram.enabled,
        allowed_chat_id=telegram.allowed_chat_id,
        default_model=telegram.default_model,
    )
