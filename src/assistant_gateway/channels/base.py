from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from loguru import logger

_PLANNED_CHANNELS = ("discord", "slack", "line")


@runtime_checkable
class ChatChannel(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def is_running(self) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@dataclass(frozen=True)
class ChannelInfo:
    name: str
    enabled: bool
    status: str


class ChannelService:
    """Starts and stops every chat channel; one channel failing never blocks the others."""

    def __init__(self, channels: list[ChatChannel]):
        self._channels = list(channels)

    @property
    def channels(self) -> list[ChatChannel]:
        return list(self._channels)

    def get(self, name: str) -> ChatChannel | None:
        for channel in self._channels:
            if channel.name == name:
                return channel
        return None

    async def start_all(self) -> None:
        for channel in self._channels:
            try:
                await channel.start()
                logger.info(f"Channel started: {channel.name}")
            except Exception as ex:
                logger.error(f"Failed to start channel {channel.name}: {ex}")

    async def stop_all(self) -> None:
        for channel in self._channels:
            try:
                await channel.stop()
                logger.info(f"Channel stopped: {channel.name}")
            except Exception as ex:
                logger.error(f"Failed to stop channel {channel.name}: {ex}")

    def describe(self, *, telegram_enabled: bool) -> list[ChannelInfo]:
        telegram = self.get("telegram")
        if not telegram_enabled:
            telegram_status = "disabled"
        elif telegram is not None and telegram.is_running:
            telegram_status = "running"
        else:
            telegram_status = "stopped"

        infos = [ChannelInfo(name="telegram", enabled=telegram_enabled, status=telegram_status)]
        infos.extend(ChannelInfo(name=name, enabled=False, status="not_implemented") for name in _PLANNED_CHANNELS)
        return infos
