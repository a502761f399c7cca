from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from assistant_gateway.assistant.events import SessionEvent

EventHandler = Callable[[SessionEvent], None]


@dataclass(frozen=True)
class FileAttachment:
    path: str
    display_name: str | None = None


@runtime_checkable
class Subscription(Protocol):
    def dispose(self) -> None: ...


@runtime_checkable
class AssistantSession(Protocol):
    @property
    def session_id(self) -> str: ...

    def on(self, handler: EventHandler) -> Subscription:
        """Register an event handler. Disposing the returned subscription unregisters it."""
        ...

    async def send(self, prompt: str, attachments: list[FileAttachment] | None = None) -> None:
        """Dispatch a prompt. Returns once dispatched; results arrive as events."""
        ...

    async def dispose(self) -> None: ...


@runtime_checkable
class AssistantClient(Protocol):
    @property
    def working_directory(self) -> str: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def create_session(self, model: str, *, streaming: bool = True) -> AssistantSession: ...


ClientFactory = Callable[[str], AssistantClient]
