from __future__ import annotations

import asyncio
import threading
from enum import Enum

from loguru import logger

from assistant_gateway.assistant.events import (
    AssistantMessage,
    AssistantMessageDelta,
    SessionError,
    SessionEvent,
    SessionIdle,
    SessionModelChange,
)
from assistant_gateway.errors import ClientFaultError
from assistant_gateway.sessions.models import ChatMessage, SessionState, utc_now


class TranslatorPhase(str, Enum):
    SENT = "sent"
    ACCUMULATING = "accumulating"
    COMPLETED = "completed"
    FAILED = "failed"


class EventTranslator:
    """Folds one send's event stream into a single awaited result.

    The event callback may run on any thread. It only updates the session
    record and pushes a terminal result onto the owning loop; it never blocks.
    The completion future is resolved at most once.
    """

    def __init__(self, state: SessionState, loop: asyncio.AbstractEventLoop):
        self._state = state
        self._loop = loop
        self._future: asyncio.Future[list[ChatMessage]] = loop.create_future()
        self._lock = threading.Lock()
        self._phase = TranslatorPhase.SENT
        self._messages: list[ChatMessage] = []

    @property
    def phase(self) -> TranslatorPhase:
        return self._phase

    @property
    def is_terminal(self) -> bool:
        return self._phase in (TranslatorPhase.COMPLETED, TranslatorPhase.FAILED)

    @property
    def messages(self) -> list[ChatMessage]:
        with self._lock:
            return list(self._messages)

    def handle(self, event: SessionEvent) -> None:
        try:
            self._dispatch(event)
        except Exception as ex:
            message = str(ex) or type(ex).__name__
            logger.error(f"Event handler for session {self._state.session_id} failed: {message}")
            self.fail(ClientFaultError(message))

    async def wait(self, timeout: float | None = None) -> list[ChatMessage]:
        if timeout is None:
            return await self._future
        return await asyncio.wait_for(self._future, timeout)

    def fail(self, error: Exception) -> None:
        """Terminate with a failure, recording it on the session."""
        if self._finish(TranslatorPhase.FAILED):
            self._state.mark_error(getattr(error, "message", None) or str(error))
            self._resolve(error)

    def abandon(self) -> None:
        """Terminate without a result; used once nobody is waiting any more."""
        if self._finish(TranslatorPhase.FAILED):
            self._loop.call_soon_threadsafe(self._cancel_future)

    def _dispatch(self, event: SessionEvent) -> None:
        if self.is_terminal:
            return

        if isinstance(event, AssistantMessageDelta):
            self._advance()
        elif isinstance(event, AssistantMessage):
            with self._lock:
                self._messages.append(ChatMessage("assistant", event.content, utc_now()))
            self._advance()
            self._state.record_response(event.content)
        elif isinstance(event, SessionIdle):
            if self._finish(TranslatorPhase.COMPLETED):
                self._state.mark_idle()
                self._resolve(None)
        elif isinstance(event, SessionError):
            self.fail(ClientFaultError(event.message))
        elif isinstance(event, SessionModelChange):
            self._state.set_model(event.model)
        else:
            logger.debug(f"Ignoring unknown event {type(event).__name__} for session {self._state.session_id}")

    def _advance(self) -> None:
        with self._lock:
            if self._phase is TranslatorPhase.SENT:
                self._phase = TranslatorPhase.ACCUMULATING

    def _finish(self, phase: TranslatorPhase) -> bool:
        with self._lock:
            if self._phase in (TranslatorPhase.COMPLETED, TranslatorPhase.FAILED):
                return False
            self._phase = phase
            return True

    def _resolve(self, error: Exception | None) -> None:
        messages = self.messages
        self._loop.call_soon_threadsafe(self._set_future, messages, error)

    def _set_future(self, messages: list[ChatMessage], error: Exception | None) -> None:
        if self._future.done():
            return
        if error is None:
            self._future.set_result(messages)
        else:
            self._future.set_exception(error)

    def _cancel_future(self) -> None:
        if not self._future.done():
            self._future.cancel()
