from __future__ import annotations

import asyncio

from loguru import logger

from assistant_gateway.assistant.client import AssistantSession, FileAttachment, Subscription
from assistant_gateway.errors import ClientFaultError, InvalidArgumentError, SessionNotFoundError
from assistant_gateway.sessions.batch import BatchDispatcher
from assistant_gateway.sessions.lifecycle import ClientLifecycleManager
from assistant_gateway.sessions.models import (
    ChatMessage,
    SessionState,
    SessionStatusInfo,
    SessionTaskResult,
)
from assistant_gateway.sessions.translator import EventTranslator

MODEL_SWITCH_TEMPLATE = "/model {model}"


class SessionRegistry:
    """Tracks every live session and turns its event stream into awaited results.

    One instance is built at startup and shared by the HTTP API and the chat
    channels. Sends on the same session are queued behind a per-session lock.
    """

    def __init__(self, lifecycle: ClientLifecycleManager, *, send_timeout_seconds: float | None = None):
        self._lifecycle = lifecycle
        self._send_timeout_seconds = send_timeout_seconds
        self._handles: dict[str, AssistantSession] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._states: dict[str, SessionState] = {}
        self._translators: dict[str, EventTranslator] = {}
        self._send_locks: dict[str, asyncio.Lock] = {}
        self._batch = BatchDispatcher(self.send_message)
        lifecycle.add_teardown_listener(self._teardown)

    @property
    def lifecycle(self) -> ClientLifecycleManager:
        return self._lifecycle

    async def create_session(self, model: str, channel: str = "web") -> str:
        async with self._lifecycle.use_client() as client:
            handle = await client.create_session(model, streaming=True)
            session_id = handle.session_id
            self._handles[session_id] = handle
            self._states[session_id] = SessionState(session_id, model, channel)
            self._send_locks[session_id] = asyncio.Lock()
        logger.info(f"Session {session_id} created (model={model}, channel={channel})")
        return session_id

    async def send_message(
        self,
        session_id: str,
        prompt: str,
        attachments: list[FileAttachment] | None = None,
    ) -> list[ChatMessage]:
        lock = self._send_locks.get(session_id)
        if lock is None:
            raise SessionNotFoundError(session_id)
        async with lock:
            return await self._send_locked(session_id, prompt, attachments)

    async def update_session_model(self, session_id: str, model: str) -> None:
        if not model or not model.strip():
            raise InvalidArgumentError("Model is required")
        model = model.strip()
        if session_id not in self._states:
            raise SessionNotFoundError(session_id)

        await self.send_message(session_id, MODEL_SWITCH_TEMPLATE.format(model=model))
        # Some models never echo a change event, so the record is updated regardless.
        state = self._states.get(session_id)
        if state is not None:
            state.set_model(model)

    def get_session_status(self, session_id: str) -> SessionStatusInfo | None:
        state = self._states.get(session_id)
        return state.snapshot() if state is not None else None

    def get_session_statuses(self, channel: str | None = None) -> list[SessionStatusInfo]:
        snapshots = [state.snapshot() for state in list(self._states.values())]
        if channel:
            wanted = channel.strip().casefold()
            snapshots = [s for s in snapshots if s.channel.casefold() == wanted]
        snapshots.sort(key=lambda s: s.last_updated_at, reverse=True)
        return snapshots

    def get_active_sessions(self) -> list[str]:
        return list(self._states.keys())

    async def delete_session(self, session_id: str) -> None:
        subscription = self._subscriptions.pop(session_id, None)
        if subscription is not None:
            subscription.dispose()
        translator = self._translators.pop(session_id, None)
        if translator is not None:
            translator.fail(ClientFaultError(f"Session {session_id} was deleted"))
        self._states.pop(session_id, None)
        self._send_locks.pop(session_id, None)
        handle = self._handles.pop(session_id, None)
        if handle is None:
            return
        try:
            await handle.dispose()
        except Exception as ex:
            logger.warning(f"Error disposing session {session_id}: {ex}")
        logger.info(f"Session {session_id} deleted")

    async def send_batch(self, session_ids: list[str], prompt: str) -> list[SessionTaskResult]:
        return await self._batch.dispatch(session_ids, prompt)

    async def _send_locked(
        self,
        session_id: str,
        prompt: str,
        attachments: list[FileAttachment] | None,
    ) -> list[ChatMessage]:
        state = self._states.get(session_id)
        handle = self._handles.get(session_id)
        if state is None or handle is None:
            raise SessionNotFoundError(session_id)

        state.mark_running(prompt)
        self._dispose_subscription(session_id)

        translator = EventTranslator(state, asyncio.get_running_loop())
        subscription = handle.on(translator.handle)
        self._subscriptions[session_id] = subscription
        self._translators[session_id] = translator

        try:
            async with self._lifecycle.use_client():
                if self._handles.get(session_id) is not handle:
                    raise SessionNotFoundError(session_id)
                try:
                    await handle.send(prompt, attachments)
                except Exception as ex:
                    message = str(ex) or type(ex).__name__
                    logger.error(f"Dispatch to session {session_id} failed: {message}")
                    state.mark_error(message)
                    raise

            try:
                return await translator.wait(self._send_timeout_seconds)
            except asyncio.TimeoutError as ex:
                message = f"No completion within {self._send_timeout_seconds:g}s"
                state.mark_error(message)
                raise ClientFaultError(f"Session {session_id}: {message}") from ex
        except asyncio.CancelledError:
            if not translator.is_terminal:
                state.mark_error("Send cancelled")
            raise
        finally:
            translator.abandon()
            if self._translators.get(session_id) is translator:
                del self._translators[session_id]
            if self._subscriptions.get(session_id) is subscription:
                del self._subscriptions[session_id]
            subscription.dispose()

    def _dispose_subscription(self, session_id: str) -> None:
        subscription = self._subscriptions.pop(session_id, None)
        if subscription is not None:
            subscription.dispose()

    async def _teardown(self, dispose_handles: bool) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.dispose()
        self._subscriptions.clear()

        for translator in list(self._translators.values()):
            translator.fail(ClientFaultError("Session closed by a client reset"))
        self._translators.clear()

        handles = list(self._handles.values())
        self._handles.clear()
        self._states.clear()
        self._send_locks.clear()
        logger.info(f"Cleared {len(handles)} session(s)")

        if not dispose_handles:
            return
        for handle in handles:
            try:
                await handle.dispose()
            except Exception as ex:
                logger.warning(f"Error disposing session {handle.session_id}: {ex}")
