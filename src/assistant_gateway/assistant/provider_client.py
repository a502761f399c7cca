from __future__ import annotations

import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import Callable
from uuid import uuid4

from loguru import logger

from assistant_gateway.assistant.client import EventHandler, FileAttachment
from assistant_gateway.assistant.events import (
    AssistantMessage,
    AssistantMessageDelta,
    SessionError,
    SessionEvent,
    SessionIdle,
    SessionModelChange,
)
from assistant_gateway.provider import LLMProvider
from assistant_gateway.system_prompt import build_system_prompt

MODEL_DIRECTIVE = "/model"

_MAX_INLINE_FILE_CHARS = 40_000


def parse_model_directive(prompt: str) -> str | None:
    """Return the target model when the prompt is a `/model <name>` control command."""
    parts = prompt.strip().split(maxsplit=1)
    if len(parts) == 2 and parts[0].lower() == MODEL_DIRECTIVE:
        return parts[1].strip() or None
    return None


def build_user_content(prompt: str, attachments: list[FileAttachment] | None) -> str | list[dict]:
    if not attachments:
        return prompt

    blocks: list[dict] = []
    for attachment in attachments:
        path = Path(attachment.path)
        name = attachment.display_name or path.name
        media_type, _ = mimetypes.guess_type(path.name)
        if media_type and media_type.startswith("image/"):
            data = base64.b64encode(path.read_bytes()).decode("ascii")
            blocks.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": data},
            })
            blocks.append({"type": "text", "text": f"(image above: {name})"})
            continue

        text = path.read_text(encoding="utf-8", errors="replace")
        if len(text) > _MAX_INLINE_FILE_CHARS:
            logger.warning(f"Attachment {name} truncated from {len(text):,} to {_MAX_INLINE_FILE_CHARS:,} chars")
            text = text[:_MAX_INLINE_FILE_CHARS]
        blocks.append({"type": "text", "text": f"Attached file {name}:\n```\n{text}\n```"})

    blocks.append({"type": "text", "text": prompt})
    return blocks


class ProviderSubscription:
    def __init__(self, handlers: list[EventHandler], handler: EventHandler):
        self._handlers = handlers
        self._handler = handler

    def dispose(self) -> None:
        if self._handler in self._handlers:
            self._handlers.remove(self._handler)


class ProviderSession:
    """One conversation against an LLM provider, reported through session events."""

    def __init__(
        self,
        *,
        session_id: str,
        model: str,
        provider: LLMProvider,
        system_prompt: str,
        max_tokens: int,
        temperature: float,
        max_conversation_messages: int,
        streaming: bool,
        on_dispose: Callable[[str], None] | None = None,
    ):
        self._session_id = session_id
        self._model = model
        self._provider = provider
        self._system_prompt = system_prompt
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._max_conversation_messages = max_conversation_messages
        self._streaming = streaming
        self._messages: list[dict] = []
        self._handlers: list[EventHandler] = []
        self._turn_task: asyncio.Task | None = None
        self._disposed = False
        self._on_dispose = on_dispose

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def model(self) -> str:
        return self._model

    @property
    def messages(self) -> list[dict]:
        return list(self._messages)

    def on(self, handler: EventHandler) -> ProviderSubscription:
        self._handlers.append(handler)
        return ProviderSubscription(self._handlers, handler)

    async def send(self, prompt: str, attachments: list[FileAttachment] | None = None) -> None:
        if self._disposed:
            raise RuntimeError(f"Session {self._session_id} has been disposed")
        if self._turn_task is not None and not self._turn_task.done():
            raise RuntimeError(f"Session {self._session_id} is already processing a prompt")

        model = parse_model_directive(prompt)
        if model is not None:
            self._turn_task = asyncio.create_task(self._switch_model(model))
            return

        self._turn_task = asyncio.create_task(self._run_turn(prompt, attachments))

    async def dispose(self) -> None:
        if not self._disposed and self._on_dispose is not None:
            self._on_dispose(self._session_id)
        self._disposed = True
        self._handlers.clear()
        if self._turn_task is not None and not self._turn_task.done():
            self._turn_task.cancel()
            try:
                await self._turn_task
            except asyncio.CancelledError:
                pass
        self._turn_task = None

    async def _switch_model(self, model: str) -> None:
        self._model = model
        logger.info(f"Session {self._session_id} now using model {model}")
        self._emit(SessionModelChange(self._session_id, model))
        self._emit(AssistantMessage(self._session_id, f"Model switched to {model}"))
        self._emit(SessionIdle(self._session_id))

    async def _run_turn(self, prompt: str, attachments: list[FileAttachment] | None) -> None:
        try:
            content = await asyncio.to_thread(build_user_content, prompt, attachments)
        except OSError as ex:
            logger.error(f"Session {self._session_id} could not read attachments: {ex}")
            self._emit(SessionError(self._session_id, str(ex) or type(ex).__name__))
            return

        self._messages.append({"role": "user", "content": content})
        self._trim_conversation_history()

        on_delta = None
        if self._streaming:
            def on_delta(text: str) -> None:
                self._emit(AssistantMessageDelta(self._session_id, text))

        try:
            text, stop_reason = await self._provider.stream_chat(
                self._model,
                self._max_tokens,
                self._temperature,
                self._system_prompt,
                self._messages,
                on_text_delta=on_delta,
            )
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            logger.error(f"Session {self._session_id} turn failed: {ex}")
            # Drop the unanswered prompt so the next turn starts from a valid transcript.
            if self._messages and self._messages[-1]["role"] == "user":
                self._messages.pop()
            self._emit(SessionError(self._session_id, str(ex) or type(ex).__name__))
            return

        if stop_reason == "max_tokens":
            logger.warning(f"Session {self._session_id} response hit max_tokens ({self._max_tokens})")

        self._messages.append({"role": "assistant", "content": [{"type": "text", "text": text}]})
        self._emit(AssistantMessage(self._session_id, text))
        self._emit(SessionIdle(self._session_id))

    def _trim_conversation_history(self) -> None:
        if self._max_conversation_messages <= 0:
            return
        if len(self._messages) <= self._max_conversation_messages:
            return

        remove_count = len(self._messages) - self._max_conversation_messages
        del self._messages[:remove_count]
        # A transcript must open with a user turn.
        while self._messages and self._messages[0]["role"] != "user":
            del self._messages[0]
        logger.info(f"Session {self._session_id} history trimmed by {remove_count} message(s)")

    def _emit(self, event: SessionEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as ex:
                logger.warning(f"Event handler for session {self._session_id} raised: {ex}")


class ProviderAssistantClient:
    """Assistant client that hosts many sessions on top of one LLM provider."""

    def __init__(
        self,
        provider: LLMProvider,
        working_directory: str,
        *,
        max_tokens: int = 8192,
        temperature: float = 1.0,
        max_conversation_messages: int = 50,
    ):
        self._provider = provider
        self._working_directory = working_directory
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._max_conversation_messages = max_conversation_messages
        self._sessions: dict[str, ProviderSession] = {}
        self._started = False

    @property
    def working_directory(self) -> str:
        return self._working_directory

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        if not Path(self._working_directory).is_dir():
            raise FileNotFoundError(f"Working directory does not exist: {self._working_directory}")
        self._started = True
        logger.info(f"Assistant client started in {self._working_directory}")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.dispose()
        logger.info(f"Assistant client stopped ({len(sessions)} session(s) released)")

    async def create_session(self, model: str, *, streaming: bool = True) -> ProviderSession:
        if not self._started:
            raise RuntimeError("Assistant client is not started")
        session = ProviderSession(
            session_id=str(uuid4()),
            model=model,
            provider=self._provider,
            system_prompt=build_system_prompt(self._working_directory),
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            max_conversation_messages=self._max_conversation_messages,
            streaming=streaming,
            on_dispose=self._release,
        )
        self._sessions[session.session_id] = session
        return session

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def _release(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
