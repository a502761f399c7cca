from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

PREVIEW_LENGTH = 120


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_preview(content: str | None) -> str | None:
    """Trim a response and cut it to PREVIEW_LENGTH characters plus an ellipsis."""
    if content is None or not content.strip():
        return content
    trimmed = content.strip()
    if len(trimmed) <= PREVIEW_LENGTH:
        return trimmed
    return trimmed[:PREVIEW_LENGTH] + "..."


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    timestamp: datetime


@dataclass(frozen=True)
class SessionTaskResult:
    session_id: str
    status: str
    content: str = ""
    error: str | None = None


@dataclass(frozen=True)
class SessionStatusInfo:
    session_id: str
    model: str
    channel: str
    status: SessionStatus
    created_at: datetime
    last_updated_at: datetime
    last_prompt: str | None = None
    last_response: str | None = None
    last_response_preview: str | None = None
    last_error: str | None = None


class SessionState:
    """Mutable status record for one session.

    Every mutation and every snapshot takes the record's own lock, so readers
    never see a half-applied transition.
    """

    def __init__(self, session_id: str, model: str, channel: str):
        now = utc_now()
        self._lock = threading.Lock()
        self._session_id = session_id
        self._model = model
        self._channel = channel
        self._status = SessionStatus.IDLE
        self._created_at = now
        self._last_updated_at = now
        self._last_prompt: str | None = None
        self._last_response: str | None = None
        self._last_error: str | None = None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def channel(self) -> str:
        return self._channel

    def snapshot(self) -> SessionStatusInfo:
        with self._lock:
            return SessionStatusInfo(
                session_id=self._session_id,
                model=self._model,
                channel=self._channel,
                status=self._status,
                created_at=self._created_at,
                last_updated_at=self._last_updated_at,
                last_prompt=self._last_prompt,
                last_response=self._last_response,
                last_response_preview=build_preview(self._last_response),
                last_error=self._last_error,
            )

    def mark_running(self, prompt: str) -> None:
        with self._lock:
            self._status = SessionStatus.RUNNING
            self._last_prompt = prompt
            self._last_error = None
            self._touch()

    def record_response(self, content: str) -> None:
        with self._lock:
            self._last_response = content
            self._touch()

    def mark_idle(self) -> None:
        with self._lock:
            self._status = SessionStatus.IDLE
            self._touch()

    def mark_error(self, message: str) -> None:
        with self._lock:
            self._status = SessionStatus.ERROR
            self._last_error = message
            self._touch()

    def set_model(self, model: str) -> None:
        with self._lock:
            self._model = model
            self._touch()

    def _touch(self) -> None:
        now = utc_now()
        # Wall clock can step backwards; the record's timestamp never does.
        if now > self._last_updated_at:
            self._last_updated_at = now
