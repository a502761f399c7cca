from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AssistantMessageDelta:
    session_id: str
    delta: str


@dataclass(frozen=True)
class AssistantMessage:
    session_id: str
    content: str


@dataclass(frozen=True)
class SessionIdle:
    session_id: str


@dataclass(frozen=True)
class SessionError:
    session_id: str
    message: str


@dataclass(frozen=True)
class SessionModelChange:
    session_id: str
    model: str


SessionEvent = AssistantMessageDelta | AssistantMessage | SessionIdle | SessionError | SessionModelChange
