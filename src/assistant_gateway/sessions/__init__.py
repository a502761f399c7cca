from assistant_gateway.sessions.batch import BatchDispatcher
from assistant_gateway.sessions.lifecycle import ClientLifecycleManager
from assistant_gateway.sessions.models import (
    ChatMessage,
    SessionStatus,
    SessionStatusInfo,
    SessionTaskResult,
    build_preview,
)
from assistant_gateway.sessions.registry import SessionRegistry

__all__ = [
    "BatchDispatcher",
    "ChatMessage",
    "ClientLifecycleManager",
    "SessionRegistry",
    "SessionStatus",
    "SessionStatusInfo",
    "SessionTaskResult",
    "build_preview",
]
