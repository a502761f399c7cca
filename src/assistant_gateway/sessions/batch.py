from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from assistant_gateway.errors import InvalidArgumentError
from assistant_gateway.sessions.models import ChatMessage, SessionTaskResult

SendFunc = Callable[[str, str], Awaitable[list[ChatMessage]]]


def dedupe_session_ids(session_ids: list[str]) -> list[str]:
    """Drop blanks and case-insensitive duplicates, keeping the first spelling and order."""
    seen: set[str] = set()
    unique: list[str] = []
    for raw in session_ids:
        session_id = (raw or "").strip()
        key = session_id.casefold()
        if not session_id or key in seen:
            continue
        seen.add(key)
        unique.append(session_id)
    return unique


class BatchDispatcher:
    def __init__(self, send: SendFunc):
        self._send = send

    async def dispatch(self, session_ids: list[str], prompt: str) -> list[SessionTaskResult]:
        if not prompt or not prompt.strip():
            raise InvalidArgumentError("Prompt is required")
        unique_ids = dedupe_session_ids(session_ids or [])
        if not unique_ids:
            raise InvalidArgumentError("At least one session id is required")

        logger.info(f"Batch dispatch to {len(unique_ids)} session(s)")
        results = await asyncio.gather(*(self._run_one(sid, prompt) for sid in unique_ids))
        return list(results)

    async def _run_one(self, session_id: str, prompt: str) -> SessionTaskResult:
        try:
            messages = await self._send(session_id, prompt)
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            error = getattr(ex, "message", None) or str(ex) or type(ex).__name__
            logger.warning(f"Batch item {session_id} failed: {error}")
            return SessionTaskResult(session_id=session_id, status="error", error=error)

        content = messages[-1].content if messages else ""
        return SessionTaskResult(session_id=session_id, status="completed", content=content)
