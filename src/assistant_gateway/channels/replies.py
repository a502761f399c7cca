from __future__ import annotations

import os
from datetime import datetime

from assistant_gateway.directories import DirectoryEntry
from assistant_gateway.sessions.models import SessionStatusInfo, SessionTaskResult, build_preview

ERROR_PREFIX = "❌ "
OK_PREFIX = "✅ "
NO_RESPONSE = "(no response)"


def error_reply(message: str) -> str:
    return f"{ERROR_PREFIX}{message}"


def ok_reply(message: str) -> str:
    return f"{OK_PREFIX}{message}"


class ReplyFormatter:
    """Plain-text renderings of registry state for chat channels."""

    def __init__(self, *, line_prefix: str = ""):
        self._line_prefix = line_prefix

    def format_prompt_reply(self, session_id: str, status: str, content: str, updated_at: datetime | None) -> str:
        lines = [f"{self._line_prefix}🧾 Session: {session_id}", f"{self._line_prefix}Status: {status}"]
        if updated_at is not None:
            lines.append(f"{self._line_prefix}Updated: {updated_at:%H:%M:%S} UTC")
        lines.append("")
        lines.append(content)
        return "\n".join(lines)

    def format_session_list(self, sessions: list[SessionStatusInfo], *, active_session_id: str | None) -> str:
        if not sessions:
            return "No sessions yet. Use /session new to create one."
        lines = [f"{self._line_prefix}📋 Sessions (switch with /use <number>):"]
        for index, session in enumerate(sessions, start=1):
            marker = "✓" if session.session_id == active_session_id else " "
            lines.append(
                f"{self._line_prefix}{marker} {index}. {session.session_id} "
                f"[{session.status.value}] {session.model}"
            )
        return "\n".join(lines)

    def format_session_status(self, status: SessionStatusInfo) -> str:
        lines = [
            f"{self._line_prefix}🧾 Session: {status.session_id}",
            f"{self._line_prefix}Model: {status.model}",
            f"{self._line_prefix}Channel: {status.channel}",
            f"{self._line_prefix}Status: {status.status.value}",
            f"{self._line_prefix}Last Updated: {status.last_updated_at:%Y-%m-%d %H:%M:%S} UTC",
        ]
        if status.last_response_preview and status.last_response_preview.strip():
            lines.append(f"{self._line_prefix}Last Response: {status.last_response_preview}")
        if status.last_error and status.last_error.strip():
            lines.append(f"{self._line_prefix}Error: {status.last_error}")
        return "\n".join(lines)

    def format_task_results(self, results: list[SessionTaskResult]) -> str:
        lines = [ok_reply("Task finished:")]
        for result in results:
            if result.error:
                lines.append(f"• {result.session_id} [{result.status}] {ERROR_PREFIX}{result.error}")
            else:
                lines.append(f"• {result.session_id} [{result.status}] {build_preview(result.content) or ''}".rstrip())
        return "\n".join(lines)

    def format_directory_list(
        self,
        entries: list[DirectoryEntry],
        *,
        current_directory: str,
        base_directory: str,
    ) -> str:
        lines = [
            f"📂 Current directory: {os.path.basename(current_directory.rstrip(os.sep)) or current_directory}",
            f"🏠 Base directory: {base_directory}",
            "",
            "📋 Available directories:",
        ]
        current = os.path.normcase(os.path.abspath(current_directory))
        for index, entry in enumerate(entries, start=1):
            marker = "✓ " if os.path.normcase(entry.full_path) == current else "  "
            lines.append(f"{marker}{index}. {entry.name}")
        lines.extend([
            "",
            "Usage:",
            "• /cd <number> - switch to that directory",
            "• /cd <name> - switch to the named directory",
        ])
        return "\n".join(lines)

    def format_model_list(self, models: list[tuple[str, str]]) -> str:
        lines = ["📋 Available models:", ""]
        for index, (_, description) in enumerate(models, start=1):
            lines.append(f"{index}. {description}")
        lines.extend([
            "",
            "Usage:",
            "• /model <number> - switch model",
            "• /model <name> - switch model",
        ])
        return "\n".join(lines)
