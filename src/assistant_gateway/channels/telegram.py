from __future__ import annotations

import asyncio
import contextlib
import os

from loguru import logger

from assistant_gateway.app_config import TelegramConfig
from assistant_gateway.assistant.client import FileAttachment
from assistant_gateway.channels.commands import CommandRequest, CommandTable
from assistant_gateway.channels.replies import NO_RESPONSE, ReplyFormatter, error_reply, ok_reply
from assistant_gateway.channels.telegram_api import TelegramBotApi
from assistant_gateway.directories import list_directories, resolve_directory_choice
from assistant_gateway.errors import GatewayError
from assistant_gateway.sessions.registry import SessionRegistry

CHANNEL_NAME = "telegram"
DEFAULT_IMAGE_PROMPT = "Describe this image"
POLL_ERROR_DELAY_SECONDS = 5.0

AVAILABLE_MODELS: list[tuple[str, str]] = [
    ("claude-sonnet-4.5", "Claude Sonnet 4.5 (default, balanced)"),
    ("claude-haiku-4.5", "Claude Haiku 4.5 (fast/cheap)"),
    ("claude-opus-4.5", "Claude Opus 4.5 (advanced)"),
    ("claude-sonnet-4", "Claude Sonnet 4 (standard)"),
    ("gemini-3-pro-preview", "Gemini 3 Pro Preview (standard)"),
    ("gpt-5.2-codex", "GPT-5.2 Codex (standard)"),
    ("gpt-5.2", "GPT-5.2 (standard)"),
    ("gpt-5.1-codex-max", "GPT-5.1 Codex Max (standard)"),
    ("gpt-5.1-codex", "GPT-5.1 Codex (standard)"),
    ("gpt-5.1", "GPT-5.1 (standard)"),
    ("gpt-5", "GPT-5 (standard)"),
    ("gpt-5.1-codex-mini", "GPT-5.1 Codex Mini (fast/cheap)"),
    ("gpt-5-mini", "GPT-5 Mini (fast/cheap)"),
    ("gpt-4.1", "GPT-4.1 (fast/cheap)"),
]

_SESSION_HELP = """\
📌 Session commands:
• /session list - list sessions
• /session use <number|sessionId> - switch the active session
• /session new - create a session and switch to it
• /session close <number|sessionId> - close a session
• /session status [number|sessionId] - show session status
• /task <prompt> - run a task in a new session
• /task <number[,number2]> <prompt> - run a task on existing sessions"""


def select_model(selection: str) -> tuple[str, str | None]:
    """Resolve a 1-based list index or a model name to (model, description)."""
    selection = selection.strip()
    if selection.isdigit() and 1 <= int(selection) <= len(AVAILABLE_MODELS):
        return AVAILABLE_MODELS[int(selection) - 1]
    for model, description in AVAILABLE_MODELS:
        if model.casefold() == selection.casefold():
            return model, description
    return selection, None


def largest_photo(photos: list[dict]) -> dict | None:
    if not photos:
        return None
    return max(photos, key=lambda p: p.get("file_size") or 0)


class TelegramChannel:
    """Long-polls the Bot API and maps chat messages onto registry operations."""

    def __init__(
        self,
        registry: SessionRegistry,
        config: TelegramConfig,
        *,
        api: TelegramBotApi | None = None,
        poll_error_delay_seconds: float = POLL_ERROR_DELAY_SECONDS,
    ):
        self._registry = registry
        self._config = config
        self._api = api if api is not None else (TelegramBotApi(config.bot_token) if config.bot_token else None)
        self._poll_error_delay_seconds = poll_error_delay_seconds
        self._active_sessions: dict[int, str] = {}
        self._offset = 0
        self._poll_task: asyncio.Task | None = None
        self._replies = ReplyFormatter()
        self._commands = self._build_command_table()

    @property
    def name(self) -> str:
        return CHANNEL_NAME

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def offset(self) -> int:
        return self._offset

    def active_session(self, chat_id: int) -> str | None:
        return self._active_sessions.get(chat_id)

    async def start(self) -> None:
        if self._api is None:
            logger.warning("Telegram BotToken not configured, skipping Telegram channel")
            return
        if self.is_running:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("Telegram channel started")

    async def stop(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._api is not None:
            await self._api.aclose()
        logger.info("Telegram channel stopped")

    async def poll_once(self) -> int:
        """Fetch and handle one batch of updates. Returns how many were handled."""
        updates = await self._api.get_updates(self._offset, self._config.poll_timeout_seconds)
        for update in updates:
            self._offset = max(self._offset, int(update.get("update_id", 0)) + 1)
            await self.handle_update(update)
        return len(updates)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as ex:
                logger.error(f"Error polling Telegram updates: {ex}")
                await asyncio.sleep(self._poll_error_delay_seconds)

    async def handle_update(self, update: dict) -> None:
        message = update.get("message")
        if not message:
            return

        chat_id = int(message.get("chat", {}).get("id", 0))
        allowed = self._config.allowed_chat_id
        if allowed is not None and allowed != chat_id:
            logger.warning(f"Telegram message from unauthorized chat: {chat_id}")
            return

        text = (message.get("text") or "").strip()
        caption = (message.get("caption") or "").strip()
        photos = message.get("photo") or []
        if not text and not photos:
            return

        try:
            reply = None
            if text.startswith("/"):
                reply = await self._commands.try_handle(chat_id, text)
            if reply is None:
                reply = await self._handle_prompt(chat_id, text, caption, photos)
        except GatewayError as ex:
            logger.warning(f"Telegram request from {chat_id} failed: {ex.message}")
            reply = error_reply(ex.message)
        except Exception as ex:
            logger.error(f"Telegram request from {chat_id} failed: {ex}")
            reply = error_reply(str(ex) or type(ex).__name__)

        await self._api.send_message(chat_id, reply)

    async def _handle_prompt(self, chat_id: int, text: str, caption: str, photos: list[dict]) -> str:
        session_id = await self._get_or_create_session(chat_id)
        logger.info(f"Telegram message received from {chat_id} in session {session_id}")

        prompt = text or caption or DEFAULT_IMAGE_PROMPT
        photo = largest_photo(photos)
        downloaded: str | None = None
        attachments: list[FileAttachment] | None = None
        if photo is not None:
            downloaded = await self._api.download_file(photo["file_id"])
            attachments = [FileAttachment(path=downloaded, display_name=os.path.basename(downloaded))]

        try:
            messages = await self._registry.send_message(session_id, prompt, attachments)
        finally:
            if downloaded is not None:
                with contextlib.suppress(OSError):
                    os.remove(downloaded)

        content = messages[-1].content if messages else NO_RESPONSE
        status = self._registry.get_session_status(session_id)
        return self._replies.format_prompt_reply(
            session_id,
            status.status.value if status else "idle",
            content or NO_RESPONSE,
            status.last_updated_at if status else None,
        )

    async def _get_or_create_session(self, chat_id: int) -> str:
        session_id = self._active_sessions.get(chat_id)
        if session_id is not None:
            if self._registry.get_session_status(session_id) is not None:
                return session_id
            del self._active_sessions[chat_id]

        session_id = await self._registry.create_session(self._config.default_model, CHANNEL_NAME)
        self._active_sessions[chat_id] = session_id
        return session_id

    def resolve_session_id(self, reference: str) -> str | None:
        """Match a 1-based list index, an exact id, or a unique id prefix (case-insensitive)."""
        reference = reference.strip()
        if not reference:
            return None

        sessions = self._registry.get_session_statuses()
        if reference.isdigit():
            index = int(reference)
            return sessions[index - 1].session_id if 1 <= index <= len(sessions) else None

        folded = reference.casefold()
        for session in sessions:
            if session.session_id.casefold() == folded:
                return session.session_id

        matches = [s.session_id for s in sessions if s.session_id.casefold().startswith(folded)]
        return matches[0] if len(matches) == 1 else None

    def _build_command_table(self) -> CommandTable:
        table = CommandTable()
        table.register("help", self._cmd_help, description="show all commands")
        table.register("new", self._cmd_new, description="create a session and switch to it")
        table.register("use", self._cmd_use, usage="/use <number|sessionId>", description="switch session")
        table.register("list", self._cmd_list, description="list all sessions")
        table.register("close", self._cmd_close, usage="/close <number|sessionId>", description="close a session")
        table.register(
            "status", self._cmd_status, usage="/status [number|sessionId]", description="show session status"
        )
        table.register("session", self._cmd_session, max_tokens=3, usage="/session <subcommand>",
                       description="session management")
        table.register("task", self._cmd_task, max_tokens=3, usage="/task [number[,number2]] <prompt>",
                       description="run a task in a new or existing session(s)")
        table.register("model", self._cmd_model, usage="/model [model]", description="switch model")
        table.register("cd", self._cmd_cd, usage="/cd [dir]", description="list or switch working directory")
        return table

    async def _cmd_help(self, request: CommandRequest) -> str:
        return "\n".join(["📖 Commands:", *self._commands.help_lines()])

    async def _cmd_new(self, request: CommandRequest) -> str:
        session_id = await self._registry.create_session(self._config.default_model, CHANNEL_NAME)
        self._active_sessions[request.chat_id] = session_id
        return ok_reply(f"Created and switched to new session: {session_id}")

    async def _cmd_use(self, request: CommandRequest) -> str:
        if not request.args:
            return error_reply("Usage: /use <sessionId>")
        return self._set_active(request.chat_id, request.args[0])

    async def _cmd_list(self, request: CommandRequest) -> str:
        return self._replies.format_session_list(
            self._registry.get_session_statuses(),
            active_session_id=self._active_sessions.get(request.chat_id),
        )

    async def _cmd_close(self, request: CommandRequest) -> str:
        if not request.args:
            return error_reply("Usage: /close <sessionId>")
        return await self._close(request.chat_id, request.args[0])

    async def _cmd_status(self, request: CommandRequest) -> str:
        if not request.args:
            return self._status_reply(await self._get_or_create_session(request.chat_id))
        session_id = self.resolve_session_id(request.args[0])
        if session_id is None:
            return error_reply(f"Session not found: {request.args[0]}")
        return self._status_reply(session_id)

    async def _cmd_session(self, request: CommandRequest) -> str:
        if not request.args:
            return _SESSION_HELP

        sub = request.args[0].lower()
        target = request.args[1].strip() if len(request.args) > 1 else ""
        if sub == "list":
            return await self._cmd_list(request)
        if sub == "new":
            return await self._cmd_new(request)
        if sub == "use":
            return self._set_active(request.chat_id, target) if target else error_reply("Usage: /session use <sessionId>")
        if sub == "close":
            return await self._close(request.chat_id, target) if target else error_reply("Usage: /session close <sessionId>")
        if sub == "status":
            if not target:
                return self._status_reply(await self._get_or_create_session(request.chat_id))
            session_id = self.resolve_session_id(target)
            return self._status_reply(session_id) if session_id else error_reply(f"Session not found: {target}")
        return _SESSION_HELP

    async def _cmd_task(self, request: CommandRequest) -> str:
        if not request.args:
            return "Usage:\n• /task <prompt> (runs in a new session)\n• /task <number[,number2]> <prompt>"

        target_ids = self._resolve_task_targets(request.args[0]) if len(request.args) > 1 else None
        if isinstance(target_ids, str):
            return error_reply(f"Session not found: {target_ids}")

        if target_ids:
            prompt = request.args[1].strip()
        else:
            prompt = " ".join(request.args).strip()
            session_id = await self._registry.create_session(self._config.default_model, CHANNEL_NAME)
            self._active_sessions[request.chat_id] = session_id
            target_ids = [session_id]

        if not prompt:
            return error_reply("Prompt is required")

        results = await self._registry.send_batch(target_ids, prompt)
        return self._replies.format_task_results(results)

    def _resolve_task_targets(self, token: str) -> list[str] | str | None:
        """Resolve a comma-separated session reference list.

        Returns the resolved ids, the first unresolvable reference when the token
        is clearly a reference list, or None when the token is ordinary prompt text.
        """
        references = [r.strip() for r in token.split(",") if r.strip()]
        if not references:
            return None

        resolved: list[str] = []
        for reference in references:
            session_id = self.resolve_session_id(reference)
            if session_id is None:
                looks_like_list = "," in token or all(r.isdigit() for r in references)
                return reference if looks_like_list else None
            resolved.append(session_id)
        return resolved

    async def _cmd_model(self, request: CommandRequest) -> str:
        if not request.args:
            return self._replies.format_model_list(AVAILABLE_MODELS)

        model, description = select_model(request.args[0])
        try:
            session_id = await self._get_or_create_session(request.chat_id)
            await self._registry.update_session_model(session_id, model)
        except GatewayError as ex:
            logger.error(f"Failed to switch model to {model}: {ex.message}")
            return error_reply(f"Failed to switch model: {ex.message}")
        return ok_reply(f"Model switched to: {description or model}")

    async def _cmd_cd(self, request: CommandRequest) -> str:
        lifecycle = self._registry.lifecycle
        base_directory = lifecycle.base_directory
        try:
            entries = list_directories(base_directory)
        except GatewayError as ex:
            return error_reply(f"Cannot list directories: {ex.message}")

        if not request.args:
            return self._replies.format_directory_list(
                entries,
                current_directory=lifecycle.get_current_directory(),
                base_directory=os.path.abspath(base_directory),
            )

        if not entries:
            return error_reply("No directories to switch to under the base directory")

        selection = request.args[0].strip()
        if selection.isdigit() and not 1 <= int(selection) <= len(entries):
            return error_reply(f"Invalid directory number, choose 1-{len(entries)}")

        entry = resolve_directory_choice(selection, entries)
        if entry is None:
            return error_reply(f"Directory not found: {selection}")

        try:
            await lifecycle.switch_directory(entry.full_path)
        except GatewayError as ex:
            logger.error(f"Failed to switch directory to {entry.full_path}: {ex.message}")
            return error_reply(f"Failed to switch directory: {ex.message}")
        self._active_sessions.clear()
        return ok_reply(f"Switched to directory: {entry.name}")

    def _set_active(self, chat_id: int, reference: str) -> str:
        session_id = self.resolve_session_id(reference)
        if session_id is None:
            return error_reply(f"Session not found: {reference}")
        self._active_sessions[chat_id] = session_id
        return ok_reply(f"Switched to session: {session_id}")

    async def _close(self, chat_id: int, reference: str) -> str:
        session_id = self.resolve_session_id(reference)
        if session_id is None:
            return error_reply(f"Session not found: {reference}")
        await self._registry.delete_session(session_id)
        if self._active_sessions.get(chat_id) == session_id:
            del self._active_sessions[chat_id]
        return ok_reply(f"Closed session: {session_id}")

    def _status_reply(self, session_id: str) -> str:
        status = self._registry.get_session_status(session_id)
        if status is None:
            return error_reply(f"Session not found: {session_id}")
        return self._replies.format_session_status(status)
