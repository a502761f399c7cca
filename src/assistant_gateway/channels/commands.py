from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass


def split_tokens(text: str, max_tokens: int) -> list[str]:
    """Split on whitespace into at most max_tokens pieces; the last keeps the remainder."""
    stripped = text.strip()
    if not stripped:
        return []
    if max_tokens <= 1:
        return [stripped]
    return stripped.split(maxsplit=max_tokens - 1)


def command_name(text: str) -> str | None:
    """Return the lowercased command word of a `/cmd` or `/cmd@bot` message."""
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    head = stripped.split(maxsplit=1)[0][1:]
    return head.split("@", 1)[0].lower() or None


@dataclass(frozen=True)
class CommandRequest:
    chat_id: int
    text: str
    args: list[str]


CommandHandler = Callable[[CommandRequest], Awaitable[str]]


@dataclass(frozen=True)
class Command:
    name: str
    handler: CommandHandler
    max_tokens: int = 2
    usage: str = ""
    description: str = ""


class CommandTable:
    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        *,
        max_tokens: int = 2,
        usage: str = "",
        description: str = "",
    ) -> None:
        key = name.lower()
        if key in self._commands:
            raise ValueError(f"Command already registered: /{key}")
        self._commands[key] = Command(key, handler, max_tokens, usage or f"/{key}", description)

    def lookup(self, text: str) -> Command | None:
        name = command_name(text)
        return self._commands.get(name) if name else None

    async def try_handle(self, chat_id: int, text: str) -> str | None:
        """Run the matching command and return its reply, or None if nothing matched."""
        command = self.lookup(text)
        if command is None:
            return None
        tokens = split_tokens(text, command.max_tokens)
        return await command.handler(CommandRequest(chat_id=chat_id, text=text.strip(), args=tokens[1:]))

    def help_lines(self) -> list[str]:
        return [
            f"• {command.usage} - {command.description}" if command.description else f"• {command.usage}"
            for command in self._commands.values()
        ]
