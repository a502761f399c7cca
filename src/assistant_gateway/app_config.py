from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_MODEL = "claude-sonnet-4.5"


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str
    telegram_bot_token: str | None
    telegram_allowed_chat_id: int | None
    working_directory: str | None


@dataclass
class TelegramConfig:
    bot_token: str | None = None
    allowed_chat_id: int | None = None
    default_model: str = DEFAULT_MODEL
    poll_timeout_seconds: int = 30

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)


@dataclass
class FrontendConfig:
    directory: str = "Frontend"
    command: list[str] = field(default_factory=lambda: ["npm", "run", "dev"])
    port: int = 5173
    start_timeout_seconds: float = 20.0


@dataclass
class AppConfig:
    provider_name: str
    default_model: str
    max_tokens: int
    temperature: float
    max_conversation_messages: int
    working_directory: str | None
    restrict_to_working_directory: bool
    client_start_timeout_seconds: float
    send_timeout_seconds: float | None
    host: str
    port: int
    cors_origins: list[str]
    telegram: TelegramConfig
    frontend: FrontendConfig
    assistant_cli_command: list[str]
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _to_chat_id(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"AllowedChatId must be an integer, got {value!r}") from None


def _to_command(value: object, default: list[str]) -> list[str]:
    if value is None:
        return list(default)
    if isinstance(value, str):
        return value.split()
    return [str(part) for part in value]


def _parse_telegram(section: dict) -> TelegramConfig:
    return TelegramConfig(
        bot_token=str(section.get("BotToken", "")).strip() or None,
        allowed_chat_id=_to_chat_id(section.get("AllowedChatId")),
        default_model=str(section.get("DefaultModel", DEFAULT_MODEL)).strip() or DEFAULT_MODEL,
        poll_timeout_seconds=int(section.get("PollTimeoutSeconds", 30)),
    )


def _parse_frontend(section: dict) -> FrontendConfig:
    defaults = FrontendConfig()
    return FrontendConfig(
        directory=str(section.get("Directory", defaults.directory)),
        command=_to_command(section.get("Command"), defaults.command),
        port=int(section.get("Port", defaults.port)),
        start_timeout_seconds=float(section.get("StartTimeoutSeconds", defaults.start_timeout_seconds)),
    )


def parse_app_config(config: dict) -> AppConfig:
    send_timeout = config.get("SendTimeoutSeconds")
    return AppConfig(
        provider_name=config.get("Provider", "anthropic").strip().lower(),
        default_model=config.get("DefaultModel", DEFAULT_MODEL),
        max_tokens=int(config.get("MaxTokens", 8192)),
        temperature=float(config.get("Temperature", 1.0)),
        max_conversation_messages=int(config.get("MaxConversationMessages", 50)),
        working_directory=config.get("WorkingDirectory"),
        restrict_to_working_directory=_to_bool(config.get("RestrictToWorkingDirectory", True), default=True),
        client_start_timeout_seconds=float(config.get("ClientStartTimeoutSeconds", 30)),
        send_timeout_seconds=float(send_timeout) if send_timeout else None,
        host=str(config.get("Host", "127.0.0.1")),
        port=int(config.get("Port", 5000)),
        cors_origins=list(config.get("CorsOrigins", ["http://localhost:5173"])),
        telegram=_parse_telegram(config.get("Telegram", {}) or {}),
        frontend=_parse_frontend(config.get("Frontend", {}) or {}),
        assistant_cli_command=_to_command(config.get("AssistantCliCommand"), ["copilot", "--version"]),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    if provider_name == "openai":
        provider_api_key = os.environ.get("OPENAI_API_KEY", "")
        provider_env_var = "OPENAI_API_KEY"
    else:
        provider_api_key = os.environ.get("ANTHROPIC_API_KEY", "")
        provider_env_var = "ANTHROPIC_API_KEY"

    return RuntimeEnv(
        provider_api_key=provider_api_key,
        provider_env_var=provider_env_var,
        telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN", "").strip() or None,
        telegram_allowed_chat_id=_to_chat_id(os.environ.get("TELEGRAM_ALLOWED_CHAT_ID")),
        working_directory=os.environ.get("GATEWAY_WORKING_DIRECTORY", "").strip() or None,
    )


def apply_runtime_env(app: AppConfig, env: RuntimeEnv) -> AppConfig:
    """Environment values override the matching config.json keys."""
    if env.telegram_bot_token:
        app.telegram.bot_token = env.telegram_bot_token
    if env.telegram_allowed_chat_id is not None:
        app.telegram.allowed_chat_id = env.telegram_allowed_chat_id
    if env.working_directory:
        app.working_directory = env.working_directory
    return app
