from __future__ import annotations

import os
from dataclasses import dataclass

from assistant_gateway.app_config import AppConfig, RuntimeEnv
from assistant_gateway.assistant.client import AssistantClient, ClientFactory
from assistant_gateway.assistant.provider_client import ProviderAssistantClient
from assistant_gateway.channels.base import ChannelService
from assistant_gateway.channels.telegram import TelegramChannel
from assistant_gateway.channels.telegram_api import TelegramBotApi
from assistant_gateway.operations.supervisor import OperationsSupervisor
from assistant_gateway.provider import create_provider
from assistant_gateway.sessions import ClientLifecycleManager, SessionRegistry


@dataclass
class GatewayRuntime:
    config: AppConfig
    lifecycle: ClientLifecycleManager
    registry: SessionRegistry
    supervisor: OperationsSupervisor
    channels: ChannelService
    telegram: TelegramChannel

    async def startup(self) -> None:
        await self.lifecycle.ensure_client()
        await self.channels.start_all()

    async def shutdown(self) -> None:
        await self.channels.stop_all()
        await self.supervisor.shutdown()
        await self.lifecycle.shutdown()


def resolve_base_directory(working_directory: str | None) -> str | None:
    if not working_directory or not working_directory.strip():
        return None
    return os.path.abspath(os.path.expanduser(working_directory.strip()))


def build_client_factory(app: AppConfig, env: RuntimeEnv) -> ClientFactory:
    provider = create_provider(app.provider_name, env.provider_api_key)

    def factory(directory: str) -> AssistantClient:
        return ProviderAssistantClient(
            provider,
            directory,
            max_tokens=app.max_tokens,
            temperature=app.temperature,
            max_conversation_messages=app.max_conversation_messages,
        )

    return factory


def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    client_factory: ClientFactory | None = None,
    telegram_api: TelegramBotApi | None = None,
    supervisor: OperationsSupervisor | None = None,
) -> GatewayRuntime:
    lifecycle = ClientLifecycleManager(
        client_factory or build_client_factory(app, env),
        base_directory=resolve_base_directory(app.working_directory),
        start_timeout_seconds=app.client_start_timeout_seconds,
    )
    registry = SessionRegistry(lifecycle, send_timeout_seconds=app.send_timeout_seconds)

    if supervisor is None:
        supervisor = OperationsSupervisor(
            app.frontend,
            diagnostic_commands=[
                ["node", "--version"],
                ["npm", "--version"],
                ["git", "--version"],
                app.assistant_cli_command,
            ],
        )

    telegram = TelegramChannel(registry, app.telegram, api=telegram_api)
    return GatewayRuntime(
        config=app,
        lifecycle=lifecycle,
        registry=registry,
        supervisor=supervisor,
        channels=ChannelService([telegram]),
        telegram=telegram,
    )
