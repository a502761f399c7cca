from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from loguru import logger

from assistant_gateway.assistant.client import AssistantClient, ClientFactory
from assistant_gateway.errors import ClientFaultError, DirectoryNotFoundError, InvalidArgumentError

TeardownListener = Callable[[bool], Awaitable[None]]


class ReadWriteGate:
    """Async reader/writer lock. A waiting writer blocks new readers."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._writers_waiting == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class ClientLifecycleManager:
    """Owns the single assistant client and the directory it is bound to.

    Session creation and prompt dispatch run under the shared side of the
    gate; directory switches and resets take it exclusively, so nobody can
    borrow a client that is halfway through being replaced.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        base_directory: str | None = None,
        start_timeout_seconds: float = 30.0,
    ):
        self._client_factory = client_factory
        self._base_directory = base_directory
        self._working_directory: str | None = None
        self._start_timeout_seconds = start_timeout_seconds
        self._client: AssistantClient | None = None
        self._gate = ReadWriteGate()
        self._init_lock = asyncio.Lock()
        self._teardown_listeners: list[TeardownListener] = []

    @property
    def base_directory(self) -> str | None:
        return self._base_directory

    @property
    def client(self) -> AssistantClient | None:
        return self._client

    def add_teardown_listener(self, listener: TeardownListener) -> None:
        """Register a callback run under the exclusive gate before the client is replaced.

        The callback receives True when live session handles should be disposed.
        """
        self._teardown_listeners.append(listener)

    def get_current_directory(self) -> str:
        return self._working_directory or self._base_directory or os.getcwd()

    async def ensure_client(self) -> AssistantClient:
        async with self._gate.shared():
            return await self._ensure_client()

    @asynccontextmanager
    async def use_client(self) -> AsyncIterator[AssistantClient]:
        """Borrow the client; a switch or reset waits until the borrow ends."""
        async with self._gate.shared():
            yield await self._ensure_client()

    async def switch_directory(self, new_directory: str) -> None:
        if not new_directory or not new_directory.strip():
            raise InvalidArgumentError("Directory path is required")
        path = os.path.abspath(os.path.expanduser(new_directory.strip()))
        if not os.path.isdir(path):
            raise DirectoryNotFoundError(new_directory.strip())

        # A half-finished teardown is worse than a slow one.
        await asyncio.shield(self._replace_client(path, dispose_handles=False))
        logger.info(f"Switched working directory to {path}")

    async def reset_client(self) -> None:
        await asyncio.shield(self._replace_client(None, dispose_handles=True))
        logger.info(f"Assistant client reset in {self.get_current_directory()}")

    async def shutdown(self) -> None:
        async with self._gate.exclusive():
            await self._notify_teardown(dispose_handles=True)
            client, self._client = self._client, None
            if client is not None:
                await self._stop_client(client)

    async def _ensure_client(self) -> AssistantClient:
        client = self._client
        if client is not None:
            return client
        async with self._init_lock:
            if self._client is None:
                self._client = await self._start_client(self.get_current_directory())
            return self._client

    async def _replace_client(self, directory: str | None, *, dispose_handles: bool) -> None:
        async with self._gate.exclusive():
            await self._notify_teardown(dispose_handles)

            client, self._client = self._client, None
            if client is not None:
                await self._stop_client(client)

            if directory is not None:
                self._working_directory = directory

            # On failure the manager is left without a client; the next borrow retries.
            self._client = await self._start_client(self.get_current_directory())

    async def _notify_teardown(self, dispose_handles: bool) -> None:
        for listener in list(self._teardown_listeners):
            try:
                await listener(dispose_handles)
            except Exception as ex:
                logger.error(f"Session teardown failed: {ex}")

    async def _start_client(self, directory: str) -> AssistantClient:
        client = self._client_factory(directory)
        try:
            await asyncio.wait_for(client.start(), self._start_timeout_seconds)
        except asyncio.TimeoutError as ex:
            await self._stop_client(client)
            raise ClientFaultError(
                f"Assistant client did not start within {self._start_timeout_seconds:g}s"
            ) from ex
        logger.info(f"Assistant client ready in {directory}")
        return client

    async def _stop_client(self, client: AssistantClient) -> None:
        try:
            await client.stop()
        except Exception as ex:
            logger.warning(f"Error stopping assistant client: {ex}")
