from __future__ import annotations

import os
import tempfile
from typing import Any
from uuid import uuid4

import httpx
from loguru import logger
from tenacity import retry

from assistant_gateway.errors import TransportFaultError
from assistant_gateway.providers.common import default_retry_kwargs

_TELEGRAM_BASE_URL = "https://api.telegram.org"
_TIMEOUT_SECONDS = 30
MAX_MESSAGE_LENGTH = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into Telegram-sized chunks, preferring line boundaries."""
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    if remaining:
        chunks.append(remaining)
    return chunks


class TelegramBotApi:
    """Thin async wrapper over the Telegram Bot HTTP API."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = _TELEGRAM_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_updates(self, offset: int, timeout: int = 30) -> list[dict]:
        result = await self._call(
            "getUpdates",
            params={"offset": offset, "timeout": timeout},
            # The HTTP timeout has to outlive the long poll.
            request_timeout=timeout + 10,
        )
        return list(result or [])

    async def send_message(self, chat_id: int, text: str) -> None:
        for chunk in split_message(text or "(empty)"):
            await self._call("sendMessage", json={"chat_id": chat_id, "text": chunk})

    async def download_file(self, file_id: str, directory: str | None = None) -> str:
        """Fetch a file by id into a uniquely named temp file and return its path."""
        result = await self._call("getFile", params={"file_id": file_id})
        file_path = (result or {}).get("file_path")
        if not file_path:
            raise TransportFaultError("Telegram file path not found")

        url = f"{self._base_url}/file/bot{self._token}/{file_path}"
        try:
            response = await self._get(url)
            response.raise_for_status()
        except httpx.HTTPError as ex:
            raise TransportFaultError(f"Telegram file download failed: {type(ex).__name__}") from ex

        target_dir = directory or tempfile.gettempdir()
        target = os.path.join(target_dir, f"telegram_{uuid4()}_{os.path.basename(file_path)}")
        with open(target, "wb") as f:
            f.write(response.content)
        logger.debug(f"Downloaded Telegram file {file_id} to {target} ({len(response.content):,} bytes)")
        return target

    async def _call(
        self,
        method: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
        request_timeout: float | None = None,
    ) -> Any:
        url = f"{self._base_url}/bot{self._token}/{method}"
        try:
            if json is not None:
                response = await self._post(url, json, request_timeout)
            else:
                response = await self._get(url, params, request_timeout)
        except httpx.HTTPError as ex:
            # Never echo the URL: it carries the bot token.
            raise TransportFaultError(f"Telegram {method} failed: {type(ex).__name__}") from ex

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400 or not payload.get("ok", False):
            description = payload.get("description") or f"HTTP {response.status_code}"
            raise TransportFaultError(f"Telegram {method} failed: {description}")
        return payload.get("result")

    @retry(**default_retry_kwargs((httpx.TransportError,)))
    async def _get(self, url: str, params: dict | None = None, request_timeout: float | None = None) -> httpx.Response:
        kwargs: dict = {"params": params}
        if request_timeout is not None:
            kwargs["timeout"] = request_timeout
        return await self._client.get(url, **kwargs)

    @retry(**default_retry_kwargs((httpx.TransportError,)))
    async def _post(self, url: str, body: dict, request_timeout: float | None = None) -> httpx.Response:
        kwargs: dict = {"json": body}
        if request_timeout is not None:
            kwargs["timeout"] = request_timeout
        return await self._client.post(url, **kwargs)
