import openai
from loguru import logger
from tenacity import retry

from assistant_gateway.provider import TextDeltaCallback
from assistant_gateway.providers.common import default_retry_kwargs, text_of

# Map OpenAI finish reasons to Anthropic-style stop reasons.
_STOP_REASON_MAP = {
    "stop": "end_turn",
    "length": "max_tokens",
    "content_filter": "refusal",
}


def _to_openai_user_parts(content: list[dict]) -> list[dict]:
    parts: list[dict] = []
    for block in content:
        if isinstance(block, str):
            parts.append({"type": "text", "text": block})
        elif block.get("type") == "text":
            parts.append({"type": "text", "text": block["text"]})
        elif block.get("type") == "image":
            source = block.get("source", {})
            data_url = f"data:{source.get('media_type', 'image/png')};base64,{source.get('data', '')}"
            parts.append({"type": "image_url", "image_url": {"url": data_url}})
    return parts


def _to_openai_messages(system_prompt: str, messages: list[dict]) -> list[dict]:
    """Convert internal (Anthropic-style) messages to OpenAI chat format."""
    out: list[dict] = []

    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    for msg in messages:
        role = msg["role"]
        content = msg.get("content", "")

        if role == "assistant":
            out.append({"role": "assistant", "content": text_of(content)})
        elif role == "user":
            if isinstance(content, str):
                out.append({"role": "user", "content": content})
                continue
            parts = _to_openai_user_parts(content)
            # Plain text stays a string so text-only models accept it.
            if all(p["type"] == "text" for p in parts):
                out.append({"role": "user", "content": "\n".join(p["text"] for p in parts)})
            else:
                out.append({"role": "user", "content": parts})
        else:
            out.append({"role": role, "content": content if isinstance(content, str) else text_of(content)})

    return out


class OpenAIProvider:
    def __init__(self, api_key: str):
        self._client = openai.AsyncOpenAI(api_key=api_key)

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )))
    async def stream_chat(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
        *,
        on_text_delta: TextDeltaCallback | None = None,
    ) -> tuple[str, str]:
        """Stream a chat response from OpenAI, forwarding text deltas as they arrive.

        Returns (assistant_text, stop_reason) with Anthropic-style stop reasons.
        """
        oai_messages = _to_openai_messages(system_prompt, messages)

        text_content = ""
        finish_reason: str | None = None

        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(oai_messages)}")
        stream = await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=oai_messages,
            stream=True,
        )

        async for chunk in stream:
            choice = chunk.choices[0] if chunk.choices else None
            if choice is None:
                continue

            if choice.finish_reason:
                finish_reason = choice.finish_reason

            delta = choice.delta
            if delta is None or not delta.content:
                continue

            text_content += delta.content
            if on_text_delta is not None:
                on_text_delta(delta.content)

        stop_reason = _STOP_REASON_MAP.get(finish_reason or "stop", "end_turn")
        logger.debug(f"API response: stop_reason={stop_reason}, text_len={len(text_content)}")
        return text_content, stop_reason
