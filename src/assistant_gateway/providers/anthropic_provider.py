import anthropic
from loguru import logger
from tenacity import retry

from assistant_gateway.provider import TextDeltaCallback
from assistant_gateway.providers.common import default_retry_kwargs


class AnthropicProvider:
    def __init__(self, api_key: str):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
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
        """Stream a chat response, forwarding text deltas as they arrive.

        Returns (assistant_text, stop_reason).
        """
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(messages)}")
        async with self._client.messages.stream(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=messages,
        ) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    if on_text_delta is not None:
                        on_text_delta(event.delta.text)

            response = await stream.get_final_message()

        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )

        text = "".join(block.text for block in response.content if block.type == "text")
        return text, response.stop_reason or "end_turn"
