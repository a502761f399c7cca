from collections.abc import Callable
from typing import Protocol, runtime_checkable

TextDeltaCallback = Callable[[str], None]


@runtime_checkable
class LLMProvider(Protocol):
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
        """Stream a chat response, reporting text deltas through on_text_delta.

        Messages use the internal (Anthropic-style) format. Returns
        (assistant_text, stop_reason).
        """
        ...


def create_provider(provider_name: str, api_key: str) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from assistant_gateway.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key)
    if name == "openai":
        from assistant_gateway.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
