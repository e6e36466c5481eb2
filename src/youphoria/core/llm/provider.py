"""LLM provider protocol: the interface chat and document extraction call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash",
    "anthropic": "claude-sonnet-4-5-20250929",
    "openai": "gpt-4o",
}


@dataclass
class ProviderResponse:
    """Response from an LLM provider."""

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    latency_ms: float


@dataclass
class Attachment:
    """Binary document passed alongside the prompt (PDF page scans, photos)."""

    data: bytes
    mime_type: str
    file_name: str = ""


@runtime_checkable
class LLMProvider(Protocol):
    """Single-turn completion, optionally with one binary attachment."""

    name: str

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        attachment: Attachment | None = None,
    ) -> ProviderResponse: ...


def create_provider(
    provider_name: str,
    api_key: str = "",
    model: str = "",
) -> LLMProvider:
    """Factory function to create an LLM provider by name.

    Args:
        provider_name: "gemini", "anthropic", "openai", or "mock"
        api_key: API key for the provider.
        model: Model identifier override.
    """
    if provider_name == "gemini":
        from youphoria.core.llm.providers.gemini import GeminiProvider

        return GeminiProvider(api_key=api_key, model=model or DEFAULT_MODELS["gemini"])
    elif provider_name == "anthropic":
        from youphoria.core.llm.providers.anthropic import AnthropicProvider

        return AnthropicProvider(api_key=api_key, model=model or DEFAULT_MODELS["anthropic"])
    elif provider_name == "openai":
        from youphoria.core.llm.providers.openai import OpenAIProvider

        return OpenAIProvider(api_key=api_key, model=model or DEFAULT_MODELS["openai"])
    elif provider_name == "mock":
        from youphoria.core.llm.providers.mock import MockProvider

        return MockProvider()
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")
