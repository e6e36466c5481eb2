"""LLM provider implementations."""

from youphoria.core.llm.providers.anthropic import AnthropicProvider
from youphoria.core.llm.providers.gemini import GeminiProvider
from youphoria.core.llm.providers.mock import MockProvider
from youphoria.core.llm.providers.openai import OpenAIProvider

__all__ = ["AnthropicProvider", "GeminiProvider", "MockProvider", "OpenAIProvider"]
