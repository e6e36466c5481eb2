"""Anthropic Claude provider."""

from __future__ import annotations

import base64
import time
from typing import Any

from youphoria.core.llm.provider import Attachment, ProviderResponse


def _attachment_block(attachment: Attachment) -> dict[str, Any]:
    data = base64.standard_b64encode(attachment.data).decode("ascii")
    block_type = "document" if attachment.mime_type == "application/pdf" else "image"
    return {
        "type": block_type,
        "source": {"type": "base64", "media_type": attachment.mime_type, "data": data},
    }


class AnthropicProvider:
    """Claude provider using the Anthropic SDK."""

    name = "anthropic"

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5-20250929") -> None:
        import anthropic

        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        attachment: Attachment | None = None,
    ) -> ProviderResponse:
        if attachment is not None:
            content: Any = [_attachment_block(attachment), {"type": "text", "text": user_message}]
        else:
            content = user_message

        start = time.monotonic()
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_message,
            messages=[{"role": "user", "content": content}],
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return ProviderResponse(
            content=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=self.model,
            latency_ms=elapsed_ms,
        )
