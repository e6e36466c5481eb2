"""OpenAI GPT provider."""

from __future__ import annotations

import base64
import time
from typing import Any

from youphoria.core.llm.provider import Attachment, ProviderResponse


def _user_content(user_message: str, attachment: Attachment | None) -> Any:
    if attachment is None:
        return user_message
    encoded = base64.b64encode(attachment.data).decode("ascii")
    data_url = f"data:{attachment.mime_type};base64,{encoded}"
    if attachment.mime_type.startswith("image/"):
        part: dict[str, Any] = {"type": "image_url", "image_url": {"url": data_url}}
    else:
        part = {
            "type": "file",
            "file": {"filename": attachment.file_name or "document.pdf", "file_data": data_url},
        }
    return [part, {"type": "text", "text": user_message}]


class OpenAIProvider:
    """OpenAI provider using the OpenAI SDK."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o") -> None:
        import openai

        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        attachment: Attachment | None = None,
    ) -> ProviderResponse:
        start = time.monotonic()
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_message},
                {"role": "user", "content": _user_content(user_message, attachment)},
            ],
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content or "") if choice else ""
        usage = response.usage
        return ProviderResponse(
            content=content,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=self.model,
            latency_ms=elapsed_ms,
        )
