"""Google Gemini provider."""

from __future__ import annotations

import time

from youphoria.core.llm.provider import Attachment, ProviderResponse


class GeminiProvider:
    """Gemini provider using the google-genai SDK (async surface)."""

    name = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash") -> None:
        from google import genai

        self.client = genai.Client(api_key=api_key)
        self.model = model

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        attachment: Attachment | None = None,
    ) -> ProviderResponse:
        from google.genai import types as genai_types

        contents: list = []
        if attachment is not None:
            contents.append(
                genai_types.Part.from_bytes(data=attachment.data, mime_type=attachment.mime_type)
            )
        contents.append(user_message)

        config = genai_types.GenerateContentConfig(
            system_instruction=system_message,
            max_output_tokens=max_tokens,
            temperature=temperature,
        )

        start = time.monotonic()
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=config,
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        usage = getattr(response, "usage_metadata", None)
        return ProviderResponse(
            content=response.text or "",
            input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
            model=self.model,
            latency_ms=elapsed_ms,
        )
