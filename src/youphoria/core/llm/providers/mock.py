"""Mock LLM provider for tests and keyless local runs."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Iterable

from youphoria.core.llm.provider import Attachment, ProviderResponse


class MockProvider:
    """Returns canned responses and records what it was asked.

    ``responses`` are served in order, then ``response_content`` repeats.
    ``delay_seconds`` simulates a slow upstream; ``error`` makes every call raise.
    """

    name = "mock"

    def __init__(
        self,
        response_content: str = "Mock LLM response.",
        *,
        responses: Iterable[str] = (),
        delay_seconds: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.response_content = response_content
        self._queued = deque(responses)
        self.delay_seconds = delay_seconds
        self.error = error
        self.last_system_message: str = ""
        self.last_user_message: str = ""
        self.last_attachment: Attachment | None = None
        self.call_count: int = 0

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        attachment: Attachment | None = None,
    ) -> ProviderResponse:
        self.last_system_message = system_message
        self.last_user_message = user_message
        self.last_attachment = attachment
        self.call_count += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        content = self._queued.popleft() if self._queued else self.response_content
        return ProviderResponse(
            content=content,
            input_tokens=len(system_message.split()) + len(user_message.split()),
            output_tokens=len(content.split()),
            model="mock",
            latency_ms=0.0,
        )
