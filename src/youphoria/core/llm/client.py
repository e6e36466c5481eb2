"""LLM client: bounded, error-mapped calls to the configured provider."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from youphoria.core.errors import ExternalServiceError
from youphoria.core.llm.provider import Attachment, LLMProvider, ProviderResponse
from youphoria.core.llm.response import check_guardrails, sanitize_content

logger = logging.getLogger(__name__)


@dataclass
class LLMResult:
    """Model output after guardrails, with usage for audit/metadata."""

    content: str
    model: str
    provider: str
    guardrail_flags: list[str] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: float = 0.0


class LLMClient:
    """Wraps an ``LLMProvider`` with a timeout and uniform error mapping.

    Every failure of the upstream call (network, SDK error, timeout) is
    raised as ``ExternalServiceError``. Nothing is retried.
    """

    def __init__(self, provider: LLMProvider, *, timeout_seconds: float = 60.0) -> None:
        self.provider = provider
        self.timeout_seconds = timeout_seconds

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", type(self.provider).__name__)

    async def complete(
        self,
        system_message: str,
        user_message: str,
        *,
        attachment: Attachment | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        timeout_seconds: float | None = None,
        purpose: str = "chat",
        apply_guardrails: bool = True,
    ) -> LLMResult:
        """Run one completion.

        Raises:
            ExternalServiceError: On timeout or any provider failure.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        try:
            response: ProviderResponse = await asyncio.wait_for(
                self.provider.generate(
                    system_message=system_message,
                    user_message=user_message,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    attachment=attachment,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("LLM %s call timed out after %.1fs (%s)", purpose, timeout, self.provider_name)
            raise ExternalServiceError(f"{purpose} model call timed out after {timeout}s") from exc
        except ExternalServiceError:
            raise
        except Exception as exc:
            logger.exception("LLM %s call failed (%s)", purpose, self.provider_name)
            raise ExternalServiceError(f"{purpose} model call failed: {type(exc).__name__}") from exc

        logger.info(
            "LLM %s call: model=%s, tokens=%d+%d, latency=%.0fms",
            purpose,
            response.model,
            response.input_tokens,
            response.output_tokens,
            response.latency_ms,
        )

        content = response.content
        flags: list[str] = []
        if apply_guardrails:
            check = check_guardrails(content)
            content = sanitize_content(content, check)
            flags = check.flags

        return LLMResult(
            content=content,
            model=response.model,
            provider=self.provider_name,
            guardrail_flags=flags,
            usage={
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
            },
            latency_ms=response.latency_ms,
        )
