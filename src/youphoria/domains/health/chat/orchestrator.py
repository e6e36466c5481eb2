"""Chat orchestrator: one user turn from message to persisted reply.

``send_message`` runs, in order:

1. resolve or create the conversation (title = first 100 characters)
2. load the prior message window, then save the user's message
3. retrieve health context for the message
4. call the model with system prompt + context + history + message
5. save the assistant reply with retrieval and model metadata

The user's message is committed before the model is called. If the model
call or the reply save fails the user's message stays saved and the
failure is returned to the caller.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from youphoria.core.audit.logger import AuditLogger
from youphoria.core.errors import ExternalServiceError, NotFoundError, Result, ValidationError
from youphoria.core.llm.client import LLMClient, LLMResult
from youphoria.core.llm.response import append_emergency_note, needs_escalation
from youphoria.core.llm.system_prompt import WELLNESS_SYSTEM_PROMPT, build_chat_prompt
from youphoria.core.storage.chat_repository import ConversationRepository
from youphoria.core.storage.models import Conversation, Message
from youphoria.core.storage.repository import RepositoryError
from youphoria.domains.health.rag.retriever import HealthContextRetriever

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 100
MAX_MESSAGE_CHARS = 10_000
DEFAULT_TITLE = "New conversation"


@dataclass
class ChatResult:
    conversation_id: str
    user_message: Message
    reply: str = ""
    assistant_message: Message | None = None
    context_metadata: dict[str, Any] = field(default_factory=dict)
    model: str = ""
    provider: str = ""

    @property
    def reply_saved(self) -> bool:
        return self.assistant_message is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "user_message": self.user_message.to_dict(),
            "assistant_message": self.assistant_message.to_dict() if self.assistant_message else None,
            "reply": self.reply,
            "reply_saved": self.reply_saved,
            "health_context": self.context_metadata,
            "model": self.model,
        }


class ChatOrchestrator:
    """Retrieval-augmented chat over the user's own health data."""

    def __init__(
        self,
        conversations: ConversationRepository,
        retriever: HealthContextRetriever,
        llm_client: LLMClient,
        *,
        audit_logger: AuditLogger | None = None,
        history_window: int = 20,
    ) -> None:
        self._conversations = conversations
        self._retriever = retriever
        self._llm = llm_client
        self._audit = audit_logger
        self.history_window = history_window

    async def send_message(
        self,
        user_id: str,
        message: str,
        conversation_id: str | None = None,
    ) -> Result[ChatResult]:
        if not user_id:
            return Result.fail(ValidationError("user_id is required"))
        message = (message or "").strip()
        if not message:
            return Result.fail(ValidationError("Message is required"))
        if len(message) > MAX_MESSAGE_CHARS:
            return Result.fail(ValidationError(f"Message exceeds {MAX_MESSAGE_CHARS} characters"))

        try:
            if conversation_id:
                conversation = self._conversations.get_conversation(user_id, conversation_id)
                if conversation is None:
                    return Result.fail(NotFoundError(f"Conversation {conversation_id} not found"))
            else:
                conversation = self._conversations.create_conversation(user_id, message[:TITLE_MAX_CHARS])
            history = self._conversations.get_messages(conversation.id, limit=self.history_window)
            user_message = self._conversations.add_message(conversation.id, "user", message)
        except RepositoryError as exc:
            logger.error("Could not record chat message: %s", exc)
            return Result.fail(ExternalServiceError(f"Failed to save message: {exc}"))

        context = self._retriever.retrieve_context(user_id, message)
        prompt = build_chat_prompt(context.text, history, message)

        start = time.monotonic()
        try:
            llm_result = await self._llm.complete(WELLNESS_SYSTEM_PROMPT, prompt, purpose="chat")
        except ExternalServiceError as exc:
            self._audit_disclosure(user_id, conversation.id, message, start, error=exc)
            return Result.fail(exc)
        self._audit_disclosure(user_id, conversation.id, message, start)

        reply = llm_result.content
        if needs_escalation(message):
            reply = append_emergency_note(reply)

        result = ChatResult(
            conversation_id=conversation.id,
            user_message=user_message,
            reply=reply,
            context_metadata=context.metadata,
            model=llm_result.model,
            provider=llm_result.provider,
        )
        try:
            result.assistant_message = self._conversations.add_message(
                conversation.id, "assistant", reply, self._reply_metadata(context.metadata, llm_result),
            )
        except RepositoryError as exc:
            logger.error("Reply for conversation %s was generated but not saved: %s", conversation.id, exc)
            return Result(
                success=False,
                data=result,
                error=ExternalServiceError(f"Failed to save assistant reply: {exc}"),
            )

        logger.info(
            "Chat turn in %s: history=%d, health_data=%s, model=%s",
            conversation.id, len(history), context.has_health_data, llm_result.model,
        )
        return Result.ok(result)

    @staticmethod
    def _reply_metadata(context_metadata: dict[str, Any], llm_result: LLMResult) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "health_context": context_metadata,
            "model": llm_result.model,
            "provider": llm_result.provider,
            "usage": llm_result.usage,
        }
        if llm_result.guardrail_flags:
            metadata["guardrail_flags"] = llm_result.guardrail_flags
        return metadata

    def _audit_disclosure(
        self,
        user_id: str,
        conversation_id: str,
        message: str,
        start: float,
        *,
        error: Exception | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_llm_disclosure(
            operation="chat.send_message",
            user_id=user_id,
            llm_provider=self._llm.provider_name,
            input_data={"message": message},
            resource_id=conversation_id,
            duration_ms=(time.monotonic() - start) * 1000,
            status="failure" if error else "success",
            error_type=type(error).__name__ if error else None,
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def list_conversations(self, user_id: str, *, limit: int = 50) -> list[Conversation]:
        return self._conversations.list_conversations(user_id, limit=limit)

    def get_conversation(self, user_id: str, conversation_id: str) -> tuple[Conversation, list[Message]]:
        conversation = self._conversations.get_conversation(user_id, conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation, self._conversations.get_messages(conversation_id)

    def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        title = (title or "").strip()[:TITLE_MAX_CHARS] or DEFAULT_TITLE
        try:
            return self._conversations.create_conversation(user_id, title)
        except RepositoryError as exc:
            raise ExternalServiceError(str(exc)) from exc

    def rename_conversation(self, user_id: str, conversation_id: str, title: str) -> Conversation:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        conversation = self._conversations.rename_conversation(user_id, conversation_id, title[:TITLE_MAX_CHARS])
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        if not self._conversations.delete_conversation(user_id, conversation_id):
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if self._audit is not None:
            self._audit.log_data_delete(
                operation="chat.delete_conversation", user_id=user_id, resource_id=conversation_id, count=1,
            )
