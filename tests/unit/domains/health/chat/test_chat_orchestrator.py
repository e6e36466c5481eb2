"""Tests for the chat orchestrator: one turn from message to saved reply."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from youphoria.core.errors import NotFoundError, ValidationError
from youphoria.core.llm.client import LLMClient
from youphoria.core.llm.providers.mock import MockProvider
from youphoria.core.llm.response import EMERGENCY_NOTE
from youphoria.core.llm.system_prompt import CONTEXT_HEADER
from youphoria.core.storage.chat_repository import ConversationRepository
from youphoria.core.storage.models import HealthRecord, to_utc_iso
from youphoria.core.storage.repository import RepositoryError
from youphoria.domains.health.chat.orchestrator import ChatOrchestrator
from youphoria.domains.health.rag.retriever import HealthContextRetriever


def _run(coro):
    return asyncio.run(coro)


class _ReplyWriteFails(ConversationRepository):
    """Stores user messages but fails on the assistant reply."""

    def add_message(self, conversation_id, role, content, metadata=None):
        if role == "assistant":
            raise RepositoryError("disk full")
        return super().add_message(conversation_id, role, content, metadata)


@pytest.fixture
def make_orchestrator(health_repository, conversation_repository, audit_logger):
    def factory(provider=None, *, conversations=None, history_window=20, timeout=5.0):
        return ChatOrchestrator(
            conversations or conversation_repository,
            HealthContextRetriever(health_repository),
            LLMClient(provider or MockProvider("Here is a look at your data."), timeout_seconds=timeout),
            audit_logger=audit_logger,
            history_window=history_window,
        )
    return factory


class TestSendMessage:
    def test_first_message_creates_conversation(self, make_orchestrator, conversation_repository):
        result = _run(make_orchestrator().send_message("user-1", "x" * 150))
        assert result.success
        chat = result.data
        conversation = conversation_repository.get_conversation("user-1", chat.conversation_id)
        assert conversation.title == "x" * 100
        assert chat.reply == "Here is a look at your data."
        assert chat.reply_saved
        messages = conversation_repository.get_messages(chat.conversation_id)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].metadata["model"] == "mock"
        assert "health_context" in messages[1].metadata

    def test_continuing_conversation_sends_history(self, make_orchestrator):
        provider = MockProvider("ok")
        orchestrator = make_orchestrator(provider)
        first = _run(orchestrator.send_message("user-1", "I started running"))
        _run(orchestrator.send_message("user-1", "Any tips?", first.data.conversation_id))
        assert "Previous conversation:" in provider.last_user_message
        assert "User: I started running" in provider.last_user_message
        assert provider.last_user_message.count("Any tips?") == 1

    def test_history_window(self, make_orchestrator, conversation_repository):
        provider = MockProvider("ok")
        orchestrator = make_orchestrator(provider, history_window=2)
        conversation = conversation_repository.create_conversation("user-1", "t")
        for text in ("one", "two", "three"):
            conversation_repository.add_message(conversation.id, "user", text)
        _run(orchestrator.send_message("user-1", "four", conversation.id))
        assert "User: one" not in provider.last_user_message
        assert "User: two" in provider.last_user_message
        assert "User: three" in provider.last_user_message

    def test_health_context_in_prompt(self, make_orchestrator, health_repository):
        yesterday = datetime.now(timezone.utc) - timedelta(days=1)
        health_repository.upsert_health_records([HealthRecord(
            id="", user_id="user-1", metric_type="steps", data_category="activity",
            value=9500, unit="count", recorded_at=to_utc_iso(yesterday.replace(hour=0, minute=0)),
            source_app="Apple Health", quality_score=1.0,
        )])
        provider = MockProvider("You walked a lot.")
        result = _run(make_orchestrator(provider).send_message("user-1", "show me my steps last week"))
        assert CONTEXT_HEADER in provider.last_user_message
        assert "9,500" in provider.last_user_message
        assert result.data.context_metadata["has_health_data"] is True

    def test_no_data_still_answers(self, make_orchestrator):
        provider = MockProvider("I don't see step data yet.")
        result = _run(make_orchestrator(provider).send_message("user-1", "show me my steps last week"))
        assert result.success
        assert CONTEXT_HEADER not in provider.last_user_message
        assert result.data.context_metadata["has_health_data"] is False

    def test_escalation_note(self, make_orchestrator):
        result = _run(make_orchestrator().send_message("user-1", "I have chest pain when I run"))
        assert result.data.reply.endswith(EMERGENCY_NOTE)

    def test_mock_disclosure_audited_as_not_disclosed(self, make_orchestrator, audit_logger):
        _run(make_orchestrator().send_message("user-1", "hello"))
        [event] = audit_logger.get_events(action="llm_disclosure")
        assert event["operation"] == "chat.send_message"
        assert event["llm_disclosed"] == 0


class TestSendMessageFailures:
    @pytest.mark.parametrize("message", ["", "   ", "x" * 10_001])
    def test_invalid_message(self, make_orchestrator, message):
        result = _run(make_orchestrator().send_message("user-1", message))
        assert isinstance(result.error, ValidationError)

    def test_unknown_conversation(self, make_orchestrator):
        result = _run(make_orchestrator().send_message("user-1", "hi", "missing"))
        assert isinstance(result.error, NotFoundError)

    def test_someone_elses_conversation(self, make_orchestrator, conversation_repository):
        conversation = conversation_repository.create_conversation("user-2", "theirs")
        result = _run(make_orchestrator().send_message("user-1", "hi", conversation.id))
        assert result.error.status_code == 404
        assert conversation_repository.get_messages(conversation.id) == []

    def test_model_failure_keeps_user_message(self, make_orchestrator, conversation_repository, audit_logger):
        orchestrator = make_orchestrator(MockProvider(error=RuntimeError("upstream down")))
        result = _run(orchestrator.send_message("user-1", "How did I sleep?"))
        assert not result.success
        assert result.error.code == "external_service_error"

        [conversation] = conversation_repository.list_conversations("user-1")
        messages = conversation_repository.get_messages(conversation.id)
        assert [m.role for m in messages] == ["user"]
        [event] = audit_logger.get_events(action="llm_disclosure")
        assert event["status"] == "failure"

    def test_model_timeout(self, make_orchestrator):
        orchestrator = make_orchestrator(MockProvider(delay_seconds=1.0), timeout=0.01)
        result = _run(orchestrator.send_message("user-1", "hello"))
        assert result.error.status_code == 502

    def test_reply_save_failure_returns_reply(self, make_orchestrator, health_db):
        orchestrator = make_orchestrator(conversations=_ReplyWriteFails(health_db))
        result = _run(orchestrator.send_message("user-1", "hello"))
        assert not result.success
        assert result.error.status_code == 502
        assert result.data.reply == "Here is a look at your data."
        assert result.data.reply_saved is False
        envelope = result.to_envelope(lambda chat: chat.to_dict())
        assert envelope["data"]["reply_saved"] is False


class TestConversationManagement:
    def test_create_with_default_title(self, make_orchestrator):
        assert make_orchestrator().create_conversation("user-1").title == "New conversation"

    def test_get_returns_messages(self, make_orchestrator):
        orchestrator = make_orchestrator()
        chat = _run(orchestrator.send_message("user-1", "hello")).data
        conversation, messages = orchestrator.get_conversation("user-1", chat.conversation_id)
        assert conversation.message_count == 2
        assert len(messages) == 2

    def test_rename(self, make_orchestrator):
        orchestrator = make_orchestrator()
        conversation = orchestrator.create_conversation("user-1", "Old")
        assert orchestrator.rename_conversation("user-1", conversation.id, " New ").title == "New"
        with pytest.raises(ValidationError):
            orchestrator.rename_conversation("user-1", conversation.id, "  ")
        with pytest.raises(NotFoundError):
            orchestrator.rename_conversation("user-2", conversation.id, "Mine")

    def test_delete_is_audited(self, make_orchestrator, audit_logger):
        orchestrator = make_orchestrator()
        conversation = orchestrator.create_conversation("user-1", "Bye")
        orchestrator.delete_conversation("user-1", conversation.id)
        assert orchestrator.list_conversations("user-1") == []
        assert audit_logger.get_events(action="data_delete")[0]["resource_id"] == conversation.id
        with pytest.raises(NotFoundError):
            orchestrator.delete_conversation("user-1", conversation.id)
