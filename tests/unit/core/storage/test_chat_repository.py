"""Tests for ConversationRepository: ownership, ordering, cascade."""

from __future__ import annotations

import pytest


class TestConversations:
    def test_create_and_get(self, conversation_repository):
        conv = conversation_repository.create_conversation("user-1", "Sleep questions")
        fetched = conversation_repository.get_conversation("user-1", conv.id)
        assert fetched is not None
        assert fetched.title == "Sleep questions"
        assert fetched.message_count == 0
        assert fetched.updated_at == fetched.created_at

    def test_ownership_enforced(self, conversation_repository):
        conv = conversation_repository.create_conversation("user-1", "Mine")
        assert conversation_repository.get_conversation("user-2", conv.id) is None
        assert conversation_repository.rename_conversation("user-2", conv.id, "Stolen") is None
        assert conversation_repository.delete_conversation("user-2", conv.id) is False

    def test_rename(self, conversation_repository):
        conv = conversation_repository.create_conversation("user-1", "Old")
        renamed = conversation_repository.rename_conversation("user-1", conv.id, "New")
        assert renamed is not None and renamed.title == "New"

    def test_updated_at_follows_newest_message(self, conversation_repository):
        conv = conversation_repository.create_conversation("user-1", "t")
        message = conversation_repository.add_message(conv.id, "user", "hello")
        fetched = conversation_repository.get_conversation("user-1", conv.id)
        assert fetched.updated_at == message.created_at
        assert fetched.message_count == 1

    def test_list_most_recent_first(self, conversation_repository):
        first = conversation_repository.create_conversation("user-1", "first")
        second = conversation_repository.create_conversation("user-1", "second")
        listed = conversation_repository.list_conversations("user-1")
        assert [c.id for c in listed] == [second.id, first.id]

    def test_delete_cascades_messages(self, conversation_repository):
        conv = conversation_repository.create_conversation("user-1", "t")
        conversation_repository.add_message(conv.id, "user", "hello")
        assert conversation_repository.delete_conversation("user-1", conv.id) is True
        assert conversation_repository.get_messages(conv.id) == []


class TestMessages:
    def test_chronological_with_metadata(self, conversation_repository):
        conv = conversation_repository.create_conversation("user-1", "t")
        conversation_repository.add_message(conv.id, "user", "How did I sleep?")
        conversation_repository.add_message(conv.id, "assistant", "About 7 hours.", {"model": "mock"})
        messages = conversation_repository.get_messages(conv.id)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].metadata == {"model": "mock"}

    def test_window_returns_most_recent_in_order(self, conversation_repository):
        conv = conversation_repository.create_conversation("user-1", "t")
        for i in range(5):
            conversation_repository.add_message(conv.id, "user", f"m{i}")
        window = conversation_repository.get_messages(conv.id, limit=2)
        assert [m.content for m in window] == ["m3", "m4"]

    def test_invalid_role_rejected(self, conversation_repository):
        conv = conversation_repository.create_conversation("user-1", "t")
        with pytest.raises(ValueError, match="Invalid message role"):
            conversation_repository.add_message(conv.id, "system", "hi")
