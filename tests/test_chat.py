# tests/test_chat.py
"""
Tests for in-memory chat threads.
"""

import pytest

from llmbridge.chat import ChatThreadManager
from llmbridge.exceptions import ThreadNotFoundError, TransportError
from llmbridge.models import Provider, Role


@pytest.fixture
def manager(client):
    return ChatThreadManager(client)


class TestThreadManagement:

    def test_create_thread_defaults(self, manager):
        thread = manager.create_thread()
        assert thread.id.startswith("chat_")
        assert thread.provider == Provider.OLLAMA
        assert thread.model == "qwen2.5:7b"
        assert thread.temperature == 0.7
        assert thread.messages == []

    def test_create_thread_with_system_prompt(self, manager):
        thread = manager.create_thread("t1", model="gpt-4", provider="openai", system_prompt="Be brief.")
        assert thread.id == "t1"
        assert thread.provider == Provider.OPENAI
        assert [m.role for m in thread.messages] == [Role.SYSTEM]

    def test_default_model_follows_provider(self, manager):
        thread = manager.create_thread(provider=Provider.ANTHROPIC)
        assert thread.model == "claude-3-opus-20240229"

    def test_get_list_delete(self, manager):
        first = manager.create_thread("a")
        manager.create_thread("b")
        assert manager.get_thread("a") is first
        assert [t.id for t in manager.list_threads()] == ["a", "b"]
        assert manager.delete_thread("a") is True
        assert manager.delete_thread("a") is False
        assert manager.get_thread("a") is None

    def test_update_thread(self, manager):
        created = manager.create_thread("t1", system_prompt="Be brief.")
        updated = manager.update_thread("t1", model="llama3:8b", temperature=0.2, id="ignored")
        assert updated.id == "t1"
        assert updated.model == "llama3:8b"
        assert updated.temperature == 0.2
        assert updated.messages == created.messages
        assert updated.updated_at >= created.updated_at
        assert manager.get_thread("t1") is updated

    def test_update_unknown_thread(self, manager):
        assert manager.update_thread("nope", model="x") is None

    def test_clear_history(self, manager):
        thread = manager.create_thread("t1", system_prompt="Be brief.")
        manager.clear_history("t1")
        assert thread.messages == []
        manager.clear_history("unknown")


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_conversation_history_is_sent(self, manager, fake_transport):
        fake_transport.on("/api/chat", {"message": {"content": "first"}}, {"message": {"content": "second"}})
        thread = manager.create_thread("t1", model="llama3:8b", provider="ollama")

        assert (await manager.send_message("t1", "hello")).text == "first"
        assert (await manager.send_message("t1", "again")).text == "second"

        assert [(m.role, m.content) for m in thread.messages] == [
            (Role.USER, "hello"),
            (Role.ASSISTANT, "first"),
            (Role.USER, "again"),
            (Role.ASSISTANT, "second"),
        ]
        last_body = fake_transport.requests[-1].body
        assert [m["content"] for m in last_body["messages"]] == ["hello", "first", "again"]

    @pytest.mark.asyncio
    async def test_failed_send_removes_user_turn(self, manager, fake_transport):
        thread = manager.create_thread("t1", model="gpt-4", provider="openai")
        with pytest.raises(TransportError):
            await manager.send_message("t1", "hello")
        assert thread.messages == []

    @pytest.mark.asyncio
    async def test_unknown_thread(self, manager):
        with pytest.raises(ThreadNotFoundError) as exc_info:
            await manager.send_message("missing", "hello")
        assert exc_info.value.thread_id == "missing"
