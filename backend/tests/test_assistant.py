"""
Tests for assistant.py - the response pipeline and the chat session.
"""
import asyncio
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from assistant import (
    APOLOGY_MESSAGE,
    CREDENTIAL_MESSAGE,
    AssistantSession,
    SessionBusyError,
    handle_incoming_response,
)
from database import ChatHistoryStore, load_chat_history
from gateway import CredentialError, UpstreamError
from models import ChatMessage, EntitySnapshot


class TestHandleIncomingResponse:
    """Tests for extract -> apply -> sanitize on one model reply."""

    def test_update_applied_and_hidden(self, recorder):
        raw = 'Sure! TASK_UPDATE_JSON: {"taskTitle": "review", "updates": {"completed": true}}'
        entities = EntitySnapshot(tasks=[{"id": "1", "title": "Review PR", "completed": False}])

        result = handle_incoming_response(raw, entities, recorder.as_callbacks())

        assert result.display_text == "Sure!"
        assert recorder.calls == [("on_task_update", {"id": "1", "title": "Review PR", "completed": True})]
        assert [e.action for e in result.side_effects_applied] == ["task_updated"]

    def test_plain_dict_entities(self, recorder):
        result = handle_incoming_response(
            'Gone. TASK_DELETE_JSON: {"taskTitle": "milk"}',
            {"tasks": [{"id": "7", "title": "Buy milk"}]},
            recorder.as_callbacks(),
        )
        assert result.display_text == "Gone."
        assert recorder.named("on_task_delete") == ["7"]

    def test_no_commands(self, recorder):
        result = handle_incoming_response("Paris is the capital of France.", None, recorder.as_callbacks())

        assert result.display_text == "Paris is the capital of France."
        assert result.side_effects_applied == []
        assert recorder.calls == []

    def test_ambiguity_appends_question(self, recorder):
        entities = {"tasks": [{"id": "1", "title": "Review PR"}, {"id": "2", "title": "Review budget"}]}
        result = handle_incoming_response(
            'Done. TASK_DELETE_JSON: {"taskTitle": "review"}', entities, recorder.as_callbacks()
        )

        assert recorder.calls == []
        assert result.display_text.startswith("Done.\n\nI found several tasks")
        assert result.clarifications


class MemoryHistory:
    def __init__(self, messages=None):
        self.saved = list(messages or [])
        self.cleared = False

    def load(self):
        return list(self.saved)

    def save(self, messages):
        self.saved = list(messages)

    def clear(self):
        self.saved = []
        self.cleared = True


class TestAssistantSession:
    """Tests for a full chat turn."""

    def test_send_applies_commands(self, recorder, fake_gateway):
        fake_gateway.replies.append('Added! TASKS_JSON: [{"title": "Buy milk"}]')
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), MemoryHistory(), current_page="Tasks")

        result = asyncio.run(session.send("  remind me to buy milk ", EntitySnapshot()))

        assert result.display_text == "Added!"
        assert recorder.named("on_task_create")[0]["title"] == "Buy milk"
        assert [(m.role, m.content) for m in session.messages] == [
            ("user", "remind me to buy milk"),
            ("assistant", "Added!"),
        ]
        assert session.recent_activity == ["task_created: Buy milk"]
        assert not session.waiting

    def test_prompt_and_history_sent(self, recorder, fake_gateway):
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), MemoryHistory())
        snapshot = EntitySnapshot(tasks=[{"id": "1", "title": "Review PR"}])

        asyncio.run(session.send("hi", snapshot))
        asyncio.run(session.send("again", snapshot, current_page="Calendar"))

        first_prompt, first_history = fake_gateway.calls[0]
        second_prompt, second_history = fake_gateway.calls[1]
        assert "**Dashboard**" in first_prompt
        assert "Review PR" in first_prompt
        assert "**Calendar**" in second_prompt
        assert [m.content for m in first_history] == ["hi"]
        assert [m.content for m in second_history] == ["hi", "ok", "again"]

    @pytest.mark.parametrize("error,message", [
        (UpstreamError("boom"), APOLOGY_MESSAGE),
        (CredentialError("API key not configured"), CREDENTIAL_MESSAGE),
    ])
    def test_gateway_errors_become_messages(self, recorder, fake_gateway, error, message):
        fake_gateway.replies.append(error)
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), MemoryHistory())

        result = asyncio.run(session.send("hello", EntitySnapshot()))

        assert result.display_text == message
        assert session.messages[-1].content == message
        assert recorder.calls == []
        assert not session.waiting

    def test_empty_message_rejected(self, recorder, fake_gateway):
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), MemoryHistory())
        with pytest.raises(ValueError):
            asyncio.run(session.send("   ", EntitySnapshot()))
        assert session.messages == []

    def test_busy_session_rejects(self, recorder, fake_gateway):
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), MemoryHistory())
        session._waiting = True
        with pytest.raises(SessionBusyError):
            asyncio.run(session.send("hello", EntitySnapshot()))
        assert fake_gateway.calls == []

    def test_system_message_and_clear(self, recorder, fake_gateway):
        history = MemoryHistory()
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), history)

        session.add_system_message("Voice mode is off")
        assert history.saved[0].role == "assistant"

        session.clear()
        assert session.messages == []
        assert history.cleared


class TestPersistence:
    """The transcript survives a new session through the kv store."""

    def test_history_round_trip(self, test_db, recorder, fake_gateway):
        fake_gateway.replies.append("Hello!")
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), ChatHistoryStore())
        asyncio.run(session.send("hi", EntitySnapshot()))

        restored = AssistantSession(fake_gateway, recorder.as_callbacks(), ChatHistoryStore())
        assert [(m.role, m.content) for m in restored.messages] == [("user", "hi"), ("assistant", "Hello!")]

    def test_loaded_history_kept(self, recorder, fake_gateway):
        earlier = [ChatMessage(role="user", content="before")]
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), MemoryHistory(earlier))
        assert [m.content for m in session.messages] == ["before"]

    def test_clear_removes_stored_history(self, test_db, recorder, fake_gateway):
        session = AssistantSession(fake_gateway, recorder.as_callbacks(), ChatHistoryStore())
        asyncio.run(session.send("hi", EntitySnapshot()))

        session.clear()
        assert load_chat_history() == []
