"""
Tests for the streaming answer pipeline and conversation persistence.
"""

import asyncio
from types import SimpleNamespace

import pytest

from docchat.data_models import ChatMessage, SearchResult
from docchat import generator
from docchat.generator import AnswerStream, GeminiCompletionService

from .fakes import FakeCompletionService

CONTEXT = [
    SearchResult(id="c3", document_id="solar", page_number=3, chunk_index=2,
                 content="Panel efficiency measurements show steady gains across seasons."),
    SearchResult(id="c5", document_id="solar", page_number=5, chunk_index=4,
                 content="Battery storage design uses lithium cells with thermal management."),
]


@pytest.fixture
def document(registry):
    registry.ensure_document("solar", title="Solar farm report")
    return "solar"


def collect(stream):
    async def _collect():
        return [event async for event in stream]
    return asyncio.run(_collect())


def question(text="How did the panels perform?"):
    return [ChatMessage(role="user", content=text)]


class TestAnswerStream:
    """Test token forwarding, citation rewriting and persistence."""

    def test_tokens_then_final_event(self, conversations, document):
        completion = FakeCompletionService(["Panels ", "improved ", "[CITE:3:c3:steady gains]", "."])
        answers = AnswerStream(completion, conversations)

        events = collect(answers.answer(document, question(), CONTEXT))

        assert [e.content for e in events[:-1]] == ["Panels ", "improved ", "[CITE:3:c3:steady gains]", "."]
        assert all(not e.done for e in events[:-1])
        final = events[-1]
        assert final.done
        assert final.error is None
        assert final.final_content == "Panels improved [1]."
        assert [c.chunk_id for c in final.citations] == ["c3"]
        assert final.to_dict()["finalContent"] == "Panels improved [1]."

    def test_turn_is_persisted(self, conversations, document):
        completion = FakeCompletionService(["Lithium cells [CITE:5:c5:lithium cells]."])
        answers = AnswerStream(completion, conversations)

        events = collect(answers.answer(document, question("Which cells?"), CONTEXT))
        chat_id = events[-1].chat_id

        messages = conversations.list_messages(chat_id)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[0].content == "Which cells?"
        assert messages[1].content == "Lithium cells [1]."
        assert messages[1].citations[0].page_number == 5
        assert not messages[1].partial

    def test_context_in_system_instruction(self, conversations, document):
        completion = FakeCompletionService(["ok"])
        collect(AnswerStream(completion, conversations).answer(document, question(), CONTEXT))

        messages, system_instruction = completion.requests[0]
        assert "[Page 3, Chunk c3]" in system_instruction
        assert "[CITE:" in system_instruction
        assert messages[-1].content == "How did the panels perform?"

    def test_no_context(self, conversations, document):
        completion = FakeCompletionService(["I could not find that."])
        events = collect(AnswerStream(completion, conversations).answer(document, question(), []))
        _, system_instruction = completion.requests[0]
        assert "No excerpts" in system_instruction
        assert events[-1].final_content == "I could not find that."

    def test_failure_mid_stream(self, conversations, document):
        """A completion error ends the stream with an error event; partial text is kept."""
        completion = FakeCompletionService(["Panels ", "improved ", "a lot"], fail_at=2)
        events = collect(AnswerStream(completion, conversations).answer(document, question(), CONTEXT))

        assert [e.content for e in events[:-1]] == ["Panels ", "improved "]
        assert events[-1].error == "model stream interrupted"
        assert events[-1].to_dict() == {
            "error": "model stream interrupted",
            "done": True,
            "chatId": events[-1].chat_id,
        }

        messages = conversations.list_messages(events[-1].chat_id)
        assert messages[-1].role == "assistant"
        assert messages[-1].content == "Panels improved "
        assert messages[-1].partial

    def test_failure_before_first_token(self, conversations, document):
        completion = FakeCompletionService(["never"], fail_at=0)
        events = collect(AnswerStream(completion, conversations).answer(document, question(), CONTEXT))

        assert len(events) == 1
        assert events[0].error
        messages = conversations.list_messages(events[0].chat_id)
        assert [m.role for m in messages] == ["user"]

    def test_client_disconnect_keeps_partial_answer(self, conversations, document):
        completion = FakeCompletionService(["First ", "second ", "third"])
        answers = AnswerStream(completion, conversations)

        async def consume_one():
            stream = answers.answer(document, question(), CONTEXT)
            event = await stream.__anext__()
            await stream.aclose()
            return event

        event = asyncio.run(consume_one())

        messages = conversations.list_messages(event.chat_id)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].content == "First "
        assert messages[1].partial

    def test_continues_existing_conversation(self, conversations, document):
        chat_id = conversations.create_conversation(document)
        completion = FakeCompletionService(["Again."])
        history = [
            ChatMessage(role="user", content="Earlier question"),
            ChatMessage(role="assistant", content="Earlier answer"),
            ChatMessage(role="user", content="Follow-up"),
        ]

        events = collect(AnswerStream(completion, conversations).answer(
            document, history, CONTEXT, conversation_id=chat_id
        ))

        assert events[-1].chat_id == chat_id
        sent, _ = completion.requests[0]
        assert [m.role for m in sent] == ["user", "assistant", "user"]
        assert [m.content for m in conversations.list_messages(chat_id)] == ["Follow-up", "Again."]

    def test_history_must_end_with_user(self, conversations, document):
        completion = FakeCompletionService(["unused"])
        history = [ChatMessage(role="assistant", content="Hello")]
        with pytest.raises(ValueError):
            collect(AnswerStream(completion, conversations).answer(document, history, CONTEXT))


class TestConversationStore:
    """Test message persistence."""

    def test_unknown_document(self, conversations):
        with pytest.raises(LookupError):
            conversations.create_conversation("missing")

    def test_title_from_first_user_message(self, conversations, database, document):
        from docchat.database import ConversationRecord

        chat_id = conversations.create_conversation(document)
        conversations.add_message(chat_id, "user", "What is the storage design?")
        conversations.add_message(chat_id, "user", "Second question")

        with database.session_scope() as session:
            assert session.get(ConversationRecord, chat_id).title == "What is the storage design?"

    def test_messages_ordered(self, conversations, document):
        chat_id = conversations.create_conversation(document)
        for i in range(5):
            conversations.add_message(chat_id, "user" if i % 2 == 0 else "assistant", f"turn {i}")
        assert [m.content for m in conversations.list_messages(chat_id)] == [f"turn {i}" for i in range(5)]

    def test_deleting_document_removes_conversations(self, conversations, registry, document):
        chat_id = conversations.create_conversation(document)
        conversations.add_message(chat_id, "user", "hello")

        assert registry.delete(document)
        assert conversations.get_document_id(chat_id) is None
        assert conversations.list_messages(chat_id) == []

    def test_list_conversations_most_recent_first(self, conversations, registry, document):
        registry.ensure_document("wind", title="Wind report")
        older = conversations.create_conversation(document)
        newer = conversations.create_conversation(document)
        conversations.create_conversation("wind")
        conversations.add_message(older, "user", "Which inverters failed?")
        conversations.add_message(older, "assistant", "Two of them.")

        summaries = conversations.list_conversations(document)

        assert [s.id for s in summaries] == [older, newer]
        assert summaries[0].message_count == 2
        assert summaries[0].title == "Which inverters failed?"
        assert summaries[0].last_message.content == "Two of them."
        assert summaries[1].message_count == 0
        assert summaries[1].last_message is None
        assert summaries[0].to_dict()["lastMessage"]["role"] == "assistant"
        assert len(conversations.list_conversations()) == 3

    def test_delete_conversation(self, conversations, document):
        chat_id = conversations.create_conversation(document)
        conversations.add_message(chat_id, "user", "hello")

        assert conversations.delete_conversation(chat_id)
        assert conversations.get_document_id(chat_id) is None
        assert conversations.list_messages(chat_id) == []
        assert not conversations.delete_conversation(chat_id)

    def test_page_messages(self, conversations, document):
        chat_id = conversations.create_conversation(document)
        for i in range(7):
            conversations.add_message(chat_id, "user" if i % 2 == 0 else "assistant", f"turn {i}")

        latest = conversations.page_messages(chat_id, limit=3)
        assert [m.content for m in latest.messages] == ["turn 4", "turn 5", "turn 6"]
        assert latest.has_more

        older = conversations.page_messages(chat_id, before=latest.oldest_message_id, limit=3)
        assert [m.content for m in older.messages] == ["turn 1", "turn 2", "turn 3"]
        assert older.has_more

        oldest = conversations.page_messages(chat_id, before=older.oldest_message_id, limit=3)
        assert [m.content for m in oldest.messages] == ["turn 0"]
        assert not oldest.has_more

    def test_page_messages_exact_fit(self, conversations, document):
        chat_id = conversations.create_conversation(document)
        for i in range(3):
            conversations.add_message(chat_id, "user", f"turn {i}")
        page = conversations.page_messages(chat_id, limit=3)
        assert len(page.messages) == 3
        assert not page.has_more

    def test_page_messages_unknown_cursor_is_ignored(self, conversations, document):
        chat_id = conversations.create_conversation(document)
        conversations.add_message(chat_id, "user", "hello")
        page = conversations.page_messages(chat_id, before="not-a-message")
        assert [m.content for m in page.messages] == ["hello"]

    def test_page_messages_rejects_bad_limit(self, conversations, document):
        chat_id = conversations.create_conversation(document)
        with pytest.raises(ValueError):
            conversations.page_messages(chat_id, limit=0)


class StreamingRpc:
    """Stands in for the RPC iterator behind a streamed Gemini response."""

    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True
        return True


class StreamedResponse:
    def __init__(self, texts):
        self.texts = texts
        self._iterator = StreamingRpc()

    async def _chunks(self):
        for text in self.texts:
            yield SimpleNamespace(text=text)

    def __aiter__(self):
        return self._chunks()


@pytest.fixture
def gemini(monkeypatch):
    """A GeminiCompletionService whose model returns a canned streamed response."""
    response = StreamedResponse(["Panels ", "improved ", "steadily."])

    class Model:
        def __init__(self, model_name, system_instruction=None):
            self.model_name = model_name

        async def generate_content_async(self, contents, generation_config=None, stream=False):
            return response

    monkeypatch.setattr(generator.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(generator.genai, "GenerativeModel", Model)
    monkeypatch.setattr(generator.genai, "GenerationConfig", dict)
    return GeminiCompletionService(api_key="test-key"), response


class TestGeminiCompletionService:
    """Test streaming and cancellation against a canned response."""

    def test_streams_all_text(self, gemini):
        service, response = gemini
        tokens = collect(service.stream(question(), "system"))
        assert tokens == ["Panels ", "improved ", "steadily."]
        assert not response._iterator.cancelled

    def test_stopping_early_cancels_the_rpc(self, gemini):
        service, response = gemini

        async def read_one():
            stream = service.stream(question(), "system")
            first = await stream.__anext__()
            await stream.aclose()
            return first

        assert asyncio.run(read_one()) == "Panels "
        assert response._iterator.cancelled

    def test_cancel_without_rpc_handle(self):
        asyncio.run(GeminiCompletionService.cancel_response(SimpleNamespace()))
