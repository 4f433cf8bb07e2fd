import asyncio

import httpx
import pytest

from doc_explainer.conversations import ConversationStore
from doc_explainer.errors import BackendError, TurnInFlightError
from doc_explainer.main import create_app
from doc_explainer.orchestrator import ChatTurnOrchestrator, HttpBackend, find_url, format_insights, truncate_title
from doc_explainer.schemas import Insights, Mode
from doc_explainer.storage import InMemoryStorage

from conftest import INSIGHTS_JSON, LONG_TEXT, FakeBackend


@pytest.fixture
def store():
    return ConversationStore(InMemoryStorage(), Mode.dev)


def _roles(conv):
    return [m.role for m in conv.messages]


@pytest.mark.parametrize(
    ("text", "url"),
    [
        ("Explain https://example.com/docs please", "https://example.com/docs"),
        ("See (https://example.com/docs/intro).", "https://example.com/docs/intro"),
        ("http://a.io/x?y=1, thanks", "http://a.io/x?y=1"),
        ("no link here", None),
    ],
)
def test_find_url(text, url):
    assert find_url(text) == url


def test_truncate_title():
    assert truncate_title("short") == "short"
    assert truncate_title("x" * 40) == "x" * 40
    assert truncate_title("x" * 41) == "x" * 40 + "..."


def test_format_insights():
    insights = Insights(summary="S.", keyPoints=["a", "b"], suggestedQuestions=["q?"])
    assert format_insights("https://x.io", insights) == (
        "I've analyzed the documentation from **https://x.io**\n\n"
        "**Summary:**\nS.\n\n"
        "**Key Points:**\n1. a\n2. b\n\n"
        "**Suggested Questions:**\n• q?\n\n"
        "Feel free to ask me anything about this documentation!"
    )


async def test_url_message_crawls_and_posts_insights(store, make_assistant, docs_site):
    assistant = make_assistant(docs_site, replies=["Chunk summary.", INSIGHTS_JSON])
    orchestrator = ChatTurnOrchestrator(store, assistant)
    conv = store.create()

    conv = await orchestrator.submit(conv.id, "Check out https://example.com/docs")

    assert conv.title == "Check out https://example.com/docs"
    assert _roles(conv) == ["user", "assistant"]
    assert conv.messages[1].content.startswith("I've analyzed the documentation from **https://example.com/docs**")
    assert "A client library for the Example API." in conv.messages[1].content
    assert "Summary" in conv.messages[1].content and "Key Points" in conv.messages[1].content
    assert conv.docUrl == "https://example.com/docs"
    assert "### Page: https://example.com/docs/intro" in conv.docContent
    assert store.get(conv.id) == conv


async def test_url_in_conversation_with_document_is_a_chat_turn(store):
    backend = FakeBackend(reply="It covers setup.")
    orchestrator = ChatTurnOrchestrator(store, backend)
    conv = store.create()
    store.update(conv.id, docUrl="https://example.com/docs", docContent=LONG_TEXT)

    conv = await orchestrator.submit(conv.id, "What does https://example.com/docs/setup cover?")

    assert backend.analyze_calls == []
    assert conv.messages[-1].content == "It covers setup."
    (call,) = backend.chat_calls
    assert call["doc_content"] == LONG_TEXT
    assert call["url"] == "https://example.com/docs"
    assert call["messages"] == [("user", "What does https://example.com/docs/setup cover?")]


async def test_chat_turn_sends_history_and_mode(store):
    backend = FakeBackend()
    orchestrator = ChatTurnOrchestrator(store, backend)
    conv = store.create()

    await orchestrator.submit(conv.id, "first")
    conv = await orchestrator.submit(conv.id, "second", mode="user")

    assert _roles(conv) == ["user", "assistant", "user", "assistant"]
    assert conv.title == "first"
    last = backend.chat_calls[-1]
    assert last["mode"] == Mode.user
    assert last["messages"] == [("user", "first"), ("assistant", "Here is the answer."), ("user", "second")]


async def test_long_first_message_is_truncated_for_title(store):
    orchestrator = ChatTurnOrchestrator(store, FakeBackend())
    conv = store.create()

    conv = await orchestrator.submit(conv.id, "  " + "y" * 55 + "  ")

    assert conv.title == "y" * 40 + "..."
    assert conv.messages[0].content == "y" * 55


async def test_empty_message_is_rejected(store):
    orchestrator = ChatTurnOrchestrator(store, FakeBackend())
    conv = store.create()
    with pytest.raises(ValueError):
        await orchestrator.submit(conv.id, "   ")
    assert store.get(conv.id).messages == []


@pytest.mark.parametrize(
    ("backend", "text"),
    [
        (FakeBackend(crawl_fails=True), "Read https://example.com/docs"),
        (FakeBackend(chat_fails=True), "Hello"),
    ],
)
async def test_failed_turn_keeps_only_the_user_message(store, backend, text):
    orchestrator = ChatTurnOrchestrator(store, backend)
    conv = store.create()

    conv = await orchestrator.submit(conv.id, text)

    assert _roles(conv) == ["user"]
    assert conv.docContent is None
    assert not orchestrator.is_busy(conv.id)


async def test_edit_user_message_regenerates_reply(store):
    backend = FakeBackend()
    orchestrator = ChatTurnOrchestrator(store, backend)
    conv = store.create()
    await orchestrator.submit(conv.id, "first question")
    conv = await orchestrator.submit(conv.id, "second question")
    first = conv.messages[0]

    backend.reply = "Answer to the edit."
    conv = await orchestrator.edit_message(conv.id, first.id, "edited question")

    assert [(m.role, m.content) for m in conv.messages] == [
        ("user", "edited question"),
        ("assistant", "Answer to the edit."),
    ]
    assert backend.chat_calls[-1]["messages"] == [("user", "edited question")]


async def test_edit_assistant_message_does_not_regenerate(store):
    backend = FakeBackend()
    orchestrator = ChatTurnOrchestrator(store, backend)
    conv = store.create()
    conv = await orchestrator.submit(conv.id, "question")

    conv = await orchestrator.edit_message(conv.id, conv.messages[1].id, "corrected answer")

    assert [m.content for m in conv.messages] == ["question", "corrected answer"]
    assert len(backend.chat_calls) == 1


async def test_regenerate_only_answers_a_trailing_user_message(store):
    backend = FakeBackend(chat_fails=True)
    orchestrator = ChatTurnOrchestrator(store, backend)
    conv = store.create()
    await orchestrator.submit(conv.id, "question")

    backend.chat_fails = False
    conv = await orchestrator.regenerate(conv.id)
    assert _roles(conv) == ["user", "assistant"]

    conv = await orchestrator.regenerate(conv.id)
    assert _roles(conv) == ["user", "assistant"]
    assert len(backend.chat_calls) == 2


async def test_one_turn_at_a_time_per_conversation(store):
    backend = FakeBackend()
    backend.gate = asyncio.Event()
    orchestrator = ChatTurnOrchestrator(store, backend)
    conv = store.create()
    other = store.create()

    pending = asyncio.create_task(orchestrator.submit(conv.id, "slow question"))
    for _ in range(5):
        await asyncio.sleep(0)

    assert orchestrator.is_busy(conv.id)
    assert not orchestrator.is_busy(other.id)
    with pytest.raises(TurnInFlightError):
        await orchestrator.submit(conv.id, "impatient")
    with pytest.raises(TurnInFlightError):
        await orchestrator.edit_message(conv.id, store.get(conv.id).messages[0].id, "edited")

    backend.gate.set()
    conv = await pending

    assert [m.content for m in conv.messages] == ["slow question", "Here is the answer."]
    assert not orchestrator.is_busy(conv.id)


async def test_attach_file_sets_document_and_answers(store):
    backend = FakeBackend(reply="Ask away.")
    orchestrator = ChatTurnOrchestrator(store, backend)
    conv = store.create()

    conv = await orchestrator.attach_file(
        conv.id, "a-rather-long-lecture-notes-file.txt", b"Lecture notes body", "text/plain", mode="user"
    )

    assert conv.title == "a-rather-long-lecture-notes-fi..."
    assert conv.docContent == "Lecture notes body"
    assert [(m.role, m.content) for m in conv.messages] == [
        ("user", "**a-rather-long-lecture-notes-file.txt**\n\nanalysis"),
        ("assistant", "Ask away."),
    ]
    (extract,) = backend.extract_calls
    assert extract[3] == Mode.user
    assert backend.chat_calls[0]["doc_content"] == "Lecture notes body"


async def test_http_backend_end_to_end(store, make_assistant, docs_site):
    assistant = make_assistant(docs_site, replies=["Chunk summary.", INSIGHTS_JSON, "Run pip install example."])
    transport = httpx.ASGITransport(app=create_app(assistant))

    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        orchestrator = ChatTurnOrchestrator(store, HttpBackend(client))
        conv = store.create()
        await orchestrator.submit(conv.id, "https://example.com/docs")
        conv = await orchestrator.submit(conv.id, "How do I install it?")

    assert _roles(conv) == ["user", "assistant", "user", "assistant"]
    assert conv.messages[-1].content == "Run pip install example."
    assert conv.docUrl == "https://example.com/docs"
    chat_call = assistant.llm.calls[-1]
    assert "### Page: https://example.com/docs" in chat_call["messages"][0]["content"]
    assert chat_call["messages"][-1] == {"role": "user", "content": "How do I install it?"}


async def test_http_backend_uploads_files(make_assistant):
    assistant = make_assistant({}, replies=["Notes overview."])
    transport = httpx.ASGITransport(app=create_app(assistant))

    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        extraction = await HttpBackend(client).extract_file("notes.txt", b"Some notes", "text/plain", Mode.dev)

    assert extraction.full_content == "Some notes"
    assert extraction.text.startswith("**notes.txt**\n\nNotes overview.")


async def test_http_backend_surfaces_api_errors(store, make_assistant):
    transport = httpx.ASGITransport(app=create_app(make_assistant({})))

    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        backend = HttpBackend(client)
        with pytest.raises(BackendError) as excinfo:
            await backend.analyze_docs("https://example.com/docs", Mode.dev)
        assert excinfo.value.status_code == 500
        assert "Failed to analyze documentation" in str(excinfo.value)

        orchestrator = ChatTurnOrchestrator(store, backend)
        conv = store.create()
        conv = await orchestrator.submit(conv.id, "https://example.com/docs")

    assert _roles(conv) == ["user"]


async def test_malformed_url_in_message_leaves_only_the_user_message(store, make_assistant):
    assistant = make_assistant({}, replies=["unused"])
    orchestrator = ChatTurnOrchestrator(store, assistant)
    conv = store.create()

    conv = await orchestrator.submit(conv.id, "see https://[::1 please")

    assert [(m.role, m.content) for m in conv.messages] == [("user", "see https://[::1 please")]
    assert conv.docUrl is None
    assert assistant.llm.calls == []
    assert not orchestrator.is_busy(conv.id)


def _api_stub(*bodies):
    replies = list(bodies)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=replies.pop(0))

    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api")


@pytest.mark.parametrize(
    ("call", "body"),
    [
        ("analyze", ["not", "an", "object"]),
        ("analyze", {"content": "text"}),
        ("analyze", {"insights": "nope", "content": "text"}),
        ("chat", {}),
        ("chat", {"response": None}),
        ("extract", {"fullContent": "x"}),
    ],
)
async def test_http_backend_rejects_malformed_success_bodies(call, body):
    async with _api_stub(body) as client:
        backend = HttpBackend(client)
        with pytest.raises(BackendError):
            if call == "analyze":
                await backend.analyze_docs("https://example.com/docs", Mode.dev)
            elif call == "chat":
                await backend.chat([{"role": "user", "content": "hi"}], Mode.dev)
            else:
                await backend.extract_file("a.txt", b"a", "text/plain", Mode.dev)


async def test_malformed_backend_reply_leaves_only_the_user_message(store):
    async with _api_stub(["unexpected"]) as client:
        orchestrator = ChatTurnOrchestrator(store, HttpBackend(client))
        conv = store.create()
        conv = await orchestrator.submit(conv.id, "Hello")

    assert _roles(conv) == ["user"]
