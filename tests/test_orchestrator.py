"""Tests for the conversation orchestrator's turn lifecycle."""

import asyncio
import json
from typing import Callable

import httpx
import pytest

from conftest import perplexity_events, sse_body, streaming_response
from perplexsearch.chat.orchestrator import ChatOrchestrator, StreamState
from perplexsearch.chat.state import AppState
from perplexsearch.chat.titler import AutoTitler
from perplexsearch.errors import (
    ConversationNotFoundError,
    MissingCredentialError,
    ProviderError,
    SubmissionRejected,
)
from perplexsearch.llm.base import StreamChunk
from perplexsearch.llm.factory import CompletionDispatcher
from perplexsearch.models.conversation import Conversation
from perplexsearch.models.message import Attachment, Message, Usage
from perplexsearch.models.user_data import UserData


class ScriptedDispatcher(CompletionDispatcher):
    """Dispatcher whose stream is fed by the test through a queue.

    Put StreamChunk objects to deliver them, an exception to raise it,
    and None to end the stream.
    """

    def __init__(self, config):
        super().__init__(config)
        self.feed: asyncio.Queue = asyncio.Queue()
        self.requests = []

    async def stream(self, request, settings, token, resolution=None):
        self.requests.append(request)
        while True:
            item = await self.feed.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


@pytest.fixture
def state(app_settings) -> AppState:
    return AppState(UserData(settings=app_settings("sonar")))


@pytest.fixture
def scripted(config) -> ScriptedDispatcher:
    return ScriptedDispatcher(config)


def perplexity_handler(stream_body: bytes, title_status: int = 200, title: str = '"Capital of France"'):
    """Serve streaming completions and non-streaming title requests."""
    seen = {"stream": [], "title": []}

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if payload.get("stream"):
            seen["stream"].append(payload)
            return streaming_response(stream_body)
        seen["title"].append(payload)
        if title_status != 200:
            return httpx.Response(title_status, json={"error": {"message": "title failed"}})
        return httpx.Response(200, json={"choices": [{"message": {"content": title}}]})

    return handler, seen


ANSWER_EVENTS = perplexity_events(
    "Paris is the capital of France.",
    "\n---\n[[SUGGESTIONS]]\n1. What about Lyon?\n",
    "2. History of Paris?\n3. Population of France?",
    citations=["https://en.wikipedia.org/wiki/Paris"],
) + [{"choices": [{"delta": {}}], "usage": {"prompt_tokens": 9, "completion_tokens": 30, "total_tokens": 39}}]


@pytest.mark.asyncio
async def test_submit_accumulates_and_finalizes(config, state):
    handler, seen = perplexity_handler(sse_body(ANSWER_EVENTS))
    transport = httpx.MockTransport(handler)
    orchestrator = ChatOrchestrator(
        state,
        CompletionDispatcher(config, transport=transport),
        titler=AutoTitler(config, transport=transport),
    )

    message = await orchestrator.submit("What is the capital of France?")
    await orchestrator.aclose()

    assert message.role == "assistant"
    assert message.content == "Paris is the capital of France."
    assert message.suggestions == ["What about Lyon?", "History of Paris?", "Population of France?"]
    assert message.citations == ["https://en.wikipedia.org/wiki/Paris"]
    assert message.usage == Usage(prompt_tokens=9, completion_tokens=30, total_tokens=39)
    assert message.model == "sonar"
    assert message.response_time is not None and message.response_time >= 0

    convo = state.conversations[0]
    assert [m.role for m in convo.messages] == ["user", "assistant"]
    assert convo.title == "Capital of France"

    sent = seen["stream"][0]["messages"]
    assert [m["role"] for m in sent] == ["system", "user"]
    assert sent[1]["content"] == "What is the capital of France?"
    assert "[[SUGGESTIONS]]" in sent[0]["content"]


@pytest.mark.asyncio
async def test_title_failure_keeps_truncated_query(config, state):
    handler, seen = perplexity_handler(sse_body(perplexity_events("ok")), title_status=500)
    transport = httpx.MockTransport(handler)
    orchestrator = ChatOrchestrator(
        state,
        CompletionDispatcher(config, transport=transport),
        titler=AutoTitler(config, transport=transport),
    )
    query = "Tell me everything about the long and winding history of the river Seine"

    await orchestrator.submit(query)
    await orchestrator.aclose()

    assert len(seen["title"]) == 1
    assert state.conversations[0].title == query[:50]


@pytest.mark.asyncio
async def test_no_title_request_without_perplexity_key(config, app_settings):
    state = AppState(UserData(settings=app_settings("gpt-4o", api_key="")))
    scripted = ScriptedDispatcher(config)
    titler = AutoTitler(config)
    orchestrator = ChatOrchestrator(state, scripted, titler=titler)
    scripted.feed.put_nowait(None)

    await orchestrator.submit("hello there")

    assert orchestrator._background_tasks == set()


@pytest.mark.asyncio
async def test_chunks_are_applied_in_order_and_streamed_as_events(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted)
    stream = await orchestrator.start_turn("q")
    for text in ("a", "b", "c"):
        scripted.feed.put_nowait(StreamChunk(text=text))
    scripted.feed.put_nowait(StreamChunk(citations=["u1"]))
    scripted.feed.put_nowait(StreamChunk(citations=["u2"]))
    scripted.feed.put_nowait(None)

    events = [e async for e in stream.events()]

    assert [e["type"] for e in events] == ["chunk"] * 5 + ["done"]
    assert "".join(e["text"] for e in events if e["type"] == "chunk") == "abc"
    final = events[-1]["message"]
    assert final["content"] == "abc"
    assert final["citations"] == ["u2"]
    assert stream.outcome == "done"
    assert stream.state is StreamState.IDLE
    assert not orchestrator.is_busy(stream.conversation_id)


@pytest.mark.asyncio
async def test_error_is_appended_after_partial_content(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted)
    stream = await orchestrator.start_turn("q")
    scripted.feed.put_nowait(StreamChunk(text="Partial answer"))
    scripted.feed.put_nowait(ProviderError("Invalid API key provided", 401))

    await stream.wait()

    message = state.conversations[0].messages[-1]
    assert message.content == "Partial answer\n\n**Error:** Invalid API key provided"
    assert stream.outcome == "error"
    assert message.suggestions is None


@pytest.mark.asyncio
async def test_provider_http_error_is_rendered_inline(config, state):
    transport = httpx.MockTransport(
        lambda r: httpx.Response(401, json={"error": {"message": "Invalid API key provided"}})
    )
    orchestrator = ChatOrchestrator(state, CompletionDispatcher(config, transport=transport))

    message = await orchestrator.submit("q")

    assert message.content == "\n\n**Error:** Invalid API key provided"


@pytest.mark.asyncio
async def test_stop_keeps_partial_content_and_ignores_late_chunks(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted)
    stream = await orchestrator.start_turn("q")
    scripted.feed.put_nowait(StreamChunk(text="Partial"))
    placeholder = state.conversations[0].messages[-1]
    await wait_until(lambda: placeholder.content == "Partial")

    assert orchestrator.stop(stream.conversation_id) is True
    await stream.wait()

    # A chunk arriving after teardown must not mutate the turn
    orchestrator._apply_chunk(stream, StreamChunk(text=" late", citations=["x"]))
    scripted.feed.put_nowait(StreamChunk(text=" later"))
    await asyncio.sleep(0.01)

    assert placeholder.content == "Partial"
    assert placeholder.citations is None
    assert placeholder.suggestions is None
    assert stream.outcome == "cancelled"
    assert stream.token.cancelled
    assert not orchestrator.is_busy(stream.conversation_id)
    events = [e async for e in stream.events()]
    assert events[-1] == {"type": "cancelled"}


@pytest.mark.asyncio
async def test_stop_right_after_start_is_clean(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted)
    stream = await orchestrator.start_turn("q")

    orchestrator.stop(stream.conversation_id)
    await stream.wait()

    assert stream.outcome == "cancelled"
    assert state.conversations[0].messages[-1].content == ""
    assert orchestrator.stop(stream.conversation_id) is False


@pytest.mark.asyncio
async def test_submit_moves_conversation_to_front_once(scripted, app_settings):
    older = Conversation(id="a", title="A", created_at=1, updated_at=1,
                         messages=[Message(role="user", content="hi", timestamp=1)])
    newer = Conversation(id="b", title="B", created_at=2, updated_at=2)
    state = AppState(UserData(conversations=[newer, older], settings=app_settings()))
    orchestrator = ChatOrchestrator(state, scripted)
    scripted.feed.put_nowait(None)

    await orchestrator.submit("follow up", conversation_id="a")

    assert [c.id for c in state.conversations] == ["a", "b"]


@pytest.mark.asyncio
async def test_busy_conversation_rejects_second_submit(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted, max_active_streams=2)
    stream = await orchestrator.start_turn("first")

    with pytest.raises(SubmissionRejected):
        await orchestrator.start_turn("second", conversation_id=stream.conversation_id)

    assert len(state.conversations[0].messages) == 2
    orchestrator.stop(stream.conversation_id)
    await stream.wait()


@pytest.mark.asyncio
async def test_active_stream_limit(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted, max_active_streams=1)
    stream = await orchestrator.start_turn("first")

    with pytest.raises(SubmissionRejected):
        await orchestrator.start_turn("another conversation")

    assert len(state.conversations) == 1
    orchestrator.stop(stream.conversation_id)
    await stream.wait()


@pytest.mark.asyncio
async def test_empty_query_is_rejected(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted)

    with pytest.raises(SubmissionRejected):
        await orchestrator.start_turn("   ")

    assert state.conversations == []


@pytest.mark.asyncio
async def test_missing_credential_creates_no_state(config, app_settings):
    state = AppState(UserData(settings=app_settings("claude-3-5-sonnet-20241022", anthropic_api_key="")))
    orchestrator = ChatOrchestrator(state, ScriptedDispatcher(config))

    with pytest.raises(MissingCredentialError):
        await orchestrator.start_turn("hello")

    assert state.conversations == []


@pytest.mark.asyncio
async def test_unknown_conversation_is_rejected(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted)

    with pytest.raises(ConversationNotFoundError):
        await orchestrator.start_turn("hello", conversation_id="missing")


@pytest.mark.asyncio
async def test_history_cut_excludes_placeholder_with_frozen_clock(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted, clock=lambda: 5000)
    scripted.feed.put_nowait(None)

    await orchestrator.submit("first")
    scripted.feed.put_nowait(None)
    await orchestrator.submit("second", conversation_id=state.conversations[0].id)

    timestamps = [m.timestamp for m in state.conversations[0].messages]
    assert timestamps == [5000, 5001, 5002, 5003]
    second_request = scripted.requests[1]
    assert [m.content for m in second_request.messages] == ["first", "", "second"]


@pytest.mark.asyncio
async def test_text_attachments_inlined_only_in_outgoing_copy(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted)
    scripted.feed.put_nowait(None)
    attachments = [
        Attachment(name="notes.txt", mime_type="text/plain", data="hello world"),
        Attachment(name="photo.png", mime_type="image/png", data="iVBOR"),
    ]

    await orchestrator.submit("Summarize", attachments=attachments)

    sent = scripted.requests[0].messages[-1]
    assert sent.content == "Summarize\n\n[ATTACHED FILES]\nFILE: notes.txt\nCONTENT:\nhello world"
    assert len(sent.attachments) == 2
    stored = state.conversations[0].messages[0]
    assert stored.content == "Summarize"


@pytest.mark.asyncio
async def test_attachment_only_submission_uses_default_title(scripted, state):
    orchestrator = ChatOrchestrator(state, scripted)
    scripted.feed.put_nowait(None)

    await orchestrator.submit("", attachments=[Attachment(name="a.txt", mime_type="text/plain", data="x")])

    assert state.conversations[0].title == "New Chat"


@pytest.mark.asyncio
async def test_mutations_notify_listeners(scripted, state):
    calls = []
    state.add_listener(lambda s: calls.append(len(s.conversations)))
    orchestrator = ChatOrchestrator(state, scripted)
    scripted.feed.put_nowait(StreamChunk(text="x"))
    scripted.feed.put_nowait(None)

    await orchestrator.submit("q")

    assert len(calls) >= 3
    assert calls[-1] == 1
