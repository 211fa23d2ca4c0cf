"""
Conversation orchestrator.

Drives one chat turn through Submitting -> Streaming -> Finalizing, with a
Cancelled exit from Streaming. Provider chunks are consumed by a background
task and applied to the assistant placeholder, which is located by
(conversation id, placeholder timestamp) on every chunk so that a stale
chunk after cancellation or deletion is simply dropped.

Consumption is decoupled from delivery: every applied chunk is also pushed
onto the stream's asyncio.Queue, and the HTTP layer drains that queue into
server-sent events. A client disconnect therefore never truncates the
stored turn.
"""

import asyncio
import logging
import uuid
from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Set, Tuple

from perplexsearch.chat.postprocess import extract_suggestions
from perplexsearch.chat.prompts import DEFAULT_MODE, build_system_prompt
from perplexsearch.chat.state import AppState, now_ms
from perplexsearch.chat.titler import AutoTitler
from perplexsearch.errors import SubmissionRejected
from perplexsearch.llm.base import CancellationToken, StreamChunk
from perplexsearch.llm.factory import CompletionDispatcher, CompletionRequest, Resolution
from perplexsearch.models.conversation import DEFAULT_TITLE, NEW_CONVERSATION_ID, Conversation
from perplexsearch.models.message import Attachment, Message
from perplexsearch.models.settings import AppSettings

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50


class StreamState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CANCELLED = "cancelled"


class ActiveStream:
    """
    Handle for one in-flight turn.

    Attributes:
        conversation_id: Conversation the turn belongs to
        placeholder_timestamp: Identity of the assistant placeholder
        token: Cancellation signal shared with the adapter
        task: Background task consuming the provider stream
        updates: Queue of event dicts, closed by a None sentinel
        outcome: "done", "error" or "cancelled" once the turn has ended
    """

    def __init__(self, conversation_id: str, placeholder_timestamp: int, started_at: int):
        self.conversation_id = conversation_id
        self.placeholder_timestamp = placeholder_timestamp
        self.started_at = started_at
        self.token = CancellationToken()
        self.task: Optional[asyncio.Task] = None
        self.updates: asyncio.Queue = asyncio.Queue()
        self.state = StreamState.SUBMITTING
        self.outcome: Optional[str] = None
        self.chunk_count = 0

    @property
    def closed(self) -> bool:
        return self.outcome is not None

    async def events(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield update events until the turn ends."""
        while True:
            item = await self.updates.get()
            if item is None:
                return
            yield item

    async def wait(self) -> None:
        """Wait for the turn to end without propagating task cancellation."""
        if self.task is not None:
            await asyncio.wait({self.task})


class ChatOrchestrator:
    """Owns the turn lifecycle for every conversation in an AppState."""

    def __init__(
        self,
        state: AppState,
        dispatcher: CompletionDispatcher,
        titler: Optional[AutoTitler] = None,
        max_active_streams: int = 1,
        clock: Callable[[], int] = now_ms,
    ):
        self.state = state
        self.dispatcher = dispatcher
        self.titler = titler
        self.max_active_streams = max_active_streams
        self._clock = clock
        self._streams: Dict[str, ActiveStream] = {}
        self._background_tasks: Set[asyncio.Task] = set()

    # ============================================================
    # Public API
    # ============================================================

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._streams

    def get_stream(self, conversation_id: str) -> Optional[ActiveStream]:
        return self._streams.get(conversation_id)

    async def start_turn(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        mode: str = DEFAULT_MODE,
        attachments: Optional[List[Attachment]] = None,
    ) -> ActiveStream:
        """
        Submit a user turn and start streaming the reply.

        Returns once the user message and the assistant placeholder are
        in place and the consuming task has been scheduled.

        Raises:
            SubmissionRejected: Empty input, or a stream is already running
            ConversationNotFoundError: ``conversation_id`` is unknown
            ConfigurationError: Unknown model or missing credential
        """
        submitted_at = self._clock()
        query = (query or "").strip()
        attachments = list(attachments or [])
        if not query and not attachments:
            raise SubmissionRejected("Cannot send an empty message.")

        if conversation_id == NEW_CONVERSATION_ID:
            conversation_id = None
        if conversation_id and self.is_busy(conversation_id):
            raise SubmissionRejected("A response is already streaming for this conversation.")
        if len(self._streams) >= self.max_active_streams:
            raise SubmissionRejected("Another response is still streaming.")

        # Everything that can fail is checked before the first mutation
        existing = self.state.get_conversation(conversation_id) if conversation_id else None
        settings = self.state.settings
        resolution = self.dispatcher.resolve(settings)

        convo, first_turn = self._append_user_turn(existing, query, attachments)
        if first_turn and query:
            self._start_title_task(convo.id, query, settings)

        placeholder_ts = self._next_timestamp(convo)
        convo.messages.append(Message(
            role="assistant",
            content="",
            timestamp=placeholder_ts,
            model=resolution.model.id,
        ))
        convo.updated_at = placeholder_ts
        self.state.notify()

        stream = ActiveStream(convo.id, placeholder_ts, started_at=submitted_at)
        request = CompletionRequest(
            messages=self._outgoing_messages(convo, placeholder_ts),
            system_prompt=build_system_prompt(
                mode, settings.system_instruction, settings.project_context
            ),
        )

        self._streams[convo.id] = stream
        stream.state = StreamState.STREAMING
        stream.task = asyncio.create_task(self._consume(stream, request, settings, resolution))
        stream.task.add_done_callback(lambda t: self._on_task_done(stream, t))
        logger.info(
            f"Turn started in conversation {convo.id} with {resolution.model.id} "
            f"(mode={mode}, {len(request.messages)} messages)"
        )
        return stream

    async def submit(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        mode: str = DEFAULT_MODE,
        attachments: Optional[List[Attachment]] = None,
    ) -> Optional[Message]:
        """Run a whole turn and return the finalized assistant message."""
        stream = await self.start_turn(query, conversation_id, mode, attachments)
        await stream.wait()
        return self._placeholder(stream)

    def stop(self, conversation_id: str) -> bool:
        """
        Cancel the in-flight turn of a conversation.

        Partial content already applied is kept. Returns False when
        nothing was streaming.
        """
        stream = self._streams.get(conversation_id)
        if stream is None or stream.state is not StreamState.STREAMING:
            return False
        logger.info(f"Stopping stream for conversation {conversation_id}")
        stream.token.cancel()
        stream.state = StreamState.CANCELLED
        if stream.task is not None:
            stream.task.cancel()
        return True

    async def aclose(self) -> None:
        """Cancel active turns and wait for all background work."""
        for conversation_id in list(self._streams):
            self.stop(conversation_id)
        tasks = [s.task for s in self._streams.values() if s.task is not None]
        tasks.extend(self._background_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ============================================================
    # Submitting
    # ============================================================

    def _next_timestamp(self, convo: Optional[Conversation]) -> int:
        """Wall-clock ms, forced strictly after the conversation's last turn."""
        ts = self._clock()
        if convo is not None and ts <= convo.last_timestamp:
            ts = convo.last_timestamp + 1
        return ts

    def _append_user_turn(
        self,
        existing: Optional[Conversation],
        query: str,
        attachments: List[Attachment],
    ) -> Tuple[Conversation, bool]:
        user_ts = self._next_timestamp(existing)
        user_msg = Message(role="user", content=query, timestamp=user_ts, attachments=attachments)

        if existing is None:
            convo = Conversation(
                id=uuid.uuid4().hex,
                title=query[:TITLE_MAX_CHARS] or DEFAULT_TITLE,
                messages=[user_msg],
                created_at=user_ts,
                updated_at=user_ts,
            )
            self.state.add_conversation(convo)
            return convo, True

        first_turn = not existing.messages
        existing.messages.append(user_msg)
        existing.updated_at = user_ts
        self.state.move_to_front(existing.id)
        return existing, first_turn

    @staticmethod
    def _outgoing_messages(convo: Conversation, placeholder_ts: int) -> List[Message]:
        """
        History sent to the provider: every turn strictly before the
        placeholder, with text attachments inlined into the last user turn.

        Copies are returned so the stored user message is never modified.
        """
        messages = [m.model_copy(deep=True) for m in convo.messages_before(placeholder_ts)]
        if messages and messages[-1].role == "user":
            last = messages[-1]
            text_files = [a for a in last.attachments if not a.is_image]
            if text_files:
                file_context = "\n\n".join(
                    f"FILE: {a.name}\nCONTENT:\n{a.data}" for a in text_files
                )
                last.content = f"{last.content}\n\n[ATTACHED FILES]\n{file_context}"
        return messages

    def _start_title_task(self, conversation_id: str, query: str, settings: AppSettings) -> None:
        if self.titler is None or not settings.api_key:
            return
        task = asyncio.create_task(self._apply_title(conversation_id, query, settings.api_key))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _apply_title(self, conversation_id: str, query: str, api_key: str) -> None:
        title = await self.titler.generate_title(query, api_key)
        if title and self.state.find_conversation(conversation_id) is not None:
            self.state.rename_conversation(conversation_id, title)
            logger.debug(f"Titled conversation {conversation_id}: {title}")

    # ============================================================
    # Streaming
    # ============================================================

    def _placeholder(self, stream: ActiveStream) -> Optional[Message]:
        convo = self.state.find_conversation(stream.conversation_id)
        if convo is None:
            return None
        return convo.find_message(stream.placeholder_timestamp)

    def _apply_chunk(self, stream: ActiveStream, chunk: StreamChunk) -> None:
        """Append text and overwrite citations/usage on the placeholder."""
        if stream.token.cancelled:
            return
        msg = self._placeholder(stream)
        if msg is None:
            return

        msg.content += chunk.text
        if chunk.citations is not None:
            msg.citations = list(chunk.citations)
        if chunk.usage is not None:
            msg.usage = chunk.usage
        if chunk.extra:
            msg.metadata.update(chunk.extra)
        stream.chunk_count += 1
        self.state.notify()

        event: Dict[str, Any] = {"type": "chunk", "text": chunk.text}
        if chunk.citations is not None:
            event["citations"] = list(chunk.citations)
        if chunk.usage is not None:
            event["usage"] = chunk.usage.model_dump()
        if chunk.extra:
            event["extra"] = chunk.extra
        stream.updates.put_nowait(event)

    async def _consume(
        self,
        stream: ActiveStream,
        request: CompletionRequest,
        settings: AppSettings,
        resolution: Resolution,
    ) -> None:
        """Consume the provider stream; runs as a background task."""
        try:
            async with aclosing(
                self.dispatcher.stream(request, settings, stream.token, resolution)
            ) as chunks:
                async for chunk in chunks:
                    self._apply_chunk(stream, chunk)
        except asyncio.CancelledError:
            self._finish_cancelled(stream)
            return
        except Exception as e:
            if stream.token.cancelled:
                self._finish_cancelled(stream)
                return
            error_msg = str(e) or f"{type(e).__name__}: Unknown error"
            logger.error(f"Stream error in conversation {stream.conversation_id}: {error_msg}")
            self._finish_error(stream, error_msg)
            return

        if stream.token.cancelled:
            self._finish_cancelled(stream)
        else:
            self._finalize(stream)

    def _on_task_done(self, stream: ActiveStream, task: asyncio.Task) -> None:
        # A task cancelled before its first step never reaches _consume's handlers
        if task.cancelled():
            self._finish_cancelled(stream)

    # ============================================================
    # Finalizing
    # ============================================================

    def _finalize(self, stream: ActiveStream) -> None:
        stream.state = StreamState.FINALIZING
        msg = self._placeholder(stream)
        if msg is not None:
            clean, suggestions = extract_suggestions(msg.content)
            msg.content = clean
            msg.suggestions = suggestions
            msg.response_time = max(0, self._clock() - stream.started_at)
            self.state.notify()
        logger.info(
            f"Stream finished for conversation {stream.conversation_id}: "
            f"{stream.chunk_count} chunks"
        )
        self._close(stream, "done", {"message": msg.model_dump() if msg else None})

    def _finish_error(self, stream: ActiveStream, error_msg: str) -> None:
        msg = self._placeholder(stream)
        if msg is not None:
            msg.content += f"\n\n**Error:** {error_msg}"
            self.state.notify()
        self._close(stream, "error", {"error": error_msg})

    def _finish_cancelled(self, stream: ActiveStream) -> None:
        if stream.closed:
            return
        stream.token.cancel()
        logger.info(
            f"Stream cancelled for conversation {stream.conversation_id} "
            f"after {stream.chunk_count} chunks"
        )
        self._close(stream, "cancelled", {})

    def _close(self, stream: ActiveStream, outcome: str, payload: Dict[str, Any]) -> None:
        if stream.closed:
            return
        stream.outcome = outcome
        stream.state = StreamState.IDLE
        if self._streams.get(stream.conversation_id) is stream:
            del self._streams[stream.conversation_id]
        stream.updates.put_nowait({"type": outcome, **payload})
        stream.updates.put_nowait(None)
