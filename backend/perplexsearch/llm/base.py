"""
Abstract base class for LLM providers and the shared chunk protocol.
All providers must implement this interface.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel

from perplexsearch.errors import ProviderError
from perplexsearch.models.message import Message, Usage

logger = logging.getLogger(__name__)


@dataclass
class StreamChunk:
    """
    One incremental unit of a completion.

    ``text`` is appended to the assistant turn; ``citations`` and ``usage``,
    when set, replace the turn's current values. An adapter may emit a
    chunk with empty text purely to deliver citations, usage or ``extra``
    (provider-specific metadata such as grounding details).
    """
    text: str = ""
    citations: Optional[List[str]] = None
    usage: Optional[Usage] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class LLMResponse(BaseModel):
    """Complete (non-streaming) response from an LLM."""
    content: str
    model: str
    provider: str
    usage: Optional[Usage] = None


class CancellationToken:
    """
    Cooperative cancellation signal, one per streaming turn.

    Adapters check ``cancelled`` between transport reads and simply return
    once it is set; cancellation is never reported as an error.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Providers are stateless per call: every ``stream()`` receives the full
    history it should send. Each implementation owns one provider's
    request construction, transport and incremental decoding.
    """

    provider_name: str = "base"
    # Prefix used for generic "<label> API Error: <status text>" messages
    error_label: str = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize provider with credentials.

        Args:
            api_key: API key for authentication (if required)
            base_url: Base URL for API requests
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests script the wire with it)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    @abstractmethod
    def stream(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
        system_prompt: Optional[str] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """
        Perform one streaming completion.

        Args:
            messages: Prior turns, already cut to "sent before this turn"
            model: Model identifier to use
            token: Cancellation signal for this turn
            system_prompt: Optional combined system prompt

        Yields:
            StreamChunk objects in transport order. Returns normally
            (without yielding further) once ``token`` is cancelled.
        """

    # ── Transport helpers ─────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _to_api_messages(messages: Sequence[Message]) -> List[Dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in messages]

    @staticmethod
    async def _read_error_message(response: httpx.Response) -> Optional[str]:
        """Return ``error.message`` from an error body, or None if unparseable."""
        body = await response.aread()
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        # Google wraps streaming errors in a one-element array
        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return None

    def _generic_error(self, response: httpx.Response) -> str:
        prefix = f"{self.error_label} API Error" if self.error_label else "API Error"
        return f"{prefix}: {response.reason_phrase}"

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """
        Convert a non-2xx response into a ProviderError.

        The provider's own message is used when the body parses as
        ``{"error": {"message": ...}}``; otherwise a generic status-text one.
        """
        if response.is_success:
            return
        message = await self._read_error_message(response)
        logger.error(
            f"{self.provider_name} API error {response.status_code}: "
            f"{message or response.reason_phrase}"
        )
        raise ProviderError(message or self._generic_error(response), response.status_code)

    @asynccontextmanager
    async def _cancellable(self, token: CancellationToken) -> AsyncIterator[None]:
        """Swallow transport failures caused by a cancelled turn."""
        try:
            yield
        except httpx.TransportError:
            if token.cancelled:
                logger.debug(f"{self.provider_name} transport closed after cancellation")
                return
            raise

    @staticmethod
    async def _iter_sse_data(
        response: httpx.Response, token: CancellationToken
    ) -> AsyncGenerator[str, None]:
        """
        Yield the payload of each ``data: `` line of an event stream.

        Stops at the ``[DONE]`` sentinel, at end of stream, or as soon as
        ``token`` is cancelled. Line reassembly across network reads is
        handled by httpx, so chunk boundaries never affect the payloads.
        """
        async for line in response.aiter_lines():
            if token.cancelled:
                return
            line = line.strip()
            if not line or not line.startswith("data: "):
                continue
            data_str = line[6:]  # Remove "data: " prefix
            if data_str == "[DONE]":
                return
            yield data_str
