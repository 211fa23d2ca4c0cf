"""Shared test fixtures."""

import json
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Union

import httpx
import pytest

from perplexsearch.config import Settings
from perplexsearch.llm.base import CancellationToken
from perplexsearch.models.message import Message
from perplexsearch.models.settings import AppSettings


# ============================================================
# Wire helpers
# ============================================================

class ChunkedStream(httpx.AsyncByteStream):
    """Async byte stream that delivers ``body`` in fixed-size pieces.

    Used to prove that decoding does not depend on network read boundaries.
    """

    def __init__(self, body: bytes, chunk_size: int = 7):
        self.body = body
        self.chunk_size = chunk_size

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for i in range(0, len(self.body), self.chunk_size):
            yield self.body[i:i + self.chunk_size]


def sse_body(events: Iterable[Union[Dict[str, Any], str]], done: bool = True) -> bytes:
    """Encode events as ``data: ...`` lines (dicts are JSON-encoded)."""
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def ndjson_body(objects: Iterable[Dict[str, Any]]) -> bytes:
    return "".join(json.dumps(o) + "\n" for o in objects).encode()


def streaming_response(body: bytes, status_code: int = 200, chunk_size: int = 7) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        stream=ChunkedStream(body, chunk_size),
    )


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)

    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


async def collect(generator) -> List:
    return [item async for item in generator]


def joined_text(chunks) -> str:
    return "".join(c.text for c in chunks)


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def config(tmp_path: Path) -> Settings:
    """Process settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        sqlite_db_path=str(tmp_path / "test.db"),
        encryption_key="test-secret",
        video_poll_interval=0.01,
        request_timeout=5.0,
        local_save_delay=0.0,
        remote_save_delay=0.05,
        cloud_store_url=None,
    )


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def history() -> List[Message]:
    return [Message(role="user", content="What is the capital of France?", timestamp=1000)]


@pytest.fixture
def app_settings() -> Callable[..., AppSettings]:
    """Factory for user settings with every credential filled in."""

    def _make(model: str = "sonar", **overrides: Any) -> AppSettings:
        values: Dict[str, Any] = {
            "model": model,
            "api_key": "pplx-test",
            "google_api_key": "AIza-test",
            "openai_api_key": "sk-test",
            "anthropic_api_key": "sk-ant-test",
        }
        values.update(overrides)
        return AppSettings(**values)

    return _make


def perplexity_events(*texts: str, citations: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """Perplexity-shaped SSE events carrying ``texts`` as deltas."""
    events = [{"choices": [{"delta": {"content": t}}]} for t in texts]
    if citations is not None and events:
        events[-1]["citations"] = citations
    return events
