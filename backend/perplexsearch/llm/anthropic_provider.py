"""
Anthropic LLM provider implementation.
Supports Claude models through the Messages API.
"""

import json
import logging
from typing import AsyncGenerator, Dict, List, Optional, Sequence

import httpx

from perplexsearch.errors import CrossOriginError, ProviderError
from perplexsearch.llm.base import CancellationToken, LLMProvider, StreamChunk
from perplexsearch.models.message import Message

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096

CROSS_ORIGIN_GUIDANCE = (
    "Connection failed. This is likely due to cross-origin restrictions on the "
    "Anthropic API. Please use a proxy (set ANTHROPIC_BASE_URL) or a different model."
)


class AnthropicProvider(LLMProvider):
    """
    Anthropic Messages API provider.

    The system prompt is a top-level request field; only user/assistant
    turns are sent, and only ``content_block_delta`` events carry text.
    """

    provider_name = "anthropic"
    error_label = "Anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, base_url, timeout, transport)
        # Strip any path suffix users may have pasted (e.g. /v1/messages)
        # so we don't end up with double paths like /v1/messages/v1/messages
        raw = base_url or "https://api.anthropic.com"
        self.base_url = raw.split("/v1")[0] if "/v1" in raw else raw.rstrip("/")

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    @staticmethod
    def _build_messages(messages: Sequence[Message]) -> List[Dict[str, str]]:
        return [
            {
                "role": "assistant" if m.role == "assistant" else "user",
                "content": m.content,
            }
            for m in messages
            if m.role != "system"
        ]

    @staticmethod
    async def _has_error_object(response: httpx.Response) -> bool:
        body = await response.aread()
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return False
        return isinstance(data, dict) and bool(data.get("error"))

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """
        Classify a failed request.

        A 401 whose body carries no ``error`` object is reported as a
        likely cross-origin block with proxy guidance. This is a heuristic:
        the body may be missing for other reasons too.
        """
        if response.is_success:
            return
        message = await self._read_error_message(response)
        logger.error(
            f"Anthropic API error {response.status_code}: {message or response.reason_phrase}"
        )
        if response.status_code == 401 and not await self._has_error_object(response):
            raise CrossOriginError(CROSS_ORIGIN_GUIDANCE, response.status_code)
        raise ProviderError(message or self._generic_error(response), response.status_code)

    async def stream(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
        system_prompt: Optional[str] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream response chunks from Anthropic."""
        payload = {
            "model": model,
            "messages": self._build_messages(messages),
            "stream": True,
            "max_tokens": DEFAULT_MAX_TOKENS,
        }
        if system_prompt:
            payload["system"] = system_prompt

        url = f"{self.base_url}/v1/messages"
        logger.debug(f"Anthropic stream request to {url} with model {model}")

        async with self._cancellable(token):
            async with self._client() as client:
                async with client.stream(
                    "POST", url, headers=self._get_headers(), json=payload
                ) as response:
                    await self._raise_for_status(response)

                    async for data_str in self._iter_sse_data(response, token):
                        try:
                            data = json.loads(data_str)
                        except json.JSONDecodeError as e:
                            logger.warning(f"Failed to parse Anthropic chunk: {e}")
                            continue
                        if not isinstance(data, dict) or data.get("type") != "content_block_delta":
                            continue
                        text = (data.get("delta") or {}).get("text")
                        if text:
                            yield StreamChunk(text=text)
