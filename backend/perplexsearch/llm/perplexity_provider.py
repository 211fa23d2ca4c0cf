"""
Perplexity LLM provider implementation.
Supports the Sonar family of online search models.
"""

import json
import logging
from typing import AsyncGenerator, Dict, List, Optional, Sequence

import httpx

from perplexsearch.llm.base import CancellationToken, LLMProvider, LLMResponse, StreamChunk
from perplexsearch.models.message import Message, Usage

logger = logging.getLogger(__name__)


class PerplexityProvider(LLMProvider):
    """
    Perplexity chat-completions provider.
    Streams text deltas and forwards top-level citations/usage verbatim.
    """

    provider_name = "perplexity"
    error_label = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, base_url, timeout, transport)
        self.base_url = (base_url or "https://api.perplexity.ai").rstrip("/")

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @staticmethod
    def _build_messages(
        messages: Sequence[Message], system_prompt: Optional[str]
    ) -> List[Dict[str, str]]:
        api_messages = LLMProvider._to_api_messages(messages)
        if system_prompt:
            api_messages.insert(0, {"role": "system", "content": system_prompt})
        return api_messages

    async def generate(
        self,
        messages: List[Dict[str, str]],
        model: str,
    ) -> LLMResponse:
        """Generate a complete (non-streaming) response. Used for titling."""
        payload = {"model": model, "messages": messages}
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers=self._get_headers(),
                json=payload,
            )
            await self._raise_for_status(response)
            data = response.json()

        choice = data["choices"][0]
        usage = data.get("usage")
        return LLMResponse(
            content=choice["message"]["content"],
            model=model,
            provider=self.provider_name,
            usage=Usage(**usage) if usage else None,
        )

    async def stream(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
        system_prompt: Optional[str] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream response chunks from Perplexity."""
        payload = {
            "model": model,
            "messages": self._build_messages(messages, system_prompt),
            "stream": True,
            "return_citations": True,
        }

        async with self._cancellable(token):
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    headers=self._get_headers(),
                    json=payload,
                ) as response:
                    await self._raise_for_status(response)

                    async for data_str in self._iter_sse_data(response, token):
                        try:
                            data = json.loads(data_str)
                            choices = data.get("choices") or [{}]
                            content = (choices[0].get("delta") or {}).get("content") or ""
                            usage = data.get("usage")
                            chunk = StreamChunk(
                                text=content,
                                citations=data.get("citations"),
                                usage=Usage(**usage) if usage else None,
                            )
                        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
                            logger.warning(f"Failed to parse Perplexity chunk: {e}")
                            continue
                        yield chunk
