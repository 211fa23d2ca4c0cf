"""
OpenAI LLM provider implementation.
Supports GPT-4o and the o1 reasoning models.
"""

import json
import logging
from typing import AsyncGenerator, Dict, List, Optional, Sequence

import httpx

from perplexsearch.llm.base import CancellationToken, LLMProvider, StreamChunk
from perplexsearch.models.message import Message, Usage

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """
    OpenAI chat-completions provider.
    Text arrives as ``choices[0].delta.content``; usage, when a chunk
    carries it, is delivered through a zero-text chunk.
    """

    provider_name = "openai"
    error_label = "OpenAI"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, base_url, timeout, transport)
        self.base_url = (base_url or "https://api.openai.com/v1").rstrip("/")

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _build_messages(
        messages: Sequence[Message], model: str, system_prompt: Optional[str]
    ) -> List[Dict[str, str]]:
        """
        Map history to API messages and place the system prompt.

        o1 models reject the ``system`` role, so the prompt is folded into
        the first user turn instead (or sent as a leading user turn).
        """
        api_messages = LLMProvider._to_api_messages(messages)
        if not system_prompt:
            return api_messages

        if not model.startswith("o1"):
            api_messages.insert(0, {"role": "system", "content": system_prompt})
            return api_messages

        for msg in api_messages:
            if msg["role"] == "user":
                msg["content"] = (
                    f"System Instruction: {system_prompt}\n\nUser Query: {msg['content']}"
                )
                break
        else:
            api_messages.insert(
                0, {"role": "user", "content": f"System Instruction: {system_prompt}"}
            )
        return api_messages

    async def stream(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
        system_prompt: Optional[str] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream response chunks from OpenAI."""
        payload = {
            "model": model,
            "messages": self._build_messages(messages, model, system_prompt),
            "stream": True,
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
                            raw_usage = data.get("usage")
                            usage = Usage(
                                prompt_tokens=raw_usage.get("prompt_tokens", 0),
                                completion_tokens=raw_usage.get("completion_tokens", 0),
                                total_tokens=raw_usage.get("total_tokens", 0),
                            ) if raw_usage else None
                        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
                            logger.warning(f"Failed to parse OpenAI chunk: {e}")
                            continue

                        if content:
                            yield StreamChunk(text=content)
                        if usage:
                            yield StreamChunk(usage=usage)
