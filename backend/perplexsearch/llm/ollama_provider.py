"""
Ollama LLM provider implementation.
Supports local models running via Ollama; no credential required.
"""

import json
import logging
from typing import AsyncGenerator, Dict, Optional, Sequence

import httpx

from perplexsearch.errors import ProviderError
from perplexsearch.llm.base import CancellationToken, LLMProvider, StreamChunk
from perplexsearch.models.message import Message, Usage

logger = logging.getLogger(__name__)


class OllamaProvider(LLMProvider):
    """
    Ollama provider for local models.
    The chat endpoint streams newline-delimited JSON objects.
    """

    provider_name = "ollama"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, base_url, timeout, transport)
        # Ollama default port is 11434
        self.base_url = (base_url or "http://localhost:11434").rstrip("/")

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers."""
        return {"Content-Type": "application/json"}

    async def stream(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
        system_prompt: Optional[str] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream response chunks from Ollama."""
        api_messages = self._to_api_messages(messages)
        if system_prompt:
            api_messages.insert(0, {"role": "system", "content": system_prompt})

        payload = {
            "model": model,
            "messages": api_messages,
            "stream": True,
        }

        async with self._cancellable(token):
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/chat",
                    headers=self._get_headers(),
                    json=payload,
                ) as response:
                    if not response.is_success:
                        raise ProviderError(
                            "Ollama connection failed. Ensure Ollama is running.",
                            response.status_code,
                        )

                    async for line in response.aiter_lines():
                        if token.cancelled:
                            return
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError as e:
                            logger.warning(f"Failed to parse Ollama chunk: {e}")
                            continue
                        if not isinstance(data, dict):
                            logger.warning(f"Skipping non-object Ollama chunk: {line[:80]}")
                            continue

                        content = (data.get("message") or {}).get("content")
                        if content:
                            yield StreamChunk(text=content)

                        if data.get("done"):
                            prompt = data.get("prompt_eval_count") or 0
                            completion = data.get("eval_count") or 0
                            if completion:
                                yield StreamChunk(usage=Usage(
                                    prompt_tokens=prompt,
                                    completion_tokens=completion,
                                    total_tokens=prompt + completion,
                                ))
                            return
