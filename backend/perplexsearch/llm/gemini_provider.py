"""
Google Gemini LLM provider implementation.

One entry point, three behaviours selected by model id through the
registry:

  - **video** (Veo): start a long-running generation, poll the operation
    every few seconds, then emit a Markdown image reference whose alt text
    ("Generated Video") tells the front-end to render a player.
  - **image**: one non-streaming multimodal call; each returned image part
    becomes a Markdown data-URI image, each text part a text chunk.
  - **text**: server-sent-event streaming with optional tools (web search,
    thinking budget, maps). Grounding URLs are deduplicated and
    accumulated across the stream before being re-emitted.

Video and image failures are reported inline as Markdown chunks rather
than raised, so a failed generation still leaves a readable turn.
"""

import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

import httpx

from perplexsearch.errors import ProviderError
from perplexsearch.llm.base import CancellationToken, LLMProvider, StreamChunk
from perplexsearch.llm.registry import (
    THINKING_BUDGET,
    GeminiTool,
    GeminiVariant,
    find_model,
)
from perplexsearch.models.message import Message, Usage

logger = logging.getLogger(__name__)

# Alt text the front-end uses to render a video player instead of an <img>
VIDEO_ALT_TEXT = "Generated Video"
IMAGE_ALT_TEXT = "Generated Image"

VIDEO_PENDING_NOTICE = "Generating video... This may take a minute or two. Please wait.\n\n"
IMAGE_PENDING_NOTICE = "Generating image..."
NO_IMAGE_NOTICE = "\n(No image generated. Try a more descriptive prompt)"


class GeminiProvider(LLMProvider):
    """
    Gemini REST provider (generativelanguage API, key in ``x-goog-api-key``).
    """

    provider_name = "google"
    error_label = "Gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        poll_interval: float = 5.0,
    ):
        super().__init__(api_key, base_url, timeout, transport)
        self.base_url = (base_url or "https://generativelanguage.googleapis.com").rstrip("/")
        self.poll_interval = poll_interval

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        return {
            "x-goog-api-key": self.api_key or "",
            "Content-Type": "application/json",
        }

    def _model_url(self, model: str, method: str) -> str:
        return f"{self.base_url}/v1beta/models/{model}:{method}"

    # ── Request building ──────────────────────────────────────────

    @staticmethod
    def _build_contents(messages: Sequence[Message]) -> List[Dict[str, Any]]:
        """
        Map history to Gemini turns (``assistant`` becomes ``model``).

        System-role history is dropped; the system prompt travels in
        ``systemInstruction``. Image attachments on user turns are inlined
        as base64 parts ahead of the text.
        """
        contents: List[Dict[str, Any]] = []
        for m in messages:
            if m.role == "system":
                continue
            parts: List[Dict[str, Any]] = []
            if m.role == "user":
                parts.extend(
                    {"inlineData": {"mimeType": a.mime_type, "data": a.data}}
                    for a in m.attachments
                    if a.is_image
                )
            parts.append({"text": m.content})
            contents.append({
                "role": "model" if m.role == "assistant" else "user",
                "parts": parts,
            })
        return contents

    @staticmethod
    def _apply_tool_config(payload: Dict[str, Any], tool: GeminiTool) -> None:
        if tool is GeminiTool.WEB_SEARCH:
            payload["tools"] = [{"googleSearch": {}}]
        elif tool is GeminiTool.THINKING:
            payload["generationConfig"] = {
                "thinkingConfig": {"thinkingBudget": THINKING_BUDGET}
            }
        elif tool is GeminiTool.MAPS:
            payload["tools"] = [{"googleMaps": {}}]

    # ── Response decoding ─────────────────────────────────────────

    @staticmethod
    def _first_candidate(data: Dict[str, Any]) -> Dict[str, Any]:
        candidates = data.get("candidates") or [{}]
        return candidates[0] or {}

    @classmethod
    def _extract_text(cls, data: Dict[str, Any]) -> str:
        parts = (cls._first_candidate(data).get("content") or {}).get("parts") or []
        return "".join(
            p["text"] for p in parts
            if isinstance(p.get("text"), str) and not p.get("thought")
        )

    @classmethod
    def _grounding_urls(cls, data: Dict[str, Any]) -> List[str]:
        metadata = cls._first_candidate(data).get("groundingMetadata") or {}
        urls: List[str] = []
        for chunk in metadata.get("groundingChunks") or []:
            for source in ("web", "maps"):
                uri = (chunk.get(source) or {}).get("uri")
                if uri:
                    urls.append(uri)
        return urls

    @staticmethod
    def _usage(data: Dict[str, Any]) -> Optional[Usage]:
        meta = data.get("usageMetadata")
        if not meta:
            return None
        return Usage(
            prompt_tokens=meta.get("promptTokenCount") or 0,
            completion_tokens=meta.get("candidatesTokenCount") or 0,
            total_tokens=meta.get("totalTokenCount") or 0,
        )

    # ── Entry point ───────────────────────────────────────────────

    async def stream(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
        system_prompt: Optional[str] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Dispatch to the video, image or text behaviour for ``model``."""
        config = find_model(model)
        variant = config.gemini_variant if config else GeminiVariant.TEXT
        tool = config.gemini_tool if config else GeminiTool.NONE

        if variant is GeminiVariant.VIDEO:
            generator = self._stream_video(messages, model, token)
        elif variant is GeminiVariant.IMAGE:
            generator = self._stream_image(messages, model, token)
        else:
            generator = self._stream_text(messages, model, token, system_prompt, tool)

        async for chunk in generator:
            yield chunk

    # ── Video (Veo) ───────────────────────────────────────────────

    async def _stream_video(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
    ) -> AsyncGenerator[StreamChunk, None]:
        prompt = messages[-1].content if messages else ""
        yield StreamChunk(text=VIDEO_PENDING_NOTICE)

        try:
            uri = None
            async with self._cancellable(token):
                uri = await self._generate_video(prompt, model, token)
            if token.cancelled:
                return
            if not uri:
                raise ProviderError("Video generation completed but no URI was returned.")
        except (ProviderError, httpx.HTTPError, ValueError, AttributeError, TypeError) as e:
            if token.cancelled:
                return
            logger.error(f"Veo generation failed: {e}")
            yield StreamChunk(text=f"\n\n**Error generating video:** {e}")
            return

        separator = "&" if "?" in uri else "?"
        yield StreamChunk(text=f"\n![{VIDEO_ALT_TEXT}]({uri}{separator}key={self.api_key})\n")

    async def _generate_video(
        self, prompt: str, model: str, token: CancellationToken
    ) -> Optional[str]:
        """Start a Veo operation and poll it; return the video URI (or None)."""
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {"aspectRatio": "16:9", "resolution": "720p"},
        }
        async with self._client() as client:
            response = await client.post(
                self._model_url(model, "predictLongRunning"),
                headers=self._get_headers(),
                json=payload,
            )
            await self._raise_for_status(response)
            operation = response.json()
            name = operation.get("name")
            logger.info(f"Veo operation started: {name}")

            polls = 0
            while not operation.get("done"):
                if await token.sleep(self.poll_interval):
                    logger.info(f"Veo operation {name} abandoned after {polls} polls")
                    return None
                response = await client.get(
                    f"{self.base_url}/v1beta/{name}", headers=self._get_headers()
                )
                await self._raise_for_status(response)
                operation = response.json()
                polls += 1

        error = operation.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(message or "Video generation failed.")

        samples = (
            (operation.get("response") or {})
            .get("generateVideoResponse", {})
            .get("generatedSamples")
        ) or [{}]
        return (samples[0].get("video") or {}).get("uri")

    # ── Image ─────────────────────────────────────────────────────

    async def _stream_image(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
    ) -> AsyncGenerator[StreamChunk, None]:
        payload = {
            "contents": self._build_contents(messages),
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": "1:1"},
            },
        }
        yield StreamChunk(text=IMAGE_PENDING_NOTICE)

        try:
            data = None
            async with self._cancellable(token):
                async with self._client() as client:
                    response = await client.post(
                        self._model_url(model, "generateContent"),
                        headers=self._get_headers(),
                        json=payload,
                    )
                    await self._raise_for_status(response)
                    data = response.json()
        except (ProviderError, httpx.HTTPError, json.JSONDecodeError) as e:
            if token.cancelled:
                return
            logger.error(f"Gemini image generation failed: {e}")
            yield StreamChunk(text=f"\n\n**Error generating image:** {e}")
            return

        if token.cancelled or data is None:
            return

        found_image = False
        parts = (self._first_candidate(data).get("content") or {}).get("parts") or []
        for part in parts:
            inline = part.get("inlineData")
            if inline:
                mime = inline.get("mimeType") or "image/png"
                yield StreamChunk(
                    text=f"\n![{IMAGE_ALT_TEXT}](data:{mime};base64,{inline.get('data', '')})\n"
                )
                found_image = True
            elif part.get("text"):
                yield StreamChunk(text=part["text"])

        if not found_image:
            yield StreamChunk(text=NO_IMAGE_NOTICE)

        usage = self._usage(data)
        if usage:
            yield StreamChunk(usage=usage)

    # ── Text / multimodal streaming ───────────────────────────────

    async def _stream_text(
        self,
        messages: Sequence[Message],
        model: str,
        token: CancellationToken,
        system_prompt: Optional[str],
        tool: GeminiTool,
    ) -> AsyncGenerator[StreamChunk, None]:
        payload: Dict[str, Any] = {"contents": self._build_contents(messages)}
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        self._apply_tool_config(payload, tool)

        citations: List[str] = []

        async with self._cancellable(token):
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    self._model_url(model, "streamGenerateContent"),
                    params={"alt": "sse"},
                    headers=self._get_headers(),
                    json=payload,
                ) as response:
                    await self._raise_for_status(response)

                    async for data_str in self._iter_sse_data(response, token):
                        try:
                            data = json.loads(data_str)
                            text = self._extract_text(data)
                            urls = self._grounding_urls(data)
                            usage = self._usage(data)
                        except (json.JSONDecodeError, AttributeError, TypeError) as e:
                            logger.warning(f"Failed to parse Gemini chunk: {e}")
                            continue

                        if text:
                            yield StreamChunk(text=text)

                        if urls:
                            for url in urls:
                                if url not in citations:
                                    citations.append(url)
                            grounding = self._first_candidate(data).get("groundingMetadata")
                            yield StreamChunk(
                                citations=list(citations),
                                extra={"grounding_metadata": grounding},
                            )

                        if usage:
                            yield StreamChunk(usage=usage)
