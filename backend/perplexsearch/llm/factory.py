"""
LLM Provider factory and completion dispatcher.

The dispatcher is the only place that knows which adapter serves a model;
adapters stay mutually unaware of each other.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncGenerator, Dict, List, Optional, Sequence

import httpx

from perplexsearch.config import Settings, get_settings
from perplexsearch.errors import MissingCredentialError
from perplexsearch.llm.anthropic_provider import AnthropicProvider
from perplexsearch.llm.base import CancellationToken, LLMProvider, StreamChunk
from perplexsearch.llm.gemini_provider import GeminiProvider
from perplexsearch.llm.ollama_provider import OllamaProvider
from perplexsearch.llm.openai_provider import OpenAIProvider
from perplexsearch.llm.perplexity_provider import PerplexityProvider
from perplexsearch.llm.registry import ModelConfig, Provider, get_model
from perplexsearch.models.message import Message

if TYPE_CHECKING:
    from perplexsearch.models.settings import AppSettings

logger = logging.getLogger(__name__)

# ============================================================
# Provider Registry
# ============================================================
PROVIDERS: Dict[Provider, type] = {
    Provider.PERPLEXITY: PerplexityProvider,
    Provider.GOOGLE: GeminiProvider,
    Provider.OPENAI: OpenAIProvider,
    Provider.ANTHROPIC: AnthropicProvider,
    Provider.OLLAMA: OllamaProvider,
}


def _base_url_for(provider: Provider, config: Settings) -> str:
    return {
        Provider.PERPLEXITY: config.perplexity_base_url,
        Provider.GOOGLE: config.gemini_base_url,
        Provider.OPENAI: config.openai_base_url,
        Provider.ANTHROPIC: config.anthropic_base_url,
        Provider.OLLAMA: config.ollama_base_url,
    }[provider]


def create_provider(
    provider: Provider,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    config: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LLMProvider:
    """
    Create an LLM provider instance.

    Args:
        provider: Which provider to build
        api_key: API key for authentication
        base_url: Override for the configured base URL
        config: Process settings (defaults to get_settings())
        transport: Optional httpx transport shared by the adapter's clients

    Returns:
        LLMProvider instance
    """
    config = config or get_settings()
    provider_class = PROVIDERS[provider]
    kwargs = {}
    if provider is Provider.GOOGLE:
        kwargs["poll_interval"] = config.video_poll_interval
    return provider_class(
        api_key=api_key,
        base_url=base_url or _base_url_for(provider, config),
        timeout=config.request_timeout,
        transport=transport,
        **kwargs,
    )


def get_available_providers() -> List[str]:
    """Get list of all supported provider names."""
    return [p.value for p in PROVIDERS]


@dataclass
class CompletionRequest:
    """A normalized request handed from the orchestrator to the dispatcher."""
    messages: Sequence[Message]
    system_prompt: Optional[str] = None


@dataclass
class Resolution:
    """Outcome of resolving the active settings to one adapter call."""
    model: ModelConfig
    credential: Optional[str]
    base_url: Optional[str] = None


class CompletionDispatcher:
    """
    Resolves the active model to a provider and credential, then invokes
    exactly that provider's adapter.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or get_settings()
        self.transport = transport

    def resolve(self, settings: "AppSettings") -> Resolution:
        """
        Map settings to a model, provider and credential.

        Raises:
            ConfigurationError: If the model id is unknown.
            MissingCredentialError: If the provider's credential is empty.
        """
        model = get_model(settings.model)
        if model.provider is Provider.OLLAMA:
            return Resolution(model=model, credential=None, base_url=settings.ollama_base_url)

        credential = settings.credential_for(model.provider)
        if not credential:
            raise MissingCredentialError(model.provider.value)
        return Resolution(model=model, credential=credential)

    def create(self, resolution: Resolution) -> LLMProvider:
        return create_provider(
            resolution.model.provider,
            api_key=resolution.credential,
            base_url=resolution.base_url,
            config=self.config,
            transport=self.transport,
        )

    async def stream(
        self,
        request: CompletionRequest,
        settings: "AppSettings",
        token: CancellationToken,
        resolution: Optional[Resolution] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """
        Stream one completion through the adapter for the active model.

        Args:
            request: Message history and system prompt
            settings: The user's settings (active model, credentials)
            token: Cancellation signal for this turn
            resolution: Pre-computed resolve() result, if the caller has one
        """
        resolution = resolution or self.resolve(settings)
        provider = self.create(resolution)
        logger.info(
            f"Streaming {resolution.model.id} via {provider.provider_name} "
            f"({len(request.messages)} messages)"
        )
        async for chunk in provider.stream(
            request.messages,
            resolution.model.id,
            token,
            system_prompt=request.system_prompt,
        ):
            yield chunk
