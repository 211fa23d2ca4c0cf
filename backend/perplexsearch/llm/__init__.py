"""
LLM providers package.
Unified streaming interface over multiple LLM backends.
"""

from perplexsearch.llm.base import CancellationToken, LLMProvider, LLMResponse, StreamChunk
from perplexsearch.llm.factory import (
    CompletionDispatcher,
    CompletionRequest,
    create_provider,
    get_available_providers,
)
from perplexsearch.llm.registry import MODELS, ModelConfig, Provider, get_model

__all__ = [
    "CancellationToken",
    "LLMProvider",
    "LLMResponse",
    "StreamChunk",
    "CompletionDispatcher",
    "CompletionRequest",
    "create_provider",
    "get_available_providers",
    "MODELS",
    "ModelConfig",
    "Provider",
    "get_model",
]
