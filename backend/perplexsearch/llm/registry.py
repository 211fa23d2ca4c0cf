"""
Model registry.

A closed lookup table from model id to provider and per-model behaviour.
This is the only place that maps a string id onto a provider; anything
not listed here is a configuration error, never a silent default.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from perplexsearch.errors import ConfigurationError


class Provider(str, Enum):
    PERPLEXITY = "perplexity"
    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class GeminiVariant(str, Enum):
    """Which of the three Gemini entry points a model uses."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class GeminiTool(str, Enum):
    """Optional per-model tool configuration for Gemini text models."""
    NONE = "none"
    WEB_SEARCH = "web_search"
    THINKING = "thinking"
    MAPS = "maps"


THINKING_BUDGET = 2048


@dataclass(frozen=True)
class ModelConfig:
    """Static description of one selectable model."""
    id: str
    name: str
    description: str
    provider: Provider
    gemini_variant: GeminiVariant = GeminiVariant.TEXT
    gemini_tool: GeminiTool = GeminiTool.NONE


# ============================================================
# Model Table
# ============================================================
_MODEL_LIST: List[ModelConfig] = [
    # Perplexity
    ModelConfig("sonar", "Sonar", "Perplexity: Fast online search", Provider.PERPLEXITY),
    ModelConfig("sonar-pro", "Sonar Pro", "Perplexity: Deep research & reasoning", Provider.PERPLEXITY),
    ModelConfig("sonar-reasoning", "Sonar Reasoning", "Perplexity: Chain of thought", Provider.PERPLEXITY),
    # Google
    ModelConfig(
        "gemini-3-flash-preview", "Gemini 3 Flash", "Google: Next-gen fast model",
        Provider.GOOGLE, gemini_tool=GeminiTool.WEB_SEARCH,
    ),
    ModelConfig(
        "gemini-3-pro-preview", "Gemini 3 Pro", "Google: Next-gen reasoning",
        Provider.GOOGLE, gemini_tool=GeminiTool.THINKING,
    ),
    ModelConfig(
        "gemini-2.5-pro", "Gemini 2.5 Pro", "Google: Deep reasoning",
        Provider.GOOGLE, gemini_tool=GeminiTool.THINKING,
    ),
    ModelConfig(
        "gemini-2.5-flash", "Gemini 2.5 Flash", "Google: Versatile & Efficient (Maps)",
        Provider.GOOGLE, gemini_tool=GeminiTool.MAPS,
    ),
    ModelConfig(
        "gemini-2.5-flash-image", "Gemini Image", "Google: Image generation & editing",
        Provider.GOOGLE, gemini_variant=GeminiVariant.IMAGE,
    ),
    ModelConfig(
        "veo-3.1-fast-generate-preview", "Veo 3.1 Fast", "Google: Video generation",
        Provider.GOOGLE, gemini_variant=GeminiVariant.VIDEO,
    ),
    # OpenAI
    ModelConfig("gpt-4o", "GPT-4o", "OpenAI: Most advanced standard model", Provider.OPENAI),
    ModelConfig("gpt-4o-mini", "GPT-4o Mini", "OpenAI: Efficient & fast", Provider.OPENAI),
    ModelConfig("o1-mini", "o1 Mini", "OpenAI: Reasoning model", Provider.OPENAI),
    # Anthropic
    ModelConfig(
        "claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet",
        "Anthropic: Best for coding & nuance", Provider.ANTHROPIC,
    ),
    # Local
    ModelConfig("llama3.2", "Llama 3.2 (local)", "Ollama: Runs on this machine", Provider.OLLAMA),
]

MODELS: Dict[str, ModelConfig] = {m.id: m for m in _MODEL_LIST}


def get_model(model_id: str) -> ModelConfig:
    """
    Look up a model by id.

    Raises:
        ConfigurationError: If the id is not in the registry.
    """
    model = MODELS.get(model_id)
    if model is None:
        raise ConfigurationError(
            f"Unknown model '{model_id}'. Choose one of: {', '.join(MODELS)}"
        )
    return model


def find_model(model_id: str) -> Optional[ModelConfig]:
    return MODELS.get(model_id)


def list_models() -> List[ModelConfig]:
    return list(_MODEL_LIST)
