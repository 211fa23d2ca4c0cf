"""
PerplexSearch: a multi-provider streaming chat service.

The core normalizes Perplexity, OpenAI, Anthropic, Gemini and local
Ollama streams into one chunk protocol consumed by a conversation
orchestrator; a thin FastAPI layer exposes it to a browser front-end.
"""

__version__ = "1.0.0"
