"""
Chat package.
Turn orchestration, application state and prompt handling.
"""

from perplexsearch.chat.orchestrator import ActiveStream, ChatOrchestrator, StreamState
from perplexsearch.chat.postprocess import extract_suggestions
from perplexsearch.chat.prompts import MODE_PROMPTS, build_system_prompt
from perplexsearch.chat.state import AppState
from perplexsearch.chat.titler import AutoTitler

__all__ = [
    "ActiveStream",
    "ChatOrchestrator",
    "StreamState",
    "extract_suggestions",
    "MODE_PROMPTS",
    "build_system_prompt",
    "AppState",
    "AutoTitler",
]
