"""
Shared FastAPI dependencies.
The application state and orchestrator are created in the lifespan and
stored on ``app.state``.
"""

from fastapi import Request

from perplexsearch.chat.orchestrator import ChatOrchestrator
from perplexsearch.chat.state import AppState


def get_app_state(request: Request) -> AppState:
    return request.app.state.chat_state


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator
