"""
API routers package.
Each router handles a specific domain of endpoints.
"""

from perplexsearch.routers import conversations, folders, messages, settings

__all__ = [
    "conversations",
    "folders",
    "messages",
    "settings",
]
