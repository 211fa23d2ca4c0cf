"""
Data models package.
Pydantic models for conversations, messages, folders and settings.
"""

from perplexsearch.models.message import Attachment, Message, Usage
from perplexsearch.models.conversation import Conversation, Folder
from perplexsearch.models.settings import AppSettings
from perplexsearch.models.user_data import UserData

__all__ = [
    "Attachment",
    "Message",
    "Usage",
    "Conversation",
    "Folder",
    "AppSettings",
    "UserData",
]
