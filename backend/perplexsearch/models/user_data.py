"""
Snapshot of everything persisted for one user.
"""

from typing import List
from pydantic import BaseModel, Field

from perplexsearch.models.conversation import Conversation, Folder
from perplexsearch.models.settings import AppSettings


class UserData(BaseModel):
    """Read-only snapshot handed to the persistence layer."""
    conversations: List[Conversation] = Field(default_factory=list)
    folders: List[Folder] = Field(default_factory=list)
    settings: AppSettings = Field(default_factory=AppSettings)
