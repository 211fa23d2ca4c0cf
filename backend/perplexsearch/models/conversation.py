"""
Conversation and folder model definitions.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from perplexsearch.models.message import Message

NEW_CONVERSATION_ID = "new"
DEFAULT_TITLE = "New Chat"


class Folder(BaseModel):
    """A named grouping of conversations. Deleting it never deletes members."""
    id: str
    name: str
    created_at: int


class Conversation(BaseModel):
    """
    A chat session.

    Messages are append-only and chronological; ``folder_id`` is a weak
    reference (the folder may disappear, in which case it is cleared).
    """
    id: str
    title: str = DEFAULT_TITLE
    messages: List[Message] = Field(default_factory=list)
    created_at: int
    updated_at: int
    folder_id: Optional[str] = None

    def find_message(self, timestamp: int) -> Optional[Message]:
        """Return the turn created at ``timestamp``, if still present."""
        for msg in reversed(self.messages):
            if msg.timestamp == timestamp:
                return msg
        return None

    def messages_before(self, timestamp: int) -> List[Message]:
        """Turns created strictly before ``timestamp`` (the "sent so far" cut)."""
        return [m for m in self.messages if m.timestamp < timestamp]

    @property
    def last_timestamp(self) -> int:
        return self.messages[-1].timestamp if self.messages else 0
