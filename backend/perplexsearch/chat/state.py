"""
Application state container.

Holds the conversation collection (most recently active first), folders
and user settings. The orchestrator and the HTTP routers mutate it
through these methods only; every mutation fires the change listeners so
persistence can schedule a write.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from perplexsearch.errors import ConversationNotFoundError, FolderNotFoundError
from perplexsearch.models.conversation import Conversation, Folder
from perplexsearch.models.settings import AppSettings
from perplexsearch.models.user_data import UserData

logger = logging.getLogger(__name__)

ChangeListener = Callable[["AppState"], None]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class AppState:
    """In-memory user data with a small mutation API."""

    def __init__(self, data: Optional[UserData] = None):
        data = data or UserData()
        self.conversations: List[Conversation] = list(data.conversations)
        self.folders: List[Folder] = list(data.folders)
        self.settings: AppSettings = data.settings
        self._listeners: List[ChangeListener] = []

    # ============================================================
    # Change notification
    # ============================================================

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def notify(self) -> None:
        """Tell listeners the state changed."""
        for listener in self._listeners:
            listener(self)

    # ============================================================
    # Conversations
    # ============================================================

    def get_conversation(self, conversation_id: str) -> Conversation:
        for convo in self.conversations:
            if convo.id == conversation_id:
                return convo
        raise ConversationNotFoundError(f"Conversation {conversation_id} not found")

    def find_conversation(self, conversation_id: str) -> Optional[Conversation]:
        try:
            return self.get_conversation(conversation_id)
        except ConversationNotFoundError:
            return None

    def add_conversation(self, conversation: Conversation) -> None:
        """Insert a conversation at the front of the collection."""
        self.conversations = [c for c in self.conversations if c.id != conversation.id]
        self.conversations.insert(0, conversation)
        self.notify()

    def move_to_front(self, conversation_id: str) -> Conversation:
        """
        Relocate a conversation to the front of the ordering.

        The conversation appears exactly once afterwards.
        """
        convo = self.get_conversation(conversation_id)
        self.conversations = [convo] + [c for c in self.conversations if c.id != conversation_id]
        self.notify()
        return convo

    def rename_conversation(self, conversation_id: str, title: str) -> Conversation:
        convo = self.get_conversation(conversation_id)
        convo.title = title
        convo.updated_at = now_ms()
        self.notify()
        return convo

    def delete_conversation(self, conversation_id: str) -> None:
        self.get_conversation(conversation_id)
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        logger.info(f"Deleted conversation {conversation_id}")
        self.notify()

    def clear_history(self) -> None:
        """Remove every conversation and folder. Settings are kept."""
        count = len(self.conversations)
        self.conversations = []
        self.folders = []
        logger.info(f"Cleared history ({count} conversations)")
        self.notify()

    # ============================================================
    # Folders
    # ============================================================

    def get_folder(self, folder_id: str) -> Folder:
        for folder in self.folders:
            if folder.id == folder_id:
                return folder
        raise FolderNotFoundError(f"Folder {folder_id} not found")

    def create_folder(self, name: str) -> Folder:
        folder = Folder(id=uuid.uuid4().hex, name=name.strip() or "New Folder", created_at=now_ms())
        self.folders.append(folder)
        self.notify()
        return folder

    def delete_folder(self, folder_id: str) -> int:
        """
        Delete a folder without deleting its conversations.

        Returns:
            Number of conversations whose folder reference was cleared
        """
        self.get_folder(folder_id)
        self.folders = [f for f in self.folders if f.id != folder_id]
        cleared = 0
        for convo in self.conversations:
            if convo.folder_id == folder_id:
                convo.folder_id = None
                cleared += 1
        logger.info(f"Deleted folder {folder_id}, unfiled {cleared} conversations")
        self.notify()
        return cleared

    def move_to_folder(self, conversation_id: str, folder_id: Optional[str]) -> Conversation:
        """File a conversation under ``folder_id`` (None removes it from any folder)."""
        convo = self.get_conversation(conversation_id)
        if folder_id is not None:
            self.get_folder(folder_id)
        convo.folder_id = folder_id
        self.notify()
        return convo

    # ============================================================
    # Settings
    # ============================================================

    def update_settings(self, updates: Dict[str, Any]) -> AppSettings:
        """
        Apply a partial settings update.

        The merged settings are re-validated as a whole, so an unknown
        model id raises ConfigurationError and leaves the current
        settings untouched.
        """
        merged = self.settings.model_dump()
        merged.update(updates)
        self.settings = AppSettings(**merged)
        self.notify()
        return self.settings

    # ============================================================
    # Snapshots
    # ============================================================

    def snapshot(self) -> UserData:
        """Deep copy of the current state for persistence."""
        return UserData(
            conversations=[c.model_copy(deep=True) for c in self.conversations],
            folders=[f.model_copy(deep=True) for f in self.folders],
            settings=self.settings.model_copy(deep=True),
        )
