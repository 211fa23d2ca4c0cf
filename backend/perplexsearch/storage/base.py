"""
Abstract user-data store.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import ValidationError

from perplexsearch.errors import ConfigurationError
from perplexsearch.models.user_data import UserData
from perplexsearch.utils.encryption import decrypt_credentials, encrypt_credentials


class UserDataStore(ABC):
    """
    Persistence contract for one user's conversations, folders and settings.

    Stores are eventually consistent and best-effort from the core's point
    of view; callers decide whether a failure matters.
    """

    name: str = "store"

    def __init__(self, encryption_secret: Optional[str] = None):
        self.encryption_secret = encryption_secret

    @abstractmethod
    async def get(self, user_id: str) -> Optional[UserData]:
        """Return the stored snapshot, or None if nothing is stored."""

    @abstractmethod
    async def put(self, user_id: str, data: UserData) -> None:
        """Replace the stored snapshot."""

    async def close(self) -> None:
        """Release resources held by the store."""

    # ── Serialization ─────────────────────────────────────────────

    def to_document(self, data: UserData) -> Dict[str, Any]:
        """Serialize a snapshot, encrypting credential fields."""
        document = data.model_dump(mode="json")
        document["settings"] = encrypt_credentials(document["settings"], self.encryption_secret)
        return document

    def from_document(self, document: Dict[str, Any]) -> UserData:
        """
        Inverse of to_document.

        Raises:
            ConfigurationError: If the stored document does not validate
                (including an unknown model id in the settings).
        """
        document = dict(document)
        if document.get("settings"):
            document["settings"] = decrypt_credentials(
                document["settings"], self.encryption_secret
            )
        try:
            return UserData.model_validate(document)
        except ValidationError as e:
            raise ConfigurationError(f"Stored user data in {self.name} is invalid: {e}") from e
