"""
Storage package.
Local SQLite and cloud copies of user data, kept in sync with debounced writes.
"""

from perplexsearch.storage.base import UserDataStore
from perplexsearch.storage.cloud_store import CloudStore
from perplexsearch.storage.local_store import LocalStore
from perplexsearch.storage.sync import DebouncedWriter, PersistenceManager

__all__ = [
    "UserDataStore",
    "CloudStore",
    "LocalStore",
    "DebouncedWriter",
    "PersistenceManager",
]
