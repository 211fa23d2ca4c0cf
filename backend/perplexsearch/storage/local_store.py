"""
SQLite-backed local store.

One row per user holding the whole snapshot as a JSON document:

    user_data(user_id TEXT PRIMARY KEY, data TEXT NOT NULL, updated_at TEXT)
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

from perplexsearch.errors import ConfigurationError
from perplexsearch.models.user_data import UserData
from perplexsearch.storage.base import UserDataStore

logger = logging.getLogger(__name__)


class LocalStore(UserDataStore):
    """Async SQLite store for the local copy of user data."""

    name = "local store"

    def __init__(self, db_path: str, encryption_secret: Optional[str] = None):
        super().__init__(encryption_secret)
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Open the SQLite connection and create the table."""
        if self._conn is not None:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path, timeout=30.0)
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS user_data (
                user_id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                updated_at TEXT
            )
        """)
        await self._conn.commit()
        logger.info(f"SQLite store connected: {self._db_path}")

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite store closed")

    async def _get_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            await self.connect()
        return self._conn

    async def get(self, user_id: str) -> Optional[UserData]:
        conn = await self._get_conn()
        async with conn.execute(
            "SELECT data FROM user_data WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        try:
            document = json.loads(row[0])
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Stored user data is corrupted: {e}") from e
        return self.from_document(document)

    async def put(self, user_id: str, data: UserData) -> None:
        conn = await self._get_conn()
        await conn.execute(
            """
            INSERT INTO user_data (user_id, data, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                data = excluded.data, updated_at = excluded.updated_at
            """,
            (
                user_id,
                json.dumps(self.to_document(data)),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        await conn.commit()
        logger.debug(f"Saved {len(data.conversations)} conversations for {user_id}")
