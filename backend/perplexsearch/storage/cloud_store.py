"""
Cloud store over the Firebase Realtime Database REST API.

    GET  {url}/users/{uid}.json[?auth=token]   -> snapshot or null
    PUT  {url}/users/{uid}.json[?auth=token]   <- snapshot
"""

import logging
from typing import Dict, Optional

import httpx

from perplexsearch.models.user_data import UserData
from perplexsearch.storage.base import UserDataStore

logger = logging.getLogger(__name__)


class CloudStore(UserDataStore):
    """Remote copy of user data. Raises httpx errors; callers treat them as best-effort."""

    name = "cloud store"

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        encryption_secret: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(encryption_secret)
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.transport = transport

    def _url(self, user_id: str) -> str:
        return f"{self.base_url}/users/{user_id}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def get(self, user_id: str) -> Optional[UserData]:
        async with self._client() as client:
            response = await client.get(self._url(user_id), params=self._params())
            response.raise_for_status()
            document = response.json()
        if not document:
            return None
        return self.from_document(document)

    async def put(self, user_id: str, data: UserData) -> None:
        async with self._client() as client:
            response = await client.put(
                self._url(user_id), params=self._params(), json=self.to_document(data)
            )
            response.raise_for_status()
        logger.debug(f"Synced {len(data.conversations)} conversations to cloud for {user_id}")
