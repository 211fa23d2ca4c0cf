"""
Debounced persistence of application state.

Local and cloud copies are written by independent trailing-edge
debouncers: each mutation pushes the deadline back, and the snapshot is
taken when the write actually happens, so a burst of streaming updates
produces one write per store. Write failures are logged and dropped;
they never reach the code that mutated the state.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from perplexsearch.chat.state import AppState
from perplexsearch.errors import ChatError
from perplexsearch.models.settings import CREDENTIAL_FIELDS, AppSettings
from perplexsearch.models.user_data import UserData
from perplexsearch.storage.base import UserDataStore

logger = logging.getLogger(__name__)


class DebouncedWriter:
    """Trailing-edge debouncer around one async write function."""

    def __init__(
        self,
        name: str,
        delay: float,
        source: Callable[[], UserData],
        write: Callable[[UserData], Awaitable[None]],
    ):
        self.name = name
        self.delay = delay
        self._source = source
        self._write = write
        self._deadline = 0.0
        self._dirty = False
        self._writing = False
        self._task: Optional[asyncio.Task] = None
        self.writes = 0
        self.failures = 0

    @property
    def pending(self) -> bool:
        return self._dirty

    def schedule(self) -> None:
        """Mark dirty and (re)start the quiet-period timer."""
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.delay
        self._dirty = True
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._run())

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._dirty:
            remaining = self._deadline - loop.time()
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            self._dirty = False
            await self._write_now()

    async def _write_now(self) -> None:
        self._writing = True
        try:
            await self._write(self._source())
            self.writes += 1
        except Exception as e:
            self.failures += 1
            logger.warning(f"{self.name} save failed: {e}")
        finally:
            self._writing = False

    async def flush(self) -> None:
        """Write immediately if anything is pending."""
        task = self._task
        if task is not None and not task.done():
            self._deadline = asyncio.get_running_loop().time()
            if not self._writing:
                task.cancel()
            await asyncio.wait({task})
        if self._dirty:
            self._dirty = False
            await self._write_now()


class PersistenceManager:
    """
    Loads user data at startup and keeps the stores in sync afterwards.

    Args:
        local: Local store (always written)
        cloud: Optional remote store
        user_id: Key of the snapshot in both stores
        local_delay: Quiet period before a local write (0 coalesces within one loop turn)
        remote_delay: Quiet period before a cloud write
    """

    def __init__(
        self,
        local: UserDataStore,
        cloud: Optional[UserDataStore] = None,
        user_id: str = "local",
        local_delay: float = 0.0,
        remote_delay: float = 2.0,
    ):
        self.local = local
        self.cloud = cloud
        self.user_id = user_id
        self._state: Optional[AppState] = None
        self._local_writer = DebouncedWriter(
            "Local", local_delay, self._snapshot,
            lambda data: self.local.put(self.user_id, data),
        )
        self._cloud_writer: Optional[DebouncedWriter] = None
        if cloud is not None:
            self._cloud_writer = DebouncedWriter(
                "Cloud", remote_delay, self._snapshot,
                lambda data: cloud.put(self.user_id, data),
            )

    def _snapshot(self) -> UserData:
        return self._state.snapshot() if self._state else UserData()

    @staticmethod
    def merge(local: Optional[UserData], cloud: Optional[UserData]) -> UserData:
        """
        Combine the local and cloud snapshots.

        Cloud conversations and folders replace the local ones when the
        cloud has any. Settings come from the cloud, except that a
        non-empty local credential always wins.
        """
        if cloud is None:
            return local or UserData()
        if local is None:
            return cloud

        settings = cloud.settings.model_dump()
        for field in CREDENTIAL_FIELDS.values():
            local_value = getattr(local.settings, field)
            if local_value:
                settings[field] = local_value

        return UserData(
            conversations=cloud.conversations or local.conversations,
            folders=cloud.folders or local.folders,
            settings=AppSettings(**settings),
        )

    async def load(self) -> UserData:
        """
        Read local data, then overlay the cloud copy if reachable.

        Raises:
            ConfigurationError: If the local data is invalid (for example
                its model id is not in the registry).
        """
        local = await self.local.get(self.user_id)
        cloud = None
        if self.cloud is not None:
            try:
                cloud = await self.cloud.get(self.user_id)
            except (httpx.HTTPError, ChatError, ValueError) as e:
                logger.warning(f"Cloud load failed, using local data only: {e}")

        data = self.merge(local, cloud)
        logger.info(
            f"Loaded {len(data.conversations)} conversations and "
            f"{len(data.folders)} folders for {self.user_id}"
        )
        return data

    def attach(self, state: AppState) -> None:
        """Start persisting every mutation of ``state``."""
        self._state = state
        state.add_listener(self.notify_changed)

    def notify_changed(self, state: AppState) -> None:
        self._local_writer.schedule()
        if self._cloud_writer is not None:
            self._cloud_writer.schedule()

    async def flush(self) -> None:
        await self._local_writer.flush()
        if self._cloud_writer is not None:
            await self._cloud_writer.flush()

    async def close(self) -> None:
        """Flush pending writes and close the stores."""
        await self.flush()
        await self.local.close()
        if self.cloud is not None:
            await self.cloud.close()
