# =============================================================================
#  Mediacord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import asyncio
import logging
from typing import Dict, Optional, Protocol

from common.stores import DestinationCache

logger = logging.getLogger("mediabot")


class RemoteStoreError(Exception):
    """Any failure reported by a remote media store."""


class ContainerNotFound(RemoteStoreError):
    """The folder/album id an operation targeted is not recognised remotely."""

    def __init__(self, container_id: str, detail: str = ""):
        self.container_id = container_id
        msg = f"container {container_id!r} not found"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class SearchUnsupported(RemoteStoreError):
    """The store refuses to list containers (e.g. a narrow OAuth scope)."""


class RemoteStore(Protocol):
    name: str

    async def find_by_name(self, name: str) -> Optional[str]: ...

    async def create(self, name: str) -> str: ...

    async def upload(
        self, data: bytes, filename: str, container_id: str, mime_type: str
    ) -> str: ...

    async def test_connection(self) -> bool: ...

    async def close(self) -> None: ...


class DestinationResolver:
    """
    Maps a destination name to a remote container id, caching the answer.

    resolve() consults the cache unless force_fresh, then searches the store,
    then creates a new container. Callers for the same name are serialized
    on a per-name lock.
    """

    def __init__(self, store: RemoteStore, cache: DestinationCache):
        self.store = store
        self.cache = cache
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def resolve(self, name: str, force_fresh: bool = False) -> str:
        async with self._lock_for(name):
            return await self._resolve(name, force_fresh)

    async def _resolve(self, name: str, force_fresh: bool) -> str:
        if not force_fresh:
            cached = self.cache.get(name)
            if cached:
                logger.debug("Using cached container id for %s", name)
                return cached

        found: Optional[str] = None
        try:
            logger.info("[🔎] Searching %s for existing container %r", self.store.name, name)
            found = await self.store.find_by_name(name)
        except RemoteStoreError as e:
            logger.warning(
                "[⚠️] Could not search %s containers (%s), creating a new one",
                self.store.name,
                e,
            )

        if found:
            logger.info("[📁] Found existing container %r with id %s", name, found)
            self.cache.set(name, found)
            return found

        created = await self.store.create(name)
        logger.info("[📁] Created container %r with id %s", name, created)
        self.cache.set(name, created)
        return created

    async def refresh(self, name: str, stale_id: str) -> str:
        """
        Drop a container id that failed remotely and resolve again.

        If another task already replaced `stale_id` in the cache the newer
        id is returned without another remote round-trip.
        """
        async with self._lock_for(name):
            current = self.cache.get(name)
            if current and current != stale_id:
                return current
            logger.warning(
                "[♻️] Container %s for %r is stale, re-resolving", stale_id, name
            )
            self.cache.invalidate(name)
            return await self._resolve(name, force_fresh=True)
