"""TTL cache of API payloads on top of the durable key-value store."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from ridesync.errors import StorageError
from ridesync.storage import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class CacheEntry(BaseModel):
    payload: Any = None
    stored_at: float

    def expired(self, ttl: float, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current - self.stored_at > ttl


class TTLCache:
    """Best-effort cache with lazy, read-time expiry.

    Store failures are logged and never reach the caller: `write` and the
    invalidation helpers return normally, `read` returns None.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        prefix: str = 'ridesync_cache:',
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl = max(ttl_seconds, 0.0)
        self._prefix = prefix
        self._clock = clock

    @property
    def ttl(self) -> float:
        return self._ttl

    def _storage_key(self, key: str) -> str:
        return f'{self._prefix}{key}'

    async def write(self, key: str, payload: Any) -> None:
        entry = CacheEntry(payload=payload, stored_at=self._clock())
        try:
            raw = entry.model_dump_json()
        except (TypeError, ValueError) as exc:
            logger.error('Cannot serialize cache entry %r: %s', key, exc)
            return
        try:
            await self._store.set(self._storage_key(key), raw)
        except StorageError as exc:
            logger.error('Error setting cache %r: %s', key, exc)

    async def read(self, key: str) -> Any | None:
        storage_key = self._storage_key(key)
        try:
            raw = await self._store.get(storage_key)
        except StorageError as exc:
            logger.error('Error getting cache %r: %s', key, exc)
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning('Discarding unreadable cache entry %r: %s', key, exc)
            return None

        if entry.expired(self._ttl, self._clock()):
            await self._remove(storage_key)
            return None
        return entry.payload

    async def invalidate(self, key: str) -> None:
        await self._remove(self._storage_key(key))

    async def invalidate_all(self) -> None:
        try:
            keys = await self._store.keys()
        except StorageError as exc:
            logger.error('Error listing cache keys: %s', exc)
            return
        for storage_key in keys:
            if storage_key.startswith(self._prefix):
                await self._remove(storage_key)

    async def _remove(self, storage_key: str) -> None:
        try:
            await self._store.remove(storage_key)
        except StorageError as exc:
            logger.error('Error clearing cache %r: %s', storage_key, exc)
