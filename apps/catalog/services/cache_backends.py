"""Cache backends. Values are JSON-compatible; every get returns a fresh copy.

InMemoryCache: single process, injectable clock (tests).
SqlCache: catalog_cache table, same shape as the old answer cache (key, payload_json, expires_at).
"""

import fnmatch
import json
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.catalog.db import get_db
from apps.catalog.errors import CacheUnavailableError
from apps.catalog.models.cache_entry import CacheEntry


class Cache(Protocol):
    """
    Key/value contract the catalog relies on. Patterns are globs with '*'.
    Backends report an unreachable or failing store as CacheUnavailableError.
    """

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys_matching(self, pattern: str) -> list[str]: ...


class InMemoryCache:
    """Dict-backed cache with TTL. clock returns seconds (time.monotonic by default)."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return payload

    async def get(self, key: str) -> Any | None:
        payload = self._live(key)
        return json.loads(payload) if payload is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        self._entries[key] = (json.dumps(value, ensure_ascii=False), expires_at)

    async def delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self._entries.pop(k, None) is not None)

    async def keys_matching(self, pattern: str) -> list[str]:
        return sorted(k for k in list(self._entries) if fnmatch.fnmatchcase(k, pattern) and self._live(k) is not None)

    def __len__(self) -> int:
        return len(self._entries)


def glob_to_like(pattern: str) -> str:
    """'model-list:t1:*' -> 'model-list:t1:%' with LIKE metacharacters escaped."""
    escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")


class SqlCache:
    """Table-backed cache. Expired rows are invisible to get/keys_matching until purge_expired() removes them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @asynccontextmanager
    async def _store(self) -> AsyncIterator[AsyncSession]:
        try:
            async with get_db(self._session_factory) as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise CacheUnavailableError(f"cache table unavailable: {exc}") from exc

    def _unexpired(self, now: datetime):
        return or_(CacheEntry.expires_at.is_(None), CacheEntry.expires_at > now)

    async def get(self, key: str) -> Any | None:
        stmt = select(CacheEntry.payload_json).where(CacheEntry.cache_key == key, self._unexpired(self._clock()))
        async with self._store() as session:
            payload = (await session.scalars(stmt)).first()
        return json.loads(payload) if payload is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Insert or replace cache entry."""
        payload_json = json.dumps(value, ensure_ascii=False)
        expires_at = None
        if ttl_seconds and ttl_seconds > 0:
            expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        async with self._store() as session:
            row = (await session.scalars(select(CacheEntry).where(CacheEntry.cache_key == key))).first()
            if row:
                row.payload_json = payload_json
                row.expires_at = expires_at
            else:
                session.add(CacheEntry(cache_key=key, payload_json=payload_json, expires_at=expires_at))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        async with self._store() as session:
            result = await session.execute(delete(CacheEntry).where(CacheEntry.cache_key.in_(list(keys))))
            return result.rowcount or 0

    async def keys_matching(self, pattern: str) -> list[str]:
        now = self._clock()
        stmt = (
            select(CacheEntry.cache_key)
            .where(CacheEntry.cache_key.like(glob_to_like(pattern), escape="\\"), self._unexpired(now))
            .order_by(CacheEntry.cache_key)
        )
        async with self._store() as session:
            return list((await session.scalars(stmt)).all())

    async def purge_expired(self) -> int:
        """Delete expired rows. Returns number removed."""
        now = self._clock()
        async with self._store() as session:
            result = await session.execute(
                delete(CacheEntry).where(CacheEntry.expires_at.is_not(None), CacheEntry.expires_at <= now)
            )
            return result.rowcount or 0
