"""Catalog cache keys and the degrading cache wrapper.

Keys (before the configured prefix):
  model-list:<tenant>:<hash of {tenant, filter}>
  model:<model id>:org:<tenant>
  model-versions:<model id>:<tenant>:<offset>:<limit>
  tags:<tenant>
  presigned-url:<storage key>

Reads and writes never fail the caller: backend errors are logged and treated as a miss.
Invalidation is the exception; it is retried and then raised, because a silent failure there
means stale reads.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from apps.catalog.config import CatalogConfig, config as default_config
from apps.catalog.errors import CacheUnavailableError, InvalidationFailureError
from apps.catalog.schemas.models import ModelListQuery
from apps.catalog.services.cache_backends import Cache
from apps.catalog.services.tenant_guard import require_tenant_id
from apps.catalog.utils.hashing import stable_hash

logger = logging.getLogger(__name__)


def model_list_key(tenant_id: str | None, query: ModelListQuery) -> str:
    """Same tenant + filter -> same key, whatever order the filter fields arrived in."""
    tenant_id = require_tenant_id(tenant_id)
    digest = stable_hash({"tenant_id": tenant_id, **query.model_dump(mode="json")})
    return f"model-list:{tenant_id}:{digest}"


def model_list_pattern(tenant_id: str | None) -> str:
    return f"model-list:{require_tenant_id(tenant_id)}:*"


def model_key(model_id: str, tenant_id: str | None) -> str:
    return f"model:{model_id}:org:{require_tenant_id(tenant_id)}"


def model_versions_key(model_id: str, tenant_id: str | None, offset: int, limit: int) -> str:
    return f"model-versions:{model_id}:{require_tenant_id(tenant_id)}:{offset}:{limit}"


def model_versions_pattern(model_id: str, tenant_id: str | None) -> str:
    return f"model-versions:{model_id}:{require_tenant_id(tenant_id)}:*"


def tag_list_key(tenant_id: str | None) -> str:
    return f"tags:{require_tenant_id(tenant_id)}"


def presigned_url_key(storage_key: str) -> str:
    return f"presigned-url:{storage_key}"


class CatalogCache:
    """Prefixes keys, swallows read/write failures with a warning, retries invalidation."""

    def __init__(
        self,
        backend: Cache,
        settings: CatalogConfig | None = None,
        retry_delay: float = 0.05,
    ) -> None:
        self.backend = backend
        self.settings = settings or default_config
        self.retry_delay = retry_delay

    def _k(self, key: str) -> str:
        return f"{self.settings.cache_key_prefix}{key}"

    async def get(self, key: str) -> Any | None:
        try:
            return await self.backend.get(self._k(key))
        except CacheUnavailableError as exc:
            logger.warning("cache get failed for %s, treating as miss: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Write-through helper. Returns False (and logs) when the backend rejected the write."""
        if ttl_seconds <= 0:
            return False
        try:
            await self.backend.set(self._k(key), value, ttl_seconds)
            return True
        except CacheUnavailableError as exc:
            logger.warning("cache set failed for %s: %s", key, exc)
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self.backend.delete(self._k(key))
            return True
        except CacheUnavailableError as exc:
            logger.warning("cache delete failed for %s: %s", key, exc)
            return False

    async def _invalidate_once(self, keys: Sequence[str], patterns: Sequence[str]) -> None:
        full = [self._k(k) for k in keys]
        for pattern in patterns:
            full.extend(await self.backend.keys_matching(self._k(pattern)))
        if full:
            await self.backend.delete(*dict.fromkeys(full))

    async def invalidate(self, keys: Sequence[str] = (), patterns: Sequence[str] = ()) -> None:
        """
        Delete keys and everything matching patterns. Retries settings.invalidation_retries times;
        raises InvalidationFailureError when every attempt failed.
        """
        attempts = max(self.settings.invalidation_retries, 0) + 1
        last_exc: CacheUnavailableError | None = None
        for attempt in range(1, attempts + 1):
            try:
                await self._invalidate_once(keys, patterns)
                return
            except CacheUnavailableError as exc:
                last_exc = exc
                logger.warning("cache invalidation attempt %d/%d failed: %s", attempt, attempts, exc)
                if attempt < attempts and self.retry_delay:
                    await asyncio.sleep(self.retry_delay * attempt)
        raise InvalidationFailureError([*keys, *patterns], last_exc)

    async def invalidate_model(self, tenant_id: str, model_id: str) -> None:
        """Everything that can hold stale data for model_id: its key, its version pages, all tenant lists, tag list."""
        await self.invalidate(
            keys=[model_key(model_id, tenant_id), tag_list_key(tenant_id)],
            patterns=[model_list_pattern(tenant_id), model_versions_pattern(model_id, tenant_id)],
        )

    async def invalidate_models(self, tenant_id: str, model_ids: Sequence[str]) -> None:
        keys = [tag_list_key(tenant_id)] + [model_key(mid, tenant_id) for mid in model_ids]
        patterns = [model_list_pattern(tenant_id)] + [model_versions_pattern(mid, tenant_id) for mid in model_ids]
        await self.invalidate(keys=keys, patterns=patterns)
