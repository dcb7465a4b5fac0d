"""Presigned download URLs, cached below their own validity.

An entry is cached for (expiry - buffer) minutes and re-checked against its recorded
expires_at on every read, so a URL is never handed out with less than `buffer` minutes left.
Payloads that embed URLs (model, list) must not outlive the URLs inside them; payload_ttl()
computes that cap.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from apps.catalog.config import CatalogConfig, config as default_config
from apps.catalog.schemas.models import Model, ModelFile, ModelVersion
from apps.catalog.services.cache import CatalogCache, presigned_url_key
from apps.catalog.services.storage import Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedUrl:
    url: str
    expires_at: float  # epoch seconds


@dataclass(frozen=True)
class Enrichment:
    """Result of attaching URLs to a payload. earliest_expiry is None when no URL was attached."""

    earliest_expiry: float | None
    failed: int


class PresignedUrlCache:
    def __init__(
        self,
        cache: CatalogCache,
        storage: Storage,
        settings: CatalogConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.cache = cache
        self.storage = storage
        self.settings = settings or default_config
        self._clock = clock or time.time

    @property
    def buffer_seconds(self) -> int:
        return self.settings.presigned_url_buffer_minutes * 60

    async def get_download_url(self, storage_key: str, bucket: str | None = None) -> IssuedUrl | None:
        """Cached URL if it still has more than the buffer left, else a fresh one. None if issuance failed."""
        key = presigned_url_key(storage_key)
        now = self._clock()
        cached = await self.cache.get(key)
        if cached:
            expires_at = float(cached.get("expires_at") or 0)
            if expires_at - self.buffer_seconds > now:
                return IssuedUrl(url=cached["url"], expires_at=expires_at)
            await self.cache.delete(key)
        try:
            url = await self.storage.generate_download_url(
                storage_key, bucket, self.settings.download_url_expiry_minutes
            )
        except Exception as exc:
            logger.warning("download url issuance failed for %s: %s", storage_key, exc)
            return None
        issued = IssuedUrl(url=url, expires_at=now + self.settings.download_url_expiry_minutes * 60)
        await self.cache.set(
            key, {"url": issued.url, "expires_at": issued.expires_at}, self.settings.presigned_url_cache_ttl
        )
        return issued

    async def enrich(self, files: Iterable[ModelFile]) -> Enrichment:
        """Set download_url on every file. Files sharing a storage key share one lookup."""
        files = list(files)
        unique = list(dict.fromkeys((f.storage_key, f.storage_bucket) for f in files))
        issued = await asyncio.gather(*(self.get_download_url(k, b) for k, b in unique))
        by_key = dict(zip(unique, issued))
        failed = 0
        for f in files:
            url = by_key[(f.storage_key, f.storage_bucket)]
            if url is None:
                f.download_url = None
                failed += 1
            else:
                f.download_url = url.url
        expiries = [u.expires_at for u in issued if u is not None]
        return Enrichment(earliest_expiry=min(expiries) if expiries else None, failed=failed)

    def payload_ttl(self, base_ttl: int, enrichment: Enrichment) -> int:
        """TTL for a payload carrying URLs: base_ttl capped by the earliest URL's remaining validity minus buffer.

        0 means do not cache (a URL failed to issue, or none has enough validity left).
        """
        if enrichment.failed:
            return 0
        if enrichment.earliest_expiry is None:
            return base_ttl
        remaining = int(enrichment.earliest_expiry - self._clock()) - self.buffer_seconds
        return max(min(base_ttl, remaining), 0)


def files_of_models(models: Iterable[Model]) -> list[ModelFile]:
    return [f for m in models for v in m.versions for f in v.files]


def files_of_versions(versions: Iterable[ModelVersion]) -> list[ModelFile]:
    return [f for v in versions for f in v.files]
