"""Read side of the catalog: cache-aside list/detail/version queries.

Miss path: query builder -> repository -> tag facets (concurrently) -> mapper -> URL
enrichment -> cache write. Hits return the cached payload as stored, URLs included.
"""

import asyncio
import logging

from pydantic import ValidationError

from apps.catalog.config import CatalogConfig, config as default_config
from apps.catalog.errors import ForbiddenError, InvalidInputError, NotFoundError
from apps.catalog.repositories.model_repository import ModelRepository
from apps.catalog.schemas.models import (
    MAX_PAGE_SIZE,
    Model,
    ModelListQuery,
    ModelListResponse,
    ModelStatistics,
    VersionPage,
)
from apps.catalog.schemas.tags import TagSummary
from apps.catalog.services import model_mapper
from apps.catalog.services.cache import (
    CatalogCache,
    model_key,
    model_list_key,
    model_versions_key,
    tag_list_key,
)
from apps.catalog.services.download_urls import PresignedUrlCache, files_of_models, files_of_versions
from apps.catalog.services.query_builder import ModelQueryBuilder
from apps.catalog.services.tenant_guard import require_id, require_tenant_id
from apps.catalog.utils.timing import measure

logger = logging.getLogger(__name__)


class ModelQueryService:
    def __init__(
        self,
        repository: ModelRepository,
        cache: CatalogCache,
        urls: PresignedUrlCache,
        settings: CatalogConfig | None = None,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.urls = urls
        self.settings = settings or default_config

    async def _missing(self, tenant_id: str, model_id: str, exc: NotFoundError | None = None) -> NotFoundError:
        """NotFoundError for callers; ForbiddenError (same shape) when the id belongs to another tenant."""
        if await self.repository.model_exists_outside_tenant(tenant_id, model_id):
            logger.warning("cross-tenant model access: tenant=%s model=%s", tenant_id, model_id)
            return ForbiddenError("model", model_id)
        return exc or NotFoundError("model", model_id)

    async def _cached(self, key: str, schema):
        cached = await self.cache.get(key)
        if cached is None:
            return None
        try:
            return schema.model_validate(cached)
        except ValidationError as exc:
            logger.warning("discarding malformed cache entry %s: %s", key, exc)
            await self.cache.delete(key)
            return None

    async def list_models(self, query: ModelListQuery | dict | None, tenant_id: str | None) -> ModelListResponse:
        tenant_id = require_tenant_id(tenant_id)
        if not isinstance(query, ModelListQuery):
            query = ModelListQuery.model_validate(query or {})
        key = model_list_key(tenant_id, query)
        hit = await self._cached(key, ModelListResponse)
        if hit is not None:
            return hit

        with measure("list_models", tenant_id=tenant_id):
            spec = ModelQueryBuilder.from_query(query, tenant_id).build()
            rows = await self.repository.find_models_with_joins(tenant_id, spec, query.limit, query.offset)
            total = model_mapper.extract_total(rows)
            if total is None:
                total = await self.repository.count_models(tenant_id, spec) if query.offset else 0
            model_tags, version_tags = await asyncio.gather(
                self.repository.find_model_tags(tenant_id, model_mapper.model_ids(rows)),
                self.repository.find_version_tags(tenant_id, model_mapper.version_ids(rows)),
            )
            models = model_mapper.transform_to_models(rows, model_tags, version_tags)
            enrichment = await self.urls.enrich(files_of_models(models))

        response = ModelListResponse(
            models=models,
            pagination=model_mapper.build_pagination(total, query.page, query.limit),
        )
        ttl = self.urls.payload_ttl(self.settings.cache_ttl_model_list, enrichment)
        await self.cache.set(key, response.model_dump(mode="json"), ttl)
        return response

    async def get_model(self, model_id: str, tenant_id: str | None) -> Model:
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        key = model_key(model_id, tenant_id)
        hit = await self._cached(key, Model)
        if hit is not None:
            return hit

        rows = await self.repository.find_model_by_id(tenant_id, model_id)
        if not rows:
            raise await self._missing(tenant_id, model_id)
        model_tags, version_tags = await asyncio.gather(
            self.repository.find_model_tags(tenant_id, [model_id]),
            self.repository.find_version_tags(tenant_id, model_mapper.version_ids(rows)),
        )
        model = model_mapper.transform_to_model(rows, model_tags, version_tags)
        enrichment = await self.urls.enrich(files_of_models([model]))
        ttl = self.urls.payload_ttl(self.settings.cache_ttl_model_metadata, enrichment)
        await self.cache.set(key, model.model_dump(mode="json"), ttl)
        return model

    async def get_model_versions_paginated(
        self,
        model_id: str,
        tenant_id: str | None,
        offset: int = 0,
        limit: int = 10,
    ) -> VersionPage:
        """Full version history, newest first, not subject to the five-version cap."""
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        if offset < 0:
            raise InvalidInputError("offset must be >= 0")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        key = model_versions_key(model_id, tenant_id, offset, limit)
        hit = await self._cached(key, VersionPage)
        if hit is not None:
            return hit

        try:
            rows, total = await self.repository.find_versions_paginated(tenant_id, model_id, limit, offset)
        except NotFoundError as exc:
            raise await self._missing(tenant_id, model_id, exc) from exc
        model_tags, version_tags = await asyncio.gather(
            self.repository.find_model_tags(tenant_id, [model_id]),
            self.repository.find_version_tags(tenant_id, model_mapper.version_ids(rows)),
        )
        versions = model_mapper.transform_to_versions(rows, version_tags, model_tags)
        enrichment = await self.urls.enrich(files_of_versions(versions))
        page = VersionPage(versions=versions, has_more=offset + limit < total, total=total)
        ttl = self.urls.payload_ttl(self.settings.cache_ttl_model_versions, enrichment)
        await self.cache.set(key, page.model_dump(mode="json"), ttl)
        return page

    async def get_model_statistics(self, model_id: str, tenant_id: str | None) -> ModelStatistics:
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        try:
            stats = await self.repository.get_model_statistics(tenant_id, model_id)
        except NotFoundError as exc:
            raise await self._missing(tenant_id, model_id, exc) from exc
        return ModelStatistics.model_validate(stats)

    async def list_tags(self, tenant_id: str | None) -> list[TagSummary]:
        """Tenant tags by usage. Cached under tags:<tenant>, dropped on every tag-affecting write."""
        tenant_id = require_tenant_id(tenant_id)
        key = tag_list_key(tenant_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return [TagSummary.model_validate(t) for t in cached]
        tags = [
            TagSummary(id=t.id, name=t.name, color=t.color, description=t.description, usage_count=t.usage_count)
            for t in await self.repository.list_tags(tenant_id)
        ]
        await self.cache.set(key, [t.model_dump(mode="json") for t in tags], self.settings.cache_ttl_default)
        return tags
