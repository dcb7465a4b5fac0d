"""Tag administration: explicit create/delete and per-model attach/detach.

Tags are otherwise created lazily by model writes. usage_count moves in the same
transaction as the model_tags change (see ModelRepository._adjust_usage).
"""

import logging

from apps.catalog.repositories.model_repository import ModelRepository
from apps.catalog.schemas.tags import TagSummary
from apps.catalog.services.cache import CatalogCache
from apps.catalog.services.model_mutations import invalidate_after_write
from apps.catalog.services.tenant_guard import require_id, require_tenant_id

logger = logging.getLogger(__name__)


class TagService:
    def __init__(self, repository: ModelRepository, cache: CatalogCache) -> None:
        self.repository = repository
        self.cache = cache

    async def create_tag(
        self,
        tenant_id: str | None,
        name: str,
        color: str | None = None,
        description: str | None = None,
    ) -> TagSummary:
        tenant_id = require_tenant_id(tenant_id)
        tag = await self.repository.create_tag(tenant_id, name, color=color, description=description)
        await invalidate_after_write(self.cache, tenant_id, [])
        return TagSummary(
            id=tag.id, name=tag.name, color=tag.color, description=tag.description, usage_count=tag.usage_count
        )

    async def delete_tag(self, tenant_id: str | None, tag_id: str) -> list[str]:
        """Delete a tag everywhere. Returns affected model ids; their cache entries are invalidated."""
        tenant_id = require_tenant_id(tenant_id)
        model_ids = await self.repository.delete_tag(tenant_id, tag_id)
        logger.info("deleted tag %s for tenant %s (%d models affected)", tag_id, tenant_id, len(model_ids))
        await invalidate_after_write(self.cache, tenant_id, model_ids)
        return model_ids

    async def attach(self, model_id: str, tenant_id: str | None, names: list[str]) -> int:
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        added = await self.repository.attach_model_tags(tenant_id, model_id, names)
        if added:
            await invalidate_after_write(self.cache, tenant_id, [model_id])
        return added

    async def detach(self, model_id: str, tenant_id: str | None, names: list[str]) -> int:
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        removed = await self.repository.detach_model_tags(tenant_id, model_id, names)
        if removed:
            await invalidate_after_write(self.cache, tenant_id, [model_id])
        return removed
