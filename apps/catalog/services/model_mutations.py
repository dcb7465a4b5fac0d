"""Write side of the catalog. Not cache-aside: write to the store, then invalidate.

After every committed write the model key, the model's version pages, every list key of
the tenant and the tenant's tag list are deleted. A failed invalidation does not undo the
write; it is logged as an alert and reported through MutationResult.cache_invalidated.
Hard deletes purge object-store payloads after the transaction commits.
"""

import logging
from collections.abc import Sequence

from apps.catalog.config import CatalogConfig, config as default_config
from apps.catalog.errors import InvalidationFailureError
from apps.catalog.repositories.model_repository import ModelRepository
from apps.catalog.schemas.mutations import (
    AddVersionInput,
    CreateModelInput,
    MutationResult,
    UpdateModelMetadata,
)
from apps.catalog.services.cache import CatalogCache, presigned_url_key
from apps.catalog.services.storage import Storage
from apps.catalog.services.tenant_guard import require_id, require_tenant_id
from apps.catalog.utils.names import validate_model_name

logger = logging.getLogger(__name__)

INVALIDATION_ALERT = "catalog_cache_invalidation_failed"


async def invalidate_after_write(
    cache: CatalogCache,
    tenant_id: str,
    model_ids: Sequence[str],
    extra_keys: Sequence[str] = (),
) -> bool:
    """Invalidate everything derived from model_ids. Returns False (after an ERROR log) on failure."""
    try:
        await cache.invalidate_models(tenant_id, model_ids)
        if extra_keys:
            await cache.invalidate(keys=extra_keys)
        return True
    except InvalidationFailureError as exc:
        logger.error(
            "ALERT cache invalidation failed after committed write: tenant=%s models=%s: %s",
            tenant_id,
            list(model_ids),
            exc,
            extra={"alert": INVALIDATION_ALERT, "tenant_id": tenant_id, "model_ids": list(model_ids)},
        )
        return False


class ModelMutationService:
    def __init__(
        self,
        repository: ModelRepository,
        cache: CatalogCache,
        storage: Storage,
        settings: CatalogConfig | None = None,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.storage = storage
        self.settings = settings or default_config

    async def _purge_objects(self, keys: list[str]) -> None:
        if not keys:
            return
        failed = await self.storage.delete_objects(keys)
        if failed:
            logger.warning("%d of %d objects were not deleted from storage: %s", len(failed), len(keys), failed)

    async def create_model(self, tenant_id: str | None, data: CreateModelInput) -> MutationResult:
        tenant_id = require_tenant_id(tenant_id)
        data = data.model_copy(update={"name": validate_model_name(data.name)})
        model_id, label = await self.repository.create_model(tenant_id, data)
        invalidated = await invalidate_after_write(self.cache, tenant_id, [model_id])
        return MutationResult(model_id=model_id, version=label, cache_invalidated=invalidated)

    async def add_version(self, model_id: str, tenant_id: str | None, data: AddVersionInput) -> MutationResult:
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        if data.name is not None:
            data = data.model_copy(update={"name": validate_model_name(data.name)})
        label = await self.repository.add_version(tenant_id, model_id, data)
        invalidated = await invalidate_after_write(self.cache, tenant_id, [model_id])
        return MutationResult(model_id=model_id, version=label, cache_invalidated=invalidated)

    async def update_metadata(
        self, model_id: str, tenant_id: str | None, changes: UpdateModelMetadata | dict
    ) -> MutationResult:
        """Partial update of name/description/tags. tags replaces the model's tag set."""
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        if not isinstance(changes, UpdateModelMetadata):
            changes = UpdateModelMetadata.model_validate(changes)
        name = validate_model_name(changes.name) if changes.name is not None else None
        await self.repository.update_model_metadata(
            tenant_id, model_id, name=name, description=changes.description, tags=changes.tags
        )
        invalidated = await invalidate_after_write(self.cache, tenant_id, [model_id])
        return MutationResult(model_id=model_id, cache_invalidated=invalidated)

    async def rename_model(self, model_id: str, tenant_id: str | None, new_name: str) -> MutationResult:
        return await self.update_metadata(model_id, tenant_id, UpdateModelMetadata(name=validate_model_name(new_name)))

    async def set_model_tags(self, model_id: str, tenant_id: str | None, tags: list[str]) -> MutationResult:
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        await self.repository.set_model_tags(tenant_id, model_id, tags)
        invalidated = await invalidate_after_write(self.cache, tenant_id, [model_id])
        return MutationResult(model_id=model_id, cache_invalidated=invalidated)

    async def delete_model(self, model_id: str, tenant_id: str | None, hard: bool = False) -> MutationResult:
        """Soft delete by default. hard=True removes rows and storage objects."""
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        keys: list[str] = []
        if hard:
            keys = await self.repository.hard_delete_model(tenant_id, model_id)
        else:
            await self.repository.soft_delete_model(tenant_id, model_id)
        invalidated = await invalidate_after_write(
            self.cache, tenant_id, [model_id], [presigned_url_key(k) for k in keys]
        )
        await self._purge_objects(keys)
        return MutationResult(model_id=model_id, deleted_storage_keys=keys, cache_invalidated=invalidated)

    async def restore_model(self, model_id: str, tenant_id: str | None) -> MutationResult:
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        await self.repository.restore_model(tenant_id, model_id)
        invalidated = await invalidate_after_write(self.cache, tenant_id, [model_id])
        return MutationResult(model_id=model_id, cache_invalidated=invalidated)

    async def delete_version(
        self, model_id: str, tenant_id: str | None, version: str, hard: bool = False
    ) -> MutationResult:
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        keys = await self.repository.delete_version(tenant_id, model_id, version, hard=hard)
        invalidated = await invalidate_after_write(
            self.cache, tenant_id, [model_id], [presigned_url_key(k) for k in keys]
        )
        await self._purge_objects(keys)
        return MutationResult(
            model_id=model_id, version=version, deleted_storage_keys=keys, cache_invalidated=invalidated
        )
