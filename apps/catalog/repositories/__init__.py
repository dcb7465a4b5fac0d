"""Repository layer: tenant-scoped query fragments. The repository itself lives in model_repository."""

from apps.catalog.repositories.tenant_filters import (
    active_where,
    model_scope,
    select_model_for_tenant,
    select_tag_for_tenant,
    tenant_where,
    version_join_on,
)

__all__ = [
    "active_where",
    "model_scope",
    "select_model_for_tenant",
    "select_tag_for_tenant",
    "tenant_where",
    "version_join_on",
]
