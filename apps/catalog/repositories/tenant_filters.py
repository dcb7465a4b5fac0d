"""Tenant-scoped SQL helpers. All catalog queries MUST use these.

Provides:
  - tenant_where(model, tenant_id): WHERE model.tenant_id == tenant_id
  - active_where(model): the single shared tombstone predicate (deleted_at IS NULL)
  - select_*_for_tenant(tenant_id): Select with tenant and tombstone filters applied
  - Joins MUST carry the scope of their parent (versions and files hang off catalog_models).
"""

from sqlalchemy import ColumnElement, Select, and_, select

from apps.catalog.models.catalog_model import CatalogModel
from apps.catalog.models.model_version import ModelVersion
from apps.catalog.models.tag import Tag


def tenant_where(model: type, tenant_id: str) -> ColumnElement[bool]:
    """Return WHERE clause: model.tenant_id == tenant_id. Use for filters and joins."""
    col = getattr(model, "tenant_id", None)
    if col is None:
        raise ValueError(f"Model {model.__name__} has no tenant_id column")
    return col == tenant_id


def active_where(model: type) -> ColumnElement[bool]:
    """Return WHERE clause excluding tombstoned rows. Every catalog read goes through this."""
    col = getattr(model, "deleted_at", None)
    if col is None:
        raise ValueError(f"Model {model.__name__} has no deleted_at column")
    return col.is_(None)


def model_scope(tenant_id: str) -> ColumnElement[bool]:
    """Tenant + tombstone scope for catalog_models, tenant term first."""
    return and_(tenant_where(CatalogModel, tenant_id), active_where(CatalogModel))


def version_join_on() -> ColumnElement[bool]:
    """ON clause for catalog_models -> model_versions that also hides tombstoned versions."""
    return and_(ModelVersion.model_id == CatalogModel.id, active_where(ModelVersion))


def select_model_for_tenant(tenant_id: str) -> Select[tuple[CatalogModel]]:
    """Select live catalog_models for tenant. Add .where() for further filters."""
    return select(CatalogModel).where(model_scope(tenant_id))


def select_tag_for_tenant(tenant_id: str) -> Select[tuple[Tag]]:
    """Select from tags with tenant filter. Add .where() for further filters."""
    return select(Tag).where(tenant_where(Tag, tenant_id))
