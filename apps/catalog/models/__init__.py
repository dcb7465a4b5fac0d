"""SQLAlchemy models. Tenant-owned tables carry tenant_id (directly or via their parent model)."""

from apps.catalog.models.base import Base
from apps.catalog.models.cache_entry import CacheEntry
from apps.catalog.models.catalog_model import CatalogModel
from apps.catalog.models.model_file import ModelFile
from apps.catalog.models.model_version import ModelVersion
from apps.catalog.models.tag import ModelTag, Tag, VersionTag

__all__ = [
    "Base",
    "CacheEntry",
    "CatalogModel",
    "ModelFile",
    "ModelTag",
    "ModelVersion",
    "Tag",
    "VersionTag",
]
