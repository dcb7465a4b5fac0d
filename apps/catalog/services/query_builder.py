"""Model list query builder. Pure: (tenant, search, tags, sort) -> predicate terms + sort key. No I/O.

The builder is an immutable value object. Each with_* returns a new builder, reset() returns an
empty one, so a single instance can be shared across requests.
"""

from dataclasses import dataclass, replace
from typing import Any

from sqlalchemy import ColumnElement, and_, distinct, func, or_, select
from sqlalchemy.orm import aliased

from apps.catalog.models.catalog_model import CatalogModel
from apps.catalog.models.model_file import ModelFile
from apps.catalog.models.model_version import ModelVersion
from apps.catalog.models.tag import ModelTag, Tag
from apps.catalog.repositories.tenant_filters import active_where, tenant_where
from apps.catalog.schemas.models import ModelListQuery
from apps.catalog.services.tenant_guard import TenantRequiredError, require_tenant_id

SORT_KEYS = ("name", "created_at", "updated_at", "size")
DEFAULT_SORT_KEY = "updated_at"
LIKE_ESCAPE = "\\"


@dataclass(frozen=True)
class ModelListSpec:
    """Backend-agnostic descriptor consumed by ModelRepository.find_models_with_joins."""

    tenant_id: str
    terms: tuple[ColumnElement[bool], ...]
    sort_key: ColumnElement[Any]
    descending: bool

    @property
    def where(self) -> ColumnElement[bool]:
        return and_(*self.terms)


def like_pattern(text: str) -> str:
    """Substring pattern with LIKE wildcards in user input escaped."""
    escaped = text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", LIKE_ESCAPE + "%").replace("_", LIKE_ESCAPE + "_")
    return f"%{escaped}%"


def total_size_expr() -> ColumnElement[Any]:
    """Summed byte size of every file in every live version of the enclosing model row."""
    mf = aliased(ModelFile)
    mv = aliased(ModelVersion)
    return (
        select(func.coalesce(func.sum(mf.size), 0))
        .select_from(mf)
        .join(mv, mv.id == mf.version_id)
        .where(mv.model_id == CatalogModel.id, mv.deleted_at.is_(None))
        .correlate(CatalogModel)
        .scalar_subquery()
    )


def models_with_all_tags(tenant_id: str, tag_names: tuple[str, ...]):
    """Ids of models carrying every one of tag_names (AND, not OR)."""
    return (
        select(ModelTag.model_id)
        .join(Tag, Tag.id == ModelTag.tag_id)
        .where(tenant_where(Tag, tenant_id), Tag.name.in_(tag_names))
        .group_by(ModelTag.model_id)
        .having(func.count(distinct(Tag.name)) == len(tag_names))
    )


@dataclass(frozen=True)
class ModelQueryBuilder:
    tenant_id: str | None = None
    search: str | None = None
    tags: tuple[str, ...] = ()
    sort_by: str = DEFAULT_SORT_KEY
    sort_order: str = "desc"

    @classmethod
    def from_query(cls, query: ModelListQuery, tenant_id: str) -> "ModelQueryBuilder":
        return (
            cls()
            .with_tenant(tenant_id)
            .with_search(query.search)
            .with_tags(query.tags)
            .with_sorting(query.sort_by, query.sort_order)
        )

    def with_tenant(self, tenant_id: str | None) -> "ModelQueryBuilder":
        return replace(self, tenant_id=require_tenant_id(tenant_id))

    def with_search(self, search: str | None) -> "ModelQueryBuilder":
        search = search.strip() if search else None
        return replace(self, search=search or None)

    def with_tags(self, tags: list[str] | tuple[str, ...] | None) -> "ModelQueryBuilder":
        # Duplicates would make the HAVING count unreachable.
        unique = tuple(dict.fromkeys(t.strip() for t in (tags or ()) if t and t.strip()))
        return replace(self, tags=unique)

    def with_sorting(self, sort_by: str, sort_order: str) -> "ModelQueryBuilder":
        key = sort_by if sort_by in SORT_KEYS else DEFAULT_SORT_KEY
        order = "asc" if sort_order == "asc" else "desc"
        return replace(self, sort_by=key, sort_order=order)

    def reset(self) -> "ModelQueryBuilder":
        return ModelQueryBuilder()

    def build(self) -> ModelListSpec:
        if self.tenant_id is None:
            raise TenantRequiredError("tenant scope is mandatory; call with_tenant() before build()")
        terms: list[ColumnElement[bool]] = [
            tenant_where(CatalogModel, self.tenant_id),
            active_where(CatalogModel),
        ]
        if self.search:
            pattern = like_pattern(self.search)
            terms.append(
                or_(
                    CatalogModel.name.ilike(pattern, escape=LIKE_ESCAPE),
                    CatalogModel.description.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
        if self.tags:
            terms.append(CatalogModel.id.in_(models_with_all_tags(self.tenant_id, self.tags)))
        return ModelListSpec(
            tenant_id=self.tenant_id,
            terms=tuple(terms),
            sort_key=self._sort_column(),
            descending=self.sort_order == "desc",
        )

    def _sort_column(self) -> ColumnElement[Any]:
        if self.sort_by == "size":
            return total_size_expr()
        return {
            "name": CatalogModel.name,
            "created_at": CatalogModel.created_at,
            "updated_at": CatalogModel.updated_at,
        }.get(self.sort_by, CatalogModel.updated_at)
