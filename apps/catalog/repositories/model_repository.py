"""Catalog repository. Every public method takes tenant_id first; the guard raises if None/empty.

RULE: this module is the ONLY place that runs catalog reads/writes (session.execute, get_db).
All tenant-scoped queries MUST use tenant_filters (model_scope / tenant_where / version_join_on).

Reads return flat, duplicated rows (ModelRow); folding them into DTOs is the mapper's job.
Writes run inside one get_db() transaction each. Tag link changes and usage_count updates
always share that transaction.
"""

import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, case, delete, exists, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.catalog.config import config
from apps.catalog.db import get_db
from apps.catalog.errors import BackendError, BackendUnavailableError, InvalidInputError, NotFoundError
from apps.catalog.models.base import new_id, utcnow
from apps.catalog.models.catalog_model import CatalogModel
from apps.catalog.models.model_file import ModelFile
from apps.catalog.models.model_version import ModelVersion
from apps.catalog.models.tag import ModelTag, Tag, VersionTag
from apps.catalog.repositories.tenant_filters import (
    active_where,
    model_scope,
    select_model_for_tenant,
    select_tag_for_tenant,
    tenant_where,
    version_join_on,
)
from apps.catalog.schemas.mutations import AddVersionInput, CreateModelInput, NewFile
from apps.catalog.schemas.tags import TagInfo
from apps.catalog.services.query_builder import ModelListSpec
from apps.catalog.services.tenant_guard import require_id, require_tenant_id
from apps.catalog.utils.slugs import candidate_slugs, slugify
from apps.catalog.utils.timing import measure
from apps.catalog.utils.version_labels import next_version_label

logger = logging.getLogger(__name__)

_UNAVAILABLE = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError, OSError)


@dataclass(frozen=True)
class ModelRow:
    """One row of the model x version x file x tag fan-out. Outer-joined parts may be None."""

    model: CatalogModel
    version: ModelVersion | None = None
    file: ModelFile | None = None
    tag: Tag | None = None
    total_count: int = 0


def clean_tag_names(names: Iterable[str] | None) -> list[str]:
    """Strip, drop blanks, dedupe preserving order."""
    return list(dict.fromkeys(n.strip() for n in (names or ()) if n and n.strip()))


def _direction(column, descending: bool):
    return column.desc() if descending else column.asc()


def _insert_ignoring_conflicts(dialect_name: str, table, index_elements: list[str]):
    """INSERT ... ON CONFLICT DO NOTHING for the dialects we run on."""
    if dialect_name == "postgresql":
        return pg_insert(table).on_conflict_do_nothing(index_elements=index_elements)
    if dialect_name == "sqlite":
        return sqlite_insert(table).on_conflict_do_nothing(index_elements=index_elements)
    raise BackendError(f"unsupported dialect for tag upsert: {dialect_name}")


class ModelRepository:
    """Tenant-scoped catalog store access over an AsyncSession factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        overfetch_multiplier: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.overfetch_multiplier = overfetch_multiplier or config.list_overfetch_multiplier

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """get_db() scope with driver errors translated to the catalog taxonomy."""
        try:
            async with get_db(self._session_factory) as session:
                yield session
        except _UNAVAILABLE as exc:
            raise BackendUnavailableError(f"catalog store unavailable: {exc}") from exc
        except SQLAlchemyError as exc:
            raise BackendError(f"catalog store error: {exc}") from exc

    # ------------------------------------------------------------------ reads

    async def find_models_with_joins(
        self,
        tenant_id: str | None,
        spec: ModelListSpec,
        limit: int,
        offset: int,
    ) -> list[ModelRow]:
        """
        One page of models as fanned-out rows (model x version x file, tag is None; tags come
        from find_model_tags). The page subquery picks `limit` model ids and carries
        COUNT(*) OVER() as total_count. Raw rows are capped at limit * overfetch_multiplier;
        when the cap is hit, every model the cap may have cut short is reloaded in full, so a
        returned model always has all of its live versions and files.
        """
        tenant_id = require_tenant_id(tenant_id)
        if spec.tenant_id != tenant_id:
            raise ValueError("list spec was built for a different tenant")
        page = (
            select(
                CatalogModel.id.label("model_id"),
                spec.sort_key.label("sort_value"),
                func.count().over().label("total_count"),
            )
            .where(spec.where)
            .order_by(_direction(spec.sort_key, spec.descending), CatalogModel.id)
            .limit(limit)
            .offset(offset)
            .subquery("page")
        )
        stmt = (
            select(CatalogModel, ModelVersion, ModelFile, page.c.total_count)
            .select_from(page)
            .join(CatalogModel, CatalogModel.id == page.c.model_id)
            .outerjoin(ModelVersion, version_join_on())
            .outerjoin(ModelFile, ModelFile.version_id == ModelVersion.id)
            .where(tenant_where(CatalogModel, tenant_id))
            .order_by(
                _direction(page.c.sort_value, spec.descending),
                page.c.model_id,
                ModelVersion.created_at.desc(),
                ModelVersion.id,
                ModelFile.filename,
                ModelFile.id,
            )
        )
        cap = limit * self.overfetch_multiplier
        with measure("find_models_with_joins", tenant_id=tenant_id, limit=limit, offset=offset):
            async with self._session() as session:
                result = (await session.execute(stmt.limit(cap))).all()
                if len(result) < cap:
                    return [ModelRow(m, v, f, None, int(total or 0)) for m, v, f, total in result]

                # Cap hit: the last model seen may be cut mid-version and later page models are missing.
                page_ids = list(
                    (
                        await session.execute(
                            select(page.c.model_id).order_by(
                                _direction(page.c.sort_value, spec.descending), page.c.model_id
                            )
                        )
                    ).scalars()
                )
                seen = list(dict.fromkeys(m.id for m, _, _, _ in result))
                complete = set(seen[:-1])
                reload_ids = [mid for mid in page_ids if mid not in complete]
                logger.warning(
                    "list fan-out hit the %d-row cap for tenant %s; reloading %d model(s)",
                    cap,
                    tenant_id,
                    len(reload_ids),
                )
                reloaded = (await session.execute(stmt.where(CatalogModel.id.in_(reload_ids)))).all()

        by_model: dict[str, list[ModelRow]] = {mid: [] for mid in page_ids}
        for m, v, f, total in [*(r for r in result if r[0].id in complete), *reloaded]:
            if m.id in by_model:
                by_model[m.id].append(ModelRow(m, v, f, None, int(total or 0)))
        return [row for mid in page_ids for row in by_model[mid]]

    async def count_models(self, tenant_id: str | None, spec: ModelListSpec) -> int:
        """COUNT for pages past the end, where no row carries the window total."""
        tenant_id = require_tenant_id(tenant_id)
        stmt = select(func.count()).select_from(CatalogModel).where(spec.where)
        async with self._session() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def find_model_by_id(self, tenant_id: str | None, model_id: str) -> list[ModelRow]:
        """Fanned-out rows for one live model, [] when missing, tombstoned or foreign."""
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        stmt = (
            select(CatalogModel, ModelVersion, ModelFile, Tag)
            .outerjoin(ModelVersion, version_join_on())
            .outerjoin(ModelFile, ModelFile.version_id == ModelVersion.id)
            .outerjoin(ModelTag, ModelTag.model_id == CatalogModel.id)
            .outerjoin(Tag, and_(Tag.id == ModelTag.tag_id, Tag.tenant_id == CatalogModel.tenant_id))
            .where(model_scope(tenant_id), CatalogModel.id == model_id)
            .order_by(ModelVersion.created_at.desc(), ModelFile.filename, ModelTag.id)
        )
        with measure("find_model_by_id", tenant_id=tenant_id, model_id=model_id):
            async with self._session() as session:
                result = await session.execute(stmt)
                return [ModelRow(m, v, f, t, 1) for m, v, f, t in result.all()]

    async def find_versions_paginated(
        self,
        tenant_id: str | None,
        model_id: str,
        limit: int,
        offset: int,
    ) -> tuple[list[ModelRow], int]:
        """
        Versions newest first, windowed by offset/limit, with their files.
        Returns (rows, total live versions). Raises NotFoundError if the model is not visible.
        """
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        page = (
            select(
                ModelVersion.id.label("version_id"),
                ModelVersion.created_at.label("created_at"),
                func.count().over().label("total_count"),
            )
            .join(CatalogModel, version_join_on())
            .where(model_scope(tenant_id), CatalogModel.id == model_id)
            .order_by(ModelVersion.created_at.desc(), ModelVersion.id.desc())
            .limit(limit)
            .offset(offset)
            .subquery("version_page")
        )
        stmt = (
            select(CatalogModel, ModelVersion, ModelFile, page.c.total_count)
            .select_from(page)
            .join(ModelVersion, ModelVersion.id == page.c.version_id)
            .join(CatalogModel, CatalogModel.id == ModelVersion.model_id)
            .outerjoin(ModelFile, ModelFile.version_id == ModelVersion.id)
            .where(tenant_where(CatalogModel, tenant_id))
            .order_by(page.c.created_at.desc(), page.c.version_id.desc(), ModelFile.filename)
        )
        async with self._session() as session:
            result = (await session.execute(stmt)).all()
            if result:
                rows = [ModelRow(m, v, f, None, int(total)) for m, v, f, total in result]
                return rows, rows[0].total_count
            # Empty window: either past the end or the model is not visible.
            count_stmt = (
                select(func.count(ModelVersion.id))
                .select_from(CatalogModel)
                .outerjoin(ModelVersion, version_join_on())
                .where(model_scope(tenant_id), CatalogModel.id == model_id)
                .group_by(CatalogModel.id)
            )
            total = (await session.execute(count_stmt)).scalar_one_or_none()
            if total is None:
                raise NotFoundError("model", model_id)
            return [], int(total)

    async def find_model_tags(self, tenant_id: str | None, model_ids: Sequence[str]) -> dict[str, list[TagInfo]]:
        """Model-level tag facet. Every requested id gets an entry; [] means 'no tags'."""
        tenant_id = require_tenant_id(tenant_id)
        facet: dict[str, list[TagInfo]] = {mid: [] for mid in model_ids}
        if not facet:
            return facet
        stmt = (
            select(ModelTag.model_id, Tag.id, Tag.name, Tag.color)
            .join(Tag, Tag.id == ModelTag.tag_id)
            .join(CatalogModel, CatalogModel.id == ModelTag.model_id)
            .where(
                tenant_where(CatalogModel, tenant_id),
                tenant_where(Tag, tenant_id),
                ModelTag.model_id.in_(list(facet)),
            )
            .order_by(ModelTag.model_id, ModelTag.id)
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()
        return _fold_facet(facet, rows)

    async def find_version_tags(
        self, tenant_id: str | None, version_ids: Sequence[str]
    ) -> dict[str, list[TagInfo]]:
        """Version-level tag facet. Every requested id gets an entry; [] means 'no tags'."""
        tenant_id = require_tenant_id(tenant_id)
        facet: dict[str, list[TagInfo]] = {vid: [] for vid in version_ids}
        if not facet:
            return facet
        stmt = (
            select(VersionTag.version_id, Tag.id, Tag.name, Tag.color)
            .join(Tag, Tag.id == VersionTag.tag_id)
            .join(ModelVersion, ModelVersion.id == VersionTag.version_id)
            .join(CatalogModel, CatalogModel.id == ModelVersion.model_id)
            .where(
                tenant_where(CatalogModel, tenant_id),
                tenant_where(Tag, tenant_id),
                VersionTag.version_id.in_(list(facet)),
            )
            .order_by(VersionTag.version_id, VersionTag.id)
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()
        return _fold_facet(facet, rows)

    async def model_exists_outside_tenant(self, tenant_id: str | None, model_id: str) -> bool:
        """True when model_id exists under some other tenant. Audit logging only; never returns data."""
        tenant_id = require_tenant_id(tenant_id)
        stmt = select(
            exists().where(CatalogModel.id == model_id, CatalogModel.tenant_id != tenant_id)
        )
        async with self._session() as session:
            return bool((await session.execute(stmt)).scalar())

    async def next_version_label(self, tenant_id: str | None, model_id: str) -> str:
        """max(existing numeric suffix) + 1. Tombstoned labels count so they are never reused."""
        tenant_id = require_tenant_id(tenant_id)
        async with self._session() as session:
            await self._load_model(session, tenant_id, model_id)
            return next_version_label(await self._all_labels(session, model_id))

    async def get_model_statistics(self, tenant_id: str | None, model_id: str) -> dict[str, Any]:
        """Aggregates over live versions: sizes, file counts, extension histogram, largest file."""
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        base = (
            select(CatalogModel.id)
            .select_from(CatalogModel)
            .join(ModelVersion, version_join_on())
            .join(ModelFile, ModelFile.version_id == ModelVersion.id)
            .where(model_scope(tenant_id), CatalogModel.id == model_id)
        )
        totals_stmt = base.with_only_columns(
            func.count(ModelFile.id),
            func.coalesce(func.sum(ModelFile.size), 0),
            func.avg(ModelFile.size),
        )
        types_stmt = (
            base.with_only_columns(ModelFile.extension, func.count(ModelFile.id))
            .group_by(ModelFile.extension)
            .order_by(ModelFile.extension)
        )
        largest_stmt = (
            base.with_only_columns(ModelFile.filename, ModelFile.size)
            .order_by(ModelFile.size.desc(), ModelFile.filename)
            .limit(1)
        )
        versions_stmt = (
            select(func.count(ModelVersion.id))
            .join(CatalogModel, version_join_on())
            .where(model_scope(tenant_id), CatalogModel.id == model_id)
        )
        async with self._session() as session:
            model = await self._load_model(session, tenant_id, model_id)
            total_files, total_size, avg_size = (await session.execute(totals_stmt)).one()
            file_types = {ext: int(n) for ext, n in (await session.execute(types_stmt)).all()}
            largest = (await session.execute(largest_stmt)).first()
            total_versions = int((await session.execute(versions_stmt)).scalar_one())
        return {
            "total_size": int(total_size or 0),
            "total_files": int(total_files or 0),
            "total_versions": total_versions,
            "average_file_size": int(round(avg_size)) if avg_size is not None else 0,
            "file_types": file_types,
            "largest_file": {"name": largest[0], "size": int(largest[1])} if largest else None,
            "last_updated": model.updated_at,
        }

    async def list_tags(self, tenant_id: str | None) -> list[Tag]:
        """Tenant tags, most used first, then by name."""
        tenant_id = require_tenant_id(tenant_id)
        stmt = select_tag_for_tenant(tenant_id).order_by(Tag.usage_count.desc(), Tag.name)
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars().all())

    # ----------------------------------------------------------------- writes

    async def create_model(self, tenant_id: str | None, data: CreateModelInput) -> tuple[str, str]:
        """Insert model + v1 + files + tags in one transaction. Returns (model_id, version label)."""
        tenant_id = require_tenant_id(tenant_id)
        name = require_id(data.name, "name")
        base_slug = slugify(name)
        async with self._session() as session:
            taken = set(
                (
                    await session.execute(
                        select(CatalogModel.slug).where(
                            tenant_where(CatalogModel, tenant_id),
                            CatalogModel.slug.like(f"{base_slug}%"),
                        )
                    )
                ).scalars()
            )
            now = utcnow()
            model = CatalogModel(
                tenant_id=tenant_id,
                owner_id=data.owner_id,
                slug=next(candidate_slugs(base_slug, taken)),
                name=name,
                description=data.description,
                current_version="v1",
                total_versions=1,
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            await session.flush()
            version = await self._insert_version(
                session,
                model.id,
                "v1",
                name,
                data.description,
                data.thumbnail_path,
                data.print_settings,
                data.files,
                now,
            )
            tags = await self._get_or_create_tags(session, tenant_id, data.tags)
            await self._link_model_tags(session, tenant_id, model.id, tags)
            await self._link_version_tags(session, version.id, tags)
            logger.info("created model %s (%s) for tenant %s", model.id, model.slug, tenant_id)
            return model.id, version.version

    async def add_version(self, tenant_id: str | None, model_id: str, data: AddVersionInput) -> str:
        """
        Append the next v<N> with its files and move current_version to it.
        Version tags default to the model's current tags; explicit tags are also attached to the model.
        """
        tenant_id = require_tenant_id(tenant_id)
        async with self._session() as session:
            model = await self._load_model(session, tenant_id, model_id, for_update=True)
            label = next_version_label(await self._all_labels(session, model.id))
            now = utcnow()
            version = await self._insert_version(
                session,
                model.id,
                label,
                (data.name or "").strip() or model.name,
                data.description if data.description is not None else model.description,
                data.thumbnail_path,
                data.print_settings,
                data.files,
                now,
            )
            if data.tags is None:
                tags = await self._current_model_tags(session, tenant_id, model.id)
            else:
                tags = await self._get_or_create_tags(session, tenant_id, data.tags)
                await self._link_model_tags(session, tenant_id, model.id, tags)
            await self._link_version_tags(session, version.id, tags)
            model.current_version = label
            model.total_versions = model.total_versions + 1
            model.updated_at = now
            return label

    async def update_model_metadata(
        self,
        tenant_id: str | None,
        model_id: str,
        name: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> None:
        """Partial update. tags (when given) replaces the model's tag set in the same transaction."""
        tenant_id = require_tenant_id(tenant_id)
        async with self._session() as session:
            model = await self._load_model(session, tenant_id, model_id, for_update=True)
            if name is not None:
                model.name = name
            if description is not None:
                model.description = description
            if tags is not None:
                await self._replace_model_tags(session, tenant_id, model.id, tags)
            model.updated_at = utcnow()

    async def set_model_tags(self, tenant_id: str | None, model_id: str, names: list[str]) -> None:
        """Replace the model's tag set; counters move only for links actually added or removed."""
        tenant_id = require_tenant_id(tenant_id)
        async with self._session() as session:
            model = await self._load_model(session, tenant_id, model_id, for_update=True)
            await self._replace_model_tags(session, tenant_id, model.id, names)
            model.updated_at = utcnow()

    async def attach_model_tags(self, tenant_id: str | None, model_id: str, names: list[str]) -> int:
        """Attach tags (created lazily). Returns how many links were new."""
        tenant_id = require_tenant_id(tenant_id)
        async with self._session() as session:
            model = await self._load_model(session, tenant_id, model_id, for_update=True)
            tags = await self._get_or_create_tags(session, tenant_id, names)
            added = await self._link_model_tags(session, tenant_id, model.id, tags)
            if added:
                model.updated_at = utcnow()
            return added

    async def detach_model_tags(self, tenant_id: str | None, model_id: str, names: list[str]) -> int:
        """Detach tags by name. Unknown names are ignored. Returns how many links were removed."""
        tenant_id = require_tenant_id(tenant_id)
        wanted = clean_tag_names(names)
        async with self._session() as session:
            model = await self._load_model(session, tenant_id, model_id, for_update=True)
            tag_ids = list(
                (
                    await session.execute(
                        select(Tag.id).where(tenant_where(Tag, tenant_id), Tag.name.in_(wanted))
                    )
                ).scalars()
            )
            removed = await self._unlink_model_tags(session, tenant_id, model.id, tag_ids)
            if removed:
                model.updated_at = utcnow()
            return removed

    async def soft_delete_model(self, tenant_id: str | None, model_id: str) -> None:
        """Set the tombstone. Tag links stay, so usage counters are unchanged."""
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        now = utcnow()
        stmt = (
            update(CatalogModel)
            .where(model_scope(tenant_id), CatalogModel.id == model_id)
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            if (await session.execute(stmt)).rowcount == 0:
                raise NotFoundError("model", model_id)

    async def restore_model(self, tenant_id: str | None, model_id: str) -> None:
        """Clear the tombstone of a soft-deleted model."""
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        stmt = (
            update(CatalogModel)
            .where(
                tenant_where(CatalogModel, tenant_id),
                CatalogModel.id == model_id,
                CatalogModel.deleted_at.is_not(None),
            )
            .values(deleted_at=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            if (await session.execute(stmt)).rowcount == 0:
                raise NotFoundError("model", model_id)

    async def hard_delete_model(self, tenant_id: str | None, model_id: str) -> list[str]:
        """
        Remove the model row (versions, files and links cascade), live or tombstoned.
        Decrements counters for its tags first. Returns storage keys for the caller to purge.
        """
        tenant_id = require_tenant_id(tenant_id)
        model_id = require_id(model_id, "model_id")
        async with self._session() as session:
            model = (
                await session.execute(
                    select(CatalogModel)
                    .where(tenant_where(CatalogModel, tenant_id), CatalogModel.id == model_id)
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if model is None:
                raise NotFoundError("model", model_id)
            keys = list(
                (
                    await session.execute(
                        select(ModelFile.storage_key)
                        .join(ModelVersion, ModelVersion.id == ModelFile.version_id)
                        .where(ModelVersion.model_id == model.id)
                        .order_by(ModelFile.storage_key)
                    )
                ).scalars()
            )
            tag_ids = list(
                (await session.execute(select(ModelTag.tag_id).where(ModelTag.model_id == model.id))).scalars()
            )
            await self._unlink_model_tags(session, tenant_id, model.id, tag_ids)
            await session.execute(
                delete(CatalogModel)
                .where(tenant_where(CatalogModel, tenant_id), CatalogModel.id == model.id)
                .execution_options(synchronize_session=False)
            )
            logger.info("hard-deleted model %s for tenant %s (%d files)", model.id, tenant_id, len(keys))
            return keys

    async def delete_version(
        self, tenant_id: str | None, model_id: str, label: str, hard: bool = False
    ) -> list[str]:
        """
        Soft or hard delete one version. Refuses to delete the only live version.
        Repoints current_version to the newest remaining version when needed and
        decrements total_versions. Returns storage keys removed (hard only).
        """
        tenant_id = require_tenant_id(tenant_id)
        label = require_id(label, "version")
        async with self._session() as session:
            model = await self._load_model(session, tenant_id, model_id, for_update=True)
            live = list(
                (
                    await session.execute(
                        select(ModelVersion)
                        .where(ModelVersion.model_id == model.id, active_where(ModelVersion))
                        .order_by(ModelVersion.created_at.desc(), ModelVersion.id.desc())
                    )
                ).scalars()
            )
            target = next((v for v in live if v.version == label), None)
            if target is None:
                raise NotFoundError("version", f"{model.id}/{label}")
            if len(live) == 1:
                raise InvalidInputError("cannot delete the only remaining version; delete the model instead")
            keys: list[str] = []
            now = utcnow()
            if hard:
                keys = list(
                    (
                        await session.execute(
                            select(ModelFile.storage_key)
                            .where(ModelFile.version_id == target.id)
                            .order_by(ModelFile.storage_key)
                        )
                    ).scalars()
                )
                await session.execute(
                    delete(ModelVersion)
                    .where(ModelVersion.id == target.id)
                    .execution_options(synchronize_session=False)
                )
            else:
                target.deleted_at = now
                target.updated_at = now
            remaining = [v for v in live if v.id != target.id]
            if model.current_version == label or model.current_version not in {v.version for v in remaining}:
                model.current_version = remaining[0].version
            model.total_versions = max(model.total_versions - 1, 0)
            model.updated_at = now
            return keys

    async def create_tag(
        self,
        tenant_id: str | None,
        name: str,
        color: str | None = None,
        description: str | None = None,
    ) -> Tag:
        """Explicit tag creation. Duplicate names within a tenant are rejected."""
        tenant_id = require_tenant_id(tenant_id)
        name = require_id(name, "name")
        tag = Tag(tenant_id=tenant_id, name=name, color=color, description=description, usage_count=0)
        try:
            async with self._session() as session:
                session.add(tag)
                await session.flush()
        except BackendError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise InvalidInputError(f"tag already exists: {name}") from exc
            raise
        return tag

    async def delete_tag(self, tenant_id: str | None, tag_id: str) -> list[str]:
        """Delete a tag and its links (admin action). Returns ids of models that carried it."""
        tenant_id = require_tenant_id(tenant_id)
        tag_id = require_id(tag_id, "tag_id")
        async with self._session() as session:
            tag = (
                await session.execute(select_tag_for_tenant(tenant_id).where(Tag.id == tag_id))
            ).scalar_one_or_none()
            if tag is None:
                raise NotFoundError("tag", tag_id)
            model_ids = list(
                (await session.execute(select(ModelTag.model_id).where(ModelTag.tag_id == tag.id))).scalars()
            )
            await session.execute(
                delete(Tag)
                .where(tenant_where(Tag, tenant_id), Tag.id == tag.id)
                .execution_options(synchronize_session=False)
            )
            return model_ids

    # ---------------------------------------------------------------- helpers

    async def _load_model(
        self, session: AsyncSession, tenant_id: str, model_id: str, for_update: bool = False
    ) -> CatalogModel:
        model_id = require_id(model_id, "model_id")
        stmt = select_model_for_tenant(tenant_id).where(CatalogModel.id == model_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = (await session.execute(stmt)).scalar_one_or_none()
        if model is None:
            raise NotFoundError("model", model_id)
        return model

    @staticmethod
    async def _all_labels(session: AsyncSession, model_id: str) -> list[str]:
        stmt = select(ModelVersion.version).where(ModelVersion.model_id == model_id)
        return list((await session.execute(stmt)).scalars())

    @staticmethod
    async def _insert_version(
        session: AsyncSession,
        model_id: str,
        label: str,
        name: str,
        description: str | None,
        thumbnail_path: str | None,
        print_settings: dict[str, Any] | None,
        files: Sequence[NewFile],
        now,
    ) -> ModelVersion:
        """Insert a version, then its files. Files reference the flushed version id."""
        version = ModelVersion(
            model_id=model_id,
            version=label,
            name=name,
            description=description,
            thumbnail_path=thumbnail_path,
            print_settings=print_settings,
            created_at=now,
            updated_at=now,
        )
        session.add(version)
        await session.flush()
        session.add_all(
            ModelFile(
                version_id=version.id,
                filename=f.filename,
                original_name=f.original_name,
                size=f.size,
                mime_type=f.mime_type,
                extension=f.extension.lower().lstrip("."),
                storage_key=f.storage_key,
                storage_bucket=f.storage_bucket,
                file_metadata=f.file_metadata,
                processing_status=f.processing_status,
                created_at=now,
                updated_at=now,
            )
            for f in files
        )
        await session.flush()
        return version

    async def _get_or_create_tags(self, session: AsyncSession, tenant_id: str, names: Iterable[str]) -> list[Tag]:
        """Resolve names to Tag rows, creating missing ones. Concurrent creators converge on one row."""
        wanted = clean_tag_names(names)
        if not wanted:
            return []
        existing = {
            t.name: t
            for t in (await session.execute(select_tag_for_tenant(tenant_id).where(Tag.name.in_(wanted)))).scalars()
        }
        missing = [n for n in wanted if n not in existing]
        if missing:
            now = utcnow()
            stmt = _insert_ignoring_conflicts(
                session.get_bind().dialect.name, Tag.__table__, ["tenant_id", "name"]
            )
            await session.execute(
                stmt,
                [
                    {
                        "id": new_id(),
                        "tenant_id": tenant_id,
                        "name": n,
                        "usage_count": 0,
                        "created_at": now,
                        "updated_at": now,
                    }
                    for n in missing
                ],
            )
            for t in (
                await session.execute(select_tag_for_tenant(tenant_id).where(Tag.name.in_(missing)))
            ).scalars():
                existing[t.name] = t
        return [existing[n] for n in wanted if n in existing]

    @staticmethod
    async def _current_model_tags(session: AsyncSession, tenant_id: str, model_id: str) -> list[Tag]:
        stmt = (
            select(Tag)
            .join(ModelTag, ModelTag.tag_id == Tag.id)
            .where(tenant_where(Tag, tenant_id), ModelTag.model_id == model_id)
            .order_by(ModelTag.id)
        )
        return list((await session.execute(stmt)).scalars())

    async def _link_model_tags(
        self, session: AsyncSession, tenant_id: str, model_id: str, tags: Sequence[Tag]
    ) -> int:
        """Insert missing model_tags rows and bump usage_count for exactly those tags."""
        if not tags:
            return 0
        linked = set(
            (await session.execute(select(ModelTag.tag_id).where(ModelTag.model_id == model_id))).scalars()
        )
        new_ids = [t.id for t in tags if t.id not in linked]
        if not new_ids:
            return 0
        now = utcnow()
        await session.execute(
            insert(ModelTag), [{"model_id": model_id, "tag_id": tid, "created_at": now} for tid in new_ids]
        )
        await self._adjust_usage(session, tenant_id, new_ids, +1)
        return len(new_ids)

    async def _unlink_model_tags(
        self, session: AsyncSession, tenant_id: str, model_id: str, tag_ids: Sequence[str]
    ) -> int:
        """Delete model_tags rows and decrement usage_count for the rows actually removed."""
        if not tag_ids:
            return 0
        removed = list(
            (
                await session.execute(
                    select(ModelTag.tag_id).where(ModelTag.model_id == model_id, ModelTag.tag_id.in_(list(tag_ids)))
                )
            ).scalars()
        )
        if not removed:
            return 0
        await session.execute(
            delete(ModelTag)
            .where(ModelTag.model_id == model_id, ModelTag.tag_id.in_(removed))
            .execution_options(synchronize_session=False)
        )
        await self._adjust_usage(session, tenant_id, removed, -1)
        return len(removed)

    async def _replace_model_tags(self, session: AsyncSession, tenant_id: str, model_id: str, names: list[str]) -> None:
        desired = await self._get_or_create_tags(session, tenant_id, names)
        desired_ids = {t.id for t in desired}
        current = list(
            (await session.execute(select(ModelTag.tag_id).where(ModelTag.model_id == model_id))).scalars()
        )
        await self._unlink_model_tags(session, tenant_id, model_id, [tid for tid in current if tid not in desired_ids])
        await self._link_model_tags(session, tenant_id, model_id, desired)

    @staticmethod
    async def _link_version_tags(session: AsyncSession, version_id: str, tags: Sequence[Tag]) -> None:
        if not tags:
            return
        now = utcnow()
        await session.execute(
            insert(VersionTag),
            [{"version_id": version_id, "tag_id": t.id, "created_at": now} for t in dict.fromkeys(tags)],
        )

    @staticmethod
    async def _adjust_usage(session: AsyncSession, tenant_id: str, tag_ids: Sequence[str], delta: int) -> None:
        """usage_count += delta under row locks, floored at zero."""
        ids = list(tag_ids)
        await session.execute(
            select(Tag.id).where(tenant_where(Tag, tenant_id), Tag.id.in_(ids)).with_for_update()
        )
        new_count = case((Tag.usage_count + delta < 0, 0), else_=Tag.usage_count + delta)
        await session.execute(
            update(Tag)
            .where(tenant_where(Tag, tenant_id), Tag.id.in_(ids))
            .values(usage_count=new_count, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )


def _fold_facet(facet: dict[str, list[TagInfo]], rows: Iterable[Any]) -> dict[str, list[TagInfo]]:
    """Append (owner_id, tag_id, name, color) rows into facet, deduplicating tags by id."""
    seen: dict[str, set[str]] = {owner: set() for owner in facet}
    for owner_id, tag_id, name, color in rows:
        if owner_id not in facet or tag_id in seen[owner_id]:
            continue
        seen[owner_id].add(tag_id)
        facet[owner_id].append(TagInfo(id=tag_id, name=name, color=color))
    return facet
