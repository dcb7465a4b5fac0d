"""Fold fanned-out repository rows into Model -> Version -> File DTOs.

One pass over the rows fills id-keyed maps (models, versions per model, files per version,
tags per model). Duplicates produced by the join are dropped on insert, so the output has
exactly one entry per model id, version id, file id and tag id no matter how many times
each arrived.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from apps.catalog.models.catalog_model import CatalogModel
from apps.catalog.models.model_file import ModelFile as ModelFileRow
from apps.catalog.models.model_version import ModelVersion as ModelVersionRow
from apps.catalog.repositories.model_repository import ModelRow
from apps.catalog.schemas.models import (
    BoundingBox,
    Model,
    ModelFile,
    ModelMetadata,
    ModelVersion,
    Pagination,
)
from apps.catalog.schemas.tags import TagInfo
from apps.catalog.utils.version_labels import version_sort_key

MAX_VERSIONS_PER_MODEL = 5

TagFacet = Mapping[str, Sequence[TagInfo]]


@dataclass
class _Accumulator:
    models: dict[str, CatalogModel] = field(default_factory=dict)
    versions: dict[str, dict[str, ModelVersionRow]] = field(default_factory=dict)
    files: dict[str, dict[str, ModelFileRow]] = field(default_factory=dict)
    tags: dict[str, dict[str, TagInfo]] = field(default_factory=dict)

    def add(self, row: ModelRow) -> None:
        model = row.model
        # First-seen wins for scalar model fields.
        if model.id not in self.models:
            self.models[model.id] = model
            self.versions[model.id] = {}
            self.tags[model.id] = {}
        if row.version is not None:
            self.versions[model.id].setdefault(row.version.id, row.version)
            version_files = self.files.setdefault(row.version.id, {})
            if row.file is not None:
                version_files.setdefault(row.file.id, row.file)
        if row.tag is not None:
            self.tags[model.id].setdefault(row.tag.id, TagInfo(id=row.tag.id, name=row.tag.name, color=row.tag.color))


def _accumulate(rows: Iterable[ModelRow]) -> _Accumulator:
    acc = _Accumulator()
    for row in rows:
        acc.add(row)
    return acc


def _newest_first(versions: Iterable[ModelVersionRow]) -> list[ModelVersionRow]:
    return sorted(versions, key=lambda v: (v.created_at, version_sort_key(v.version)), reverse=True)


def to_file_dto(row: ModelFileRow) -> ModelFile:
    meta = row.file_metadata or {}
    bbox = meta.get("bounding_box") or meta.get("boundingBox")
    return ModelFile(
        id=row.id,
        filename=row.filename,
        original_name=row.original_name,
        size=int(row.size),
        mime_type=row.mime_type,
        extension=row.extension,
        storage_key=row.storage_key,
        storage_bucket=row.storage_bucket,
        bounding_box=BoundingBox.model_validate(bbox) if bbox else None,
        triangle_count=meta.get("triangle_count", meta.get("triangleCount")),
        is_manifold=meta.get("is_manifold", meta.get("isManifold")),
        is_closed=meta.get("is_closed", meta.get("isClosed")),
        processing_status=row.processing_status,
    )


def _version_dto(version: ModelVersionRow, files: Mapping[str, ModelFileRow], tags: Sequence[TagInfo]) -> ModelVersion:
    return ModelVersion(
        id=version.id,
        version=version.version,
        files=[to_file_dto(f) for f in sorted(files.values(), key=lambda f: (f.filename, f.id))],
        metadata=ModelMetadata(
            name=version.name,
            description=version.description,
            tags=[t.name for t in tags],
            print_settings=version.print_settings,
            created_at=version.created_at,
            updated_at=version.updated_at,
        ),
        thumbnail_path=version.thumbnail_path,
        created_at=version.created_at,
    )


def _tags_for_version(version_id: str, version_tags: TagFacet | None, model_tags: Sequence[TagInfo]) -> list[TagInfo]:
    # A facet entry, even an empty one, is authoritative for the version.
    if version_tags is not None and version_id in version_tags:
        return list(version_tags[version_id])
    return list(model_tags)


def _assemble(
    acc: _Accumulator,
    model_id: str,
    model_tags: TagFacet | None,
    version_tags: TagFacet | None,
) -> Model:
    model = acc.models[model_id]
    if model_tags is not None and model_id in model_tags:
        tags = list(model_tags[model_id])
    else:
        tags = list(acc.tags[model_id].values())

    retained = _newest_first(acc.versions[model_id].values())[:MAX_VERSIONS_PER_MODEL]
    versions = [
        _version_dto(v, acc.files.get(v.id, {}), _tags_for_version(v.id, version_tags, tags)) for v in retained
    ]

    latest = next((v for v in versions if v.version == model.current_version), None)
    if latest is None and versions:
        latest = versions[0]
    if latest is not None:
        latest_metadata = latest.metadata
    else:
        latest_metadata = ModelMetadata(
            name=model.name,
            description=model.description,
            tags=[t.name for t in tags],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    return Model(
        id=model.id,
        slug=model.slug,
        current_version=model.current_version,
        versions=versions,
        total_versions=model.total_versions,
        latest_metadata=latest_metadata,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def transform_to_models(
    rows: Sequence[ModelRow],
    model_tags: TagFacet | None = None,
    version_tags: TagFacet | None = None,
) -> list[Model]:
    """List view. Models keep row order (the page order); models without versions are dropped."""
    acc = _accumulate(rows)
    return [_assemble(acc, mid, model_tags, version_tags) for mid in acc.models if acc.versions[mid]]


def transform_to_model(
    rows: Sequence[ModelRow],
    model_tags: TagFacet | None = None,
    version_tags: TagFacet | None = None,
) -> Model | None:
    """Single-model view. A model with zero versions is still returned. None when rows is empty."""
    acc = _accumulate(rows)
    if not acc.models:
        return None
    return _assemble(acc, next(iter(acc.models)), model_tags, version_tags)


def transform_to_versions(
    rows: Sequence[ModelRow],
    version_tags: TagFacet | None = None,
    model_tags: TagFacet | None = None,
) -> list[ModelVersion]:
    """Paginated version view: every version in rows, newest first, no cap."""
    acc = _accumulate(rows)
    out: list[ModelVersion] = []
    for model_id, versions in acc.versions.items():
        fallback = list(model_tags.get(model_id, ())) if model_tags is not None else []
        for v in _newest_first(versions.values()):
            out.append(_version_dto(v, acc.files.get(v.id, {}), _tags_for_version(v.id, version_tags, fallback)))
    return out


def extract_total(rows: Sequence[ModelRow]) -> int | None:
    """Window total carried on the rows, or None when there are no rows to carry it."""
    return rows[0].total_count if rows else None


def build_pagination(total: int, page: int, limit: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0)


def model_ids(rows: Iterable[ModelRow]) -> list[str]:
    return list(dict.fromkeys(r.model.id for r in rows))


def version_ids(rows: Iterable[ModelRow]) -> list[str]:
    return list(dict.fromkeys(r.version.id for r in rows if r.version is not None))
