"""Catalog DTOs. These are the shapes returned to callers and stored in the cache (model_dump(mode="json"))."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

SortBy = Literal["name", "created_at", "updated_at", "size"]
SortOrder = Literal["asc", "desc"]


class ModelListQuery(BaseModel):
    """Filter, sort and page for list_models. tenant_id is never part of the query; it comes from context."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    search: str | None = None
    tags: list[str] | None = None
    sort_by: SortBy = "updated_at"
    sort_order: SortOrder = "desc"

    @field_validator("search")
    @classmethod
    def _blank_search_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        cleaned = [t.strip() for t in v if t and t.strip()]
        return cleaned or None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class BoundingBox(BaseModel):
    model_config = ConfigDict(extra="forbid")

    width: float
    height: float
    depth: float


class ModelFile(BaseModel):
    """A file inside a version. download_url is attached by the query service."""

    model_config = ConfigDict(extra="forbid")

    id: str
    filename: str
    original_name: str
    size: int
    mime_type: str
    extension: str
    storage_key: str
    storage_bucket: str
    bounding_box: BoundingBox | None = None
    triangle_count: int | None = None
    is_manifold: bool | None = None
    is_closed: bool | None = None
    processing_status: str = "pending"
    download_url: str | None = None


class ModelMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    print_settings: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class ModelVersion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    version: str
    files: list[ModelFile] = Field(default_factory=list)
    metadata: ModelMetadata
    thumbnail_path: str | None = None
    created_at: datetime


class Model(BaseModel):
    """Assembled model: at most the five most recent versions, newest first."""

    model_config = ConfigDict(extra="forbid")

    id: str
    slug: str
    current_version: str
    versions: list[ModelVersion] = Field(default_factory=list)
    total_versions: int
    latest_metadata: ModelMetadata
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: int
    limit: int
    total: int
    total_pages: int


class ModelListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    models: list[Model] = Field(default_factory=list)
    pagination: Pagination


class VersionPage(BaseModel):
    """Response for get_model_versions_paginated."""

    model_config = ConfigDict(extra="forbid")

    versions: list[ModelVersion] = Field(default_factory=list)
    has_more: bool
    total: int


class LargestFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    size: int


class ModelStatistics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_size: int = 0
    total_files: int = 0
    total_versions: int = 0
    average_file_size: int = 0
    file_types: dict[str, int] = Field(default_factory=dict)
    largest_file: LargestFile | None = None
    last_updated: datetime
