"""Input and result shapes for catalog writes."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NewFile(BaseModel):
    """A file already uploaded to object storage, to be recorded with its version."""

    model_config = ConfigDict(extra="forbid")

    filename: str
    original_name: str
    size: int = Field(ge=0)
    mime_type: str = "application/octet-stream"
    extension: str
    storage_key: str
    storage_bucket: str
    file_metadata: dict[str, Any] | None = None
    processing_status: str = "pending"


class CreateModelInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    description: str | None = None
    owner_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    files: list[NewFile] = Field(default_factory=list)
    print_settings: dict[str, Any] | None = None
    thumbnail_path: str | None = None


class AddVersionInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    files: list[NewFile] = Field(default_factory=list)
    print_settings: dict[str, Any] | None = None
    thumbnail_path: str | None = None


class UpdateModelMetadata(BaseModel):
    """Partial update. None means unchanged; tags replaces the whole tag set when given."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    tags: list[str] | None = None


class MutationResult(BaseModel):
    """Outcome of a write. cache_invalidated=False means the store changed but stale reads are possible until TTL."""

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    model_id: str
    version: str | None = None
    deleted_storage_keys: list[str] = Field(default_factory=list)
    cache_invalidated: bool = True
