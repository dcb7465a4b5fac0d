"""Catalog schema: catalog_models, model_versions, model_files, tags, model_tags, version_tags, catalog_cache.

Includes the list-performance indexes (tenant + tombstone + sort column, tag lookups, file extension).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "000_catalog"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # 1) catalog_models (everything else hangs off it)
    op.create_table(
        "catalog_models",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=True),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("current_version", sa.String(32), nullable=False, server_default="v1"),
        sa.Column("total_versions", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_catalog_models_tenant_slug"),
    )
    op.create_index(
        "ix_catalog_models_tenant_deleted_updated",
        "catalog_models",
        ["tenant_id", "deleted_at", "updated_at"],
        if_not_exists=True,
    )
    op.create_index("ix_catalog_models_name", "catalog_models", ["name"], if_not_exists=True)

    # 2) model_versions
    op.create_table(
        "model_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("model_id", sa.String(36), sa.ForeignKey("catalog_models.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version", sa.String(32), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("thumbnail_path", sa.Text(), nullable=True),
        sa.Column("print_settings", JSONB(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("model_id", "version", name="uq_model_versions_model_version"),
    )
    op.create_index(
        "ix_model_versions_model_created", "model_versions", ["model_id", "created_at"], if_not_exists=True
    )

    # 3) model_files
    op.create_table(
        "model_files",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("version_id", sa.String(36), sa.ForeignKey("model_versions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False),
        sa.Column("extension", sa.String(32), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False, unique=True),
        sa.Column("storage_bucket", sa.String(255), nullable=False),
        sa.Column("file_metadata", JSONB(), nullable=True),
        sa.Column("processing_status", sa.String(32), nullable=False, server_default="pending"),
        *_timestamps(),
    )
    op.create_index("ix_model_files_version_id", "model_files", ["version_id"], if_not_exists=True)
    op.create_index("ix_model_files_extension", "model_files", ["extension"], if_not_exists=True)

    # 4) tags and links
    op.create_table(
        "tags",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("color", sa.String(32), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "name", name="uq_tags_tenant_name"),
    )
    op.create_index("ix_tags_tenant_usage", "tags", ["tenant_id", "usage_count"], if_not_exists=True)

    op.create_table(
        "model_tags",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("model_id", sa.String(36), sa.ForeignKey("catalog_models.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tag_id", sa.String(36), sa.ForeignKey("tags.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("model_id", "tag_id", name="uq_model_tags_model_tag"),
    )
    op.create_index("ix_model_tags_model_id", "model_tags", ["model_id"], if_not_exists=True)
    op.create_index("ix_model_tags_tag_model", "model_tags", ["tag_id", "model_id"], if_not_exists=True)

    op.create_table(
        "version_tags",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("version_id", sa.String(36), sa.ForeignKey("model_versions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tag_id", sa.String(36), sa.ForeignKey("tags.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("version_id", "tag_id", name="uq_version_tags_version_tag"),
    )
    op.create_index("ix_version_tags_version_id", "version_tags", ["version_id"], if_not_exists=True)
    op.create_index("ix_version_tags_tag_version", "version_tags", ["tag_id", "version_id"], if_not_exists=True)

    # 5) catalog_cache (SqlCache backend)
    op.create_table(
        "catalog_cache",
        sa.Column("cache_key", sa.String(512), primary_key=True),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_catalog_cache_expires_at", "catalog_cache", ["expires_at"], if_not_exists=True)


def downgrade() -> None:
    op.drop_index("ix_catalog_cache_expires_at", table_name="catalog_cache")
    op.drop_table("catalog_cache")
    op.drop_index("ix_version_tags_tag_version", table_name="version_tags")
    op.drop_index("ix_version_tags_version_id", table_name="version_tags")
    op.drop_table("version_tags")
    op.drop_index("ix_model_tags_tag_model", table_name="model_tags")
    op.drop_index("ix_model_tags_model_id", table_name="model_tags")
    op.drop_table("model_tags")
    op.drop_index("ix_tags_tenant_usage", table_name="tags")
    op.drop_table("tags")
    op.drop_index("ix_model_files_extension", table_name="model_files")
    op.drop_index("ix_model_files_version_id", table_name="model_files")
    op.drop_table("model_files")
    op.drop_index("ix_model_versions_model_created", table_name="model_versions")
    op.drop_table("model_versions")
    op.drop_index("ix_catalog_models_name", table_name="catalog_models")
    op.drop_index("ix_catalog_models_tenant_deleted_updated", table_name="catalog_models")
    op.drop_table("catalog_models")
