"""catalog_models table. One row per model; tenant-scoped, slug unique per tenant, soft-deletable."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from apps.catalog.models.base import Base, new_id, utcnow


class CatalogModel(Base):
    __tablename__ = "catalog_models"
    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_catalog_models_tenant_slug"),
        Index("ix_catalog_models_tenant_deleted_updated", "tenant_id", "deleted_at", "updated_at"),
        Index("ix_catalog_models_name", "name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)  # indexed via __table_args__
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)  # audit trail only
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_version: Mapped[str] = mapped_column(String(32), nullable=False, default="v1")
    total_versions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    # Tombstone: non-null rows are invisible to every catalog query.
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
