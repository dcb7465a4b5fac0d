"""catalog_cache model. Backing table for SqlCache: opaque key -> JSON payload with expiry."""

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from apps.catalog.models.base import Base


class CacheEntry(Base):
    """Cached catalog payloads keyed by the catalog's own deterministic keys."""

    __tablename__ = "catalog_cache"
    __table_args__ = (Index("ix_catalog_cache_expires_at", "expires_at"),)

    cache_key: Mapped[str] = mapped_column(String(512), primary_key=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
