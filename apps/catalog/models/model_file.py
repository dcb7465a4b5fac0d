"""model_files table. storage_key is globally unique and the only handle on the binary payload.

file_metadata holds derived geometry when processing succeeded:
  bounding_box {width, height, depth}, triangle_count, is_manifold, is_closed.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from apps.catalog.models.base import Base, JSONType, new_id, utcnow


class ModelFile(Base):
    __tablename__ = "model_files"
    __table_args__ = (
        Index("ix_model_files_version_id", "version_id"),
        Index("ix_model_files_extension", "extension"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    version_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("model_versions.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    extension: Mapped[str] = mapped_column(String(32), nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    storage_bucket: Mapped[str] = mapped_column(String(255), nullable=False)
    file_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    processing_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
