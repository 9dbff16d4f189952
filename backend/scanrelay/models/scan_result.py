"""
ScanRelay Backend - Scan Result Model
=====================================

What:  The artifact a device produced for a request (1:1, unique request_id).
How:   `pdf_path` is a storage handle, never shown to clients. The row and its
       blob are purged by the retention sweeper once `auto_delete_at` passes.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from scanrelay.database import Base, UTCDateTime, utcnow


class ScanResult(Base):
    __tablename__ = "scan_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("scan_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    pdf_path: Mapped[str] = mapped_column(String(512), nullable=False)

    pdf_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)

    ocr_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        server_default=text("''"),
    )

    page_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    picked_up: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    picked_up_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    auto_delete_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("idx_scan_results_auto_delete_at", "auto_delete_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScanResult(id={self.id}, request_id={self.request_id}, "
            f"pages={self.page_count}, picked_up={self.picked_up})>"
        )
