"""
ScanRelay Backend - Scan Request Model
======================================

What:  One unit of work: "please scan a document and send it back".

State machine (initial pending; terminal completed, cancelled, expired):

    pending  ──accept──▶  scanning  ──complete──▶  completed
       │                     │
       │ reject (targeted)   │ reject: open → pending, targeted → cancelled
       ▼                     ▼
    cancelled ◀──cancel── (any state)
    pending ──[expires_at elapsed]──▶ expired

`device_id` is the target device. NULL means "open to any device paired to
this key". `is_open` remembers whether the request was created open, since
`device_id` is overwritten by whichever device claims it.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from scanrelay.database import Base, UTCDateTime, utcnow


class RequestStatus:
    PENDING = "pending"
    SCANNING = "scanning"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"



class ScanRequest(Base):
    __tablename__ = "scan_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # RESTRICT: keys are soft-deleted, so requests always keep their owner
    api_key_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="RESTRICT"),
        nullable=False,
    )

    device_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("devices.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_open: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    message: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=text("'pending'"),
    )

    webhook_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(Text, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("idx_scan_requests_api_key_status", "api_key_id", "status"),
        Index("idx_scan_requests_status_expires", "status", "expires_at"),
        Index("idx_scan_requests_created_at", created_at.desc()),
    )

    def is_past_expiry(self, now: datetime) -> bool:
        return self.status == RequestStatus.PENDING and self.expires_at <= now

    def __repr__(self) -> str:
        return f"<ScanRequest(id={self.id}, status='{self.status}', device_id={self.device_id})>"
