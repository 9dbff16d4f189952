"""
ScanRelay Backend - Device Model
================================

A phone paired to exactly one API key for its whole lifetime. Unpairing
deletes the row; requests that targeted it keep existing with a NULL target.
"""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from scanrelay.database import Base, UTCDateTime, utcnow


class DevicePlatform:
    IOS = "ios"
    ANDROID = "android"

    ALL = (IOS, ANDROID)


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    api_key_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Opaque push handle (APNs / FCM token)
    device_token: Mapped[str] = mapped_column(Text, nullable=False)

    device_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    platform: Mapped[str] = mapped_column(String(20), nullable=False)

    paired_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    last_seen_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("idx_devices_api_key_id", "api_key_id"),
    )

    def __repr__(self) -> str:
        return f"<Device(id={self.id}, platform='{self.platform}', api_key_id={self.api_key_id})>"
