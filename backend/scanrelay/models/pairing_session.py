"""
ScanRelay Backend - Pairing Session Model
=========================================

A five-minute, single-use invitation for a phone to join an API key. The
dashboard shows `token` as a QR code and `short_code` as text; a device
redeems either one. Uniqueness on both columns is what prevents collisions.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from scanrelay.database import Base, UTCDateTime, utcnow


class PairingSession(Base):
    __tablename__ = "pairing_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    api_key_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
    )

    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    short_code: Mapped[str] = mapped_column(String(9), nullable=False, unique=True)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    device_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("devices.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_pairing_sessions_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<PairingSession(id={self.id}, code='{self.short_code}', used={self.used})>"
