"""
ScanRelay Backend - API Key Model
=================================

What:  The credential an issuer (or a paired device) presents as a Bearer token.
How:   Only the SHA-256 hex of the raw key is stored; the first 12 characters
       are kept separately for display. Revocation flips `is_active`; rows are
       never deleted while devices or requests reference them.

Query Patterns:
    - Authenticate: WHERE key_hash = :hash AND is_active  → unique index
    - Dashboard:    WHERE user_id = :user AND is_active
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from scanrelay.database import Base, UTCDateTime, utcnow


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    key_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="sha256 hex of the raw key; the raw key is never stored",
    )

    key_prefix: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Leading slice of the raw key, safe to display",
    )

    owner_email: Mapped[str] = mapped_column(String(255), nullable=False)

    # Dashboard account that owns the key (external identity, may be unset
    # for keys minted by the seed CLI or another key)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    __table_args__ = (
        Index("idx_api_keys_user_id", "user_id"),
        Index("idx_api_keys_owner_email", "owner_email"),
    )

    def __repr__(self) -> str:
        return f"<ApiKey(id={self.id}, prefix='{self.key_prefix}', active={self.is_active})>"
