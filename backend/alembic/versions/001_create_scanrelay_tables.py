"""Create scan relay tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  api_keys, devices, scan_requests, scan_results, pairing_sessions.
How:   Portable column types (sa.Uuid, timezone-aware timestamps) so the same
       migration runs on PostgreSQL and SQLite.

Foreign keys:
    devices.api_key_id            → api_keys      CASCADE
    scan_requests.api_key_id      → api_keys      RESTRICT (keys are soft-deleted)
    scan_requests.device_id       → devices       SET NULL
    scan_results.request_id       → scan_requests CASCADE (unique: one result per request)
    pairing_sessions.api_key_id   → api_keys      CASCADE
    pairing_sessions.device_id    → devices       SET NULL
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("key_hash", sa.String(64), nullable=False, comment="sha256 hex of the raw key"),
        sa.Column("key_prefix", sa.String(16), nullable=False),
        sa.Column("owner_email", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True, comment="Dashboard account, if any"),
        _created_at(),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key_hash"),
    )
    op.create_index("idx_api_keys_user_id", "api_keys", ["user_id"])
    op.create_index("idx_api_keys_owner_email", "api_keys", ["owner_email"])

    op.create_table(
        "devices",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("api_key_id", sa.Uuid(), nullable=False),
        sa.Column("device_token", sa.Text(), nullable=False, comment="Opaque push handle"),
        sa.Column("device_name", sa.String(255), nullable=True),
        sa.Column("platform", sa.String(20), nullable=False),
        _created_at("paired_at"),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["api_key_id"], ["api_keys.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_devices_api_key_id", "devices", ["api_key_id"])

    op.create_table(
        "scan_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("api_key_id", sa.Uuid(), nullable=False),
        sa.Column("device_id", sa.Uuid(), nullable=True, comment="Target device; NULL = open"),
        sa.Column("is_open", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("webhook_url", sa.Text(), nullable=True),
        sa.Column("webhook_secret", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["api_key_id"], ["api_keys.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_scan_requests_api_key_status", "scan_requests", ["api_key_id", "status"])
    op.create_index("idx_scan_requests_status_expires", "scan_requests", ["status", "expires_at"])
    op.create_index("idx_scan_requests_created_at", "scan_requests", [sa.text("created_at DESC")])

    op.create_table(
        "scan_results",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("pdf_path", sa.String(512), nullable=False, comment="Storage handle"),
        sa.Column("pdf_size_bytes", sa.Integer(), nullable=False),
        sa.Column("ocr_text", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("page_count", sa.Integer(), server_default=sa.text("1"), nullable=False),
        _created_at(),
        sa.Column("picked_up", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_delete_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["request_id"], ["scan_requests.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id"),
    )
    op.create_index("idx_scan_results_auto_delete_at", "scan_results", ["auto_delete_at"])

    op.create_table(
        "pairing_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("api_key_id", sa.Uuid(), nullable=False),
        sa.Column("token", sa.String(64), nullable=False),
        sa.Column("short_code", sa.String(9), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("device_id", sa.Uuid(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["api_key_id"], ["api_keys.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
        sa.UniqueConstraint("short_code"),
    )
    op.create_index("idx_pairing_sessions_user_id", "pairing_sessions", ["user_id"])


def downgrade() -> None:
    """Drops every table. Stored blobs on disk are left untouched."""
    op.drop_index("idx_pairing_sessions_user_id", table_name="pairing_sessions")
    op.drop_table("pairing_sessions")
    op.drop_index("idx_scan_results_auto_delete_at", table_name="scan_results")
    op.drop_table("scan_results")
    op.drop_index("idx_scan_requests_created_at", table_name="scan_requests")
    op.drop_index("idx_scan_requests_status_expires", table_name="scan_requests")
    op.drop_index("idx_scan_requests_api_key_status", table_name="scan_requests")
    op.drop_table("scan_requests")
    op.drop_index("idx_devices_api_key_id", table_name="devices")
    op.drop_table("devices")
    op.drop_index("idx_api_keys_owner_email", table_name="api_keys")
    op.drop_index("idx_api_keys_user_id", table_name="api_keys")
    op.drop_table("api_keys")
