"""
ScanRelay Backend - Scan Request & Result Schemas
=================================================

What:  API contract for issuers (create/list/get/cancel, result retrieval)
       and devices (visible requests, accept/reject/complete).
Why:   Responses never expose `webhook_secret`, storage handles or the
       `is_open` bookkeeping flag.
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

StatusFilter = Literal["pending", "scanning", "completed", "expired", "cancelled"]


# ── Issuer ────────────────────────────────────────────────────────────────

class ScanRequestCreate(BaseModel):
    """
    Body of POST /api/v1/requests.

    `expires_in` bounds are re-checked in RequestService against the live
    settings; the Field bounds here document the defaults.
    """
    message: str = Field(min_length=1, max_length=2000, description="Shown to the phone user")
    device_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Target device. Omit to offer the request to every paired device.",
    )
    webhook_url: Optional[str] = Field(default=None, max_length=2048)
    webhook_secret: Optional[str] = Field(
        default=None,
        max_length=255,
        description="When set, webhooks carry X-Webhook-Signature (HMAC-SHA256 hex)",
    )
    expires_in: Optional[int] = Field(default=None, description="Seconds until expiry (60..86400, default 3600)")


class ScanRequestCreatedResponse(BaseModel):
    id: uuid.UUID
    status: str
    message: str
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class ScanRequestResponse(BaseModel):
    id: uuid.UUID
    device_id: Optional[uuid.UUID] = None
    message: str
    status: str
    webhook_url: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ScanRequestCancelledResponse(BaseModel):
    id: uuid.UUID
    status: str


class ScanResultResponse(BaseModel):
    id: uuid.UUID
    request_id: uuid.UUID
    pdf_url: str
    text_url: str
    pdf_size_bytes: int
    page_count: int
    ocr_text_preview: str = Field(description="First 500 characters of the OCR text")
    picked_up: bool
    created_at: datetime
    auto_delete_at: datetime


class ScanTextResponse(BaseModel):
    request_id: uuid.UUID
    ocr_text: str
    page_count: int


# ── Device ────────────────────────────────────────────────────────────────

class DeviceRequestItem(BaseModel):
    id: uuid.UUID
    message: str
    status: str
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class DeviceRequestStateResponse(BaseModel):
    """Returned by accept and reject."""
    id: uuid.UUID
    status: str

    model_config = {"from_attributes": True}


class ScanCompletedResponse(BaseModel):
    id: uuid.UUID = Field(description="Result id")
    request_id: uuid.UUID
    status: str
    pdf_size_bytes: int
    page_count: int
    created_at: datetime
