"""
ScanRelay Backend - Dashboard Schemas
=====================================

Shapes for the session-authenticated dashboard routes, including pairing
session generation.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from scanrelay.schemas.scan import ScanRequestResponse


class PairingGenerateRequest(BaseModel):
    api_key_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Key the device will join. Defaults to the newest active key.",
    )


class PairingGenerateResponse(BaseModel):
    token: str = Field(description="Long single-use token, encoded in the QR code")
    short_code: str = Field(description="XXXX-XXXX code for manual entry")
    qr_data: str = Field(description="JSON {server_url, pairing_token}")
    expires_at: datetime


class StatsResponse(BaseModel):
    total_requests: int
    completed_requests: int
    pending_requests: int
    total_devices: int
    total_keys: int


class DashboardKeyCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)


class DashboardKeyItem(BaseModel):
    id: uuid.UUID
    name: str
    key_prefix: str
    created_at: datetime
    last_used_at: Optional[datetime] = None
    is_active: bool

    model_config = {"from_attributes": True}


class DashboardKeyList(BaseModel):
    keys: List[DashboardKeyItem]


class DashboardKeyCreatedResponse(BaseModel):
    id: uuid.UUID
    name: str
    key: str
    key_prefix: str
    created_at: datetime


class DashboardDeviceItem(BaseModel):
    id: uuid.UUID
    device_name: Optional[str] = None
    platform: str
    paired_at: datetime
    last_seen_at: Optional[datetime] = None
    api_key_id: uuid.UUID

    model_config = {"from_attributes": True}


class DashboardDeviceList(BaseModel):
    devices: List[DashboardDeviceItem]


class DashboardRequestPage(BaseModel):
    requests: List[ScanRequestResponse]
    total: int
    page: int
    limit: int


class DashboardResultItem(BaseModel):
    id: uuid.UUID
    request_id: uuid.UUID
    pdf_size_bytes: int
    ocr_text: str
    page_count: int
    picked_up: bool
    picked_up_at: Optional[datetime] = None
    created_at: datetime
    auto_delete_at: datetime

    model_config = {"from_attributes": True}


class DashboardRequestDetail(BaseModel):
    request: ScanRequestResponse
    result: Optional[DashboardResultItem] = None
