"""
ScanRelay Backend - API Key & Device Schemas
============================================

Keys are only ever shown in full once, in `KeyCreatedResponse`. Every other
key representation carries the 12-character display prefix.
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Platform = Literal["ios", "android"]


# ── API Keys ──────────────────────────────────────────────────────────────

class KeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255, description="Label for the key")
    owner_email: EmailStr = Field(description="Contact address; keys sharing it are managed together")


class KeyCreatedResponse(BaseModel):
    id: uuid.UUID
    name: str
    key: str = Field(description="Raw API key. Store it now; it is never shown again.")
    key_prefix: str
    owner_email: str
    created_at: datetime

    model_config = {"from_attributes": True}


class KeyResponse(BaseModel):
    id: uuid.UUID
    name: str
    key_prefix: str = Field(description="First 12 characters of the key, for display")
    owner_email: str
    created_at: datetime
    last_used_at: Optional[datetime] = None
    is_active: bool

    model_config = {"from_attributes": True}


class KeyRevokedResponse(BaseModel):
    id: uuid.UUID
    is_active: bool = False


# ── Devices ───────────────────────────────────────────────────────────────

class DeviceInfo(BaseModel):
    """What a phone reports about itself when pairing."""
    device_token: str = Field(min_length=1, description="Opaque push notification handle")
    device_name: str = Field(min_length=1, max_length=255)
    platform: Platform


class DevicePairRequest(DeviceInfo):
    pass


class PairWithTokenRequest(DeviceInfo):
    pairing_token: str = Field(min_length=1, description="Token scanned from the dashboard QR code")


class PairWithCodeRequest(DeviceInfo):
    code: str = Field(min_length=1, description="Short code typed from the dashboard (case-insensitive)")


class DeviceResponse(BaseModel):
    id: uuid.UUID
    device_name: Optional[str] = None
    platform: str
    paired_at: datetime
    last_seen_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DeviceUnpairedResponse(BaseModel):
    id: uuid.UUID
    unpaired: bool = True


class PairingRedeemedResponse(BaseModel):
    device_id: uuid.UUID
    api_key_prefix: str
    server_url: str
    message: str
