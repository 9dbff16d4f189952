"""
ScanRelay Backend - Credential Service
======================================

What:  API-key authentication, device authorization and key management.
How:   Keys are looked up by sha256 hash and must be active. `last_used_at`
       is stamped in the request's own transaction: yield dependencies close
       the session after background tasks have run, so a refresh from a
       second session could wait on locks the request itself holds.
Who:   Auth dependencies in routes/deps.py and the keys routes.

Ownership rule:
    A key touches a request iff request.api_key_id == key.id (`can_access`).
    Key listing and revocation are scoped to keys sharing the caller's
    owner_email; anything else reads as NotFound.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scanrelay.database import utcnow
from scanrelay.exceptions import (
    DeviceNotFoundError,
    InvalidKeyError,
    MissingDeviceIdError,
    NotFoundError,
    UnauthorizedError,
)
from scanrelay.models.api_key import ApiKey
from scanrelay.models.device import Device
from scanrelay.models.scan_request import ScanRequest
from scanrelay.security import generate_api_key, hash_api_key, key_prefix

logger = logging.getLogger(__name__)


def parse_bearer(authorization: Optional[str]) -> str:
    """Extract the raw key from `Authorization: Bearer <key>`."""
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError()
    raw_key = authorization[len("Bearer "):].strip()
    if not raw_key:
        raise UnauthorizedError()
    return raw_key


def can_access(credential: ApiKey, scan_request: ScanRequest) -> bool:
    return scan_request.api_key_id == credential.id


async def get_owned_request(
    db: AsyncSession,
    credential: ApiKey,
    request_id: uuid.UUID,
) -> ScanRequest:
    """Load a request the caller may touch; absent and foreign both raise NotFound."""
    scan_request = await db.get(ScanRequest, request_id)
    if scan_request is None or not can_access(credential, scan_request):
        raise NotFoundError(resource="request", resource_id=str(request_id))
    return scan_request


class CredentialService:
    """Per-request credential operations on the request-scoped session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def authenticate(self, raw_key: str) -> ApiKey:
        """Resolve a raw key to its active ApiKey and stamp `last_used_at`."""
        result = await self.db.execute(
            select(ApiKey).where(
                ApiKey.key_hash == hash_api_key(raw_key),
                ApiKey.is_active.is_(True),
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None:
            raise InvalidKeyError()

        # Written with the request's commit; a failed request leaves it untouched
        credential.last_used_at = utcnow()
        return credential

    async def authenticate_header(self, authorization: Optional[str]) -> ApiKey:
        return await self.authenticate(parse_bearer(authorization))

    async def authorize_device(self, credential: ApiKey, raw_device_id: Optional[str]) -> Device:
        """
        Resolve the X-Device-Id header to a device of `credential`.

        Stamps `last_seen_at` in the request transaction.
        """
        if not raw_device_id:
            raise MissingDeviceIdError()
        try:
            device_id = uuid.UUID(raw_device_id)
        except ValueError:
            raise DeviceNotFoundError()

        result = await self.db.execute(
            select(Device).where(
                Device.id == device_id,
                Device.api_key_id == credential.id,
            )
        )
        device = result.scalar_one_or_none()
        if device is None:
            raise DeviceNotFoundError()

        device.last_seen_at = utcnow()
        await self.db.flush()
        return device

    # ── Key Management ────────────────────────────────────────────────────

    async def issue(
        self,
        name: str,
        owner_email: str,
        user_id: Optional[str] = None,
    ) -> Tuple[ApiKey, str]:
        """Mint a key. The raw secret is returned here and nowhere else."""
        raw_key = generate_api_key()
        credential = ApiKey(
            name=name,
            key_hash=hash_api_key(raw_key),
            key_prefix=key_prefix(raw_key),
            owner_email=owner_email,
            user_id=user_id,
        )
        self.db.add(credential)
        await self.db.flush()
        logger.info("API key issued: %s (%s)", credential.id, credential.key_prefix)
        return credential, raw_key

    async def list_keys(self, credential: ApiKey) -> List[ApiKey]:
        result = await self.db.execute(
            select(ApiKey)
            .where(ApiKey.owner_email == credential.owner_email)
            .order_by(ApiKey.created_at.desc())
        )
        return list(result.scalars().all())

    async def revoke(self, credential: ApiKey, key_id: uuid.UUID) -> ApiKey:
        result = await self.db.execute(
            select(ApiKey).where(
                ApiKey.id == key_id,
                ApiKey.owner_email == credential.owner_email,
            )
        )
        target = result.scalar_one_or_none()
        if target is None:
            raise NotFoundError(resource="API key", resource_id=str(key_id))

        target.is_active = False
        await self.db.flush()
        logger.info("API key revoked: %s by %s", target.id, credential.id)
        return target
