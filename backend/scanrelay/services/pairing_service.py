"""
ScanRelay Backend - Pairing Coordinator
=======================================

What:  Short-lived, single-use invitations that bind a new phone to an API key.
How:   generate() inserts a PairingSession with a random token and a short
       code; the unique constraints on both columns detect collisions and the
       insert is retried with fresh values. redeem() claims the session with a
       conditional UPDATE on `used = false`, so two concurrent redemptions
       cannot both succeed.
Who:   Dashboard pairing route (generate) and the unauthenticated
       pair-with-token / pair-with-code device routes (redeem).
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scanrelay.config import settings
from scanrelay.database import utcnow
from scanrelay.exceptions import GoneError, NotFoundError, ValidationError
from scanrelay.models.api_key import ApiKey
from scanrelay.models.device import Device
from scanrelay.models.pairing_session import PairingSession
from scanrelay.security import generate_pairing_token, generate_short_code, normalize_short_code
from scanrelay.services.device_service import DeviceService

logger = logging.getLogger(__name__)

MAX_GENERATE_ATTEMPTS = 5


@dataclass
class PairingInvitation:
    token: str
    short_code: str
    qr_data: str
    expires_at: datetime


@dataclass
class PairingRedemption:
    device: Device
    api_key_prefix: str
    server_url: str
    message: str


class PairingService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.devices = DeviceService(db)

    async def _select_key(self, user_id: str, api_key_id: Optional[uuid.UUID]) -> ApiKey:
        query = select(ApiKey).where(ApiKey.user_id == user_id, ApiKey.is_active.is_(True))
        if api_key_id is not None:
            query = query.where(ApiKey.id == api_key_id)
        result = await self.db.execute(query.order_by(ApiKey.created_at.desc()).limit(1))
        credential = result.scalar_one_or_none()
        if credential is None:
            raise ValidationError(
                message="No active API key found. Create an API key first.",
                code="NO_API_KEY",
            )
        return credential

    async def generate(
        self,
        user_id: str,
        api_key_id: Optional[uuid.UUID] = None,
    ) -> PairingInvitation:
        """
        Issue a pairing session for one of the user's active keys.

        Raises:
            ValidationError (NO_API_KEY): the user has no matching active key
        """
        credential = await self._select_key(user_id, api_key_id)

        for attempt in range(1, MAX_GENERATE_ATTEMPTS + 1):
            session = PairingSession(
                user_id=user_id,
                api_key_id=credential.id,
                token=generate_pairing_token(),
                short_code=generate_short_code(),
                expires_at=utcnow() + timedelta(seconds=settings.pairing_ttl_seconds),
            )
            try:
                # A collision only rolls back this attempt's savepoint
                async with self.db.begin_nested():
                    self.db.add(session)
                break
            except IntegrityError:
                logger.warning("Pairing code collision (attempt %d), retrying", attempt)
        else:
            raise RuntimeError("Could not allocate a unique pairing code")

        qr_data = json.dumps({"server_url": settings.base_url, "pairing_token": session.token})
        logger.info("Pairing session %s generated for key %s", session.id, credential.id)
        return PairingInvitation(
            token=session.token,
            short_code=session.short_code,
            qr_data=qr_data,
            expires_at=session.expires_at,
        )

    async def redeem_token(
        self,
        token: str,
        device_token: str,
        platform: str,
        device_name: Optional[str] = None,
    ) -> PairingRedemption:
        result = await self.db.execute(
            select(PairingSession).where(PairingSession.token == token)
        )
        return await self._redeem(result.scalar_one_or_none(), "TOKEN", device_token, platform, device_name)

    async def redeem_code(
        self,
        code: str,
        device_token: str,
        platform: str,
        device_name: Optional[str] = None,
    ) -> PairingRedemption:
        result = await self.db.execute(
            select(PairingSession).where(PairingSession.short_code == normalize_short_code(code))
        )
        return await self._redeem(result.scalar_one_or_none(), "CODE", device_token, platform, device_name)

    async def _redeem(
        self,
        session: Optional[PairingSession],
        kind: str,
        device_token: str,
        platform: str,
        device_name: Optional[str],
    ) -> PairingRedemption:
        """
        Exactly-once redemption shared by token and code.

        `kind` is TOKEN or CODE and selects the error codes:
        INVALID_<kind> (404), <kind>_USED (410), <kind>_EXPIRED (410).
        """
        label = "pairing token" if kind == "TOKEN" else "pairing code"
        if session is None:
            raise NotFoundError(
                resource=label,
                message=f"Invalid {label}",
                code=f"INVALID_{kind}",
            )

        used = GoneError(message=f"This {label} has already been used", code=f"{kind}_USED")
        if session.used:
            raise used
        if session.expires_at <= utcnow():
            raise GoneError(message=f"This {label} has expired", code=f"{kind}_EXPIRED")

        claimed = await self.db.execute(
            update(PairingSession)
            .where(PairingSession.id == session.id, PairingSession.used.is_(False))
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise used

        device = await self.devices.register(
            api_key_id=session.api_key_id,
            device_token=device_token,
            platform=platform,
            device_name=device_name,
        )
        await self.db.execute(
            update(PairingSession)
            .where(PairingSession.id == session.id)
            .values(device_id=device.id)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(session)

        credential = await self.db.get(ApiKey, session.api_key_id)
        logger.info("Pairing session %s redeemed by device %s", session.id, device.id)
        return PairingRedemption(
            device=device,
            api_key_prefix=credential.key_prefix,
            server_url=settings.base_url,
            message="Device paired successfully. Use your API key to authenticate requests.",
        )
