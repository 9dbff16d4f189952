"""
ScanRelay Backend - Device Service
==================================

Direct pairing (a device that already holds the raw key), listing and
unpairing. Token/code pairing lives in pairing_service.py.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scanrelay.exceptions import NotFoundError
from scanrelay.models.api_key import ApiKey
from scanrelay.models.device import Device
from scanrelay.models.scan_request import RequestStatus, ScanRequest

logger = logging.getLogger(__name__)


class DeviceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(
        self,
        api_key_id: uuid.UUID,
        device_token: str,
        platform: str,
        device_name: Optional[str] = None,
    ) -> Device:
        device = Device(
            api_key_id=api_key_id,
            device_token=device_token,
            device_name=device_name,
            platform=platform,
        )
        self.db.add(device)
        await self.db.flush()
        logger.info("Device paired: %s (%s) to key %s", device.id, platform, api_key_id)
        return device

    async def list_devices(self, credential: ApiKey) -> List[Device]:
        result = await self.db.execute(
            select(Device)
            .where(Device.api_key_id == credential.id)
            .order_by(Device.paired_at.desc())
        )
        return list(result.scalars().all())

    async def release_held_requests(self, device_id: uuid.UUID) -> None:
        """
        Release requests a device is scanning, the way a reject would: open
        ones return to the pool, targeted ones are cancelled.
        """
        held = (
            ScanRequest.device_id == device_id,
            ScanRequest.status == RequestStatus.SCANNING,
        )
        reopened = await self.db.execute(
            update(ScanRequest)
            .where(*held, ScanRequest.is_open.is_(True))
            .values(status=RequestStatus.PENDING, device_id=None)
            .execution_options(synchronize_session=False)
        )
        cancelled = await self.db.execute(
            update(ScanRequest)
            .where(*held, ScanRequest.is_open.is_(False))
            .values(status=RequestStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        if reopened.rowcount or cancelled.rowcount:
            logger.info(
                "Released requests held by device %s: %d reopened, %d cancelled",
                device_id,
                reopened.rowcount,
                cancelled.rowcount,
            )

    async def unpair(self, credential: ApiKey, device_id: uuid.UUID) -> uuid.UUID:
        """
        Hard-delete the device after releasing what it was scanning. Pending
        requests targeting it keep a NULL target and open up to the key's
        other devices.
        """
        owned = await self.db.execute(
            select(Device.id).where(Device.id == device_id, Device.api_key_id == credential.id)
        )
        if owned.scalar_one_or_none() is None:
            raise NotFoundError(resource="device", resource_id=str(device_id))

        await self.release_held_requests(device_id)
        await self.db.execute(
            delete(Device)
            .where(Device.id == device_id)
            .execution_options(synchronize_session=False)
        )
        logger.info("Device unpaired: %s", device_id)
        return device_id
