"""
ScanRelay Backend - Dashboard Service
=====================================

Read models and key/device management for a signed-in dashboard user. All
queries are scoped by `ApiKey.user_id`; the user never sees another
account's keys, devices or requests.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scanrelay.exceptions import NotFoundError
from scanrelay.models.api_key import ApiKey
from scanrelay.models.device import Device
from scanrelay.models.scan_request import RequestStatus, ScanRequest
from scanrelay.models.scan_result import ScanResult
from scanrelay.services.credential_service import CredentialService
from scanrelay.services.device_service import DeviceService

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class DashboardStats:
    total_requests: int
    completed_requests: int
    pending_requests: int
    total_devices: int
    total_keys: int


class DashboardService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _user_key_ids(self, user_id: str, active_only: bool = False):
        query = select(ApiKey.id).where(ApiKey.user_id == user_id)
        if active_only:
            query = query.where(ApiKey.is_active.is_(True))
        return query

    async def _count(self, query) -> int:
        return (await self.db.execute(query)).scalar_one()

    async def stats(self, user_id: str) -> DashboardStats:
        """Counts across the user's active keys."""
        key_ids = self._user_key_ids(user_id, active_only=True)
        requests = select(func.count(ScanRequest.id)).where(ScanRequest.api_key_id.in_(key_ids))

        return DashboardStats(
            total_requests=await self._count(requests),
            completed_requests=await self._count(
                requests.where(ScanRequest.status == RequestStatus.COMPLETED)
            ),
            pending_requests=await self._count(
                requests.where(ScanRequest.status == RequestStatus.PENDING)
            ),
            total_devices=await self._count(
                select(func.count(Device.id)).where(Device.api_key_id.in_(key_ids))
            ),
            total_keys=await self._count(
                select(func.count(ApiKey.id)).where(
                    ApiKey.user_id == user_id,
                    ApiKey.is_active.is_(True),
                )
            ),
        )

    # ── Keys ──────────────────────────────────────────────────────────────

    async def list_keys(self, user_id: str) -> List[ApiKey]:
        result = await self.db.execute(
            select(ApiKey).where(ApiKey.user_id == user_id).order_by(ApiKey.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_key(self, user_id: str, email: str, name: Optional[str] = None) -> Tuple[ApiKey, str]:
        return await CredentialService(self.db).issue(
            name=name or "Untitled Key",
            owner_email=email,
            user_id=user_id,
        )

    async def revoke_key(self, user_id: str, key_id: uuid.UUID) -> None:
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id, ApiKey.user_id == user_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(resource="key", resource_id=str(key_id), message="Key not found")
        logger.info("API key %s revoked from dashboard by user %s", key_id, user_id)

    # ── Devices ───────────────────────────────────────────────────────────

    async def list_devices(self, user_id: str) -> List[Device]:
        result = await self.db.execute(
            select(Device)
            .join(ApiKey, Device.api_key_id == ApiKey.id)
            .where(ApiKey.user_id == user_id)
            .order_by(Device.paired_at.desc())
        )
        return list(result.scalars().all())

    async def remove_device(self, user_id: str, device_id: uuid.UUID) -> None:
        owned = await self.db.execute(
            select(Device.id).where(
                Device.id == device_id,
                Device.api_key_id.in_(self._user_key_ids(user_id)),
            )
        )
        if owned.scalar_one_or_none() is None:
            raise NotFoundError(resource="device", resource_id=str(device_id))

        await DeviceService(self.db).release_held_requests(device_id)
        await self.db.execute(
            delete(Device)
            .where(Device.id == device_id)
            .execution_options(synchronize_session=False)
        )
        logger.info("Device %s removed from dashboard by user %s", device_id, user_id)

    # ── Requests ──────────────────────────────────────────────────────────

    async def list_requests(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[ScanRequest], int, int, int]:
        """One page of request history, newest first. Returns (rows, total, page, limit)."""
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))
        key_ids = self._user_key_ids(user_id)

        result = await self.db.execute(
            select(ScanRequest)
            .where(ScanRequest.api_key_id.in_(key_ids))
            .order_by(ScanRequest.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        total = await self._count(
            select(func.count(ScanRequest.id)).where(ScanRequest.api_key_id.in_(key_ids))
        )
        return list(result.scalars().all()), total, page, limit

    async def get_request(
        self,
        user_id: str,
        request_id: uuid.UUID,
    ) -> Tuple[ScanRequest, Optional[ScanResult]]:
        result = await self.db.execute(
            select(ScanRequest).where(
                ScanRequest.id == request_id,
                ScanRequest.api_key_id.in_(self._user_key_ids(user_id)),
            )
        )
        scan_request = result.scalar_one_or_none()
        if scan_request is None:
            raise NotFoundError(resource="request", resource_id=str(request_id))

        scan_result = (
            await self.db.execute(select(ScanResult).where(ScanResult.request_id == request_id))
        ).scalar_one_or_none()
        return scan_request, scan_result
