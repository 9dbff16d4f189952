"""
ScanRelay Backend - Request Lifecycle Engine
============================================

What:  The scan-request state machine: create, list, get, cancel for the
       issuer; list-visible, accept, reject, complete for devices.
How:   Every transition that can race (accept, reject) is a conditional
       UPDATE whose WHERE clause re-checks the current status, so the database
       picks exactly one winner across handlers and processes. No in-process
       locks are used.
Who:   routes/requests.py and routes/device_api.py, via deps.get_request_service.

Transitions:
    pending   --accept-->    scanning   (unexpired only; expired → persisted `expired` + Gone)
    pending   --reject-->    pending    (open request, no-op)
    pending   --reject-->    cancelled  (request targeted at the rejecting device)
    scanning  --reject-->    pending    (was open before the claim; re-offered)
    scanning  --reject-->    cancelled  (was targeted; never re-offered)
    scanning  --complete-->  completed  (result attached, webhook scheduled)
    any       --cancel-->    cancelled  (unconditional, even over completed)
    pending   --[expiry]-->  expired    (lazily on read, eagerly by the sweeper)

Expiry on reads:
    get_request persists the correction. list_requests corrects rows in
    memory only, on detached copies, so a listing never writes.
"""

import logging
import uuid
from datetime import timedelta
from typing import List, Optional, Tuple, Union

from fastapi import BackgroundTasks
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scanrelay.config import settings
from scanrelay.database import utcnow
from scanrelay.exceptions import GoneError, NotFoundError, ValidationError
from scanrelay.models.api_key import ApiKey
from scanrelay.models.device import Device
from scanrelay.models.scan_request import RequestStatus, ScanRequest
from scanrelay.models.scan_result import ScanResult
from scanrelay.services.credential_service import get_owned_request
from scanrelay.services.delivery_service import DeliveryService
from scanrelay.services.push_service import PushNotifier, notify_new_request

logger = logging.getLogger(__name__)


class RequestService:
    """
    Lifecycle operations for one request scope.

    Args:
        db: Request-scoped session
        delivery: Result pipeline, required only for complete()
        notifier: Push provider for new-request notifications (optional)
        session_factory: Lets the push fan-out open its own session
        tasks: Where push notifications are scheduled
    """

    def __init__(
        self,
        db: AsyncSession,
        delivery: Optional[DeliveryService] = None,
        notifier: Optional[PushNotifier] = None,
        session_factory: Optional[async_sessionmaker] = None,
        tasks: Optional[BackgroundTasks] = None,
    ):
        self.db = db
        self.delivery = delivery
        self.notifier = notifier
        self.session_factory = session_factory
        self.tasks = tasks

    # ── Issuer Operations ─────────────────────────────────────────────────

    async def create(
        self,
        credential: ApiKey,
        message: str,
        expires_in: Optional[int] = None,
        device_id: Optional[uuid.UUID] = None,
        webhook_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ) -> ScanRequest:
        """
        File a new pending request.

        Raises:
            ValidationError: expires_in outside the configured bounds
            NotFoundError (DEVICE_NOT_FOUND): device_id is not paired to this key
        """
        if expires_in is None:
            expires_in = settings.default_expires_in
        if not settings.min_expires_in <= expires_in <= settings.max_expires_in:
            raise ValidationError(
                message=(
                    f"expires_in must be between {settings.min_expires_in} "
                    f"and {settings.max_expires_in} seconds"
                ),
                field="expires_in",
            )

        if device_id is not None:
            device = await self.db.get(Device, device_id)
            if device is None or device.api_key_id != credential.id:
                raise NotFoundError(
                    resource="device",
                    resource_id=str(device_id),
                    message="Device not found",
                    code="DEVICE_NOT_FOUND",
                )

        scan_request = ScanRequest(
            api_key_id=credential.id,
            device_id=device_id,
            is_open=device_id is None,
            message=message,
            status=RequestStatus.PENDING,
            webhook_url=webhook_url,
            webhook_secret=webhook_secret,
            expires_at=utcnow() + timedelta(seconds=expires_in),
        )
        self.db.add(scan_request)
        await self.db.flush()
        logger.info(
            "Request %s created by key %s (target=%s, expires_in=%ds)",
            scan_request.id,
            credential.key_prefix,
            device_id or "any",
            expires_in,
        )

        await self._notify_devices(credential.id, scan_request)
        return scan_request

    async def _notify_devices(self, api_key_id: uuid.UUID, scan_request: ScanRequest) -> None:
        if self.notifier is None or self.session_factory is None:
            return
        args = (
            self.session_factory,
            self.notifier,
            api_key_id,
            scan_request.id,
            scan_request.message,
            scan_request.device_id,
        )
        if self.tasks is not None:
            self.tasks.add_task(notify_new_request, *args)
        else:
            await notify_new_request(*args)

    async def list_requests(
        self,
        credential: ApiKey,
        status: Optional[str] = None,
    ) -> List[ScanRequest]:
        """
        The caller's requests, newest first, with effective status applied.

        The status filter matches effective status: `pending` excludes rows
        past expiry, `expired` includes them.
        """
        now = utcnow()
        query = select(ScanRequest).where(ScanRequest.api_key_id == credential.id)

        if status == RequestStatus.PENDING:
            query = query.where(
                ScanRequest.status == RequestStatus.PENDING,
                ScanRequest.expires_at > now,
            )
        elif status == RequestStatus.EXPIRED:
            query = query.where(
                or_(
                    ScanRequest.status == RequestStatus.EXPIRED,
                    and_(
                        ScanRequest.status == RequestStatus.PENDING,
                        ScanRequest.expires_at <= now,
                    ),
                )
            )
        elif status is not None:
            query = query.where(ScanRequest.status == status)

        result = await self.db.execute(query.order_by(ScanRequest.created_at.desc()))
        requests = list(result.scalars().all())

        for scan_request in requests:
            if scan_request.is_past_expiry(now):
                # Detached so the correction is never flushed
                self.db.expunge(scan_request)
                scan_request.status = RequestStatus.EXPIRED
        return requests

    async def get_request(self, credential: ApiKey, request_id: uuid.UUID) -> ScanRequest:
        scan_request = await get_owned_request(self.db, credential, request_id)
        await self._expire_if_due(scan_request)
        return scan_request

    async def cancel(self, credential: ApiKey, request_id: uuid.UUID) -> ScanRequest:
        """Unconditional: a completed or expired request is overwritten too."""
        scan_request = await get_owned_request(self.db, credential, request_id)
        previous = scan_request.status
        scan_request.status = RequestStatus.CANCELLED
        await self.db.flush()
        logger.info("Request %s cancelled (was %s)", request_id, previous)
        return scan_request

    async def _expire_if_due(self, scan_request: ScanRequest) -> bool:
        """Persist pending → expired when past expiry. Returns whether it is now expired."""
        now = utcnow()
        if not scan_request.is_past_expiry(now):
            return scan_request.status == RequestStatus.EXPIRED

        await self.db.execute(
            update(ScanRequest)
            .where(
                ScanRequest.id == scan_request.id,
                ScanRequest.status == RequestStatus.PENDING,
            )
            .values(status=RequestStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(scan_request)
        logger.info("Request %s expired on read", scan_request.id)
        return scan_request.status == RequestStatus.EXPIRED

    # ── Device Operations ─────────────────────────────────────────────────

    async def list_for_device(self, device: Device) -> List[ScanRequest]:
        """Pending, unexpired requests that are open or targeted at this device."""
        result = await self.db.execute(
            select(ScanRequest)
            .where(
                ScanRequest.api_key_id == device.api_key_id,
                ScanRequest.status == RequestStatus.PENDING,
                or_(ScanRequest.device_id.is_(None), ScanRequest.device_id == device.id),
                ScanRequest.expires_at > utcnow(),
            )
            .order_by(ScanRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def _get_for_device(self, device: Device, request_id: uuid.UUID) -> ScanRequest:
        scan_request = await self.db.get(ScanRequest, request_id)
        if scan_request is None or scan_request.api_key_id != device.api_key_id:
            raise NotFoundError(resource="request", resource_id=str(request_id))
        return scan_request

    async def accept(self, device: Device, request_id: uuid.UUID) -> ScanRequest:
        """
        Claim a pending request for `device`.

        Raises:
            NotFoundError: unknown, foreign, targeted elsewhere, not pending,
                or another device won the race
            GoneError (EXPIRED): past expiry; the expiry is committed first
        """
        scan_request = await self._get_for_device(device, request_id)
        not_pending = NotFoundError(
            resource="request",
            resource_id=str(request_id),
            message="Request not found or not pending",
        )

        if scan_request.device_id not in (None, device.id):
            raise not_pending

        if await self._expire_if_due(scan_request):
            # The expiry must survive the error response's rollback
            await self.db.commit()
            raise GoneError(message="Request has expired", code="EXPIRED")

        if scan_request.status != RequestStatus.PENDING:
            raise not_pending

        claimed = await self.db.execute(
            update(ScanRequest)
            .where(
                ScanRequest.id == request_id,
                ScanRequest.status == RequestStatus.PENDING,
                ScanRequest.expires_at > utcnow(),
                or_(ScanRequest.device_id.is_(None), ScanRequest.device_id == device.id),
            )
            .values(status=RequestStatus.SCANNING, device_id=device.id)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise not_pending

        await self.db.refresh(scan_request)
        logger.info("Request %s accepted by device %s", request_id, device.id)
        return scan_request

    async def reject(self, device: Device, request_id: uuid.UUID) -> ScanRequest:
        """
        Release or refuse a request.

        Open requests go back to the pool; targeted ones are cancelled so the
        issuer learns the chosen device declined.
        """
        scan_request = await self._get_for_device(device, request_id)
        current = scan_request.status

        if current == RequestStatus.PENDING and scan_request.device_id is None:
            return scan_request

        if scan_request.device_id != device.id or current not in (
            RequestStatus.PENDING,
            RequestStatus.SCANNING,
        ):
            raise NotFoundError(
                resource="request",
                resource_id=str(request_id),
                message="Request not found or not assigned to this device",
            )

        if current == RequestStatus.SCANNING and scan_request.is_open:
            values = {"status": RequestStatus.PENDING, "device_id": None}
        else:
            values = {"status": RequestStatus.CANCELLED}

        released = await self.db.execute(
            update(ScanRequest)
            .where(
                ScanRequest.id == request_id,
                ScanRequest.status == current,
                ScanRequest.device_id == device.id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if released.rowcount != 1:
            raise NotFoundError(
                resource="request",
                resource_id=str(request_id),
                message="Request not found or not assigned to this device",
            )

        await self.db.refresh(scan_request)
        logger.info(
            "Request %s rejected by device %s: %s -> %s",
            request_id,
            device.id,
            current,
            scan_request.status,
        )
        return scan_request

    async def complete(
        self,
        device: Device,
        request_id: uuid.UUID,
        data: Optional[bytes],
        ocr_text: Optional[str] = "",
        page_count: Union[int, str, None] = None,
    ) -> Tuple[ScanRequest, ScanResult]:
        """
        Attach the artifact and mark the request completed.

        Order: blob → result row → status flip → commit → webhook. The final
        status write is unconditional, so a cancel that raced in after the
        scanning check is overwritten.

        Raises:
            NotFoundError: not scanning or not bound to this device
            ValidationError (NO_FILE): no artifact bytes
            ValidationError: artifact larger than MAX_UPLOAD_SIZE
        """
        if self.delivery is None:
            raise RuntimeError("RequestService.complete requires a DeliveryService")

        scan_request = await self._get_for_device(device, request_id)
        if scan_request.status != RequestStatus.SCANNING or scan_request.device_id != device.id:
            raise NotFoundError(
                resource="request",
                resource_id=str(request_id),
                message="Request not found or not in scanning state",
            )

        if not data:
            raise ValidationError(message="No file uploaded", field="file", code="NO_FILE")
        if len(data) > settings.max_upload_size:
            max_mb = settings.max_upload_size / (1024 * 1024)
            raise ValidationError(
                message=f"File exceeds maximum upload size of {max_mb:.0f}MB",
                field="file",
                context={"size": len(data), "max_size": settings.max_upload_size},
            )

        result = await self.delivery.attach_result(scan_request, data, ocr_text, page_count)

        scan_request.status = RequestStatus.COMPLETED
        scan_request.completed_at = utcnow()
        await self.db.flush()
        # Webhook receivers fetch the result right away; it must be committed
        await self.db.commit()

        logger.info("Request %s completed by device %s", request_id, device.id)
        await self.delivery.deliver_webhook(scan_request, result)
        return scan_request, result
