"""
ScanRelay Backend - Result & Delivery Pipeline
==============================================

What:  Attaches a device's artifact to a request, serves it back to the
       issuer and tells the issuer's webhook that it is ready.
How:   Blob first, row second: the PDF is saved through the storage provider
       before the ScanResult row is inserted, so no row ever points at a
       missing blob written by this process. Webhooks are POSTed with httpx
       from a background task after the response has been sent.
Who:   RequestService.complete (attach + webhook) and the results routes.

Webhook contract:
    POST <webhook_url>
    Content-Type: application/json
    X-Webhook-Signature: hex(HMAC-SHA256(webhook_secret, body))   # only with a secret

    {"event": "scan.completed", "request_id": ..., "message": ...,
     "result": {"pdf_url", "text_url", "page_count", "ocr_text_preview"},
     "completed_at": ...}

    One attempt. Non-2xx and network errors are logged and dropped.
"""

import json
import logging
import uuid
from datetime import timedelta
from typing import Optional, Tuple, Union

import httpx
from fastapi import BackgroundTasks
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scanrelay.config import settings
from scanrelay.database import utcnow
from scanrelay.exceptions import GoneError, NotFoundError
from scanrelay.models.api_key import ApiKey
from scanrelay.models.scan_request import ScanRequest
from scanrelay.models.scan_result import ScanResult
from scanrelay.security import SIGNATURE_HEADER, sign_payload
from scanrelay.services.credential_service import get_owned_request
from scanrelay.services.storage import StorageProvider

logger = logging.getLogger(__name__)

OCR_PREVIEW_LENGTH = 500


def parse_page_count(raw: Union[int, str, None]) -> int:
    """Missing, non-numeric or non-positive page counts become 1; never raises."""
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return 1
    return value if value > 0 else 1


def result_urls(request_id: uuid.UUID) -> Tuple[str, str]:
    base = f"{settings.base_url}/api/v1/requests/{request_id}"
    return f"{base}/pdf", f"{base}/text"


class WebhookDispatcher:
    """Builds, signs and sends completion webhooks."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.webhook_timeout_seconds
        # Injected in tests (httpx.MockTransport); None means real network
        self.transport = transport

    def build_payload(self, scan_request: ScanRequest, result: ScanResult) -> bytes:
        pdf_url, text_url = result_urls(scan_request.id)
        completed_at = scan_request.completed_at or result.created_at
        payload = {
            "event": "scan.completed",
            "request_id": str(scan_request.id),
            "message": scan_request.message,
            "result": {
                "pdf_url": pdf_url,
                "text_url": text_url,
                "page_count": result.page_count,
                "ocr_text_preview": (result.ocr_text or "")[:OCR_PREVIEW_LENGTH],
            },
            "completed_at": completed_at.isoformat(),
        }
        return json.dumps(payload).encode()

    def build_headers(self, body: bytes, secret: Optional[str]) -> dict:
        headers = {"Content-Type": "application/json"}
        if secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, secret)
        return headers

    async def send(self, url: str, body: bytes, secret: Optional[str] = None) -> bool:
        """POST once. Returns whether the receiver answered 2xx; never raises."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, content=body, headers=self.build_headers(body, secret))
        except httpx.HTTPError as e:
            logger.warning("Webhook to %s failed: %s", url, str(e))
            return False
        except Exception as e:
            logger.error("Webhook to %s crashed: %s", url, str(e), exc_info=True)
            return False

        if not response.is_success:
            logger.warning("Webhook to %s returned %d", url, response.status_code)
            return False

        logger.info("Webhook delivered to %s (%d)", url, response.status_code)
        return True


class DeliveryService:
    """
    Result persistence and retrieval for one request scope.

    Args:
        db: Request-scoped session
        storage: Blob storage provider
        dispatcher: Webhook sender (optional; webhooks are skipped without it)
        tasks: Where webhook delivery is scheduled (optional; without it the
               webhook is sent inline)
    """

    def __init__(
        self,
        db: AsyncSession,
        storage: StorageProvider,
        dispatcher: Optional[WebhookDispatcher] = None,
        tasks: Optional[BackgroundTasks] = None,
    ):
        self.db = db
        self.storage = storage
        self.dispatcher = dispatcher
        self.tasks = tasks

    async def attach_result(
        self,
        scan_request: ScanRequest,
        data: bytes,
        ocr_text: Optional[str] = "",
        page_count: Union[int, str, None] = None,
    ) -> ScanResult:
        """
        Store the PDF and insert the ScanResult row.

        Raises:
            NotFoundError: a result already exists for this request (a
                concurrent completion won); the freshly written blob is removed.
            FileStorageError: the blob could not be written.
        """
        handle = await self.storage.save(f"{scan_request.id}-{uuid.uuid4()}.pdf", data)

        result = ScanResult(
            request_id=scan_request.id,
            pdf_path=handle,
            pdf_size_bytes=len(data),
            ocr_text=ocr_text or "",
            page_count=parse_page_count(page_count),
            auto_delete_at=utcnow() + timedelta(hours=settings.result_ttl_hours),
        )
        self.db.add(result)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.storage.delete(handle)
            raise NotFoundError(
                resource="request",
                resource_id=str(scan_request.id),
                message="Request not found or not in scanning state",
            )

        logger.info(
            "Result attached to request %s: %d bytes, %d pages",
            scan_request.id,
            result.pdf_size_bytes,
            result.page_count,
        )
        return result

    async def _get_result(self, scan_request: ScanRequest) -> ScanResult:
        query = await self.db.execute(
            select(ScanResult).where(ScanResult.request_id == scan_request.id)
        )
        result = query.scalar_one_or_none()
        if result is None:
            raise NotFoundError(
                resource="result",
                resource_id=str(scan_request.id),
                message="No result available yet",
                code="NO_RESULT",
            )
        return result

    async def fetch_result(
        self,
        credential: ApiKey,
        request_id: uuid.UUID,
    ) -> Tuple[ScanRequest, ScanResult]:
        """Result metadata. The first successful fetch marks the result picked up."""
        scan_request = await get_owned_request(self.db, credential, request_id)
        result = await self._get_result(scan_request)

        if not result.picked_up:
            now = utcnow()
            marked = await self.db.execute(
                update(ScanResult)
                .where(ScanResult.id == result.id, ScanResult.picked_up.is_(False))
                .values(picked_up=True, picked_up_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.refresh(result)
            if marked.rowcount:
                logger.info("Result for request %s picked up", request_id)

        return scan_request, result

    async def fetch_pdf(
        self,
        credential: ApiKey,
        request_id: uuid.UUID,
    ) -> Tuple[ScanRequest, bytes]:
        scan_request = await get_owned_request(self.db, credential, request_id)
        result = await self._get_result(scan_request)

        if not await self.storage.exists(result.pdf_path):
            raise GoneError(message="PDF file has been deleted", code="FILE_DELETED")

        return scan_request, await self.storage.read(result.pdf_path)

    async def fetch_text(
        self,
        credential: ApiKey,
        request_id: uuid.UUID,
    ) -> Tuple[ScanRequest, ScanResult]:
        scan_request = await get_owned_request(self.db, credential, request_id)
        return scan_request, await self._get_result(scan_request)

    async def deliver_webhook(self, scan_request: ScanRequest, result: ScanResult) -> None:
        """Hand the completion webhook to the background. No-op without a URL."""
        if not scan_request.webhook_url or self.dispatcher is None:
            return

        body = self.dispatcher.build_payload(scan_request, result)
        if self.tasks is not None:
            self.tasks.add_task(
                self.dispatcher.send,
                scan_request.webhook_url,
                body,
                scan_request.webhook_secret,
            )
        else:
            await self.dispatcher.send(scan_request.webhook_url, body, scan_request.webhook_secret)
