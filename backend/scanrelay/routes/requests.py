"""
ScanRelay Backend - Scan Request Routes (issuer side)
=====================================================

What:  Create, list, inspect and cancel scan requests.
Who:   Integrations holding an API key.

Request Flow (create):
    1. Body validated by ScanRequestCreate
    2. RequestService.create checks expiry bounds and the target device
    3. Row flushed, push fan-out scheduled on BackgroundTasks
    4. 201 returned; session committed by get_db_session; push runs after
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from scanrelay.models.api_key import ApiKey
from scanrelay.routes.deps import get_request_service, require_api_key
from scanrelay.schemas.common import ErrorResponse
from scanrelay.schemas.scan import (
    ScanRequestCancelledResponse,
    ScanRequestCreate,
    ScanRequestCreatedResponse,
    ScanRequestResponse,
    StatusFilter,
)
from scanrelay.services.request_service import RequestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/requests", tags=["Requests"])


@router.post(
    "",
    status_code=201,
    response_model=ScanRequestCreatedResponse,
    responses={
        400: {"description": "Invalid body or expires_in", "model": ErrorResponse},
        404: {"description": "Target device not paired to this key", "model": ErrorResponse},
    },
    summary="Create a scan request",
)
async def create_request(
    body: ScanRequestCreate,
    credential: ApiKey = Depends(require_api_key),
    requests: RequestService = Depends(get_request_service),
) -> ScanRequestCreatedResponse:
    scan_request = await requests.create(
        credential,
        message=body.message,
        expires_in=body.expires_in,
        device_id=body.device_id,
        webhook_url=body.webhook_url,
        webhook_secret=body.webhook_secret,
    )
    return ScanRequestCreatedResponse.model_validate(scan_request)


@router.get(
    "",
    response_model=List[ScanRequestResponse],
    summary="List the caller's requests",
    description="Newest first. Pending requests past their expiry are reported as expired.",
)
async def list_requests(
    status: Optional[StatusFilter] = Query(default=None, description="Filter by effective status"),
    credential: ApiKey = Depends(require_api_key),
    requests: RequestService = Depends(get_request_service),
) -> List[ScanRequestResponse]:
    rows = await requests.list_requests(credential, status=status)
    return [ScanRequestResponse.model_validate(r) for r in rows]


@router.get(
    "/{request_id}",
    response_model=ScanRequestResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get one request",
)
async def get_request(
    request_id: UUID,
    credential: ApiKey = Depends(require_api_key),
    requests: RequestService = Depends(get_request_service),
) -> ScanRequestResponse:
    return ScanRequestResponse.model_validate(await requests.get_request(credential, request_id))


@router.delete(
    "/{request_id}",
    response_model=ScanRequestCancelledResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Cancel a request",
)
async def cancel_request(
    request_id: UUID,
    credential: ApiKey = Depends(require_api_key),
    requests: RequestService = Depends(get_request_service),
) -> ScanRequestCancelledResponse:
    cancelled = await requests.cancel(credential, request_id)
    return ScanRequestCancelledResponse(id=cancelled.id, status=cancelled.status)
