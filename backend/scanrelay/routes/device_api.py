"""
ScanRelay Backend - Device Routes (phone side)
==============================================

What:  What a paired phone calls: poll visible requests, accept, reject and
       complete with the scanned PDF.
How:   Every route requires `Authorization: Bearer <key>` plus
       `X-Device-Id`. Races between phones are settled inside RequestService
       by conditional updates.

Complete (multipart/form-data):
    file        PDF bytes (required)
    ocr_text    extracted text (optional, default "")
    page_count  integer (optional; missing or invalid → 1)
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile

from scanrelay.models.device import Device
from scanrelay.routes.deps import get_request_service, require_device
from scanrelay.schemas.common import ErrorResponse
from scanrelay.schemas.scan import (
    DeviceRequestItem,
    DeviceRequestStateResponse,
    ScanCompletedResponse,
)
from scanrelay.services.request_service import RequestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/device/requests", tags=["Device"])


@router.get(
    "",
    response_model=List[DeviceRequestItem],
    summary="Requests this device may accept",
)
async def list_visible(
    device: Device = Depends(require_device),
    requests: RequestService = Depends(get_request_service),
) -> List[DeviceRequestItem]:
    return [DeviceRequestItem.model_validate(r) for r in await requests.list_for_device(device)]


@router.post(
    "/{request_id}/accept",
    response_model=DeviceRequestStateResponse,
    responses={
        404: {"description": "Not pending, targeted elsewhere or already claimed", "model": ErrorResponse},
        410: {"description": "Request expired", "model": ErrorResponse},
    },
    summary="Claim a request",
)
async def accept_request(
    request_id: UUID,
    device: Device = Depends(require_device),
    requests: RequestService = Depends(get_request_service),
) -> DeviceRequestStateResponse:
    return DeviceRequestStateResponse.model_validate(await requests.accept(device, request_id))


@router.post(
    "/{request_id}/reject",
    response_model=DeviceRequestStateResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Decline or release a request",
)
async def reject_request(
    request_id: UUID,
    device: Device = Depends(require_device),
    requests: RequestService = Depends(get_request_service),
) -> DeviceRequestStateResponse:
    return DeviceRequestStateResponse.model_validate(await requests.reject(device, request_id))


@router.post(
    "/{request_id}/complete",
    status_code=201,
    response_model=ScanCompletedResponse,
    responses={
        400: {"description": "No file, or file too large", "model": ErrorResponse},
        404: {"description": "Not scanning on this device", "model": ErrorResponse},
    },
    summary="Upload the scan and complete the request",
)
async def complete_request(
    request_id: UUID,
    file: Optional[UploadFile] = File(default=None),
    ocr_text: Optional[str] = Form(default=""),
    page_count: Optional[str] = Form(default=None),
    device: Device = Depends(require_device),
    requests: RequestService = Depends(get_request_service),
) -> ScanCompletedResponse:
    data = await file.read() if file is not None else None
    scan_request, result = await requests.complete(
        device,
        request_id,
        data,
        ocr_text=ocr_text,
        page_count=page_count,
    )
    return ScanCompletedResponse(
        id=result.id,
        request_id=scan_request.id,
        status=scan_request.status,
        pdf_size_bytes=result.pdf_size_bytes,
        page_count=result.page_count,
        created_at=result.created_at,
    )
