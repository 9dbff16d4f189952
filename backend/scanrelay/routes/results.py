"""
ScanRelay Backend - Result Routes
=================================

Result metadata, PDF bytes and OCR text for a completed request. Only the
issuing key may read them. The metadata route marks the result picked up.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Response

from scanrelay.models.api_key import ApiKey
from scanrelay.routes.deps import get_delivery_service, require_api_key
from scanrelay.schemas.common import ErrorResponse
from scanrelay.schemas.scan import ScanResultResponse, ScanTextResponse
from scanrelay.services.delivery_service import OCR_PREVIEW_LENGTH, DeliveryService, result_urls

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/requests", tags=["Results"])

_missing = {404: {"description": "Unknown request or no result yet", "model": ErrorResponse}}


@router.get(
    "/{request_id}/result",
    response_model=ScanResultResponse,
    responses=_missing,
    summary="Get result metadata",
)
async def get_result(
    request_id: UUID,
    credential: ApiKey = Depends(require_api_key),
    delivery: DeliveryService = Depends(get_delivery_service),
) -> ScanResultResponse:
    scan_request, result = await delivery.fetch_result(credential, request_id)
    pdf_url, text_url = result_urls(scan_request.id)
    return ScanResultResponse(
        id=result.id,
        request_id=scan_request.id,
        pdf_url=pdf_url,
        text_url=text_url,
        pdf_size_bytes=result.pdf_size_bytes,
        page_count=result.page_count,
        ocr_text_preview=(result.ocr_text or "")[:OCR_PREVIEW_LENGTH],
        picked_up=result.picked_up,
        created_at=result.created_at,
        auto_delete_at=result.auto_delete_at,
    )


@router.get(
    "/{request_id}/pdf",
    response_class=Response,
    responses={
        200: {"content": {"application/pdf": {}}, "description": "The scanned PDF"},
        410: {"description": "Retention elapsed; bytes deleted", "model": ErrorResponse},
        **_missing,
    },
    summary="Download the PDF",
)
async def get_pdf(
    request_id: UUID,
    credential: ApiKey = Depends(require_api_key),
    delivery: DeliveryService = Depends(get_delivery_service),
) -> Response:
    scan_request, data = await delivery.fetch_pdf(credential, request_id)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="scan-{scan_request.id}.pdf"'},
    )


@router.get(
    "/{request_id}/text",
    response_model=ScanTextResponse,
    responses=_missing,
    summary="Get the OCR text",
)
async def get_text(
    request_id: UUID,
    credential: ApiKey = Depends(require_api_key),
    delivery: DeliveryService = Depends(get_delivery_service),
) -> ScanTextResponse:
    scan_request, result = await delivery.fetch_text(credential, request_id)
    return ScanTextResponse(
        request_id=scan_request.id,
        ocr_text=result.ocr_text or "",
        page_count=result.page_count,
    )
