"""
ScanRelay Backend - Dashboard Routes
====================================

What:  Session-authenticated routes behind the web dashboard: stats, key and
       device management, request history and pairing session generation.
How:   `require_session` validates the dashboard JWT; every query is scoped
       to the session's user id by DashboardService / PairingService.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from scanrelay.routes.deps import (
    SessionUser,
    get_dashboard_service,
    get_pairing_service,
    require_session,
)
from scanrelay.schemas.common import DeletedResponse, ErrorResponse
from scanrelay.schemas.dashboard import (
    DashboardDeviceItem,
    DashboardDeviceList,
    DashboardKeyCreate,
    DashboardKeyCreatedResponse,
    DashboardKeyItem,
    DashboardKeyList,
    DashboardRequestDetail,
    DashboardRequestPage,
    DashboardResultItem,
    PairingGenerateRequest,
    PairingGenerateResponse,
    StatsResponse,
)
from scanrelay.schemas.scan import ScanRequestResponse
from scanrelay.services.dashboard_service import DashboardService
from scanrelay.services.pairing_service import PairingService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/dashboard",
    tags=["Dashboard"],
    responses={401: {"description": "Missing or invalid session", "model": ErrorResponse}},
)


@router.post(
    "/pairing/generate",
    status_code=201,
    response_model=PairingGenerateResponse,
    responses={400: {"description": "User has no active API key", "model": ErrorResponse}},
    summary="Create a pairing QR code / short code",
)
async def generate_pairing(
    body: Optional[PairingGenerateRequest] = None,
    user: SessionUser = Depends(require_session),
    pairing: PairingService = Depends(get_pairing_service),
) -> PairingGenerateResponse:
    invitation = await pairing.generate(
        user.user_id,
        api_key_id=body.api_key_id if body is not None else None,
    )
    return PairingGenerateResponse(
        token=invitation.token,
        short_code=invitation.short_code,
        qr_data=invitation.qr_data,
        expires_at=invitation.expires_at,
    )


@router.get("/stats", response_model=StatsResponse, summary="Usage counters")
async def get_stats(
    user: SessionUser = Depends(require_session),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> StatsResponse:
    stats = await dashboard.stats(user.user_id)
    return StatsResponse(
        total_requests=stats.total_requests,
        completed_requests=stats.completed_requests,
        pending_requests=stats.pending_requests,
        total_devices=stats.total_devices,
        total_keys=stats.total_keys,
    )


# ── Keys ──────────────────────────────────────────────────────────────────

@router.get("/keys", response_model=DashboardKeyList)
async def list_keys(
    user: SessionUser = Depends(require_session),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> DashboardKeyList:
    keys = await dashboard.list_keys(user.user_id)
    return DashboardKeyList(keys=[DashboardKeyItem.model_validate(k) for k in keys])


@router.post("/keys", status_code=201, response_model=DashboardKeyCreatedResponse)
async def create_key(
    body: Optional[DashboardKeyCreate] = None,
    user: SessionUser = Depends(require_session),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> DashboardKeyCreatedResponse:
    key, raw_key = await dashboard.create_key(
        user.user_id,
        user.email,
        name=body.name if body is not None else None,
    )
    return DashboardKeyCreatedResponse(
        id=key.id,
        name=key.name,
        key=raw_key,
        key_prefix=key.key_prefix,
        created_at=key.created_at,
    )


@router.delete("/keys/{key_id}", response_model=DeletedResponse, responses={404: {"model": ErrorResponse}})
async def revoke_key(
    key_id: UUID,
    user: SessionUser = Depends(require_session),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> DeletedResponse:
    await dashboard.revoke_key(user.user_id, key_id)
    return DeletedResponse()


# ── Devices ───────────────────────────────────────────────────────────────

@router.get("/devices", response_model=DashboardDeviceList)
async def list_devices(
    user: SessionUser = Depends(require_session),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> DashboardDeviceList:
    devices = await dashboard.list_devices(user.user_id)
    return DashboardDeviceList(devices=[DashboardDeviceItem.model_validate(d) for d in devices])


@router.delete("/devices/{device_id}", response_model=DeletedResponse, responses={404: {"model": ErrorResponse}})
async def remove_device(
    device_id: UUID,
    user: SessionUser = Depends(require_session),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> DeletedResponse:
    await dashboard.remove_device(user.user_id, device_id)
    return DeletedResponse()


# ── Requests ──────────────────────────────────────────────────────────────

@router.get("/requests", response_model=DashboardRequestPage, summary="Request history")
async def list_requests(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user: SessionUser = Depends(require_session),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> DashboardRequestPage:
    rows, total, page, limit = await dashboard.list_requests(user.user_id, page=page, limit=limit)
    return DashboardRequestPage(
        requests=[ScanRequestResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.get(
    "/requests/{request_id}",
    response_model=DashboardRequestDetail,
    responses={404: {"model": ErrorResponse}},
)
async def get_request(
    request_id: UUID,
    user: SessionUser = Depends(require_session),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> DashboardRequestDetail:
    scan_request, result = await dashboard.get_request(user.user_id, request_id)
    return DashboardRequestDetail(
        request=ScanRequestResponse.model_validate(scan_request),
        result=DashboardResultItem.model_validate(result) if result is not None else None,
    )
