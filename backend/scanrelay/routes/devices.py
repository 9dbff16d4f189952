"""
ScanRelay Backend - Device Routes
=================================

What:  Device registration and management.
How:   /pair, listing and unpairing need the API key. pair-with-token and
       pair-with-code need no credential at all: the pairing session is the
       credential, and PairingService redeems it exactly once.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends

from scanrelay.models.api_key import ApiKey
from scanrelay.routes.deps import get_device_service, get_pairing_service, require_api_key
from scanrelay.schemas.common import ErrorResponse
from scanrelay.schemas.credential import (
    DevicePairRequest,
    DeviceResponse,
    DeviceUnpairedResponse,
    PairingRedeemedResponse,
    PairWithCodeRequest,
    PairWithTokenRequest,
)
from scanrelay.services.device_service import DeviceService
from scanrelay.services.pairing_service import PairingRedemption, PairingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/devices", tags=["Devices"])


@router.post(
    "/pair",
    status_code=201,
    response_model=DeviceResponse,
    summary="Register a device with an API key directly",
)
async def pair_device(
    body: DevicePairRequest,
    credential: ApiKey = Depends(require_api_key),
    devices: DeviceService = Depends(get_device_service),
) -> DeviceResponse:
    device = await devices.register(
        api_key_id=credential.id,
        device_token=body.device_token,
        platform=body.platform,
        device_name=body.device_name,
    )
    return DeviceResponse.model_validate(device)


@router.get("", response_model=List[DeviceResponse], summary="List paired devices")
async def list_devices(
    credential: ApiKey = Depends(require_api_key),
    devices: DeviceService = Depends(get_device_service),
) -> List[DeviceResponse]:
    return [DeviceResponse.model_validate(d) for d in await devices.list_devices(credential)]


@router.delete(
    "/{device_id}",
    response_model=DeviceUnpairedResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Unpair (delete) a device",
)
async def unpair_device(
    device_id: UUID,
    credential: ApiKey = Depends(require_api_key),
    devices: DeviceService = Depends(get_device_service),
) -> DeviceUnpairedResponse:
    return DeviceUnpairedResponse(id=await devices.unpair(credential, device_id))


def _redeemed(redemption: PairingRedemption) -> PairingRedeemedResponse:
    return PairingRedeemedResponse(
        device_id=redemption.device.id,
        api_key_prefix=redemption.api_key_prefix,
        server_url=redemption.server_url,
        message=redemption.message,
    )


@router.post(
    "/pair-with-token",
    status_code=201,
    response_model=PairingRedeemedResponse,
    responses={404: {"model": ErrorResponse}, 410: {"model": ErrorResponse}},
    summary="Pair using the token from a dashboard QR code",
)
async def pair_with_token(
    body: PairWithTokenRequest,
    pairing: PairingService = Depends(get_pairing_service),
) -> PairingRedeemedResponse:
    redemption = await pairing.redeem_token(
        body.pairing_token,
        device_token=body.device_token,
        platform=body.platform,
        device_name=body.device_name,
    )
    return _redeemed(redemption)


@router.post(
    "/pair-with-code",
    status_code=201,
    response_model=PairingRedeemedResponse,
    responses={404: {"model": ErrorResponse}, 410: {"model": ErrorResponse}},
    summary="Pair using the short code shown on the dashboard",
)
async def pair_with_code(
    body: PairWithCodeRequest,
    pairing: PairingService = Depends(get_pairing_service),
) -> PairingRedeemedResponse:
    redemption = await pairing.redeem_code(
        body.code,
        device_token=body.device_token,
        platform=body.platform,
        device_name=body.device_name,
    )
    return _redeemed(redemption)
