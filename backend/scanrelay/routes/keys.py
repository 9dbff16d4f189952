"""
ScanRelay Backend - API Key Routes
==================================

Issue, list and revoke API keys with an existing key. The very first key
comes from `python -m scanrelay.seed` or the dashboard.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends

from scanrelay.models.api_key import ApiKey
from scanrelay.routes.deps import get_credential_service, require_api_key
from scanrelay.schemas.common import ErrorResponse
from scanrelay.schemas.credential import (
    KeyCreate,
    KeyCreatedResponse,
    KeyResponse,
    KeyRevokedResponse,
)
from scanrelay.services.credential_service import CredentialService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/keys", tags=["Keys"])


@router.post(
    "",
    status_code=201,
    response_model=KeyCreatedResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Issue a new API key",
)
async def create_key(
    body: KeyCreate,
    _: ApiKey = Depends(require_api_key),
    credentials: CredentialService = Depends(get_credential_service),
) -> KeyCreatedResponse:
    key, raw_key = await credentials.issue(name=body.name, owner_email=body.owner_email)
    return KeyCreatedResponse(
        id=key.id,
        name=key.name,
        key=raw_key,
        key_prefix=key.key_prefix,
        owner_email=key.owner_email,
        created_at=key.created_at,
    )


@router.get(
    "",
    response_model=List[KeyResponse],
    summary="List keys sharing the caller's owner email",
)
async def list_keys(
    credential: ApiKey = Depends(require_api_key),
    credentials: CredentialService = Depends(get_credential_service),
) -> List[KeyResponse]:
    keys = await credentials.list_keys(credential)
    return [KeyResponse.model_validate(k) for k in keys]


@router.delete(
    "/{key_id}",
    response_model=KeyRevokedResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Revoke an API key",
)
async def revoke_key(
    key_id: UUID,
    credential: ApiKey = Depends(require_api_key),
    credentials: CredentialService = Depends(get_credential_service),
) -> KeyRevokedResponse:
    revoked = await credentials.revoke(credential, key_id)
    return KeyRevokedResponse(id=revoked.id, is_active=revoked.is_active)
