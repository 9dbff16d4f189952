"""
ScanRelay Backend - Route Dependencies
======================================

What:  Authentication dependencies and per-request service construction.
How:   Every service gets the request's session and its collaborators
       through FastAPI's Depends. Process-wide collaborators (storage, push
       notifier, webhook dispatcher) live on `app.state`, set by create_app();
       tests swap them with `app.dependency_overrides`.

Authentication:
    require_api_key   Authorization: Bearer sk_live_...      → ApiKey
    require_device    require_api_key + X-Device-Id: <uuid>  → Device
    require_session   Authorization: Bearer <dashboard JWT>  → SessionUser
"""

from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import BackgroundTasks, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scanrelay.database import get_db_session, get_session_factory
from scanrelay.exceptions import InvalidSessionError, UnauthorizedError
from scanrelay.models.api_key import ApiKey
from scanrelay.models.device import Device
from scanrelay.security import decode_session_token
from scanrelay.services.credential_service import CredentialService
from scanrelay.services.dashboard_service import DashboardService
from scanrelay.services.delivery_service import DeliveryService, WebhookDispatcher
from scanrelay.services.device_service import DeviceService
from scanrelay.services.pairing_service import PairingService
from scanrelay.services.push_service import PushNotifier
from scanrelay.services.request_service import RequestService
from scanrelay.services.storage import StorageProvider


# ── Collaborators ─────────────────────────────────────────────────────────

def get_storage(request: Request) -> StorageProvider:
    return request.app.state.storage


def get_push_notifier(request: Request) -> PushNotifier:
    return request.app.state.push_notifier


def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhook_dispatcher


# ── Services ──────────────────────────────────────────────────────────────

def get_credential_service(db: AsyncSession = Depends(get_db_session)) -> CredentialService:
    return CredentialService(db)


def get_device_service(db: AsyncSession = Depends(get_db_session)) -> DeviceService:
    return DeviceService(db)


def get_delivery_service(
    tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    storage: StorageProvider = Depends(get_storage),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> DeliveryService:
    return DeliveryService(db, storage, dispatcher=dispatcher, tasks=tasks)


def get_request_service(
    tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    delivery: DeliveryService = Depends(get_delivery_service),
    notifier: PushNotifier = Depends(get_push_notifier),
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> RequestService:
    return RequestService(
        db,
        delivery=delivery,
        notifier=notifier,
        session_factory=session_factory,
        tasks=tasks,
    )


def get_pairing_service(db: AsyncSession = Depends(get_db_session)) -> PairingService:
    return PairingService(db)


def get_dashboard_service(db: AsyncSession = Depends(get_db_session)) -> DashboardService:
    return DashboardService(db)


# ── Authentication ────────────────────────────────────────────────────────

async def require_api_key(
    authorization: Optional[str] = Header(default=None),
    credentials: CredentialService = Depends(get_credential_service),
) -> ApiKey:
    return await credentials.authenticate_header(authorization)


async def require_device(
    credential: ApiKey = Depends(require_api_key),
    x_device_id: Optional[str] = Header(default=None),
    credentials: CredentialService = Depends(get_credential_service),
) -> Device:
    return await credentials.authorize_device(credential, x_device_id)


@dataclass
class SessionUser:
    user_id: str
    email: str


async def require_session(authorization: Optional[str] = Header(default=None)) -> SessionUser:
    """Dashboard session from a signed JWT. No database lookup: accounts live elsewhere."""
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError(message="Missing or invalid session")
    try:
        payload = decode_session_token(authorization[len("Bearer "):].strip())
    except jwt.PyJWTError:
        raise InvalidSessionError()

    user_id = payload.get("sub")
    if payload.get("type") != "session" or not user_id:
        raise InvalidSessionError()
    return SessionUser(user_id=str(user_id), email=payload.get("email") or "")
