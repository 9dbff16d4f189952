"""
ScanRelay Backend - Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the whole suite.
How:   Every test gets its own SQLite file database (aiosqlite) under
       tmp_path with the full schema, its own blob storage directory and,
       for API tests, a fresh app whose session/storage/push/webhook
       dependencies point at those fixtures.

Fixture Hierarchy (all function-scoped):
    engine → session_factory → db_session
    storage
    api_key / other_api_key → device / other_device
    key_headers, device_headers, session_headers
    push_notifier, webhook_calls → client
"""

import os
import tempfile

# Settings are read at import time; point them at throwaway resources first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="scanrelay_test_")
os.environ["JWT_SECRET"] = "test-jwt-secret-with-enough-length-for-hs256"
os.environ["BASE_URL"] = "http://scanrelay.test"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import AsyncGenerator, List, Tuple
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import scanrelay.models  # noqa: F401
from scanrelay.database import Base, configure_engine, get_db_session, get_session_factory
from scanrelay.models.api_key import ApiKey
from scanrelay.models.device import Device
from scanrelay.security import create_session_token
from scanrelay.services.credential_service import CredentialService
from scanrelay.services.delivery_service import WebhookDispatcher
from scanrelay.services.device_service import DeviceService
from scanrelay.services.push_service import PushNotifier
from scanrelay.services.storage import LocalStorageProvider

SAMPLE_PDF = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"


# ══════════════════════════════════════════════════════════════════════════
# Database & Storage
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = configure_engine(
        create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scanrelay.db'}")
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path) -> LocalStorageProvider:
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture
def sample_pdf() -> bytes:
    return SAMPLE_PDF


# ══════════════════════════════════════════════════════════════════════════
# Credentials & Devices
# ══════════════════════════════════════════════════════════════════════════

async def issue_key(
    session_factory: async_sessionmaker,
    name: str = "Test key",
    owner_email: str = "owner@example.com",
    user_id: str = None,
) -> Tuple[ApiKey, str]:
    async with session_factory() as session:
        key, raw = await CredentialService(session).issue(name, owner_email, user_id=user_id)
        await session.commit()
    return key, raw


async def pair_device(
    session_factory: async_sessionmaker,
    api_key_id,
    name: str = "Pixel",
    platform: str = "android",
) -> Device:
    async with session_factory() as session:
        device = await DeviceService(session).register(api_key_id, f"push-{name}", platform, name)
        await session.commit()
    return device


@pytest_asyncio.fixture
async def api_key(session_factory) -> Tuple[ApiKey, str]:
    """(ApiKey, raw key) owned by owner@example.com / dashboard user u_1."""
    return await issue_key(session_factory, user_id="u_1")


@pytest_asyncio.fixture
async def other_api_key(session_factory) -> Tuple[ApiKey, str]:
    """A key belonging to an unrelated tenant."""
    return await issue_key(session_factory, "Other", "intruder@example.com", user_id="u_2")


@pytest_asyncio.fixture
async def device(session_factory, api_key) -> Device:
    return await pair_device(session_factory, api_key[0].id, "Pixel", "android")


@pytest_asyncio.fixture
async def other_device(session_factory, api_key) -> Device:
    """Second phone on the same key."""
    return await pair_device(session_factory, api_key[0].id, "iPhone", "ios")


@pytest.fixture
def key_headers(api_key) -> dict:
    return {"Authorization": f"Bearer {api_key[1]}"}


@pytest.fixture
def device_headers(api_key, device) -> dict:
    return {"Authorization": f"Bearer {api_key[1]}", "X-Device-Id": str(device.id)}


@pytest.fixture
def session_headers() -> dict:
    """Dashboard session for user u_1 (owner of `api_key`)."""
    token = create_session_token("u_1", "owner@example.com")
    return {"Authorization": f"Bearer {token}"}


# ══════════════════════════════════════════════════════════════════════════
# Collaborators & API Client
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def push_notifier() -> MagicMock:
    notifier = MagicMock(spec=PushNotifier)
    notifier.notify = AsyncMock()
    return notifier


@pytest.fixture
def webhook_calls() -> List[httpx.Request]:
    return []


@pytest.fixture
def webhook_dispatcher(webhook_calls) -> WebhookDispatcher:
    """Dispatcher whose HTTP traffic lands in `webhook_calls` instead of the network."""

    def handler(request: httpx.Request) -> httpx.Response:
        webhook_calls.append(request)
        return httpx.Response(200, json={"ok": True})

    return WebhookDispatcher(timeout=5, transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def client(session_factory, storage, push_notifier, webhook_dispatcher):
    """
    HTTPX AsyncClient bound to a fresh app.

    ASGITransport awaits the whole ASGI call, so background tasks (push
    and webhook) have finished when a request returns.
    """
    from scanrelay.main import create_app

    app = create_app(
        storage=storage,
        push_notifier=push_notifier,
        webhook_dispatcher=webhook_dispatcher,
    )

    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
