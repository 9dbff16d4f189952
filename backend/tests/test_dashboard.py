"""
ScanRelay Backend - Dashboard Tests
===================================

What we test:
    - Session tokens: missing, forged and wrong-type tokens are 401
    - Stats count only the signed-in user's active keys
    - Key and device management is scoped to the user
    - Paginated request history and request detail with result
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from scanrelay.config import settings
from scanrelay.models.scan_request import RequestStatus, ScanRequest
from scanrelay.services.dashboard_service import DashboardService
from scanrelay.services.delivery_service import DeliveryService
from scanrelay.services.request_service import RequestService


async def seed_requests(session_factory, credential, count):
    async with session_factory() as session:
        service = RequestService(session)
        created = [await service.create(credential, f"Document {i}") for i in range(count)]
        await session.commit()
    return created


class TestSessionAuth:
    @pytest.mark.asyncio
    async def test_missing_session(self, client):
        response = await client.get("/api/v1/dashboard/stats")
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_forged_session(self, client):
        forged = jwt.encode(
            {"sub": "u_1", "type": "session"},
            "a-different-secret-of-sufficient-length",
            algorithm="HS256",
        )
        response = await client.get(
            "/api/v1/dashboard/stats", headers={"Authorization": f"Bearer {forged}"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_expired_session(self, client):
        token = jwt.encode(
            {
                "sub": "u_1",
                "type": "session",
                "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
            },
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        response = await client.get(
            "/api/v1/dashboard/stats", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.json()["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_api_key_is_not_a_session(self, client, key_headers):
        response = await client.get("/api/v1/dashboard/stats", headers=key_headers)
        assert response.status_code == 401


class TestStats:
    @pytest.mark.asyncio
    async def test_counts_only_own_active_keys(
        self, client, session_factory, storage, api_key, other_api_key, device, session_headers, sample_pdf
    ):
        await seed_requests(session_factory, other_api_key[0], 3)
        pending, done = await seed_requests(session_factory, api_key[0], 2)
        async with session_factory() as session:
            service = RequestService(session, delivery=DeliveryService(session, storage))
            await service.accept(device, done.id)
            await service.complete(device, done.id, sample_pdf)
            await session.commit()

        response = await client.get("/api/v1/dashboard/stats", headers=session_headers)

        assert response.json() == {
            "total_requests": 2,
            "completed_requests": 1,
            "pending_requests": 1,
            "total_devices": 1,
            "total_keys": 1,
        }


class TestDashboardKeys:
    @pytest.mark.asyncio
    async def test_create_list_revoke(self, client, api_key, other_api_key, session_headers):
        created = await client.post("/api/v1/dashboard/keys", json={}, headers=session_headers)
        assert created.status_code == 201
        assert created.json()["name"] == "Untitled Key"
        new_id = created.json()["id"]

        listed = await client.get("/api/v1/dashboard/keys", headers=session_headers)
        ids = {k["id"] for k in listed.json()["keys"]}
        assert ids == {str(api_key[0].id), new_id}

        revoked = await client.delete(f"/api/v1/dashboard/keys/{new_id}", headers=session_headers)
        assert revoked.json() == {"success": True}

    @pytest.mark.asyncio
    async def test_cannot_revoke_other_users_key(self, client, other_api_key, session_headers):
        response = await client.delete(
            f"/api/v1/dashboard/keys/{other_api_key[0].id}", headers=session_headers
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_created_key_owned_by_session_email(self, db_session):
        key, raw = await DashboardService(db_session).create_key("u_9", "nine@example.com", "Ops")
        assert key.user_id == "u_9"
        assert key.owner_email == "nine@example.com"
        assert raw.startswith("sk_live_")


class TestDashboardDevices:
    @pytest.mark.asyncio
    async def test_list_and_remove(self, client, api_key, device, session_headers):
        listed = await client.get("/api/v1/dashboard/devices", headers=session_headers)
        assert listed.json()["devices"][0]["api_key_id"] == str(api_key[0].id)

        removed = await client.delete(f"/api/v1/dashboard/devices/{device.id}", headers=session_headers)
        assert removed.json() == {"success": True}
        assert (await client.get("/api/v1/dashboard/devices", headers=session_headers)).json() == {
            "devices": []
        }

    @pytest.mark.asyncio
    async def test_cannot_remove_other_users_device(self, client, device):
        token = jwt.encode({"sub": "u_2", "type": "session"}, settings.jwt_secret, algorithm="HS256")
        response = await client.delete(
            f"/api/v1/dashboard/devices/{device.id}", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_remove_releases_claimed_request(
        self, client, session_factory, api_key, device, session_headers
    ):
        (scan_request,) = await seed_requests(session_factory, api_key[0], 1)
        async with session_factory() as session:
            await RequestService(session).accept(device, scan_request.id)
            await session.commit()

        await client.delete(f"/api/v1/dashboard/devices/{device.id}", headers=session_headers)

        async with session_factory() as session:
            released = await session.get(ScanRequest, scan_request.id)
        assert released.status == RequestStatus.PENDING
        assert released.device_id is None


class TestDashboardRequests:
    @pytest.mark.asyncio
    async def test_pagination(self, client, session_factory, api_key, session_headers):
        created = await seed_requests(session_factory, api_key[0], 5)

        page = await client.get("/api/v1/dashboard/requests?page=2&limit=2", headers=session_headers)

        data = page.json()
        assert data["total"] == 5
        assert data["page"] == 2
        assert data["limit"] == 2
        newest_first = [str(r.id) for r in reversed(created)]
        assert [r["id"] for r in data["requests"]] == newest_first[2:4]

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, client, session_headers):
        response = await client.get("/api/v1/dashboard/requests?limit=500", headers=session_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_detail_includes_result(
        self, client, session_factory, storage, api_key, device, session_headers, sample_pdf
    ):
        (scan_request,) = await seed_requests(session_factory, api_key[0], 1)
        async with session_factory() as session:
            service = RequestService(session, delivery=DeliveryService(session, storage))
            await service.accept(device, scan_request.id)
            await service.complete(device, scan_request.id, sample_pdf, ocr_text="hello")
            await session.commit()

        response = await client.get(
            f"/api/v1/dashboard/requests/{scan_request.id}", headers=session_headers
        )

        data = response.json()
        assert data["request"]["status"] == "completed"
        assert data["result"]["ocr_text"] == "hello"
        assert data["result"]["pdf_size_bytes"] == len(sample_pdf)

    @pytest.mark.asyncio
    async def test_detail_of_other_users_request(self, client, session_factory, other_api_key, session_headers):
        (scan_request,) = await seed_requests(session_factory, other_api_key[0], 1)
        response = await client.get(
            f"/api/v1/dashboard/requests/{scan_request.id}", headers=session_headers
        )
        assert response.status_code == 404
