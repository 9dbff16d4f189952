"""
ScanRelay Backend - Request Lifecycle Tests
===========================================

What:  RequestService state machine against a real (SQLite) database.
How:   Each test drives the service with its own sessions; "another handler"
       is simulated with a second session from the same factory.

What we test:
    - create: expiry bounds, target device ownership, open/targeted flag
    - list/get: effective status, filter semantics, lazy expiry persistence
    - accept: exactly one winner, expiry, targeted elsewhere
    - reject: open release, targeted cancel, no-op on the open pool
    - complete: result attached, status completed, webhook sent
    - cancel: unconditional
    - unpair: claimed requests released, pending targets opened
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import update

from scanrelay.database import utcnow
from scanrelay.exceptions import GoneError, NotFoundError, ValidationError
from scanrelay.models.scan_request import RequestStatus, ScanRequest
from scanrelay.security import SIGNATURE_HEADER, verify_signature
from scanrelay.services.delivery_service import DeliveryService
from scanrelay.services.device_service import DeviceService
from scanrelay.services.request_service import RequestService


async def create_request(session_factory, credential, **kwargs) -> ScanRequest:
    async with session_factory() as session:
        scan_request = await RequestService(session).create(
            credential, kwargs.pop("message", "Please scan the signed contract"), **kwargs
        )
        await session.commit()
    return scan_request


async def backdate(session_factory, request_id, seconds: int = 5) -> None:
    """Move expires_at into the past without touching status."""
    async with session_factory() as session:
        await session.execute(
            update(ScanRequest)
            .where(ScanRequest.id == request_id)
            .values(expires_at=utcnow() - timedelta(seconds=seconds))
        )
        await session.commit()


async def load(session_factory, request_id) -> ScanRequest:
    async with session_factory() as session:
        return await session.get(ScanRequest, request_id)


async def accept(session_factory, device, request_id) -> ScanRequest:
    async with session_factory() as session:
        scan_request = await RequestService(session).accept(device, request_id)
        await session.commit()
    return scan_request


class TestCreate:
    @pytest.mark.asyncio
    async def test_open_request(self, session_factory, api_key):
        scan_request = await create_request(session_factory, api_key[0])

        assert scan_request.status == RequestStatus.PENDING
        assert scan_request.device_id is None
        assert scan_request.is_open is True
        remaining = (scan_request.expires_at - utcnow()).total_seconds()
        assert 3500 < remaining <= 3600

    @pytest.mark.asyncio
    async def test_targeted_request(self, session_factory, api_key, device):
        scan_request = await create_request(
            session_factory, api_key[0], device_id=device.id, expires_in=120
        )
        assert scan_request.device_id == device.id
        assert scan_request.is_open is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expires_in", [59, 86401, 0])
    async def test_expires_in_out_of_bounds(self, db_session, api_key, expires_in):
        with pytest.raises(ValidationError) as exc_info:
            await RequestService(db_session).create(api_key[0], "x", expires_in=expires_in)
        assert exc_info.value.field == "expires_in"

    @pytest.mark.asyncio
    async def test_device_of_another_key_is_not_found(self, db_session, other_api_key, device):
        """Targeting someone else's phone looks exactly like targeting no phone."""
        with pytest.raises(NotFoundError) as exc_info:
            await RequestService(db_session).create(other_api_key[0], "x", device_id=device.id)
        assert exc_info.value.code == "DEVICE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_push_sent_to_every_device_of_open_request(
        self, session_factory, api_key, device, other_device, push_notifier
    ):
        async with session_factory() as session:
            service = RequestService(session, notifier=push_notifier, session_factory=session_factory)
            await service.create(api_key[0], "Scan the invoice")
            await session.commit()

        tokens = {c.args[0] for c in push_notifier.notify.await_args_list}
        assert tokens == {device.device_token, other_device.device_token}


class TestListAndGet:
    @pytest.mark.asyncio
    async def test_listing_reports_effective_status_without_writing(self, session_factory, api_key):
        stale = await create_request(session_factory, api_key[0])
        fresh = await create_request(session_factory, api_key[0])
        await backdate(session_factory, stale.id)

        async with session_factory() as session:
            service = RequestService(session)
            everything = {r.id: r.status for r in await service.list_requests(api_key[0])}
            pending = [r.id for r in await service.list_requests(api_key[0], RequestStatus.PENDING)]
            expired = [r.id for r in await service.list_requests(api_key[0], RequestStatus.EXPIRED)]
            await session.commit()

        assert everything == {stale.id: RequestStatus.EXPIRED, fresh.id: RequestStatus.PENDING}
        assert pending == [fresh.id]
        assert expired == [stale.id]
        assert (await load(session_factory, stale.id)).status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_listing_is_scoped_to_key(self, session_factory, api_key, other_api_key):
        await create_request(session_factory, other_api_key[0])
        async with session_factory() as session:
            assert await RequestService(session).list_requests(api_key[0]) == []

    @pytest.mark.asyncio
    async def test_get_persists_lazy_expiry(self, session_factory, api_key):
        scan_request = await create_request(session_factory, api_key[0])
        await backdate(session_factory, scan_request.id)

        async with session_factory() as session:
            seen = await RequestService(session).get_request(api_key[0], scan_request.id)
            await session.commit()

        assert seen.status == RequestStatus.EXPIRED
        assert (await load(session_factory, scan_request.id)).status == RequestStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_get_foreign_request_is_not_found(self, session_factory, api_key, other_api_key):
        scan_request = await create_request(session_factory, api_key[0])
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await RequestService(session).get_request(other_api_key[0], scan_request.id)


class TestDeviceVisibility:
    @pytest.mark.asyncio
    async def test_device_sees_open_and_own_targeted_requests(
        self, session_factory, api_key, device, other_device
    ):
        open_request = await create_request(session_factory, api_key[0])
        mine = await create_request(session_factory, api_key[0], device_id=device.id)
        await create_request(session_factory, api_key[0], device_id=other_device.id)
        stale = await create_request(session_factory, api_key[0])
        await backdate(session_factory, stale.id)

        async with session_factory() as session:
            visible = await RequestService(session).list_for_device(device)

        assert {r.id for r in visible} == {open_request.id, mine.id}


class TestAccept:
    @pytest.mark.asyncio
    async def test_accept_claims_request(self, session_factory, api_key, device):
        scan_request = await create_request(session_factory, api_key[0])

        claimed = await accept(session_factory, device, scan_request.id)

        assert claimed.status == RequestStatus.SCANNING
        assert claimed.device_id == device.id

    @pytest.mark.asyncio
    async def test_second_device_loses_race(self, session_factory, api_key, device, other_device):
        """
        Both handlers read the request as pending; only one conditional
        update matches. The loser sees NotFound.
        """
        scan_request = await create_request(session_factory, api_key[0])

        async with session_factory() as loser_session:
            stale = await loser_session.get(ScanRequest, scan_request.id)
            assert stale.status == RequestStatus.PENDING

            await accept(session_factory, device, scan_request.id)

            with pytest.raises(NotFoundError):
                await RequestService(loser_session).accept(other_device, scan_request.id)

        stored = await load(session_factory, scan_request.id)
        assert stored.status == RequestStatus.SCANNING
        assert stored.device_id == device.id

    @pytest.mark.asyncio
    async def test_accept_after_claim_is_not_found(self, session_factory, api_key, device, other_device):
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, device, scan_request.id)

        with pytest.raises(NotFoundError):
            await accept(session_factory, other_device, scan_request.id)

    @pytest.mark.asyncio
    async def test_accept_targeted_at_other_device(self, session_factory, api_key, device, other_device):
        scan_request = await create_request(session_factory, api_key[0], device_id=other_device.id)
        with pytest.raises(NotFoundError):
            await accept(session_factory, device, scan_request.id)

    @pytest.mark.asyncio
    async def test_accept_expired_is_gone_and_persisted(self, session_factory, api_key, device):
        scan_request = await create_request(session_factory, api_key[0])
        await backdate(session_factory, scan_request.id)

        async with session_factory() as session:
            with pytest.raises(GoneError) as exc_info:
                await RequestService(session).accept(device, scan_request.id)
            await session.rollback()

        assert exc_info.value.code == "EXPIRED"
        assert (await load(session_factory, scan_request.id)).status == RequestStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_accept_request_of_another_key(self, session_factory, other_api_key, device):
        scan_request = await create_request(session_factory, other_api_key[0])
        with pytest.raises(NotFoundError):
            await accept(session_factory, device, scan_request.id)


class TestReject:
    async def _reject(self, session_factory, device, request_id) -> ScanRequest:
        async with session_factory() as session:
            scan_request = await RequestService(session).reject(device, request_id)
            await session.commit()
        return scan_request

    @pytest.mark.asyncio
    async def test_release_claimed_open_request(self, session_factory, api_key, device, other_device):
        """An open request released by its claimer goes back to the pool."""
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, device, scan_request.id)

        released = await self._reject(session_factory, device, scan_request.id)

        assert released.status == RequestStatus.PENDING
        assert released.device_id is None
        again = await accept(session_factory, other_device, scan_request.id)
        assert again.device_id == other_device.id

    @pytest.mark.asyncio
    async def test_reject_targeted_pending_cancels(self, session_factory, api_key, device):
        scan_request = await create_request(session_factory, api_key[0], device_id=device.id)
        rejected = await self._reject(session_factory, device, scan_request.id)
        assert rejected.status == RequestStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_reject_targeted_scanning_cancels(self, session_factory, api_key, device):
        scan_request = await create_request(session_factory, api_key[0], device_id=device.id)
        await accept(session_factory, device, scan_request.id)

        rejected = await self._reject(session_factory, device, scan_request.id)
        assert rejected.status == RequestStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_reject_unclaimed_open_request_is_noop(self, session_factory, api_key, device):
        scan_request = await create_request(session_factory, api_key[0])
        rejected = await self._reject(session_factory, device, scan_request.id)

        assert rejected.status == RequestStatus.PENDING
        assert rejected.device_id is None

    @pytest.mark.asyncio
    async def test_reject_request_claimed_by_other_device(
        self, session_factory, api_key, device, other_device
    ):
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, other_device, scan_request.id)

        with pytest.raises(NotFoundError):
            await self._reject(session_factory, device, scan_request.id)


class TestComplete:
    async def _complete(self, session_factory, storage, dispatcher, device, request_id, data, **kwargs):
        async with session_factory() as session:
            delivery = DeliveryService(session, storage, dispatcher=dispatcher)
            outcome = await RequestService(session, delivery=delivery).complete(
                device, request_id, data, **kwargs
            )
            await session.commit()
        return outcome

    @pytest.mark.asyncio
    async def test_complete_attaches_result_and_signs_webhook(
        self, session_factory, storage, webhook_dispatcher, webhook_calls, api_key, device, sample_pdf
    ):
        scan_request = await create_request(
            session_factory,
            api_key[0],
            webhook_url="https://hooks.example.com/scan",
            webhook_secret="whsec_test",
        )
        await accept(session_factory, device, scan_request.id)

        completed, result = await self._complete(
            session_factory, storage, webhook_dispatcher, device, scan_request.id,
            sample_pdf, ocr_text="Invoice 42", page_count="3",
        )

        assert completed.status == RequestStatus.COMPLETED
        assert completed.completed_at is not None
        assert result.page_count == 3
        assert result.pdf_size_bytes == len(sample_pdf)
        assert await storage.read(result.pdf_path) == sample_pdf

        assert len(webhook_calls) == 1
        sent = webhook_calls[0]
        assert str(sent.url) == "https://hooks.example.com/scan"
        assert verify_signature(sent.content, "whsec_test", sent.headers[SIGNATURE_HEADER])

    @pytest.mark.asyncio
    async def test_complete_without_file(
        self, session_factory, storage, webhook_dispatcher, api_key, device
    ):
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, device, scan_request.id)

        with pytest.raises(ValidationError) as exc_info:
            await self._complete(session_factory, storage, webhook_dispatcher, device, scan_request.id, b"")
        assert exc_info.value.code == "NO_FILE"

    @pytest.mark.asyncio
    async def test_complete_pending_request_is_not_found(
        self, session_factory, storage, webhook_dispatcher, api_key, device, sample_pdf
    ):
        """A device must accept before it can complete."""
        scan_request = await create_request(session_factory, api_key[0])
        with pytest.raises(NotFoundError):
            await self._complete(
                session_factory, storage, webhook_dispatcher, device, scan_request.id, sample_pdf
            )

    @pytest.mark.asyncio
    async def test_complete_by_non_claiming_device(
        self, session_factory, storage, webhook_dispatcher, api_key, device, other_device, sample_pdf
    ):
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, device, scan_request.id)

        with pytest.raises(NotFoundError):
            await self._complete(
                session_factory, storage, webhook_dispatcher, other_device, scan_request.id, sample_pdf
            )

    @pytest.mark.asyncio
    async def test_complete_without_webhook_sends_nothing(
        self, session_factory, storage, webhook_dispatcher, webhook_calls, api_key, device, sample_pdf
    ):
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, device, scan_request.id)

        _, result = await self._complete(
            session_factory, storage, webhook_dispatcher, device, scan_request.id, sample_pdf
        )

        assert result.page_count == 1
        assert webhook_calls == []


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_overwrites_any_state(self, session_factory, api_key, device):
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, device, scan_request.id)

        async with session_factory() as session:
            cancelled = await RequestService(session).cancel(api_key[0], scan_request.id)
            await session.commit()

        assert cancelled.status == RequestStatus.CANCELLED
        assert (await load(session_factory, scan_request.id)).status == RequestStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_unknown_request(self, db_session, api_key):
        with pytest.raises(NotFoundError):
            await RequestService(db_session).cancel(api_key[0], uuid.uuid4())


class TestUnpairedTarget:
    @pytest.mark.asyncio
    async def test_unpairing_target_opens_request_to_other_devices(
        self, session_factory, api_key, device, other_device
    ):
        scan_request = await create_request(session_factory, api_key[0], device_id=device.id)

        async with session_factory() as session:
            await DeviceService(session).unpair(api_key[0], device.id)
            await session.commit()

        async with session_factory() as session:
            visible = await RequestService(session).list_for_device(other_device)
        assert [r.id for r in visible] == [scan_request.id]

    @pytest.mark.asyncio
    async def test_unpairing_claimant_reoffers_open_request(
        self, session_factory, api_key, device, other_device
    ):
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, device, scan_request.id)

        async with session_factory() as session:
            await DeviceService(session).unpair(api_key[0], device.id)
            await session.commit()

        released = await load(session_factory, scan_request.id)
        assert released.status == RequestStatus.PENDING
        assert released.device_id is None

        claimed = await accept(session_factory, other_device, scan_request.id)
        assert claimed.status == RequestStatus.SCANNING
        assert claimed.device_id == other_device.id

    @pytest.mark.asyncio
    async def test_unpairing_claimant_cancels_targeted_request(self, session_factory, api_key, device):
        scan_request = await create_request(session_factory, api_key[0], device_id=device.id)
        await accept(session_factory, device, scan_request.id)

        async with session_factory() as session:
            await DeviceService(session).unpair(api_key[0], device.id)
            await session.commit()

        assert (await load(session_factory, scan_request.id)).status == RequestStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_unpairing_foreign_device_touches_nothing(
        self, session_factory, api_key, other_api_key, device
    ):
        scan_request = await create_request(session_factory, api_key[0])
        await accept(session_factory, device, scan_request.id)

        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await DeviceService(session).unpair(other_api_key[0], device.id)

        stored = await load(session_factory, scan_request.id)
        assert stored.status == RequestStatus.SCANNING
        assert stored.device_id == device.id
