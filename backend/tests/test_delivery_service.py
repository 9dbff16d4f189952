"""
ScanRelay Backend - Result & Delivery Tests
===========================================

What we test:
    - page_count parsing never raises
    - Webhook payload shape and HMAC signature
    - Dispatcher swallows non-2xx and network failures
    - Result retrieval: pick-up flag, NO_RESULT, FILE_DELETED
"""

import json

import httpx
import pytest

from scanrelay.exceptions import GoneError, NotFoundError
from scanrelay.security import SIGNATURE_HEADER, verify_signature
from scanrelay.services.delivery_service import (
    OCR_PREVIEW_LENGTH,
    DeliveryService,
    WebhookDispatcher,
    parse_page_count,
)
from scanrelay.services.request_service import RequestService


@pytest.mark.parametrize(
    "raw, expected",
    [(None, 1), ("", 1), ("abc", 1), ("0", 1), ("-3", 1), ("4", 4), (" 7 ", 7), (12, 12)],
)
def test_parse_page_count(raw, expected):
    assert parse_page_count(raw) == expected


async def completed_request(session_factory, storage, credential, device, data, ocr_text=""):
    """Create, accept and complete one request; returns (request, result)."""
    async with session_factory() as session:
        service = RequestService(session, delivery=DeliveryService(session, storage))
        scan_request = await service.create(credential, "Scan the lease")
        await service.accept(device, scan_request.id)
        outcome = await service.complete(device, scan_request.id, data, ocr_text=ocr_text, page_count=2)
        await session.commit()
    return outcome


class TestWebhookDispatcher:
    @pytest.mark.asyncio
    async def test_payload_and_signature(
        self, session_factory, storage, api_key, device, sample_pdf, webhook_dispatcher, webhook_calls
    ):
        scan_request, result = await completed_request(
            session_factory, storage, api_key[0], device, sample_pdf, ocr_text="x" * 900
        )

        body = webhook_dispatcher.build_payload(scan_request, result)
        delivered = await webhook_dispatcher.send("https://hooks.example.com/in", body, "s3cret")

        assert delivered is True
        payload = json.loads(webhook_calls[0].content)
        assert payload["event"] == "scan.completed"
        assert payload["request_id"] == str(scan_request.id)
        assert payload["message"] == "Scan the lease"
        assert payload["result"] == {
            "pdf_url": f"http://scanrelay.test/api/v1/requests/{scan_request.id}/pdf",
            "text_url": f"http://scanrelay.test/api/v1/requests/{scan_request.id}/text",
            "page_count": 2,
            "ocr_text_preview": "x" * OCR_PREVIEW_LENGTH,
        }
        assert verify_signature(webhook_calls[0].content, "s3cret", webhook_calls[0].headers[SIGNATURE_HEADER])

    def test_no_secret_means_no_signature(self):
        headers = WebhookDispatcher().build_headers(b"{}", None)
        assert SIGNATURE_HEADER not in headers
        assert headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_receiver_error_is_not_raised(self):
        dispatcher = WebhookDispatcher(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        assert await dispatcher.send("https://hooks.example.com/in", b"{}") is False

    @pytest.mark.asyncio
    async def test_network_error_is_not_raised(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = WebhookDispatcher(transport=httpx.MockTransport(refuse))
        assert await dispatcher.send("https://hooks.example.com/in", b"{}", "s") is False


class TestResultRetrieval:
    @pytest.mark.asyncio
    async def test_first_fetch_marks_picked_up(self, session_factory, storage, api_key, device, sample_pdf):
        scan_request, _ = await completed_request(session_factory, storage, api_key[0], device, sample_pdf)

        async with session_factory() as session:
            _, result = await DeliveryService(session, storage).fetch_result(api_key[0], scan_request.id)
            await session.commit()
        assert result.picked_up is True
        first_pickup = result.picked_up_at

        async with session_factory() as session:
            _, again = await DeliveryService(session, storage).fetch_result(api_key[0], scan_request.id)
        assert again.picked_up_at == first_pickup

    @pytest.mark.asyncio
    async def test_pdf_bytes_round_trip(self, session_factory, storage, api_key, device, sample_pdf):
        scan_request, _ = await completed_request(session_factory, storage, api_key[0], device, sample_pdf)

        async with session_factory() as session:
            _, data = await DeliveryService(session, storage).fetch_pdf(api_key[0], scan_request.id)
        assert data == sample_pdf

    @pytest.mark.asyncio
    async def test_pdf_after_blob_purge_is_gone(self, session_factory, storage, api_key, device, sample_pdf):
        scan_request, result = await completed_request(
            session_factory, storage, api_key[0], device, sample_pdf
        )
        await storage.delete(result.pdf_path)

        async with session_factory() as session:
            with pytest.raises(GoneError) as exc_info:
                await DeliveryService(session, storage).fetch_pdf(api_key[0], scan_request.id)
        assert exc_info.value.code == "FILE_DELETED"

    @pytest.mark.asyncio
    async def test_no_result_yet(self, session_factory, storage, api_key):
        async with session_factory() as session:
            scan_request = await RequestService(session).create(api_key[0], "pending")
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(NotFoundError) as exc_info:
                await DeliveryService(session, storage).fetch_text(api_key[0], scan_request.id)
        assert exc_info.value.code == "NO_RESULT"

    @pytest.mark.asyncio
    async def test_other_key_cannot_read_result(
        self, session_factory, storage, api_key, other_api_key, device, sample_pdf
    ):
        scan_request, _ = await completed_request(session_factory, storage, api_key[0], device, sample_pdf)

        async with session_factory() as session:
            with pytest.raises(NotFoundError) as exc_info:
                await DeliveryService(session, storage).fetch_result(other_api_key[0], scan_request.id)
        assert exc_info.value.code == "NOT_FOUND"
