"""
ScanRelay Backend - Push Notifications
======================================

What:  Notifies phones that a new scan request is waiting.
How:   `PushNotifier` is the provider interface; `LoggingPushNotifier` is the
       shipped implementation and only logs (APNs/FCM delivery lives outside
       this service). `notify_new_request` fans a request out to its target
       device, or to every device of the key when the request is open.
When:  Scheduled as a background task after a request is created; failures
       are logged and never reach the issuer.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from scanrelay.models.device import Device

logger = logging.getLogger(__name__)


class PushNotifier(ABC):
    @abstractmethod
    async def notify(
        self,
        device_token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class LoggingPushNotifier(PushNotifier):
    async def notify(
        self,
        device_token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        logger.info(
            "Push to %s...: %s | %s | %s",
            device_token[:8],
            title,
            body,
            data or {},
        )


async def notify_new_request(
    session_factory: async_sessionmaker,
    notifier: PushNotifier,
    api_key_id: uuid.UUID,
    request_id: uuid.UUID,
    message: str,
    target_device_id: Optional[uuid.UUID] = None,
) -> int:
    """
    Push "new scan request" to the target device or all devices of the key.

    Returns the number of devices notified. Never raises.
    """
    try:
        async with session_factory() as session:
            query = select(Device.device_token).where(Device.api_key_id == api_key_id)
            if target_device_id is not None:
                query = query.where(Device.id == target_device_id)
            tokens = list((await session.execute(query)).scalars().all())
    except Exception as e:
        logger.error("Push lookup failed for request %s: %s", request_id, str(e), exc_info=True)
        return 0

    sent = 0
    for token in tokens:
        try:
            await notifier.notify(
                token,
                "New scan request",
                message,
                {"request_id": str(request_id), "type": "scan_request"},
            )
            sent += 1
        except Exception as e:
            logger.warning("Push to device failed for request %s: %s", request_id, str(e))
    return sent
