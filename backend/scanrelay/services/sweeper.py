"""
ScanRelay Backend - Retention Sweeper
=====================================

What:  Periodic background pass that keeps stored state inside its lifetime.
How:   Two independent sweeps per cycle, each in its own session:
         1. pending requests past `expires_at` → expired (one bulk UPDATE)
         2. results past `auto_delete_at` → blob deleted, then row deleted
            and committed, one result at a time
       Both are idempotent. The expiry UPDATE re-checks `status = pending`, so
       it converges with a concurrent lazy expiry or claim.
When:  Started from the application lifespan; runs once immediately and then
       every CLEANUP_INTERVAL_SECONDS until shutdown cancels it.
"""

import asyncio
import logging
from typing import Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from scanrelay.config import settings
from scanrelay.database import utcnow
from scanrelay.exceptions import FileStorageError
from scanrelay.models.scan_request import RequestStatus, ScanRequest
from scanrelay.models.scan_result import ScanResult
from scanrelay.services.storage import StorageProvider

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        storage: StorageProvider,
        interval: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.interval = interval if interval is not None else settings.cleanup_interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def expire_pending(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                update(ScanRequest)
                .where(
                    ScanRequest.status == RequestStatus.PENDING,
                    ScanRequest.expires_at <= utcnow(),
                )
                .values(status=RequestStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def purge_results(self) -> int:
        """
        Delete results past retention, oldest first. Blob first, then row.

        Each row delete commits on its own, so a failure part-way keeps the
        rows already handled deleted along with their blobs.
        """
        purged = 0
        async with self.session_factory() as session:
            due = (
                await session.execute(
                    select(ScanResult.id, ScanResult.pdf_path)
                    .where(ScanResult.auto_delete_at <= utcnow())
                    .order_by(ScanResult.auto_delete_at)
                )
            ).all()

            for result_id, pdf_path in due:
                try:
                    await self.storage.delete(pdf_path)
                except FileStorageError as e:
                    logger.warning("Could not delete blob %s: %s", pdf_path, e.context or str(e))
                await session.execute(
                    delete(ScanResult)
                    .where(ScanResult.id == result_id)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                purged += 1
        return purged

    async def run_once(self) -> Tuple[int, int]:
        """One cycle. A failing sweep is logged and does not block the other."""
        expired = purged = 0
        try:
            expired = await self.expire_pending()
        except Exception as e:
            logger.error("Expiry sweep failed: %s", str(e), exc_info=True)
        try:
            purged = await self.purge_results()
        except Exception as e:
            logger.error("Result purge failed: %s", str(e), exc_info=True)

        if expired or purged:
            logger.info("Sweep: expired %d requests, purged %d results", expired, purged)
        return expired, purged

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="retention-sweeper")
            logger.info("Retention sweeper started (every %ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Retention sweeper stopped")
