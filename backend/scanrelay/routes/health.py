"""
ScanRelay Backend - Health Check Route
======================================

What:  Liveness plus a database probe, for Docker and load balancer checks.
How:   `SELECT 1` on a request session. The service keeps answering when the
       database is down; it reports `degraded` with `database: disconnected`
       instead of failing the probe outright.
"""

import logging
import time

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from scanrelay import __version__
from scanrelay.database import get_db_session
from scanrelay.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        await db.rollback()
        db_status = "disconnected"
        overall = "degraded"
        logger.warning("Health check: database unreachable: %s", str(e))

    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None:
        sweeper_status = "disabled"
    else:
        sweeper_status = "running" if sweeper.is_running else "stopped"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        sweeper=sweeper_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
