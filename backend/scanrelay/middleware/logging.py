"""
ScanRelay Backend - Access Log Middleware
=========================================

One line per request on the `scanrelay.access` logger:

    POST /api/v1/device/requests/<id>/complete 201 84.2ms [a1b2c3d4] 10.0.0.7

Level follows the status class (5xx ERROR, 4xx WARNING, else INFO). Headers
and bodies stay out of the log: they carry API keys, session tokens and
scanned documents. Device polling and health probes are logged at DEBUG.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from scanrelay.middleware.request_id import request_id_var

access_logger = logging.getLogger("scanrelay.access")

# High-frequency endpoints; a healthy fleet polls these constantly
NOISY_ROUTES = ("/health", "/api/v1/device/requests")


def level_for(status: int, path: str, method: str) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    if method == "GET" and path in NOISY_ROUTES:
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._write(request, 500, started)
            raise

        self._write(request, response.status_code, started)
        return response

    @staticmethod
    def _write(request: Request, status: int, started: float) -> None:
        path = request.url.path
        level = level_for(status, path, request.method)
        if not access_logger.isEnabledFor(level):
            return

        elapsed_ms = (time.perf_counter() - started) * 1000
        client = request.client.host if request.client else "-"
        access_logger.log(
            level,
            "%s %s %d %.1fms [%s] %s",
            request.method,
            path,
            status,
            elapsed_ms,
            request_id_var.get("") or "-",
            client,
        )
