"""
ScanRelay Backend - Shared Response Schemas
===========================================

Error and health shapes used by every router.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Uniform error body.

    Example:
        {
            "error": "Request not found",
            "code": "NOT_FOUND",
            "status": 404,
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Human-readable error description")
    code: str = Field(description="Stable machine-readable error code")
    status: int = Field(description="HTTP status code, repeated in the body")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy or degraded")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    sweeper: str = Field(description="Retention sweeper: running, stopped, disabled")
    uptime_seconds: float = Field(description="Seconds since service started")


class DeletedResponse(BaseModel):
    success: bool = Field(default=True)
