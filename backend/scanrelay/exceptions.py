"""
ScanRelay Backend - Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions, each carrying a stable machine code
       and the HTTP status it maps to.
How:   Every exception holds a message, a code and an optional context dict.
       Global handlers (registered in main.py) turn them into
       {"error", "code", "status", "request_id"} JSON responses.
Who:   Raised by services and auth dependencies; caught by global handlers.

Exception Hierarchy:
    ScanRelayError (base)              → 500 INTERNAL_ERROR
    ├── UnauthorizedError              → 401 UNAUTHORIZED
    ├── InvalidKeyError                → 401 INVALID_KEY
    ├── InvalidSessionError            → 401 INVALID_TOKEN
    ├── MissingDeviceIdError           → 400 MISSING_DEVICE_ID
    ├── DeviceNotFoundError            → 403 DEVICE_NOT_FOUND
    ├── NotFoundError                  → 404 NOT_FOUND | NO_RESULT | INVALID_TOKEN | INVALID_CODE ...
    ├── GoneError                      → 410 EXPIRED | FILE_DELETED | TOKEN_USED | CODE_EXPIRED ...
    ├── ValidationError                → 400 VALIDATION_ERROR | NO_FILE | NO_API_KEY
    ├── RateLimitExceededError         → 429 RATE_LIMITED
    └── FileStorageError               → 500 INTERNAL_ERROR

NotFound deliberately covers both "absent" and "owned by someone else" so
one tenant cannot probe for another tenant's ids. Gone means the entity did
exist but is expired, used up or had its bytes purged.
"""

from typing import Any, Dict, Optional


class ScanRelayError(Exception):
    """
    Base exception for all ScanRelay application errors.

    Attributes:
        message:     User-facing error description (safe to return in API response)
        code:        Stable machine-readable code clients can switch on
        status_code: HTTP status the global handler responds with
        context:     Additional debug info (logged but NOT returned to client)
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.context = context or {}
        super().__init__(self.message)


# ── Authentication ────────────────────────────────────────────────────────

class UnauthorizedError(ScanRelayError):
    """No credential presented, or the Authorization header is not `Bearer <key>`."""

    status_code = 401
    default_code = "UNAUTHORIZED"
    default_message = "Missing or invalid Authorization header"


class InvalidKeyError(ScanRelayError):
    """A well-formed API key that is unknown or has been revoked."""

    status_code = 401
    default_code = "INVALID_KEY"
    default_message = "Invalid or inactive API key"


class InvalidSessionError(ScanRelayError):
    """Dashboard session token missing, malformed, badly signed or expired."""

    status_code = 401
    default_code = "INVALID_TOKEN"
    default_message = "Invalid or expired session"


class MissingDeviceIdError(ScanRelayError):
    status_code = 400
    default_code = "MISSING_DEVICE_ID"
    default_message = "X-Device-Id header required"


class DeviceNotFoundError(ScanRelayError):
    """The X-Device-Id does not name a device paired to the presented key."""

    status_code = 403
    default_code = "DEVICE_NOT_FOUND"
    default_message = "Device not found or not paired with this API key"


# ── Resource State ────────────────────────────────────────────────────────

class NotFoundError(ScanRelayError):
    """
    Raised when a requested resource does not exist or is not visible to the caller.

    Codes used besides NOT_FOUND: NO_RESULT (request has no result yet),
    DEVICE_NOT_FOUND (target device on request creation), INVALID_TOKEN and
    INVALID_CODE (unknown pairing credentials).
    """

    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"{resource.capitalize()} not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, code=code, context=ctx)
        self.resource = resource


class GoneError(ScanRelayError):
    """
    The entity existed but can no longer be used.

    Codes: EXPIRED, FILE_DELETED, TOKEN_USED, CODE_USED, TOKEN_EXPIRED, CODE_EXPIRED.
    """

    status_code = 410
    default_code = "GONE"
    default_message = "Resource is no longer available"


class ValidationError(ScanRelayError):
    """
    Raised when client input fails validation.

    Codes: VALIDATION_ERROR (generic), NO_FILE (complete without upload),
    NO_API_KEY (pairing generate with no active key).
    """

    status_code = 400
    default_code = "VALIDATION_ERROR"
    default_message = "Validation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, code=code, context=ctx)
        self.field = field


class RateLimitExceededError(ScanRelayError):
    """Client exceeded the per-IP request rate; carries seconds until retry."""

    status_code = 429
    default_code = "RATE_LIMITED"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Too many requests. Please wait {retry_after} seconds before retrying."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


# ── Infrastructure ────────────────────────────────────────────────────────

class FileStorageError(ScanRelayError):
    """
    Blob storage could not read or write.

    The message returned to clients stays generic; paths and OS errors live
    in `context` for the server log only.
    """

    default_message = "File storage operation failed"
