"""
ORM models. Importing this package registers every table on `Base.metadata`
(used by Alembic autogenerate and by the test suite's create_all).
"""

from scanrelay.models.api_key import ApiKey
from scanrelay.models.device import Device, DevicePlatform
from scanrelay.models.pairing_session import PairingSession
from scanrelay.models.scan_request import RequestStatus, ScanRequest
from scanrelay.models.scan_result import ScanResult

__all__ = [
    "ApiKey",
    "Device",
    "DevicePlatform",
    "PairingSession",
    "RequestStatus",
    "ScanRequest",
    "ScanResult",
]
