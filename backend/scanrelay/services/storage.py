"""
ScanRelay Backend - Blob Storage Providers
==========================================

What:  Abstract blob store for scanned PDFs plus the local filesystem backend.
How:   `save(name, data)` returns an opaque handle; `read`, `exists` and
       `delete` take that handle. Handles are relative paths for the local
       backend (YYYY/MM/DD/<name>) and are never shown to API clients.
Who:   Delivery pipeline (write on completion, read on PDF fetch) and the
       retention sweeper (delete on purge).

Directory Structure (local backend):
    storage/
    └── 2025/
        └── 01/
            └── 15/
                └── 6f1c...-9b2e....pdf
"""

import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiofiles

from scanrelay.config import settings
from scanrelay.exceptions import FileStorageError

logger = logging.getLogger(__name__)


class StorageProvider(ABC):
    """
    Contract for blob storage backends.

    Contract:
        - save() writes the full payload before returning the handle
        - read() raises FileStorageError when the handle does not resolve
        - delete() is idempotent: a missing blob is not an error
    """

    @abstractmethod
    async def save(self, name: str, data: bytes) -> str:
        """Persist `data` under a name derived from `name`; return the handle."""
        ...

    @abstractmethod
    async def read(self, handle: str) -> bytes:
        ...

    @abstractmethod
    async def exists(self, handle: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, handle: str) -> None:
        ...


class LocalStorageProvider(StorageProvider):
    """Stores blobs under a root directory, organised by UTC date."""

    def __init__(self, storage_root: Optional[str] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()

    def _resolve(self, handle: str) -> Path:
        """
        Map a handle to an absolute path inside the storage root.

        Raises FileStorageError for handles that escape the root (../ etc).
        """
        full_path = (self.storage_root / handle).resolve()
        if not full_path.is_relative_to(self.storage_root):
            raise FileStorageError(
                message="Invalid storage handle",
                context={"handle": handle},
            )
        return full_path

    async def save(self, name: str, data: bytes) -> str:
        date_dir = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        handle = f"{date_dir}/{Path(name).name}"
        absolute_path = self._resolve(handle)

        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error("Failed to store blob at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded file. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

        logger.info("Blob stored: %s (%d bytes)", handle, len(data))
        return handle

    async def read(self, handle: str) -> bytes:
        absolute_path = self._resolve(handle)
        try:
            async with aiofiles.open(absolute_path, "rb") as f:
                return await f.read()
        except OSError as e:
            logger.error("Failed to read blob %s: %s", handle, str(e))
            raise FileStorageError(
                message="Failed to read stored file.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

    async def exists(self, handle: str) -> bool:
        try:
            return self._resolve(handle).is_file()
        except FileStorageError:
            return False

    async def delete(self, handle: str) -> None:
        path = self._resolve(handle)
        try:
            os.remove(path)
            logger.info("Deleted blob: %s", handle)
        except FileNotFoundError:
            logger.debug("Delete: blob already gone: %s", handle)
        except OSError as e:
            raise FileStorageError(
                message="Failed to delete stored file.",
                context={"path": str(path), "os_error": str(e)},
            )
