"""
ScanRelay Backend - Blob Storage Tests
======================================

What we test:
    - save() writes under a YYYY/MM/DD handle and read() returns the bytes
    - exists() / delete() on present and missing blobs
    - Handles that escape the storage root are refused
"""

import re

import pytest

from scanrelay.exceptions import FileStorageError


class TestLocalStorageRoundTrip:
    @pytest.mark.asyncio
    async def test_save_returns_dated_handle(self, storage, sample_pdf):
        """Handles are relative, date-partitioned and keep only the base name."""
        handle = await storage.save("../../etc/scan.pdf", sample_pdf)

        assert re.fullmatch(r"\d{4}/\d{2}/\d{2}/scan\.pdf", handle)
        assert await storage.read(handle) == sample_pdf

    @pytest.mark.asyncio
    async def test_exists_tracks_delete(self, storage, sample_pdf):
        handle = await storage.save("a.pdf", sample_pdf)
        assert await storage.exists(handle) is True

        await storage.delete(handle)
        assert await storage.exists(handle) is False

    @pytest.mark.asyncio
    async def test_delete_missing_blob_is_noop(self, storage):
        """Deleting twice (or never-written blobs) must not raise."""
        await storage.delete("2020/01/01/never-written.pdf")


class TestLocalStorageErrors:
    @pytest.mark.asyncio
    async def test_read_missing_blob_raises(self, storage):
        with pytest.raises(FileStorageError):
            await storage.read("2020/01/01/missing.pdf")

    @pytest.mark.asyncio
    async def test_handle_outside_root_is_refused(self, storage):
        """Path traversal in a stored handle never reaches the filesystem."""
        with pytest.raises(FileStorageError):
            await storage.read("../../outside.pdf")
        assert await storage.exists("../../outside.pdf") is False
