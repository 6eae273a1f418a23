"""
Unit tests for album/photo organization helpers and metadata collection.
Tests storage_lifecycle/storage/organization.py and storage_lifecycle/storage/metadata.py
"""
import pytest

from storage_lifecycle.storage.errors import StorageProviderError
from storage_lifecycle.storage.metadata import collect_file_metadata
from storage_lifecycle.storage.models import StorageUploadOptions
from storage_lifecycle.storage.organization import (
    find_files_by_photo_id,
    get_album_file_count,
    get_photo_file_types,
    list_album_files,
)
from storage_lifecycle.storage.paths import FileType, generate_photo_path


@pytest.mark.unit
class TestOrganization:
    """Test album and photo lookups."""

    @pytest.mark.asyncio
    async def test_list_album_files(self, memory_provider, store_photo):
        await store_photo("a1", "p1", FileType.ORIGINAL)
        await store_photo("a1", "p2", FileType.THUMBNAIL)
        await store_photo("a10", "p1", FileType.ORIGINAL)

        keys = await list_album_files(memory_provider, "a1")

        assert keys == ["albums/a1/photos/p1/original.jpg", "albums/a1/photos/p2/thumbnail.jpg"]
        assert await get_album_file_count(memory_provider, "a1") == 2

    @pytest.mark.asyncio
    async def test_user_scoped_album(self, memory_provider):
        key = generate_photo_path("a1", "p1", FileType.ORIGINAL, user_id="u1")
        await memory_provider.upload_file(key, b"x")

        assert await list_album_files(memory_provider, "a1", user_id="u1") == [key]
        assert await list_album_files(memory_provider, "a1") == []

    @pytest.mark.asyncio
    async def test_photo_variants(self, memory_provider, store_photo):
        await store_photo("a1", "p1", FileType.ORIGINAL)
        await store_photo("a1", "p1", FileType.PREVIEW)
        await store_photo("a1", "p12", FileType.THUMBNAIL)

        keys = await find_files_by_photo_id(memory_provider, "a1", "p1")
        file_types = await get_photo_file_types(memory_provider, "a1", "p1")

        assert len(keys) == 2
        assert file_types == {FileType.ORIGINAL, FileType.PREVIEW}


@pytest.mark.unit
class TestCollectFileMetadata:
    """Test head metadata collection through a provider."""

    @pytest.mark.asyncio
    async def test_collects_and_derives(self, memory_provider, store_photo, now):
        key = await store_photo(
            "a1", "p1", FileType.THUMBNAIL, age_days=45,
            metadata={"lastAccessed": "2025-05-22T12:00:00Z"},
        )

        file = await collect_file_metadata(memory_provider, key, now)

        assert file.age_days == 45
        assert file.age_since_access_days == 10
        assert file.size == len(b"image-bytes")
        assert file.file_type == FileType.THUMBNAIL
        assert file.parsed.album_id == "a1"

    @pytest.mark.asyncio
    async def test_missing_object_raises_not_found(self, memory_provider, now):
        with pytest.raises(StorageProviderError) as exc_info:
            await collect_file_metadata(memory_provider, "albums/a1/photos/none/original.jpg", now)

        assert exc_info.value.is_not_found

    @pytest.mark.asyncio
    async def test_unstructured_key(self, memory_provider, now):
        await memory_provider.upload_file("exports/report.csv", b"a,b", StorageUploadOptions(content_type="text/csv"))

        file = await collect_file_metadata(memory_provider, "exports/report.csv", now)

        assert file.parsed is None
        assert file.file_type is None
        assert file.content_type == "text/csv"
