"""
Unit tests for storage usage reporting.
Tests storage_lifecycle/storage/usage.py
"""
import pytest

from storage_lifecycle.storage.models import StorageUploadOptions
from storage_lifecycle.storage.paths import FileType
from storage_lifecycle.storage.usage import format_bytes, generate_storage_usage_report


@pytest.mark.unit
class TestFormatBytes:
    """Test human readable sizes."""

    @pytest.mark.parametrize("size,expected", [
        (0, "0 B"),
        (512, "512 B"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5 MB"),
        (3 * 1024 ** 3, "3 GB"),
    ])
    def test_format(self, size, expected):
        assert format_bytes(size) == expected


@pytest.mark.unit
class TestStorageUsageReport:
    """Test usage aggregation over a provider."""

    @pytest.mark.asyncio
    async def test_grouping(self, memory_provider, store_photo):
        """Test totals and breakdowns by variant and album."""
        await store_photo("a1", "p1", FileType.ORIGINAL, age_days=30, body=b"x" * 100)
        await store_photo("a1", "p1", FileType.THUMBNAIL, age_days=10, body=b"x" * 10)
        await store_photo("a2", "p2", FileType.ORIGINAL, age_days=1, body=b"x" * 50)
        await memory_provider.upload_file("exports/report.csv", b"x" * 5, StorageUploadOptions())

        report = await generate_storage_usage_report(memory_provider, group_by_album=True, largest=2)

        assert report.total_files == 4
        assert report.total_size_bytes == 165
        assert report.average_file_size == 41
        assert report.by_file_type["original"].count == 2
        assert report.by_file_type["original"].size_bytes == 150
        assert report.by_file_type["other"].count == 1
        assert set(report.by_album) == {"a1", "a2"}
        assert report.by_album["a1"].size_bytes == 110
        assert [f["size"] for f in report.largest_files] == [100, 50]
        assert report.oldest_file["key"] == "albums/a1/photos/p1/original.jpg"

    @pytest.mark.asyncio
    async def test_prefix_and_disabled_groups(self, memory_provider, store_photo):
        await store_photo("a1", "p1", FileType.ORIGINAL)
        await store_photo("a2", "p2", FileType.ORIGINAL)

        report = await generate_storage_usage_report(
            memory_provider, prefix="albums/a2/", group_by_file_type=False
        )

        assert report.total_files == 1
        assert report.by_file_type is None
        assert report.by_album is None

    @pytest.mark.asyncio
    async def test_empty_store(self, memory_provider):
        report = await generate_storage_usage_report(memory_provider)

        data = report.to_dict()
        assert data["total_files"] == 0
        assert data["total_size_formatted"] == "0 B"
        assert data["average_file_size"] == 0
        assert data["oldest_file"] is None
