"""
Pytest configuration and shared fixtures for Storage Lifecycle Engine tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from unittest.mock import MagicMock

import pytest
from minio import Minio
import redis

from storage_lifecycle.storage.audit import AuditLog, reset_audit_log
from storage_lifecycle.storage.factory import reset_default_storage_provider
from storage_lifecycle.storage.lifecycle import PredicateRegistry
from storage_lifecycle.storage.memory_provider import InMemoryStorageProvider
from storage_lifecycle.storage.models import StorageUploadOptions
from storage_lifecycle.storage.paths import FileType, generate_photo_path


# Fixed "now" used by scans in tests
NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_process_state():
    """Reset process-wide provider and audit log between tests."""
    yield
    reset_default_storage_provider()
    reset_audit_log()


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time; stored photos are aged relative to it."""
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_provider() -> InMemoryStorageProvider:
    """Create an empty in-memory provider whose uploads are stamped with NOW."""
    return InMemoryStorageProvider(clock=lambda: NOW)


@pytest.fixture
def audit_log() -> AuditLog:
    return AuditLog(capacity=100)


@pytest.fixture
def predicates() -> PredicateRegistry:
    return PredicateRegistry()


@pytest.fixture
def mock_minio() -> MagicMock:
    """Mock MinIO client."""
    return MagicMock(spec=Minio)


@pytest.fixture
def mock_redis() -> MagicMock:
    """Mock Redis client."""
    return MagicMock(spec=redis.Redis)


@pytest.fixture
def store_photo(memory_provider):
    """
    Upload a photo variant aged ``age_days`` relative to NOW.

    Returns the object key.
    """
    async def _store(
        album_id: str,
        photo_id: str,
        file_type: FileType,
        age_days: int = 0,
        body: bytes = b"image-bytes",
        metadata: Optional[Dict[str, str]] = None,
        content_type: str = "image/jpeg",
    ) -> str:
        key = generate_photo_path(album_id, photo_id, file_type)
        await memory_provider.upload_file(
            key,
            body,
            StorageUploadOptions(content_type=content_type, metadata=metadata or {}),
        )
        memory_provider.set_last_modified(key, NOW - timedelta(days=age_days))
        return key

    return _store
