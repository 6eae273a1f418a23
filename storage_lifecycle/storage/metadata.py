"""
File Metadata Collection

Turns an object key plus its head metadata into the FileLifecycleMetadata
record the policy engine evaluates.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .models import StorageFileMetadata
from .paths import FileType, ParsedPath, parse_photo_path
from .provider import StorageProvider

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# S3 lowercases user metadata names, so every spelling is accepted
LAST_ACCESSED_KEYS = ("lastAccessed", "lastaccessed", "last-accessed", "last_accessed")


@dataclass(frozen=True)
class FileLifecycleMetadata:
    """
    Metadata snapshot enriched with derived lifecycle fields

    ``size`` and ``age_since_access_days`` are None when the backend did not
    report them; conditions on absent fields fail.
    """
    key: str
    age_days: int
    size: Optional[int] = None
    content_type: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    last_accessed: Optional[datetime] = None
    age_since_access_days: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    parsed: Optional[ParsedPath] = None

    @property
    def file_type(self) -> Optional[FileType]:
        return self.parsed.file_type if self.parsed else None

    def get_metadata(self, name: str) -> Optional[str]:
        """User metadata lookup, exact name first, then case-insensitive."""
        if name in self.metadata:
            return self.metadata[name]
        lowered = name.lower()
        for key, value in self.metadata.items():
            if key.lower() == lowered:
                return value
        return None

    def has_metadata(self, name: str) -> bool:
        return self.get_metadata(name) is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'size': self.size,
            'content_type': self.content_type,
            'etag': self.etag,
            'last_modified': self.last_modified.isoformat() if self.last_modified else None,
            'last_accessed': self.last_accessed.isoformat() if self.last_accessed else None,
            'age_days': self.age_days,
            'age_since_access_days': self.age_since_access_days,
            'file_type': self.file_type.value if self.file_type else None,
            'album_id': self.parsed.album_id if self.parsed else None,
            'photo_id': self.parsed.photo_id if self.parsed else None,
            'metadata': dict(self.metadata),
        }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed, floored; never negative."""
    seconds = (_as_utc(later) - _as_utc(earlier)).total_seconds()
    return max(0, int(seconds // SECONDS_PER_DAY))


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; invalid values are treated as absent."""
    if not value:
        return None
    try:
        return _as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError:
        logger.debug(f"Ignoring unparseable timestamp: {value!r}")
        return None


def _last_accessed(metadata: Mapping[str, str]) -> Optional[datetime]:
    for name in LAST_ACCESSED_KEYS:
        if name in metadata:
            return parse_timestamp(metadata[name])
    return None


def build_lifecycle_metadata(
    snapshot: StorageFileMetadata,
    now: Optional[datetime] = None,
) -> FileLifecycleMetadata:
    """
    Derive lifecycle fields from a head-metadata snapshot.

    Args:
        snapshot: Provider metadata
        now: Evaluation time (defaults to current UTC time)

    Returns:
        Lifecycle metadata; a missing last-modified time counts as "now"
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    last_modified = _as_utc(snapshot.last_modified) if snapshot.last_modified else None
    last_accessed = _last_accessed(snapshot.metadata)

    return FileLifecycleMetadata(
        key=snapshot.key,
        age_days=days_between(last_modified or now, now),
        size=snapshot.content_length,
        content_type=snapshot.content_type,
        etag=snapshot.etag,
        last_modified=last_modified,
        last_accessed=last_accessed,
        age_since_access_days=days_between(last_accessed, now) if last_accessed else None,
        metadata=dict(snapshot.metadata),
        parsed=parse_photo_path(snapshot.key),
    )


async def collect_file_metadata(
    provider: StorageProvider,
    key: str,
    now: Optional[datetime] = None,
) -> FileLifecycleMetadata:
    """
    Head an object and build its lifecycle metadata.

    Raises:
        StorageProviderError: When the head request fails (NOT_FOUND included)
    """
    snapshot = await provider.get_file_metadata(key)
    return build_lifecycle_metadata(snapshot, now)
