"""
Storage Usage Reporting

Aggregates object counts and sizes under a prefix, optionally grouped by
photo variant and by album.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .paths import parse_photo_path
from .provider import StorageProvider

logger = logging.getLogger(__name__)

_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def format_bytes(size: int) -> str:
    """
    Human readable byte count, e.g. 1536 -> "1.5 KB".

    Args:
        size: Size in bytes

    Returns:
        Formatted string with up to two decimals
    """
    if size <= 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {_UNITS[unit]}"


@dataclass
class UsageGroup:
    count: int = 0
    size_bytes: int = 0

    def add(self, size: int) -> None:
        self.count += 1
        self.size_bytes += size

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'size_bytes': self.size_bytes,
            'size_formatted': format_bytes(self.size_bytes),
        }


@dataclass
class StorageUsageReport:
    """
    Storage usage statistics
    """
    total_files: int
    total_size_bytes: int
    generated_at: datetime
    by_file_type: Optional[Dict[str, UsageGroup]] = None
    by_album: Optional[Dict[str, UsageGroup]] = None
    oldest_file: Optional[Dict[str, Any]] = None
    newest_file: Optional[Dict[str, Any]] = None
    largest_files: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_size_formatted(self) -> str:
        return format_bytes(self.total_size_bytes)

    @property
    def average_file_size(self) -> int:
        if self.total_files == 0:
            return 0
        return self.total_size_bytes // self.total_files

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_files': self.total_files,
            'total_size_bytes': self.total_size_bytes,
            'total_size_formatted': self.total_size_formatted,
            'average_file_size': self.average_file_size,
            'by_file_type': (
                {k: g.to_dict() for k, g in self.by_file_type.items()} if self.by_file_type is not None else None
            ),
            'by_album': (
                {k: g.to_dict() for k, g in self.by_album.items()} if self.by_album is not None else None
            ),
            'oldest_file': self.oldest_file,
            'newest_file': self.newest_file,
            'largest_files': self.largest_files,
            'generated_at': self.generated_at.isoformat(),
        }


async def generate_storage_usage_report(
    provider: StorageProvider,
    prefix: str = "",
    group_by_file_type: bool = True,
    group_by_album: bool = False,
    largest: int = 10,
) -> StorageUsageReport:
    """
    Calculate storage usage under a prefix

    Args:
        provider: Storage provider
        prefix: Optional key prefix
        group_by_file_type: Break totals down by photo variant ("other" for unparsed keys)
        group_by_album: Break totals down by album id
        largest: Number of largest files to include

    Returns:
        StorageUsageReport statistics
    """
    total_size = 0
    file_count = 0
    by_file_type: Optional[Dict[str, UsageGroup]] = {} if group_by_file_type else None
    by_album: Optional[Dict[str, UsageGroup]] = {} if group_by_album else None
    oldest = newest = None
    all_files: List[Dict[str, Any]] = []

    async for entry in provider.iter_files_with_metadata(prefix):
        size = entry.size or 0
        total_size += size
        file_count += 1

        parsed = parse_photo_path(entry.key)
        if by_file_type is not None:
            file_type = parsed.file_type.value if parsed and parsed.file_type else "other"
            by_file_type.setdefault(file_type, UsageGroup()).add(size)
        if by_album is not None and parsed:
            by_album.setdefault(parsed.album_id, UsageGroup()).add(size)

        info = {
            'key': entry.key,
            'size': size,
            'last_modified': entry.last_modified.isoformat() if entry.last_modified else None,
        }
        all_files.append(info)

        if entry.last_modified is not None:
            if oldest is None or entry.last_modified < oldest[0]:
                oldest = (entry.last_modified, info)
            if newest is None or entry.last_modified > newest[0]:
                newest = (entry.last_modified, info)

    report = StorageUsageReport(
        total_files=file_count,
        total_size_bytes=total_size,
        generated_at=datetime.now(timezone.utc),
        by_file_type=by_file_type,
        by_album=by_album,
        oldest_file=oldest[1] if oldest else None,
        newest_file=newest[1] if newest else None,
        largest_files=sorted(all_files, key=lambda x: x['size'], reverse=True)[:largest],
    )

    logger.info(
        f"Calculated usage under '{prefix or '/'}': {report.total_size_formatted}, {file_count} files"
    )
    return report
