"""
Cross-Provider Migration & Comparison

Copies object sets between two storage providers (download + re-upload,
preserving content type and user metadata) and diffs the key spaces of two
providers. Failures are recorded per key; a batch never aborts because one
object failed.
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from storage_lifecycle.metrics import record_migration_file
from .errors import StorageProviderError
from .models import CancellationToken, StorageUploadOptions
from .provider import StorageProvider

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


class MigrationStatus(str, Enum):
    COPYING = "copying"
    VERIFYING = "verifying"
    DELETING = "deleting"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class MigrationProgress:
    key: str
    status: MigrationStatus
    completed: int
    total: int
    error: Optional[str] = None


@dataclass
class MigrationOptions:
    """
    Migration options
    """
    prefix: str = ""
    max_files: Optional[int] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    delete_source: bool = False
    verify_after_migration: bool = True
    on_progress: Optional[Callable[[MigrationProgress], Any]] = None
    cancel_token: Optional[CancellationToken] = None


@dataclass
class MigrationResult:
    """
    Migration outcome
    """
    migrated: int = 0
    failed: int = 0
    failed_keys: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    total: int = 0
    total_bytes: int = 0
    duration_ms: int = 0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'migrated': self.migrated,
            'failed': self.failed,
            'failed_keys': list(self.failed_keys),
            'errors': dict(self.errors),
            'total': self.total,
            'total_bytes': self.total_bytes,
            'duration_ms': self.duration_ms,
            'cancelled': self.cancelled,
        }


class MigrationVerificationError(Exception):
    """Destination copy does not match the source."""
    pass


@dataclass(frozen=True)
class SizeMismatch:
    key: str
    source_size: Optional[int]
    dest_size: Optional[int]


@dataclass
class ProviderComparison:
    """
    Key-space diff between two providers
    """
    matching: int = 0
    missing_in_destination: List[str] = field(default_factory=list)
    missing_in_source: List[str] = field(default_factory=list)
    size_mismatches: List[SizeMismatch] = field(default_factory=list)
    total: int = 0

    @property
    def in_sync(self) -> bool:
        return not (self.missing_in_destination or self.missing_in_source or self.size_mismatches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'matching': self.matching,
            'missing_in_destination': list(self.missing_in_destination),
            'missing_in_source': list(self.missing_in_source),
            'size_mismatches': [
                {'key': m.key, 'source_size': m.source_size, 'dest_size': m.dest_size}
                for m in self.size_mismatches
            ],
            'total': self.total,
        }


async def _emit(callback, progress: MigrationProgress) -> None:
    if callback is None:
        return
    outcome = callback(progress)
    if inspect.isawaitable(outcome):
        await outcome


async def _list_keys(
    provider: StorageProvider,
    prefix: str,
    max_files: Optional[int],
    cancel_token: Optional[CancellationToken],
) -> List[str]:
    keys: List[str] = []
    async for key in provider.iter_keys(prefix):
        if max_files is not None and len(keys) >= max_files:
            break
        if cancel_token is not None and cancel_token.should_stop():
            break
        keys.append(key)
    return keys


async def migrate_between_providers(
    source: StorageProvider,
    dest: StorageProvider,
    options: Optional[MigrationOptions] = None,
) -> MigrationResult:
    """
    Copy objects from one provider to another.

    Each object is downloaded, re-uploaded with the same content type and
    user metadata, optionally verified (size must match; an ETag difference
    only warns because multipart ETags differ between backends) and
    optionally deleted from the source.

    Args:
        source: Provider to copy from
        dest: Provider to copy to
        options: Prefix, caps, batch size, verification, deletion, progress, cancellation

    Returns:
        Migration result

    Raises:
        StorageProviderError: When listing the source fails
    """
    options = options or MigrationOptions()
    started = time.perf_counter()
    result = MigrationResult()

    keys = await _list_keys(source, options.prefix, options.max_files, options.cancel_token)
    result.total = len(keys)
    logger.info(f"Migrating {result.total} files (prefix='{options.prefix}', batch_size={options.batch_size})")

    completed = 0

    def fail(key: str, message: str) -> None:
        result.failed += 1
        result.failed_keys.append(key)
        result.errors[key] = message
        record_migration_file("failed")
        logger.warning(f"Migration failed for '{key}': {message}")

    async def migrate_one(key: str) -> None:
        nonlocal completed
        await _emit(options.on_progress, MigrationProgress(key, MigrationStatus.COPYING, completed, result.total))
        try:
            downloaded = await source.download_file_as_buffer(key)
            snapshot = await source.get_file_metadata(key)
            metadata = dict(snapshot.metadata)

            await dest.upload_file(
                key,
                downloaded.body,
                StorageUploadOptions(
                    content_type=snapshot.content_type or downloaded.content_type,
                    metadata=metadata,
                    cache_control=metadata.get("cacheControl"),
                ),
            )

            if options.verify_after_migration:
                await _emit(options.on_progress,
                            MigrationProgress(key, MigrationStatus.VERIFYING, completed, result.total))
                copied = await dest.get_file_metadata(key)
                if copied.content_length != len(downloaded.body):
                    raise MigrationVerificationError(
                        f"Size mismatch: source={len(downloaded.body)} dest={copied.content_length}"
                    )
                if snapshot.etag and copied.etag and snapshot.etag != copied.etag:
                    logger.warning(
                        f"ETag mismatch for '{key}' (source={snapshot.etag}, dest={copied.etag}); "
                        f"sizes match, keeping copy"
                    )

            if options.delete_source:
                await _emit(options.on_progress,
                            MigrationProgress(key, MigrationStatus.DELETING, completed, result.total))
                await source.delete_file(key)

        except (StorageProviderError, MigrationVerificationError) as e:
            message = e.message if isinstance(e, StorageProviderError) else str(e)
            fail(key, message)
            completed += 1
            await _emit(options.on_progress,
                        MigrationProgress(key, MigrationStatus.ERROR, completed, result.total, message))
            return

        result.migrated += 1
        result.total_bytes += len(downloaded.body)
        record_migration_file("migrated", len(downloaded.body))
        completed += 1
        await _emit(options.on_progress, MigrationProgress(key, MigrationStatus.COMPLETE, completed, result.total))

    batch_size = max(1, options.batch_size)
    for offset in range(0, len(keys), batch_size):
        if options.cancel_token is not None and options.cancel_token.should_stop():
            result.cancelled = True
            logger.info(f"Migration cancelled after {completed}/{result.total} files")
            break
        await asyncio.gather(*(migrate_one(key) for key in keys[offset:offset + batch_size]))

    result.duration_ms = int((time.perf_counter() - started) * 1000)
    logger.info(
        f"Migration finished: {result.migrated} migrated, {result.failed} failed, "
        f"{result.total_bytes} bytes in {result.duration_ms}ms"
    )
    return result


async def _sizes(provider: StorageProvider, prefix: str) -> Dict[str, Optional[int]]:
    return {entry.key: entry.size async for entry in provider.iter_files_with_metadata(prefix)}


async def _resolve_size(provider: StorageProvider, key: str, listed: Optional[int]) -> Optional[int]:
    if listed is not None:
        return listed
    try:
        return (await provider.get_file_metadata(key)).content_length
    except StorageProviderError as e:
        logger.warning(f"Could not read size of '{key}': {e.message}")
        return None


async def compare_providers(
    source: StorageProvider,
    dest: StorageProvider,
    prefix: str = "",
) -> ProviderComparison:
    """
    Diff the key spaces of two providers under a prefix.

    Keys present on both sides are compared by size; an unreadable size
    counts as a mismatch.

    Returns:
        Comparison with matching count, missing keys on each side and size
        mismatches; ``total`` is the number of distinct keys seen
    """
    source_sizes, dest_sizes = await asyncio.gather(_sizes(source, prefix), _sizes(dest, prefix))

    comparison = ProviderComparison(
        missing_in_destination=sorted(source_sizes.keys() - dest_sizes.keys()),
        missing_in_source=sorted(dest_sizes.keys() - source_sizes.keys()),
        total=len(source_sizes.keys() | dest_sizes.keys()),
    )

    for key in sorted(source_sizes.keys() & dest_sizes.keys()):
        source_size = await _resolve_size(source, key, source_sizes[key])
        dest_size = await _resolve_size(dest, key, dest_sizes[key])
        if source_size is not None and source_size == dest_size:
            comparison.matching += 1
        else:
            comparison.size_mismatches.append(SizeMismatch(key, source_size, dest_size))

    logger.info(
        f"Provider comparison (prefix='{prefix}'): {comparison.matching} matching, "
        f"{len(comparison.missing_in_destination)} missing in destination, "
        f"{len(comparison.missing_in_source)} missing in source, "
        f"{len(comparison.size_mismatches)} size mismatches"
    )
    return comparison
