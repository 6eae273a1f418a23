"""
In-Memory Storage Provider

Dictionary-backed provider with the same observable contract as the S3
provider: MD5 ETags, NOT_FOUND errors for missing keys, lexicographic
pagination with opaque continuation tokens. Used by tests and local runs.
"""
import hashlib
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, FrozenSet, List, Optional

from storage_lifecycle.core.cache import UrlCacheBackend
from .cdn import CdnUrlGenerator, encode_key_path
from .errors import StorageProviderError, not_found
from .models import (
    CdnUrlOptions,
    StorageDownloadOptions,
    StorageDownloadResult,
    StorageFileEntry,
    StorageFileMetadata,
    StorageListOptions,
    StorageListResult,
    StorageListWithMetadataResult,
    StorageUploadOptions,
    StorageUploadResult,
    UploadBody,
)
from .provider import DEFAULT_DELETE_CONCURRENCY, DEFAULT_UPLOAD_CONCURRENCY, StorageProvider, read_body

logger = logging.getLogger(__name__)

MOCK_CDN_BASE_URL = "https://mock-storage.example.com"
DOWNLOAD_CHUNK_SIZE = 64 * 1024


@dataclass
class _StoredObject:
    body: bytes
    etag: str
    last_modified: datetime
    content_type: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class _InjectedError:
    error: StorageProviderError
    operations: Optional[FrozenSet[str]]
    remaining: Optional[int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStorageProvider(StorageProvider):
    """
    In-memory storage provider

    Test hooks:
    - inject_error(): make operations on a key fail
    - set_last_modified(): age objects without waiting
    - clear() / size()
    """

    name = "memory"

    def __init__(
        self,
        cdn_base_url: str = MOCK_CDN_BASE_URL,
        url_cache: Optional[UrlCacheBackend] = None,
        upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
        delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY,
        clock: Callable[[], datetime] = _utcnow,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ):
        super().__init__(upload_concurrency, delete_concurrency)
        self._objects: Dict[str, _StoredObject] = {}
        self._errors: Dict[str, _InjectedError] = {}
        self._clock = clock
        self.chunk_size = chunk_size
        self.cdn = CdnUrlGenerator(cdn_base_url, signer=self._sign, cache=url_cache)

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def inject_error(
        self,
        key: str,
        error: StorageProviderError,
        operations: Optional[List[str]] = None,
        times: Optional[int] = None,
    ) -> None:
        """
        Make operations on ``key`` raise ``error``.

        Args:
            key: Object key, or "*" for every key (listing operations use "*")
            error: Error to raise
            operations: Operation names (upload, download, metadata, delete,
                list, copy); None means all
            times: Number of failures before the injection clears; None means forever

        Raises:
            ValueError: times is zero or negative
        """
        if times is not None and times < 1:
            raise ValueError("times must be at least 1")
        self._errors[key] = _InjectedError(
            error=error,
            operations=frozenset(operations) if operations else None,
            remaining=times,
        )

    def clear_errors(self) -> None:
        self._errors.clear()

    def set_last_modified(self, key: str, last_modified: datetime) -> None:
        obj = self._objects.get(key)
        if obj is None:
            raise not_found(key)
        obj.last_modified = last_modified

    def clear(self) -> None:
        self._objects.clear()
        self._errors.clear()

    def size(self) -> int:
        return len(self._objects)

    def _maybe_fail(self, operation: str, key: str) -> None:
        for target in (key, "*"):
            injected = self._errors.get(target)
            if injected is None:
                continue
            if injected.operations is not None and operation not in injected.operations:
                continue
            if injected.remaining is not None:
                injected.remaining -= 1
                if injected.remaining <= 0:
                    del self._errors[target]
            raise injected.error

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        key: str,
        body: UploadBody,
        options: Optional[StorageUploadOptions] = None,
    ) -> StorageUploadResult:
        options = options or StorageUploadOptions()
        self._maybe_fail("upload", key)

        data = await read_body(body)
        now = self._clock()
        obj = _StoredObject(
            body=data,
            etag=hashlib.md5(data).hexdigest(),
            last_modified=now,
            content_type=options.content_type,
            metadata=dict(options.metadata),
        )
        self._objects[key] = obj

        return StorageUploadResult(
            key=key,
            etag=obj.etag,
            size=len(data),
            content_type=options.content_type,
            uploaded_at=now,
        )

    async def download_file(
        self,
        key: str,
        options: Optional[StorageDownloadOptions] = None,
    ) -> StorageDownloadResult:
        self._maybe_fail("download", key)
        obj = self._objects.get(key)
        if obj is None:
            raise not_found(key)

        data = obj.body
        if options and options.range:
            start, end = options.range
            data = data[start:] if end is None else data[start:end + 1]

        return StorageDownloadResult(
            body=self._chunks(data),
            content_type=obj.content_type,
            content_length=len(data),
            etag=obj.etag,
            last_modified=obj.last_modified,
            metadata=dict(obj.metadata),
        )

    async def _chunks(self, data: bytes) -> AsyncIterator[bytes]:
        for offset in range(0, len(data), self.chunk_size):
            yield data[offset:offset + self.chunk_size]

    async def get_file_metadata(self, key: str) -> StorageFileMetadata:
        self._maybe_fail("metadata", key)
        obj = self._objects.get(key)
        if obj is None:
            raise not_found(key)

        return StorageFileMetadata(
            key=key,
            content_type=obj.content_type,
            content_length=len(obj.body),
            etag=obj.etag,
            last_modified=obj.last_modified,
            metadata=dict(obj.metadata),
        )

    async def delete_file(self, key: str) -> bool:
        self._maybe_fail("delete", key)
        return self._objects.pop(key, None) is not None

    def _page(self, options: Optional[StorageListOptions]):
        options = options or StorageListOptions()
        keys = sorted(k for k in self._objects if k.startswith(options.prefix))
        if options.continuation_token:
            keys = [k for k in keys if k > options.continuation_token]

        page = keys[:options.max_results]
        truncated = len(keys) > options.max_results
        token = page[-1] if truncated and page else None
        return page, token, truncated

    async def list_files(self, options: Optional[StorageListOptions] = None) -> StorageListResult:
        self._maybe_fail("list", "*")
        page, token, truncated = self._page(options)
        return StorageListResult(keys=page, continuation_token=token, is_truncated=truncated)

    async def list_files_with_metadata(
        self,
        options: Optional[StorageListOptions] = None,
    ) -> StorageListWithMetadataResult:
        self._maybe_fail("list", "*")
        page, token, truncated = self._page(options)
        files = [
            StorageFileEntry(
                key=key,
                size=len(self._objects[key].body),
                last_modified=self._objects[key].last_modified,
                content_type=self._objects[key].content_type,
                etag=self._objects[key].etag,
                metadata=dict(self._objects[key].metadata),
            )
            for key in page
        ]
        return StorageListWithMetadataResult(files=files, continuation_token=token, is_truncated=truncated)

    async def copy_file(self, source_key: str, dest_key: str) -> bool:
        self._maybe_fail("copy", source_key)
        source = self._objects.get(source_key)
        if source is None:
            raise not_found(source_key, f"Source file not found: {source_key}")

        self._objects[dest_key] = replace(
            source,
            metadata=dict(source.metadata),
            last_modified=self._clock(),
        )
        return True

    async def generate_cdn_url(self, key: str, options: Optional[CdnUrlOptions] = None) -> str:
        return await self.cdn.generate(key, options)

    async def _sign(self, key: str, expires_in: int) -> str:
        return f"{self.cdn.public_base_url}/{encode_key_path(key)}?signature=mock&expires={expires_in}"
