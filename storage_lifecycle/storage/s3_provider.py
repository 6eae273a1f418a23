"""
S3-Compatible Storage Provider

Implements the provider contract on top of the MinIO SDK, which speaks to
MinIO, AWS S3 and Cloudflare R2 alike. SDK calls are blocking and run in a
worker thread; every backend exception is translated into a
StorageProviderError before it leaves this module.
"""
import asyncio
import itertools
import logging
import time
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

import urllib3
from minio import Minio
from minio.commonconfig import CopySource
from minio.error import InvalidResponseError, S3Error, ServerError

from storage_lifecycle.core.cache import UrlCacheBackend
from storage_lifecycle.metrics import record_storage_operation, storage_bytes_transferred
from .cdn import CdnUrlGenerator
from .errors import StorageErrorKind, StorageProviderError
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
from .provider import (
    DEFAULT_DELETE_CONCURRENCY,
    DEFAULT_UPLOAD_CONCURRENCY,
    StorageProvider,
    prepare_body,
)
from .retry import NO_RETRY, RetryPolicy, with_retry

logger = logging.getLogger(__name__)

DEFAULT_MULTIPART_THRESHOLD = 5 * 1024 * 1024  # 5MB
DEFAULT_PART_SIZE = 10 * 1024 * 1024  # 10MB
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

USER_METADATA_PREFIX = "x-amz-meta-"

NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchObject", "NotFound", "ResourceNotFound"})
TRANSIENT_CODES = frozenset({
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
    "TooManyRequests",
})


def strip_etag(etag: Optional[str]) -> Optional[str]:
    """Backends quote ETags; callers compare bare values."""
    return etag.strip('"') if etag else None


def extract_user_metadata(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Collect x-amz-meta-* headers into a plain dict without the prefix."""
    if not headers:
        return {}
    return {
        key[len(USER_METADATA_PREFIX):]: value
        for key, value in headers.items()
        if key.lower().startswith(USER_METADATA_PREFIX)
    }


def _parse_http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def classify_error(exc: BaseException) -> StorageErrorKind:
    """
    Map a backend exception onto the shared error taxonomy.

    Not-found covers missing objects only; a missing bucket is a
    configuration problem and therefore terminal.
    """
    if isinstance(exc, S3Error):
        code = exc.code
        status = getattr(getattr(exc, "response", None), "status", None)
        if code in NOT_FOUND_CODES or (status == 404 and code != "NoSuchBucket"):
            return StorageErrorKind.NOT_FOUND
        if code in TRANSIENT_CODES or status == 429 or (status is not None and status >= 500):
            return StorageErrorKind.TRANSIENT
        return StorageErrorKind.TERMINAL

    if isinstance(exc, (ServerError, InvalidResponseError)):
        return StorageErrorKind.TRANSIENT

    if isinstance(exc, (urllib3.exceptions.HTTPError, ConnectionError, TimeoutError, OSError)):
        return StorageErrorKind.TRANSIENT

    return StorageErrorKind.TERMINAL


def translate_error(exc: BaseException, key: str, operation: str) -> StorageProviderError:
    if isinstance(exc, StorageProviderError):
        return exc

    kind = classify_error(exc)
    if kind is StorageErrorKind.NOT_FOUND:
        message = f"Source file not found: {key}" if operation == "copy" else f"File not found: {key}"
    else:
        message = f"Failed to {operation} '{key}': {exc}"
    return StorageProviderError(message, key=key, cause=exc, kind=kind)


class _CountingReader:
    """File-like wrapper counting bytes handed to the SDK."""

    def __init__(self, stream):
        self.stream = stream
        self.count = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self.stream.read(size)
        self.count += len(chunk)
        return chunk


class S3StorageProvider(StorageProvider):
    """
    S3-compatible storage provider

    Features:
    - Retries transient failures with exponential backoff
    - Multipart upload above the configured threshold or for unknown lengths
    - Ranged, chunked downloads
    - start-after pagination, stable when objects are deleted mid-scan
    - Public and presigned CDN URLs
    """

    name = "s3"

    def __init__(
        self,
        client: Minio,
        bucket_name: str,
        public_base_url: str,
        url_cache: Optional[UrlCacheBackend] = None,
        retry_policy: Optional[RetryPolicy] = None,
        multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD,
        part_size: int = DEFAULT_PART_SIZE,
        upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
        delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY,
        provider_name: str = "s3",
    ):
        """
        Initialize S3 storage provider

        Args:
            client: MinIO client instance
            bucket_name: Target bucket name
            public_base_url: Base of public object URLs (custom CDN domain or bucket endpoint)
            url_cache: Cache for generated public URLs
            retry_policy: Backoff policy for transient failures
            multipart_threshold: Bodies larger than this use multipart upload
            part_size: Multipart part size
            upload_concurrency: Batch upload bound
            delete_concurrency: Batch delete bound
            provider_name: Label used in logs and metrics (s3, minio, r2)
        """
        super().__init__(upload_concurrency, delete_concurrency)
        self.client = client
        self.bucket_name = bucket_name
        self.retry_policy = retry_policy or RetryPolicy()
        self.multipart_threshold = multipart_threshold
        self.part_size = part_size
        self.name = provider_name
        self.chunk_size = DOWNLOAD_CHUNK_SIZE
        self.cdn = CdnUrlGenerator(public_base_url, signer=self._presign, cache=url_cache)

        logger.info(
            f"S3StorageProvider initialized for bucket '{bucket_name}' "
            f"(provider={provider_name}, public_base_url={self.cdn.public_base_url})"
        )

    async def _call(
        self,
        operation: str,
        key: str,
        fn: Callable[..., Any],
        *args,
        policy: Optional[RetryPolicy] = None,
        **kwargs,
    ) -> Any:
        """Run a blocking SDK call in a thread with translation, metrics and retry."""

        async def attempt():
            started = time.perf_counter()
            try:
                result = await asyncio.to_thread(fn, *args, **kwargs)
            except Exception as e:
                record_storage_operation(self.name, operation, time.perf_counter() - started, success=False)
                raise translate_error(e, key, operation) from e
            record_storage_operation(self.name, operation, time.perf_counter() - started)
            return result

        return await with_retry(attempt, policy or self.retry_policy, operation, key)

    async def upload_file(
        self,
        key: str,
        body: UploadBody,
        options: Optional[StorageUploadOptions] = None,
    ) -> StorageUploadResult:
        options = options or StorageUploadOptions()
        prepared = await prepare_body(body, self.multipart_threshold)

        policy = self.retry_policy.override(options.max_attempts, options.retry_delay_seconds)
        if not prepared.replayable:
            logger.debug(f"Upload body for '{key}' is not seekable; retries disabled")
            policy = NO_RETRY

        metadata: Dict[str, str] = dict(options.metadata)
        if options.cache_control:
            metadata["Cache-Control"] = options.cache_control
        if options.public:
            metadata["x-amz-acl"] = "public-read"

        multipart = prepared.length is None or prepared.length > self.multipart_threshold
        reader = _CountingReader(prepared.stream)

        def put():
            prepared.rewind()
            reader.count = 0
            return self.client.put_object(
                self.bucket_name,
                key,
                reader,
                prepared.length if prepared.length is not None else -1,
                content_type=options.content_type or "application/octet-stream",
                metadata=metadata or None,
                part_size=self.part_size if multipart else 0,
            )

        try:
            written = await self._call("upload", key, put, policy=policy)
        finally:
            prepared.close()

        size = prepared.length if prepared.length is not None else reader.count
        storage_bytes_transferred.labels(provider=self.name, direction="upload").inc(size)
        logger.debug(f"Uploaded '{key}' ({size} bytes, multipart={multipart})")

        return StorageUploadResult(
            key=key,
            etag=strip_etag(written.etag) or "",
            size=size,
            content_type=options.content_type,
            uploaded_at=datetime.now(timezone.utc),
        )

    async def download_file(
        self,
        key: str,
        options: Optional[StorageDownloadOptions] = None,
    ) -> StorageDownloadResult:
        offset, length = 0, 0
        if options and options.range:
            start, end = options.range
            offset = start
            length = (end - start + 1) if end is not None else 0

        response = await self._call(
            "download", key, self.client.get_object, self.bucket_name, key, offset=offset, length=length
        )

        headers = response.headers
        content_length = headers.get("Content-Length")
        return StorageDownloadResult(
            body=self._stream(response, key),
            content_type=headers.get("Content-Type"),
            content_length=int(content_length) if content_length else None,
            etag=strip_etag(headers.get("ETag")),
            last_modified=_parse_http_date(headers.get("Last-Modified")),
            metadata=extract_user_metadata(headers),
        )

    async def _stream(self, response, key: str) -> AsyncIterator[bytes]:
        transferred = 0
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(response.read, self.chunk_size)
                except Exception as e:
                    raise translate_error(e, key, "download") from e
                if not chunk:
                    break
                transferred += len(chunk)
                yield chunk
        finally:
            response.close()
            response.release_conn()
            storage_bytes_transferred.labels(provider=self.name, direction="download").inc(transferred)

    async def get_file_metadata(self, key: str) -> StorageFileMetadata:
        stat = await self._call("metadata", key, self.client.stat_object, self.bucket_name, key)
        return StorageFileMetadata(
            key=key,
            content_type=stat.content_type,
            content_length=stat.size,
            etag=strip_etag(stat.etag),
            last_modified=stat.last_modified,
            metadata=extract_user_metadata(stat.metadata),
        )

    async def delete_file(self, key: str) -> bool:
        # S3 DeleteObject succeeds for absent keys; head first to report it
        if not await self.file_exists(key):
            return False

        await self._call("delete", key, self.client.remove_object, self.bucket_name, key)
        return True

    def _list_page(self, options: StorageListOptions) -> List[Any]:
        objects = self.client.list_objects(
            self.bucket_name,
            prefix=options.prefix or None,
            recursive=True,
            start_after=options.continuation_token or None,
        )
        # One extra object tells whether another page exists
        return [
            obj for obj in itertools.islice(objects, options.max_results + 1)
            if not obj.is_dir
        ]

    async def _list(self, options: Optional[StorageListOptions]):
        options = options or StorageListOptions()
        objects = await self._call("list", options.prefix, self._list_page, options)
        truncated = len(objects) > options.max_results
        page = objects[:options.max_results]
        token = page[-1].object_name if truncated and page else None
        return page, token, truncated

    async def list_files(self, options: Optional[StorageListOptions] = None) -> StorageListResult:
        page, token, truncated = await self._list(options)
        return StorageListResult(
            keys=[obj.object_name for obj in page],
            continuation_token=token,
            is_truncated=truncated,
        )

    async def list_files_with_metadata(
        self,
        options: Optional[StorageListOptions] = None,
    ) -> StorageListWithMetadataResult:
        page, token, truncated = await self._list(options)
        files = [
            StorageFileEntry(
                key=obj.object_name,
                size=obj.size,
                last_modified=obj.last_modified,
                content_type=obj.content_type,
                etag=strip_etag(obj.etag),
            )
            for obj in page
        ]
        return StorageListWithMetadataResult(files=files, continuation_token=token, is_truncated=truncated)

    async def copy_file(self, source_key: str, dest_key: str) -> bool:
        await self._call(
            "copy",
            source_key,
            self.client.copy_object,
            self.bucket_name,
            dest_key,
            CopySource(self.bucket_name, source_key),
        )
        return True

    async def generate_cdn_url(self, key: str, options: Optional[CdnUrlOptions] = None) -> str:
        return await self.cdn.generate(key, options)

    async def _presign(self, key: str, expires_in: int) -> str:
        return await self._call(
            "presign",
            key,
            self.client.presigned_get_object,
            self.bucket_name,
            key,
            expires=timedelta(seconds=expires_in),
        )
