"""
Storage Provider Interface

Uniform async contract over object storage backends. Concrete providers
implement the single-object primitives; batch, buffering, progress and
pagination helpers are shared here so every backend behaves the same.
"""
import asyncio
import io
import logging
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import AsyncIterator, BinaryIO, Callable, List, Optional, Sequence, Tuple

from .errors import StorageProviderError
from .models import (
    BatchUploadItem,
    CdnUrlOptions,
    DownloadProgress,
    StorageBatchDeleteResult,
    StorageBatchUploadResult,
    StorageDownloadBufferResult,
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

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_CONCURRENCY = 5
DEFAULT_DELETE_CONCURRENCY = 10
DEFAULT_PAGE_SIZE = 1000


class StorageProvider(ABC):
    """
    Abstract storage provider

    Every method raises StorageProviderError on failure; batch helpers never
    raise for individual items and report per-item outcomes instead.
    """

    name = "abstract"

    def __init__(
        self,
        upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
        delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY,
    ):
        self.upload_concurrency = upload_concurrency
        self.delete_concurrency = delete_concurrency

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def upload_file(
        self,
        key: str,
        body: UploadBody,
        options: Optional[StorageUploadOptions] = None,
    ) -> StorageUploadResult:
        """
        Upload an object.

        Args:
            key: Object key
            body: Bytes, binary file object, or sync/async iterable of byte chunks
            options: Content type, user metadata, cache control, visibility, retry overrides

        Returns:
            Upload result with the backend ETag (quotes stripped)
        """

    @abstractmethod
    async def download_file(
        self,
        key: str,
        options: Optional[StorageDownloadOptions] = None,
    ) -> StorageDownloadResult:
        """Open a streaming download. Raises NOT_FOUND if the object is absent."""

    @abstractmethod
    async def get_file_metadata(self, key: str) -> StorageFileMetadata:
        """Head an object. Raises NOT_FOUND if the object is absent."""

    @abstractmethod
    async def delete_file(self, key: str) -> bool:
        """Delete an object; False when it was already absent."""

    @abstractmethod
    async def list_files(self, options: Optional[StorageListOptions] = None) -> StorageListResult:
        """List one page of keys."""

    @abstractmethod
    async def list_files_with_metadata(
        self,
        options: Optional[StorageListOptions] = None,
    ) -> StorageListWithMetadataResult:
        """List one page of keys with size, timestamps and ETag."""

    @abstractmethod
    async def copy_file(self, source_key: str, dest_key: str) -> bool:
        """Server-side copy. Raises NOT_FOUND if the source is absent."""

    @abstractmethod
    async def generate_cdn_url(self, key: str, options: Optional[CdnUrlOptions] = None) -> str:
        """Public or signed URL for an object."""

    async def close(self) -> None:
        """Release backend resources."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def file_exists(self, key: str) -> bool:
        """
        Check whether an object exists.

        Only "not found" maps to False; transport and auth failures propagate.
        """
        try:
            await self.get_file_metadata(key)
            return True
        except StorageProviderError as e:
            if e.is_not_found:
                return False
            raise

    async def download_file_as_buffer(
        self,
        key: str,
        options: Optional[StorageDownloadOptions] = None,
    ) -> StorageDownloadBufferResult:
        result = await self.download_file(key, options)
        body = await result.read()
        return StorageDownloadBufferResult(
            body=body,
            content_type=result.content_type,
            content_length=len(body),
            etag=result.etag,
            last_modified=result.last_modified,
            metadata=dict(result.metadata),
        )

    async def iter_download_progress(
        self,
        key: str,
        options: Optional[StorageDownloadOptions] = None,
    ) -> AsyncIterator[DownloadProgress]:
        """
        Download an object as a stream of progress events.

        One event is yielded per received chunk, followed by a single terminal
        event with ``percentage=100`` carrying the buffered result.
        """
        result = await self.download_file(key, options)
        total = result.content_length
        loaded = 0
        chunks: List[bytes] = []

        async for chunk in result.body:
            chunks.append(chunk)
            loaded += len(chunk)
            percentage = min(100.0, loaded * 100.0 / total) if total else None
            yield DownloadProgress(loaded=loaded, total=total, percentage=percentage)

        buffer = StorageDownloadBufferResult(
            body=b"".join(chunks),
            content_type=result.content_type,
            content_length=loaded,
            etag=result.etag,
            last_modified=result.last_modified,
            metadata=dict(result.metadata),
        )
        yield DownloadProgress(
            loaded=loaded,
            total=total if total is not None else loaded,
            percentage=100.0,
            result=buffer,
        )

    async def download_file_with_progress(
        self,
        key: str,
        on_progress: Callable[[DownloadProgress], None],
        options: Optional[StorageDownloadOptions] = None,
    ) -> StorageDownloadBufferResult:
        """
        Callback form of iter_download_progress.

        Args:
            key: Object key
            on_progress: Called for every progress event, the last one at 100%
            options: Download options

        Returns:
            Buffered download result
        """
        final: Optional[DownloadProgress] = None
        async for event in self.iter_download_progress(key, options):
            on_progress(event)
            final = event
        return final.result

    async def upload_files(
        self,
        items: Sequence[BatchUploadItem],
        default_options: Optional[StorageUploadOptions] = None,
    ) -> StorageBatchUploadResult:
        """
        Upload many objects with bounded concurrency.

        A failed item never affects the others.
        """
        semaphore = asyncio.Semaphore(self.upload_concurrency)

        async def _upload(item: BatchUploadItem):
            options = merge_upload_options(default_options, item.options)
            async with semaphore:
                try:
                    return item, await self.upload_file(item.key, item.body, options), None
                except StorageProviderError as e:
                    logger.warning(f"Batch upload failed for '{item.key}': {e.message}")
                    return item, None, e

        outcomes = await asyncio.gather(*(_upload(item) for item in items))

        result = StorageBatchUploadResult()
        for item, uploaded, error in outcomes:
            if error is None:
                result.successful.append((item, uploaded))
            else:
                result.failed.append((item, error))

        logger.info(
            f"Batch upload finished: {len(result.successful)} succeeded, {len(result.failed)} failed"
        )
        return result

    async def delete_files(self, keys: Sequence[str]) -> StorageBatchDeleteResult:
        """
        Delete many objects with bounded concurrency.
        """
        semaphore = asyncio.Semaphore(self.delete_concurrency)

        async def _delete(key: str) -> Tuple[str, Optional[StorageProviderError]]:
            async with semaphore:
                try:
                    await self.delete_file(key)
                    return key, None
                except StorageProviderError as e:
                    logger.warning(f"Batch delete failed for '{key}': {e.message}")
                    return key, e

        outcomes = await asyncio.gather(*(_delete(key) for key in keys))

        result = StorageBatchDeleteResult()
        for key, error in outcomes:
            if error is None:
                result.successful.append(key)
            else:
                result.failed.append((key, error))
        return result

    async def iter_keys(self, prefix: str = "", page_size: int = DEFAULT_PAGE_SIZE) -> AsyncIterator[str]:
        """Yield every key under ``prefix``, following continuation tokens."""
        token: Optional[str] = None
        while True:
            page = await self.list_files(
                StorageListOptions(prefix=prefix, max_results=page_size, continuation_token=token)
            )
            for key in page.keys:
                yield key
            if not page.is_truncated or not page.continuation_token:
                return
            token = page.continuation_token

    async def iter_files_with_metadata(
        self,
        prefix: str = "",
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AsyncIterator[StorageFileEntry]:
        """Yield every listing entry under ``prefix``, following continuation tokens."""
        token: Optional[str] = None
        while True:
            page = await self.list_files_with_metadata(
                StorageListOptions(prefix=prefix, max_results=page_size, continuation_token=token)
            )
            for entry in page.files:
                yield entry
            if not page.is_truncated or not page.continuation_token:
                return
            token = page.continuation_token


def merge_upload_options(
    defaults: Optional[StorageUploadOptions],
    overrides: Optional[StorageUploadOptions],
) -> StorageUploadOptions:
    """
    Combine batch defaults with per-item options.

    Per-item fields win when set; metadata dictionaries are merged.
    """
    if defaults is None:
        return overrides or StorageUploadOptions()
    if overrides is None:
        return defaults

    return replace(
        defaults,
        content_type=overrides.content_type or defaults.content_type,
        metadata={**defaults.metadata, **overrides.metadata},
        cache_control=overrides.cache_control or defaults.cache_control,
        public=overrides.public or defaults.public,
        max_attempts=overrides.max_attempts if overrides.max_attempts is not None else defaults.max_attempts,
        retry_delay_seconds=(
            overrides.retry_delay_seconds
            if overrides.retry_delay_seconds is not None
            else defaults.retry_delay_seconds
        ),
    )


async def read_body(body: UploadBody) -> bytes:
    """Read any supported upload body fully into memory."""
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if hasattr(body, "read"):
        return await asyncio.to_thread(body.read)
    if hasattr(body, "__aiter__"):
        return b"".join([chunk async for chunk in body])
    return b"".join(body)


@dataclass
class PreparedBody:
    """
    Upload body normalized to a readable binary stream.

    ``length`` is None for non-seekable streams, which are uploaded as
    multipart with unknown size and cannot be replayed on retry.
    """
    stream: BinaryIO
    length: Optional[int]
    start: int = 0
    replayable: bool = True
    owned: bool = False

    def rewind(self) -> None:
        if self.replayable:
            self.stream.seek(self.start)

    def close(self) -> None:
        if self.owned:
            self.stream.close()


async def prepare_body(body: UploadBody, spool_max_size: int) -> PreparedBody:
    """
    Normalize an upload body for SDKs that read from file objects.

    Chunk iterators are spooled (in memory up to ``spool_max_size``, then to
    a temporary file) so they become seekable and retryable.
    """
    if isinstance(body, (bytes, bytearray, memoryview)):
        data = bytes(body)
        return PreparedBody(stream=io.BytesIO(data), length=len(data), owned=True)

    if hasattr(body, "read"):
        seekable = bool(getattr(body, "seekable", lambda: False)())
        if not seekable:
            return PreparedBody(stream=body, length=None, replayable=False)
        start = body.tell()
        end = body.seek(0, 2)
        body.seek(start)
        return PreparedBody(stream=body, length=end - start, start=start)

    spool = tempfile.SpooledTemporaryFile(max_size=spool_max_size)
    if hasattr(body, "__aiter__"):
        async for chunk in body:
            spool.write(chunk)
    else:
        for chunk in body:
            spool.write(chunk)
    length = spool.tell()
    spool.seek(0)
    return PreparedBody(stream=spool, length=length, owned=True)
