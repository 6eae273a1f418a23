"""
Storage Provider Data Types

Normalized request/result records shared by every storage provider. Backend
specific shapes (minio Object, HTTP headers, ...) never leave the provider.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    BinaryIO,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
    Union,
)

from .errors import StorageProviderError


# Anything a provider accepts as an upload body: in-memory buffers, binary
# file objects, or sync/async chunk streams.
UploadBody = Union[bytes, bytearray, memoryview, BinaryIO, Iterable[bytes], AsyncIterable[bytes]]


@dataclass
class StorageUploadOptions:
    """
    Upload options
    """
    content_type: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    cache_control: Optional[str] = None
    public: bool = False
    max_attempts: Optional[int] = None  # overrides the provider retry policy
    retry_delay_seconds: Optional[float] = None


@dataclass(frozen=True)
class StorageUploadResult:
    """
    Result of a successful upload
    """
    key: str
    etag: str
    size: int
    content_type: Optional[str]
    uploaded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'etag': self.etag,
            'size': self.size,
            'content_type': self.content_type,
            'uploaded_at': self.uploaded_at.isoformat(),
        }


@dataclass
class StorageDownloadOptions:
    """
    Download options

    ``range`` is an inclusive (start, end) byte range; end may be None for
    "to the end of the object".
    """
    range: Optional[Tuple[int, Optional[int]]] = None


@dataclass
class StorageDownloadResult:
    """
    Streaming download; ``body`` yields byte chunks and must be consumed once
    """
    body: AsyncIterator[bytes]
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    async def read(self) -> bytes:
        """Drain the body into memory."""
        chunks = [chunk async for chunk in self.body]
        return b"".join(chunks)


@dataclass(frozen=True)
class StorageDownloadBufferResult:
    """
    Fully buffered download
    """
    body: bytes
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DownloadProgress:
    """
    Download progress event

    The last event of a download always has ``percentage == 100`` and carries
    the buffered ``result``.
    """
    loaded: int
    total: Optional[int] = None
    percentage: Optional[float] = None
    result: Optional[StorageDownloadBufferResult] = None

    @property
    def done(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class StorageFileMetadata:
    """
    Read-only metadata snapshot of a stored object
    """
    key: str
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'content_type': self.content_type,
            'content_length': self.content_length,
            'etag': self.etag,
            'last_modified': self.last_modified.isoformat() if self.last_modified else None,
            'metadata': dict(self.metadata),
        }


@dataclass
class StorageListOptions:
    """
    Listing options; ``continuation_token`` is opaque and comes from a previous page
    """
    prefix: str = ""
    max_results: int = 1000
    continuation_token: Optional[str] = None


@dataclass(frozen=True)
class StorageListResult:
    keys: List[str]
    continuation_token: Optional[str] = None
    is_truncated: bool = False


@dataclass(frozen=True)
class StorageFileEntry:
    """
    Listing entry with whatever metadata the backend returns cheaply
    """
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    content_type: Optional[str] = None
    etag: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class StorageListWithMetadataResult:
    files: List[StorageFileEntry]
    continuation_token: Optional[str] = None
    is_truncated: bool = False


@dataclass
class BatchUploadItem:
    key: str
    body: UploadBody
    options: Optional[StorageUploadOptions] = None


@dataclass
class StorageBatchUploadResult:
    """
    Batch upload outcome; every item lands in exactly one list
    """
    successful: List[Tuple[BatchUploadItem, StorageUploadResult]] = field(default_factory=list)
    failed: List[Tuple[BatchUploadItem, StorageProviderError]] = field(default_factory=list)


@dataclass
class StorageBatchDeleteResult:
    """
    Batch delete outcome; a key that was already absent counts as successful
    """
    successful: List[str] = field(default_factory=list)
    failed: List[Tuple[str, StorageProviderError]] = field(default_factory=list)


@dataclass(frozen=True)
class ImageTransformParams:
    """
    Image transformation parameters understood by the CDN
    """
    width: Optional[int] = None
    height: Optional[int] = None
    fit: Optional[str] = None  # scale-down, contain, cover, crop, pad
    format: Optional[str] = None  # auto, webp, avif, jpeg, png
    quality: Optional[int] = None  # clamped to 1-100
    sharpen: bool = False
    blur: Optional[int] = None  # clamped to 0-250
    rotate: Optional[int] = None  # 0, 90, 180, 270
    progressive: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None and v is not False}


@dataclass(frozen=True)
class CdnUrlOptions:
    """
    CDN URL options
    """
    signed: bool = False
    expires_in: int = 3600  # seconds, signed URLs only
    transform: Optional[ImageTransformParams] = None
    query_params: Optional[Dict[str, Any]] = None


class CancellationToken:
    """
    Cooperative cancellation for long-running scans and migrations.

    Loops check ``should_stop()`` between pages and before each object; work
    already in flight is allowed to finish.
    """

    def __init__(self, deadline: Optional[float] = None, clock=time.monotonic):
        """
        Args:
            deadline: Absolute time on ``clock`` after which work stops
            clock: Monotonic time source
        """
        self._cancelled = False
        self._deadline = deadline
        self._clock = clock
        self.reason: Optional[str] = None

    @classmethod
    def with_timeout(cls, seconds: float, clock=time.monotonic) -> "CancellationToken":
        return cls(deadline=clock() + seconds, clock=clock)

    def cancel(self, reason: str = "cancelled") -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def should_stop(self) -> bool:
        if self._cancelled:
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.reason = self.reason or "deadline exceeded"
            return True
        return False
