"""
Storage error types.

Every provider raises StorageProviderError, tagged with a StorageErrorKind so
callers can dispatch on retryability without an exception hierarchy.
"""
from enum import Enum
from typing import Optional


class StorageErrorKind(str, Enum):
    """Error classification shared by all providers"""
    TRANSIENT = "transient"  # network failures, 5xx, throttling: retryable
    TERMINAL = "terminal"  # auth, signature, malformed request: never retried
    NOT_FOUND = "not_found"  # object (or copy source) absent


class StorageProviderError(Exception):
    """
    Unified storage provider error.

    Attributes:
        message: Human-readable description
        key: Object key the operation targeted (empty for listings)
        cause: Underlying backend exception, if any
        kind: Error classification
    """

    def __init__(
        self,
        message: str,
        key: str = "",
        cause: Optional[BaseException] = None,
        kind: StorageErrorKind = StorageErrorKind.TERMINAL,
    ):
        super().__init__(message)
        self.message = message
        self.key = key
        self.cause = cause
        self.kind = kind
        if cause is not None:
            self.__cause__ = cause

    @property
    def is_transient(self) -> bool:
        return self.kind is StorageErrorKind.TRANSIENT

    @property
    def is_not_found(self) -> bool:
        return self.kind is StorageErrorKind.NOT_FOUND

    def __repr__(self) -> str:
        return f"StorageProviderError(kind={self.kind.value!r}, key={self.key!r}, message={self.message!r})"


class ConfigurationError(ValueError):
    """Invalid configuration: unsupported provider type, missing credentials or path components"""
    pass


def not_found(key: str, message: Optional[str] = None) -> StorageProviderError:
    """Build the not-found error providers raise for absent objects."""
    return StorageProviderError(
        message or f"File not found: {key}",
        key=key,
        kind=StorageErrorKind.NOT_FOUND,
    )
