"""
Storage Provider Factory

Builds providers from configuration and holds the process-wide default
provider handle.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from storage_lifecycle.core.cache import UrlCacheBackend
from storage_lifecycle.core.config import Settings, settings as default_settings
from storage_lifecycle.core.minio_client import (
    R2_REGION,
    create_minio_client,
    r2_endpoint,
    r2_public_url,
    strip_scheme,
)
from .errors import ConfigurationError
from .memory_provider import InMemoryStorageProvider
from .provider import DEFAULT_DELETE_CONCURRENCY, DEFAULT_UPLOAD_CONCURRENCY, StorageProvider
from .retry import RetryPolicy
from .s3_provider import DEFAULT_MULTIPART_THRESHOLD, DEFAULT_PART_SIZE, S3StorageProvider

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    """Supported storage backends"""
    S3 = "s3"
    MINIO = "minio"
    R2 = "r2"
    MEMORY = "memory"


@dataclass
class S3ProviderConfig:
    """
    Connection settings for any S3-compatible backend
    """
    bucket: str
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    endpoint: Optional[str] = None
    region: Optional[str] = None
    secure: bool = True
    account_id: Optional[str] = None  # Cloudflare R2
    public_url: Optional[str] = None  # custom CDN domain


@dataclass
class StorageProviderConfig:
    """
    Provider selection plus backend and tuning settings
    """
    type: str
    s3: Optional[S3ProviderConfig] = None
    url_cache: Optional[UrlCacheBackend] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD
    part_size: int = DEFAULT_PART_SIZE
    upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY
    delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY


def parse_provider_type(value) -> ProviderType:
    """
    Raises:
        ConfigurationError: For unknown or unsupported backends (azure, gcs, ...)
    """
    try:
        return ProviderType(str(value.value if isinstance(value, Enum) else value).lower())
    except ValueError:
        raise ConfigurationError(f"Unsupported storage provider type: {value}") from None


def get_default_storage_provider_config(
    config: Optional[Settings] = None,
    url_cache: Optional[UrlCacheBackend] = None,
) -> StorageProviderConfig:
    """Build provider configuration from settings."""
    config = config or default_settings
    return StorageProviderConfig(
        type=config.STORAGE_PROVIDER,
        s3=S3ProviderConfig(
            bucket=config.S3_BUCKET,
            access_key=config.S3_ACCESS_KEY,
            secret_key=config.S3_SECRET_KEY,
            endpoint=config.S3_ENDPOINT,
            region=config.S3_REGION,
            secure=config.S3_SECURE,
            account_id=config.R2_ACCOUNT_ID,
            public_url=config.CDN_PUBLIC_URL,
        ),
        url_cache=url_cache,
        retry_policy=RetryPolicy(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            base_delay=config.RETRY_BASE_DELAY_SECONDS,
        ),
        multipart_threshold=config.MULTIPART_THRESHOLD_BYTES,
        part_size=config.MULTIPART_PART_SIZE_BYTES,
        upload_concurrency=config.UPLOAD_CONCURRENCY,
        delete_concurrency=config.DELETE_CONCURRENCY,
    )


def _default_public_url(provider_type: ProviderType, s3: S3ProviderConfig) -> str:
    if s3.public_url:
        return s3.public_url.rstrip("/")
    if provider_type is ProviderType.R2:
        return r2_public_url(s3.bucket, s3.account_id)
    if provider_type is ProviderType.S3 and not s3.endpoint:
        return f"https://{s3.bucket}.s3.amazonaws.com"
    host, scheme_secure = strip_scheme(s3.endpoint)
    secure = s3.secure if scheme_secure is None else scheme_secure
    return f"{'https' if secure else 'http'}://{host}/{s3.bucket}"


def _create_s3_provider(provider_type: ProviderType, config: StorageProviderConfig) -> S3StorageProvider:
    s3 = config.s3
    if s3 is None:
        raise ConfigurationError(f"{provider_type.value} provider requires S3 configuration")
    if not s3.access_key or not s3.secret_key:
        raise ConfigurationError(f"{provider_type.value} provider requires access and secret keys")
    if not s3.bucket:
        raise ConfigurationError(f"{provider_type.value} provider requires a bucket name")

    if provider_type is ProviderType.R2:
        if not s3.account_id:
            raise ConfigurationError("r2 provider requires an account id")
        endpoint, region, secure = r2_endpoint(s3.account_id), R2_REGION, True
    elif provider_type is ProviderType.S3 and not s3.endpoint:
        endpoint, region, secure = "s3.amazonaws.com", s3.region, True
    else:
        if not s3.endpoint:
            raise ConfigurationError(f"{provider_type.value} provider requires an endpoint")
        endpoint, region, secure = s3.endpoint, s3.region, s3.secure

    client = create_minio_client(endpoint, s3.access_key, s3.secret_key, secure=secure, region=region)
    return S3StorageProvider(
        client,
        s3.bucket,
        public_base_url=_default_public_url(provider_type, s3),
        url_cache=config.url_cache,
        retry_policy=config.retry_policy,
        multipart_threshold=config.multipart_threshold,
        part_size=config.part_size,
        upload_concurrency=config.upload_concurrency,
        delete_concurrency=config.delete_concurrency,
        provider_name=provider_type.value,
    )


def create_storage_provider(config: Optional[StorageProviderConfig] = None) -> StorageProvider:
    """
    Create a storage provider.

    Args:
        config: Provider configuration (defaults to settings)

    Returns:
        Provider instance

    Raises:
        ConfigurationError: Unsupported type or incomplete configuration
    """
    config = config or get_default_storage_provider_config()
    provider_type = parse_provider_type(config.type)

    if provider_type is ProviderType.MEMORY:
        provider = InMemoryStorageProvider(
            url_cache=config.url_cache,
            upload_concurrency=config.upload_concurrency,
            delete_concurrency=config.delete_concurrency,
        )
    else:
        provider = _create_s3_provider(provider_type, config)

    logger.info(f"Created {provider_type.value} storage provider")
    return provider


class ProviderRegistry:
    """
    Lazily created default provider with explicit override and reset.
    """

    def __init__(self, config: Optional[StorageProviderConfig] = None):
        self._config = config
        self._default: Optional[StorageProvider] = None

    def get_default(self) -> StorageProvider:
        if self._default is None:
            self._default = create_storage_provider(self._config)
        return self._default

    def set_default(self, provider: StorageProvider) -> None:
        self._default = provider

    def reset(self) -> None:
        self._default = None


_registry = ProviderRegistry()


def get_default_storage_provider() -> StorageProvider:
    """Get (creating on first use) the process-wide default provider."""
    return _registry.get_default()


def set_default_storage_provider(provider: StorageProvider) -> None:
    _registry.set_default(provider)


def reset_default_storage_provider() -> None:
    _registry.reset()
