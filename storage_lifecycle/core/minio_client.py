"""
MinIO Client Module

Builds MinIO SDK clients for any S3-compatible backend (MinIO, AWS S3, Cloudflare R2).
"""
from typing import Optional
from minio import Minio

from storage_lifecycle.core.config import Settings, settings as default_settings


R2_REGION = "auto"


def r2_endpoint(account_id: str) -> str:
    """Cloudflare R2 S3 API host for an account."""
    return f"{account_id}.r2.cloudflarestorage.com"


def r2_public_url(bucket: str, account_id: str) -> str:
    """Default public base URL of an R2 bucket."""
    return f"https://{bucket}.{account_id}.r2.cloudflarestorage.com"


def strip_scheme(endpoint: str) -> tuple[str, Optional[bool]]:
    """
    Split an endpoint into host[:port] and the security implied by its scheme.

    Minio() refuses endpoints with a scheme or path, but configuration often
    carries full URLs.
    """
    if endpoint.startswith("https://"):
        return endpoint[len("https://"):].rstrip("/"), True
    if endpoint.startswith("http://"):
        return endpoint[len("http://"):].rstrip("/"), False
    return endpoint.rstrip("/"), None


def create_minio_client(
    endpoint: str,
    access_key: str,
    secret_key: str,
    secure: bool = True,
    region: Optional[str] = None,
) -> Minio:
    """
    Create a MinIO client instance.

    Args:
        endpoint: host[:port] or URL of the S3 API
        access_key: Access key id
        secret_key: Secret access key
        secure: Use TLS (overridden by an explicit URL scheme)
        region: Region name; R2 expects "auto"

    Returns:
        Minio: Configured MinIO client
    """
    host, scheme_secure = strip_scheme(endpoint)
    return Minio(
        host,
        access_key=access_key,
        secret_key=secret_key,
        secure=secure if scheme_secure is None else scheme_secure,
        region=region,
    )


def get_minio_client(config: Optional[Settings] = None) -> Minio:
    """
    Create a MinIO client from settings.

    Returns:
        Minio: Configured MinIO client
    """
    config = config or default_settings
    if config.STORAGE_PROVIDER == "r2" and config.R2_ACCOUNT_ID:
        return create_minio_client(
            r2_endpoint(config.R2_ACCOUNT_ID),
            config.S3_ACCESS_KEY,
            config.S3_SECRET_KEY,
            secure=True,
            region=R2_REGION,
        )
    return create_minio_client(
        config.S3_ENDPOINT,
        config.S3_ACCESS_KEY,
        config.S3_SECRET_KEY,
        secure=config.S3_SECURE,
        region=config.S3_REGION,
    )
