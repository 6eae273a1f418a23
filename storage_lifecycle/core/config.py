"""
Engine configuration management using Pydantic Settings.
Loads environment variables and provides centralized configuration.
"""
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Storage Lifecycle Engine"
    APP_VERSION: str = "1.0.0"

    # Provider selection
    STORAGE_PROVIDER: str = Field("minio")

    # S3-compatible backend (MinIO, AWS S3, Cloudflare R2)
    S3_ENDPOINT: str = Field("localhost:9000")
    S3_ACCESS_KEY: Optional[str] = Field(None)
    S3_SECRET_KEY: Optional[str] = Field(None)
    S3_BUCKET: str = Field("photos")
    S3_REGION: Optional[str] = Field(None)
    S3_SECURE: bool = Field(False)

    # Cloudflare R2 account (endpoint and default public URL are derived from it)
    R2_ACCOUNT_ID: Optional[str] = Field(None)

    # Custom CDN domain, e.g. https://cdn.example.com
    CDN_PUBLIC_URL: Optional[str] = Field(None)

    # Retry policy for transient backend failures
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0

    # Multipart upload
    MULTIPART_THRESHOLD_BYTES: int = 5 * 1024 * 1024  # 5MB
    MULTIPART_PART_SIZE_BYTES: int = 10 * 1024 * 1024  # 10MB

    # Concurrency bounds
    UPLOAD_CONCURRENCY: int = 5
    DELETE_CONCURRENCY: int = 10
    SCAN_CONCURRENCY: int = 5
    SCAN_PAGE_SIZE: int = 1000
    MIGRATION_BATCH_SIZE: int = 10

    # CDN URL cache
    URL_CACHE_BACKEND: str = Field("memory")
    URL_CACHE_MAX_ENTRIES: int = 1000
    REDIS_URL: Optional[str] = Field(None)

    # Audit log
    AUDIT_LOG_CAPACITY: int = 10000
    AUDIT_LOG_PATH: Optional[str] = Field(None)

    # Declarative lifecycle policy (JSON or YAML)
    LIFECYCLE_POLICY_PATH: Optional[str] = Field(None)

    # Logging
    LOG_LEVEL: str = Field("INFO")
    LOG_FORMAT: str = Field("json")

    @field_validator("STORAGE_PROVIDER")
    @classmethod
    def validate_storage_provider(cls, v: str) -> str:
        """Normalize provider name; unknown names are rejected by the factory."""
        return v.strip().lower()

    @field_validator("URL_CACHE_BACKEND")
    @classmethod
    def validate_url_cache_backend(cls, v: str) -> str:
        """Only in-process and Redis caches are available."""
        v = v.strip().lower()
        if v not in ("memory", "redis"):
            raise ValueError("URL_CACHE_BACKEND must be 'memory' or 'redis'")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    @field_validator(
        "RETRY_MAX_ATTEMPTS",
        "MULTIPART_THRESHOLD_BYTES",
        "MULTIPART_PART_SIZE_BYTES",
        "UPLOAD_CONCURRENCY",
        "DELETE_CONCURRENCY",
        "SCAN_CONCURRENCY",
        "SCAN_PAGE_SIZE",
        "MIGRATION_BATCH_SIZE",
        "URL_CACHE_MAX_ENTRIES",
        "AUDIT_LOG_CAPACITY",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Limits and sizes must be positive."""
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("MULTIPART_PART_SIZE_BYTES")
    @classmethod
    def validate_part_size(cls, v: int) -> int:
        """S3 rejects multipart parts smaller than 5MB."""
        if v < 5 * 1024 * 1024:
            raise ValueError("MULTIPART_PART_SIZE_BYTES must be at least 5MB")
        return v

    @field_validator("RETRY_BASE_DELAY_SECONDS")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("RETRY_BASE_DELAY_SECONDS cannot be negative")
        return v


# Global settings instance
settings = Settings()
