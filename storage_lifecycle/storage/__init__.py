"""
Storage Management Module

This module provides provider-agnostic object storage and lifecycle management:
- Storage provider interface with S3-compatible and in-memory implementations
- Provider factory and default provider handle
- CDN URL generation with public URL caching
- Policy-driven lifecycle evaluation, scanning and execution
- Audit trail of lifecycle actions
- Cross-provider migration and comparison
"""

from .errors import StorageErrorKind, StorageProviderError, ConfigurationError
from .models import (
    StorageUploadOptions,
    StorageUploadResult,
    StorageDownloadOptions,
    StorageDownloadResult,
    StorageDownloadBufferResult,
    DownloadProgress,
    StorageFileMetadata,
    StorageListOptions,
    StorageListResult,
    StorageFileEntry,
    StorageListWithMetadataResult,
    BatchUploadItem,
    StorageBatchUploadResult,
    StorageBatchDeleteResult,
    ImageTransformParams,
    CdnUrlOptions,
    CancellationToken,
)
from .retry import RetryPolicy, with_retry
from .provider import StorageProvider
from .memory_provider import InMemoryStorageProvider
from .s3_provider import S3StorageProvider
from .factory import (
    ProviderType,
    S3ProviderConfig,
    StorageProviderConfig,
    ProviderRegistry,
    create_storage_provider,
    get_default_storage_provider_config,
    get_default_storage_provider,
    set_default_storage_provider,
    reset_default_storage_provider,
)
from .paths import FileType, ParsedPath, generate_photo_path, parse_photo_path, sanitize_path_segment
from .cdn import CdnUrlGenerator
from .metadata import FileLifecycleMetadata, build_lifecycle_metadata, collect_file_metadata
from .lifecycle import (
    LifecycleAction,
    LifecycleRuleConditions,
    LifecycleSafeguards,
    LifecycleActionParams,
    LifecyclePolicyRule,
    LifecyclePolicyConfig,
    LifecycleEvaluationResult,
    PredicateRegistry,
    DEFAULT_LIFECYCLE_POLICY,
    evaluate_lifecycle_policy,
    check_safeguards,
    validate_policy,
)
from .audit import (
    AuditLog,
    AuditLogFilter,
    AuditSinkError,
    JsonlFileAuditSink,
    LifecycleAuditLogEntry,
    get_audit_log,
    reset_audit_log,
)
from .scanner import LifecycleScanner, LifecycleExecutionResult, ScanProgress, DELETION_LIMIT_REACHED
from .migration import (
    MigrationOptions,
    MigrationProgress,
    MigrationResult,
    MigrationStatus,
    ProviderComparison,
    compare_providers,
    migrate_between_providers,
)
from .usage import StorageUsageReport, format_bytes, generate_storage_usage_report

__all__ = [
    # Errors
    'StorageErrorKind',
    'StorageProviderError',
    'ConfigurationError',

    # Provider types
    'StorageUploadOptions',
    'StorageUploadResult',
    'StorageDownloadOptions',
    'StorageDownloadResult',
    'StorageDownloadBufferResult',
    'DownloadProgress',
    'StorageFileMetadata',
    'StorageListOptions',
    'StorageListResult',
    'StorageFileEntry',
    'StorageListWithMetadataResult',
    'BatchUploadItem',
    'StorageBatchUploadResult',
    'StorageBatchDeleteResult',
    'ImageTransformParams',
    'CdnUrlOptions',
    'CancellationToken',

    # Providers
    'RetryPolicy',
    'with_retry',
    'StorageProvider',
    'InMemoryStorageProvider',
    'S3StorageProvider',
    'ProviderType',
    'S3ProviderConfig',
    'StorageProviderConfig',
    'ProviderRegistry',
    'create_storage_provider',
    'get_default_storage_provider_config',
    'get_default_storage_provider',
    'set_default_storage_provider',
    'reset_default_storage_provider',

    # Paths & CDN
    'FileType',
    'ParsedPath',
    'generate_photo_path',
    'parse_photo_path',
    'sanitize_path_segment',
    'CdnUrlGenerator',

    # Lifecycle
    'FileLifecycleMetadata',
    'build_lifecycle_metadata',
    'collect_file_metadata',
    'LifecycleAction',
    'LifecycleRuleConditions',
    'LifecycleSafeguards',
    'LifecycleActionParams',
    'LifecyclePolicyRule',
    'LifecyclePolicyConfig',
    'LifecycleEvaluationResult',
    'PredicateRegistry',
    'DEFAULT_LIFECYCLE_POLICY',
    'evaluate_lifecycle_policy',
    'check_safeguards',
    'validate_policy',
    'LifecycleScanner',
    'LifecycleExecutionResult',
    'ScanProgress',
    'DELETION_LIMIT_REACHED',

    # Audit
    'AuditLog',
    'AuditLogFilter',
    'AuditSinkError',
    'JsonlFileAuditSink',
    'LifecycleAuditLogEntry',
    'get_audit_log',
    'reset_audit_log',

    # Migration
    'MigrationOptions',
    'MigrationProgress',
    'MigrationResult',
    'MigrationStatus',
    'ProviderComparison',
    'compare_providers',
    'migrate_between_providers',

    # Usage
    'StorageUsageReport',
    'format_bytes',
    'generate_storage_usage_report',
]
