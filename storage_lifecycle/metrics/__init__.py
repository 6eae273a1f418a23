"""
Metrics module for engine monitoring.

This module provides Prometheus metrics collection and helper functions.
"""
from storage_lifecycle.metrics.prometheus import (
    # Provider Metrics
    storage_operations_total,
    storage_operation_duration_seconds,
    storage_retries_total,
    storage_bytes_transferred,

    # Lifecycle Metrics
    lifecycle_evaluations_total,
    lifecycle_actions_total,
    lifecycle_safeguard_blocks_total,
    lifecycle_errors_total,
    lifecycle_scan_duration_seconds,

    # Cache Metrics
    url_cache_operations_total,
    url_cache_entries,

    # Audit & Migration Metrics
    audit_log_entries,
    audit_log_appends_total,
    migration_files_total,
    migration_bytes_total,

    # System Metrics
    app_info,

    # Helper Functions
    record_storage_operation,
    record_retry,
    record_evaluation,
    record_lifecycle_action,
    record_safeguard_block,
    record_lifecycle_error,
    record_scan_duration,
    record_cache_lookup,
    record_audit_append,
    record_migration_file,
    set_app_info,
)

__all__ = [
    "storage_operations_total",
    "storage_operation_duration_seconds",
    "storage_retries_total",
    "storage_bytes_transferred",
    "lifecycle_evaluations_total",
    "lifecycle_actions_total",
    "lifecycle_safeguard_blocks_total",
    "lifecycle_errors_total",
    "lifecycle_scan_duration_seconds",
    "url_cache_operations_total",
    "url_cache_entries",
    "audit_log_entries",
    "audit_log_appends_total",
    "migration_files_total",
    "migration_bytes_total",
    "app_info",
    "record_storage_operation",
    "record_retry",
    "record_evaluation",
    "record_lifecycle_action",
    "record_safeguard_block",
    "record_lifecycle_error",
    "record_scan_duration",
    "record_cache_lookup",
    "record_audit_append",
    "record_migration_file",
    "set_app_info",
]
