"""
Prometheus metrics for engine monitoring.

This module defines all Prometheus metrics used throughout the engine:
- Provider operation metrics (calls, duration, retries)
- Lifecycle metrics (evaluations, actions, safeguard blocks, scans)
- CDN URL cache metrics (hits, misses, size)
- Audit log and migration metrics
"""
from prometheus_client import Counter, Gauge, Histogram, Info


# ============================================================================
# Provider Metrics
# ============================================================================

storage_operations_total = Counter(
    "storage_operations_total",
    "Total number of storage provider operations",
    ["provider", "operation", "status"],
)

storage_operation_duration_seconds = Histogram(
    "storage_operation_duration_seconds",
    "Storage provider operation duration in seconds",
    ["provider", "operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

storage_retries_total = Counter(
    "storage_retries_total",
    "Retries of transient storage failures",
    ["operation"],
)

storage_bytes_transferred = Counter(
    "storage_bytes_transferred",
    "Bytes moved through the storage provider",
    ["provider", "direction"],
)


# ============================================================================
# Lifecycle Metrics
# ============================================================================

lifecycle_evaluations_total = Counter(
    "lifecycle_evaluations_total",
    "Files evaluated against a lifecycle policy",
    ["action"],
)

lifecycle_actions_total = Counter(
    "lifecycle_actions_total",
    "Lifecycle actions dispatched to the provider",
    ["action", "dry_run"],
)

lifecycle_safeguard_blocks_total = Counter(
    "lifecycle_safeguard_blocks_total",
    "Destructive actions suppressed by safeguards or the deletion limit",
    ["scope"],
)

lifecycle_errors_total = Counter(
    "lifecycle_errors_total",
    "Per-file failures during lifecycle scans",
    ["stage"],
)

lifecycle_scan_duration_seconds = Histogram(
    "lifecycle_scan_duration_seconds",
    "Duration of a full lifecycle scan",
    ["dry_run"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300, 900, 1800, 3600],
)


# ============================================================================
# CDN URL Cache Metrics
# ============================================================================

url_cache_operations_total = Counter(
    "url_cache_operations_total",
    "CDN URL cache lookups",
    ["result"],
)

url_cache_entries = Gauge(
    "url_cache_entries",
    "Entries currently held by the in-process CDN URL cache",
)


# ============================================================================
# Audit & Migration Metrics
# ============================================================================

audit_log_entries = Gauge(
    "audit_log_entries",
    "Entries currently held in the audit ring buffer",
)

audit_log_appends_total = Counter(
    "audit_log_appends_total",
    "Audit entries appended",
    ["action", "blocked"],
)

migration_files_total = Counter(
    "migration_files_total",
    "Files processed by cross-provider migration",
    ["status"],
)

migration_bytes_total = Counter(
    "migration_bytes_total",
    "Bytes copied by cross-provider migration",
)


# ============================================================================
# System Metrics
# ============================================================================

app_info = Info(
    "storage_lifecycle",
    "Storage lifecycle engine information",
)


# ============================================================================
# Helper Functions
# ============================================================================

def record_storage_operation(
    provider: str,
    operation: str,
    duration: float,
    success: bool = True,
):
    """
    Record a storage provider call.

    Args:
        provider: Provider name (s3, memory, ...)
        operation: Operation name (upload, download, delete, ...)
        duration: Duration in seconds
        success: Whether the call succeeded
    """
    status = "success" if success else "error"
    storage_operations_total.labels(provider=provider, operation=operation, status=status).inc()
    storage_operation_duration_seconds.labels(provider=provider, operation=operation).observe(duration)


def record_retry(operation: str):
    storage_retries_total.labels(operation=operation).inc()


def record_evaluation(action: str):
    lifecycle_evaluations_total.labels(action=action).inc()


def record_lifecycle_action(action: str, dry_run: bool):
    lifecycle_actions_total.labels(action=action, dry_run=str(dry_run).lower()).inc()


def record_safeguard_block(scope: str):
    """
    Record a suppressed destructive action.

    Args:
        scope: "safeguard" for policy safeguards, "deletion_limit" for the per-run cap
    """
    lifecycle_safeguard_blocks_total.labels(scope=scope).inc()


def record_lifecycle_error(stage: str):
    lifecycle_errors_total.labels(stage=stage).inc()


def record_scan_duration(duration: float, dry_run: bool):
    lifecycle_scan_duration_seconds.labels(dry_run=str(dry_run).lower()).observe(duration)


def record_cache_lookup(hit: bool):
    url_cache_operations_total.labels(result="hit" if hit else "miss").inc()


def record_audit_append(action: str, blocked: bool, size: int):
    audit_log_appends_total.labels(action=action, blocked=str(blocked).lower()).inc()
    audit_log_entries.set(size)


def record_migration_file(status: str, size_bytes: int = 0):
    migration_files_total.labels(status=status).inc()
    if size_bytes:
        migration_bytes_total.inc(size_bytes)


def set_app_info(version: str, provider: str):
    app_info.info({"version": version, "provider": provider})
