"""
Storage Lifecycle Engine - Application Context
Wires settings, storage provider, URL cache, audit log and predicate registry
into one object that runs lifecycle scans and migrations.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis

from storage_lifecycle.core.cache import RedisUrlCache, UrlCache, UrlCacheBackend
from storage_lifecycle.core.config import Settings, settings as default_settings
from storage_lifecycle.core.logging import setup_json_logging
from storage_lifecycle.metrics import set_app_info
from storage_lifecycle.schemas.policy import load_policy_file
from storage_lifecycle.storage.audit import AuditLog, AuditLogFilter, JsonlFileAuditSink, LifecycleAuditLogEntry
from storage_lifecycle.storage.errors import ConfigurationError
from storage_lifecycle.storage.factory import create_storage_provider, get_default_storage_provider_config
from storage_lifecycle.storage.lifecycle import (
    DEFAULT_LIFECYCLE_POLICY,
    LifecycleEvaluationResult,
    LifecyclePolicyConfig,
    PredicateRegistry,
    evaluate_lifecycle_policy,
)
from storage_lifecycle.storage.metadata import FileLifecycleMetadata
from storage_lifecycle.storage.migration import MigrationOptions, MigrationResult, migrate_between_providers
from storage_lifecycle.storage.models import CdnUrlOptions, StorageListOptions
from storage_lifecycle.storage.provider import StorageProvider
from storage_lifecycle.storage.scanner import LifecycleExecutionResult, LifecycleScanner

logger = logging.getLogger(__name__)


def create_url_cache(config: Optional[Settings] = None) -> UrlCacheBackend:
    """
    Build the public CDN URL cache selected by settings.

    Raises:
        ConfigurationError: Redis backend selected without REDIS_URL
    """
    config = config or default_settings
    if config.URL_CACHE_BACKEND == "redis":
        if not config.REDIS_URL:
            raise ConfigurationError("REDIS_URL is required when URL_CACHE_BACKEND is 'redis'")
        return RedisUrlCache(redis.Redis.from_url(config.REDIS_URL))
    return UrlCache(max_size=config.URL_CACHE_MAX_ENTRIES)


class LifecycleEngine:
    """
    Lifecycle engine context

    Features:
    - One provider, audit log and predicate registry per engine
    - Declarative policy loading (JSON/YAML) with a built-in default
    - Dry-run and executing scans
    - Cross-provider migration from the engine's provider
    - Per-path durable audit logs for policies that name one
    """

    def __init__(
        self,
        provider: StorageProvider,
        audit_log: Optional[AuditLog] = None,
        predicates: Optional[PredicateRegistry] = None,
        url_cache: Optional[UrlCacheBackend] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self.provider = provider
        self.audit_log = audit_log if audit_log is not None else AuditLog(capacity=self.settings.AUDIT_LOG_CAPACITY)
        self.predicates = predicates or PredicateRegistry()
        self.url_cache = url_cache
        self._policy_audit_logs: Dict[str, AuditLog] = {}
        self._loaded_policies: Dict[str, LifecyclePolicyConfig] = {}

    @classmethod
    def from_settings(
        cls,
        config: Optional[Settings] = None,
        provider: Optional[StorageProvider] = None,
        configure_logging: bool = True,
    ) -> "LifecycleEngine":
        """
        Build an engine from environment settings.

        Args:
            config: Settings (global settings if omitted)
            provider: Use this provider instead of building one from settings
            configure_logging: Install the JSON/text stdout handler on the package logger

        Returns:
            Configured engine

        Raises:
            ConfigurationError: Unknown provider type or missing credentials
        """
        config = config or default_settings
        if configure_logging:
            setup_json_logging(
                config.LOG_LEVEL,
                logger_name="storage_lifecycle",
                json_format=config.LOG_FORMAT == "json",
            )

        url_cache = None
        if provider is None:
            url_cache = create_url_cache(config)
            provider = create_storage_provider(get_default_storage_provider_config(config, url_cache))

        sink = JsonlFileAuditSink(config.AUDIT_LOG_PATH) if config.AUDIT_LOG_PATH else None
        audit_log = AuditLog(capacity=config.AUDIT_LOG_CAPACITY, sink=sink)

        set_app_info(config.APP_VERSION, provider.name)
        logger.info(f"{config.APP_NAME} {config.APP_VERSION} using provider: {provider.name}")

        return cls(provider, audit_log=audit_log, url_cache=url_cache, config=config)

    def load_policy(self, path: Optional[str] = None, reload: bool = False) -> LifecyclePolicyConfig:
        """
        Load the lifecycle policy from a file, LIFECYCLE_POLICY_PATH, or the default policy.

        Files are parsed once per path and reused; pass reload=True to pick up edits.
        """
        path = path or self.settings.LIFECYCLE_POLICY_PATH
        if not path:
            return DEFAULT_LIFECYCLE_POLICY
        policy = self._loaded_policies.get(path)
        if policy is None or reload:
            policy = load_policy_file(path)
            self._loaded_policies[path] = policy
            logger.info(f"Loaded lifecycle policy from {path} with {len(policy.rules)} rules")
        return policy

    def audit_log_for(self, policy: LifecyclePolicyConfig) -> AuditLog:
        """Audit log for a policy; policies naming a path get a file-backed log."""
        if not policy.audit_log_path:
            return self.audit_log
        audit_log = self._policy_audit_logs.get(policy.audit_log_path)
        if audit_log is None:
            audit_log = AuditLog(
                capacity=self.settings.AUDIT_LOG_CAPACITY,
                sink=JsonlFileAuditSink(policy.audit_log_path),
            )
            self._policy_audit_logs[policy.audit_log_path] = audit_log
        return audit_log

    def scanner(self, policy: Optional[LifecyclePolicyConfig] = None) -> LifecycleScanner:
        audit_log = self.audit_log_for(policy) if policy is not None else self.audit_log
        return LifecycleScanner(
            self.provider,
            audit_log=audit_log,
            predicates=self.predicates,
            concurrency=self.settings.SCAN_CONCURRENCY,
            page_size=self.settings.SCAN_PAGE_SIZE,
        )

    async def scan(
        self,
        policy: Optional[LifecyclePolicyConfig] = None,
        prefix: str = "",
        execute: bool = False,
        **kwargs: Any,
    ) -> LifecycleExecutionResult:
        """
        Run a lifecycle scan. Dry run unless execute=True.

        Extra keyword arguments are passed to LifecycleScanner.scan_and_evaluate.
        """
        policy = policy or self.load_policy()
        return await self.scanner(policy).scan_and_evaluate(policy, prefix=prefix, execute=execute, **kwargs)

    def evaluate(
        self,
        file: FileLifecycleMetadata,
        policy: Optional[LifecyclePolicyConfig] = None,
    ) -> LifecycleEvaluationResult:
        return evaluate_lifecycle_policy(file, policy or self.load_policy(), self.predicates)

    async def migrate(
        self,
        destination: StorageProvider,
        options: Optional[MigrationOptions] = None,
    ) -> MigrationResult:
        """Copy objects from this engine's provider into another provider."""
        options = options or MigrationOptions(batch_size=self.settings.MIGRATION_BATCH_SIZE)
        return await migrate_between_providers(self.provider, destination, options)

    async def generate_cdn_url(self, key: str, options: Optional[CdnUrlOptions] = None) -> str:
        return await self.provider.generate_cdn_url(key, options)

    def query_audit_log(
        self,
        filters: Optional[AuditLogFilter] = None,
        policy: Optional[LifecyclePolicyConfig] = None,
    ) -> List[LifecycleAuditLogEntry]:
        """
        Query audit entries written by this engine's scans.

        Args:
            filters: Query filters
            policy: Restrict the query to the log this policy writes to

        Returns:
            Matching entries from the main log and every per-policy log, newest first
        """
        if policy is not None:
            return self.audit_log_for(policy).query(filters)

        filters = filters or AuditLogFilter()
        matches = self.audit_log.query(filters)
        for audit_log in self._policy_audit_logs.values():
            matches.extend(audit_log.query(filters))
        matches.sort(key=lambda entry: entry.timestamp, reverse=True)

        if filters.limit is not None:
            matches = matches[:filters.limit]
        return matches

    async def health_check(self) -> Dict[str, Any]:
        """
        Check connectivity of the storage backend and the Redis URL cache.

        Returns overall status (healthy/degraded) and individual service status.
        """
        status: Dict[str, Any] = {
            "overall": "healthy",
            "services": {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            await self.provider.list_files(StorageListOptions(max_results=1))
            status["services"]["storage"] = {"status": "healthy", "provider": self.provider.name}
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            status["services"]["storage"] = {"status": "unhealthy", "error": str(e)}
            status["overall"] = "degraded"

        if isinstance(self.url_cache, RedisUrlCache):
            try:
                self.url_cache.redis.ping()
                status["services"]["redis"] = {"status": "healthy"}
            except redis.RedisError as e:
                logger.warning(f"Redis health check failed: {e}")
                status["services"]["redis"] = {"status": "unhealthy", "error": str(e)}
                status["overall"] = "degraded"

        return status

    async def close(self) -> None:
        await self.provider.close()
        logger.info("Lifecycle engine closed")

    async def __aenter__(self) -> "LifecycleEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
