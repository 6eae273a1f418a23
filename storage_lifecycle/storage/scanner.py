"""
Lifecycle Scanner & Executor

Walks a provider's object listing page by page, evaluates every object
against a lifecycle policy and, when executing, dispatches ARCHIVE (copy
under an archive prefix) and DELETE actions. Per-file failures are
collected in the execution report; they never abort the scan.
"""
import asyncio
import inspect
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from storage_lifecycle.core.logging import get_logger
from storage_lifecycle.metrics import (
    record_evaluation,
    record_lifecycle_action,
    record_lifecycle_error,
    record_safeguard_block,
    record_scan_duration,
)
from .audit import AuditLog, AuditSinkError, LifecycleAuditLogEntry
from .errors import StorageProviderError
from .lifecycle import (
    LifecycleAction,
    LifecycleEvaluationResult,
    LifecyclePolicyConfig,
    PredicateRegistry,
    archive_key_for,
    evaluate_lifecycle_policy,
)
from .metadata import FileLifecycleMetadata, collect_file_metadata
from .models import CancellationToken, StorageListOptions
from .provider import StorageProvider

logger = logging.getLogger(__name__)

DELETION_LIMIT_REACHED = "Deletion limit reached"
DEFAULT_SCAN_CONCURRENCY = 5
DEFAULT_SCAN_PAGE_SIZE = 1000


@dataclass
class LifecycleExecutionResult:
    """
    Aggregate report of one scan run
    """
    execution_id: str
    dry_run: bool
    start_time: datetime
    end_time: Optional[datetime] = None
    total_evaluated: int = 0
    matched: int = 0
    archived: int = 0
    deleted: int = 0
    kept: int = 0
    blocked: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def duration_ms(self) -> int:
        if self.end_time is None:
            return 0
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    def add_error(self, file_key: str, error: str) -> None:
        self.errors.append({'file': file_key, 'error': error})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'execution_id': self.execution_id,
            'dry_run': self.dry_run,
            'total_evaluated': self.total_evaluated,
            'matched': self.matched,
            'archived': self.archived,
            'deleted': self.deleted,
            'kept': self.kept,
            'blocked': self.blocked,
            'errors': list(self.errors),
            'cancelled': self.cancelled,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration_ms': self.duration_ms,
        }


@dataclass(frozen=True)
class ScanProgress:
    processed: int
    total_evaluated: int
    current_key: str


class DeletionBudget:
    """
    Per-run deletion counter shared by concurrent workers.

    Enforces the global cap and any per-rule caps. A slot is reserved before
    deleting and released again if the delete fails.
    """

    def __init__(self, global_limit: Optional[int] = None, rule_limits: Optional[Dict[str, int]] = None):
        self.global_limit = global_limit
        self.rule_limits = dict(rule_limits or {})
        self.used = 0
        self._rule_used: Dict[str, int] = defaultdict(int)
        self._lock = asyncio.Lock()

    @classmethod
    def from_policy(cls, policy: LifecyclePolicyConfig) -> "DeletionBudget":
        global_limit = policy.global_safeguards.max_deletions_per_run if policy.global_safeguards else None
        rule_limits = {
            rule.id: rule.safeguards.max_deletions_per_run
            for rule in policy.rules
            if rule.safeguards is not None and rule.safeguards.max_deletions_per_run is not None
        }
        return cls(global_limit, rule_limits)

    async def try_acquire(self, rule_id: Optional[str] = None) -> bool:
        async with self._lock:
            if self.global_limit is not None and self.used >= self.global_limit:
                return False
            rule_limit = self.rule_limits.get(rule_id) if rule_id else None
            if rule_limit is not None and self._rule_used[rule_id] >= rule_limit:
                return False
            self.used += 1
            if rule_id:
                self._rule_used[rule_id] += 1
            return True

    async def release(self, rule_id: Optional[str] = None) -> None:
        async with self._lock:
            self.used = max(0, self.used - 1)
            if rule_id and self._rule_used[rule_id] > 0:
                self._rule_used[rule_id] -= 1


@dataclass
class _ScanState:
    started: int = 0
    completed: int = 0
    stop_reason: Optional[str] = None


class LifecycleScanner:
    """
    Lifecycle scanner and executor

    Features:
    - Continuation-token pagination, pages consumed in listing order
    - Bounded concurrent evaluation within a page
    - Dry-run mode (default) that reports without mutating storage
    - Global and per-rule deletion limits
    - Audit trail of executed and blocked actions
    - Cooperative cancellation between pages and objects
    """

    def __init__(
        self,
        provider: StorageProvider,
        audit_log: Optional[AuditLog] = None,
        predicates: Optional[PredicateRegistry] = None,
        concurrency: int = DEFAULT_SCAN_CONCURRENCY,
        page_size: int = DEFAULT_SCAN_PAGE_SIZE,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize lifecycle scanner

        Args:
            provider: Storage provider to scan
            audit_log: Audit log receiving executed/blocked actions
            predicates: Registry for custom conditions and safeguards
            concurrency: Objects evaluated concurrently within a page
            page_size: Listing page size
            clock: Current-time source; one timestamp is used per scan
        """
        self.provider = provider
        self.audit_log = audit_log
        self.predicates = predicates or PredicateRegistry()
        self.concurrency = concurrency
        self.page_size = page_size
        self._clock = clock

    async def scan_and_evaluate(
        self,
        policy: LifecyclePolicyConfig,
        prefix: str = "",
        max_files: Optional[int] = None,
        execute: bool = False,
        on_progress: Optional[Callable[[ScanProgress], Any]] = None,
        execution_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> LifecycleExecutionResult:
        """
        Scan objects under a prefix and apply a lifecycle policy.

        Args:
            policy: Lifecycle policy
            prefix: Key prefix to scan
            max_files: Soft cap on objects processed
            execute: Dispatch actions; False is a dry run
            on_progress: Called (or awaited) after each object
            execution_id: Identifier stamped on audit entries (generated if omitted)
            cancel_token: Stops the scan between pages/objects when tripped

        Returns:
            Execution report
        """
        execution_id = execution_id or f"exec-{int(time.time() * 1000)}"
        now = self._clock()
        result = LifecycleExecutionResult(execution_id=execution_id, dry_run=not execute, start_time=now)
        budget = DeletionBudget.from_policy(policy)
        semaphore = asyncio.Semaphore(self.concurrency)
        state = _ScanState()
        audit = execute and policy.enable_audit_log and self.audit_log is not None
        started = time.perf_counter()

        scan_logger = get_logger(__name__, with_context=True)
        scan_logger.set_context(execution_id=execution_id, prefix=prefix, dry_run=not execute)
        scan_logger.info(f"Lifecycle scan started with {len(policy.rules)} rules")

        def should_stop() -> bool:
            if state.stop_reason is not None:
                return True
            if cancel_token is not None and cancel_token.should_stop():
                state.stop_reason = cancel_token.reason or "cancelled"
                result.cancelled = True
                return True
            return False

        def cap_reached() -> bool:
            return max_files is not None and state.started >= max_files

        async def process(key: str) -> None:
            async with semaphore:
                if should_stop() or cap_reached():
                    return
                state.started += 1
                await self._process_file(key, policy, now, execute, audit, budget, result, state, execution_id)
                state.completed += 1

            if on_progress is not None:
                try:
                    outcome = on_progress(ScanProgress(
                        processed=state.completed,
                        total_evaluated=result.total_evaluated,
                        current_key=key,
                    ))
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    scan_logger.warning(f"Progress callback failed for '{key}': {e}")

        token: Optional[str] = None
        while not should_stop() and not cap_reached():
            try:
                page = await self.provider.list_files(
                    StorageListOptions(prefix=prefix, max_results=self.page_size, continuation_token=token)
                )
            except StorageProviderError as e:
                scan_logger.error(f"Listing failed, ending scan: {e.message}")
                result.add_error("scan", e.message)
                record_lifecycle_error("list")
                break

            await asyncio.gather(*(process(key) for key in page.keys))

            if not page.is_truncated or not page.continuation_token:
                break
            token = page.continuation_token

        result.end_time = self._clock()
        record_scan_duration(time.perf_counter() - started, dry_run=not execute)
        scan_logger.info(
            f"Lifecycle scan finished: evaluated={result.total_evaluated} matched={result.matched} "
            f"archived={result.archived} deleted={result.deleted} kept={result.kept} "
            f"blocked={result.blocked} errors={len(result.errors)}"
            + (f" stopped={state.stop_reason}" if state.stop_reason else "")
        )
        return result

    async def _process_file(
        self,
        key: str,
        policy: LifecyclePolicyConfig,
        now: datetime,
        execute: bool,
        audit: bool,
        budget: DeletionBudget,
        result: LifecycleExecutionResult,
        state: _ScanState,
        execution_id: str,
    ) -> None:
        """Evaluate one object and dispatch its action; contributes exactly one outcome."""
        try:
            file = await collect_file_metadata(self.provider, key, now)
        except StorageProviderError as e:
            logger.warning(f"Metadata collection failed for '{key}': {e.message}")
            result.add_error(key, e.message)
            record_lifecycle_error("metadata")
            return

        result.total_evaluated += 1

        try:
            evaluation = evaluate_lifecycle_policy(file, policy, self.predicates, now)
        except Exception as e:
            # Custom predicates are caller code; a failure only affects this file
            logger.exception(f"Policy evaluation failed for '{key}'")
            result.add_error(key, f"Evaluation failed: {e}")
            record_lifecycle_error("evaluate")
            return

        record_evaluation(evaluation.action.value)
        rule = evaluation.matched_rule
        if rule is not None:
            result.matched += 1

        if evaluation.safeguard_blocked:
            result.blocked += 1
            record_safeguard_block("safeguard")
            if audit:
                self._audit(evaluation.action, file, evaluation, result, state, execution_id,
                            blocked=True, reason=evaluation.safeguard_reason)
            return

        action = evaluation.action
        if action in (LifecycleAction.NONE, LifecycleAction.KEEP):
            result.kept += 1
            return

        if action is LifecycleAction.DELETE:
            rule_id = rule.id if rule else None
            if not await budget.try_acquire(rule_id):
                result.blocked += 1
                result.add_error(key, DELETION_LIMIT_REACHED)
                record_safeguard_block("deletion_limit")
                if audit:
                    self._audit(action, file, evaluation, result, state, execution_id,
                                blocked=True, reason=DELETION_LIMIT_REACHED)
                return

            if execute:
                try:
                    await self.provider.delete_file(key)
                except StorageProviderError as e:
                    await budget.release(rule_id)
                    logger.warning(f"Delete failed for '{key}': {e.message}")
                    result.add_error(key, e.message)
                    record_lifecycle_error("delete")
                    return

            result.deleted += 1
            record_lifecycle_action(action.value, dry_run=not execute)
            if audit:
                self._audit(action, file, evaluation, result, state, execution_id)
            return

        if action is LifecycleAction.ARCHIVE:
            destination = archive_key_for(key, evaluation.action_params)
            if execute:
                try:
                    await self.provider.copy_file(key, destination)
                except StorageProviderError as e:
                    logger.warning(f"Archive failed for '{key}' -> '{destination}': {e.message}")
                    result.add_error(key, e.message)
                    record_lifecycle_error("archive")
                    return

            result.archived += 1
            record_lifecycle_action(action.value, dry_run=not execute)
            if audit:
                self._audit(action, file, evaluation, result, state, execution_id)

    def _audit(
        self,
        action: LifecycleAction,
        file: FileLifecycleMetadata,
        evaluation: LifecycleEvaluationResult,
        result: LifecycleExecutionResult,
        state: _ScanState,
        execution_id: str,
        blocked: bool = False,
        reason: Optional[str] = None,
    ) -> None:
        entry = LifecycleAuditLogEntry(
            timestamp=datetime.now(timezone.utc),
            file_key=file.key,
            action=action,
            rule_id=evaluation.matched_rule.id if evaluation.matched_rule else None,
            blocked=blocked,
            block_reason=reason,
            execution_id=execution_id,
            file_metadata=file.to_dict(),
        )
        try:
            self.audit_log.append(entry)
        except AuditSinkError as e:
            # Without a durable audit trail no further actions are dispatched
            logger.error(f"Audit write failed for '{file.key}', stopping scan: {e}")
            result.add_error(file.key, str(e))
            record_lifecycle_error("audit")
            state.stop_reason = "audit sink failure"
