"""
Unit tests for the lifecycle scanner and executor.
Tests storage_lifecycle/storage/scanner.py
"""
from unittest.mock import MagicMock

import pytest

from storage_lifecycle.storage.audit import AuditLog, AuditLogFilter, AuditSinkError
from storage_lifecycle.storage.errors import StorageErrorKind, StorageProviderError
from storage_lifecycle.storage.lifecycle import (
    DEFAULT_LIFECYCLE_POLICY,
    LifecycleAction,
    LifecycleActionParams,
    LifecyclePolicyConfig,
    LifecyclePolicyRule,
    LifecycleRuleConditions,
    LifecycleSafeguards,
)
from storage_lifecycle.storage.models import CancellationToken
from storage_lifecycle.storage.paths import FileType
from storage_lifecycle.storage.scanner import DELETION_LIMIT_REACHED, DeletionBudget, LifecycleScanner


def delete_thumbnails_policy(global_limit=None, rule_limit=None):
    return LifecyclePolicyConfig(
        rules=(
            LifecyclePolicyRule(
                id="expire-thumbs",
                name="Expire thumbnails",
                conditions=LifecycleRuleConditions(min_age_days=30, file_types=(FileType.THUMBNAIL,)),
                action=LifecycleAction.DELETE,
                priority=1,
                safeguards=LifecycleSafeguards(max_deletions_per_run=rule_limit) if rule_limit else None,
            ),
        ),
        global_safeguards=LifecycleSafeguards(
            protected_prefixes=("albums/important/",),
            max_deletions_per_run=global_limit,
        ),
    )


@pytest.fixture
def scanner(memory_provider, audit_log, predicates, now):
    return LifecycleScanner(
        memory_provider,
        audit_log=audit_log,
        predicates=predicates,
        concurrency=3,
        page_size=2,
        clock=lambda: now,
    )


@pytest.mark.unit
class TestDeletionBudget:
    """Test per-run deletion limits."""

    @pytest.mark.asyncio
    async def test_global_limit(self):
        """Test global cap."""
        budget = DeletionBudget(global_limit=2)

        assert await budget.try_acquire("r")
        assert await budget.try_acquire("r")
        assert not await budget.try_acquire("r")

    @pytest.mark.asyncio
    async def test_rule_limit(self):
        """Test per-rule caps do not affect other rules."""
        budget = DeletionBudget(rule_limits={"a": 1})

        assert await budget.try_acquire("a")
        assert not await budget.try_acquire("a")
        assert await budget.try_acquire("b")

    @pytest.mark.asyncio
    async def test_release_frees_slot(self):
        """Test releasing a slot after a failed delete."""
        budget = DeletionBudget(global_limit=1)

        assert await budget.try_acquire()
        await budget.release()
        assert await budget.try_acquire()

    def test_from_policy(self):
        """Test limits are read from global and rule safeguards."""
        budget = DeletionBudget.from_policy(DEFAULT_LIFECYCLE_POLICY)

        assert budget.global_limit == 5000
        assert budget.rule_limits == {"delete-old-thumbnails": 1000}


@pytest.mark.unit
class TestScanAndEvaluate:
    """Test scanning, evaluation and execution."""

    @pytest.mark.asyncio
    async def test_dry_run_does_not_mutate(self, scanner, memory_provider, store_photo, audit_log):
        """Test dry run counts would-be deletions but keeps objects."""
        old = await store_photo("a1", "p1", FileType.THUMBNAIL, age_days=100)
        await store_photo("a1", "p2", FileType.THUMBNAIL, age_days=1)

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy())

        assert result.dry_run
        assert result.total_evaluated == 2
        assert result.deleted == 1
        assert result.kept == 1
        assert result.matched == 1
        assert await memory_provider.file_exists(old)
        assert len(audit_log) == 0

    @pytest.mark.asyncio
    async def test_execute_deletes_and_audits(self, scanner, memory_provider, store_photo, audit_log):
        """Test executed deletions remove objects and write audit entries."""
        old = await store_photo("a1", "p1", FileType.THUMBNAIL, age_days=100)

        result = await scanner.scan_and_evaluate(
            delete_thumbnails_policy(), execute=True, execution_id="exec-test"
        )

        assert not result.dry_run
        assert result.deleted == 1
        assert not await memory_provider.file_exists(old)

        entries = audit_log.query(AuditLogFilter(execution_id="exec-test"))
        assert len(entries) == 1
        assert entries[0].file_key == old
        assert entries[0].action is LifecycleAction.DELETE
        assert entries[0].rule_id == "expire-thumbs"
        assert not entries[0].blocked

    @pytest.mark.asyncio
    async def test_protected_files_are_blocked(self, scanner, memory_provider, store_photo, audit_log):
        """Test safeguard blocks are counted, kept and audited."""
        key = await store_photo("important", "p1", FileType.THUMBNAIL, age_days=100)

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(), execute=True)

        assert result.blocked == 1
        assert result.deleted == 0
        assert await memory_provider.file_exists(key)

        entry = audit_log.query()[0]
        assert entry.blocked
        assert entry.action is LifecycleAction.KEEP
        assert entry.block_reason == "File matches protected prefix: albums/important/"

    @pytest.mark.asyncio
    async def test_global_deletion_limit(self, scanner, memory_provider, store_photo):
        """Test no more than the global cap is deleted; the rest are blocked."""
        for i in range(5):
            await store_photo("a1", f"p{i}", FileType.THUMBNAIL, age_days=100)

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(global_limit=3), execute=True)

        assert result.deleted == 3
        assert result.blocked == 2
        assert memory_provider.size() == 2
        limit_errors = [e for e in result.errors if e["error"] == DELETION_LIMIT_REACHED]
        assert len(limit_errors) == 2

    @pytest.mark.asyncio
    async def test_rule_deletion_limit(self, scanner, store_photo):
        """Test per-rule cap applies in dry run as well."""
        for i in range(4):
            await store_photo("a1", f"p{i}", FileType.THUMBNAIL, age_days=100)

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(rule_limit=1))

        assert result.deleted == 1
        assert result.blocked == 3

    @pytest.mark.asyncio
    async def test_limit_blocks_are_audited(self, scanner, store_photo, audit_log):
        """Test deletion-limit blocks are audited with the limit reason."""
        for i in range(2):
            await store_photo("a1", f"p{i}", FileType.THUMBNAIL, age_days=100)

        await scanner.scan_and_evaluate(delete_thumbnails_policy(global_limit=1), execute=True)

        blocked = [e for e in audit_log.query() if e.blocked]
        assert len(blocked) == 1
        assert blocked[0].block_reason == DELETION_LIMIT_REACHED
        assert blocked[0].action is LifecycleAction.DELETE

    @pytest.mark.asyncio
    async def test_delete_failure_does_not_abort_scan(self, scanner, memory_provider, store_photo):
        """Test one failing delete is reported while others proceed."""
        bad = await store_photo("a1", "p1", FileType.THUMBNAIL, age_days=100)
        await store_photo("a1", "p2", FileType.THUMBNAIL, age_days=100)
        memory_provider.inject_error(bad, StorageProviderError("Access denied", key=bad), operations=["delete"])

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(global_limit=1), execute=True)

        assert result.deleted == 1
        assert result.errors == [{"file": bad, "error": "Access denied"}]
        assert memory_provider.size() == 1

    @pytest.mark.asyncio
    async def test_metadata_failure_is_reported(self, scanner, memory_provider, store_photo):
        """Test metadata errors are collected per file."""
        bad = await store_photo("a1", "p1", FileType.THUMBNAIL, age_days=100)
        await store_photo("a1", "p2", FileType.ORIGINAL, age_days=100)
        memory_provider.inject_error(
            bad,
            StorageProviderError("Service unavailable", key=bad, kind=StorageErrorKind.TRANSIENT),
            operations=["metadata"],
        )

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy())

        assert result.total_evaluated == 1
        assert result.errors == [{"file": bad, "error": "Service unavailable"}]

    @pytest.mark.asyncio
    async def test_listing_failure_ends_scan(self, scanner, memory_provider):
        """Test listing errors are reported against the scan."""
        memory_provider.inject_error("*", StorageProviderError("Listing failed"), operations=["list"])

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy())

        assert result.total_evaluated == 0
        assert result.errors == [{"file": "scan", "error": "Listing failed"}]
        assert result.end_time is not None

    @pytest.mark.asyncio
    async def test_evaluation_failure_is_isolated(self, scanner, store_photo, predicates):
        """Test a raising custom predicate only affects its file."""
        def broken(file, rule):
            raise RuntimeError("predicate exploded")

        predicates.register_condition("broken", broken)
        policy = LifecyclePolicyConfig(rules=(
            LifecyclePolicyRule(
                id="custom",
                name="Custom",
                conditions=LifecycleRuleConditions(custom_evaluator="broken"),
                action=LifecycleAction.DELETE,
            ),
        ))
        await store_photo("a1", "p1", FileType.ORIGINAL)

        result = await scanner.scan_and_evaluate(policy)

        assert result.errors[0]["error"] == "Evaluation failed: predicate exploded"

    @pytest.mark.asyncio
    async def test_archive_copies_under_target(self, scanner, memory_provider, store_photo):
        """Test ARCHIVE copies the object and keeps the source."""
        key = await store_photo("a1", "p1", FileType.PREVIEW, age_days=200)
        policy = LifecyclePolicyConfig(rules=(
            LifecyclePolicyRule(
                id="archive-previews",
                name="Archive previews",
                conditions=LifecycleRuleConditions(min_age_days=180, file_types=(FileType.PREVIEW,)),
                action=LifecycleAction.ARCHIVE,
                action_params=LifecycleActionParams(archive_target="archive/previews"),
            ),
        ))

        result = await scanner.scan_and_evaluate(policy, prefix="albums/", execute=True)

        assert result.archived == 1
        assert await memory_provider.file_exists(key)
        assert await memory_provider.file_exists(f"archive/previews/{key}")

    @pytest.mark.asyncio
    async def test_max_files_caps_processing(self, scanner, store_photo):
        """Test max_files stops the scan early."""
        for i in range(6):
            await store_photo("a1", f"p{i}", FileType.ORIGINAL)

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(), max_files=3)

        assert result.total_evaluated == 3

    @pytest.mark.asyncio
    async def test_prefix_limits_scan(self, scanner, store_photo):
        """Test only objects under the prefix are evaluated."""
        await store_photo("a1", "p1", FileType.THUMBNAIL, age_days=100)
        await store_photo("a2", "p1", FileType.THUMBNAIL, age_days=100)

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(), prefix="albums/a2/")

        assert result.total_evaluated == 1

    @pytest.mark.asyncio
    async def test_cancellation(self, scanner, store_photo):
        """Test a cancelled token stops the scan before any work."""
        for i in range(3):
            await store_photo("a1", f"p{i}", FileType.ORIGINAL)
        token = CancellationToken()
        token.cancel("shutdown")

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(), cancel_token=token)

        assert result.cancelled
        assert result.total_evaluated == 0

    def test_token_deadline(self):
        ticks = iter([100.0, 104.0, 106.0])
        token = CancellationToken.with_timeout(5, clock=lambda: next(ticks))

        assert not token.should_stop()
        assert token.should_stop()
        assert token.reason == "deadline exceeded"
        assert not token.cancelled

    @pytest.mark.asyncio
    async def test_progress_callback(self, scanner, store_photo):
        """Test progress is reported once per object."""
        for i in range(3):
            await store_photo("a1", f"p{i}", FileType.ORIGINAL)
        events = []

        await scanner.scan_and_evaluate(delete_thumbnails_policy(), on_progress=events.append)

        assert len(events) == 3
        assert max(e.processed for e in events) == 3

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_abort(self, scanner, store_photo):
        """Test a raising callback is logged and the scan still returns its report."""
        for i in range(3):
            await store_photo("a1", f"p{i}", FileType.ORIGINAL)

        def on_progress(event):
            raise RuntimeError("ui gone")

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(), on_progress=on_progress)

        assert result.total_evaluated == 3
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_audit_sink_failure_stops_scan(self, memory_provider, store_photo, now):
        """Test a durable audit failure halts further actions."""
        sink = MagicMock()
        sink.write.side_effect = AuditSinkError("disk full")
        scanner = LifecycleScanner(
            memory_provider,
            audit_log=AuditLog(capacity=10, sink=sink),
            concurrency=1,
            page_size=10,
            clock=lambda: now,
        )
        for i in range(3):
            await store_photo("a1", f"p{i}", FileType.THUMBNAIL, age_days=100)

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(), execute=True)

        assert result.deleted == 1
        assert memory_provider.size() == 2
        assert any(e["error"] == "disk full" for e in result.errors)

    @pytest.mark.asyncio
    async def test_result_to_dict(self, scanner, store_photo):
        """Test execution report serialization."""
        await store_photo("a1", "p1", FileType.THUMBNAIL, age_days=100)

        result = await scanner.scan_and_evaluate(delete_thumbnails_policy(), execution_id="exec-1")
        data = result.to_dict()

        assert data["execution_id"] == "exec-1"
        assert data["dry_run"] is True
        assert data["deleted"] == 1
        assert data["duration_ms"] == 0
