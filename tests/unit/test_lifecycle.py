"""
Unit tests for lifecycle policy evaluation.
Tests storage_lifecycle/storage/lifecycle.py
"""
from datetime import datetime, timedelta, timezone

import pytest

from storage_lifecycle.storage.lifecycle import (
    DEFAULT_LIFECYCLE_POLICY,
    LifecycleAction,
    LifecycleActionParams,
    LifecyclePolicyConfig,
    LifecyclePolicyRule,
    LifecycleRuleConditions,
    LifecycleSafeguards,
    PredicateRegistry,
    archive_key_for,
    check_safeguards,
    evaluate_conditions,
    evaluate_lifecycle_policy,
    validate_policy,
)
from storage_lifecycle.storage.metadata import build_lifecycle_metadata, days_between
from storage_lifecycle.storage.models import StorageFileMetadata
from storage_lifecycle.storage.paths import FileType

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def make_file(key, age_days=0, size=1024, content_type="image/jpeg", metadata=None, last_accessed_days=None):
    """Build lifecycle metadata for a key aged ``age_days``."""
    metadata = dict(metadata or {})
    if last_accessed_days is not None:
        metadata["lastAccessed"] = (NOW - timedelta(days=last_accessed_days)).isoformat()
    snapshot = StorageFileMetadata(
        key=key,
        content_type=content_type,
        content_length=size,
        etag="abc",
        last_modified=NOW - timedelta(days=age_days),
        metadata=metadata,
    )
    return build_lifecycle_metadata(snapshot, NOW)


def rule(rule_id, action, priority=100, enabled=True, safeguards=None, **conditions):
    return LifecyclePolicyRule(
        id=rule_id,
        name=rule_id,
        conditions=LifecycleRuleConditions(**conditions),
        action=action,
        priority=priority,
        enabled=enabled,
        safeguards=safeguards,
    )


@pytest.mark.unit
class TestFileMetadata:
    """Test derived lifecycle fields."""

    def test_age_days_is_floored(self):
        """Test that partial days do not count."""
        earlier = NOW - timedelta(days=2, hours=23)
        assert days_between(earlier, NOW) == 2

    def test_future_timestamp_gives_zero_age(self):
        """Test clock skew never produces a negative age."""
        assert days_between(NOW + timedelta(days=1), NOW) == 0

    def test_parses_photo_path(self):
        """Test file type is derived from the key."""
        file = make_file("albums/a1/photos/p1/thumbnail.jpg", age_days=3)

        assert file.age_days == 3
        assert file.file_type.value == "thumbnail"
        assert file.parsed.album_id == "a1"

    def test_last_accessed_from_metadata(self):
        """Test age since access is derived from lastAccessed metadata."""
        file = make_file("albums/a1/photos/p1/original.jpg", age_days=10, last_accessed_days=4)
        assert file.age_since_access_days == 4

    def test_invalid_last_accessed_is_ignored(self):
        """Test unparseable access timestamps are treated as absent."""
        file = make_file("k", metadata={"lastAccessed": "yesterday"})
        assert file.last_accessed is None
        assert file.age_since_access_days is None

    def test_missing_last_modified_counts_as_now(self):
        """Test objects without a timestamp have age zero."""
        snapshot = StorageFileMetadata(key="k", content_length=1)
        assert build_lifecycle_metadata(snapshot, NOW).age_days == 0

    def test_metadata_lookup_is_case_insensitive(self):
        """Test S3-lowercased metadata names still match."""
        file = make_file("k", metadata={"keep-forever": "true"})
        assert file.get_metadata("Keep-Forever") == "true"
        assert file.has_metadata("KEEP-FOREVER")


@pytest.mark.unit
class TestEvaluateConditions:
    """Test individual rule conditions."""

    def test_age_bounds(self):
        """Test min/max age are inclusive."""
        r = rule("r", LifecycleAction.DELETE, min_age_days=30, max_age_days=60)

        assert evaluate_conditions(make_file("k", age_days=30), r)
        assert evaluate_conditions(make_file("k", age_days=60), r)
        assert not evaluate_conditions(make_file("k", age_days=29), r)
        assert not evaluate_conditions(make_file("k", age_days=61), r)

    def test_size_bounds(self):
        """Test size conditions."""
        r = rule("r", LifecycleAction.DELETE, min_size_bytes=100, max_size_bytes=200)

        assert evaluate_conditions(make_file("k", size=150), r)
        assert not evaluate_conditions(make_file("k", size=50), r)
        assert not evaluate_conditions(make_file("k", size=500), r)

    def test_missing_size_fails_size_condition(self):
        """Test conditions on absent data fail closed."""
        r = rule("r", LifecycleAction.DELETE, min_size_bytes=0)
        assert not evaluate_conditions(make_file("k", size=None), r)

    def test_missing_access_time_fails_access_condition(self):
        """Test access conditions require a known access time."""
        r = rule("r", LifecycleAction.ARCHIVE, min_age_since_access_days=10)

        assert not evaluate_conditions(make_file("k"), r)
        assert evaluate_conditions(make_file("k", last_accessed_days=15), r)

    def test_file_types(self):
        """Test file type condition against parsed keys."""
        r = rule("r", LifecycleAction.DELETE, file_types=(FileType.THUMBNAIL,))

        assert evaluate_conditions(make_file("albums/a/photos/p/thumbnail.jpg"), r)
        assert not evaluate_conditions(make_file("albums/a/photos/p/original.jpg"), r)
        assert not evaluate_conditions(make_file("misc/readme.txt"), r)

    def test_content_type_wildcard(self):
        """Test exact and type/* content type matching."""
        wildcard = rule("r", LifecycleAction.DELETE, content_types=("image/*",))
        exact = rule("r", LifecycleAction.DELETE, content_types=("image/png",))

        assert evaluate_conditions(make_file("k", content_type="image/webp"), wildcard)
        assert not evaluate_conditions(make_file("k", content_type="video/mp4"), wildcard)
        assert evaluate_conditions(make_file("k", content_type="image/png; charset=binary"), exact)
        assert not evaluate_conditions(make_file("k", content_type=None), exact)

    def test_path_prefixes_and_exclusions(self):
        """Test include and exclude prefixes."""
        r = rule(
            "r",
            LifecycleAction.DELETE,
            path_prefixes=("albums/",),
            exclude_prefixes=("albums/keep/",),
        )

        assert evaluate_conditions(make_file("albums/x/photos/p/original.jpg"), r)
        assert not evaluate_conditions(make_file("albums/keep/photos/p/original.jpg"), r)
        assert not evaluate_conditions(make_file("other/file"), r)

    def test_metadata_conditions(self):
        """Test metadata match, required and excluded keys."""
        r = rule(
            "r",
            LifecycleAction.DELETE,
            metadata_match={"source": "import"},
            metadata_required=("uploader",),
            metadata_excluded=("pinned",),
        )

        assert evaluate_conditions(make_file("k", metadata={"source": "import", "uploader": "u1"}), r)
        assert not evaluate_conditions(make_file("k", metadata={"source": "camera", "uploader": "u1"}), r)
        assert not evaluate_conditions(make_file("k", metadata={"source": "import"}), r)
        assert not evaluate_conditions(
            make_file("k", metadata={"source": "import", "uploader": "u1", "pinned": "1"}), r
        )

    def test_custom_condition(self, predicates):
        """Test registered custom condition."""
        @predicates.condition("is-portrait")
        def is_portrait(file, rule):
            return file.get_metadata("orientation") == "portrait"

        r = rule("r", LifecycleAction.DELETE, custom_evaluator="is-portrait")

        assert evaluate_conditions(make_file("k", metadata={"orientation": "portrait"}), r, predicates)
        assert not evaluate_conditions(make_file("k", metadata={"orientation": "landscape"}), r, predicates)

    def test_unknown_custom_condition_fails(self, predicates):
        """Test an unregistered condition never matches."""
        r = rule("r", LifecycleAction.DELETE, custom_evaluator="missing")
        assert not evaluate_conditions(make_file("k"), r, predicates)


@pytest.mark.unit
class TestCheckSafeguards:
    """Test safeguard checks."""

    def test_non_destructive_actions_never_blocked(self):
        """Test KEEP and NONE bypass safeguards."""
        safeguards = LifecycleSafeguards(protected_prefixes=("albums/",))
        file = make_file("albums/a/photos/p/original.jpg")

        assert not check_safeguards(file, LifecycleAction.KEEP, safeguards).blocked
        assert not check_safeguards(file, LifecycleAction.NONE, safeguards).blocked

    def test_protected_prefix(self):
        """Test protected prefix reason."""
        check = check_safeguards(
            make_file("albums/important/photos/p/original.jpg"),
            LifecycleAction.DELETE,
            LifecycleSafeguards(protected_prefixes=("albums/important/",)),
        )

        assert check.blocked
        assert check.reason == "File matches protected prefix: albums/important/"

    def test_protected_metadata_key(self):
        """Test protected metadata key reason."""
        check = check_safeguards(
            make_file("k", metadata={"protected": "yes"}),
            LifecycleAction.ARCHIVE,
            LifecycleSafeguards(protected_metadata_keys=("protected",)),
        )

        assert check.blocked
        assert check.reason == "File has protected metadata key: protected"

    def test_protected_metadata_value(self):
        """Test protected metadata value reason."""
        safeguards = LifecycleSafeguards(protected_metadata_values={"tier": ("gold", "platinum")})

        blocked = check_safeguards(make_file("k", metadata={"tier": "gold"}), LifecycleAction.DELETE, safeguards)
        allowed = check_safeguards(make_file("k", metadata={"tier": "bronze"}), LifecycleAction.DELETE, safeguards)

        assert blocked.reason == "File has protected metadata value: tier=gold"
        assert not allowed.blocked

    def test_custom_safeguard(self, predicates):
        """Test custom safeguard returning False blocks the action."""
        predicates.register_safeguard("small-only", lambda file, action: (file.size or 0) < 100)
        safeguards = LifecycleSafeguards(custom_safeguard="small-only")

        assert not check_safeguards(make_file("k", size=10), LifecycleAction.DELETE, safeguards, predicates).blocked
        check = check_safeguards(make_file("k", size=1000), LifecycleAction.DELETE, safeguards, predicates)
        assert check.reason == "Custom safeguard blocked action: small-only"

    def test_unknown_custom_safeguard_blocks(self, predicates):
        """Test an unregistered safeguard fails closed."""
        check = check_safeguards(
            make_file("k"), LifecycleAction.DELETE, LifecycleSafeguards(custom_safeguard="missing"), predicates
        )
        assert check.blocked


@pytest.mark.unit
class TestEvaluateLifecyclePolicy:
    """Test full policy evaluation."""

    def test_old_thumbnail_is_deleted(self):
        """Test default policy deletes a 100 day old thumbnail."""
        file = make_file("albums/a1/photos/p1/thumbnail.jpg", age_days=100)

        result = evaluate_lifecycle_policy(file, DEFAULT_LIFECYCLE_POLICY, now=NOW)

        assert result.action is LifecycleAction.DELETE
        assert result.matched_rule.id == "delete-old-thumbnails"
        assert not result.safeguard_blocked

    def test_protected_album_is_kept(self):
        """Test global protected prefix wins over a matching rule."""
        file = make_file("albums/important/photos/p1/thumbnail.jpg", age_days=100)

        result = evaluate_lifecycle_policy(file, DEFAULT_LIFECYCLE_POLICY)

        assert result.action is LifecycleAction.KEEP
        assert result.safeguard_blocked
        assert result.safeguard_reason == "File matches protected prefix: albums/important/"
        assert result.matched_rule is None

    def test_keep_forever_metadata_is_kept(self):
        """Test global protected metadata keys."""
        file = make_file("albums/a1/photos/p1/thumbnail.jpg", age_days=100, metadata={"keep-forever": "1"})

        result = evaluate_lifecycle_policy(file, DEFAULT_LIFECYCLE_POLICY)

        assert result.action is LifecycleAction.KEEP
        assert result.safeguard_blocked

    def test_old_preview_is_archived(self):
        """Test default policy archives previews with its archive target."""
        file = make_file("albums/a1/photos/p1/preview.jpg", age_days=200)

        result = evaluate_lifecycle_policy(file, DEFAULT_LIFECYCLE_POLICY)

        assert result.action is LifecycleAction.ARCHIVE
        assert result.action_params.archive_target == "archive/previews"

    def test_no_match_returns_none(self):
        """Test a young original matches nothing."""
        result = evaluate_lifecycle_policy(
            make_file("albums/a1/photos/p1/original.jpg", age_days=5), DEFAULT_LIFECYCLE_POLICY
        )

        assert result.action is LifecycleAction.NONE
        assert result.matched_rule is None
        assert not result.safeguard_blocked

    def test_lowest_priority_number_wins(self):
        """Test rules are evaluated in ascending priority regardless of declaration order."""
        policy = LifecyclePolicyConfig(rules=(
            rule("late", LifecycleAction.DELETE, priority=10, min_age_days=1),
            rule("early", LifecycleAction.ARCHIVE, priority=1, min_age_days=1),
        ))

        result = evaluate_lifecycle_policy(make_file("k", age_days=5), policy)

        assert result.matched_rule.id == "early"
        assert result.action is LifecycleAction.ARCHIVE

    def test_equal_priority_keeps_declaration_order(self):
        """Test ties are broken by declaration order."""
        policy = LifecyclePolicyConfig(rules=(
            rule("first", LifecycleAction.KEEP, priority=5),
            rule("second", LifecycleAction.DELETE, priority=5),
        ))

        assert evaluate_lifecycle_policy(make_file("k"), policy).matched_rule.id == "first"

    def test_disabled_rules_are_skipped(self):
        """Test disabled rules never match."""
        policy = LifecyclePolicyConfig(rules=(
            rule("off", LifecycleAction.DELETE, priority=1, enabled=False),
            rule("on", LifecycleAction.KEEP, priority=2),
        ))

        assert evaluate_lifecycle_policy(make_file("k"), policy).matched_rule.id == "on"

    def test_rule_safeguards_block_matched_rule(self):
        """Test rule-level safeguards report the matched rule."""
        policy = LifecyclePolicyConfig(rules=(
            rule(
                "r",
                LifecycleAction.DELETE,
                safeguards=LifecycleSafeguards(protected_metadata_keys=("pinned",)),
            ),
        ))

        result = evaluate_lifecycle_policy(make_file("k", metadata={"pinned": "1"}), policy)

        assert result.action is LifecycleAction.KEEP
        assert result.safeguard_blocked
        assert result.matched_rule.id == "r"

    def test_evaluation_is_deterministic(self):
        """Test repeated evaluation with the same inputs gives the same outcome."""
        file = make_file("albums/a1/photos/p1/thumbnail.jpg", age_days=100)

        first = evaluate_lifecycle_policy(file, DEFAULT_LIFECYCLE_POLICY, now=NOW)
        second = evaluate_lifecycle_policy(file, DEFAULT_LIFECYCLE_POLICY, now=NOW)

        assert first == second

    def test_predicate_exception_propagates(self, predicates):
        """Test failing custom predicates surface to the caller."""
        def broken(file, rule):
            raise RuntimeError("boom")

        predicates.register_condition("broken", broken)
        policy = LifecyclePolicyConfig(rules=(rule("r", LifecycleAction.DELETE, custom_evaluator="broken"),))

        with pytest.raises(RuntimeError):
            evaluate_lifecycle_policy(make_file("k"), policy, predicates)

    def test_to_dict(self):
        """Test serialization of an evaluation result."""
        result = evaluate_lifecycle_policy(
            make_file("albums/a1/photos/p1/thumbnail.jpg", age_days=100), DEFAULT_LIFECYCLE_POLICY, now=NOW
        )

        data = result.to_dict()

        assert data["action"] == "delete"
        assert data["matched_rule"] == "delete-old-thumbnails"
        assert data["evaluated_at"] == NOW.isoformat()


@pytest.mark.unit
class TestPolicyHelpers:
    """Test archive destinations and policy validation."""

    def test_archive_key_inserts_separator(self):
        """Test archive target without trailing slash."""
        params = LifecycleActionParams(archive_target="archive/previews")
        assert archive_key_for("albums/a/photos/p/preview.jpg", params) == "archive/previews/albums/a/photos/p/preview.jpg"

    def test_archive_key_default_target(self):
        """Test default archive prefix."""
        assert archive_key_for("k", None) == "archive/k"

    def test_default_policy_is_valid(self):
        """Test the built-in policy passes validation."""
        assert validate_policy(DEFAULT_LIFECYCLE_POLICY) == []

    def test_validate_policy_reports_errors(self):
        """Test duplicate ids and inverted bounds are reported."""
        policy = LifecyclePolicyConfig(rules=(
            rule("dup", LifecycleAction.DELETE, min_age_days=10, max_age_days=5),
            rule("dup", LifecycleAction.KEEP, min_size_bytes=-1),
        ))

        errors = validate_policy(policy)

        assert "Duplicate rule ids found" in errors
        assert "Rule 'dup': min_age_days exceeds max_age_days" in errors
        assert "Rule 'dup': min_size_bytes cannot be negative" in errors

    def test_registry_names(self):
        """Test registry lists registered predicate names."""
        registry = PredicateRegistry()
        registry.register_condition("b", lambda f, r: True)
        registry.register_condition("a", lambda f, r: True)
        registry.register_safeguard("s", lambda f, a: True)

        assert registry.names() == {"conditions": ["a", "b"], "safeguards": ["s"]}
