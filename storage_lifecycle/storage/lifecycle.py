"""
Lifecycle Policy Evaluation

Rule-based lifecycle decisions for stored files. A policy is an ordered
list of rules (conditions -> action) plus safeguards that can suppress
destructive actions. Evaluation is a pure function of the file metadata,
the policy and the registered custom predicates.

Evaluation order:
1. Global safeguards, checked as if the file were about to be deleted
2. Enabled rules by ascending priority; the first full match wins
3. The winning rule's own safeguards, checked against its action
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from .metadata import FileLifecycleMetadata
from .paths import FileType

logger = logging.getLogger(__name__)


class LifecycleAction(str, Enum):
    """Action recommended for a file"""
    NONE = "none"  # no rule matched
    KEEP = "keep"
    ARCHIVE = "archive"
    DELETE = "delete"


DESTRUCTIVE_ACTIONS = frozenset({LifecycleAction.ARCHIVE, LifecycleAction.DELETE})

DEFAULT_ARCHIVE_TARGET = "archive/"


@dataclass(frozen=True)
class LifecycleRuleConditions:
    """
    Rule conditions; every condition that is set must hold
    """
    min_age_days: Optional[int] = None
    max_age_days: Optional[int] = None
    min_age_since_access_days: Optional[int] = None
    max_age_since_access_days: Optional[int] = None
    min_size_bytes: Optional[int] = None
    max_size_bytes: Optional[int] = None
    file_types: Optional[Tuple[FileType, ...]] = None
    content_types: Optional[Tuple[str, ...]] = None  # exact, or "image/*" style
    path_prefixes: Optional[Tuple[str, ...]] = None
    exclude_prefixes: Optional[Tuple[str, ...]] = None
    metadata_match: Optional[Mapping[str, str]] = None
    metadata_required: Optional[Tuple[str, ...]] = None
    metadata_excluded: Optional[Tuple[str, ...]] = None
    custom_evaluator: Optional[str] = None  # name in the PredicateRegistry


@dataclass(frozen=True)
class LifecycleSafeguards:
    """
    Checks that suppress ARCHIVE/DELETE regardless of rule matches
    """
    protected_prefixes: Tuple[str, ...] = ()
    protected_metadata_keys: Tuple[str, ...] = ()
    protected_metadata_values: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    max_deletions_per_run: Optional[int] = None
    require_deletion_confirmation: bool = False
    custom_safeguard: Optional[str] = None  # name in the PredicateRegistry


@dataclass(frozen=True)
class LifecycleActionParams:
    archive_target: Optional[str] = None
    require_confirmation: bool = False
    grace_period_days: Optional[int] = None


@dataclass(frozen=True)
class LifecyclePolicyRule:
    """
    Lifecycle rule; lower priority numbers are evaluated first
    """
    id: str
    name: str
    conditions: LifecycleRuleConditions
    action: LifecycleAction
    priority: int = 100
    enabled: bool = True
    description: str = ""
    action_params: Optional[LifecycleActionParams] = None
    safeguards: Optional[LifecycleSafeguards] = None


@dataclass(frozen=True)
class LifecyclePolicyConfig:
    rules: Tuple[LifecyclePolicyRule, ...]
    global_safeguards: Optional[LifecycleSafeguards] = None
    enable_audit_log: bool = True
    audit_log_path: Optional[str] = None


@dataclass(frozen=True)
class SafeguardCheck:
    blocked: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class LifecycleEvaluationResult:
    """
    Outcome of evaluating one file against a policy
    """
    file: FileLifecycleMetadata
    action: LifecycleAction
    evaluated_at: datetime
    matched_rule: Optional[LifecyclePolicyRule] = None
    action_params: Optional[LifecycleActionParams] = None
    safeguard_blocked: bool = False
    safeguard_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'file_key': self.file.key,
            'action': self.action.value,
            'matched_rule': self.matched_rule.id if self.matched_rule else None,
            'safeguard_blocked': self.safeguard_blocked,
            'safeguard_reason': self.safeguard_reason,
            'evaluated_at': self.evaluated_at.isoformat(),
        }


# ----------------------------------------------------------------------
# Custom predicates
# ----------------------------------------------------------------------

class PolicyPredicate(Protocol):
    """Custom rule condition; True when the file satisfies it."""

    def __call__(self, file: FileLifecycleMetadata, rule: LifecyclePolicyRule) -> bool:
        ...


class SafeguardPredicate(Protocol):
    """Custom safeguard; True when the action may proceed, False to block it."""

    def __call__(self, file: FileLifecycleMetadata, action: LifecycleAction) -> bool:
        ...


class PredicateRegistry:
    """
    Named custom conditions and safeguards.

    Policies reference predicates by name so they stay serializable; an
    unknown name fails closed (condition false, safeguard blocks).

    Usage:
        registry = PredicateRegistry()

        @registry.condition("is-portrait")
        def is_portrait(file, rule):
            return file.get_metadata("orientation") == "portrait"
    """

    def __init__(self):
        self._conditions: Dict[str, PolicyPredicate] = {}
        self._safeguards: Dict[str, SafeguardPredicate] = {}

    def register_condition(self, name: str, predicate: PolicyPredicate) -> None:
        self._conditions[name] = predicate

    def register_safeguard(self, name: str, predicate: SafeguardPredicate) -> None:
        self._safeguards[name] = predicate

    def condition(self, name: str) -> Callable[[PolicyPredicate], PolicyPredicate]:
        def decorator(predicate: PolicyPredicate) -> PolicyPredicate:
            self.register_condition(name, predicate)
            return predicate
        return decorator

    def safeguard(self, name: str) -> Callable[[SafeguardPredicate], SafeguardPredicate]:
        def decorator(predicate: SafeguardPredicate) -> SafeguardPredicate:
            self.register_safeguard(name, predicate)
            return predicate
        return decorator

    def get_condition(self, name: str) -> Optional[PolicyPredicate]:
        return self._conditions.get(name)

    def get_safeguard(self, name: str) -> Optional[SafeguardPredicate]:
        return self._safeguards.get(name)

    def names(self) -> Dict[str, List[str]]:
        return {
            'conditions': sorted(self._conditions),
            'safeguards': sorted(self._safeguards),
        }


_EMPTY_REGISTRY = PredicateRegistry()


# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------

def _content_type_matches(content_type: str, allowed: str) -> bool:
    actual = content_type.split(";", 1)[0].strip().lower()
    allowed = allowed.strip().lower()
    if allowed.endswith("/*"):
        return actual.startswith(allowed[:-1])
    return actual == allowed


def evaluate_conditions(
    file: FileLifecycleMetadata,
    rule: LifecyclePolicyRule,
    predicates: PredicateRegistry = _EMPTY_REGISTRY,
) -> bool:
    """
    Check every condition of a rule against a file.

    Conditions on data the file does not have (size, last access, file type,
    content type, metadata) fail.
    """
    c = rule.conditions

    if c.min_age_days is not None and file.age_days < c.min_age_days:
        return False
    if c.max_age_days is not None and file.age_days > c.max_age_days:
        return False

    if c.min_age_since_access_days is not None:
        if file.age_since_access_days is None or file.age_since_access_days < c.min_age_since_access_days:
            return False
    if c.max_age_since_access_days is not None:
        if file.age_since_access_days is None or file.age_since_access_days > c.max_age_since_access_days:
            return False

    if c.min_size_bytes is not None:
        if file.size is None or file.size < c.min_size_bytes:
            return False
    if c.max_size_bytes is not None:
        if file.size is None or file.size > c.max_size_bytes:
            return False

    if c.file_types is not None:
        if file.file_type is None or file.file_type not in c.file_types:
            return False

    if c.content_types is not None:
        if not file.content_type or not any(_content_type_matches(file.content_type, ct) for ct in c.content_types):
            return False

    if c.path_prefixes is not None and not any(file.key.startswith(p) for p in c.path_prefixes):
        return False
    if c.exclude_prefixes and any(file.key.startswith(p) for p in c.exclude_prefixes):
        return False

    if c.metadata_match:
        for name, expected in c.metadata_match.items():
            if file.get_metadata(name) != expected:
                return False
    if c.metadata_required and not all(file.has_metadata(name) for name in c.metadata_required):
        return False
    if c.metadata_excluded and any(file.has_metadata(name) for name in c.metadata_excluded):
        return False

    if c.custom_evaluator:
        predicate = predicates.get_condition(c.custom_evaluator)
        if predicate is None:
            logger.warning(f"Rule '{rule.id}' references unknown condition '{c.custom_evaluator}'")
            return False
        if not predicate(file, rule):
            return False

    return True


def check_safeguards(
    file: FileLifecycleMetadata,
    action: LifecycleAction,
    safeguards: LifecycleSafeguards,
    predicates: PredicateRegistry = _EMPTY_REGISTRY,
) -> SafeguardCheck:
    """
    Check whether safeguards block an action on a file.

    Only ARCHIVE and DELETE can be blocked. Per-run deletion limits are
    enforced by the scanner, not here.
    """
    if action not in DESTRUCTIVE_ACTIONS:
        return SafeguardCheck(blocked=False)

    for prefix in safeguards.protected_prefixes:
        if file.key.startswith(prefix):
            return SafeguardCheck(True, f"File matches protected prefix: {prefix}")

    for name in safeguards.protected_metadata_keys:
        if file.has_metadata(name):
            return SafeguardCheck(True, f"File has protected metadata key: {name}")

    for name, protected_values in safeguards.protected_metadata_values.items():
        value = file.get_metadata(name)
        if value is not None and value in protected_values:
            return SafeguardCheck(True, f"File has protected metadata value: {name}={value}")

    if safeguards.custom_safeguard:
        predicate = predicates.get_safeguard(safeguards.custom_safeguard)
        if predicate is None or not predicate(file, action):
            return SafeguardCheck(True, f"Custom safeguard blocked action: {safeguards.custom_safeguard}")

    return SafeguardCheck(blocked=False)


def sorted_rules(policy: LifecyclePolicyConfig) -> List[LifecyclePolicyRule]:
    """Enabled rules by ascending priority; ties keep declaration order."""
    return sorted((rule for rule in policy.rules if rule.enabled), key=lambda rule: rule.priority)


def evaluate_lifecycle_policy(
    file: FileLifecycleMetadata,
    policy: LifecyclePolicyConfig,
    predicates: Optional[PredicateRegistry] = None,
    now: Optional[datetime] = None,
) -> LifecycleEvaluationResult:
    """
    Evaluate a file against a lifecycle policy.

    Args:
        file: Lifecycle metadata of the file
        policy: Policy configuration
        predicates: Registry resolving custom condition/safeguard names
        now: Evaluation timestamp recorded on the result

    Returns:
        Evaluation result; safeguard blocks are reported as KEEP with
        ``safeguard_blocked=True``
    """
    predicates = predicates or _EMPTY_REGISTRY
    evaluated_at = now or datetime.now(timezone.utc)

    if policy.global_safeguards is not None:
        check = check_safeguards(file, LifecycleAction.DELETE, policy.global_safeguards, predicates)
        if check.blocked:
            return LifecycleEvaluationResult(
                file=file,
                action=LifecycleAction.KEEP,
                evaluated_at=evaluated_at,
                safeguard_blocked=True,
                safeguard_reason=check.reason,
            )

    for rule in sorted_rules(policy):
        if not evaluate_conditions(file, rule, predicates):
            continue

        if rule.safeguards is not None:
            check = check_safeguards(file, rule.action, rule.safeguards, predicates)
            if check.blocked:
                return LifecycleEvaluationResult(
                    file=file,
                    action=LifecycleAction.KEEP,
                    evaluated_at=evaluated_at,
                    matched_rule=rule,
                    safeguard_blocked=True,
                    safeguard_reason=check.reason,
                )

        return LifecycleEvaluationResult(
            file=file,
            action=rule.action,
            evaluated_at=evaluated_at,
            matched_rule=rule,
            action_params=rule.action_params,
        )

    return LifecycleEvaluationResult(file=file, action=LifecycleAction.NONE, evaluated_at=evaluated_at)


def archive_key_for(key: str, params: Optional[LifecycleActionParams]) -> str:
    """Destination of an ARCHIVE action: the archive prefix joined with the original key."""
    target = (params.archive_target if params and params.archive_target else DEFAULT_ARCHIVE_TARGET)
    return f"{target.rstrip('/')}/{key}"


def validate_policy(policy: LifecyclePolicyConfig) -> List[str]:
    """
    Validate a lifecycle policy

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    ids = [rule.id for rule in policy.rules]
    if len(ids) != len(set(ids)):
        errors.append("Duplicate rule ids found")

    for rule in policy.rules:
        if not rule.id:
            errors.append("Rule id cannot be empty")

        c = rule.conditions
        for name in ("min_age_days", "max_age_days", "min_age_since_access_days",
                     "max_age_since_access_days", "min_size_bytes", "max_size_bytes"):
            value = getattr(c, name)
            if value is not None and value < 0:
                errors.append(f"Rule '{rule.id}': {name} cannot be negative")

        for low, high in (("min_age_days", "max_age_days"),
                          ("min_age_since_access_days", "max_age_since_access_days"),
                          ("min_size_bytes", "max_size_bytes")):
            lo, hi = getattr(c, low), getattr(c, high)
            if lo is not None and hi is not None and lo > hi:
                errors.append(f"Rule '{rule.id}': {low} exceeds {high}")

        if rule.safeguards and (rule.safeguards.max_deletions_per_run or 0) < 0:
            errors.append(f"Rule '{rule.id}': max_deletions_per_run cannot be negative")

    if policy.global_safeguards and (policy.global_safeguards.max_deletions_per_run or 0) < 0:
        errors.append("Global max_deletions_per_run cannot be negative")

    return errors


# Default policy: expire stale thumbnails, archive old previews,
# never touch featured or important albums.
DEFAULT_LIFECYCLE_POLICY = LifecyclePolicyConfig(
    rules=(
        LifecyclePolicyRule(
            id="delete-old-thumbnails",
            name="Delete old thumbnails",
            description="Delete thumbnails older than 90 days; they are regenerated on demand",
            priority=1,
            conditions=LifecycleRuleConditions(
                min_age_days=90,
                file_types=(FileType.THUMBNAIL,),
            ),
            action=LifecycleAction.DELETE,
            safeguards=LifecycleSafeguards(
                max_deletions_per_run=1000,
                require_deletion_confirmation=True,
            ),
        ),
        LifecyclePolicyRule(
            id="archive-old-previews",
            name="Archive old previews",
            description="Move previews older than 180 days under archive/previews",
            priority=2,
            conditions=LifecycleRuleConditions(
                min_age_days=180,
                file_types=(FileType.PREVIEW,),
            ),
            action=LifecycleAction.ARCHIVE,
            action_params=LifecycleActionParams(archive_target="archive/previews"),
        ),
    ),
    global_safeguards=LifecycleSafeguards(
        protected_prefixes=("albums/important/", "albums/featured/"),
        protected_metadata_keys=("protected", "keep-forever"),
        max_deletions_per_run=5000,
    ),
    enable_audit_log=True,
)
