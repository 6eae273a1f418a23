"""
Pydantic schemas for declarative lifecycle policy documents.
Validates JSON/YAML policy files and converts them into engine configuration.

Field names may be written in snake_case or camelCase.
"""
import json
import os
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from storage_lifecycle.storage.lifecycle import (
    LifecycleAction,
    LifecycleActionParams,
    LifecyclePolicyConfig,
    LifecyclePolicyRule,
    LifecycleRuleConditions,
    LifecycleSafeguards,
    validate_policy,
)
from storage_lifecycle.storage.paths import FileType


class _PolicyModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


def _tuple(values: Optional[List[str]]):
    return tuple(values) if values is not None else None


class RuleConditionsSchema(_PolicyModel):
    """Rule conditions; every condition that is set must hold."""
    min_age_days: Optional[int] = Field(default=None, ge=0)
    max_age_days: Optional[int] = Field(default=None, ge=0)
    min_age_since_access_days: Optional[int] = Field(default=None, ge=0)
    max_age_since_access_days: Optional[int] = Field(default=None, ge=0)
    min_size_bytes: Optional[int] = Field(default=None, ge=0)
    max_size_bytes: Optional[int] = Field(default=None, ge=0)
    file_types: Optional[List[FileType]] = None
    content_types: Optional[List[str]] = None
    path_prefixes: Optional[List[str]] = None
    exclude_prefixes: Optional[List[str]] = None
    metadata_match: Optional[Dict[str, str]] = None
    metadata_required: Optional[List[str]] = None
    metadata_excluded: Optional[List[str]] = None
    custom_evaluator: Optional[str] = Field(
        default=None,
        description="Name of a condition registered in the PredicateRegistry",
    )

    @model_validator(mode="after")
    def validate_bounds(self):
        """Lower bounds may not exceed upper bounds."""
        for low, high in (("min_age_days", "max_age_days"),
                          ("min_age_since_access_days", "max_age_since_access_days"),
                          ("min_size_bytes", "max_size_bytes")):
            lo, hi = getattr(self, low), getattr(self, high)
            if lo is not None and hi is not None and lo > hi:
                raise ValueError(f"{low} cannot exceed {high}")
        return self

    def to_conditions(self) -> LifecycleRuleConditions:
        return LifecycleRuleConditions(
            min_age_days=self.min_age_days,
            max_age_days=self.max_age_days,
            min_age_since_access_days=self.min_age_since_access_days,
            max_age_since_access_days=self.max_age_since_access_days,
            min_size_bytes=self.min_size_bytes,
            max_size_bytes=self.max_size_bytes,
            file_types=_tuple(self.file_types),
            content_types=_tuple(self.content_types),
            path_prefixes=_tuple(self.path_prefixes),
            exclude_prefixes=_tuple(self.exclude_prefixes),
            metadata_match=dict(self.metadata_match) if self.metadata_match is not None else None,
            metadata_required=_tuple(self.metadata_required),
            metadata_excluded=_tuple(self.metadata_excluded),
            custom_evaluator=self.custom_evaluator,
        )


class SafeguardsSchema(_PolicyModel):
    """Safeguards suppressing ARCHIVE/DELETE."""
    protected_prefixes: List[str] = Field(default_factory=list)
    protected_metadata_keys: List[str] = Field(default_factory=list)
    protected_metadata_values: Dict[str, List[str]] = Field(default_factory=dict)
    max_deletions_per_run: Optional[int] = Field(default=None, ge=0)
    require_deletion_confirmation: bool = False
    custom_safeguard: Optional[str] = Field(
        default=None,
        description="Name of a safeguard registered in the PredicateRegistry",
    )

    def to_safeguards(self) -> LifecycleSafeguards:
        return LifecycleSafeguards(
            protected_prefixes=tuple(self.protected_prefixes),
            protected_metadata_keys=tuple(self.protected_metadata_keys),
            protected_metadata_values={k: tuple(v) for k, v in self.protected_metadata_values.items()},
            max_deletions_per_run=self.max_deletions_per_run,
            require_deletion_confirmation=self.require_deletion_confirmation,
            custom_safeguard=self.custom_safeguard,
        )


class ActionParamsSchema(_PolicyModel):
    archive_target: Optional[str] = None
    require_confirmation: bool = False
    grace_period_days: Optional[int] = Field(default=None, ge=0)


class PolicyRuleSchema(_PolicyModel):
    """One lifecycle rule."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    enabled: bool = True
    priority: int = Field(default=100, description="Lower values are evaluated first")
    conditions: RuleConditionsSchema = Field(default_factory=RuleConditionsSchema)
    action: LifecycleAction
    action_params: Optional[ActionParamsSchema] = None
    safeguards: Optional[SafeguardsSchema] = None

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v):
        """Accept NONE/KEEP/ARCHIVE/DELETE in any case."""
        return v.lower() if isinstance(v, str) else v

    def to_rule(self) -> LifecyclePolicyRule:
        params = self.action_params
        return LifecyclePolicyRule(
            id=self.id,
            name=self.name,
            description=self.description,
            enabled=self.enabled,
            priority=self.priority,
            conditions=self.conditions.to_conditions(),
            action=self.action,
            action_params=LifecycleActionParams(
                archive_target=params.archive_target,
                require_confirmation=params.require_confirmation,
                grace_period_days=params.grace_period_days,
            ) if params else None,
            safeguards=self.safeguards.to_safeguards() if self.safeguards else None,
        )


class LifecyclePolicyDocument(_PolicyModel):
    """Top-level policy document."""
    rules: List[PolicyRuleSchema] = Field(default_factory=list)
    global_safeguards: Optional[SafeguardsSchema] = None
    enable_audit_log: bool = True
    audit_log_path: Optional[str] = None

    @field_validator("rules")
    @classmethod
    def validate_unique_ids(cls, v: List[PolicyRuleSchema]) -> List[PolicyRuleSchema]:
        ids = [rule.id for rule in v]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate rule ids: {', '.join(duplicates)}")
        return v

    def to_config(self) -> LifecyclePolicyConfig:
        config = LifecyclePolicyConfig(
            rules=tuple(rule.to_rule() for rule in self.rules),
            global_safeguards=self.global_safeguards.to_safeguards() if self.global_safeguards else None,
            enable_audit_log=self.enable_audit_log,
            audit_log_path=self.audit_log_path,
        )
        errors = validate_policy(config)
        if errors:
            raise ValueError(f"Invalid lifecycle policy: {'; '.join(errors)}")
        return config


def parse_policy_document(data: dict) -> LifecyclePolicyConfig:
    """Validate a policy mapping and convert it to engine configuration."""
    return LifecyclePolicyDocument.model_validate(data).to_config()


def load_policy_file(path: str) -> LifecyclePolicyConfig:
    """
    Load a lifecycle policy from a JSON or YAML file.

    Args:
        path: .json, .yaml or .yml file

    Returns:
        Validated policy configuration

    Raises:
        ValueError: Unsupported extension or invalid document
            (pydantic.ValidationError is a ValueError)
    """
    extension = os.path.splitext(path)[1].lower()
    with open(path, "r", encoding="utf-8") as f:
        if extension == ".json":
            data = json.load(f)
        elif extension in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported policy file type: {extension or path}")

    if not isinstance(data, dict):
        raise ValueError(f"Policy file {path} must contain a mapping at the top level")
    return parse_policy_document(data)
