"""
Pydantic schemas for declarative configuration documents.
"""
from storage_lifecycle.schemas.policy import (
    RuleConditionsSchema,
    SafeguardsSchema,
    ActionParamsSchema,
    PolicyRuleSchema,
    LifecyclePolicyDocument,
    parse_policy_document,
    load_policy_file,
)

__all__ = [
    "RuleConditionsSchema",
    "SafeguardsSchema",
    "ActionParamsSchema",
    "PolicyRuleSchema",
    "LifecyclePolicyDocument",
    "parse_policy_document",
    "load_policy_file",
]
