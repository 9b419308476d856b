"""Policy-as-code: conditions, rules, scoping and trigger-mode evaluation."""

from __future__ import annotations

from complycore.policy.conditions import (
    CONDITION_TYPES,
    Condition,
    ConditionEvaluator,
    CustomConditionRegistry,
    Polarity,
)
from complycore.policy.models import (
    Policy,
    PolicyType,
    Rule,
    RuleAction,
    create_policy,
    load_policies_from_yaml,
)
from complycore.policy.scope import ScopeMatcher, parse_pattern, validate_pattern
from complycore.policy.validator import PolicyValidator, validate_policy
from complycore.policy.engine import (
    AggregateResult,
    PolicyEvaluationEngine,
    PolicyResult,
    RuleResult,
)
from complycore.policy.library import (
    LibraryPolicy,
    get_library_by_category,
    get_library_categories,
    get_library_policies,
    get_library_policy,
)
from complycore.policy.inputs import (
    build_access_input,
    build_cost_input,
    build_drift_input,
    build_plan_input,
    build_resource_input,
)

__all__ = [
    "CONDITION_TYPES",
    "AggregateResult",
    "Condition",
    "ConditionEvaluator",
    "CustomConditionRegistry",
    "LibraryPolicy",
    "Polarity",
    "Policy",
    "PolicyEvaluationEngine",
    "PolicyResult",
    "PolicyType",
    "PolicyValidator",
    "Rule",
    "RuleAction",
    "RuleResult",
    "ScopeMatcher",
    "build_access_input",
    "build_cost_input",
    "build_drift_input",
    "build_plan_input",
    "build_resource_input",
    "create_policy",
    "get_library_by_category",
    "get_library_categories",
    "get_library_policies",
    "get_library_policy",
    "load_policies_from_yaml",
    "parse_pattern",
    "validate_pattern",
    "validate_policy",
]
