"""Service compatibility policies: models, compiler and evaluator."""

from servicegraph.policy.compiler import compile_policies
from servicegraph.policy.evaluate import (
    constraint_fit_ok,
    evaluate_service_policies,
    filter_services_for_visible_group,
    matches_rule_filter,
    project_value,
    rate_ok,
)
from servicegraph.policy.models import (
    CompiledPolicies,
    DynamicRule,
    FallbackSettings,
    PolicyDiagnostic,
    PolicyResult,
    RatePolicy,
    RuleFilter,
    ServiceCapability,
    ServiceCheck,
    VisibleGroupContext,
    WhereClause,
)

__all__ = [
    "CompiledPolicies",
    "DynamicRule",
    "FallbackSettings",
    "PolicyDiagnostic",
    "PolicyResult",
    "RatePolicy",
    "RuleFilter",
    "ServiceCapability",
    "ServiceCheck",
    "VisibleGroupContext",
    "WhereClause",
    "compile_policies",
    "constraint_fit_ok",
    "evaluate_service_policies",
    "filter_services_for_visible_group",
    "matches_rule_filter",
    "project_value",
    "rate_ok",
]
