"""Models for service capabilities, compatibility rules and verdicts.

Capabilities and raw policy input come from the host and are validated
here. Compiled rules and verdicts are produced by
:mod:`servicegraph.policy.compiler` and :mod:`servicegraph.policy.evaluate`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField

ServiceId = int | str

RuleScope = Literal["global", "visible_group"]
RuleSubject = Literal["services"]
RuleOp = Literal["all_equal", "unique", "no_mix", "all_true", "any_true", "max_count", "min_count"]
RuleRole = Literal["base", "utility", "both"]
RuleSeverity = Literal["error", "warning"]
WhereOp = Literal["eq", "neq", "in", "nin", "exists", "truthy", "falsy"]
RatePolicyKind = Literal["lte_primary", "within_pct", "at_least_pct_lower"]

CheckReason = Literal["constraint_mismatch", "rate_policy", "policy_error", "missing_capability"]

SCOPES: tuple[str, ...] = ("global", "visible_group")
SUBJECTS: tuple[str, ...] = ("services",)
OPS: tuple[str, ...] = (
    "all_equal",
    "unique",
    "no_mix",
    "all_true",
    "any_true",
    "max_count",
    "min_count",
)
ROLES: tuple[str, ...] = ("base", "utility", "both")
SEVERITIES: tuple[str, ...] = ("error", "warning")
WHERE_OPS: tuple[str, ...] = ("eq", "neq", "in", "nin", "exists", "truthy", "falsy")

# Prefix of capability attribute paths in projections and where clauses
SERVICE_PATH_PREFIX = "service."


class ServiceCapability(BaseModel):
    """Descriptive record of a provider service.

    Only the fields below are interpreted by the engine; any extra key is
    kept and can be read by rule projections and where clauses.
    """

    model_config = ConfigDict(extra="allow")

    id: ServiceId
    rate: float | None = None
    refill: bool | None = None
    cancel: bool | None = None
    dripfeed: bool | None = None
    handler_id: ServiceId | None = None
    platform_id: ServiceId | None = None

    def attribute(self, key: str) -> Any:
        """Read a declared or extra attribute; missing keys read as None."""
        if key in type(self).model_fields:
            return getattr(self, key)
        return (self.model_extra or {}).get(key)


class RatePolicy(BaseModel):
    """How a candidate's rate must relate to the primary service's rate."""

    kind: RatePolicyKind = "lte_primary"
    pct: float = 0


class FallbackSettings(BaseModel):
    """Settings for picking alternative services within a visible group.

    Attributes:
        require_constraint_fit: Gate candidates on the tag's constraint
            flags. When off, constraint fit is still reported but never
            fails a candidate.
        rate_policy: Rate relation to the group's primary service.
    """

    require_constraint_fit: bool = True
    rate_policy: RatePolicy = PydanticField(default_factory=RatePolicy)


class WhereClause(BaseModel):
    path: str
    op: WhereOp = "eq"
    value: Any = None


class RuleFilter(BaseModel):
    """Restricts which services a rule looks at.

    Id lists are normalised to strings; a service passes when every set
    criterion matches.
    """

    role: RuleRole = "both"
    tag_id: list[str] | None = None
    field_id: list[str] | None = None
    handler_id: list[str] | None = None
    platform_id: list[str] | None = None
    where: list[WhereClause] | None = None


class DynamicRule(BaseModel):
    """A compiled compatibility rule."""

    id: str
    scope: RuleScope = "visible_group"
    subject: RuleSubject = "services"
    filter: RuleFilter = PydanticField(default_factory=RuleFilter)
    projection: str = "service.id"
    op: RuleOp
    value: Any = None
    severity: RuleSeverity = "error"
    message: str | None = None


class PolicyDiagnostic(BaseModel):
    """A problem found while compiling raw policy input.

    ``rule_index`` is -1 for problems with the input as a whole.
    """

    rule_index: int
    rule_id: str | None = None
    severity: RuleSeverity
    message: str
    path: str | None = None


class CompiledPolicies(BaseModel):
    policies: list[DynamicRule] = []
    diagnostics: list[PolicyDiagnostic] = []

    @property
    def errors(self) -> list[PolicyDiagnostic]:
        return [d for d in self.diagnostics if d.severity == "error"]

    @property
    def warnings(self) -> list[PolicyDiagnostic]:
        return [d for d in self.diagnostics if d.severity == "warning"]


class PolicyResult(BaseModel):
    """Outcome of evaluating rules over a set of services.

    ``errors`` and ``warnings`` hold the ids of failing rules.
    """

    ok: bool = True
    errors: list[str] = []
    warnings: list[str] = []


class ServiceCheck(BaseModel):
    """Verdict for one candidate service."""

    id: ServiceId
    ok: bool
    fits_constraints: bool
    passes_rate: bool
    passes_policies: bool
    reasons: list[CheckReason] = []
    policy_errors: list[str] | None = None
    policy_warnings: list[str] | None = None
    cap: ServiceCapability | None = None
    rate: float | None = None


@dataclass
class VisibleGroupContext:
    """Where candidates are being evaluated.

    Attributes:
        tag_id: The active visible-group tag.
        used_service_ids: Services already in the group; the first one is
            the primary for rate comparisons.
        effective_constraints: Constraint flags of the tag. When None the
            editor resolves them from the tag's ancestry.
        policies: Raw policy input, compiled on every evaluation.
        fallback: Rate and constraint settings.
    """

    tag_id: str
    used_service_ids: list[ServiceId]
    effective_constraints: dict[str, bool] | None = None
    policies: Any = None
    fallback: FallbackSettings | None = None
