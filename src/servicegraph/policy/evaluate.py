"""Evaluate service candidates against a visible group.

All functions here are pure reads over a capability map keyed by service
id string. Nothing is mutated and nothing is raised for bad data: a
missing capability or a non-numeric rate simply fails the relevant check.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

from servicegraph.policy.compiler import compile_policies
from servicegraph.policy.models import (
    SERVICE_PATH_PREFIX,
    FallbackSettings,
    PolicyResult,
    ServiceCheck,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from servicegraph.policy.models import (
        CheckReason,
        CompiledPolicies,
        DynamicRule,
        ServiceCapability,
        ServiceId,
        VisibleGroupContext,
        WhereClause,
    )

    CapabilityLookup = Mapping[str, ServiceCapability]


def to_finite_number(value: Any) -> float:
    """Convert to a finite float, or NaN when that isn't possible."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return math.nan
    return number if math.isfinite(number) else math.nan


def constraint_fit_ok(
    capabilities: CapabilityLookup,
    candidate: ServiceId,
    constraints: Mapping[str, bool],
) -> bool:
    """Whether a service satisfies every flag the tag sets to True.

    Flags that are absent or False impose nothing.
    """
    cap = capabilities.get(str(candidate))
    if cap is None:
        return False
    return all(
        bool(cap.attribute(flag))
        for flag in ("dripfeed", "refill", "cancel")
        if constraints.get(flag) is True
    )


def rate_ok(
    capabilities: CapabilityLookup,
    candidate: ServiceId,
    primary: ServiceId,
    fallback: FallbackSettings,
) -> bool:
    """Check a candidate's rate against the primary's under the rate policy.

    Missing services or non-numeric rates fail.
    """
    cand = capabilities.get(str(candidate))
    prim = capabilities.get(str(primary))
    if cand is None or prim is None:
        return False

    c_rate = to_finite_number(cand.rate)
    p_rate = to_finite_number(prim.rate)
    if math.isnan(c_rate) or math.isnan(p_rate):
        return False

    policy = fallback.rate_policy
    pct = max(0.0, policy.pct)
    if policy.kind == "lte_primary":
        return c_rate <= p_rate
    if policy.kind == "within_pct":
        return c_rate <= p_rate * (1 + pct / 100)
    if policy.kind == "at_least_pct_lower":
        return c_rate <= p_rate * (1 - pct / 100)
    return False


def project_value(cap: ServiceCapability | None, projection: str) -> Any:
    """Read ``service.<attr>`` (or a bare attribute name) from a capability."""
    if cap is None:
        return None
    key = projection.removeprefix(SERVICE_PATH_PREFIX)
    return cap.attribute(key)


def _where_matches(cap: ServiceCapability, clause: WhereClause) -> bool:
    value = project_value(cap, clause.path)
    if clause.op == "exists":
        return value is not None
    if clause.op == "truthy":
        return bool(value)
    if clause.op == "falsy":
        return not value
    if clause.op in ("in", "nin"):
        pool = {str(v) for v in clause.value} if isinstance(clause.value, list) else set()
        hit = value is not None and str(value) in pool
        return hit if clause.op == "in" else not hit
    same = value is not None and clause.value is not None and str(value) == str(clause.value)
    if value is None and clause.value is None:
        same = True
    return same if clause.op == "eq" else not same


def matches_rule_filter(cap: ServiceCapability | None, rule: DynamicRule, tag_id: str) -> bool:
    """Whether a service is in scope for *rule* in the given tag.

    ``role`` and ``field_id`` are not known for a bare candidate and are
    ignored here.
    """
    if cap is None:
        return False
    f = rule.filter
    if f.tag_id and str(tag_id) not in f.tag_id:
        return False
    if f.handler_id and str(cap.handler_id) not in f.handler_id:
        return False
    if f.platform_id and str(cap.platform_id) not in f.platform_id:
        return False
    return all(_where_matches(cap, clause) for clause in f.where or [])


def _rule_holds(rule: DynamicRule, values: list[Any]) -> bool:
    if rule.op == "all_equal":
        return len(values) <= 1 or all(v == values[0] for v in values)
    if rule.op == "unique":
        return len({str(v) for v in values}) == len(values)
    if rule.op == "no_mix":
        return len({str(v) for v in values}) <= 1
    if rule.op == "all_true":
        return all(bool(v) for v in values)
    if rule.op == "any_true":
        return any(bool(v) for v in values)
    limit = to_finite_number(rule.value)
    if math.isnan(limit):
        return True
    if rule.op == "max_count":
        return len(values) <= limit
    if rule.op == "min_count":
        return len(values) >= limit
    return True


def evaluate_service_policies(
    rules: Iterable[DynamicRule] | None,
    service_ids: Iterable[ServiceId],
    capabilities: CapabilityLookup,
    tag_id: str,
) -> PolicyResult:
    """Evaluate rules over a set of services.

    Only service-subject rules scoped to the visible group or globally
    apply. A failing rule's id lands in ``errors`` when its severity is
    "error", otherwise in ``warnings``.
    """
    result = PolicyResult()
    ids = list(service_ids)
    for rule in rules or []:
        if rule.subject != "services" or rule.scope not in ("visible_group", "global"):
            continue
        in_scope = [i for i in ids if matches_rule_filter(capabilities.get(str(i)), rule, tag_id)]
        values = [project_value(capabilities.get(str(i)), rule.projection) for i in in_scope]
        if _rule_holds(rule, values):
            continue
        if rule.severity == "error":
            result.errors.append(rule.id)
        else:
            result.warnings.append(rule.id)
    result.ok = not result.errors
    return result


def filter_services_for_visible_group(
    candidates: Iterable[ServiceId],
    ctx: VisibleGroupContext,
    capabilities: CapabilityLookup,
    compiled: CompiledPolicies | None = None,
) -> list[ServiceCheck]:
    """Judge each candidate service for a visible group.

    Candidates already in ``ctx.used_service_ids`` are skipped. For every
    other candidate the checks run in order: capability presence,
    constraint fit, rate against the primary (first used service), then the
    dynamic policies over the used services plus the candidate.

    Args:
        candidates: Service ids to evaluate.
        ctx: The visible group.
        capabilities: Capability records keyed by service id string.
        compiled: Pre-compiled ``ctx.policies``; compiled here when omitted.

    Returns:
        One verdict per evaluated candidate, in candidate order.
    """
    used = [*ctx.used_service_ids]
    used_keys = {str(u) for u in used}
    primary = used[0] if used else None
    fallback = ctx.fallback or FallbackSettings()
    constraints = ctx.effective_constraints or {}
    rules = (compiled or compile_policies(ctx.policies or [])).policies

    checks: list[ServiceCheck] = []
    for candidate in candidates:
        if str(candidate) in used_keys:
            continue

        cap = capabilities.get(str(candidate))
        if cap is None:
            checks.append(
                ServiceCheck(
                    id=candidate,
                    ok=False,
                    fits_constraints=False,
                    passes_rate=False,
                    passes_policies=False,
                    reasons=["missing_capability"],
                )
            )
            continue

        fits = constraint_fit_ok(capabilities, candidate, constraints)
        passes_rate = primary is None or rate_ok(capabilities, candidate, primary, fallback)
        policy = evaluate_service_policies(rules, [*used, candidate], capabilities, ctx.tag_id)

        reasons: list[CheckReason] = []
        if not fits:
            reasons.append("constraint_mismatch")
        if not passes_rate:
            reasons.append("rate_policy")
        if not policy.ok:
            reasons.append("policy_error")

        gate_fit = fits or not fallback.require_constraint_fit
        rate = to_finite_number(cap.rate)
        checks.append(
            ServiceCheck(
                id=candidate,
                ok=gate_fit and passes_rate and policy.ok,
                fits_constraints=fits,
                passes_rate=passes_rate,
                passes_policies=policy.ok,
                reasons=reasons,
                policy_errors=policy.errors or None,
                policy_warnings=policy.warnings or None,
                cap=cap,
                rate=None if math.isnan(rate) else rate,
            )
        )
    return checks
