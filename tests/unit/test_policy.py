"""Tests for the policy compiler and candidate evaluation."""

from __future__ import annotations

from typing import Any

import pytest

from servicegraph.graph.store import capability_map_from
from servicegraph.policy.compiler import compile_policies
from servicegraph.policy.evaluate import (
    constraint_fit_ok,
    evaluate_service_policies,
    filter_services_for_visible_group,
    rate_ok,
)
from servicegraph.policy.models import (
    FallbackSettings,
    RatePolicy,
    ServiceCapability,
    VisibleGroupContext,
)


@pytest.fixture
def caps(service_map: dict[int, dict[str, Any]]) -> dict[str, ServiceCapability]:
    return capability_map_from(service_map)


class TestCompilePolicies:
    """Test defaults and diagnostics."""

    def test_root_must_be_list(self) -> None:
        compiled = compile_policies({"op": "unique"})
        assert compiled.policies == []
        assert len(compiled.errors) == 1
        assert compiled.errors[0].rule_index == -1

    def test_defaults_applied(self) -> None:
        compiled = compile_policies([{"op": "unique"}])
        rule = compiled.policies[0]
        assert rule.id == "policy_1"
        assert rule.scope == "visible_group"
        assert rule.subject == "services"
        assert rule.projection == "service.id"
        assert rule.filter.role == "both"
        assert rule.severity == "error"
        assert [d.path for d in compiled.warnings] == ["id"]

    def test_invalid_op_drops_rule(self) -> None:
        compiled = compile_policies([{"id": "bad", "op": "sometimes"}])
        assert compiled.policies == []
        assert compiled.errors[0].path == "op"

    def test_count_requires_number(self) -> None:
        compiled = compile_policies([{"id": "c", "op": "max_count", "value": "2"}])
        assert compiled.policies == []
        assert compiled.errors[0].path == "value"

    def test_unknown_values_warn(self) -> None:
        """Unknown scope, role and severity fall back with warnings."""
        compiled = compile_policies(
            [
                {
                    "id": "r",
                    "op": "no_mix",
                    "scope": "planet",
                    "severity": "fatal",
                    "projection": "platform_id",
                    "filter": {"role": "admin", "tag_id": "t:1"},
                }
            ]
        )
        rule = compiled.policies[0]
        assert rule.scope == "visible_group"
        assert rule.severity == "error"
        assert rule.filter.role == "both"
        assert rule.filter.tag_id == ["t:1"]
        paths = {d.path for d in compiled.warnings}
        assert {"scope", "severity", "projection", "filter.role"} <= paths
        assert not compiled.errors

    def test_where_clauses_normalised(self) -> None:
        compiled = compile_policies(
            [
                {
                    "id": "w",
                    "op": "all_true",
                    "filter": {
                        "where": [
                            {"path": "service.platform_id", "op": "between", "value": "p1"},
                            {"op": "eq"},
                        ]
                    },
                }
            ]
        )
        where = compiled.policies[0].filter.where
        assert where is not None
        assert len(where) == 1
        assert where[0].op == "eq"
        assert compiled.errors == []
        assert len(compiled.warnings) == 2


class TestChecks:
    """Test the single-candidate checks."""

    def test_constraint_fit_only_true_flags(self, caps: dict[str, ServiceCapability]) -> None:
        assert constraint_fit_ok(caps, 102, {"dripfeed": True, "refill": False})
        assert not constraint_fit_ok(caps, 102, {"refill": True})
        assert not constraint_fit_ok(caps, 999, {})

    def test_rate_policies(self, caps: dict[str, ServiceCapability]) -> None:
        lte = FallbackSettings()
        assert rate_ok(caps, 102, 100, lte)
        assert not rate_ok(caps, 101, 100, lte)

        within = FallbackSettings(rate_policy=RatePolicy(kind="within_pct", pct=20))
        assert rate_ok(caps, 101, 100, within)

        lower = FallbackSettings(rate_policy=RatePolicy(kind="at_least_pct_lower", pct=20))
        assert rate_ok(caps, 102, 100, lower)
        assert not rate_ok(caps, 103, 100, lower)

    def test_rate_missing_fails(self, caps: dict[str, ServiceCapability]) -> None:
        assert not rate_ok(caps, 999, 100, FallbackSettings())


class TestEvaluate:
    def test_max_count_overflow(self, caps: dict[str, ServiceCapability]) -> None:
        rules = compile_policies([{"id": "one_only", "op": "max_count", "value": 1}]).policies
        result = evaluate_service_policies(rules, [100, 102], caps, "t:1")
        assert not result.ok
        assert result.errors == ["one_only"]

    def test_warning_severity(self, caps: dict[str, ServiceCapability]) -> None:
        rules = compile_policies(
            [{"id": "same_handler", "op": "all_equal", "projection": "service.handler_id", "severity": "warning"}]
        ).policies
        result = evaluate_service_policies(rules, [100, 202], caps, "t:1")
        assert result.ok
        assert result.warnings == ["same_handler"]

    def test_filter_by_tag(self, caps: dict[str, ServiceCapability]) -> None:
        """Rules filtered to another tag see no services."""
        rules = compile_policies(
            [{"id": "r", "op": "min_count", "value": 1, "filter": {"tag_id": "t:9"}}]
        ).policies
        assert evaluate_service_policies(rules, [100], caps, "t:1").errors == ["r"]

    def test_where_filter(self, caps: dict[str, ServiceCapability]) -> None:
        rules = compile_policies(
            [
                {
                    "id": "p2_unique",
                    "op": "max_count",
                    "value": 0,
                    "filter": {"where": [{"path": "service.platform_id", "value": "p2"}]},
                }
            ]
        ).policies
        assert evaluate_service_policies(rules, [100, 102], caps, "t:1").ok
        assert not evaluate_service_policies(rules, [100, 201], caps, "t:1").ok


class TestFilterServicesForVisibleGroup:
    """End-to-end candidate filtering."""

    def test_full_pipeline(self, caps: dict[str, ServiceCapability]) -> None:
        ctx = VisibleGroupContext(
            tag_id="root",
            used_service_ids=[100, 101],
            effective_constraints={"dripfeed": True},
            policies=[
                {
                    "id": "no_mix_platform",
                    "op": "no_mix",
                    "projection": "service.platform_id",
                }
            ],
        )
        checks = filter_services_for_visible_group([101, 102, 103, 104, 201, 202], ctx, caps)
        by_id = {str(c.id): c for c in checks}

        assert "101" not in by_id
        assert by_id["102"].ok
        assert by_id["102"].reasons == []
        assert by_id["103"].reasons == ["constraint_mismatch"]
        assert by_id["104"].reasons == ["rate_policy"]
        assert by_id["201"].policy_errors == ["no_mix_platform"]
        assert by_id["201"].reasons == ["policy_error"]
        assert by_id["202"].ok
        assert by_id["102"].rate == 8

    def test_missing_capability(self, caps: dict[str, ServiceCapability]) -> None:
        ctx = VisibleGroupContext(tag_id="root", used_service_ids=[])
        (check,) = filter_services_for_visible_group([555], ctx, caps)
        assert not check.ok
        assert check.reasons == ["missing_capability"]

    def test_no_primary_passes_rate(self, caps: dict[str, ServiceCapability]) -> None:
        ctx = VisibleGroupContext(tag_id="root", used_service_ids=[])
        (check,) = filter_services_for_visible_group([104], ctx, caps)
        assert check.passes_rate
        assert check.ok

    def test_constraint_fit_not_required(self, caps: dict[str, ServiceCapability]) -> None:
        """With the gate off a mismatch is reported but does not fail."""
        ctx = VisibleGroupContext(
            tag_id="root",
            used_service_ids=[],
            effective_constraints={"dripfeed": True},
            fallback=FallbackSettings(require_constraint_fit=False),
        )
        (check,) = filter_services_for_visible_group([103], ctx, caps)
        assert not check.fits_constraints
        assert check.ok

    def test_loose_policy_input(self, caps: dict[str, ServiceCapability]) -> None:
        ctx = VisibleGroupContext(
            tag_id="root", used_service_ids=[100], policies=[{"op": "all_true"}]
        )
        (check,) = filter_services_for_visible_group([102], ctx, caps)
        assert check.ok
