"""Compile loose policy JSON into validated rules.

Raw policies come from hosts and authoring UIs, so the compiler is lenient:
anything it can default is defaulted with a warning diagnostic. Only an
unknown ``op`` or a missing numeric ``value`` on a count rule is fatal, and
then only for that rule.

Defaults:
- id: ``policy_{n}`` (1-based position)
- scope: ``visible_group``
- subject: ``services``
- projection: ``service.id``
- filter.role: ``both``
- severity: ``error``
"""

from __future__ import annotations

import math
from typing import Any

from servicegraph.observability.logging import get_logger
from servicegraph.policy.models import (
    OPS,
    ROLES,
    SCOPES,
    SERVICE_PATH_PREFIX,
    SEVERITIES,
    SUBJECTS,
    WHERE_OPS,
    CompiledPolicies,
    DynamicRule,
    PolicyDiagnostic,
    RuleFilter,
    WhereClause,
)

log = get_logger(__name__)

_COUNT_OPS = ("max_count", "min_count")
_TRUTH_OPS = ("all_true", "any_true")
_FILTER_ID_KEYS = ("tag_id", "field_id", "handler_id", "platform_id")


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, int | float)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_str_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    items = value if isinstance(value, list) else [value]
    return [str(v) for v in items]


class _RuleCompiler:
    """Compiles one raw entry, collecting its diagnostics."""

    def __init__(self, index: int, entry: Any) -> None:
        self.index = index
        self.src: dict[str, Any] = entry if isinstance(entry, dict) else {}
        self.diagnostics: list[PolicyDiagnostic] = []
        self.rule_id = _text(self.src.get("id")) or f"policy_{index + 1}"
        if _text(self.src.get("id")) is None:
            self.warn('Missing "id"; generated automatically.', "id")

    def warn(self, message: str, path: str | None = None) -> None:
        self._add("warning", message, path)

    def error(self, message: str, path: str | None = None) -> None:
        self._add("error", message, path)

    def _add(self, severity: str, message: str, path: str | None) -> None:
        self.diagnostics.append(
            PolicyDiagnostic(
                rule_index=self.index,
                rule_id=self.rule_id,
                severity=severity,  # type: ignore[arg-type]
                message=message,
                path=path,
            )
        )

    def _choice(self, key: str, allowed: tuple[str, ...], default: str, label: str) -> str:
        value = self.src.get(key)
        if value in allowed:
            return value  # type: ignore[no-any-return]
        if value is not None:
            self.warn(f'Unknown "{label}"; defaulted to "{default}".', label)
        return default

    def compile(self) -> DynamicRule | None:
        scope = self._choice("scope", SCOPES, "visible_group", "scope")
        subject = self._choice("subject", SUBJECTS, "services", "subject")

        op = self.src.get("op")
        if op not in OPS:
            self.error(f'Invalid "op": {op}.', "op")

        projection = _text(self.src.get("projection")) or "service.id"
        if subject == "services" and not projection.startswith(SERVICE_PATH_PREFIX):
            self.warn(
                'Projection should start with "service." for subject "services".',
                "projection",
            )

        rule_filter = self._compile_filter(self.src.get("filter"))
        severity = self._choice("severity", SEVERITIES, "error", "severity")
        value = self.src.get("value")
        self._check_value(op, value)

        if any(d.severity == "error" for d in self.diagnostics):
            return None
        message = self.src.get("message")
        return DynamicRule(
            id=self.rule_id,
            scope=scope,  # type: ignore[arg-type]
            subject=subject,  # type: ignore[arg-type]
            filter=rule_filter,
            projection=projection,
            op=op,
            value=value,
            severity=severity,  # type: ignore[arg-type]
            message=message if isinstance(message, str) else None,
        )

    def _check_value(self, op: Any, value: Any) -> None:
        if op in _COUNT_OPS:
            if not _is_number(value):
                self.error(f'"{op}" requires numeric "value".', "value")
        elif op in _TRUTH_OPS:
            if value is not None:
                self.warn(f'"{op}" ignores "value"; it checks all/any true.', "value")
        elif value is not None:
            self.warn(f'"{op}" does not use "value".', "value")

    def _compile_filter(self, raw: Any) -> RuleFilter:
        src = raw if isinstance(raw, dict) else {}
        role = src.get("role")
        if role is not None and role not in ROLES:
            self.warn('Unknown filter.role; defaulted to "both".', "filter.role")
            role = None
        return RuleFilter(
            role=role or "both",
            **{key: _as_str_list(src.get(key)) for key in _FILTER_ID_KEYS},
            where=self._compile_where(src.get("where")),
        )

    def _compile_where(self, raw: Any) -> list[WhereClause] | None:
        if raw is None:
            return None
        if not isinstance(raw, list):
            self.warn("filter.where must be an array; ignored.", "filter.where")
            return None

        clauses: list[WhereClause] = []
        for j, item in enumerate(raw):
            obj = item if isinstance(item, dict) else {}
            at = f"filter.where[{j}]"
            path = _text(obj.get("path"))
            if path is None:
                self.warn(f"{at}.path must be a non-empty string; entry ignored.", f"{at}.path")
                continue
            if not path.startswith(SERVICE_PATH_PREFIX):
                self.warn(
                    f'{at}.path should start with "service." for subject "services".',
                    f"{at}.path",
                )

            op = obj.get("op", "eq")
            if op not in WHERE_OPS:
                self.warn(f'Unknown {at}.op; defaulted to "eq".', f"{at}.op")
                op = "eq"

            value = obj.get("value")
            if op in ("exists", "truthy", "falsy"):
                if value is not None:
                    self.warn(f'{at} op "{op}" does not use "value".', f"{at}.value")
            elif op in ("in", "nin") and not isinstance(value, list):
                self.warn(f'{at} op "{op}" expects an array "value".', f"{at}.value")

            clauses.append(WhereClause(path=path, op=op, value=value))
        return clauses or None


def compile_policies(raw: Any) -> CompiledPolicies:
    """Compile raw policy input into rules plus diagnostics.

    Args:
        raw: Parsed JSON; must be a list of rule objects.

    Returns:
        Rules that compiled without errors, and every diagnostic in input
        order. A non-list root yields no rules and one error diagnostic.
    """
    if not isinstance(raw, list):
        return CompiledPolicies(
            diagnostics=[
                PolicyDiagnostic(
                    rule_index=-1, severity="error", message="Policies root must be an array."
                )
            ]
        )

    compiled = CompiledPolicies()
    for i, entry in enumerate(raw):
        rule_compiler = _RuleCompiler(i, entry)
        rule = rule_compiler.compile()
        if rule is not None:
            compiled.policies.append(rule)
        compiled.diagnostics.extend(rule_compiler.diagnostics)

    if compiled.diagnostics:
        log.debug(
            "policies_compiled",
            rules=len(compiled.policies),
            errors=len(compiled.errors),
            warnings=len(compiled.warnings),
        )
    return compiled
