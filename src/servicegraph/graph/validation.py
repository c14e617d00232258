"""Read-only audit of document invariants.

Mutation operations keep these invariants on their own; the audit exists for
documents that arrive from outside (the CLI, a store loaded from disk) and
for the editor's ``validate_after_each`` mode.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from servicegraph.graph.context import ancestors_of, field_ids, format_option_key, option_ids
from servicegraph.models.document import BUTTON_MAP_KEYS, OPTION_MAP_KEYS

if TYPE_CHECKING:
    from servicegraph.models.document import ServiceDocument


@dataclass
class InvariantCheck:
    """Result of a single invariant check.

    Attributes:
        name: Identifier for the invariant.
        severity: "pass" or "fail".
        message: Human-readable description of the result.
    """

    name: str
    severity: Literal["pass", "fail"]
    message: str = ""


@dataclass
class InvariantReport:
    """Aggregated invariant check results."""

    checks: list[InvariantCheck] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return any(c.severity == "fail" for c in self.checks)

    @property
    def failures(self) -> list[InvariantCheck]:
        return [c for c in self.checks if c.severity == "fail"]

    @property
    def summary(self) -> str:
        fails = len(self.failures)
        passes = len(self.checks) - fails
        parts: list[str] = []
        if fails:
            parts.append(f"{fails} failed")
        if passes:
            parts.append(f"{passes} passed")
        return ", ".join(parts)


def _result(name: str, problems: list[str]) -> list[InvariantCheck]:
    if not problems:
        return [InvariantCheck(name, "pass")]
    return [InvariantCheck(name, "fail", p) for p in problems]


def check_acyclic_tags(document: ServiceDocument) -> list[InvariantCheck]:
    problems = []
    for tag in document.tags:
        chain = ancestors_of(document, tag.id)
        # ancestors_of stops on a repeat; a chain ending in a tag whose parent
        # is already in the chain (or the tag itself) is a loop.
        last = chain[-1] if chain else tag.id
        parent = next((t.parent_id for t in document.tags if t.id == last), None)
        if parent is not None and (parent == tag.id or parent in chain):
            problems.append(f"Tag '{tag.id}' has a cyclic ancestor chain")
    return _result("acyclic_tags", problems)


def check_unique_ids(document: ServiceDocument) -> list[InvariantCheck]:
    problems = []
    for kind, ids in (
        ("tag", [t.id for t in document.tags]),
        ("field", field_ids(document)),
    ):
        for node_id, count in Counter(ids).items():
            if count > 1:
                problems.append(f"Duplicate {kind} id '{node_id}' ({count} times)")
    for fld in document.fields:
        for node_id, count in Counter(o.id for o in fld.options or []).items():
            if count > 1:
                problems.append(f"Duplicate option id '{node_id}' in field '{fld.id}'")
    return _result("unique_ids", problems)


def check_unique_field_names(document: ServiceDocument) -> list[InvariantCheck]:
    names = Counter(f.name for f in document.fields if f.name)
    problems = [f"Field name '{n}' used {c} times" for n, c in names.items() if c > 1]
    return _result("unique_field_names", problems)


def check_utility_services(document: ServiceDocument) -> list[InvariantCheck]:
    problems = []
    for fld in document.fields:
        if fld.is_utility and fld.service_id is not None:
            problems.append(f"Utility field '{fld.id}' carries service_id")
        for opt in fld.options or []:
            if opt.is_utility and opt.service_id is not None:
                problems.append(f"Utility option '{opt.id}' carries service_id")
    return _result("utility_without_service", problems)


def check_option_field_services(document: ServiceDocument) -> list[InvariantCheck]:
    problems = [
        f"Option-based field '{f.id}' carries service_id"
        for f in document.fields
        if f.has_options and f.service_id is not None
    ]
    return _result("option_field_without_service", problems)


def check_references(document: ServiceDocument) -> list[InvariantCheck]:
    """Every id mentioned in a list or map points at an existing node."""
    tags = {t.id for t in document.tags}
    fields = set(field_ids(document))
    options = set(option_ids(document))
    option_keys = {
        format_option_key(f.id, o.id) for f in document.fields for o in f.options or []
    }
    problems: list[str] = []

    for tag in document.tags:
        if tag.parent_id is not None and tag.parent_id not in tags:
            problems.append(f"Tag '{tag.id}' has unknown parent '{tag.parent_id}'")
        for attr in ("includes", "excludes"):
            for fid in getattr(tag, attr) or []:
                if fid not in fields:
                    problems.append(f"Tag '{tag.id}' {attr} unknown field '{fid}'")
    for fld in document.fields:
        for tid in fld.tag_ids:
            if tid not in tags:
                problems.append(f"Field '{fld.id}' bound to unknown tag '{tid}'")

    for tid, ordered in (document.order_for_tags or {}).items():
        if tid not in tags:
            problems.append(f"order_for_tags has unknown tag key '{tid}'")
        problems.extend(
            f"order_for_tags['{tid}'] has unknown field '{fid}'"
            for fid in ordered
            if fid not in fields
        )

    for map_key in BUTTON_MAP_KEYS:
        for key, targets in (getattr(document, map_key) or {}).items():
            if key not in fields and key not in options and key not in option_keys:
                problems.append(f"{map_key} has unknown key '{key}'")
            problems.extend(
                f"{map_key}['{key}'] has unknown field '{fid}'" for fid in targets if fid not in fields
            )
    for map_key in OPTION_MAP_KEYS:
        for key, targets in (getattr(document, map_key) or {}).items():
            if key not in options:
                problems.append(f"{map_key} has unknown option key '{key}'")
            problems.extend(
                f"{map_key}['{key}'] has unknown field '{fid}'" for fid in targets if fid not in fields
            )
    return _result("references_resolve", problems)


def check_invariants(document: ServiceDocument) -> InvariantReport:
    """Run every invariant check against *document*."""
    report = InvariantReport()
    for check in (
        check_acyclic_tags,
        check_unique_ids,
        check_unique_field_names,
        check_utility_services,
        check_option_field_services,
        check_references,
    ):
        report.checks.extend(check(document))
    return report
