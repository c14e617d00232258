"""Editor error types.

These errors abort an editing operation. They are raised when an edit would
break referential integrity or a structural invariant, similar to foreign key
or check constraint violations in a database.

Domain-rule violations that the editor normalises silently (for example a
service id assigned to a utility option) are not errors; they are reported
as :class:`Violation` records instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import get_close_matches
from typing import Any


class EditorError(Exception):
    """Base class for errors that abort an editing operation."""


class InvalidEditError(EditorError, ValueError):
    """Raised when edit arguments are malformed (blank label, missing scope)."""


@dataclass
class NodeNotFoundError(EditorError):
    """Raised when referencing a tag, field or option that doesn't exist.

    Attributes:
        node_id: The ID that was referenced but doesn't exist.
        available: IDs of the same kind that could be used instead.
        context: Description of where the reference occurred.
    """

    node_id: str
    available: list[str] = field(default_factory=list)
    context: str = ""

    def __post_init__(self) -> None:
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"Node '{self.node_id}' not found"
        if self.context:
            msg += f" ({self.context})"
        suggestions = self.suggestions()
        if suggestions:
            msg += f"; did you mean: {', '.join(suggestions)}?"
        return msg

    def suggestions(self) -> list[str]:
        """Find similar IDs that might be typos."""
        return get_close_matches(self.node_id, self.available, n=3, cutoff=0.6)


@dataclass
class NodeExistsError(EditorError):
    """Raised when creating a node with an explicit ID that is already taken.

    Attributes:
        node_id: The ID that already exists.
        namespace: "tag", "field", or "option".
    """

    node_id: str
    namespace: str = ""

    def __post_init__(self) -> None:
        kind = f"{self.namespace.capitalize()} id" if self.namespace else "Id"
        super().__init__(f"{kind} '{self.node_id}' already exists")


@dataclass
class CycleError(EditorError):
    """Raised when binding a tag under one of its own descendants.

    Attributes:
        parent_id: The proposed parent.
        child_id: The tag that would be re-parented.
    """

    parent_id: str
    child_id: str

    def __post_init__(self) -> None:
        super().__init__(f"bind would create a cycle: {self.parent_id} → {self.child_id}")


@dataclass
class FieldNameCollisionError(EditorError):
    """Raised when a field name is already used by another field."""

    name: str
    field_id: str
    other_field_id: str

    def __post_init__(self) -> None:
        super().__init__(
            f"Field name '{self.name}' is already used by '{self.other_field_id}'"
        )


@dataclass
class UnsupportedRouteError(EditorError):
    """Raised when connect/disconnect gets an unknown kind or endpoint pair."""

    kind: str
    from_id: str = ""
    to_id: str = ""

    def __post_init__(self) -> None:
        if self.from_id or self.to_id:
            msg = f"{self.kind}: unsupported route {self.from_id} → {self.to_id}"
        else:
            msg = f"Unknown connect kind: {self.kind}"
        super().__init__(msg)


class ServiceCheckerMissingError(EditorError):
    """Raised when a service wire is edited but no existence check was injected."""

    def __init__(self) -> None:
        super().__init__("service_checker_missing")


@dataclass
class ServiceNotFoundError(EditorError):
    """Raised when the injected checker rejects a service id."""

    service_id: Any

    def __post_init__(self) -> None:
        super().__init__(f"service_not_found:{self.service_id}")


@dataclass
class IdExhaustedError(EditorError):
    """Raised when no free generated id exists for a prefix."""

    prefix: str
    attempts: int

    def __post_init__(self) -> None:
        super().__init__(
            f"Unable to generate id for prefix '{self.prefix}' after {self.attempts} attempts"
        )


@dataclass
class Violation:
    """A domain-rule violation that was normalised instead of raised.

    Attributes:
        code: Stable machine-readable code (e.g. "utility_service_conflict").
        message: Human-readable description.
        meta: Extra context such as the node id and rejected value.
    """

    code: str
    message: str
    meta: dict[str, Any] = field(default_factory=dict)
