"""Read-only lookups over a service document.

These helpers never mutate the document they are given. Mutation operations
use them on their private clone; the policy engine and the editor use them
on read-only views.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from servicegraph.graph.errors import NodeNotFoundError
from servicegraph.models.document import CONSTRAINT_FLAGS

if TYPE_CHECKING:
    from servicegraph.models.document import (
        ConstraintFlag,
        Field,
        Option,
        ServiceDocument,
        Tag,
    )

# Delimiter of option-scoped map keys ("f:1::o:2")
OPTION_KEY_DELIMITER = "::"


def format_option_key(field_id: str, option_id: str) -> str:
    """Build a 'field_id::option_id' map key."""
    return f"{field_id}{OPTION_KEY_DELIMITER}{option_id}"


def parse_option_key(key: str) -> tuple[str | None, str]:
    """Parse 'field_id::option_id' into (field_id, option_id).

    Keys without the delimiter are returned as (None, key).
    """
    if OPTION_KEY_DELIMITER in key:
        field_id, option_id = key.split(OPTION_KEY_DELIMITER, 1)
        return field_id, option_id
    return None, key


def tag_ids(document: ServiceDocument) -> list[str]:
    return [t.id for t in document.tags]


def field_ids(document: ServiceDocument) -> list[str]:
    return [f.id for f in document.fields]


def option_ids(document: ServiceDocument) -> list[str]:
    return [o.id for f in document.fields for o in f.options or []]


def all_ids(document: ServiceDocument) -> set[str]:
    """Every id in the tag, field and option namespaces."""
    return {*tag_ids(document), *field_ids(document), *option_ids(document)}


def find_tag(document: ServiceDocument, tag_id: str) -> Tag | None:
    return next((t for t in document.tags if t.id == tag_id), None)


def find_field(document: ServiceDocument, field_id: str) -> Field | None:
    return next((f for f in document.fields if f.id == field_id), None)


def owner_of_option(document: ServiceDocument, option_id: str) -> tuple[Field, int] | None:
    """Find the field owning an option and the option's index in it.

    Linear scan; documents are small enough for the editor.
    """
    for fld in document.fields:
        for idx, opt in enumerate(fld.options or []):
            if opt.id == option_id:
                return fld, idx
    return None


def require_tag(document: ServiceDocument, tag_id: str, context: str = "") -> Tag:
    """Return a tag or raise NodeNotFoundError listing the valid tag ids."""
    tag = find_tag(document, tag_id)
    if tag is None:
        raise NodeNotFoundError(tag_id, available=tag_ids(document), context=context)
    return tag


def require_field(document: ServiceDocument, field_id: str, context: str = "") -> Field:
    """Return a field or raise NodeNotFoundError listing the valid field ids."""
    fld = find_field(document, field_id)
    if fld is None:
        raise NodeNotFoundError(field_id, available=field_ids(document), context=context)
    return fld


def require_option(
    document: ServiceDocument, option_id: str, context: str = ""
) -> tuple[Field, Option]:
    """Return (owner field, option) or raise NodeNotFoundError."""
    owner = owner_of_option(document, option_id)
    if owner is None:
        raise NodeNotFoundError(option_id, available=option_ids(document), context=context)
    fld, idx = owner
    return fld, (fld.options or [])[idx]


def ancestors_of(document: ServiceDocument, tag_id: str) -> list[str]:
    """Ancestor ids of a tag, nearest first.

    Stops on a repeated id so a corrupted document cannot loop forever.
    """
    by_id = {t.id: t for t in document.tags}
    out: list[str] = []
    seen = {tag_id}
    current = by_id.get(tag_id)
    while current is not None and current.parent_id is not None:
        parent_id = current.parent_id
        if parent_id in seen:
            break
        seen.add(parent_id)
        out.append(parent_id)
        current = by_id.get(parent_id)
    return out


def would_create_cycle(document: ServiceDocument, parent_id: str, child_id: str) -> bool:
    """Whether making *parent_id* the parent of *child_id* closes a cycle.

    Walks the ancestors of the proposed parent; if the child is among them
    (or is the parent itself) the bind would create a cycle.
    """
    if parent_id == child_id:
        return True
    return child_id in ancestors_of(document, parent_id)


def effective_constraints(
    document: ServiceDocument, tag_id: str
) -> dict[ConstraintFlag, bool]:
    """Resolve constraint flags for a tag, inheriting from ancestors.

    The nearest tag with an explicit value for a flag defines it. Flags that
    no tag in the chain sets are absent from the result.
    """
    by_id = {t.id: t for t in document.tags}
    resolved: dict[ConstraintFlag, bool] = {}
    for tid in [tag_id, *ancestors_of(document, tag_id)]:
        tag = by_id.get(tid)
        if tag is None or tag.constraints is None:
            continue
        for flag in CONSTRAINT_FLAGS:
            value = getattr(tag.constraints, flag)
            if value is not None and flag not in resolved:
                resolved[flag] = value
    return resolved
