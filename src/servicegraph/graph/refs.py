"""Typed node references.

Callers address nodes either by a :data:`NodeRef` or by a bare id. Bare ids
are resolved once, at the editor boundary, by looking them up in the
document; everything below the boundary dispatches on the reference type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from servicegraph.graph.context import all_ids, find_field, find_tag, owner_of_option
from servicegraph.graph.errors import NodeNotFoundError

if TYPE_CHECKING:
    from servicegraph.models.document import ServiceDocument


@dataclass(frozen=True)
class TagRef:
    id: str
    kind: Literal["tag"] = "tag"


@dataclass(frozen=True)
class FieldRef:
    id: str
    kind: Literal["field"] = "field"


@dataclass(frozen=True)
class OptionRef:
    field_id: str
    id: str
    kind: Literal["option"] = "option"


NodeRef = TagRef | FieldRef | OptionRef


def resolve_ref(document: ServiceDocument, node: NodeRef | str) -> NodeRef:
    """Resolve a bare id to a typed reference.

    Lookup order is tag, field, option. Typed references are returned
    unchanged after checking that the node exists.

    Raises:
        NodeNotFoundError: If no node with the id exists.
    """
    if isinstance(node, TagRef):
        if find_tag(document, node.id) is None:
            raise NodeNotFoundError(node.id, available=sorted(all_ids(document)))
        return node
    if isinstance(node, FieldRef):
        if find_field(document, node.id) is None:
            raise NodeNotFoundError(node.id, available=sorted(all_ids(document)))
        return node
    if isinstance(node, OptionRef):
        owner = owner_of_option(document, node.id)
        if owner is None or owner[0].id != node.field_id:
            raise NodeNotFoundError(
                node.id,
                available=sorted(all_ids(document)),
                context=f"option of field '{node.field_id}'",
            )
        return node

    if find_tag(document, node) is not None:
        return TagRef(node)
    if find_field(document, node) is not None:
        return FieldRef(node)
    owner = owner_of_option(document, node)
    if owner is not None:
        return OptionRef(owner[0].id, node)
    raise NodeNotFoundError(node, available=sorted(all_ids(document)))
