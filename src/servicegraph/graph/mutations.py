"""Structural mutation operations.

Every operation here is a pure transform: it takes a document, clones it,
edits the clone and returns it inside a :class:`MutationResult`. The input
document is never touched, so a failing operation leaves nothing behind and
the editor can install the result as one unit.

Two failure channels exist:

- Hard failures (unknown reference, cycle, id collision, unsupported route)
  raise an :class:`~servicegraph.graph.errors.EditorError`.
- Domain-rule violations that can be normalised (service ids on utility
  entities, on option-based or non-button fields) strip the offending value
  and are returned as :class:`~servicegraph.graph.errors.Violation` records.

After any successful operation the document invariants hold: acyclic tag
parents, unique ids and field names, no service id on utility entities or
option-based fields, and no dangling references in any map.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from servicegraph.graph.context import (
    all_ids,
    find_field,
    format_option_key,
    require_field,
    require_option,
    require_tag,
    would_create_cycle,
)
from servicegraph.graph.errors import (
    CycleError,
    FieldNameCollisionError,
    InvalidEditError,
    NodeExistsError,
    UnsupportedRouteError,
    Violation,
)
from servicegraph.graph.ids import (
    FIELD_PREFIX,
    OPTION_PREFIX,
    TAG_PREFIX,
    bump_suffix,
    gen_id,
    next_copy_id,
    next_copy_label,
    next_copy_name,
    unique_id,
    unique_option_id,
)
from servicegraph.graph.refs import FieldRef, OptionRef, TagRef, resolve_ref
from servicegraph.graph.services import ensure_service_exists
from servicegraph.models.document import (
    BUTTON_MAP_KEYS,
    CONSTRAINT_FLAGS,
    OPTION_MAP_KEYS,
    Constraints,
    Field,
    Option,
    ServiceDocument,
    Tag,
)
from servicegraph.observability.logging import get_logger

if TYPE_CHECKING:
    from servicegraph.graph.refs import NodeRef
    from servicegraph.graph.services import ServiceChecker
    from servicegraph.models.document import ConstraintFlag, PricingRole, ServiceId

log = get_logger(__name__)

WireKind = Literal["bind", "include", "exclude", "service"]
WIRE_KINDS: tuple[str, ...] = ("bind", "include", "exclude", "service")

QUANTITY_VALUE_BY = ("value", "length", "eval")

# Marks "argument not given" where None means "clear"
UNSET: Any = object()


@dataclass
class MutationResult:
    """Outcome of a structural mutation.

    Attributes:
        document: The new document (a fresh clone, owned by the caller).
        node_id: Id of the node created or primarily affected, if any.
        violations: Domain-rule violations that were normalised away.
    """

    document: ServiceDocument
    node_id: str | None = None
    violations: list[Violation] = field(default_factory=list)


@dataclass
class DuplicateOptions:
    """Options for :func:`duplicate`.

    Attributes:
        with_children: Tags only. Duplicate the whole subtree.
        copy_bindings: Fields only. Keep the field bound to the same tags.
        copy_includes_excludes: Fields only. Add the copy wherever a tag
            includes or excludes the original.
        copy_option_maps: Fields and options. Copy button/option map entries
            keyed by the original onto the copy's keys.
        id: Force the copy's id instead of deriving one.
        label_strategy: Derive the copy's label from the original's.
        name_strategy: Fields only. Derive the copy's name.
        option_id_strategy: Derive option ids from the originals.
    """

    with_children: bool = False
    copy_bindings: bool = True
    copy_includes_excludes: bool = False
    copy_option_maps: bool = False
    id: str | None = None
    label_strategy: Callable[[str], str] = next_copy_label
    name_strategy: Callable[[str | None], str | None] = next_copy_name
    option_id_strategy: Callable[[str], str] = next_copy_id


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _or_none(values: list[str]) -> list[str] | None:
    return values or None


def _without(values: list[str] | None, drop: set[str]) -> list[str] | None:
    if not values:
        return None
    return _or_none([v for v in values if v not in drop])


def _with(values: list[str] | None, item: str) -> list[str]:
    values = list(values or [])
    if item not in values:
        values.append(item)
    return values


def _prune_map(
    mapping: dict[str, list[str]] | None,
    drop_keys: Collection[str] = (),
    drop_values: Collection[str] = (),
) -> dict[str, list[str]] | None:
    """Drop keys and values from an id map, deleting emptied keys.

    Returns None when nothing is left so the map key disappears too.
    """
    if not mapping:
        return None
    out: dict[str, list[str]] = {}
    for key, values in mapping.items():
        if key in drop_keys:
            continue
        kept = [v for v in values if v not in drop_values]
        if kept:
            out[key] = kept
    return out or None


def _merge_into(
    mapping: dict[str, list[str]] | None, key: str, values: list[str]
) -> dict[str, list[str]]:
    out = dict(mapping or {})
    merged = list(out.get(key, []))
    for v in values:
        if v not in merged:
            merged.append(v)
    out[key] = merged
    return out


def _destination(
    ids: list[str],
    index: int | None,
    before_id: str | None,
    after_id: str | None,
) -> int:
    """Resolve a drop position: index, then before_id, then after_id, then append.

    Anchors that are not in *ids* fall back to appending.
    """
    if index is not None:
        return max(0, min(index, len(ids)))
    if before_id is not None:
        return ids.index(before_id) if before_id in ids else len(ids)
    if after_id is not None:
        return ids.index(after_id) + 1 if after_id in ids else len(ids)
    return len(ids)


def _check_new_id(document: ServiceDocument, node_id: str, namespace: str) -> None:
    # Explicit ids must be free in every namespace so bare ids stay resolvable.
    if node_id in all_ids(document):
        raise NodeExistsError(node_id, namespace)


def _check_field_refs(document: ServiceDocument, ids: list[str] | None, context: str) -> None:
    for fid in ids or []:
        require_field(document, fid, context=context)


def _check_tag_refs(document: ServiceDocument, ids: list[str], context: str) -> None:
    for tid in ids:
        require_tag(document, tid, context=context)


def _service_mapped(fld: Field) -> bool:
    return fld.service_id is not None or any(o.service_id is not None for o in fld.options or [])


def _assign_field_name(
    document: ServiceDocument, fld: Field, name: str | None
) -> list[Violation]:
    """Set or clear a field's name, enforcing uniqueness and the service rule."""
    name = (name or "").strip()
    if not name:
        fld.name = None
        return []
    if name == fld.name:
        return []
    collision = next((f for f in document.fields if f.id != fld.id and f.name == name), None)
    if collision is not None:
        raise FieldNameCollisionError(name, fld.id, collision.id)
    if _service_mapped(fld):
        return [
            Violation(
                code="field_has_service_mapping",
                message=(
                    "Cannot set a name on a field that maps to a service "
                    "(either the field or one of its options has a service_id)."
                ),
                meta={
                    "field_id": fld.id,
                    "field_has_service": fld.service_id is not None,
                    "option_has_service": any(
                        o.service_id is not None for o in fld.options or []
                    ),
                },
            )
        ]
    fld.name = name
    return []


def _apply_tag_service(tag: Tag, service_id: Any) -> list[Violation]:
    if service_id is not UNSET:
        tag.service_id = service_id
    return []


def _apply_option_service(
    opt: Option, service_id: Any, pricing_role: PricingRole | None
) -> list[Violation]:
    role = pricing_role or opt.pricing_role or "base"
    if role == "utility":
        violations = []
        if service_id is not UNSET and service_id is not None:
            violations.append(
                Violation(
                    code="utility_service_conflict",
                    message="Utilities cannot have service_id (option).",
                    meta={"id": opt.id, "service_id": service_id},
                )
            )
        opt.pricing_role = "utility"
        opt.service_id = None
        return violations

    if pricing_role:
        opt.pricing_role = "base"
    if service_id is not UNSET:
        opt.service_id = service_id
    return []


def _apply_field_service(
    fld: Field, service_id: Any, pricing_role: PricingRole | None
) -> list[Violation]:
    given = service_id is not UNSET and service_id is not None
    if pricing_role:
        fld.pricing_role = pricing_role

    if fld.has_options:
        # Services live on the options; the role still acts as their default.
        fld.service_id = None
        if given:
            return [
                Violation(
                    code="field_option_based_service_forbidden",
                    message=(
                        "Cannot set service_id on an option-based field. "
                        "Assign service_id on its options instead."
                    ),
                    meta={"id": fld.id, "service_id": service_id},
                )
            ]
        return []

    if not fld.button:
        fld.service_id = None
        if given:
            return [
                Violation(
                    code="non_button_field_service_forbidden",
                    message="Only button fields (without options) can have a service_id.",
                    meta={"id": fld.id, "service_id": service_id},
                )
            ]
        return []

    if fld.is_utility:
        fld.service_id = None
        if given:
            return [
                Violation(
                    code="utility_service_conflict",
                    message="Utilities cannot have service_id (field).",
                    meta={"id": fld.id, "service_id": service_id},
                )
            ]
        return []

    if service_id is not UNSET:
        fld.service_id = service_id
    return []


def _normalise_field(fld: Field) -> list[Violation]:
    """Re-apply the service rules to a field and its options as stored."""
    violations: list[Violation] = []
    for opt in fld.options or []:
        violations.extend(_apply_option_service(opt, opt.service_id, None))
    violations.extend(_apply_field_service(fld, fld.service_id, None))
    return violations


def _prepare_options(
    document: ServiceDocument, raw_options: list[Any] | None, taken: set[str]
) -> list[Option] | None:
    """Validate options of a new field, allocating ids where missing."""
    if not raw_options:
        return None
    options: list[Option] = []
    seen: set[str] = set()
    for raw in raw_options:
        data = raw.model_dump() if isinstance(raw, Option) else dict(raw)
        oid = data.get("id")
        if oid:
            if oid in seen or oid in taken:
                raise NodeExistsError(oid, "option")
        else:
            oid = gen_id(document, OPTION_PREFIX, extra_taken=taken | seen)
        seen.add(oid)
        data["id"] = oid
        options.append(Option.model_validate(data))
    return options


# -----------------------------------------------------------------------------
# Tags
# -----------------------------------------------------------------------------


def add_tag(document: ServiceDocument, data: Mapping[str, Any]) -> MutationResult:
    """Append a new tag.

    Args:
        document: Current document.
        data: Tag attributes; ``label`` is required, ``id`` optional.

    Raises:
        NodeExistsError: If an explicit id is already taken.
        NodeNotFoundError: If the parent or an included/excluded field is unknown.
    """
    doc = document.clone()
    payload = dict(data)
    tag_id = payload.get("id") or gen_id(doc, TAG_PREFIX)
    _check_new_id(doc, tag_id, "tag")
    payload["id"] = tag_id

    tag = Tag.model_validate(payload)
    if tag.parent_id is not None:
        require_tag(doc, tag.parent_id, context="add_tag - parent must exist")
    _check_field_refs(doc, tag.includes, "add_tag - includes")
    _check_field_refs(doc, tag.excludes, "add_tag - excludes")

    doc.tags.append(tag)
    return MutationResult(doc, tag_id)


def update_tag(document: ServiceDocument, tag_id: str, patch: Mapping[str, Any]) -> MutationResult:
    """Merge *patch* into a tag. Keys set to None are cleared.

    Raises:
        NodeNotFoundError: If the tag or a referenced node is unknown.
        CycleError: If a new parent would make the tag its own ancestor.
        InvalidEditError: If the patch tries to change the id.
    """
    doc = document.clone()
    current = require_tag(doc, tag_id, context="update_tag - tag must exist before updating")
    if "id" in patch and patch["id"] != tag_id:
        raise InvalidEditError("update_tag: id cannot be changed")

    updated = Tag.model_validate({**current.model_dump(), **patch, "id": tag_id})
    if updated.parent_id is not None and updated.parent_id != current.parent_id:
        require_tag(doc, updated.parent_id, context="update_tag - parent must exist")
        if would_create_cycle(doc, updated.parent_id, tag_id):
            raise CycleError(updated.parent_id, tag_id)
    _check_field_refs(doc, updated.includes, "update_tag - includes")
    _check_field_refs(doc, updated.excludes, "update_tag - excludes")
    if updated.constraints is not None and updated.constraints.is_empty():
        updated.constraints = None

    doc.tags = [updated if t.id == tag_id else t for t in doc.tags]
    return MutationResult(doc, tag_id)


def remove_tag(document: ServiceDocument, tag_id: str) -> MutationResult:
    """Remove a tag and every reference to it.

    Children become roots; the tag is dropped from field bindings and
    include/exclude lists; its field ordering entry is deleted.
    """
    doc = document.clone()
    require_tag(doc, tag_id, context="remove_tag")
    drop = {tag_id}

    doc.tags = [t for t in doc.tags if t.id != tag_id]
    for tag in doc.tags:
        if tag.parent_id == tag_id:
            tag.parent_id = None
        tag.includes = _without(tag.includes, drop)
        tag.excludes = _without(tag.excludes, drop)

    for fld in doc.fields:
        if isinstance(fld.bound_tag_ids, list):
            fld.bound_tag_ids = _without(fld.bound_tag_ids, drop)
        elif fld.bound_tag_ids == tag_id:
            fld.bound_tag_ids = None

    doc.order_for_tags = _prune_map(doc.order_for_tags, drop_keys=drop)
    log.debug("tag_removed", tag_id=tag_id)
    return MutationResult(doc, tag_id)


def set_constraint(
    document: ServiceDocument, tag_id: str, flag: ConstraintFlag, value: bool | None
) -> MutationResult:
    """Set or clear (value=None) one constraint flag on a tag."""
    if flag not in CONSTRAINT_FLAGS:
        raise InvalidEditError(f"Unknown constraint flag: {flag}")
    doc = document.clone()
    tag = require_tag(doc, tag_id, context="set_constraint")
    constraints = tag.constraints or Constraints()
    setattr(constraints, flag, value)
    tag.constraints = None if constraints.is_empty() else constraints
    return MutationResult(doc, tag_id)


# -----------------------------------------------------------------------------
# Fields
# -----------------------------------------------------------------------------


def add_field(document: ServiceDocument, data: Mapping[str, Any]) -> MutationResult:
    """Append a new field (and its options).

    ``label`` and ``type`` are required. Options without an id get a
    generated one. Service ids that break the role rules are stripped and
    reported.

    Raises:
        NodeExistsError: If an explicit field or option id is already taken.
        NodeNotFoundError: If a bound tag is unknown.
        FieldNameCollisionError: If the name is used by another field.
    """
    doc = document.clone()
    payload = dict(data)
    field_id = payload.get("id") or gen_id(doc, FIELD_PREFIX)
    _check_new_id(doc, field_id, "field")
    payload["id"] = field_id

    taken = all_ids(doc) | {field_id}
    options = _prepare_options(doc, payload.pop("options", None), taken)
    name = payload.pop("name", None)

    fld = Field.model_validate(payload)
    fld.options = options
    _check_tag_refs(doc, fld.tag_ids, "add_field - bound tag must exist")

    violations = _normalise_field(fld)
    violations.extend(_assign_field_name(doc, fld, name))
    doc.fields.append(fld)
    return MutationResult(doc, field_id, violations)


def update_field(
    document: ServiceDocument, field_id: str, patch: Mapping[str, Any]
) -> MutationResult:
    """Merge *patch* into a field. Keys set to None are cleared.

    Options are edited with the option operations; an ``options`` key in
    the patch replaces the option list wholesale, pruning maps of removed
    options.
    """
    doc = document.clone()
    current = require_field(doc, field_id, context="update_field - field must exist before updating")
    if "id" in patch and patch["id"] != field_id:
        raise InvalidEditError("update_field: id cannot be changed")

    patch = dict(patch)
    name = patch.pop("name", UNSET)
    merged = {**current.model_dump(), **patch, "id": field_id}
    if "options" in patch:
        own = {o.id for o in current.options or []}
        merged["options"] = _prepare_options(doc, patch["options"], all_ids(doc) - own)
    updated = Field.model_validate(merged)
    _check_tag_refs(doc, updated.tag_ids, "update_field - bound tag must exist")

    violations = _normalise_field(updated)
    if name is not UNSET:
        violations.extend(_assign_field_name(doc, updated, name))

    doc.fields = [updated if f.id == field_id else f for f in doc.fields]
    removed = {o.id for o in current.options or []} - {o.id for o in updated.options or []}
    if removed:
        _prune_option_refs(doc, field_id, removed)
    return MutationResult(doc, field_id, violations)


def remove_field(document: ServiceDocument, field_id: str) -> MutationResult:
    """Remove a field, its options, and every reference to them."""
    doc = document.clone()
    fld = require_field(doc, field_id, context="remove_field")
    own_options = {o.id for o in fld.options or []}
    drop = {field_id}

    doc.fields = [f for f in doc.fields if f.id != field_id]
    for tag in doc.tags:
        tag.includes = _without(tag.includes, drop)
        tag.excludes = _without(tag.excludes, drop)
    doc.order_for_tags = _prune_map(doc.order_for_tags, drop_values=drop)

    button_keys = {field_id, *own_options, *(format_option_key(field_id, o) for o in own_options)}
    for key in BUTTON_MAP_KEYS:
        setattr(doc, key, _prune_map(getattr(doc, key), drop_keys=button_keys, drop_values=drop))
    for key in OPTION_MAP_KEYS:
        setattr(doc, key, _prune_map(getattr(doc, key), drop_keys=own_options, drop_values=drop))

    log.debug("field_removed", field_id=field_id, options=len(own_options))
    return MutationResult(doc, field_id)


def set_field_name(
    document: ServiceDocument, field_id: str, name: str | None
) -> MutationResult:
    """Assign or clear (blank) a field's name.

    Raises:
        NodeNotFoundError: If the field doesn't exist.
        FieldNameCollisionError: If another field already uses the name.
    """
    doc = document.clone()
    fld = require_field(doc, field_id, context="set_field_name")
    violations = _assign_field_name(doc, fld, name)
    return MutationResult(doc, field_id, violations)


# -----------------------------------------------------------------------------
# Options
# -----------------------------------------------------------------------------


def add_option(
    document: ServiceDocument, field_id: str, data: Mapping[str, Any]
) -> MutationResult:
    """Append an option to a field.

    An option-based field can never carry a field-level service id, so
    adding the first option strips (and reports) any the field had.
    """
    doc = document.clone()
    fld = require_field(doc, field_id, context="add_option - field must exist")
    payload = dict(data)
    option_id = payload.get("id") or gen_id(doc, OPTION_PREFIX)
    _check_new_id(doc, option_id, "option")
    payload["id"] = option_id

    opt = Option.model_validate(payload)
    fld.options = [*(fld.options or []), opt]
    violations = _normalise_field(fld)
    return MutationResult(doc, option_id, violations)


def update_option(
    document: ServiceDocument, option_id: str, patch: Mapping[str, Any]
) -> MutationResult:
    """Merge *patch* into an option, re-applying the utility rule."""
    doc = document.clone()
    fld, current = require_option(doc, option_id, context="update_option")
    if "id" in patch and patch["id"] != option_id:
        raise InvalidEditError("update_option: id cannot be changed")

    updated = Option.model_validate({**current.model_dump(), **patch, "id": option_id})
    fld.options = [updated if o.id == option_id else o for o in fld.options or []]
    violations = _apply_option_service(updated, updated.service_id, None)
    return MutationResult(doc, option_id, violations)


def remove_option(document: ServiceDocument, option_id: str) -> MutationResult:
    """Remove an option and prune every map keyed by it."""
    doc = document.clone()
    fld, _ = require_option(doc, option_id, context="remove_option")
    fld.options = [o for o in fld.options or [] if o.id != option_id] or None
    _prune_option_refs(doc, fld.id, {option_id})
    return MutationResult(doc, option_id)


def _prune_option_refs(doc: ServiceDocument, field_id: str, removed: set[str]) -> None:
    keys = removed | {format_option_key(field_id, o) for o in removed}
    for key in (*OPTION_MAP_KEYS, *BUTTON_MAP_KEYS):
        setattr(doc, key, _prune_map(getattr(doc, key), drop_keys=keys))


# -----------------------------------------------------------------------------
# Labels, services, quantity rule
# -----------------------------------------------------------------------------


def relabel(document: ServiceDocument, node: NodeRef | str, label: str) -> MutationResult:
    """Change the display label of a tag, field or option. Ids never change.

    Raises:
        InvalidEditError: If the label is blank.
    """
    next_label = (label or "").strip()
    if not next_label:
        raise InvalidEditError("Label cannot be empty")
    doc = document.clone()
    ref = resolve_ref(doc, node)
    if isinstance(ref, TagRef):
        require_tag(doc, ref.id).label = next_label
    elif isinstance(ref, FieldRef):
        require_field(doc, ref.id).label = next_label
    else:
        require_option(doc, ref.id)[1].label = next_label
    return MutationResult(doc, ref.id)


def set_service(
    document: ServiceDocument,
    node: NodeRef | str,
    service_id: ServiceId | None = UNSET,
    pricing_role: PricingRole | None = None,
) -> MutationResult:
    """Assign, change or clear (None) the service mapping of a node.

    Rules by endpoint:
        - tag: unrestricted; pricing role does not apply.
        - option: utility options never keep a service id.
        - field with options: never carries a field-level service id.
        - field without options: only base-role button fields may.

    Offending service ids are omitted and reported as violations; the rest
    of the edit (e.g. a role change) still applies.
    """
    doc = document.clone()
    ref = resolve_ref(doc, node)
    if isinstance(ref, TagRef):
        violations = _apply_tag_service(require_tag(doc, ref.id), service_id)
    elif isinstance(ref, OptionRef):
        violations = _apply_option_service(require_option(doc, ref.id)[1], service_id, pricing_role)
    else:
        violations = _apply_field_service(require_field(doc, ref.id), service_id, pricing_role)
    return MutationResult(doc, ref.id, violations)


def normalize_quantity_rule(rule: Any) -> dict[str, str] | None:
    """Accept ``{"value_by": value|length|eval, "code"?}``; drop anything else.

    ``code`` is kept only for non-blank ``eval`` rules.
    """
    if not isinstance(rule, Mapping):
        return None
    value_by = rule.get("value_by", rule.get("valueBy"))
    if value_by not in QUANTITY_VALUE_BY:
        return None
    out = {"value_by": value_by}
    code = rule.get("code")
    if value_by == "eval" and isinstance(code, str) and code.strip():
        out["code"] = code
    return out


def get_field_quantity_rule(document: ServiceDocument, field_id: str) -> dict[str, str] | None:
    fld = find_field(document, field_id)
    if fld is None:
        return None
    return normalize_quantity_rule((fld.meta or {}).get("quantity"))


def set_field_quantity_rule(
    document: ServiceDocument, field_id: str, rule: Any
) -> MutationResult:
    """Store a normalised quantity rule in ``field.meta``; invalid shapes clear it."""
    doc = document.clone()
    fld = require_field(doc, field_id, context="set_field_quantity_rule")
    normalized = normalize_quantity_rule(rule)
    meta = dict(fld.meta or {})
    if normalized is None:
        meta.pop("quantity", None)
    else:
        meta["quantity"] = normalized
    fld.meta = meta or None
    return MutationResult(doc, field_id)


def clear_field_quantity_rule(document: ServiceDocument, field_id: str) -> MutationResult:
    return set_field_quantity_rule(document, field_id, None)


# -----------------------------------------------------------------------------
# Duplicate
# -----------------------------------------------------------------------------


def duplicate(
    document: ServiceDocument, node: NodeRef | str, opts: DuplicateOptions | None = None
) -> MutationResult:
    """Duplicate a tag (optionally with its subtree), a field, or an option.

    The copy is inserted right after the original. ``node_id`` of the
    result is the copy's id.
    """
    opts = opts or DuplicateOptions()
    ref = resolve_ref(document, node)
    if isinstance(ref, TagRef):
        return _duplicate_tag(document, ref.id, opts)
    if isinstance(ref, FieldRef):
        return _duplicate_field(document, ref.id, opts)
    return _duplicate_option(document, ref.field_id, ref.id, opts)


def _forced_or_unique(doc: ServiceDocument, src_id: str, opts: DuplicateOptions, ns: str) -> str:
    if opts.id is not None:
        _check_new_id(doc, opts.id, ns)
        return opts.id
    return unique_id(doc, src_id)


def _duplicate_tag(document: ServiceDocument, tag_id: str, opts: DuplicateOptions) -> MutationResult:
    doc = document.clone()
    src = require_tag(doc, tag_id, context="duplicate")
    new_id = _forced_or_unique(doc, src.id, opts, "tag")
    label = opts.label_strategy(src.label or new_id)
    position = next(i for i, t in enumerate(doc.tags) if t.id == tag_id)

    if not opts.with_children:
        clone = src.model_copy(deep=True, update={"id": new_id, "label": label})
        doc.tags.insert(position + 1, clone)
        return MutationResult(doc, new_id)

    subtree: list[Tag] = []

    def collect(tag: Tag) -> None:
        subtree.append(tag)
        for child in doc.tags:
            if child.parent_id == tag.id:
                collect(child)

    collect(src)

    id_map = {src.id: new_id}
    for node in subtree[1:]:
        id_map[node.id] = unique_id(doc, node.id, extra_taken=id_map.values())

    clones = []
    for node in subtree:
        clone = node.model_copy(deep=True)
        clone.id = id_map[node.id]
        clone.label = label if node.id == src.id else opts.label_strategy(node.label or node.id)
        if node.parent_id is not None:
            clone.parent_id = id_map.get(node.parent_id, node.parent_id)
        clones.append(clone)

    # Root right after the original; descendants appended parent-before-child.
    doc.tags.insert(position + 1, clones[0])
    doc.tags.extend(clones[1:])
    log.debug("tag_subtree_duplicated", tag_id=tag_id, new_id=new_id, size=len(clones))
    return MutationResult(doc, new_id)


def _unique_field_name(doc: ServiceDocument, name: str | None) -> str | None:
    if not name:
        return None
    taken = {f.name for f in doc.fields if f.name}
    while name in taken:
        name = bump_suffix(name)
    return name


def _duplicate_field(
    document: ServiceDocument, field_id: str, opts: DuplicateOptions
) -> MutationResult:
    doc = document.clone()
    src = require_field(doc, field_id, context="duplicate")
    new_id = _forced_or_unique(doc, src.id, opts, "field")
    position = next(i for i, f in enumerate(doc.fields) if f.id == field_id)

    option_map: dict[str, str] = {}
    cloned_options: list[Option] = []
    for opt in src.options or []:
        oid = unique_option_id(
            doc,
            opts.option_id_strategy(opt.id),
            extra_taken={new_id, *option_map.values()},
        )
        option_map[opt.id] = oid
        cloned_options.append(
            opt.model_copy(deep=True, update={"id": oid, "label": opts.label_strategy(opt.label or opt.id)})
        )

    clone = src.model_copy(deep=True)
    clone.id = new_id
    clone.label = opts.label_strategy(src.label or new_id)
    clone.name = _unique_field_name(doc, opts.name_strategy(src.name))
    clone.options = cloned_options or None
    if not opts.copy_bindings:
        clone.bound_tag_ids = None
    doc.fields.insert(position + 1, clone)

    if opts.copy_bindings and doc.order_for_tags:
        for tid, ordered in doc.order_for_tags.items():
            if field_id in ordered and tid in clone.tag_ids:
                ordered.insert(ordered.index(field_id) + 1, new_id)

    if opts.copy_includes_excludes:
        for tag in doc.tags:
            if field_id in (tag.includes or []):
                tag.includes = _with(tag.includes, new_id)
            if field_id in (tag.excludes or []):
                tag.excludes = _with(tag.excludes, new_id)

    if opts.copy_option_maps:
        key_map = {field_id: new_id, **option_map}
        key_map.update(
            {
                format_option_key(field_id, old): format_option_key(new_id, new)
                for old, new in option_map.items()
            }
        )
        for map_key in (*BUTTON_MAP_KEYS, *OPTION_MAP_KEYS):
            mapping = getattr(doc, map_key)
            for key, targets in list((mapping or {}).items()):
                if key in key_map:
                    mapping = _merge_into(mapping, key_map[key], targets)
            setattr(doc, map_key, mapping)

    return MutationResult(doc, new_id)


def _duplicate_option(
    document: ServiceDocument, field_id: str, option_id: str, opts: DuplicateOptions
) -> MutationResult:
    doc = document.clone()
    fld = require_field(doc, field_id, context="duplicate")
    options = fld.options or []
    index = next(i for i, o in enumerate(options) if o.id == option_id)
    src = options[index]

    if opts.id is not None:
        _check_new_id(doc, opts.id, "option")
        new_id = opts.id
    else:
        new_id = unique_option_id(doc, opts.option_id_strategy(src.id))
    clone = src.model_copy(deep=True, update={"id": new_id, "label": opts.label_strategy(src.label or src.id)})
    options.insert(index + 1, clone)
    fld.options = options

    # Option-level maps are only copied on request.
    if opts.copy_option_maps:
        key_map = {
            option_id: new_id,
            format_option_key(field_id, option_id): format_option_key(field_id, new_id),
        }
        for map_key in (*BUTTON_MAP_KEYS, *OPTION_MAP_KEYS):
            mapping = getattr(doc, map_key)
            for key, targets in list((mapping or {}).items()):
                if key in key_map:
                    mapping = _merge_into(mapping, key_map[key], targets)
            setattr(doc, map_key, mapping)

    return MutationResult(doc, new_id)


# -----------------------------------------------------------------------------
# Placement
# -----------------------------------------------------------------------------


def place_tag(
    document: ServiceDocument,
    tag_id: str,
    *,
    index: int | None = None,
    before_id: str | None = None,
    after_id: str | None = None,
) -> MutationResult:
    """Reorder a tag among its siblings (tags sharing its parent).

    The sibling group keeps the slots it occupied in the tag list, so tags
    in other groups do not move.
    """
    doc = document.clone()
    current = require_tag(doc, tag_id, context="place_tag")
    group = [t for t in doc.tags if t.parent_id == current.parent_id]
    group = [t for t in group if t.id != tag_id]
    dest = _destination([t.id for t in group], index, before_id, after_id)
    group.insert(dest, current)

    reordered = iter(group)
    doc.tags = [next(reordered) if t.parent_id == current.parent_id else t for t in doc.tags]
    return MutationResult(doc, tag_id)


def place_field(
    document: ServiceDocument,
    field_id: str,
    scope_tag_id: str | None,
    *,
    index: int | None = None,
    before_id: str | None = None,
    after_id: str | None = None,
) -> MutationResult:
    """Reorder a field inside a tag's field ordering list.

    Raises:
        InvalidEditError: If no scope tag is given.
    """
    if not scope_tag_id:
        raise InvalidEditError("place_field: scope_tag_id is required")
    doc = document.clone()
    require_field(doc, field_id, context="place_field")
    require_tag(doc, scope_tag_id, context="place_field - scope tag")

    order = dict(doc.order_for_tags or {})
    ordered = [fid for fid in order.get(scope_tag_id, []) if fid != field_id]
    ordered.insert(_destination(ordered, index, before_id, after_id), field_id)
    order[scope_tag_id] = ordered
    doc.order_for_tags = order
    return MutationResult(doc, field_id)


def place_option(
    document: ServiceDocument,
    option_id: str,
    *,
    index: int | None = None,
    before_id: str | None = None,
    after_id: str | None = None,
) -> MutationResult:
    """Reorder an option inside its field's option list."""
    doc = document.clone()
    fld, opt = require_option(doc, option_id, context="place_option")
    options = [o for o in fld.options or [] if o.id != option_id]
    options.insert(_destination([o.id for o in options], index, before_id, after_id), opt)
    fld.options = options
    return MutationResult(doc, option_id)


def place_node(
    document: ServiceDocument,
    node: NodeRef | str,
    *,
    scope_tag_id: str | None = None,
    index: int | None = None,
    before_id: str | None = None,
    after_id: str | None = None,
) -> MutationResult:
    """Reorder any node: tags among siblings, fields within a tag, options within a field."""
    ref = resolve_ref(document, node)
    if isinstance(ref, TagRef):
        return place_tag(document, ref.id, index=index, before_id=before_id, after_id=after_id)
    if isinstance(ref, FieldRef):
        return place_field(
            document, ref.id, scope_tag_id, index=index, before_id=before_id, after_id=after_id
        )
    return place_option(document, ref.id, index=index, before_id=before_id, after_id=after_id)


# -----------------------------------------------------------------------------
# Connect / disconnect
# -----------------------------------------------------------------------------


def connect(
    document: ServiceDocument,
    kind: str,
    source: NodeRef | ServiceId,
    target: NodeRef | str,
    *,
    checker: ServiceChecker | None = None,
) -> MutationResult:
    """Create a wire between two endpoints.

    Routes:
        - bind tag→tag: *target* becomes a child of *source* (cycle-checked).
        - bind tag↔field: the tag joins the field's bound tags.
        - include/exclude tag→field: the tag's include/exclude list.
        - include/exclude option→field: the option-keyed map.
        - service service→tag|option: map the service id onto the node,
          after the injected existence check.

    Raises:
        UnsupportedRouteError: For unknown kinds or endpoint combinations.
        CycleError: If a tag bind would make a tag its own ancestor.
        ServiceCheckerMissingError: If a service wire has no checker.
        ServiceNotFoundError: If the checker rejects the service id.
    """
    if kind not in WIRE_KINDS:
        raise UnsupportedRouteError(kind)
    if kind == "service":
        return _wire_service(document, source, target, checker, attach=True)

    doc = document.clone()
    src = resolve_ref(doc, source)  # type: ignore[arg-type]
    dst = resolve_ref(doc, target)

    if kind == "bind":
        if isinstance(src, TagRef) and isinstance(dst, TagRef):
            if would_create_cycle(doc, src.id, dst.id):
                raise CycleError(src.id, dst.id)
            require_tag(doc, dst.id).parent_id = src.id
            return MutationResult(doc, dst.id)
        pair = _tag_field_pair(src, dst)
        if pair is None:
            raise UnsupportedRouteError(kind, src.id, dst.id)
        tag_id, field_id = pair
        fld = require_field(doc, field_id)
        if fld.bound_tag_ids is None:
            fld.bound_tag_ids = tag_id
        elif isinstance(fld.bound_tag_ids, str):
            if fld.bound_tag_ids != tag_id:
                fld.bound_tag_ids = [fld.bound_tag_ids, tag_id]
        else:
            fld.bound_tag_ids = _with(fld.bound_tag_ids, tag_id)
        return MutationResult(doc, field_id)

    attr = "includes" if kind == "include" else "excludes"
    if isinstance(src, TagRef) and isinstance(dst, FieldRef):
        tag = require_tag(doc, src.id)
        setattr(tag, attr, _with(getattr(tag, attr), dst.id))
        return MutationResult(doc, src.id)
    if isinstance(src, OptionRef) and isinstance(dst, FieldRef):
        map_key = f"{attr}_for_options"
        mapping = dict(getattr(doc, map_key) or {})
        mapping[src.id] = _with(mapping.get(src.id), dst.id)
        setattr(doc, map_key, mapping)
        return MutationResult(doc, src.id)
    raise UnsupportedRouteError(kind, src.id, dst.id)


def disconnect(
    document: ServiceDocument,
    kind: str,
    source: NodeRef | ServiceId,
    target: NodeRef | str,
    *,
    checker: ServiceChecker | None = None,
) -> MutationResult:
    """Remove a wire created by :func:`connect`. Missing wires are a no-op."""
    if kind not in WIRE_KINDS:
        raise UnsupportedRouteError(kind)
    if kind == "service":
        return _wire_service(document, source, target, checker, attach=False)

    doc = document.clone()
    src = resolve_ref(doc, source)  # type: ignore[arg-type]
    dst = resolve_ref(doc, target)

    if kind == "bind":
        if isinstance(src, TagRef) and isinstance(dst, TagRef):
            child = require_tag(doc, dst.id)
            if child.parent_id == src.id:
                child.parent_id = None
            return MutationResult(doc, dst.id)
        pair = _tag_field_pair(src, dst)
        if pair is None:
            raise UnsupportedRouteError(kind, src.id, dst.id)
        tag_id, field_id = pair
        fld = require_field(doc, field_id)
        if isinstance(fld.bound_tag_ids, str):
            if fld.bound_tag_ids == tag_id:
                fld.bound_tag_ids = None
        else:
            fld.bound_tag_ids = _without(fld.bound_tag_ids, {tag_id})
        return MutationResult(doc, field_id)

    attr = "includes" if kind == "include" else "excludes"
    if isinstance(src, TagRef) and isinstance(dst, FieldRef):
        tag = require_tag(doc, src.id)
        setattr(tag, attr, _without(getattr(tag, attr), {dst.id}))
        return MutationResult(doc, src.id)
    if isinstance(src, OptionRef) and isinstance(dst, FieldRef):
        map_key = f"{attr}_for_options"
        mapping = getattr(doc, map_key)
        if mapping and src.id in mapping:
            mapping = dict(mapping)
            mapping[src.id] = [fid for fid in mapping[src.id] if fid != dst.id]
        setattr(doc, map_key, _prune_map(mapping))
        return MutationResult(doc, src.id)
    raise UnsupportedRouteError(kind, src.id, dst.id)


def _tag_field_pair(src: NodeRef, dst: NodeRef) -> tuple[str, str] | None:
    if isinstance(src, TagRef) and isinstance(dst, FieldRef):
        return src.id, dst.id
    if isinstance(src, FieldRef) and isinstance(dst, TagRef):
        return dst.id, src.id
    return None


def _wire_service(
    document: ServiceDocument,
    service_id: Any,
    target: NodeRef | str,
    checker: ServiceChecker | None,
    *,
    attach: bool,
) -> MutationResult:
    if isinstance(service_id, TagRef | FieldRef | OptionRef):
        raise UnsupportedRouteError("service", service_id.id, str(target))
    ensure_service_exists(checker, service_id)
    ref = resolve_ref(document, target)
    if isinstance(ref, FieldRef):
        raise UnsupportedRouteError("service", str(service_id), ref.id)
    return set_service(document, ref, service_id if attach else None)


__all__ = [
    "DuplicateOptions",
    "MutationResult",
    "UNSET",
    "WIRE_KINDS",
    "WireKind",
    "add_field",
    "add_option",
    "add_tag",
    "clear_field_quantity_rule",
    "connect",
    "disconnect",
    "duplicate",
    "get_field_quantity_rule",
    "normalize_quantity_rule",
    "place_field",
    "place_node",
    "place_option",
    "place_tag",
    "relabel",
    "remove_field",
    "remove_option",
    "remove_tag",
    "set_constraint",
    "set_field_name",
    "set_field_quantity_rule",
    "set_service",
    "update_field",
    "update_option",
    "update_tag",
]
