"""Pydantic models for the service graph document.

The document is a forest of tags, a flat list of fields bound to tags, and
the options each field owns. Cross maps on the document hold per-tag field
ordering and the include/exclude wiring between buttons, options and fields.

Optional collections are stored as ``None`` rather than empty containers, so
that pruning a reference can drop the emptied key entirely.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

PricingRole = Literal["base", "utility"]
ConstraintFlag = Literal["refill", "cancel", "dripfeed"]
ServiceId = int | str

CONSTRAINT_FLAGS: tuple[ConstraintFlag, ...] = ("refill", "cancel", "dripfeed")

# Keys of the document-level maps, grouped by what their keys address.
BUTTON_MAP_KEYS = ("includes_for_buttons", "excludes_for_buttons")
OPTION_MAP_KEYS = ("includes_for_options", "excludes_for_options")


class Constraints(BaseModel):
    """Service constraint flags a tag requires of its services."""

    model_config = ConfigDict(extra="forbid")

    refill: bool | None = None
    cancel: bool | None = None
    dripfeed: bool | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, flag) is None for flag in CONSTRAINT_FLAGS)


class Tag(BaseModel):
    """Hierarchical scope node."""

    model_config = ConfigDict(extra="allow")

    id: str
    label: str
    parent_id: str | None = None
    service_id: ServiceId | None = None
    constraints: Constraints | None = None
    includes: list[str] | None = None
    excludes: list[str] | None = None
    meta: dict[str, Any] | None = None


class Option(BaseModel):
    """Selectable value owned by exactly one field."""

    model_config = ConfigDict(extra="allow")

    id: str
    label: str
    service_id: ServiceId | None = None
    pricing_role: PricingRole | None = None

    @property
    def is_utility(self) -> bool:
        return self.pricing_role == "utility"


class Field(BaseModel):
    """Input node bound to one or more tags.

    ``bound_tag_ids`` is a single tag id for the common case and is promoted
    to a list once the field is bound to a second tag.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    label: str
    type: str
    name: str | None = None
    bound_tag_ids: str | list[str] | None = None
    pricing_role: PricingRole | None = None
    service_id: ServiceId | None = None
    button: bool | None = None
    options: list[Option] | None = None
    meta: dict[str, Any] | None = None

    @property
    def tag_ids(self) -> list[str]:
        """Bound tag ids as a list, whatever the stored shape."""
        if self.bound_tag_ids is None:
            return []
        if isinstance(self.bound_tag_ids, str):
            return [self.bound_tag_ids]
        return list(self.bound_tag_ids)

    @property
    def has_options(self) -> bool:
        return bool(self.options)

    @property
    def is_utility(self) -> bool:
        return self.pricing_role == "utility"


class ServiceDocument(BaseModel):
    """The whole editable document.

    Attributes:
        tags: Tag forest, ordered; sibling order is the order of appearance.
        fields: All fields, ordered.
        order_for_tags: Field ordering per tag id.
        includes_for_buttons: Fields revealed by a button (field id, option
            id or ``field_id::option_id`` key).
        excludes_for_buttons: Fields hidden by a button, same keying.
        includes_for_options: Fields revealed by an option (option id key).
        excludes_for_options: Fields hidden by an option (option id key).
    """

    model_config = ConfigDict(extra="allow")

    tags: list[Tag] = []
    fields: list[Field] = []
    order_for_tags: dict[str, list[str]] | None = None
    includes_for_buttons: dict[str, list[str]] | None = None
    excludes_for_buttons: dict[str, list[str]] | None = None
    includes_for_options: dict[str, list[str]] | None = None
    excludes_for_options: dict[str, list[str]] | None = None
    schema_version: str | None = None

    def clone(self) -> ServiceDocument:
        """Return a deep, independent copy."""
        return self.model_copy(deep=True)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict, dropping unset optional keys."""
        return self.model_dump(mode="json", exclude_none=True)
