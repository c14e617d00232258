"""Pydantic models for service graph documents."""

from servicegraph.models.document import (
    CONSTRAINT_FLAGS,
    ConstraintFlag,
    Constraints,
    Field,
    Option,
    PricingRole,
    ServiceDocument,
    ServiceId,
    Tag,
)

__all__ = [
    "CONSTRAINT_FLAGS",
    "ConstraintFlag",
    "Constraints",
    "Field",
    "Option",
    "PricingRole",
    "ServiceDocument",
    "ServiceId",
    "Tag",
]
