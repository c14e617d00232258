"""Document graph: lookups, ids, references, mutations and invariants."""

from servicegraph.graph.context import effective_constraints
from servicegraph.graph.errors import (
    CycleError,
    EditorError,
    FieldNameCollisionError,
    IdExhaustedError,
    InvalidEditError,
    NodeExistsError,
    NodeNotFoundError,
    ServiceCheckerMissingError,
    ServiceNotFoundError,
    UnsupportedRouteError,
    Violation,
)
from servicegraph.graph.mutations import DuplicateOptions, MutationResult
from servicegraph.graph.refs import FieldRef, NodeRef, OptionRef, TagRef, resolve_ref
from servicegraph.graph.services import (
    CapabilityMapChecker,
    PredicateChecker,
    ServiceChecker,
)
from servicegraph.graph.store import DocumentStore, InMemoryDocumentStore
from servicegraph.graph.validation import InvariantReport, check_invariants

__all__ = [
    "CapabilityMapChecker",
    "CycleError",
    "DocumentStore",
    "DuplicateOptions",
    "EditorError",
    "FieldNameCollisionError",
    "FieldRef",
    "IdExhaustedError",
    "InMemoryDocumentStore",
    "InvalidEditError",
    "InvariantReport",
    "MutationResult",
    "NodeExistsError",
    "NodeNotFoundError",
    "NodeRef",
    "OptionRef",
    "PredicateChecker",
    "ServiceChecker",
    "ServiceCheckerMissingError",
    "ServiceNotFoundError",
    "TagRef",
    "UnsupportedRouteError",
    "Violation",
    "check_invariants",
    "effective_constraints",
    "resolve_ref",
]
