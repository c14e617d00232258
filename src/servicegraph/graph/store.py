"""Document store protocol and in-memory implementation.

The DocumentStore protocol defines what the editor needs from the host's
canonical document holder. The editor always works on a clone: it reads the
document, transforms a copy, and replaces the stored document as one unit.
Stores are free to recompute derived state on replace.

InMemoryDocumentStore is the default backend, holding the document and the
service capability map in memory.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from servicegraph.models.document import ServiceDocument
from servicegraph.observability.logging import get_logger
from servicegraph.policy.models import ServiceCapability

if TYPE_CHECKING:
    from collections.abc import Mapping

log = get_logger(__name__)

CapabilityMap = dict[str, ServiceCapability]


@runtime_checkable
class DocumentStore(Protocol):
    """Storage backend protocol for the editor.

    Implementations must never hand out a live reference to their document:
    ``get_document`` returns a copy the caller may freely mutate.
    """

    def get_document(self) -> ServiceDocument:
        """Return a deep copy of the current document."""
        ...

    def replace_document(self, document: ServiceDocument) -> None:
        """Install *document* as the current document."""
        ...

    def get_service_capability_map(self) -> CapabilityMap:
        """Return known service capabilities keyed by service id string."""
        ...


def capability_map_from(raw: Mapping[Any, Any] | None) -> CapabilityMap:
    """Build a capability map from raw records keyed by service id.

    Keys are normalised to strings so that ``1`` and ``"1"`` address the
    same service. Records missing an ``id`` take it from their key.
    """
    out: CapabilityMap = {}
    for key, record in (raw or {}).items():
        if isinstance(record, ServiceCapability):
            cap = record
        else:
            data = dict(record)
            data.setdefault("id", key)
            cap = ServiceCapability.model_validate(data)
        out[str(key)] = cap
    return out


class InMemoryDocumentStore:
    """In-memory document store.

    Copies on the way in and on the way out, so neither the editor nor the
    host can alias the stored document.
    """

    def __init__(
        self,
        document: ServiceDocument | dict[str, Any] | None = None,
        capabilities: Mapping[Any, Any] | None = None,
    ) -> None:
        if document is None:
            self._document = ServiceDocument()
        elif isinstance(document, ServiceDocument):
            self._document = document.clone()
        else:
            self._document = ServiceDocument.model_validate(document)
        self._capabilities = capability_map_from(capabilities)
        self._revision = 0

    @property
    def revision(self) -> int:
        """Number of documents installed since construction."""
        return self._revision

    def get_document(self) -> ServiceDocument:
        return self._document.clone()

    def replace_document(self, document: ServiceDocument) -> None:
        self._document = document.clone()
        self._revision += 1
        log.debug(
            "document_replaced",
            revision=self._revision,
            tags=len(document.tags),
            fields=len(document.fields),
        )

    def get_service_capability_map(self) -> CapabilityMap:
        return {k: v.model_copy(deep=True) for k, v in self._capabilities.items()}
