"""Tests for the in-memory document store and service checkers."""

from __future__ import annotations

import pytest

from servicegraph.graph.errors import ServiceCheckerMissingError, ServiceNotFoundError
from servicegraph.graph.services import (
    CapabilityMapChecker,
    PredicateChecker,
    ServiceChecker,
    ensure_service_exists,
)
from servicegraph.graph.store import DocumentStore, InMemoryDocumentStore, capability_map_from
from servicegraph.models.document import ServiceDocument


class TestInMemoryDocumentStore:
    """Test copy semantics and the protocol."""

    def test_is_runtime_checkable(self) -> None:
        assert isinstance(InMemoryDocumentStore(), DocumentStore)

    def test_get_returns_copy(self, document: ServiceDocument) -> None:
        """Mutating a fetched document does not touch the store."""
        store = InMemoryDocumentStore(document)
        fetched = store.get_document()
        fetched.tags[0].label = "Changed"
        assert store.get_document().tags[0].label == "Root"

    def test_replace_copies_and_counts(self, document: ServiceDocument) -> None:
        """Replaced documents are copied and bump the revision."""
        store = InMemoryDocumentStore()
        store.replace_document(document)
        document.tags.clear()
        assert len(store.get_document().tags) == 2
        assert store.revision == 1

    def test_accepts_dict(self) -> None:
        store = InMemoryDocumentStore({"tags": [{"id": "t:1", "label": "A"}]})
        assert store.get_document().tags[0].id == "t:1"


class TestCapabilityMap:
    def test_keys_normalised(self) -> None:
        """Integer keys become strings and fill in missing ids."""
        caps = capability_map_from({7: {"rate": "2.5", "flavour": "x"}})
        assert caps["7"].id == 7
        assert caps["7"].rate == 2.5
        assert caps["7"].attribute("flavour") == "x"

    def test_store_returns_copies(self) -> None:
        store = InMemoryDocumentStore(capabilities={1: {"rate": 1}})
        store.get_service_capability_map()["1"].rate = 99
        assert store.get_service_capability_map()["1"].rate == 1


class TestServiceCheckers:
    def test_capability_checker_compares_strings(self) -> None:
        checker = CapabilityMapChecker({100: {}})
        assert isinstance(checker, ServiceChecker)
        assert checker.exists("100")
        assert not checker.exists(101)

    def test_predicate_checker(self) -> None:
        checker = PredicateChecker(lambda sid: sid == 5)
        assert checker.exists(5)
        assert not checker.exists(6)

    def test_missing_checker(self) -> None:
        with pytest.raises(ServiceCheckerMissingError, match="service_checker_missing"):
            ensure_service_exists(None, 1)

    def test_unknown_service(self) -> None:
        with pytest.raises(ServiceNotFoundError, match="service_not_found:9"):
            ensure_service_exists(PredicateChecker(lambda _: False), 9)
