"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from servicegraph.editor import Editor, EditorOptions
from servicegraph.graph.services import CapabilityMapChecker
from servicegraph.graph.store import InMemoryDocumentStore
from servicegraph.models.document import ServiceDocument

SERVICE_MAP: dict[int, dict[str, Any]] = {
    # primary
    100: {"rate": 10, "dripfeed": True, "refill": True, "cancel": True, "platform_id": "p1", "handler_id": "h1"},
    101: {"rate": 12, "dripfeed": True, "refill": True, "cancel": True, "platform_id": "p1", "handler_id": "h1"},
    # cheaper than primary
    102: {"rate": 8, "dripfeed": True, "refill": False, "cancel": True, "platform_id": "p1", "handler_id": "h1"},
    # no dripfeed
    103: {"rate": 9, "dripfeed": False, "refill": True, "cancel": True, "platform_id": "p1", "handler_id": "h1"},
    # more expensive than primary
    104: {"rate": 15, "dripfeed": True, "refill": True, "cancel": True, "platform_id": "p1", "handler_id": "h1"},
    # other platform
    201: {"rate": 9, "dripfeed": True, "refill": True, "cancel": True, "platform_id": "p2", "handler_id": "h1"},
    202: {"rate": 9, "dripfeed": True, "refill": True, "cancel": True, "platform_id": "p1", "handler_id": "h2"},
}


def sample_document() -> ServiceDocument:
    """Two-level tag tree with a button field and an option field.

    t:1 "Root"
      t:2 "Child" (dripfeed required)
    f:1 "Speed" bound to t:1, options o:1 (base, service 100) and o:2 (utility)
    f:2 "Boost" button bound to t:2, service 101
    """
    return ServiceDocument.model_validate(
        {
            "tags": [
                {"id": "t:1", "label": "Root"},
                {"id": "t:2", "label": "Child", "parent_id": "t:1", "constraints": {"dripfeed": True}},
            ],
            "fields": [
                {
                    "id": "f:1",
                    "label": "Speed",
                    "type": "select",
                    "name": "speed",
                    "bound_tag_ids": "t:1",
                    "options": [
                        {"id": "o:1", "label": "Fast", "service_id": 100},
                        {"id": "o:2", "label": "Express fee", "pricing_role": "utility"},
                    ],
                },
                {
                    "id": "f:2",
                    "label": "Boost",
                    "type": "button",
                    "button": True,
                    "bound_tag_ids": "t:2",
                    "service_id": 101,
                },
            ],
            "order_for_tags": {"t:1": ["f:1"], "t:2": ["f:2"]},
            "includes_for_buttons": {"f:2": ["f:1"]},
            "excludes_for_options": {"o:1": ["f:2"]},
        }
    )


@pytest.fixture
def document() -> ServiceDocument:
    return sample_document()


@pytest.fixture
def service_map() -> dict[int, dict[str, Any]]:
    return {k: dict(v) for k, v in SERVICE_MAP.items()}


@pytest.fixture
def store(document: ServiceDocument, service_map: dict[int, dict[str, Any]]) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(document, capabilities=service_map)


@pytest.fixture
def editor(store: InMemoryDocumentStore, service_map: dict[int, dict[str, Any]]) -> Editor:
    return Editor(store, service_checker=CapabilityMapChecker(service_map))


@pytest.fixture
def empty_editor() -> Editor:
    return Editor(InMemoryDocumentStore(), options=EditorOptions())
