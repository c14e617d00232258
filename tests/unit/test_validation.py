"""Tests for the document invariant audit."""

from __future__ import annotations

from servicegraph.graph.validation import (
    InvariantReport,
    check_acyclic_tags,
    check_invariants,
    check_references,
)
from servicegraph.models.document import ServiceDocument


class TestCheckInvariants:
    def test_sample_document_passes(self, document: ServiceDocument) -> None:
        report = check_invariants(document)
        assert not report.has_failures
        assert "failed" not in report.summary

    def test_empty_document_passes(self) -> None:
        assert not check_invariants(ServiceDocument()).has_failures

    def test_duplicate_field_names(self, document: ServiceDocument) -> None:
        document.fields[1].name = "speed"
        report = check_invariants(document)
        assert [c.name for c in report.failures] == ["unique_field_names"]

    def test_utility_with_service(self, document: ServiceDocument) -> None:
        assert document.fields[0].options is not None
        document.fields[0].options[1].service_id = 5
        report = check_invariants(document)
        assert [c.name for c in report.failures] == ["utility_without_service"]

    def test_option_field_with_service(self, document: ServiceDocument) -> None:
        document.fields[0].service_id = 5
        report = check_invariants(document)
        assert [c.name for c in report.failures] == ["option_field_without_service"]

    def test_duplicate_ids(self) -> None:
        doc = ServiceDocument.model_validate(
            {"tags": [{"id": "a", "label": "A"}, {"id": "a", "label": "B"}]}
        )
        report = check_invariants(doc)
        assert any(c.name == "unique_ids" for c in report.failures)


class TestCycles:
    def test_parent_loop_detected(self) -> None:
        """Both tags in a two-tag loop are reported."""
        doc = ServiceDocument.model_validate(
            {
                "tags": [
                    {"id": "a", "label": "A", "parent_id": "b"},
                    {"id": "b", "label": "B", "parent_id": "a"},
                ]
            }
        )
        failures = [c for c in check_acyclic_tags(doc) if c.severity == "fail"]
        assert len(failures) == 2

    def test_self_parent_detected(self) -> None:
        doc = ServiceDocument.model_validate({"tags": [{"id": "a", "label": "A", "parent_id": "a"}]})
        assert check_acyclic_tags(doc)[0].severity == "fail"


class TestReferences:
    """Test dangling-reference detection."""

    def test_unknown_bound_tag(self, document: ServiceDocument) -> None:
        document.fields[0].bound_tag_ids = "t:9"
        messages = [c.message for c in check_references(document)]
        assert any("unknown tag 't:9'" in m for m in messages)

    def test_unknown_map_entries(self, document: ServiceDocument) -> None:
        document.excludes_for_options = {"o:9": ["f:9"]}
        messages = [c.message for c in check_references(document) if c.severity == "fail"]
        assert len(messages) == 2

    def test_option_key_accepted_in_button_maps(self, document: ServiceDocument) -> None:
        """Button maps may be keyed by field::option."""
        document.includes_for_buttons = {"f:1::o:1": ["f:2"]}
        assert all(c.severity == "pass" for c in check_references(document))


class TestReport:
    def test_summary(self) -> None:
        report = InvariantReport()
        assert report.summary == ""
        assert not report.has_failures
