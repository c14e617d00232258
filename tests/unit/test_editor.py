"""Tests for the transactional editor."""

from __future__ import annotations

from typing import Any

import pytest

from servicegraph.editor import (
    CanvasLayout,
    Command,
    Editor,
    EditorOptions,
    NullCanvas,
)
from servicegraph.editor import events
from servicegraph.graph import mutations
from servicegraph.graph.errors import (
    CycleError,
    EditorError,
    NodeNotFoundError,
    ServiceNotFoundError,
)
from servicegraph.graph.mutations import MutationResult
from servicegraph.graph.refs import OptionRef
from servicegraph.graph.store import InMemoryDocumentStore
from servicegraph.models.document import ServiceDocument
from servicegraph.policy.models import VisibleGroupContext


def _record(editor: Editor, *names: str) -> list[tuple[str, dict[str, Any]]]:
    seen: list[tuple[str, dict[str, Any]]] = []
    for name in names:
        editor.bus.subscribe(name, lambda payload, name=name: seen.append((name, payload)))
    return seen


class RecordingCanvas(NullCanvas):
    """Canvas whose positions are captured into snapshots."""

    def __init__(self) -> None:
        super().__init__()
        self.positions: dict[str, tuple[float, float]] = {}

    def snapshot_layout(self) -> CanvasLayout | None:
        return CanvasLayout(positions=dict(self.positions))

    def set_positions(self, positions: dict[str, tuple[float, float]]) -> None:
        self.positions = positions


class TestExec:
    """Test command execution and failure recovery."""

    def test_add_and_undo_redo(self, editor: Editor) -> None:
        tag_id = editor.add_tag({"label": "New", "parent_id": "t:1"})
        assert tag_id == "t:3"
        assert editor.can_undo

        assert editor.undo()
        assert editor.get_node("t:3") is None
        assert editor.can_redo

        assert editor.redo()
        node = editor.get_node("t:3")
        assert node is not None
        assert node.parent_tag_id == "t:1"

    def test_round_trip_reproduces_each_state(self, editor: Editor) -> None:
        """N edits, N undos, N redos visit the same documents."""
        states = [editor.document]
        editor.add_tag({"label": "A"})
        states.append(editor.document)
        editor.relabel("f:1", "Pace")
        states.append(editor.document)
        editor.remove("o:1")
        states.append(editor.document)

        for expected in reversed(states[:-1]):
            assert editor.undo()
            assert editor.document == expected
        assert not editor.undo()
        for expected in states[1:]:
            assert editor.redo()
            assert editor.document == expected
        assert not editor.redo()

    def test_events_emitted(self, editor: Editor) -> None:
        seen = _record(editor, events.COMMAND, events.CHANGE, events.UNDO)
        editor.relabel("t:1", "Top")
        editor.undo()

        assert [name for name, _ in seen] == [
            events.COMMAND,
            events.CHANGE,
            events.UNDO,
            events.CHANGE,
        ]
        assert seen[0][1] == {"name": "relabel"}
        change = seen[1][1]
        assert change["reason"] == "mutation"
        assert change["command"] == "relabel"
        assert change["document"].tags[0].label == "Top"
        assert seen[2][1] == {"stack_size": 2, "index": 0}
        assert seen[3][1]["reason"] == "undo"

    def test_cycle_rejected_leaves_document(self, editor: Editor) -> None:
        """A failing command restores the document and reports the error."""
        before = editor.document
        errors = _record(editor, events.ERROR)

        with pytest.raises(CycleError):
            editor.update_tag("t:1", {"parent_id": "t:2"})

        assert editor.document == before
        assert editor.history_size == 1
        assert errors[0][1]["code"] == "command"
        assert errors[0][1]["meta"] == {"command": "update_tag"}

    def test_failed_command_restores_partial_write(self, editor: Editor) -> None:
        before = editor.document

        def do() -> None:
            editor.store.replace_document(ServiceDocument())
            raise RuntimeError("half way")

        with pytest.raises(RuntimeError):
            editor.exec(Command("custom", do))
        assert editor.document == before

    def test_exec_returns_result(self, editor: Editor) -> None:
        assert editor.exec(Command("noop", lambda: 42)) == 42

    def test_history_limit(self) -> None:
        editor = Editor(InMemoryDocumentStore(), options=EditorOptions(history_limit=3))
        for i in range(5):
            editor.add_tag({"label": f"T{i}"})

        undos = 0
        while editor.undo():
            undos += 1
        assert undos == 2
        assert [t.label for t in editor.document.tags] == ["T0", "T1", "T2"]


class TestTransactions:
    """Test atomic multi-step edits."""

    def test_commit_once(self, editor: Editor) -> None:
        changes = _record(editor, events.CHANGE)
        with editor.transaction("batch"):
            editor.add_tag({"label": "A"})
            editor.relabel("t:1", "Top")
            assert editor.in_transaction

        assert editor.history_size == 2
        assert [c[1]["reason"] for c in changes] == ["transaction"]
        assert editor.undo()
        assert editor.document.tags[0].label == "Root"
        assert len(editor.document.tags) == 2

    def test_failure_rolls_back(self, editor: Editor) -> None:
        before = editor.document
        with pytest.raises(RuntimeError, match="boom"):
            with editor.transaction("batch"):
                editor.add_tag({"label": "A"})
                editor.remove_field("f:1")
                raise RuntimeError("boom")

        assert editor.document == before
        assert editor.history_size == 1
        assert not editor.in_transaction

    def test_failing_command_reports_error(self, editor: Editor) -> None:
        """A command failing mid-transaction still emits ``editor:error``."""
        before = editor.document
        errors = _record(editor, events.ERROR)

        with pytest.raises(NodeNotFoundError):
            with editor.transaction("batch"):
                editor.relabel("t:1", "Top")
                editor.remove_tag("nope")

        assert editor.document == before
        assert editor.history_size == 1
        assert len(errors) == 1
        assert errors[0][1]["code"] == "command"
        assert errors[0][1]["meta"] == {"command": "remove_tag"}

    def test_nested_commits_at_outermost(self, editor: Editor) -> None:
        with editor.transaction("outer"):
            with editor.transaction("inner"):
                editor.relabel("t:1", "A")
            editor.relabel("t:2", "B")
        assert editor.history_size == 2

    def test_undo_refused_inside(self, editor: Editor) -> None:
        editor.relabel("t:1", "A")
        with editor.transaction("batch"):
            assert not editor.undo()
            assert not editor.redo()

    def test_transact_returns_value(self, editor: Editor) -> None:
        new_id = editor.transact("add", lambda: editor.add_tag({"label": "A"}))
        assert new_id == "t:3"


class TestValidateAfterEach:
    def test_reason_is_validate(self, store: InMemoryDocumentStore) -> None:
        editor = Editor(store, options=EditorOptions(validate_after_each=True))
        changes = _record(editor, events.CHANGE)
        editor.relabel("t:1", "A")
        assert changes[0][1]["reason"] == "validate"

    def test_invariant_failures_reported(self, document: ServiceDocument) -> None:
        document.fields[1].name = "speed"
        editor = Editor(
            InMemoryDocumentStore(document), options=EditorOptions(validate_after_each=True)
        )
        errors = _record(editor, events.ERROR)

        editor.relabel("t:1", "A")

        assert errors[0][1]["code"] == "invariant"
        assert errors[0][1]["meta"] == {"check": "unique_field_names"}


class TestNodes:
    """Test node lookups and node-level commands."""

    def test_get_node_kinds(self, editor: Editor) -> None:
        tag = editor.get_node("t:2")
        fld = editor.get_node("f:1")
        opt = editor.get_node("o:2")
        assert tag is not None and tag.kind == "tag" and tag.parent_tag_id == "t:1"
        assert fld is not None and fld.bound_tag_ids == ["t:1"]
        assert opt is not None and opt.field_id == "f:1"
        assert opt.data["label"] == "Express fee"
        assert editor.get_node("nope") is None

    def test_remove_dispatches(self, editor: Editor) -> None:
        editor.remove("o:1")
        editor.remove("t:2")
        assert editor.get_node("o:1") is None
        assert editor.get_node("t:2") is None

    def test_remove_unknown(self, editor: Editor) -> None:
        with pytest.raises(NodeNotFoundError):
            editor.remove("nope")

    def test_duplicate_returns_id(self, editor: Editor) -> None:
        new_id = editor.duplicate(OptionRef("f:1", "o:1"))
        assert new_id == "o:1_copy"

    def test_duplicate_tag_avoids_option_ids(self) -> None:
        """A tag copy skips ids already held by options."""
        document = ServiceDocument.model_validate(
            {
                "tags": [{"id": "basic", "label": "Basic"}],
                "fields": [
                    {
                        "id": "f",
                        "label": "F",
                        "type": "select",
                        "options": [{"id": "basic_copy", "label": "Copy"}],
                    }
                ],
            }
        )
        editor = Editor(InMemoryDocumentStore(document))

        assert editor.duplicate("basic") == "basic_copy2"
        editor.remove("basic_copy")

        assert [t.id for t in editor.document.tags] == ["basic", "basic_copy2"]
        assert editor.document.fields[0].options is None

    def test_duplicate_without_created_id(
        self, editor: Editor, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A mutation that reports no new id raises instead of returning None."""
        monkeypatch.setattr(
            mutations, "duplicate", lambda doc, node, opts: MutationResult(doc.clone())
        )
        with pytest.raises(EditorError):
            editor.duplicate("t:1")

    def test_set_pricing_role_only(self, editor: Editor) -> None:
        """Omitting the service id keeps the current mapping."""
        editor.set_service("o:1", pricing_role="base")
        node = editor.get_node("o:1")
        assert node is not None
        assert node.data["service_id"] == 100

        editor.set_service("o:1", None)
        node = editor.get_node("o:1")
        assert node is not None
        assert "service_id" not in node.data

    def test_violation_emitted(self, editor: Editor) -> None:
        """Rule violations are reported and the edit still commits."""
        errors = _record(editor, events.ERROR)
        violations = editor.set_service("o:2", 100)

        assert [v.code for v in violations] == ["utility_service_conflict"]
        assert errors[0][1]["code"] == "utility_service_conflict"
        assert editor.history_size == 2

    def test_set_field_name_violation(self, editor: Editor) -> None:
        violations = editor.set_field_name("f:2", "boost")
        assert violations[0].code == "field_has_service_mapping"

    def test_quantity_rule(self, editor: Editor) -> None:
        editor.set_field_quantity_rule("f:1", {"value_by": "length"})
        assert editor.get_field_quantity_rule("f:1") == {"value_by": "length"}
        editor.clear_field_quantity_rule("f:1")
        assert editor.get_field_quantity_rule("f:1") is None


class TestServiceWires:
    def test_connect_checks_existence(self, editor: Editor) -> None:
        editor.connect("service", 104, "o:1")
        node = editor.get_node("o:1")
        assert node is not None
        assert node.data["service_id"] == 104

    def test_unknown_service_rejected(self, editor: Editor) -> None:
        errors = _record(editor, events.ERROR)
        with pytest.raises(ServiceNotFoundError):
            editor.connect("service", 999, "o:1")
        assert errors[0][1]["meta"] == {"command": "connect:service"}

    def test_disconnect_clears(self, editor: Editor) -> None:
        editor.disconnect("service", 100, "o:1")
        node = editor.get_node("o:1")
        assert node is not None
        assert "service_id" not in node.data


class TestCanvas:
    def test_layout_restored_on_undo(self, store: InMemoryDocumentStore) -> None:
        canvas = RecordingCanvas()
        editor = Editor(store, canvas=canvas)

        canvas.positions = {"t:1": (1.0, 2.0)}
        editor.relabel("t:1", "A")
        canvas.positions = {"t:1": (5.0, 5.0)}

        editor.undo()
        assert canvas.positions == {}
        editor.redo()
        assert canvas.positions == {"t:1": (1.0, 2.0)}

    def test_null_canvas_refreshed(self, editor: Editor) -> None:
        assert isinstance(editor.canvas, NullCanvas)
        editor.relabel("t:1", "A")
        editor.undo()
        assert editor.canvas.refresh_count == 1


class TestFilterServices:
    """Test candidate filtering through the editor."""

    def test_inherits_constraints(self, editor: Editor) -> None:
        ctx = VisibleGroupContext(tag_id="t:2", used_service_ids=[100])
        checks = {c.id: c for c in editor.filter_services_for_visible_group([102, 103], ctx)}
        assert checks[102].ok
        assert checks[103].reasons == ["constraint_mismatch"]

    def test_records_diagnostics(self, editor: Editor) -> None:
        ctx = VisibleGroupContext(tag_id="t:1", used_service_ids=[], policies=[{"op": "bogus"}])
        editor.filter_services_for_visible_group([102], ctx)
        diagnostics = editor.last_policy_diagnostics
        assert any(d.severity == "error" and d.path == "op" for d in diagnostics)

        editor.filter_services_for_visible_group([102], VisibleGroupContext("t:1", []))
        assert editor.last_policy_diagnostics == []
