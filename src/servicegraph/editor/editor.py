"""The editor: commands, transactions and undo/redo over a document store.

Every edit goes through :meth:`Editor.exec`. A command reads a clone of the
stored document, computes a new document with a mutation from
:mod:`servicegraph.graph.mutations`, and replaces the stored document as one
unit. After a command (or the outermost transaction) succeeds, the editor
snapshots the document and view layout into the history and notifies
listeners on the event bus.

Failures never leave a half-applied edit behind: a failed command restores
the document it started from, and a failed transaction restores the
document from before the transaction.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from servicegraph.editor import events
from servicegraph.editor.canvas import NullCanvas, restore_layout
from servicegraph.editor.commands import Command
from servicegraph.editor.config import EditorOptions
from servicegraph.editor.events import EventBus
from servicegraph.editor.history import History, Snapshot
from servicegraph.graph import mutations
from servicegraph.graph.context import (
    effective_constraints,
    find_field,
    find_tag,
    owner_of_option,
)
from servicegraph.graph.errors import EditorError
from servicegraph.graph.refs import FieldRef, TagRef, resolve_ref
from servicegraph.graph.validation import check_invariants
from servicegraph.observability.logging import get_logger
from servicegraph.policy.compiler import compile_policies
from servicegraph.policy.evaluate import filter_services_for_visible_group

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    from servicegraph.editor.canvas import CanvasAPI
    from servicegraph.graph.errors import Violation
    from servicegraph.graph.mutations import DuplicateOptions, MutationResult
    from servicegraph.graph.refs import NodeRef
    from servicegraph.graph.services import ServiceChecker
    from servicegraph.graph.store import DocumentStore
    from servicegraph.models.document import ConstraintFlag, PricingRole, ServiceDocument, ServiceId
    from servicegraph.policy.models import PolicyDiagnostic, ServiceCheck, VisibleGroupContext

log = get_logger(__name__)


def _created_id(result: MutationResult) -> str:
    if result.node_id is None:
        raise EditorError("Mutation did not report the id of the node it created")
    return result.node_id


@dataclass
class NodeInfo:
    """Read-only view of one node and its owners.

    Attributes:
        kind: "tag", "field" or "option".
        id: The node id.
        data: The node's attributes (unset keys omitted).
        parent_tag_id: Tags only. The parent tag, if any.
        bound_tag_ids: Fields only. Tags the field is bound to.
        field_id: Options only. The owning field.
    """

    kind: str
    id: str
    data: dict[str, Any]
    parent_tag_id: str | None = None
    bound_tag_ids: list[str] = field(default_factory=list)
    field_id: str | None = None


class Editor:
    """Transactional editor with bounded undo/redo.

    Args:
        store: Holder of the canonical document.
        canvas: View hook for layout capture and refresh. Defaults to a
            headless canvas.
        options: Editor options. Defaults to :class:`EditorOptions()`.
        service_checker: Existence check for service wires.
        bus: Event bus for notifications. A private bus is created when
            omitted and exposed as :attr:`bus`.
    """

    def __init__(
        self,
        store: DocumentStore,
        canvas: CanvasAPI | None = None,
        options: EditorOptions | None = None,
        service_checker: ServiceChecker | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.store = store
        self.canvas: CanvasAPI = canvas or NullCanvas()
        self.options = options or EditorOptions()
        self.service_checker = service_checker
        self.bus = bus or EventBus()

        self._history = History(self._capture(), self.options.history_limit)
        self._tx_depth = 0
        self._last_policy_diagnostics: list[PolicyDiagnostic] = []

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    @property
    def document(self) -> ServiceDocument:
        """A copy of the current document."""
        return self.store.get_document()

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def history_size(self) -> int:
        return self._history.size

    @property
    def history_index(self) -> int:
        return self._history.index

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def exec(self, command: Command) -> Any:
        """Run a command and commit it to the history.

        Inside a transaction the command only runs; the transaction commits
        and notifies once at the end, and rolls back on failure. A failing
        command reports ``editor:error`` at any depth.

        Returns:
            Whatever ``command.do()`` returned.

        Raises:
            Exception: Whatever the command raised, after the document has
                been restored and ``editor:error`` emitted.
        """
        if self._tx_depth:
            try:
                return command.do()
            except Exception as exc:
                self._command_failed(command, exc)
                raise

        before = self.store.get_document()
        try:
            result = command.do()
        except Exception as exc:
            self.store.replace_document(before)
            self._command_failed(command, exc)
            raise

        reason = "validate" if self.options.validate_after_each else "mutation"
        self.bus.emit(events.COMMAND, {"name": command.name})
        self._commit(command.name, reason)
        return result

    def transact(self, label: str, fn: Callable[[], Any]) -> Any:
        """Run *fn* as one atomic, single-history-entry change.

        Returns:
            Whatever *fn* returned.
        """
        with self.transaction(label):
            return fn()

    @contextmanager
    def transaction(self, label: str) -> Iterator[Editor]:
        """Group edits into one atomic change.

        Re-entrant: only the outermost transaction snapshots, commits and
        notifies. Any exception escaping the outermost block restores the
        document from before the transaction and propagates.
        """
        before = self.store.get_document() if self._tx_depth == 0 else None
        self._tx_depth += 1
        try:
            yield self
        except Exception:
            if before is not None:
                self.store.replace_document(before)
                log.debug("transaction_rolled_back", label=label)
            raise
        finally:
            self._tx_depth -= 1

        if before is not None:
            self._commit(label, "transaction")

    def undo(self) -> bool:
        """Step back one history entry. Returns False when there is none."""
        if self._tx_depth:
            return False
        snapshot = self._history.undo()
        if snapshot is None:
            return False
        self._install(snapshot)
        self.bus.emit(
            events.UNDO, {"stack_size": self._history.size, "index": self._history.index}
        )
        self._notify_change("undo", None)
        return True

    def redo(self) -> bool:
        """Step forward one history entry. Returns False when there is none."""
        if self._tx_depth:
            return False
        snapshot = self._history.redo()
        if snapshot is None:
            return False
        self._install(snapshot)
        self.bus.emit(
            events.REDO, {"stack_size": self._history.size, "index": self._history.index}
        )
        self._notify_change("redo", None)
        return True

    def _capture(self) -> Snapshot:
        return Snapshot(self.store.get_document(), self.canvas.snapshot_layout())

    def _install(self, snapshot: Snapshot) -> None:
        self.store.replace_document(snapshot.document)
        restore_layout(self.canvas, snapshot.layout)

    def _commit(self, label: str, reason: str) -> None:
        self._history.push(self._capture())
        log.debug(
            "change_committed",
            label=label,
            reason=reason,
            history_size=self._history.size,
        )
        if self.options.validate_after_each:
            self._audit()
        self._notify_change(reason, label)

    def _audit(self) -> None:
        report = check_invariants(self.store.get_document())
        for check in report.failures:
            self.bus.emit(
                events.ERROR,
                {"message": check.message, "code": "invariant", "meta": {"check": check.name}},
            )

    def _notify_change(self, reason: str, command: str | None) -> None:
        self.bus.emit(
            events.CHANGE,
            {"document": self.store.get_document(), "reason": reason, "command": command},
        )

    def _command_failed(self, command: Command, exc: Exception) -> None:
        log.debug("command_failed", name=command.name, error=str(exc))
        self.bus.emit(
            events.ERROR,
            {"message": str(exc), "code": "command", "meta": {"command": command.name}},
        )

    def _emit_violation(self, violation: Violation) -> None:
        log.info("rule_violation", code=violation.code, **violation.meta)
        self.bus.emit(
            events.ERROR,
            {"message": violation.message, "code": violation.code, "meta": violation.meta},
        )

    def _apply(
        self, name: str, mutate: Callable[[ServiceDocument], MutationResult]
    ) -> MutationResult:
        """Run a document transform as a command."""

        def do() -> MutationResult:
            result = mutate(self.store.get_document())
            self.store.replace_document(result.document)
            for violation in result.violations:
                self._emit_violation(violation)
            return result

        result: MutationResult = self.exec(Command(name, do))
        return result

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def add_tag(self, data: Mapping[str, Any]) -> str:
        """Add a tag. Returns its id."""
        result = self._apply("add_tag", lambda d: mutations.add_tag(d, data))
        return _created_id(result)

    def update_tag(self, tag_id: str, patch: Mapping[str, Any]) -> None:
        self._apply("update_tag", lambda d: mutations.update_tag(d, tag_id, patch))

    def remove_tag(self, tag_id: str) -> None:
        self._apply("remove_tag", lambda d: mutations.remove_tag(d, tag_id))

    def set_constraint(self, tag_id: str, flag: ConstraintFlag, value: bool | None) -> None:
        """Set (or clear with None) a constraint flag on a tag."""
        self._apply(
            "set_constraint", lambda d: mutations.set_constraint(d, tag_id, flag, value)
        )

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def add_field(self, data: Mapping[str, Any]) -> str:
        """Add a field (with any inline options). Returns its id."""
        result = self._apply("add_field", lambda d: mutations.add_field(d, data))
        return _created_id(result)

    def update_field(self, field_id: str, patch: Mapping[str, Any]) -> None:
        self._apply("update_field", lambda d: mutations.update_field(d, field_id, patch))

    def remove_field(self, field_id: str) -> None:
        self._apply("remove_field", lambda d: mutations.remove_field(d, field_id))

    def set_field_name(self, field_id: str, name: str | None) -> list[Violation]:
        """Assign or clear a field name. Returns the reported violations."""
        result = self._apply(
            "set_field_name", lambda d: mutations.set_field_name(d, field_id, name)
        )
        return result.violations

    def get_field_quantity_rule(self, field_id: str) -> dict[str, str] | None:
        return mutations.get_field_quantity_rule(self.store.get_document(), field_id)

    def set_field_quantity_rule(self, field_id: str, rule: Any) -> None:
        self._apply(
            "set_field_quantity_rule",
            lambda d: mutations.set_field_quantity_rule(d, field_id, rule),
        )

    def clear_field_quantity_rule(self, field_id: str) -> None:
        self._apply(
            "clear_field_quantity_rule",
            lambda d: mutations.clear_field_quantity_rule(d, field_id),
        )

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def add_option(self, field_id: str, data: Mapping[str, Any]) -> str:
        """Add an option to a field. Returns its id."""
        result = self._apply("add_option", lambda d: mutations.add_option(d, field_id, data))
        return _created_id(result)

    def update_option(self, option_id: str, patch: Mapping[str, Any]) -> None:
        self._apply("update_option", lambda d: mutations.update_option(d, option_id, patch))

    def remove_option(self, option_id: str) -> None:
        self._apply("remove_option", lambda d: mutations.remove_option(d, option_id))

    def place_option(
        self,
        option_id: str,
        *,
        index: int | None = None,
        before_id: str | None = None,
        after_id: str | None = None,
    ) -> None:
        self._apply(
            "place_option",
            lambda d: mutations.place_option(
                d, option_id, index=index, before_id=before_id, after_id=after_id
            ),
        )

    # ------------------------------------------------------------------
    # Any node
    # ------------------------------------------------------------------

    def remove(self, node: NodeRef | str) -> None:
        """Remove a tag, field or option, cascading every reference."""
        ref = resolve_ref(self.store.get_document(), node)
        if isinstance(ref, TagRef):
            self.remove_tag(ref.id)
        elif isinstance(ref, FieldRef):
            self.remove_field(ref.id)
        else:
            self.remove_option(ref.id)

    def relabel(self, node: NodeRef | str, label: str) -> None:
        self._apply("relabel", lambda d: mutations.relabel(d, node, label))

    def duplicate(self, node: NodeRef | str, opts: DuplicateOptions | None = None) -> str:
        """Duplicate a node next to the original. Returns the copy's id."""
        result = self._apply("duplicate", lambda d: mutations.duplicate(d, node, opts))
        return _created_id(result)

    def place_node(
        self,
        node: NodeRef | str,
        *,
        scope_tag_id: str | None = None,
        index: int | None = None,
        before_id: str | None = None,
        after_id: str | None = None,
    ) -> None:
        """Reorder a node; fields need the tag whose ordering to edit."""
        self._apply(
            "place_node",
            lambda d: mutations.place_node(
                d,
                node,
                scope_tag_id=scope_tag_id,
                index=index,
                before_id=before_id,
                after_id=after_id,
            ),
        )

    def connect(self, kind: str, source: NodeRef | ServiceId, target: NodeRef | str) -> None:
        """Create a bind/include/exclude/service wire."""
        self._apply(
            f"connect:{kind}",
            lambda d: mutations.connect(d, kind, source, target, checker=self.service_checker),
        )

    def disconnect(self, kind: str, source: NodeRef | ServiceId, target: NodeRef | str) -> None:
        self._apply(
            f"disconnect:{kind}",
            lambda d: mutations.disconnect(d, kind, source, target, checker=self.service_checker),
        )

    def set_service(
        self,
        node: NodeRef | str,
        service_id: ServiceId | None = mutations.UNSET,
        pricing_role: PricingRole | None = None,
    ) -> list[Violation]:
        """Map a service onto a node. Returns the reported violations.

        Omit *service_id* to change only the pricing role; None clears the
        mapping.
        """
        result = self._apply(
            "set_service",
            lambda d: mutations.set_service(d, node, service_id, pricing_role),
        )
        return result.violations

    def clear_service(self, node: NodeRef | str) -> None:
        self._apply("clear_service", lambda d: mutations.set_service(d, node, None))

    def get_node(self, node_id: str) -> NodeInfo | None:
        """Look up a node by id. Returns None when no node has the id."""
        doc = self.store.get_document()
        tag = find_tag(doc, node_id)
        if tag is not None:
            return NodeInfo(
                kind="tag",
                id=tag.id,
                data=tag.model_dump(exclude_none=True),
                parent_tag_id=tag.parent_id,
            )
        fld = find_field(doc, node_id)
        if fld is not None:
            return NodeInfo(
                kind="field",
                id=fld.id,
                data=fld.model_dump(exclude_none=True),
                bound_tag_ids=fld.tag_ids,
            )
        owner = owner_of_option(doc, node_id)
        if owner is not None:
            owner_field, idx = owner
            opt = (owner_field.options or [])[idx]
            return NodeInfo(
                kind="option",
                id=opt.id,
                data=opt.model_dump(exclude_none=True),
                field_id=owner_field.id,
            )
        return None

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    @property
    def last_policy_diagnostics(self) -> list[PolicyDiagnostic]:
        """Diagnostics from the most recent policy compile."""
        return list(self._last_policy_diagnostics)

    def filter_services_for_visible_group(
        self, candidates: list[ServiceId], ctx: VisibleGroupContext
    ) -> list[ServiceCheck]:
        """Judge service candidates for a visible group.

        Uses the store's capability map. When the context carries no
        constraint flags they are resolved from the tag's ancestry.
        """
        if ctx.effective_constraints is None:
            resolved = effective_constraints(self.store.get_document(), ctx.tag_id)
            ctx = replace(ctx, effective_constraints=dict(resolved))
        compiled = compile_policies(ctx.policies if ctx.policies is not None else [])
        self._last_policy_diagnostics = list(compiled.diagnostics)
        return filter_services_for_visible_group(
            candidates, ctx, self.store.get_service_capability_map(), compiled=compiled
        )


__all__ = ["Editor", "NodeInfo"]
