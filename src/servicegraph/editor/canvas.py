"""View refresh hook.

The editor never renders anything. It captures the view layout into each
history snapshot and restores it on undo/redo through this protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class CanvasLayout:
    """Captured view state: node positions, viewport and selection."""

    positions: dict[str, tuple[float, float]] = field(default_factory=dict)
    viewport: dict[str, Any] | None = None
    selection: tuple[str, ...] = ()


@runtime_checkable
class CanvasAPI(Protocol):
    """What the editor needs from the view layer."""

    def refresh_graph(self) -> None: ...

    def snapshot_layout(self) -> CanvasLayout | None: ...

    def set_positions(self, positions: dict[str, tuple[float, float]]) -> None: ...

    def set_viewport(self, viewport: dict[str, Any] | None) -> None: ...

    def select(self, ids: tuple[str, ...]) -> None: ...


class NullCanvas:
    """Headless canvas: captures no layout and ignores restores."""

    def __init__(self) -> None:
        self.refresh_count = 0

    def refresh_graph(self) -> None:
        self.refresh_count += 1

    def snapshot_layout(self) -> CanvasLayout | None:
        return None

    def set_positions(self, positions: dict[str, tuple[float, float]]) -> None:
        pass

    def set_viewport(self, viewport: dict[str, Any] | None) -> None:
        pass

    def select(self, ids: tuple[str, ...]) -> None:
        pass


def restore_layout(canvas: CanvasAPI, layout: CanvasLayout | None) -> None:
    """Re-apply a captured layout, or just refresh when none was captured."""
    if layout is None:
        canvas.refresh_graph()
        return
    canvas.set_positions(dict(layout.positions))
    canvas.set_viewport(layout.viewport)
    canvas.select(layout.selection)
