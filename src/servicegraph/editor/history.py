"""Bounded linear undo/redo history of document snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from servicegraph.observability.logging import get_logger

if TYPE_CHECKING:
    from servicegraph.editor.canvas import CanvasLayout
    from servicegraph.models.document import ServiceDocument

log = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 100
MIN_HISTORY_LIMIT = 1
MAX_HISTORY_LIMIT = 1000


def clamp_history_limit(limit: int) -> int:
    return max(MIN_HISTORY_LIMIT, min(MAX_HISTORY_LIMIT, int(limit)))


@dataclass(frozen=True)
class Snapshot:
    """One undo/redo unit.

    The document is a private copy; the editor installs it into the store,
    which hands out clones.
    """

    document: ServiceDocument
    layout: CanvasLayout | None = None


class History:
    """Snapshot list with a cursor.

    The cursor points at the snapshot matching the live document. Pushing
    after an undo discards the redo tail. Past the limit the oldest
    snapshots are dropped and the cursor re-anchored at the newest.
    """

    def __init__(self, initial: Snapshot, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._limit = clamp_history_limit(limit)
        self._entries: list[Snapshot] = [initial]
        self._index = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def index(self) -> int:
        return self._index

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    def push(self, snapshot: Snapshot) -> None:
        del self._entries[self._index + 1 :]
        self._entries.append(snapshot)
        overflow = len(self._entries) - self._limit
        if overflow > 0:
            del self._entries[:overflow]
            log.debug("history_trimmed", dropped=overflow, limit=self._limit)
        self._index = len(self._entries) - 1

    def undo(self) -> Snapshot | None:
        """Step back. Returns the snapshot to install, or None at the start."""
        if not self.can_undo:
            return None
        self._index -= 1
        return self._entries[self._index]

    def redo(self) -> Snapshot | None:
        """Step forward. Returns the snapshot to install, or None at the end."""
        if not self.can_redo:
            return None
        self._index += 1
        return self._entries[self._index]
