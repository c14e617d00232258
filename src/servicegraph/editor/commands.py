"""Editor commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass
class Command:
    """One logical mutation run through :meth:`Editor.exec`.

    Attributes:
        name: Label reported in ``editor:command`` and ``editor:change``.
        do: Performs the mutation. Its return value is passed back by exec.
        undo: Optional inverse. The editor restores snapshots on undo, so
            this is only informational for hosts that keep their own log.
    """

    name: str
    do: Callable[[], Any]
    undo: Callable[[], Any] | None = None
