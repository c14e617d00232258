"""Synchronous event notification for editor listeners.

Listener failures are warnings, never errors: a broken listener is logged
and the remaining listeners still run.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Any

from servicegraph.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    Handler = Callable[[dict[str, Any]], None]

log = get_logger(__name__)

COMMAND = "editor:command"
CHANGE = "editor:change"
UNDO = "editor:undo"
REDO = "editor:redo"
ERROR = "editor:error"


class EventBus:
    """Dispatches named events to subscribed handlers in subscription order."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *event*.

        Returns:
            A callable that unsubscribes the handler.
        """
        self._handlers[event].append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception as exc:
                log.warning("event_handler_failed", event_name=event, error=str(exc))
