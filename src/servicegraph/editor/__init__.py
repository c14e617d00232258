"""Editor: command/transaction engine, history, events and view hook."""

from servicegraph.editor.canvas import CanvasAPI, CanvasLayout, NullCanvas
from servicegraph.editor.commands import Command
from servicegraph.editor.config import EditorConfigError, EditorOptions, load_editor_options
from servicegraph.editor.editor import Editor, NodeInfo
from servicegraph.editor.events import EventBus
from servicegraph.editor.history import History, Snapshot

__all__ = [
    "CanvasAPI",
    "CanvasLayout",
    "Command",
    "Editor",
    "EditorConfigError",
    "EditorOptions",
    "EventBus",
    "History",
    "NodeInfo",
    "NullCanvas",
    "Snapshot",
    "load_editor_options",
]
