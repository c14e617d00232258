"""Editor configuration.

Options come from a YAML file (``servicegraph.yaml`` by convention), from a
plain dict, or from defaults. Resolution order for the history limit:

1. Environment variable ``SERVICEGRAPH_HISTORY_LIMIT``
2. Config value
3. Default (100)

The limit is clamped to 1..1000.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from servicegraph.editor.history import DEFAULT_HISTORY_LIMIT, clamp_history_limit

HISTORY_LIMIT_ENV = "SERVICEGRAPH_HISTORY_LIMIT"
CONFIG_FILE_NAME = "servicegraph.yaml"


class EditorConfigError(Exception):
    """Raised when editor options cannot be loaded."""

    def __init__(self, path: Path | None, reason: str) -> None:
        self.path = path
        self.reason = reason
        where = f" at {path}" if path is not None else ""
        super().__init__(f"Failed to load editor options{where}: {reason}")


@dataclass
class EditorOptions:
    """Editor behaviour switches.

    Attributes:
        history_limit: Maximum number of history snapshots, including the
            initial document.
        validate_after_each: Audit document invariants after every committed
            change and report failures on ``editor:error``.
    """

    history_limit: int = DEFAULT_HISTORY_LIMIT
    validate_after_each: bool = False

    def __post_init__(self) -> None:
        self.history_limit = clamp_history_limit(self.history_limit)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EditorOptions:
        """Create options from a dictionary, applying the env override.

        Args:
            data: Mapping with optional ``history_limit`` and
                ``validate_after_each`` keys.

        Raises:
            EditorConfigError: If a value has the wrong type.
        """
        raw_limit = os.getenv(HISTORY_LIMIT_ENV) or data.get("history_limit", DEFAULT_HISTORY_LIMIT)
        try:
            history_limit = int(raw_limit)
        except (TypeError, ValueError) as e:
            raise EditorConfigError(None, f"history_limit must be an integer, got {raw_limit!r}") from e

        validate = data.get("validate_after_each", False)
        if not isinstance(validate, bool):
            raise EditorConfigError(None, "validate_after_each must be a boolean")
        return cls(history_limit=history_limit, validate_after_each=validate)


def load_editor_options(path: Path) -> EditorOptions:
    """Load editor options from a YAML file.

    Args:
        path: A YAML file, or a directory containing ``servicegraph.yaml``.
            Options may sit at the top level or under an ``editor`` key.

    Raises:
        EditorConfigError: If the file is missing, empty or invalid.
    """
    config_path = path / CONFIG_FILE_NAME if path.is_dir() else path

    if not config_path.exists():
        raise EditorConfigError(config_path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise EditorConfigError(config_path, "Empty file")
        if not isinstance(data, dict):
            raise EditorConfigError(config_path, "Top level must be a mapping")

        section = data.get("editor", data)
        return EditorOptions.from_dict(dict(section))
    except EditorConfigError as e:
        if e.path is None:
            raise EditorConfigError(config_path, e.reason) from e
        raise
    except Exception as e:
        raise EditorConfigError(config_path, str(e)) from e
