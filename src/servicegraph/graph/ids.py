"""ID, label and name derivation.

Generated ids look like ``t:1``, ``f:2`` and ``o:3`` and are unique across
the tag, field and option namespaces. Copies derive their id, label and name
from the original:

- label: ``"X"`` → ``"X (copy)"`` → ``"X (copy 2)"``
- name:  ``"x"`` → ``"x_copy"`` → ``"x_copy2"``
- id:    ``"x"`` → ``"x_copy"`` → ``"x_copy2"``, and any trailing integer is
  bumped while the candidate collides.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from servicegraph.graph.context import all_ids
from servicegraph.graph.errors import IdExhaustedError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from servicegraph.models.document import ServiceDocument

TAG_PREFIX = "t"
FIELD_PREFIX = "f"
OPTION_PREFIX = "o"

# Highest numeric suffix gen_id will try before giving up
MAX_GENERATED_ID = 9_999

_COPY_LABEL_RE = re.compile(r"^(.*?)(?:\s*\(copy(?:\s+(\d+))?\))$", re.IGNORECASE)
_COPY_NAME_RE = re.compile(r"^(.*?)(_copy(\d+)?)$", re.IGNORECASE)
_COPY_ID_RE = re.compile(r"^(.*?)(?:_copy(\d+)?)$", re.IGNORECASE)
_TRAILING_INT_RE = re.compile(r"^(.*?)(\d+)$")


def next_copy_label(old: str) -> str:
    """'Label' -> 'Label (copy)', 'Label (copy)' -> 'Label (copy 2)'."""
    match = _COPY_LABEL_RE.match(old)
    if not match:
        return f"{old} (copy)"
    stem = match.group(1).strip()
    n = int(match.group(2)) + 1 if match.group(2) else 2
    return f"{stem} (copy {n})"


def next_copy_name(old: str | None) -> str | None:
    """'name' -> 'name_copy', 'name_copy' -> 'name_copy2'. None stays None."""
    if not old:
        return None
    match = _COPY_NAME_RE.match(old)
    if not match:
        return f"{old}_copy"
    n = int(match.group(3)) + 1 if match.group(3) else 2
    return f"{match.group(1)}_copy{n}"


def next_copy_id(old: str) -> str:
    """'t:1' -> 't:1_copy', 't:1_copy' -> 't:1_copy2'."""
    match = _COPY_ID_RE.match(old)
    if not match:
        return f"{old}_copy"
    n = int(match.group(2)) + 1 if match.group(2) else 2
    return f"{match.group(1)}_copy{n}"


def bump_suffix(old: str) -> str:
    """Increment a trailing integer, or append '2' when there is none."""
    match = _TRAILING_INT_RE.match(old)
    if not match:
        return f"{old}2"
    return f"{match.group(1)}{int(match.group(2)) + 1}"


def unique_id(
    document: ServiceDocument, base: str, extra_taken: Iterable[str] = ()
) -> str:
    """Derive a free copy id for a tag or field from *base*.

    Args:
        document: Document whose ids are taken, in every namespace.
        base: Id of the node being copied.
        extra_taken: Ids already allocated but not yet in the document
            (e.g. earlier nodes of a subtree being duplicated).

    Returns:
        The first free candidate starting at ``next_copy_id(base)``.
    """
    taken = all_ids(document) | set(extra_taken)
    candidate = next_copy_id(base)
    while candidate in taken:
        candidate = bump_suffix(candidate)
    return candidate


def unique_option_id(
    document: ServiceDocument, base: str, extra_taken: Iterable[str] = ()
) -> str:
    """Derive a free option id from *base*.

    *base* is used as-is when free. Option ids are checked against every id
    in the document so an option can always be addressed by id alone.
    """
    taken = all_ids(document) | set(extra_taken)
    candidate = base
    if candidate in taken:
        candidate = next_copy_id(candidate)
    while candidate in taken:
        candidate = bump_suffix(candidate)
    return candidate


def gen_id(
    document: ServiceDocument, prefix: str, extra_taken: Iterable[str] = ()
) -> str:
    """Return the first unused 'prefix:N' across all three namespaces.

    Raises:
        IdExhaustedError: If every suffix up to MAX_GENERATED_ID is taken.
    """
    taken = all_ids(document) | set(extra_taken)
    for i in range(1, MAX_GENERATED_ID + 1):
        candidate = f"{prefix}:{i}"
        if candidate not in taken:
            return candidate
    raise IdExhaustedError(prefix, MAX_GENERATED_ID)
