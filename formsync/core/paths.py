"""
Field path parsing and traversal.

A field path is a dot/bracket-delimited string such as ``address.street``
or ``items[0].qty``. The engine treats paths as opaque identifiers apart
from string equality and prefix checks; this module supplies those checks
plus the traversal helpers used to read and write snapshot values.

Responsibilities:
1. Parsing
   - Dot separated keys
   - Bracketed list indexes
   - Round-trip stringification
2. Traversal
   - Lenient reads that never raise
   - Writes that create intermediate containers
3. Relationships
   - Descendant checks on segment boundaries
"""

import re
from typing import Any, List, MutableMapping, MutableSequence, Sequence, Union

Segment = Union[str, int]

ROOT_FORM = "rootForm"


class _Missing:
    """Sentinel for values that could not be resolved."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]|\[([^\]]*)\]")


def parse_field_path(path: str) -> List[Segment]:
    """Split a field path into its segments.

    Args:
        path: Path such as ``items[0].qty``

    Returns:
        List of string keys and integer indexes, e.g. ``["items", 0, "qty"]``

    Raises:
        ValueError: If path is not a string
    """
    if not isinstance(path, str):
        raise ValueError("Field path must be a string")
    segments: List[Segment] = []
    for key, index, bracket_key in _TOKEN.findall(path):
        if key:
            segments.append(key)
        elif index:
            segments.append(int(index))
        elif bracket_key:
            segments.append(bracket_key.strip("'\""))
    return segments


def stringify_field_path(segments: Sequence[Segment]) -> str:
    """Join segments back into a field path string.

    Args:
        segments: String keys and integer indexes

    Returns:
        The path string; integer segments render as ``[n]``
    """
    path = ""
    for segment in segments:
        if isinstance(segment, int):
            path += f"[{segment}]"
        elif path:
            path += f".{segment}"
        else:
            path = str(segment)
    return path


def normalize_field_path(path: str) -> str:
    """Return the canonical spelling of a path (``a.0`` and ``a[0]`` differ)."""
    return stringify_field_path(parse_field_path(path))


def _step(container: Any, segment: Segment) -> Any:
    if isinstance(container, MutableMapping) or hasattr(container, "keys"):
        if segment in container:
            return container[segment]
        # Snapshots decoded from JSON carry index keys as strings
        if isinstance(segment, int) and str(segment) in container:
            return container[str(segment)]
        return MISSING
    if isinstance(container, (list, tuple)) and isinstance(segment, int):
        if 0 <= segment < len(container):
            return container[segment]
    return MISSING


def get_value_at_path(value: Any, path: Union[str, Sequence[Segment]], default: Any = MISSING) -> Any:
    """Read a nested value without raising.

    Args:
        value: Root container
        path: Field path or pre-parsed segments
        default: Returned when the path cannot be resolved

    Returns:
        The value at path, or default
    """
    segments = parse_field_path(path) if isinstance(path, str) else list(path)
    current = value
    for segment in segments:
        if current is None:
            return default
        current = _step(current, segment)
        if current is MISSING:
            return default
    return current


def has_path(value: Any, path: Union[str, Sequence[Segment]]) -> bool:
    """Check whether a path resolves inside value."""
    return get_value_at_path(value, path) is not MISSING


def set_value_at_path(value: MutableMapping, path: Union[str, Sequence[Segment]], new_value: Any) -> None:
    """Write a nested value in place, creating intermediate containers.

    Dicts are created for key segments and lists for index segments. Lists
    are padded with None up to the requested index.

    Args:
        value: Root container, mutated in place
        path: Field path or pre-parsed segments
        new_value: Value to store

    Raises:
        ValueError: If the path is empty or an intermediate value is not a container
    """
    segments = parse_field_path(path) if isinstance(path, str) else list(path)
    if not segments:
        raise ValueError("Cannot set a value at an empty path")

    current: Any = value
    for position, segment in enumerate(segments):
        last = position == len(segments) - 1
        following = None if last else segments[position + 1]
        if isinstance(current, MutableSequence) and isinstance(segment, int):
            while len(current) <= segment:
                current.append(None)
            if last:
                current[segment] = new_value
                return
            if not isinstance(current[segment], (MutableMapping, MutableSequence)):
                current[segment] = [] if isinstance(following, int) else {}
            current = current[segment]
        elif isinstance(current, MutableMapping):
            if last:
                current[segment] = new_value
                return
            if not isinstance(current.get(segment), (MutableMapping, MutableSequence)):
                current[segment] = [] if isinstance(following, int) else {}
            current = current[segment]
        else:
            raise ValueError(f"Cannot set '{stringify_field_path(segments)}': "
                             f"segment {segment!r} is not inside a container")


def delete_value_at_path(value: MutableMapping, path: Union[str, Sequence[Segment]]) -> bool:
    """Remove a nested key in place.

    Args:
        value: Root container, mutated in place
        path: Field path or pre-parsed segments

    Returns:
        True if something was removed
    """
    segments = parse_field_path(path) if isinstance(path, str) else list(path)
    if not segments:
        return False
    parent = get_value_at_path(value, segments[:-1]) if len(segments) > 1 else value
    leaf = segments[-1]
    if isinstance(parent, MutableMapping) and leaf in parent:
        del parent[leaf]
        return True
    if isinstance(parent, MutableSequence) and isinstance(leaf, int) and 0 <= leaf < len(parent):
        # Keep sibling indexes stable
        parent[leaf] = None
        return True
    return False


def is_descendant(path: str, ancestor: str) -> bool:
    """Check whether path lies strictly below ancestor.

    ``address.street`` is a descendant of ``address``; ``addressLine`` is not.
    """
    path_segments = parse_field_path(path)
    ancestor_segments = parse_field_path(ancestor)
    if len(path_segments) <= len(ancestor_segments):
        return False
    return path_segments[: len(ancestor_segments)] == ancestor_segments


def is_related(first: str, second: str) -> bool:
    """Check whether two paths are equal or one contains the other."""
    first_segments = parse_field_path(first)
    second_segments = parse_field_path(second)
    shortest = min(len(first_segments), len(second_segments))
    return first_segments[:shortest] == second_segments[:shortest]


def ancestors_of(path: str) -> List[str]:
    """List every proper ancestor path, nearest first."""
    segments = parse_field_path(path)
    return [stringify_field_path(segments[:end]) for end in range(len(segments) - 1, 0, -1)]
