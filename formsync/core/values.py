"""
Snapshot value helpers.

Cloning and structural comparison used by the synchronizer and the
aggregator, plus helpers for dropping values of fields that are no longer
rendered. None of these functions raise on unusual input: cloning falls
back to a shallow copy and comparison falls back to inequality.
"""

import copy
import logging
from typing import Any, Callable, Iterable, Mapping, Union

from formsync.core.paths import (
    MISSING,
    delete_value_at_path,
    get_value_at_path,
    set_value_at_path,
)

logger = logging.getLogger(__name__)

Condition = Union[bool, Callable[[Any], bool]]


def clone_value(value: Any) -> Any:
    """Deep copy a value, falling back to a shallow copy.

    Args:
        value: Any snapshot-like value

    Returns:
        An independent copy where possible
    """
    try:
        return copy.deepcopy(value)
    except Exception as e:
        logger.debug("Deep copy failed (%s); using shallow copy", e)
        try:
            return copy.copy(value)
        except Exception:
            return value


def values_equal(first: Any, second: Any) -> bool:
    """Structural equality that treats a failing comparison as unequal."""
    if first is second:
        return True
    try:
        return bool(first == second)
    except Exception:
        return False


def merge_values_and_raw_values(value: Any, raw_value: Any) -> Any:
    """Fill the enabled-only value with disabled fields from the raw value.

    Enabled values take precedence; keys present only in raw_value (disabled
    controls) are added. Nested mappings merge recursively.

    Args:
        value: Value of enabled controls only
        raw_value: Value of every control, disabled ones included

    Returns:
        A new merged value
    """
    if not isinstance(raw_value, Mapping):
        return clone_value(value if value is not None else raw_value)
    if not isinstance(value, Mapping):
        return clone_value(raw_value)
    merged = {}
    for key, raw_item in raw_value.items():
        if key in value:
            merged[key] = merge_values_and_raw_values(value[key], raw_item)
        else:
            merged[key] = clone_value(raw_item)
    for key, item in value.items():
        if key not in merged:
            merged[key] = clone_value(item)
    return merged


def _holds(condition: Condition, state: Any) -> bool:
    if callable(condition):
        return bool(condition(state))
    return bool(condition)


def clear_fields_when(state: Any, conditions: Mapping[str, Condition]) -> Any:
    """Return a copy of state without the paths whose condition holds.

    Args:
        state: Snapshot value
        conditions: Path to a bool or to a predicate called with state

    Returns:
        A new value; state itself is not modified
    """
    result = clone_value(state)
    for path, condition in conditions.items():
        if _holds(condition, state):
            delete_value_at_path(result, path)
    return result


def clear_fields(state: Any, paths: Iterable[str]) -> Any:
    """Return a copy of state without the given paths."""
    result = clone_value(state)
    for path in paths:
        delete_value_at_path(result, path)
    return result


def keep_fields_when(state: Any, conditions: Mapping[str, Condition]) -> Any:
    """Return a new value holding only the paths whose condition holds.

    Paths that do not resolve in state are skipped.
    """
    result: dict = {}
    for path, condition in conditions.items():
        if not _holds(condition, state):
            continue
        value = get_value_at_path(state, path)
        if value is not MISSING:
            set_value_at_path(result, path, clone_value(value))
    return result
