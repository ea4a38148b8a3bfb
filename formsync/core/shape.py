"""
Development-time shape checking.

Compares snapshot values against a reference shape to catch misspelled
control paths early. Two problems are reported: keys the shape does not
know about, and nested values where the shape expects a scalar. Missing
keys are not reported because forms fill in incrementally and fields can
be conditionally rendered.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShapeIssue:
    """One mismatch between a value and its shape.

    Attributes:
        path: Field path of the offending value
        kind: "extra_property" or "type_mismatch"
        message: Human readable description
    """

    path: str
    kind: str
    message: str


def _is_index(key: Any) -> bool:
    if isinstance(key, int):
        return True
    try:
        float(key)
        return True
    except (TypeError, ValueError):
        return False


def _item_shape(shape: Any, key: Any) -> Any:
    if isinstance(shape, Mapping):
        if _is_index(key) and float(key) > 0:
            # Shapes describe a single example item per list
            return shape.get("0", shape.get(0))
        return shape.get(key)
    if isinstance(shape, (list, tuple)) and shape:
        return shape[0]
    return None


def _children(value: Any):
    if isinstance(value, Mapping):
        return list(value.items())
    return list(enumerate(value))


def validate_shape(value: Any, shape: Optional[Mapping], *, log: bool = True) -> List[ShapeIssue]:
    """Check a snapshot against a reference shape.

    Args:
        value: Snapshot value
        shape: Reference shape with one example item per list
        log: Log each issue at WARNING

    Returns:
        Issues found, in traversal order
    """
    issues: List[ShapeIssue] = []
    if not isinstance(value, Mapping) or shape is None:
        return issues
    _walk(value, shape, "", issues)
    if log:
        for issue in issues:
            logger.warning("Shape mismatch at '%s': %s", issue.path, issue.message)
    return issues


def _walk(value: Any, shape: Any, path: str, issues: List[ShapeIssue]) -> None:
    for key, item in _children(value):
        if isinstance(key, int):
            item_path = f"{path}[{key}]"
        else:
            item_path = f"{path}.{key}" if path else str(key)
        if item is None:
            continue
        index = _is_index(key)
        item_shape = _item_shape(shape, key)
        if isinstance(item_shape, (datetime.date, datetime.datetime)) and item == "":
            continue
        if isinstance(item, (Mapping, list, tuple)):
            if not index and not isinstance(item_shape, (Mapping, list, tuple)):
                issues.append(ShapeIssue(item_path, "type_mismatch",
                                         "expected a primitive value but got an object"))
            _walk(item, item_shape if item_shape is not None else {}, item_path, issues)
            continue
        known = isinstance(shape, Mapping) and (key in shape or (index and float(key) > 0))
        if not index and not known:
            issues.append(ShapeIssue(item_path, "extra_property",
                                     "property is not part of the form shape"))
