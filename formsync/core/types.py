"""
Type definitions and enums for the form engine.

This module contains shared type definitions and enums used across
the engine implementation. It helps break circular dependencies
between modules and provides a central location for type information.

Design:
- No runtime dependencies on other modules
- Only contains type definitions and enums
- Used by both control.py and the runtime components
- Provides type hints for static analysis
"""

from enum import Enum, auto
from typing import Any, Callable, Dict, Mapping, Tuple


class ControlStatus(Enum):
    """Defines the validity status of a control node or the whole tree.

    Used by the tree to summarize its nodes and by the aggregator to
    mirror that summary into the published state.
    """
    VALID = auto()     # No errors, no evaluation in flight
    INVALID = auto()   # At least one error present
    PENDING = auto()   # An asynchronous evaluation is in flight
    DISABLED = auto()  # Excluded from validation and from value()


class ControlEventKind(Enum):
    """Defines the kinds of change notifications a control tree publishes."""
    VALUE = auto()      # Value changed or revalidation emitted
    STATUS = auto()     # Validation status or errors changed
    TOUCHED = auto()    # Touched flag changed
    STRUCTURE = auto()  # Node registered or removed


class RootValidationMode(Enum):
    """Defines when cross-field (root) validation runs.

    SUBMIT only evaluates after the first submission; LIVE evaluates on
    every debounced snapshot change.
    """
    SUBMIT = auto()  # Gate on first submit
    LIVE = auto()    # Evaluate on every change


class SyncAction(Enum):
    """Defines the result of one synchronizer reconciliation tick."""
    NOOP = auto()        # Nothing differed
    TREE_WINS = auto()   # Tree changed; snapshot republished
    MODEL_WINS = auto()  # Snapshot changed; tree patched silently
    SETTLED = auto()     # Both changed to equal values; trackers updated
    CONFLICT = auto()    # Both changed to different values; tree won


class EngineStatus(Enum):
    """Defines the lifecycle status of a form engine."""
    UNINITIALIZED = auto()  # Created but not started
    ACTIVE = auto()         # Started and processing changes
    TERMINATED = auto()     # Torn down; no further processing


# Type aliases for common types
FieldPath = str
Snapshot = Any
Messages = Tuple[str, ...]
MessageMap = Mapping[FieldPath, Messages]
DependencyMapping = Mapping[FieldPath, Tuple[FieldPath, ...]]
Unsubscribe = Callable[[], None]
ShapeDict = Dict[str, Any]
