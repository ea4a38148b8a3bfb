"""
Error and warning aggregation.

Merges field outcomes, side-channel warnings, the root outcome and the
tree flags into one AggregatedState. aggregate() is a pure function of its
inputs; StateAggregator recomputes on demand and pushes a new state to
subscribers only when it differs structurally from the previous one.

Counting rules:
- error_count: root errors plus every field's error messages
- warning_count: root warnings plus every field's warnings, whether they
  travel in an outcome or in the side channel
- first_invalid_field: first field in registration order with errors,
  else the root key if the root has errors, else None
- valid is exactly error_count == 0
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from formsync.core.control import ControlTree
from formsync.core.outcome import Outcome
from formsync.core.paths import ROOT_FORM
from formsync.core.types import ControlStatus, FieldPath, Messages, Unsubscribe
from formsync.core.values import clone_value, values_equal

logger = logging.getLogger(__name__)


def _frozen(messages: Mapping[FieldPath, Messages]) -> Mapping[FieldPath, Messages]:
    return MappingProxyType(dict(messages))


@dataclass(frozen=True)
class AggregatedState:
    """One consistent, read-only view of the whole form.

    Attributes:
        value: Current snapshot
        errors: Field path to error messages (fields with errors only)
        warnings: Field path to warning messages (fields with warnings only)
        root: Root outcome, None when there is nothing to report
        status: Aggregate tree status
        dirty: Any control changed by the user
        touched: Any control touched
        valid: No errors anywhere
        invalid: Status is INVALID
        pending: Status is PENDING
        disabled: Status is DISABLED
        idle: Not pending
        submitted: Form has been submitted
        error_count: Total number of error messages
        warning_count: Total number of warning messages
        first_invalid_field: Path to focus first, or None
    """

    value: Any = None
    errors: Mapping[FieldPath, Messages] = field(default_factory=lambda: _frozen({}))
    warnings: Mapping[FieldPath, Messages] = field(default_factory=lambda: _frozen({}))
    root: Optional[Outcome] = None
    status: ControlStatus = ControlStatus.VALID
    dirty: bool = False
    touched: bool = False
    valid: bool = True
    invalid: bool = False
    pending: bool = False
    disabled: bool = False
    idle: bool = True
    submitted: bool = False
    error_count: int = 0
    warning_count: int = 0
    first_invalid_field: Optional[FieldPath] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AggregatedState):
            return NotImplemented
        return values_equal(self.to_dict(), other.to_dict())

    def errors_for(self, path: FieldPath) -> Messages:
        return self.errors.get(path, ())

    def warnings_for(self, path: FieldPath) -> Messages:
        return self.warnings.get(path, ())

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form, safe to serialize."""
        return {
            "value": clone_value(self.value),
            "errors": {path: list(messages) for path, messages in self.errors.items()},
            "warnings": {path: list(messages) for path, messages in self.warnings.items()},
            "root": self.root.to_dict() if self.root is not None else None,
            "status": self.status.name,
            "dirty": self.dirty,
            "touched": self.touched,
            "valid": self.valid,
            "invalid": self.invalid,
            "pending": self.pending,
            "disabled": self.disabled,
            "idle": self.idle,
            "submitted": self.submitted,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "first_invalid_field": self.first_invalid_field,
        }


def aggregate(tree: ControlTree, value: Any, side_warnings: Mapping[FieldPath, Messages],
              submitted: bool) -> AggregatedState:
    """Compute the aggregated state.

    Args:
        tree: Control tree holding field and root outcomes, in registration order
        value: Current snapshot
        side_warnings: Warnings of fields without errors
        submitted: Whether the form has been submitted

    Returns:
        A new AggregatedState
    """
    errors: Dict[FieldPath, Messages] = {}
    warnings: Dict[FieldPath, Messages] = {}
    first_invalid: Optional[FieldPath] = None

    for node in tree:
        if node.disabled:
            continue
        outcome = node.outcome
        if outcome is not None and outcome.errors:
            errors[node.path] = outcome.errors
            if first_invalid is None:
                first_invalid = node.path
        node_warnings = outcome.warnings if outcome is not None and outcome.warnings else None
        node_warnings = node_warnings or tuple(side_warnings.get(node.path, ()))
        if node_warnings:
            warnings[node.path] = node_warnings

    root = tree.root_outcome
    root_errors = root.errors if root is not None else ()
    root_warnings = root.warnings if root is not None else ()
    if first_invalid is None and root_errors:
        first_invalid = ROOT_FORM

    error_count = len(root_errors) + sum(len(messages) for messages in errors.values())
    warning_count = len(root_warnings) + sum(len(messages) for messages in warnings.values())
    status = tree.status

    return AggregatedState(
        value=clone_value(value),
        errors=_frozen(errors),
        warnings=_frozen(warnings),
        root=root,
        status=status,
        dirty=tree.dirty,
        touched=tree.touched,
        valid=error_count == 0,
        invalid=status is ControlStatus.INVALID,
        pending=status is ControlStatus.PENDING,
        disabled=status is ControlStatus.DISABLED,
        idle=status is not ControlStatus.PENDING,
        submitted=submitted,
        error_count=error_count,
        warning_count=warning_count,
        first_invalid_field=first_invalid,
    )


StateListener = Callable[[AggregatedState], None]


class StateAggregator:
    """Recomputes the aggregated state and pushes changes.

    Class Invariants:
    1. state always holds the last published AggregatedState
    2. Subscribers are notified only on structural change

    Design Patterns:
    - Observer: Push subscriptions
    - Memento: Previous state kept for comparison
    """

    def __init__(self, compute: Callable[[], AggregatedState]):
        """Initialize the aggregator.

        Args:
            compute: Produces a fresh AggregatedState from current inputs
        """
        self._compute = compute
        self._state = AggregatedState()
        self._listeners: List[StateListener] = []
        self._publications = 0

    @property
    def state(self) -> AggregatedState:
        return self._state

    @property
    def publications(self) -> int:
        """Number of states pushed to subscribers so far."""
        return self._publications

    def subscribe(self, listener: StateListener) -> Unsubscribe:
        """Subscribe to state changes.

        Args:
            listener: Called with each new AggregatedState

        Returns:
            Callable removing the subscription
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def recompute(self) -> AggregatedState:
        """Recompute and publish if the state changed.

        Returns:
            The current state (the previous object when nothing changed)
        """
        state = self._compute()
        if state == self._state:
            return self._state
        self._state = state
        self._publications += 1
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")
        return state
