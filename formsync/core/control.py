"""
Control tree: an arena of mutable control nodes keyed by field path.

Architecture:
- Nodes live in one ordered dictionary keyed by normalized FieldPath
- Registration order is preserved and used for "first invalid field"
- Change notification is explicit publish/subscribe, per node and per tree
- Group nodes derive their value from their descendant leaves
- The tree carries the root (cross-field) outcome so its status covers it

Design Patterns:
- Observer Pattern: Value, status, touched and structure events
- Composite Pattern: Groups summarize descendant leaves
- Strategy Pattern: Pluggable asynchronous validator per node

Responsibilities:
1. Node State
   - Raw value, disabled flag
   - Touched and dirty flags
   - Validation outcome and status
2. Validation Runs
   - One asyncio task per run
   - Superseded runs never overwrite newer results
   - Ancestor groups revalidate when a descendant changes
3. Tree Operations
   - Register and remove nodes at any time
   - Enabled value, raw value, merged value
   - Silent multi-path patch
   - Aggregate status
4. Waiting
   - Wait for a node to be registered
   - Wait for the tree to leave PENDING, bounded by a timeout

Cross-cutting:
- Listener failures are logged and never interrupt dispatch
- Runs entirely on one event loop; no locking

Dependencies:
- paths.py: Path parsing and traversal
- values.py: Cloning and structural equality
- outcome.py: Validation outcomes
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional

from formsync.core.errors import ControlNotFoundError
from formsync.core.outcome import Outcome
from formsync.core.paths import (
    MISSING,
    ROOT_FORM,
    get_value_at_path,
    is_descendant,
    normalize_field_path,
    parse_field_path,
    set_value_at_path,
)
from formsync.core.types import ControlEventKind, ControlStatus, FieldPath, Unsubscribe
from formsync.core.values import clone_value, merge_values_and_raw_values, values_equal

logger = logging.getLogger(__name__)

NodeValidator = Callable[[Any], Awaitable[Optional[Outcome]]]


@dataclass(frozen=True)
class ControlEvent:
    """A change notification published by a node or the tree.

    Attributes:
        kind: What changed
        path: Path of the node (ROOT_FORM for root state changes)
        value: New value for VALUE events, None otherwise
    """

    kind: ControlEventKind
    path: FieldPath
    value: Any = None


Listener = Callable[[ControlEvent], None]


def _dispatch(listeners: List[Listener], event: ControlEvent) -> None:
    for listener in list(listeners):
        try:
            listener(event)
        except Exception:
            logger.exception("Listener failed while handling %s for '%s'", event.kind.name, event.path)


def _subscribe(listeners: List[Listener], listener: Listener) -> Unsubscribe:
    listeners.append(listener)

    def unsubscribe() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return unsubscribe


class ControlNode:
    """A mutable field or group in the control tree.

    Class Invariants:
    1. Path is normalized and immutable
    2. Status is DISABLED whenever the node is disabled
    3. Status is PENDING exactly while a validation run is in flight
    4. A superseded run never overwrites a newer outcome

    Design Patterns:
    - Observer: Publishes events to node and tree listeners
    - Strategy: Validator is injected by the engine

    Threading/Concurrency Guarantees:
    1. Event-loop confined
    2. Validation runs are asyncio tasks tracked by run id

    Performance Characteristics:
    1. O(1) leaf value access
    2. O(n) group value access where n is descendant count
    """

    def __init__(self, path: FieldPath, value: Any = None, *, disabled: bool = False,
                 group: bool = False, tree: Optional["ControlTree"] = None):
        """Initialize a control node.

        Args:
            path: Field path of the node
            value: Initial raw value (ignored for groups with descendants)
            disabled: Whether the node starts disabled
            group: Whether the node groups descendant leaves
            tree: Owning tree, if any

        Raises:
            ValueError: If path is empty or names the root key
        """
        normalized = normalize_field_path(path)
        if not normalized:
            raise ValueError("Control path cannot be empty")
        if normalized == ROOT_FORM:
            raise ValueError(f"'{ROOT_FORM}' is reserved for root validation")
        self._path = normalized
        self._value = value
        self._disabled = disabled
        self._group = group
        self._tree = tree
        self._touched = False
        self._dirty = False
        self._outcome: Optional[Outcome] = None
        self._validator: Optional[NodeValidator] = None
        self._task: Optional[asyncio.Task] = None
        self._run_id = 0
        self._listeners: List[Listener] = []

    def __repr__(self) -> str:
        return f"ControlNode({self._path!r}, status={self.status.name})"

    @property
    def path(self) -> FieldPath:
        return self._path

    @property
    def is_group(self) -> bool:
        return self._group

    @property
    def value(self) -> Any:
        """Current raw value; groups build theirs from descendant leaves."""
        if self._group and self._tree is not None:
            derived = self._tree.value_at(self._path)
            if derived is not MISSING:
                return derived
        return self._value

    @property
    def disabled(self) -> bool:
        return self._disabled

    @property
    def enabled(self) -> bool:
        return not self._disabled

    @property
    def touched(self) -> bool:
        return self._touched

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def outcome(self) -> Optional[Outcome]:
        """Last applied validation outcome; None when the node has no errors."""
        return self._outcome

    @property
    def errors(self) -> tuple:
        if self._disabled or self._outcome is None:
            return ()
        return self._outcome.errors

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def status(self) -> ControlStatus:
        if self._disabled:
            return ControlStatus.DISABLED
        if self.pending:
            return ControlStatus.PENDING
        if self._outcome is not None and self._outcome.has_errors:
            return ControlStatus.INVALID
        return ControlStatus.VALID

    @property
    def has_validator(self) -> bool:
        return self._validator is not None

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """Subscribe to this node's events.

        Args:
            listener: Called synchronously with each ControlEvent

        Returns:
            Callable removing the subscription
        """
        return _subscribe(self._listeners, listener)

    def set_validator(self, validator: Optional[NodeValidator]) -> None:
        """Attach (or detach with None) the asynchronous validator."""
        self._validator = validator

    def set_value(self, value: Any, *, emit: bool = True, mark_dirty: bool = True) -> None:
        """Replace the node value and revalidate.

        Args:
            value: New raw value
            emit: Publish a VALUE event (False for silent patches)
            mark_dirty: Flag the node as changed by the user
        """
        self._assign(value, mark_dirty)
        self._run_validation()
        if emit:
            self._publish(ControlEvent(ControlEventKind.VALUE, self._path, clone_value(self.value)))
        if self._tree is not None:
            self._tree._bubble(self._path, emit)

    def _assign(self, value: Any, mark_dirty: bool) -> None:
        if self._group and self._tree is not None and self._tree.has_descendants(self._path):
            self._tree._assign_descendants(self._path, value, mark_dirty)
        else:
            self._value = value
        if mark_dirty:
            self._dirty = True

    def revalidate(self, *, emit: bool = True) -> Optional[asyncio.Task]:
        """Re-run validation against the current value.

        Args:
            emit: Publish a VALUE event so value listeners observe the run

        Returns:
            The validation task, or None when nothing runs
        """
        task = self._run_validation()
        if emit:
            self._publish(ControlEvent(ControlEventKind.VALUE, self._path, clone_value(self.value)))
        return task

    async def wait_for_validation(self) -> Optional[Outcome]:
        """Wait for the in-flight run (if any) and return the outcome."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        return self._outcome

    def mark_as_touched(self) -> None:
        if not self._touched:
            self._touched = True
            self._publish(ControlEvent(ControlEventKind.TOUCHED, self._path))

    def mark_as_untouched(self) -> None:
        if self._touched:
            self._touched = False
            self._publish(ControlEvent(ControlEventKind.TOUCHED, self._path))

    def mark_as_pristine(self) -> None:
        self._dirty = False

    def disable(self) -> None:
        """Exclude the node from value() and from validation."""
        if self._disabled:
            return
        self._disabled = True
        self.cancel_validation()
        self._publish(ControlEvent(ControlEventKind.STATUS, self._path))

    def enable(self) -> None:
        if not self._disabled:
            return
        self._disabled = False
        self._run_validation()
        self._publish(ControlEvent(ControlEventKind.STATUS, self._path))

    def cancel_validation(self) -> None:
        """Cancel the in-flight run, keeping the last applied outcome."""
        self._run_id += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def apply_outcome(self, outcome: Optional[Outcome]) -> None:
        """Store an outcome computed elsewhere and publish the status change."""
        before = (self.status, self._outcome)
        self._outcome = outcome if outcome is not None and not outcome.is_empty else None
        if (self.status, self._outcome) != before:
            self._publish(ControlEvent(ControlEventKind.STATUS, self._path))

    def _run_validation(self) -> Optional[asyncio.Task]:
        if self._disabled or self._validator is None:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; validation of '%s' skipped", self._path)
            return None
        self._run_id += 1
        was_pending = self.pending
        self._task = loop.create_task(self._validate(self._run_id, clone_value(self.value)))
        if not was_pending:
            self._publish(ControlEvent(ControlEventKind.STATUS, self._path))
        return self._task

    async def _validate(self, run_id: int, value: Any) -> None:
        try:
            outcome = await self._validator(value)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Validator for '%s' failed", self._path)
            outcome = Outcome.failure(str(e))
        if run_id != self._run_id:
            return
        self._task = None
        self._outcome = outcome if outcome is not None and not outcome.is_empty else None
        self._publish(ControlEvent(ControlEventKind.STATUS, self._path))

    def _publish(self, event: ControlEvent) -> None:
        _dispatch(self._listeners, event)
        if self._tree is not None:
            self._tree._dispatch(event)


class ControlTree:
    """Arena of control nodes keyed by field path.

    ControlTree is the mutable side of the form. The presentation layer
    registers and removes nodes as fields appear and disappear; the engine
    subscribes to its events and patches it silently when the external
    snapshot changes.

    Class Invariants:
    1. Paths are unique and normalized
    2. Iteration follows registration order
    3. Disabled leaves appear in raw_value() but not in value()
    4. Status covers every enabled node and the root outcome

    Design Patterns:
    - Registry: Nodes keyed by path
    - Observer: Tree-wide event stream
    - Composite: Group values derived from leaves

    Threading/Concurrency Guarantees:
    1. Event-loop confined
    2. Waiters are asyncio futures resolved from event dispatch

    Performance Characteristics:
    1. O(1) node lookup
    2. O(n) value construction where n is node count
    """

    def __init__(self):
        """Initialize an empty control tree."""
        self._nodes: Dict[FieldPath, ControlNode] = {}
        self._listeners: List[Listener] = []
        self._mount_waiters: Dict[FieldPath, List[asyncio.Future]] = {}
        self._idle_waiters: List[asyncio.Future] = []
        self._root_outcome: Optional[Outcome] = None
        self._root_pending = False

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalize_field_path(path) in self._nodes

    def __iter__(self) -> Iterator[ControlNode]:
        return iter(list(self._nodes.values()))

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def paths(self) -> List[FieldPath]:
        return list(self._nodes)

    def register(self, path: FieldPath, value: Any = None, *, disabled: bool = False,
                 group: bool = False) -> ControlNode:
        """Create and register a node.

        Args:
            path: Field path of the new node
            value: Initial raw value
            disabled: Whether the node starts disabled
            group: Whether the node groups descendant leaves

        Returns:
            The registered node

        Raises:
            ValueError: If a node is already registered at path
        """
        node = ControlNode(path, value, disabled=disabled, group=group, tree=self)
        if node.path in self._nodes:
            raise ValueError(f"A control is already registered at '{node.path}'")
        self._nodes[node.path] = node
        self._dispatch(ControlEvent(ControlEventKind.STRUCTURE, node.path))
        for waiter in self._mount_waiters.pop(node.path, []):
            if not waiter.done():
                waiter.set_result(node)
        return node

    def remove(self, path: FieldPath) -> bool:
        """Remove a node and, for groups, every descendant.

        Returns:
            True if anything was removed
        """
        normalized = normalize_field_path(path)
        doomed = [p for p in self._nodes if p == normalized or is_descendant(p, normalized)]
        for doomed_path in doomed:
            node = self._nodes.pop(doomed_path)
            node.cancel_validation()
            node._tree = None
            self._dispatch(ControlEvent(ControlEventKind.STRUCTURE, doomed_path))
        return bool(doomed)

    def get(self, path: FieldPath) -> Optional[ControlNode]:
        """Lenient lookup; returns None for unknown paths."""
        return self._nodes.get(normalize_field_path(path))

    def node(self, path: FieldPath) -> ControlNode:
        """Strict lookup.

        Raises:
            ControlNotFoundError: If no node is registered at path
        """
        found = self.get(path)
        if found is None:
            raise ControlNotFoundError(path)
        return found

    def leaves(self) -> List[ControlNode]:
        return [node for node in self._nodes.values() if not self._is_container(node)]

    def _is_container(self, node: ControlNode) -> bool:
        return node.is_group and self.has_descendants(node.path)

    def has_descendants(self, path: FieldPath) -> bool:
        return any(is_descendant(p, path) for p in self._nodes)

    def value(self) -> Dict[str, Any]:
        """Nested value of enabled leaves."""
        return self._build(include_disabled=False)

    def raw_value(self) -> Dict[str, Any]:
        """Nested value of every leaf, disabled ones included."""
        return self._build(include_disabled=True)

    def merged_value(self) -> Dict[str, Any]:
        """Enabled values filled in with disabled raw values."""
        return merge_values_and_raw_values(self.value(), self.raw_value())

    def value_at(self, path: FieldPath) -> Any:
        """Raw value at path built from leaves, or MISSING."""
        return get_value_at_path(self.raw_value(), path)

    def _build(self, include_disabled: bool) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for node in self.leaves():
            if node.disabled and not include_disabled:
                continue
            set_value_at_path(result, parse_field_path(node.path), clone_value(node._value))
        return result

    @property
    def root_outcome(self) -> Optional[Outcome]:
        return self._root_outcome

    @property
    def root_pending(self) -> bool:
        return self._root_pending

    def set_root_state(self, outcome: Optional[Outcome], pending: bool = False) -> None:
        """Record the root (cross-field) validation state.

        Args:
            outcome: Root outcome, None when there is nothing to report
            pending: Whether a root evaluation is in flight
        """
        outcome = outcome if outcome is not None and not outcome.is_empty else None
        if (outcome, pending) == (self._root_outcome, self._root_pending):
            return
        self._root_outcome = outcome
        self._root_pending = pending
        self._dispatch(ControlEvent(ControlEventKind.STATUS, ROOT_FORM))

    @property
    def status(self) -> ControlStatus:
        nodes = list(self._nodes.values())
        if nodes and all(node.disabled for node in nodes):
            return ControlStatus.DISABLED
        statuses = {node.status for node in nodes}
        if self._root_pending or ControlStatus.PENDING in statuses:
            return ControlStatus.PENDING
        root_invalid = self._root_outcome is not None and self._root_outcome.has_errors
        if root_invalid or ControlStatus.INVALID in statuses:
            return ControlStatus.INVALID
        return ControlStatus.VALID

    @property
    def pending(self) -> bool:
        return self.status is ControlStatus.PENDING

    @property
    def dirty(self) -> bool:
        return any(node.dirty for node in self._nodes.values())

    @property
    def touched(self) -> bool:
        return any(node.touched for node in self._nodes.values())

    def mark_all_as_touched(self) -> None:
        for node in list(self._nodes.values()):
            node.mark_as_touched()

    def mark_as_pristine(self) -> None:
        for node in self._nodes.values():
            node.mark_as_pristine()

    def patch(self, values: Mapping[str, Any], *, emit: bool = False) -> List[FieldPath]:
        """Write many leaf values at once.

        Leaves whose path does not resolve in values are left alone. Nodes
        are revalidated; VALUE events are published only when emit is True.

        Args:
            values: Nested value to read from
            emit: Publish VALUE events for changed leaves

        Returns:
            Paths of the leaves whose value changed
        """
        changed: List[FieldPath] = []
        for node in self.leaves():
            new_value = get_value_at_path(values, node.path)
            if new_value is MISSING or values_equal(node._value, new_value):
                continue
            node._value = clone_value(new_value)
            node._run_validation()
            if emit:
                node._publish(ControlEvent(ControlEventKind.VALUE, node.path, clone_value(new_value)))
            changed.append(node.path)
        groups = [p for p, n in self._nodes.items()
                  if self._is_container(n) and any(is_descendant(c, p) for c in changed)]
        for group_path in groups:
            self._nodes[group_path].revalidate(emit=emit)
        return changed

    def _assign_descendants(self, path: FieldPath, value: Any, mark_dirty: bool) -> None:
        for node in self.leaves():
            if not is_descendant(node.path, path):
                continue
            relative = parse_field_path(node.path)[len(parse_field_path(path)):]
            new_value = get_value_at_path(value, relative)
            if new_value is MISSING:
                continue
            node._value = new_value
            if mark_dirty:
                node._dirty = True
            node._run_validation()

    def _bubble(self, path: FieldPath, emit: bool) -> None:
        for ancestor in [p for p in self._nodes if is_descendant(path, p)]:
            node = self._nodes[ancestor]
            if node.is_group:
                node.revalidate(emit=emit)

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """Subscribe to every event in the tree.

        Args:
            listener: Called synchronously with each ControlEvent

        Returns:
            Callable removing the subscription
        """
        return _subscribe(self._listeners, listener)

    def _dispatch(self, event: ControlEvent) -> None:
        _dispatch(self._listeners, event)
        if self._idle_waiters and event.kind in (ControlEventKind.STATUS, ControlEventKind.STRUCTURE):
            if self.status is not ControlStatus.PENDING:
                for waiter in self._idle_waiters:
                    if not waiter.done():
                        waiter.set_result(True)

    async def wait_for_node(self, path: FieldPath, timeout: Optional[float] = None) -> Optional[ControlNode]:
        """Wait until a node is registered at path.

        Args:
            path: Field path to wait for
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            The node, or None if the timeout elapsed first
        """
        normalized = normalize_field_path(path)
        existing = self._nodes.get(normalized)
        if existing is not None:
            return existing
        waiter = asyncio.get_running_loop().create_future()
        self._mount_waiters.setdefault(normalized, []).append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            waiters = self._mount_waiters.get(normalized)
            if waiters and waiter in waiters:
                waiters.remove(waiter)
                if not waiters:
                    del self._mount_waiters[normalized]

    async def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until the tree leaves PENDING.

        Args:
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            True if the tree became idle, False if the timeout elapsed
        """
        if self.status is not ControlStatus.PENDING:
            return True
        waiter = asyncio.get_running_loop().create_future()
        self._idle_waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter, timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            self._idle_waiters.remove(waiter)

    def outstanding(self) -> List[asyncio.Task]:
        """In-flight validation runs of every node."""
        return [node._task for node in self._nodes.values() if node.pending]

    def cancel_all(self) -> None:
        """Cancel every in-flight validation run and pending waiter."""
        for node in self._nodes.values():
            node.cancel_validation()
        for waiters in self._mount_waiters.values():
            for waiter in waiters:
                waiter.cancel()
        self._mount_waiters.clear()
        for waiter in self._idle_waiters:
            if not waiter.done():
                waiter.cancel()
