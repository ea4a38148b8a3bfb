"""
Form engine: wires synchronization, validation and aggregation together.

Architecture:
- Owns one instance of each runtime component
- Subscribes to the control tree and routes its events
- Keeps the lifecycle status (UNINITIALIZED, ACTIVE, TERMINATED)
- Publishes one AggregatedState stream for presentation layers

Event routing:
- STRUCTURE (mount): attach validator, adopt snapshot value, validate
- STRUCTURE (unmount): drop side-channel warnings, reconcile
- VALUE: reconcile tree and snapshot, then re-run root validation if the
  snapshot changed and root validation is active
- Every event: recompute the aggregated state

Design Patterns:
- Facade Pattern: Single entry point over the components
- Mediator Pattern: Routes tree events to components
- Observer Pattern: State and snapshot subscriptions

Responsibilities:
1. Lifecycle
   - Start: attach, reconcile, bootstrap validation
   - Stop: cancel every task, release every waiter
2. Commands
   - External snapshot replacement, batched writes
   - Submit, whole-form and single-field revalidation
   - Dependency map replacement
3. Queries
   - Current state, snapshot and status
   - Waiting for outstanding work

Cross-cutting:
- Runtime faults become outcomes; nothing escapes
- Lifecycle misuse raises EngineStateError

Dependencies:
- runtime/*: Components
- config.py: Settings
"""

import asyncio
import contextlib
import functools
import logging
from typing import Any, Callable, Iterator, List, Mapping, Optional, Set, Union

from formsync.config import EngineConfig
from formsync.core.control import ControlEvent, ControlTree
from formsync.core.dependencies import DependencyMap
from formsync.core.errors import EngineStateError
from formsync.core.shape import validate_shape
from formsync.core.types import ControlEventKind, EngineStatus, FieldPath, Snapshot, Unsubscribe
from formsync.core.values import clone_value, values_equal
from formsync.runtime.aggregator import AggregatedState, StateAggregator, aggregate
from formsync.runtime.field_validator import FieldValidator, WarningsChannel
from formsync.runtime.monitor import EngineMonitor
from formsync.runtime.root_validator import RootValidator
from formsync.runtime.scheduler import DependencyScheduler, InProgressSet
from formsync.runtime.suite import SuiteAdapter
from formsync.runtime.synchronizer import SnapshotSynchronizer

logger = logging.getLogger(__name__)


class FormEngine:
    """Synchronization and validation-orchestration engine for one form.

    Class Invariants:
    1. Components are created once and live as long as the engine
    2. Tree events are processed only while ACTIVE
    3. A TERMINATED engine never restarts
    4. The published state always reflects the last processed event

    Design Patterns:
    - Facade: Single API over the components
    - Mediator: Event routing

    Threading/Concurrency Guarantees:
    1. Event-loop confined
    2. start() and stop() serialized by an asyncio lock

    Performance Characteristics:
    1. O(n) reconciliation per value change where n is control count
    2. O(n) aggregation per event
    """

    def __init__(
        self,
        tree: Optional[ControlTree] = None,
        suite: Any = None,
        *,
        root_suite: Any = None,
        config: Optional[EngineConfig] = None,
        snapshot: Snapshot = None,
        monitor: Optional[EngineMonitor] = None,
    ):
        """Initialize the engine.

        Args:
            tree: Control tree, a new empty one if None
            suite: Field validation suite (object with evaluate or callable)
            root_suite: Root validation suite; never replaced by suite
            config: Engine settings
            snapshot: Initial external snapshot
            monitor: Metrics sink, a new one if None
        """
        self._tree = tree if tree is not None else ControlTree()
        self._config = config or EngineConfig()
        self._monitor = monitor or EngineMonitor()
        self._status = EngineStatus.UNINITIALIZED
        self._async_lock = asyncio.Lock()

        self._synchronizer = SnapshotSynchronizer(self._tree, snapshot, self._monitor)
        self._warnings = WarningsChannel()
        self._field_validator = FieldValidator(
            SuiteAdapter(suite),
            self._synchronizer.peek,
            debounce=self._config.field_debounce,
            debounce_overrides=self._config.debounce_overrides,
            monitor=self._monitor,
            warnings=self._warnings,
            failure_message=self._config.internal_error_message,
        )
        self._root_validator = RootValidator(
            SuiteAdapter(root_suite),
            self._synchronizer.peek,
            mode=self._config.root_mode,
            debounce=self._config.root_debounce,
            enabled=self._config.root_enabled,
            monitor=self._monitor,
            failure_message=self._config.internal_error_message,
        )
        self._in_progress = InProgressSet()
        self._scheduler = DependencyScheduler(
            self._tree,
            self._config.dependencies,
            in_progress=self._in_progress,
            debounce=self._config.dependency_debounce,
            idle_timeout=self._config.idle_timeout,
            in_progress_ttl=self._config.in_progress_ttl,
            mount_timeout=self._config.dependent_mount_timeout,
            monitor=self._monitor,
        )
        self._aggregator = StateAggregator(self._compute_state)

        self._submitted = False
        self._batch_depth = 0
        self._root_run = 0
        self._root_tasks: Set[asyncio.Task] = set()
        self._validated_snapshot: Any = None
        self._subscriptions: List[Unsubscribe] = []

    async def __aenter__(self) -> "FormEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def tree(self) -> ControlTree:
        return self._tree

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def monitor(self) -> EngineMonitor:
        return self._monitor

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def state(self) -> AggregatedState:
        """Last published aggregated state."""
        return self._aggregator.state

    @property
    def snapshot(self) -> Snapshot:
        """Copy of the current snapshot."""
        return self._synchronizer.snapshot

    @property
    def submitted(self) -> bool:
        return self._submitted

    @property
    def warnings(self) -> WarningsChannel:
        return self._warnings

    @property
    def in_progress(self) -> InProgressSet:
        return self._in_progress

    @property
    def dependencies(self) -> DependencyMap:
        return self._scheduler.dependencies

    async def start(self) -> None:
        """Start processing tree events.

        Raises:
            EngineStateError: If the engine was already stopped
        """
        async with self._async_lock:
            if self._status is EngineStatus.ACTIVE:
                return
            if self._status is EngineStatus.TERMINATED:
                raise EngineStateError("A stopped engine cannot be restarted")

            self._subscriptions.append(self._tree.subscribe(self._on_tree_event))
            for node in self._tree:
                self._attach(node.path)
            self._synchronizer.reconcile()
            self._scheduler.start()
            self._status = EngineStatus.ACTIVE

            # Bootstrap: one scoped run per control, through its own pipeline
            for node in self._tree:
                node.revalidate(emit=False)
            self._after_sync()
            self._aggregator.recompute()
            logger.debug("Form engine started with %d controls", len(self._tree))

    async def stop(self) -> None:
        """Tear down: cancel all work and unsubscribe. Idempotent."""
        async with self._async_lock:
            if self._status is EngineStatus.TERMINATED:
                return
            self._status = EngineStatus.TERMINATED
            for unsubscribe in self._subscriptions:
                unsubscribe()
            self._subscriptions.clear()
            self._scheduler.stop()
            self._field_validator.close()
            self._root_validator.close()
            for task in list(self._root_tasks):
                task.cancel()
            self._tree.cancel_all()
            for node in self._tree:
                node.set_validator(None)
            logger.debug("Form engine stopped")

    def subscribe(self, listener: Callable[[AggregatedState], None]) -> Unsubscribe:
        """Subscribe to aggregated state changes.

        Args:
            listener: Called with each new AggregatedState

        Returns:
            Callable removing the subscription
        """
        return self._aggregator.subscribe(listener)

    def subscribe_snapshot(self, listener: Callable[[Snapshot], None]) -> Unsubscribe:
        """Subscribe to snapshots published by the tree.

        Args:
            listener: Called with a copy of each published snapshot

        Returns:
            Callable removing the subscription
        """
        return self._synchronizer.subscribe(listener)

    def set_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the external snapshot (model-side write)."""
        self._synchronizer.replace_snapshot(snapshot)
        if self._status is EngineStatus.ACTIVE and self._batch_depth == 0:
            self._sync()
            self._aggregator.recompute()

    @contextlib.contextmanager
    def batch(self) -> Iterator["FormEngine"]:
        """Defer reconciliation so several writes land in one tick.

        Example:
            with engine.batch():
                engine.tree.node("name").set_value("Ada")
                engine.set_snapshot({"name": "Grace"})
            # one reconciliation; the tree wins the conflict
        """
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._status is EngineStatus.ACTIVE:
                self._sync()
                self._aggregator.recompute()

    async def submit(self, timeout: Optional[float] = None) -> AggregatedState:
        """Handle a submission event.

        Marks the form submitted and every control touched, runs root
        validation, then waits for outstanding work.

        Args:
            timeout: Longest wait for outstanding work, defaults to idle_timeout

        Returns:
            The aggregated state after the wait

        Raises:
            EngineStateError: If the engine is not active
        """
        self._require_active("submit")
        self._submitted = True
        self._root_validator.mark_submitted()
        self._tree.mark_all_as_touched()
        self._schedule_root()
        self._aggregator.recompute()
        await self.wait_until_idle(self._config.idle_timeout if timeout is None else timeout)
        return self._aggregator.state

    def reset_submitted(self) -> None:
        """Forget the submission; SUBMIT-mode root validation is gated again."""
        self._submitted = False
        self._root_validator.reset()
        self._aggregator.recompute()

    def trigger_form_validation(self) -> None:
        """Revalidate every control and, if active, the root.

        Raises:
            EngineStateError: If the engine is not active
        """
        self._require_active("trigger validation")
        for node in self._tree:
            node.revalidate(emit=True)
        self._schedule_root()
        self._aggregator.recompute()

    def validate_field(self, path: FieldPath) -> Optional[asyncio.Task]:
        """Revalidate one control, emitting so dependents follow.

        Args:
            path: Control path; unknown paths are ignored

        Returns:
            The validation task, or None
        """
        self._require_active("validate a field")
        node = self._tree.get(path)
        if node is None:
            logger.debug("validate_field: no control at '%s'", path)
            return None
        return node.revalidate(emit=True)

    def set_dependency_map(self, dependencies: Union[DependencyMap, Mapping[FieldPath, Any]]) -> None:
        """Swap the dependency map wholesale."""
        if not isinstance(dependencies, DependencyMap):
            dependencies = DependencyMap(dependencies)
        self._scheduler.set_dependencies(dependencies)

    async def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no validation or scheduler work is outstanding.

        Args:
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            True if idle was reached, False if the timeout elapsed
        """
        try:
            await asyncio.wait_for(self._drain(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            if self._status is EngineStatus.ACTIVE:
                self._aggregator.recompute()

    async def _drain(self) -> None:
        while True:
            tasks = (
                self._tree.outstanding()
                + self._field_validator.outstanding()
                + self._scheduler.outstanding()
                + [task for task in self._root_tasks if not task.done()]
            )
            if not tasks:
                return
            await asyncio.wait(tasks)

    def _require_active(self, action: str) -> None:
        if self._status is not EngineStatus.ACTIVE:
            raise EngineStateError(f"Cannot {action}: engine is {self._status.name}")

    def _attach(self, path: FieldPath) -> None:
        node = self._tree.get(path)
        if node is not None:
            node.set_validator(functools.partial(self._field_validator.validate, node.path))

    def _on_tree_event(self, event: ControlEvent) -> None:
        if self._status is not EngineStatus.ACTIVE:
            return
        if event.kind is ControlEventKind.STRUCTURE:
            node = self._tree.get(event.path)
            if node is not None:
                self._attach(node.path)
                self._synchronizer.adopt(node.path)
                node.revalidate(emit=False)
            else:
                self._field_validator.forget(event.path)
            if self._batch_depth == 0:
                self._sync()
        elif event.kind is ControlEventKind.VALUE and self._batch_depth == 0:
            self._sync()
        if self._batch_depth == 0:
            self._aggregator.recompute()

    def _sync(self) -> None:
        self._synchronizer.reconcile()
        self._after_sync()

    def _after_sync(self) -> None:
        snapshot = self._synchronizer.peek()
        if values_equal(snapshot, self._validated_snapshot):
            return
        self._validated_snapshot = clone_value(snapshot)
        if self._config.shape is not None:
            validate_shape(snapshot, self._config.shape)
        self._schedule_root()

    def _schedule_root(self) -> None:
        if not self._root_validator.active:
            return
        self._root_run += 1
        run = self._root_run
        self._tree.set_root_state(self._tree.root_outcome, pending=True)
        task = asyncio.get_running_loop().create_task(self._run_root(run))
        self._root_tasks.add(task)
        task.add_done_callback(self._root_tasks.discard)

    async def _run_root(self, run: int) -> None:
        outcome = await self._root_validator.validate()
        if run != self._root_run or self._status is not EngineStatus.ACTIVE:
            return
        self._tree.set_root_state(outcome, pending=False)
        self._aggregator.recompute()

    def _compute_state(self) -> AggregatedState:
        return aggregate(self._tree, self._synchronizer.peek(), self._warnings.as_dict(), self._submitted)
