"""
Dependency-triggered revalidation scheduling.

Architecture:
- Subscribes to value changes of every trigger field in the DependencyMap
- Arms a trigger only once its control node exists, and re-arms on remount
- Runs one asyncio cycle task per trigger change
- Uses the engine-owned InProgressSet to break feedback loops

Design Patterns:
- Observer Pattern: Trigger node subscriptions
- Command Pattern: Cycle tasks
- Strategy Pattern: Injected clock for expiry

Responsibilities:
1. Trigger Handling
   - Wait for trigger nodes to mount
   - Debounce rapid changes, newest wins
   - Drop changes of triggers that are in progress
2. Revalidation Cycle
   - Bounded wait for the form to leave PENDING
   - Bounded wait for dependents to mount
   - Mark trigger and dependents in progress
   - Force each dependent to revalidate, emitting
3. Liveness
   - In-progress entries carry expiry deadlines
   - Entries are released when revalidation finishes or expires

Cross-cutting:
- Missing dependents logged as warnings and skipped
- Idle-wait timeouts logged at DEBUG

Dependencies:
- core/control.py: Control tree and node subscriptions
- core/dependencies.py: Trigger to dependents mapping
- timers.py: Deadlines for in-progress entries
- monitor.py: Trigger metrics
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from formsync.core.control import ControlEvent, ControlNode, ControlTree
from formsync.core.dependencies import DependencyMap
from formsync.core.types import ControlEventKind, FieldPath, Unsubscribe
from formsync.runtime.monitor import EngineMonitor
from formsync.runtime.timers import Clock, Deadline, monotonic_clock

logger = logging.getLogger(__name__)


class InProgressSet:
    """Field paths currently undergoing a forced revalidation.

    Each entry carries its own expiry deadline. Membership checks drop
    expired entries, so a stalled revalidation can never keep a field out
    of future triggering.

    Class Invariants:
    1. Expired entries are never reported as members
    2. Adding an existing path replaces its deadline
    3. Releasing only removes entries still holding the caller's deadline
    4. clear() is reserved for engine teardown
    """

    def __init__(self, clock: Optional[Clock] = None):
        """Initialize an empty set.

        Args:
            clock: Time source for deadlines, monotonic by default
        """
        self._clock = clock or monotonic_clock
        self._entries: Dict[FieldPath, Deadline] = {}

    def add(self, paths: Iterable[FieldPath], ttl: float) -> Deadline:
        """Mark paths as in progress.

        Args:
            paths: Paths to mark
            ttl: Seconds until the entries expire

        Returns:
            The deadline shared by the new entries

        Raises:
            ValueError: If ttl is negative
        """
        deadline = Deadline.after(ttl, self._clock)
        for path in paths:
            self._entries[path] = deadline
        return deadline

    def release(self, paths: Iterable[FieldPath], deadline: Deadline) -> None:
        """Remove entries added with deadline.

        Entries re-added by a later cycle keep their newer deadline.
        """
        for path in paths:
            if self._entries.get(path) is deadline:
                del self._entries[path]

    def expire(self) -> List[FieldPath]:
        """Drop expired entries.

        Returns:
            The paths that were dropped
        """
        expired = [path for path, deadline in self._entries.items() if deadline.is_expired()]
        for path in expired:
            del self._entries[path]
        return expired

    def __contains__(self, path: object) -> bool:
        deadline = self._entries.get(path)
        if deadline is None:
            return False
        if deadline.is_expired():
            del self._entries[path]
            return False
        return True

    def __len__(self) -> int:
        self.expire()
        return len(self._entries)

    @property
    def paths(self) -> Set[FieldPath]:
        self.expire()
        return set(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class DependencyScheduler:
    """Forces dependent fields to revalidate when their trigger changes.

    Class Invariants:
    1. Only the newest change of a trigger starts a cycle
    2. A trigger in the InProgressSet never starts a cycle
    3. Every wait in a cycle is bounded
    4. Dependencies are swapped wholesale, never patched

    Design Patterns:
    - Observer: Trigger subscriptions
    - Command: One task per cycle

    Threading/Concurrency Guarantees:
    1. Event-loop confined
    2. Suspends only in debounce, idle wait and mount wait

    Performance Characteristics:
    1. O(t) arming where t is trigger count
    2. O(d) revalidation where d is dependent count
    """

    def __init__(
        self,
        tree: ControlTree,
        dependencies: Optional[DependencyMap] = None,
        *,
        in_progress: Optional[InProgressSet] = None,
        debounce: float = 0.0,
        idle_timeout: float = 2.0,
        in_progress_ttl: float = 0.5,
        mount_timeout: float = 0.1,
        monitor: Optional[EngineMonitor] = None,
    ):
        """Initialize the scheduler.

        Args:
            tree: Control tree to observe
            dependencies: Trigger to dependents mapping
            in_progress: Shared in-progress set
            debounce: Trigger debounce in seconds
            idle_timeout: Longest wait for the form to leave PENDING
            in_progress_ttl: Expiry of in-progress entries in seconds
            mount_timeout: Longest wait for dependents to mount
            monitor: Receives trigger events

        Raises:
            ValueError: If any duration is negative
        """
        if min(debounce, idle_timeout, in_progress_ttl, mount_timeout) < 0:
            raise ValueError("Scheduler durations cannot be negative")
        self._tree = tree
        self._dependencies = dependencies or DependencyMap()
        self._in_progress = in_progress if in_progress is not None else InProgressSet()
        self._debounce = debounce
        self._idle_timeout = idle_timeout
        self._ttl = in_progress_ttl
        self._mount_timeout = mount_timeout
        self._monitor = monitor or EngineMonitor()
        self._armed: Dict[FieldPath, Tuple[ControlNode, Unsubscribe]] = {}
        self._debouncing: Dict[FieldPath, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._tree_subscription: Optional[Unsubscribe] = None

    @property
    def dependencies(self) -> DependencyMap:
        return self._dependencies

    @property
    def in_progress(self) -> InProgressSet:
        return self._in_progress

    @property
    def armed_triggers(self) -> List[FieldPath]:
        return list(self._armed)

    @property
    def running(self) -> bool:
        return self._tree_subscription is not None

    def outstanding(self) -> List[asyncio.Task]:
        return [task for task in self._tasks if not task.done()]

    def start(self) -> None:
        """Subscribe to the tree and arm every mounted trigger."""
        if self._tree_subscription is not None:
            return
        self._tree_subscription = self._tree.subscribe(self._on_tree_event)
        self._arm_all()

    def stop(self) -> None:
        """Unsubscribe everything, cancel cycles and clear the in-progress set."""
        if self._tree_subscription is not None:
            self._tree_subscription()
            self._tree_subscription = None
        self._disarm_all()
        for task in list(self._tasks):
            task.cancel()
        self._debouncing.clear()
        self._in_progress.clear()

    def set_dependencies(self, dependencies: DependencyMap) -> None:
        """Replace the dependency map wholesale.

        Triggers absent from the new map are disarmed and their pending
        cycles cancelled.
        """
        removed = set(self._dependencies) - set(dependencies)
        for trigger in removed:
            pending = self._debouncing.pop(trigger, None)
            if pending is not None:
                pending.cancel()
        self._disarm_all()
        self._dependencies = dependencies
        if self._tree_subscription is not None:
            self._arm_all()

    def _arm_all(self) -> None:
        for trigger in self._dependencies:
            node = self._tree.get(trigger)
            if node is None:
                logger.debug("Trigger control '%s' not mounted yet; waiting", trigger)
                continue
            self._arm(trigger, node)

    def _disarm_all(self) -> None:
        for trigger in list(self._armed):
            self._disarm(trigger)

    def _arm(self, trigger: FieldPath, node: ControlNode) -> None:
        self._disarm(trigger)

        def listener(event: ControlEvent) -> None:
            if event.kind is ControlEventKind.VALUE:
                self._on_trigger_change(trigger)

        self._armed[trigger] = (node, node.subscribe(listener))

    def _disarm(self, trigger: FieldPath) -> None:
        armed = self._armed.pop(trigger, None)
        if armed is not None:
            armed[1]()

    def _on_tree_event(self, event: ControlEvent) -> None:
        if event.kind is not ControlEventKind.STRUCTURE or event.path not in self._dependencies:
            return
        node = self._tree.get(event.path)
        if node is None:
            self._disarm(event.path)
        elif self._armed.get(event.path, (None,))[0] is not node:
            self._arm(event.path, node)

    def _on_trigger_change(self, trigger: FieldPath) -> None:
        if trigger in self._in_progress:
            logger.debug("Ignoring change of '%s'; revalidation in progress", trigger)
            self._monitor.track("dependency_filtered", trigger)
            return
        previous = self._debouncing.pop(trigger, None)
        if previous is not None and not previous.done():
            previous.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dependents of '%s' not revalidated", trigger)
            return
        task = loop.create_task(self._cycle(trigger))
        self._debouncing[trigger] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _cycle(self, trigger: FieldPath) -> None:
        await asyncio.sleep(self._debounce)
        if self._debouncing.get(trigger) is asyncio.current_task():
            del self._debouncing[trigger]
        if trigger in self._in_progress:
            self._monitor.track("dependency_filtered", trigger)
            return

        if not await self._tree.wait_for_idle(self._idle_timeout):
            logger.debug("Form still pending after %.2fs; revalidating dependents of '%s' anyway",
                         self._idle_timeout, trigger)

        nodes = await self._mounted_dependents(trigger)
        if not nodes:
            return
        paths = [trigger] + [node.path for node in nodes]
        deadline = self._in_progress.add(paths, self._ttl)
        self._monitor.track("dependency_triggered", trigger, dependents=[node.path for node in nodes])
        try:
            runs = [task for task in (node.revalidate(emit=True) for node in nodes) if task is not None]
            if runs:
                await asyncio.wait(runs, timeout=deadline.remaining())
        finally:
            self._in_progress.release(paths, deadline)

    async def _mounted_dependents(self, trigger: FieldPath) -> List[ControlNode]:
        dependents = self._dependencies.dependents_of(trigger)
        found = {path: self._tree.get(path) for path in dependents}
        missing = [path for path, node in found.items() if node is None]
        if missing:
            mounted = await asyncio.gather(
                *(self._tree.wait_for_node(path, self._mount_timeout) for path in missing)
            )
            found.update(zip(missing, mounted))
        nodes = []
        for path in dependents:
            node = found[path]
            if node is None:
                logger.warning("Dependent control '%s' not found for trigger '%s'; skipping", path, trigger)
                continue
            nodes.append(node)
        return nodes

    async def wait_until_idle(self) -> None:
        """Wait until no cycle is outstanding."""
        while True:
            tasks = self.outstanding()
            if not tasks:
                return
            await asyncio.wait(tasks)
