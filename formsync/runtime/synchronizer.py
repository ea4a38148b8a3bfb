"""
Snapshot synchronization between the control tree and the external snapshot.

Architecture:
- Two change sources: tree value changes and external snapshot replacement
- Two trackers remember the last values each side agreed on
- Every reconcile() call is one synchronous tick; it never suspends

Decision table for one tick:
- Only the tree changed: publish the tree value laid over the snapshot (tree wins)
- Only the snapshot changed: patch the tree silently (model wins)
- Both changed to agreeing values: update the trackers only
- Both changed to conflicting values: tree wins

The tree only has an opinion about paths it has controls for, so entries
of unmounted fields survive in the snapshot until the application clears
them (see core.values.clear_fields_when).

Responsibilities:
1. Reconciliation
   - Structural comparison against the trackers
   - Silent patching so the patch does not re-enter reconciliation
2. Mounting
   - Newly registered controls adopt their value from the snapshot
3. Publishing
   - Deep-copied snapshots handed to subscribers
   - Nothing published when the result equals the current snapshot
4. Robustness
   - Never raises; clone failures fall back to shallow copies
   - An empty tree keeps the last synced value

Dependencies:
- core/control.py: Tree value and silent patch
- core/paths.py: Leaf writes onto the snapshot
- core/values.py: Clone and structural equality
- monitor.py: Publish and patch metrics
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, List, Optional

from formsync.core.control import ControlTree
from formsync.core.paths import MISSING, get_value_at_path, set_value_at_path
from formsync.core.types import FieldPath, Snapshot, SyncAction, Unsubscribe
from formsync.core.values import clone_value, values_equal
from formsync.runtime.monitor import EngineMonitor

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]


class SnapshotSynchronizer:
    """Keeps the control tree and the external snapshot convergent.

    Class Invariants:
    1. After a non-NOOP tick both trackers hold the agreed values
    2. The published snapshot is never mutated in place
    3. Patching the tree never publishes VALUE events
    4. reconcile() is not re-entrant; nested calls are NOOPs

    Design Patterns:
    - Mediator: Sits between the two representations
    - Observer: Snapshot subscribers

    Threading/Concurrency Guarantees:
    1. Event-loop confined
    2. Never suspends
    """

    def __init__(self, tree: ControlTree, snapshot: Snapshot = None,
                 monitor: Optional[EngineMonitor] = None):
        """Initialize the synchronizer.

        Args:
            tree: Control tree to reconcile
            snapshot: Initial external snapshot, None if the model is empty
            monitor: Receives publish and patch events
        """
        self._tree = tree
        self._snapshot = clone_value(snapshot)
        self._last_tree: Any = None
        self._last_snapshot: Any = None
        self._synced = False
        self._reconciling = False
        self._monitor = monitor or EngineMonitor()
        self._listeners: List[SnapshotListener] = []

    @property
    def snapshot(self) -> Snapshot:
        """Copy of the current snapshot."""
        return clone_value(self._snapshot)

    def peek(self) -> Snapshot:
        """The current snapshot without copying; callers must not mutate it."""
        return self._snapshot

    @property
    def synced(self) -> bool:
        return self._synced

    @property
    def last_synced_tree(self) -> Any:
        return clone_value(self._last_tree)

    @property
    def last_synced_snapshot(self) -> Any:
        return clone_value(self._last_snapshot)

    def subscribe(self, listener: SnapshotListener) -> Unsubscribe:
        """Subscribe to published snapshots.

        Args:
            listener: Called with a copy of each snapshot the tree publishes

        Returns:
            Callable removing the subscription
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        """Record an external snapshot replacement.

        Takes effect at the next reconcile() call.
        """
        self._snapshot = clone_value(snapshot)

    def adopt(self, path: FieldPath) -> bool:
        """Load a newly mounted control's value from the snapshot.

        The mount is recorded as already synced, so it does not count as a
        tree change at the next tick.

        Args:
            path: Path of the mounted control

        Returns:
            True if the control took a value from the snapshot
        """
        node = self._tree.get(path)
        if node is None or not self._synced:
            return False
        value = get_value_at_path(self._snapshot, node.path)
        adopted = False
        if value is not MISSING and not values_equal(node.value, value):
            node.set_value(clone_value(value), emit=False, mark_dirty=False)
            adopted = True
        if self._agrees(self._snapshot):
            self._last_tree = clone_value(self._tree_value())
        return adopted

    def reconcile(self) -> SyncAction:
        """Run one synchronization tick.

        Returns:
            The action taken
        """
        if self._reconciling:
            return SyncAction.NOOP
        self._reconciling = True
        try:
            return self._reconcile()
        except Exception:
            logger.exception("Snapshot reconciliation failed")
            return SyncAction.NOOP
        finally:
            self._reconciling = False

    def _tree_value(self) -> Any:
        if len(self._tree) == 0 and self._synced:
            # Nothing mounted; keep the last agreed value
            return self._last_tree
        return self._tree.merged_value()

    def _overlay(self, base: Any) -> Any:
        """Write every mounted leaf into a copy of base.

        Only registered leaves are written, so a leaf holding None is a real
        value while list slots without a control keep the base entry.
        """
        published = clone_value(dict(base)) if isinstance(base, Mapping) else {}
        for node in self._tree.leaves():
            set_value_at_path(published, node.path, clone_value(node.value))
        return published

    def _agrees(self, snapshot: Any) -> bool:
        if snapshot is None:
            return False
        return values_equal(self._overlay(snapshot), snapshot)

    def _reconcile(self) -> SyncAction:
        tree_value = self._tree_value()
        snapshot = self._snapshot

        if not self._synced:
            if snapshot is None:
                return self._tree_wins(tree_value, SyncAction.TREE_WINS)
            if self._agrees(snapshot):
                return self._settle(tree_value, snapshot)
            return self._model_wins(snapshot)

        tree_changed = not values_equal(tree_value, self._last_tree)
        snapshot_changed = not values_equal(snapshot, self._last_snapshot)

        if not tree_changed and not snapshot_changed:
            return SyncAction.NOOP
        if tree_changed and not snapshot_changed:
            return self._tree_wins(tree_value, SyncAction.TREE_WINS)
        if snapshot_changed and not tree_changed:
            return self._model_wins(snapshot)
        if self._agrees(snapshot):
            return self._settle(tree_value, snapshot)
        logger.debug("Tree and snapshot changed to different values in one tick; tree wins")
        return self._tree_wins(tree_value, SyncAction.CONFLICT)

    def _tree_wins(self, tree_value: Any, action: SyncAction) -> SyncAction:
        published = self._overlay(self._snapshot)
        self._last_tree = clone_value(tree_value)
        self._last_snapshot = clone_value(published)
        self._synced = True
        if values_equal(published, self._snapshot):
            return SyncAction.SETTLED
        self._snapshot = published
        self._monitor.track("snapshot_published", None, action=action.name)
        for listener in list(self._listeners):
            try:
                listener(clone_value(published))
            except Exception:
                logger.exception("Snapshot listener failed")
        return action

    def _model_wins(self, snapshot: Any) -> SyncAction:
        patchable = snapshot if isinstance(snapshot, Mapping) else {}
        changed = self._tree.patch(patchable, emit=False)
        self._monitor.track("tree_patched", None, paths=changed)
        self._last_tree = clone_value(self._tree.merged_value() if len(self._tree) else self._last_tree)
        self._last_snapshot = clone_value(snapshot)
        self._synced = True
        return SyncAction.MODEL_WINS

    def _settle(self, tree_value: Any, snapshot: Any) -> SyncAction:
        self._last_tree = clone_value(tree_value)
        self._last_snapshot = clone_value(snapshot)
        self._synced = True
        return SyncAction.SETTLED
