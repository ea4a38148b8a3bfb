"""
Engine monitoring.

Counts and records what the engine does (suite invocations, discarded
stale results, dependency triggers) so callers and tests can inspect
behavior without patching internals.
"""

import threading
import time
from typing import Any, Dict, List, Optional


class EngineMonitor:
    """Monitors form engine execution.

    EngineMonitor collects runtime metrics and an event history that can
    be queried by event type, path and time.

    Class Invariants:
    1. Every tracked event increments the metric named after its type
    2. History preserves tracking order
    3. Returned collections are copies

    Design Patterns:
    - Observer: Components report into it
    - Command: Queries filter the recorded history

    Threading/Concurrency Guarantees:
    1. Thread-safe metric updates
    2. Atomic history appends

    Performance Characteristics:
    1. O(1) metric updates
    2. O(1) event tracking
    3. O(k) typed queries where k is the number of matching events
    """

    def __init__(self, history_limit: Optional[int] = 1000):
        """Initialize the engine monitor.

        Args:
            history_limit: Maximum events kept, None for unbounded

        Raises:
            ValueError: If history_limit is not positive
        """
        if history_limit is not None and history_limit <= 0:
            raise ValueError("History limit must be positive")
        self._history_limit = history_limit
        self._metrics: Dict[str, int] = {}
        self._history: List[Dict[str, Any]] = []
        self._metrics_lock = threading.Lock()
        self._history_lock = threading.Lock()

    @property
    def metrics(self) -> Dict[str, int]:
        """Get the current metrics.

        Returns:
            A copy of the metrics dictionary
        """
        with self._metrics_lock:
            return self._metrics.copy()

    @property
    def history(self) -> List[Dict[str, Any]]:
        """Get the event history.

        Returns:
            A copy of the event history list
        """
        with self._history_lock:
            return [event.copy() for event in self._history]

    def track(self, event_type: str, path: Optional[str] = None, **details: Any) -> None:
        """Record an engine event and count it.

        Args:
            event_type: Event name, e.g. "suite_invoked"
            path: Field path the event concerns, if any
            **details: Extra data stored with the event
        """
        event = {"type": event_type, "path": path, "timestamp": time.monotonic()}
        event.update(details)
        with self._history_lock:
            self._history.append(event)
            if self._history_limit is not None and len(self._history) > self._history_limit:
                del self._history[: len(self._history) - self._history_limit]
        self.update_metric(event_type, 1)

    def update_metric(self, name: str, value: int) -> None:
        """Update a metric value.

        Args:
            name: Metric name
            value: Value to add to metric
        """
        with self._metrics_lock:
            self._metrics[name] = self._metrics.get(name, 0) + value

    def get_metric(self, name: str, default: int = 0) -> int:
        """Get a metric value.

        Args:
            name: Metric name
            default: Returned when the metric was never updated

        Returns:
            The metric value
        """
        with self._metrics_lock:
            return self._metrics.get(name, default)

    def query_events(self, event_type: Optional[str] = None, path: Optional[str] = None,
                     start_time: Optional[float] = None) -> List[Dict[str, Any]]:
        """Query events with optional filtering.

        Args:
            event_type: Optional event type filter
            path: Optional field path filter
            start_time: Optional start time filter

        Returns:
            List of matching events in tracking order
        """
        with self._history_lock:
            return [
                event.copy()
                for event in self._history
                if (event_type is None or event["type"] == event_type)
                and (path is None or event["path"] == path)
                and (start_time is None or event["timestamp"] >= start_time)
            ]

    def reset(self) -> None:
        """Clear metrics and history."""
        with self._metrics_lock:
            self._metrics.clear()
        with self._history_lock:
            self._history.clear()
