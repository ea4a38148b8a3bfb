"""
Per-field asynchronous validation.

Architecture:
- One cached pipeline per field path, created lazily and reused
- Each call pushes a candidate snapshot and bumps the pipeline generation
- Only the newest generation survives the debounce and reaches the suite
- Callers in the same round share one future resolved with the newest outcome
- Warnings without errors go to a side channel instead of the outcome

Design Patterns:
- Flyweight: Pipelines cached per path
- Observer: Monitor notified of invocations and discards
- Null Object: Missing suite behaves as an always-passing suite

Responsibilities:
1. Candidate Construction
   - Current merged snapshot with the field overwritten
   - Deep copies so suites never see shared state
2. Scheduling
   - Configurable debounce, per-field overrides
   - Take-latest via generation counters
3. Result Mapping
   - Errors produce an invalid outcome (warnings attached)
   - Warnings only produce None plus a side-channel entry
   - Suite faults produce the generic internal-error outcome
4. Teardown
   - Cancel outstanding work and release every waiter

Cross-cutting:
- Suite faults logged with traceback, never raised
- Stale results logged at DEBUG

Dependencies:
- suite.py: Adapter invoked per evaluation
- monitor.py: Invocation metrics
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, MutableMapping, Optional, Set

from formsync.core.errors import SuiteExecutionError
from formsync.core.outcome import DEFAULT_INTERNAL_ERROR_MESSAGE, Outcome
from formsync.core.paths import normalize_field_path, set_value_at_path
from formsync.core.types import FieldPath, Messages, Snapshot
from formsync.core.values import clone_value
from formsync.runtime.monitor import EngineMonitor
from formsync.runtime.suite import SuiteAdapter

logger = logging.getLogger(__name__)


class WarningsChannel:
    """Warnings of fields that have no errors, keyed by path.

    Presentation layers read it to show advisory messages on fields that
    remain valid.
    """

    def __init__(self):
        self._warnings: Dict[FieldPath, Messages] = {}

    def set(self, path: FieldPath, warnings: Messages) -> None:
        if warnings:
            self._warnings[path] = tuple(warnings)
        else:
            self._warnings.pop(path, None)

    def clear(self, path: Optional[FieldPath] = None) -> None:
        if path is None:
            self._warnings.clear()
        else:
            self._warnings.pop(path, None)

    def get(self, path: FieldPath) -> Messages:
        return self._warnings.get(path, ())

    def __contains__(self, path: object) -> bool:
        return path in self._warnings

    def __iter__(self) -> Iterator[FieldPath]:
        return iter(list(self._warnings))

    def __len__(self) -> int:
        return len(self._warnings)

    def as_dict(self) -> Dict[FieldPath, Messages]:
        return dict(self._warnings)


class _Pipeline:
    """Debounce and take-latest state of one field."""

    __slots__ = ("path", "generation", "round", "tasks")

    def __init__(self, path: FieldPath):
        self.path = path
        self.generation = 0
        self.round: Optional[asyncio.Future] = None
        self.tasks: Set[asyncio.Task] = set()


class FieldValidator:
    """Debounced, take-latest validation of individual fields.

    Class Invariants:
    1. Generations per path increase monotonically
    2. A result is applied only if its generation is still the newest
    3. Every round future is resolved (or released at teardown)
    4. The pipeline cache is mutated only by this validator

    Design Patterns:
    - Flyweight: Cached pipelines
    - Strategy: Suite adapter supplied by the engine

    Threading/Concurrency Guarantees:
    1. Event-loop confined
    2. Suspends only in debounce and suite evaluation

    Performance Characteristics:
    1. O(1) pipeline lookup
    2. One suite call per debounce window per field
    """

    def __init__(
        self,
        adapter: SuiteAdapter,
        snapshot_source: Callable[[], Snapshot],
        *,
        debounce: float = 0.0,
        debounce_overrides: Optional[Mapping[FieldPath, float]] = None,
        monitor: Optional[EngineMonitor] = None,
        warnings: Optional[WarningsChannel] = None,
        failure_message: str = DEFAULT_INTERNAL_ERROR_MESSAGE,
    ):
        """Initialize the field validator.

        Args:
            adapter: Suite adapter to evaluate with
            snapshot_source: Returns the current merged snapshot
            debounce: Default debounce in seconds
            debounce_overrides: Per-path debounce in seconds
            monitor: Receives invocation events
            warnings: Side channel for warnings of valid fields
            failure_message: Generic message used for suite faults

        Raises:
            ValueError: If a debounce is negative
        """
        overrides = {normalize_field_path(p): d for p, d in (debounce_overrides or {}).items()}
        if debounce < 0 or any(d < 0 for d in overrides.values()):
            raise ValueError("Debounce cannot be negative")
        self._adapter = adapter
        self._snapshot_source = snapshot_source
        self._debounce = debounce
        self._overrides = overrides
        self._monitor = monitor or EngineMonitor()
        self._warnings = warnings if warnings is not None else WarningsChannel()
        self._failure_message = failure_message
        self._pipelines: Dict[FieldPath, _Pipeline] = {}
        self._closed = False

    @property
    def warnings(self) -> WarningsChannel:
        return self._warnings

    @property
    def pipeline_paths(self) -> List[FieldPath]:
        return list(self._pipelines)

    def generation(self, path: FieldPath) -> int:
        """Newest generation pushed for path (0 if never validated)."""
        pipeline = self._pipelines.get(normalize_field_path(path))
        return pipeline.generation if pipeline else 0

    def debounce_for(self, path: FieldPath) -> float:
        return self._overrides.get(path, self._debounce)

    def outstanding(self) -> List[asyncio.Task]:
        return [task for p in self._pipelines.values() for task in p.tasks if not task.done()]

    async def validate(self, path: FieldPath, value: Any) -> Optional[Outcome]:
        """Validate a candidate value for one field.

        Args:
            path: Field (or group) path
            value: Candidate value for that path

        Returns:
            The newest outcome for the field once its round completes.
            None means valid; warnings may sit in the side channel.
        """
        if self._closed:
            return None
        path = normalize_field_path(path)
        pipeline = self._pipelines.get(path)
        if pipeline is None:
            pipeline = self._pipelines[path] = _Pipeline(path)

        candidate = self._candidate(path, value)
        pipeline.generation += 1
        generation = pipeline.generation
        loop = asyncio.get_running_loop()
        if pipeline.round is None or pipeline.round.done():
            pipeline.round = loop.create_future()
        current_round = pipeline.round

        task = loop.create_task(self._run(pipeline, generation, candidate, current_round))
        pipeline.tasks.add(task)
        task.add_done_callback(pipeline.tasks.discard)
        return await asyncio.shield(current_round)

    def _candidate(self, path: FieldPath, value: Any) -> Snapshot:
        snapshot = clone_value(self._snapshot_source())
        if not isinstance(snapshot, MutableMapping):
            snapshot = {}
        try:
            set_value_at_path(snapshot, path, clone_value(value))
        except ValueError as e:
            logger.debug("Cannot place candidate for '%s' in snapshot: %s", path, e)
            snapshot = {}
            set_value_at_path(snapshot, path, clone_value(value))
        return snapshot

    async def _run(self, pipeline: _Pipeline, generation: int, candidate: Snapshot,
                   current_round: asyncio.Future) -> None:
        path = pipeline.path
        # Zero debounce still yields once so same-tick pushes coalesce
        await asyncio.sleep(self.debounce_for(path))
        if generation != pipeline.generation:
            self._discard(path, generation)
            return

        self._monitor.track("suite_invoked", path, generation=generation)
        try:
            outcome = await self._adapter.outcome(candidate, path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = SuiteExecutionError(path, e)
            logger.error("Validation suite failed for '%s'", path, exc_info=e)
            self._monitor.track("internal_error", path, detail=str(error))
            outcome = Outcome.failure(str(e) or type(e).__name__, self._failure_message)

        if generation != pipeline.generation:
            self._discard(path, generation)
            return
        result = self._record(path, outcome)
        if not current_round.done():
            current_round.set_result(result)

    def _discard(self, path: FieldPath, generation: int) -> None:
        logger.debug("Discarding stale result for '%s' (generation %d)", path, generation)
        self._monitor.track("stale_discarded", path, generation=generation)

    def _record(self, path: FieldPath, outcome: Optional[Outcome]) -> Optional[Outcome]:
        if outcome is None or outcome.is_empty:
            self._warnings.clear(path)
            return None
        if outcome.has_errors:
            # Warnings travel inside the outcome
            self._warnings.clear(path)
            return outcome
        self._warnings.set(path, outcome.warnings)
        return None

    def forget(self, path: FieldPath) -> None:
        """Drop side-channel warnings of a removed field; the pipeline stays cached."""
        self._warnings.clear(normalize_field_path(path))

    def close(self) -> None:
        """Cancel all pipelines and release their waiters with None."""
        self._closed = True
        for pipeline in self._pipelines.values():
            for task in list(pipeline.tasks):
                task.cancel()
            if pipeline.round is not None and not pipeline.round.done():
                pipeline.round.set_result(None)
        self._pipelines.clear()
        self._warnings.clear()
