"""
Root-level (cross-field) validation.

Evaluates rules that span several fields under the reserved ROOT_FORM key.
It needs its own root suite and never falls back to the field suite.

Modes:
- SUBMIT (default): evaluates only once the form has been submitted
- LIVE: evaluates on every debounced snapshot change

Disabled or unconfigured validators always resolve to None.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Set

from formsync.core.errors import SuiteExecutionError
from formsync.core.outcome import DEFAULT_INTERNAL_ERROR_MESSAGE, Outcome
from formsync.core.paths import ROOT_FORM
from formsync.core.types import RootValidationMode, Snapshot
from formsync.core.values import clone_value
from formsync.runtime.monitor import EngineMonitor
from formsync.runtime.suite import SuiteAdapter

logger = logging.getLogger(__name__)


class RootValidator:
    """Cross-field validator gated by a validation mode.

    Class Invariants:
    1. Never evaluates the field suite
    2. In SUBMIT mode never evaluates before mark_submitted()
    3. Only the newest generation's outcome is returned

    Threading/Concurrency Guarantees:
    1. Event-loop confined
    2. Suspends only in debounce and suite evaluation
    """

    def __init__(
        self,
        adapter: SuiteAdapter,
        snapshot_source: Callable[[], Snapshot],
        *,
        mode: RootValidationMode = RootValidationMode.SUBMIT,
        debounce: float = 0.0,
        enabled: bool = True,
        monitor: Optional[EngineMonitor] = None,
        failure_message: str = DEFAULT_INTERNAL_ERROR_MESSAGE,
    ):
        """Initialize the root validator.

        Args:
            adapter: Adapter around the root suite
            snapshot_source: Returns the current merged snapshot
            mode: When evaluation is allowed
            debounce: Debounce in seconds
            enabled: Whether root validation is switched on
            monitor: Receives invocation events
            failure_message: Generic message used for suite faults

        Raises:
            ValueError: If debounce is negative or mode is not a RootValidationMode
        """
        if debounce < 0:
            raise ValueError("Debounce cannot be negative")
        if not isinstance(mode, RootValidationMode):
            raise ValueError(f"Unknown root validation mode: {mode!r}")
        self._adapter = adapter
        self._snapshot_source = snapshot_source
        self._mode = mode
        self._debounce = debounce
        self._enabled = enabled
        self._monitor = monitor or EngineMonitor()
        self._failure_message = failure_message
        self._submitted = False
        self._generation = 0
        self._round: Optional[asyncio.Future] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def mode(self) -> RootValidationMode:
        return self._mode

    @property
    def submitted(self) -> bool:
        return self._submitted

    @property
    def active(self) -> bool:
        """Whether a call to validate() would evaluate the root suite."""
        if self._closed or not self._enabled or not self._adapter.configured:
            return False
        return self._mode is RootValidationMode.LIVE or self._submitted

    @property
    def generation(self) -> int:
        return self._generation

    def mark_submitted(self) -> None:
        self._submitted = True

    def reset(self) -> None:
        """Forget the submission, re-arming SUBMIT-mode gating."""
        self._submitted = False

    def outstanding(self) -> List[asyncio.Task]:
        return [task for task in self._tasks if not task.done()]

    async def validate(self) -> Optional[Outcome]:
        """Evaluate the root suite against the current snapshot.

        Returns:
            The newest root outcome, or None when gated, disabled,
            unconfigured, or there is nothing to report
        """
        if not self.active:
            return None
        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        if self._round is None or self._round.done():
            self._round = loop.create_future()
        current_round = self._round
        candidate = clone_value(self._snapshot_source())
        task = loop.create_task(self._run(generation, candidate, current_round))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await asyncio.shield(current_round)

    async def _run(self, generation: int, candidate: Snapshot, current_round: asyncio.Future) -> None:
        await asyncio.sleep(self._debounce)
        if generation != self._generation:
            self._monitor.track("stale_discarded", ROOT_FORM, generation=generation)
            return

        self._monitor.track("root_invoked", ROOT_FORM, generation=generation)
        try:
            outcome = await self._adapter.outcome(candidate, ROOT_FORM)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = SuiteExecutionError(ROOT_FORM, e)
            logger.error("Root validation suite failed", exc_info=e)
            self._monitor.track("internal_error", ROOT_FORM, detail=str(error))
            outcome = Outcome.failure(str(e) or type(e).__name__, self._failure_message)

        if generation != self._generation:
            self._monitor.track("stale_discarded", ROOT_FORM, generation=generation)
            return
        if not current_round.done():
            current_round.set_result(outcome)

    def close(self) -> None:
        """Cancel outstanding work and release waiters with None."""
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        if self._round is not None and not self._round.done():
            self._round.set_result(None)
