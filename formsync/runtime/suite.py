"""
Validation suite adapter.

Wraps an externally supplied rule-evaluation capability into one uniform
asynchronous call. The capability is either an object with an
``evaluate(snapshot, field_path=None)`` method or a plain callable with
the same signature; it may return a result handle directly or an
awaitable resolving to one.

Calling with a field path scopes evaluation to that field (the capability
is expected to honor this, running only the rules relevant to it). Calling
without a path evaluates the whole form.

Responsibilities:
1. Normalization
   - Method or callable capabilities
   - Synchronous or awaitable results
2. Mapping
   - Result handle to Outcome for one path
3. Absence
   - No capability configured resolves to an empty result immediately

Dependencies:
- core/outcome.py: Result handle protocol and Outcome mapping
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from formsync.core.outcome import EMPTY_RESULT, Outcome, ResultHandle, outcome_from_result
from formsync.core.types import FieldPath, Snapshot


@runtime_checkable
class ValidationSuite(Protocol):
    """
    Rule-evaluation capability protocol.

    Methods:
        evaluate(snapshot, field_path=None): Returns a result handle, or an
            awaitable resolving to one.

    Runtime Invariants:
    - The snapshot argument is a private copy; the suite may not keep it.
    - With a field path, only rules relevant to that field run.

    Error Handling:
    - Exceptions (or rejected awaitables) are suite execution faults and
      are converted to internal-error outcomes by the caller.
    """

    def evaluate(self, snapshot: Snapshot, field_path: Optional[FieldPath] = None) -> Any:
        ...


SuiteCallable = Callable[..., Union[ResultHandle, Awaitable[ResultHandle]]]


class SuiteAdapter:
    """Uniform asynchronous front for a validation suite.

    Class Invariants:
    1. run() always returns a result handle or raises the suite's exception
    2. An unconfigured adapter never suspends and never raises

    Design Patterns:
    - Adapter: Normalizes method, callable, sync and async suites
    - Null Object: Missing suite yields EMPTY_RESULT
    """

    def __init__(self, suite: Optional[Union[ValidationSuite, SuiteCallable]] = None):
        """Initialize the adapter.

        Args:
            suite: Suite object, plain callable, or None

        Raises:
            ValueError: If suite is neither a ValidationSuite nor callable
        """
        if suite is None:
            self._evaluate = None
        elif isinstance(suite, ValidationSuite):
            self._evaluate = suite.evaluate
        elif callable(suite):
            self._evaluate = suite
        else:
            raise ValueError("Suite must provide evaluate(snapshot, field_path) or be callable")
        self._suite = suite

    @property
    def suite(self) -> Any:
        return self._suite

    @property
    def configured(self) -> bool:
        return self._evaluate is not None

    async def run(self, snapshot: Snapshot, field_path: Optional[FieldPath] = None) -> ResultHandle:
        """Evaluate the suite.

        Args:
            snapshot: Candidate snapshot
            field_path: Field to scope evaluation to, None for the whole form

        Returns:
            The suite's result handle

        Raises:
            Exception: Whatever the suite raises
        """
        if self._evaluate is None:
            return EMPTY_RESULT
        result = self._evaluate(snapshot, field_path)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def outcome(self, snapshot: Snapshot, field_path: FieldPath,
                      scope: Optional[FieldPath] = None) -> Optional[Outcome]:
        """Evaluate and map the result for field_path.

        Args:
            snapshot: Candidate snapshot
            field_path: Path whose messages are read from the result
            scope: Path passed to the suite; defaults to field_path

        Returns:
            Outcome, or None when there is nothing to report
        """
        result = await self.run(snapshot, field_path if scope is None else scope)
        return outcome_from_result(result, field_path)
