"""
Validation outcomes and suite result handles.

An Outcome is the result of evaluating one field or the root: error and
warning messages, both possibly empty. Warnings are advisory and never make
an outcome invalid. A suite result handle is what a validation suite hands
back; it answers ``errors_for(path)`` and ``warnings_for(path)``.

Design Patterns:
- Value Object: Outcome is immutable and compared structurally
- Protocol: any object with errors_for/warnings_for is a result handle
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from formsync.core.types import FieldPath, Messages

DEFAULT_INTERNAL_ERROR_MESSAGE = "Validation failed"


def _messages(values: Optional[Iterable[str]]) -> Messages:
    if not values:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(str(value) for value in values)


@dataclass(frozen=True)
class Outcome:
    """Result of evaluating a field or the root.

    Class Invariants:
    1. Messages are immutable tuples
    2. internal_error is set only for suite execution faults
    3. Only errors make an outcome invalid

    Attributes:
        errors: Error messages, in suite order
        warnings: Warning messages, in suite order
        internal_error: Detail of a suite fault, never shown to users
    """

    errors: Messages = ()
    warnings: Messages = ()
    internal_error: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "errors", _messages(self.errors))
        object.__setattr__(self, "warnings", _messages(self.warnings))

    @classmethod
    def failure(cls, detail: str, message: str = DEFAULT_INTERNAL_ERROR_MESSAGE) -> "Outcome":
        """Build the internal-error outcome for a faulty suite.

        Args:
            detail: Exception detail, kept for diagnostics
            message: Generic message shown in place of the field's messages

        Returns:
            An invalid outcome carrying only the generic message
        """
        return cls(errors=(message,), internal_error=detail or "Unknown validation error")

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def is_internal_error(self) -> bool:
        return self.internal_error is not None

    @property
    def is_empty(self) -> bool:
        return not self.errors and not self.warnings and self.internal_error is None

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form for presentation layers."""
        data: Dict[str, Any] = {}
        if self.errors:
            data["error"] = self.errors[0]
            data["errors"] = list(self.errors)
        if self.warnings:
            data["warnings"] = list(self.warnings)
        if self.internal_error is not None:
            data["internal_error"] = self.internal_error
        return data


EMPTY_OUTCOME = Outcome()


@runtime_checkable
class ResultHandle(Protocol):
    """
    Result handle protocol returned by validation suites.

    Methods:
        errors_for(path): Error messages for path, or None.
        warnings_for(path): Warning messages for path, or None.

    Error Handling:
    - Exceptions raised here are treated as suite execution faults.
    """

    def errors_for(self, path: FieldPath) -> Optional[Sequence[str]]:
        ...

    def warnings_for(self, path: FieldPath) -> Optional[Sequence[str]]:
        ...


class SuiteResult:
    """Dictionary-backed result handle for suites written in Python.

    Suites fill it with add_error/add_warning and return it from evaluate.
    Messages for one path keep insertion order; duplicates are dropped.
    """

    def __init__(
        self,
        errors: Optional[Mapping[FieldPath, Iterable[str]]] = None,
        warnings: Optional[Mapping[FieldPath, Iterable[str]]] = None,
    ):
        self._errors: Dict[FieldPath, List[str]] = {}
        self._warnings: Dict[FieldPath, List[str]] = {}
        for path, messages in (errors or {}).items():
            for message in _messages(messages):
                self.add_error(path, message)
        for path, messages in (warnings or {}).items():
            for message in _messages(messages):
                self.add_warning(path, message)

    def add_error(self, path: FieldPath, message: str) -> "SuiteResult":
        bucket = self._errors.setdefault(path, [])
        if message not in bucket:
            bucket.append(message)
        return self

    def add_warning(self, path: FieldPath, message: str) -> "SuiteResult":
        bucket = self._warnings.setdefault(path, [])
        if message not in bucket:
            bucket.append(message)
        return self

    def errors_for(self, path: FieldPath) -> Optional[List[str]]:
        messages = self._errors.get(path)
        return list(messages) if messages else None

    def warnings_for(self, path: FieldPath) -> Optional[List[str]]:
        messages = self._warnings.get(path)
        return list(messages) if messages else None

    def has_errors(self, path: Optional[FieldPath] = None) -> bool:
        if path is None:
            return any(self._errors.values())
        return bool(self._errors.get(path))

    @property
    def errors(self) -> Dict[FieldPath, List[str]]:
        return {path: list(messages) for path, messages in self._errors.items() if messages}

    @property
    def warnings(self) -> Dict[FieldPath, List[str]]:
        return {path: list(messages) for path, messages in self._warnings.items() if messages}

    def __repr__(self) -> str:
        return f"SuiteResult(errors={self.errors!r}, warnings={self.warnings!r})"


EMPTY_RESULT = SuiteResult()


def outcome_from_result(result: Any, path: FieldPath) -> Optional[Outcome]:
    """Map a result handle to an Outcome for one path.

    Args:
        result: Object implementing errors_for/warnings_for
        path: Field path (or the root key) to read

    Returns:
        Outcome with errors (warnings attached) when errors exist, an
        outcome with only warnings when there are warnings, otherwise None

    Raises:
        TypeError: If result does not implement the result handle protocol
    """
    if not isinstance(result, ResultHandle):
        raise TypeError(f"Suite returned {type(result).__name__}, which has no errors_for/warnings_for")
    errors = _messages(result.errors_for(path))
    warnings = _messages(result.warnings_for(path))
    if not errors and not warnings:
        return None
    return Outcome(errors=errors, warnings=warnings)
