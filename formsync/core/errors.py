"""Exception hierarchy for the form synchronization engine.

Runtime faults inside the engine are converted into outcomes and never
escape the engine boundary. These exceptions cover construction-time
misconfiguration, lifecycle misuse and strict lookups.
"""


class FormSyncError(Exception):
    """
    Base exception class for errors within the form synchronization library.
    """


class ConfigurationError(FormSyncError):
    """
    Raised when engine configuration or a dependency map violates its constraints.
    """


class ControlNotFoundError(FormSyncError):
    """
    Raised when a strict lookup asks for a control path that is not registered.
    """

    def __init__(self, path: str) -> None:
        super().__init__(f"No control registered at path '{path}'")
        self.path = path


class EngineStateError(FormSyncError):
    """
    Raised when an engine operation is not allowed in the current lifecycle status.
    """


class SuiteExecutionError(FormSyncError):
    """
    Wraps an exception raised by a validation suite.

    Never raised across the engine boundary; it is attached to internal-error
    outcomes so the original fault stays available for logging.
    """

    def __init__(self, path: str, cause: BaseException) -> None:
        message = str(cause) or type(cause).__name__
        super().__init__(f"Suite failed for '{path}': {message}")
        self.path = path
        self.cause = cause
