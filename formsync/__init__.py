"""formsync: form synchronization and validation orchestration

This package keeps a mutable tree of form controls and an immutable data
snapshot in agreement while running externally supplied validation rules
asynchronously against that snapshot.

Responsibilities:
    - Bidirectional reconciliation of control tree and snapshot
    - Debounced, take-latest validation per field
    - Dependency-triggered revalidation with cycle prevention
    - Cross-field (root) validation gated by mode
    - Aggregation of errors and non-blocking warnings into one state

Interactions:
    - Client code through FormEngine and ControlTree
    - Validation suites through the evaluate(snapshot, field_path) protocol
    - asyncio event loop for scheduling
    - Logging system for diagnostics

Cross-cutting Concerns:
    Concurrency:
        - Single event loop, cooperative scheduling
        - Every wait is bounded or cancellable at teardown

    Error Handling:
        - Structured error hierarchy for configuration and lifecycle misuse
        - Suite faults converted into generic internal-error outcomes

    Logging:
        - Module loggers under the "formsync" namespace
        - No handlers configured by the library
"""

from formsync.config import EngineConfig
from formsync.core.control import ControlEvent, ControlNode, ControlTree
from formsync.core.dependencies import DependencyMap, DependencyMapBuilder
from formsync.core.errors import (
    ConfigurationError,
    ControlNotFoundError,
    EngineStateError,
    FormSyncError,
    SuiteExecutionError,
)
from formsync.core.outcome import Outcome, SuiteResult
from formsync.core.paths import ROOT_FORM
from formsync.core.types import ControlStatus, EngineStatus, RootValidationMode, SyncAction
from formsync.engine import FormEngine
from formsync.runtime.aggregator import AggregatedState

__version__ = "0.1.0"

__all__ = [
    "AggregatedState",
    "ConfigurationError",
    "ControlEvent",
    "ControlNode",
    "ControlNotFoundError",
    "ControlStatus",
    "ControlTree",
    "DependencyMap",
    "DependencyMapBuilder",
    "EngineConfig",
    "EngineStateError",
    "EngineStatus",
    "FormEngine",
    "FormSyncError",
    "Outcome",
    "ROOT_FORM",
    "RootValidationMode",
    "SuiteExecutionError",
    "SuiteResult",
    "SyncAction",
]
