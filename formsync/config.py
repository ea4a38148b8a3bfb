"""
Engine configuration.

All durations are in seconds. Every debounce defaults to 0 (no delay).
The idle and in-progress bounds guarantee the dependency scheduler always
makes progress.
"""

import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from formsync.core.dependencies import DependencyMap
from formsync.core.errors import ConfigurationError
from formsync.core.outcome import DEFAULT_INTERNAL_ERROR_MESSAGE
from formsync.core.paths import normalize_field_path
from formsync.core.types import FieldPath, RootValidationMode

_DURATIONS = (
    "field_debounce",
    "root_debounce",
    "dependency_debounce",
    "idle_timeout",
    "in_progress_ttl",
    "dependent_mount_timeout",
)


@dataclass(frozen=True)
class EngineConfig:
    """Immutable engine settings.

    Attributes:
        field_debounce: Debounce of per-field validation
        root_debounce: Debounce of root validation
        dependency_debounce: Debounce of dependency triggers
        debounce_overrides: Per-field debounce, keyed by path
        idle_timeout: Longest wait for the form to leave PENDING before
            dependents are revalidated anyway
        in_progress_ttl: Expiry of in-progress entries
        dependent_mount_timeout: Longest wait for dependent controls to mount
        root_mode: When root validation runs
        root_enabled: Switch for root validation
        dependencies: Trigger to dependents mapping
        shape: Reference shape checked against every published snapshot
        internal_error_message: Message shown in place of a faulty suite's output
    """

    field_debounce: float = 0.0
    root_debounce: float = 0.0
    dependency_debounce: float = 0.0
    debounce_overrides: Mapping[FieldPath, float] = field(default_factory=lambda: MappingProxyType({}))
    idle_timeout: float = 2.0
    in_progress_ttl: float = 0.5
    dependent_mount_timeout: float = 0.1
    root_mode: RootValidationMode = RootValidationMode.SUBMIT
    root_enabled: bool = True
    dependencies: DependencyMap = field(default_factory=DependencyMap)
    shape: Optional[Mapping[str, Any]] = None
    internal_error_message: str = DEFAULT_INTERNAL_ERROR_MESSAGE

    def __post_init__(self):
        for name in _DURATIONS:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ConfigurationError(f"{name} must be a number of seconds, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"{name} cannot be negative")

        overrides = {}
        for path, value in dict(self.debounce_overrides).items():
            if not isinstance(value, (int, float)) or value < 0:
                raise ConfigurationError(f"Debounce override for '{path}' must be a non-negative number")
            overrides[normalize_field_path(path)] = float(value)
        object.__setattr__(self, "debounce_overrides", MappingProxyType(overrides))

        if isinstance(self.root_mode, str):
            object.__setattr__(self, "root_mode", _parse_mode(self.root_mode))
        elif not isinstance(self.root_mode, RootValidationMode):
            raise ConfigurationError(f"Unknown root validation mode: {self.root_mode!r}")

        if not isinstance(self.dependencies, DependencyMap):
            object.__setattr__(self, "dependencies", DependencyMap(self.dependencies or {}))

        if not self.internal_error_message:
            raise ConfigurationError("internal_error_message cannot be empty")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EngineConfig":
        """Build a config from plain data, e.g. a parsed settings file.

        Args:
            data: Keys named after the config attributes

        Returns:
            The config

        Raises:
            ConfigurationError: If a key is unknown or a value is invalid
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**dict(data))

    def replace(self, **changes: Any) -> "EngineConfig":
        """Return a copy with the given attributes changed."""
        return dataclasses.replace(self, **changes)

    def debounce_for(self, path: FieldPath) -> float:
        return self.debounce_overrides.get(normalize_field_path(path), self.field_debounce)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_debounce": self.field_debounce,
            "root_debounce": self.root_debounce,
            "dependency_debounce": self.dependency_debounce,
            "debounce_overrides": dict(self.debounce_overrides),
            "idle_timeout": self.idle_timeout,
            "in_progress_ttl": self.in_progress_ttl,
            "dependent_mount_timeout": self.dependent_mount_timeout,
            "root_mode": self.root_mode.name.lower(),
            "root_enabled": self.root_enabled,
            "dependencies": {trigger: list(deps) for trigger, deps in self.dependencies.items()},
            "shape": self.shape,
            "internal_error_message": self.internal_error_message,
        }


def _parse_mode(name: str) -> RootValidationMode:
    try:
        return RootValidationMode[name.strip().upper()]
    except KeyError:
        raise ConfigurationError(f"Unknown root validation mode: {name!r}") from None
