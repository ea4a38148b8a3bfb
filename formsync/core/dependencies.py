"""
Dependency maps: which fields revalidate when a trigger field changes.

A DependencyMap is read-only for the lifetime of an engine; replacing it
means swapping in a new map wholesale. DependencyMapBuilder assembles one
from readable declarations.
"""

import collections.abc
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from formsync.core.errors import ConfigurationError
from formsync.core.paths import normalize_field_path
from formsync.core.types import FieldPath


class DependencyMap(collections.abc.Mapping):
    """Immutable mapping of trigger path to dependent paths.

    Class Invariants:
    1. Paths are normalized
    2. Dependents are unique per trigger and keep declaration order
    3. No trigger lists itself
    """

    def __init__(self, entries: Optional[Mapping[FieldPath, Iterable[FieldPath]]] = None):
        """Initialize the map.

        Args:
            entries: Trigger path to dependent paths

        Raises:
            ConfigurationError: If a trigger depends on itself or a path is empty
        """
        built: Dict[FieldPath, Tuple[FieldPath, ...]] = {}
        for trigger, dependents in (entries or {}).items():
            if isinstance(dependents, str):
                dependents = [dependents]
            key = _checked(trigger)
            merged: List[FieldPath] = list(built.get(key, ()))
            for dependent in dependents:
                path = _checked(dependent)
                if path == key:
                    raise ConfigurationError(f"Field '{key}' cannot depend on itself")
                if path not in merged:
                    merged.append(path)
            built[key] = tuple(merged)
        self._entries = MappingProxyType(built)

    def __getitem__(self, trigger: FieldPath) -> Tuple[FieldPath, ...]:
        return self._entries[normalize_field_path(trigger)]

    def __iter__(self) -> Iterator[FieldPath]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"DependencyMap({dict(self._entries)!r})"

    def dependents_of(self, trigger: FieldPath) -> Tuple[FieldPath, ...]:
        return self._entries.get(normalize_field_path(trigger), ())

    def all_paths(self) -> List[FieldPath]:
        """Every trigger and dependent, first-seen order."""
        seen: List[FieldPath] = []
        for trigger, dependents in self._entries.items():
            for path in (trigger,) + dependents:
                if path not in seen:
                    seen.append(path)
        return seen


def _checked(path: FieldPath) -> FieldPath:
    normalized = normalize_field_path(path)
    if not normalized:
        raise ConfigurationError("Dependency paths cannot be empty")
    return normalized


class DependencyMapBuilder:
    """Builds dependency maps.

    Declarations accumulate in order; duplicates are ignored, so the same
    relationship may be declared from several places.

    Example:
        DependencyMapBuilder()
            .when_changed("password", "confirmPassword")
            .bidirectional("startDate", "endDate")
            .build()
    """

    def __init__(self):
        """Initialize an empty builder."""
        self._entries: Dict[FieldPath, List[FieldPath]] = {}

    def when_changed(self, trigger: FieldPath,
                     revalidate: Union[FieldPath, Iterable[FieldPath]]) -> "DependencyMapBuilder":
        """Revalidate fields whenever trigger changes.

        Args:
            trigger: Field whose changes trigger revalidation
            revalidate: One path or several

        Returns:
            The builder, for chaining
        """
        if isinstance(revalidate, str):
            revalidate = [revalidate]
        bucket = self._entries.setdefault(trigger, [])
        for path in revalidate:
            if path not in bucket:
                bucket.append(path)
        return self

    def bidirectional(self, first: FieldPath, second: FieldPath) -> "DependencyMapBuilder":
        """Each field revalidates the other."""
        return self.when_changed(first, second).when_changed(second, first)

    def group(self, *paths: FieldPath) -> "DependencyMapBuilder":
        """Every field in the group revalidates all the others.

        Raises:
            ValueError: If fewer than two paths are given
        """
        if len(paths) < 2:
            raise ValueError("A dependency group needs at least two fields")
        for path in paths:
            self.when_changed(path, [other for other in paths if other != path])
        return self

    def merge(self, other: Union["DependencyMapBuilder", Mapping[FieldPath, Iterable[FieldPath]]]
              ) -> "DependencyMapBuilder":
        """Fold another builder or mapping into this one."""
        entries = other._entries if isinstance(other, DependencyMapBuilder) else other
        for trigger, dependents in entries.items():
            self.when_changed(trigger, dependents)
        return self

    def build(self) -> DependencyMap:
        """Create the immutable map.

        Raises:
            ConfigurationError: If a field depends on itself
        """
        return DependencyMap({trigger: list(deps) for trigger, deps in self._entries.items()})
