# tests/conftest.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import pytest

from formsync.core.control import ControlTree
from formsync.runtime.monitor import EngineMonitor


def pytest_configure(config):
    """Register custom marks."""
    config.addinivalue_line("markers", "property: mark test as a property-based test")
    config.addinivalue_line("markers", "scenario: mark test as an end-to-end form scenario")


@pytest.fixture
def tree():
    """An empty control tree."""
    return ControlTree()


@pytest.fixture
def monitor():
    """A fresh engine monitor."""
    return EngineMonitor()


@pytest.fixture
def person_tree():
    """A tree with a few leaves and one group."""
    tree = ControlTree()
    tree.register("name", "Ada")
    tree.register("address", group=True)
    tree.register("address.street", "Main St")
    tree.register("address.city", "Springfield")
    tree.register("items[0].qty", 1)
    return tree


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
