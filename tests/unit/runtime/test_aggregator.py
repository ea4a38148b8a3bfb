# tests/unit/runtime/test_aggregator.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import unittest

import pytest
from hypothesis import given
from hypothesis import strategies as st

from formsync.core.control import ControlTree
from formsync.core.outcome import Outcome
from formsync.core.paths import ROOT_FORM
from formsync.core.types import ControlStatus
from formsync.runtime.aggregator import AggregatedState, StateAggregator, aggregate


class TestAggregate(unittest.TestCase):
    """Verifies: aggregated counts, validity and focus order follow the tree."""

    def setUp(self):
        self.tree = ControlTree()
        for path in ("first", "second", "third"):
            self.tree.register(path, "")

    def test_empty_form_is_valid(self):
        state = aggregate(self.tree, {}, {}, submitted=False)
        self.assertTrue(state.valid)
        self.assertTrue(state.idle)
        self.assertEqual(state.error_count, 0)
        self.assertIsNone(state.first_invalid_field)
        self.assertIs(state.status, ControlStatus.VALID)

    def test_errors_counted_in_registration_order(self):
        self.tree.node("third").apply_outcome(Outcome(errors=("a", "b")))
        self.tree.node("second").apply_outcome(Outcome(errors=("c",)))
        state = aggregate(self.tree, {}, {}, submitted=True)
        self.assertEqual(state.error_count, 3)
        self.assertFalse(state.valid)
        self.assertTrue(state.invalid)
        self.assertEqual(state.first_invalid_field, "second")
        self.assertEqual(state.errors_for("third"), ("a", "b"))
        self.assertEqual(state.errors_for("first"), ())
        self.assertTrue(state.submitted)

    def test_root_errors_fall_back_to_root_key(self):
        self.tree.set_root_state(Outcome(errors=("Passwords must match",)))
        state = aggregate(self.tree, {}, {}, submitted=True)
        self.assertEqual(state.first_invalid_field, ROOT_FORM)
        self.assertEqual(state.error_count, 1)
        self.assertEqual(state.root.errors, ("Passwords must match",))

    def test_warnings_never_change_validity(self):
        self.tree.set_root_state(Outcome(warnings=("Consider a longer bio",)))
        state = aggregate(self.tree, {}, {"first": ("Weak",)}, submitted=False)
        self.assertTrue(state.valid)
        self.assertEqual(state.warning_count, 2)
        self.assertEqual(state.warnings_for("first"), ("Weak",))

    def test_outcome_warnings_take_precedence_over_side_channel(self):
        self.tree.node("first").apply_outcome(Outcome(errors=("Required",), warnings=("Hint",)))
        state = aggregate(self.tree, {}, {"first": ("Stale",)}, submitted=False)
        self.assertEqual(state.warnings_for("first"), ("Hint",))

    def test_disabled_fields_are_skipped(self):
        node = self.tree.node("first")
        node.apply_outcome(Outcome(errors=("Required",)))
        node.disable()
        state = aggregate(self.tree, {}, {"first": ("Weak",)}, submitted=False)
        self.assertTrue(state.valid)
        self.assertEqual(dict(state.warnings), {})

    def test_all_disabled_reports_disabled(self):
        for node in self.tree:
            node.disable()
        self.assertTrue(aggregate(self.tree, {}, {}, submitted=False).disabled)

    def test_state_is_read_only(self):
        state = aggregate(self.tree, {"a": 1}, {}, submitted=False)
        with self.assertRaises(TypeError):
            state.errors["x"] = ("boom",)
        with self.assertRaises(AttributeError):
            state.valid = False

    def test_to_dict_is_plain_data(self):
        self.tree.node("first").apply_outcome(Outcome(errors=("Required",)))
        data = aggregate(self.tree, {"first": ""}, {}, submitted=False).to_dict()
        self.assertEqual(data["errors"], {"first": ["Required"]})
        self.assertEqual(data["status"], "INVALID")
        self.assertIsNone(data["root"])


class TestStateAggregator(unittest.TestCase):
    """Verifies: publications happen only on structural change."""

    def setUp(self):
        self.tree = ControlTree()
        self.tree.register("name", "")
        self.value = {"name": ""}
        self.aggregator = StateAggregator(lambda: aggregate(self.tree, self.value, {}, False))
        self.received = []
        self.aggregator.subscribe(self.received.append)

    def test_equal_recomputations_publish_once(self):
        first = self.aggregator.recompute()
        second = self.aggregator.recompute()
        self.assertIs(first, second)
        self.assertEqual(self.aggregator.publications, 1)
        self.assertEqual(len(self.received), 1)

    def test_value_change_publishes(self):
        self.aggregator.recompute()
        self.value = {"name": "Ada"}
        self.aggregator.recompute()
        self.assertEqual(self.received[-1].value, {"name": "Ada"})
        self.assertEqual(self.aggregator.publications, 2)

    def test_failing_listener_is_logged(self):
        def broken(state):
            raise RuntimeError("listener bug")

        self.aggregator.subscribe(broken)
        with self.assertLogs("formsync.runtime.aggregator", level="ERROR"):
            self.aggregator.recompute()
        self.assertEqual(len(self.received), 1)


@pytest.mark.property
@given(st.lists(st.tuples(st.sampled_from(["a", "b", "c"]), st.text(min_size=1, max_size=5)), max_size=6))
def test_error_count_matches_messages(assignments):
    tree = ControlTree()
    for path in ("a", "b", "c"):
        tree.register(path)
    messages = {}
    for path, message in assignments:
        messages.setdefault(path, []).append(message)
    for path, values in messages.items():
        tree.node(path).apply_outcome(Outcome(errors=tuple(values)))
    state = aggregate(tree, {}, {}, submitted=False)
    assert state.error_count == sum(len(values) for values in messages.values())
    assert state.valid == (state.error_count == 0)
    assert aggregate(tree, {}, {}, submitted=False) == state


def test_default_state_equality():
    assert AggregatedState() == AggregatedState()
    assert AggregatedState() != AggregatedState(submitted=True)
