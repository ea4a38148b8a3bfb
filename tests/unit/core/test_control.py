# tests/unit/core/test_control.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import asyncio
from unittest.mock import MagicMock

import pytest

from formsync.core.control import ControlEvent, ControlNode
from formsync.core.errors import ControlNotFoundError
from formsync.core.outcome import Outcome
from formsync.core.paths import ROOT_FORM
from formsync.core.types import ControlEventKind, ControlStatus


def kinds(listener):
    return [call.args[0].kind for call in listener.call_args_list]


def test_register_and_lookup(tree):
    """Nodes are normalized, ordered and retrievable leniently or strictly."""
    tree.register("b", 2)
    tree.register("a", 1)
    assert tree.paths == ["b", "a"]
    assert "a" in tree and "zzz" not in tree
    assert tree.get("zzz") is None
    with pytest.raises(ControlNotFoundError):
        tree.node("zzz")
    with pytest.raises(ValueError):
        tree.register("a")
    with pytest.raises(ValueError):
        tree.register(ROOT_FORM)
    with pytest.raises(ValueError):
        ControlNode("")


def test_values(person_tree):
    """value() skips disabled leaves, raw_value() keeps them, groups derive values."""
    person_tree.node("address.city").disable()
    assert person_tree.value() == {"name": "Ada", "address": {"street": "Main St"}, "items": [{"qty": 1}]}
    assert person_tree.raw_value()["address"] == {"street": "Main St", "city": "Springfield"}
    assert person_tree.merged_value() == person_tree.raw_value()
    assert person_tree.node("address").value == {"street": "Main St", "city": "Springfield"}


def test_remove_group_removes_descendants(person_tree):
    listener = MagicMock()
    person_tree.subscribe(listener)
    assert person_tree.remove("address")
    assert person_tree.paths == ["name", "items[0].qty"]
    assert kinds(listener) == [ControlEventKind.STRUCTURE] * 3
    assert not person_tree.remove("address")


def test_set_value_emits_and_marks_dirty(tree):
    """set_value publishes VALUE to node and tree listeners unless silent."""
    node = tree.register("name", "Ada")
    node_listener, tree_listener = MagicMock(), MagicMock()
    unsubscribe = node.subscribe(node_listener)
    tree.subscribe(tree_listener)

    node.set_value("Grace")
    assert node.dirty and tree.dirty
    event = node_listener.call_args.args[0]
    assert event == ControlEvent(ControlEventKind.VALUE, "name", "Grace")
    assert tree_listener.call_count == 1

    node.set_value("Silent", emit=False, mark_dirty=False)
    assert node_listener.call_count == 1
    assert node.value == "Silent"

    unsubscribe()
    node.set_value("Again")
    assert node_listener.call_count == 1


def test_touched_and_pristine(person_tree):
    person_tree.mark_all_as_touched()
    assert person_tree.touched
    assert all(node.touched for node in person_tree)
    person_tree.node("name").mark_as_untouched()
    assert not person_tree.node("name").touched
    person_tree.node("name").set_value("x")
    person_tree.mark_as_pristine()
    assert not person_tree.dirty


def test_listener_failure_does_not_stop_dispatch(tree, caplog):
    node = tree.register("a")
    after = MagicMock()
    node.subscribe(MagicMock(side_effect=RuntimeError("boom")))
    node.subscribe(after)
    node.set_value(1)
    after.assert_called_once()
    assert "Listener failed" in caplog.text


def test_patch_is_silent_by_default(person_tree):
    """patch() writes resolvable leaves only and publishes no VALUE events."""
    listener = MagicMock()
    person_tree.subscribe(listener)
    changed = person_tree.patch({"name": "Grace", "address": {"city": "Paris"}, "unknown": 1})
    assert changed == ["name", "address.city"]
    assert person_tree.node("name").value == "Grace"
    assert person_tree.node("address.street").value == "Main St"
    assert not person_tree.dirty
    assert ControlEventKind.VALUE not in kinds(listener)


def test_group_set_value_writes_descendants(person_tree):
    person_tree.node("address").set_value({"street": "Elm", "city": "Oslo"})
    assert person_tree.node("address.street").value == "Elm"
    assert person_tree.node("address.city").dirty


def test_status_without_validators(person_tree):
    assert person_tree.status is ControlStatus.VALID
    person_tree.node("name").apply_outcome(Outcome(errors=("bad",)))
    assert person_tree.node("name").status is ControlStatus.INVALID
    assert person_tree.status is ControlStatus.INVALID
    person_tree.node("name").apply_outcome(None)
    person_tree.set_root_state(Outcome(errors=("mismatch",)))
    assert person_tree.status is ControlStatus.INVALID
    for node in person_tree:
        node.disable()
    assert person_tree.status is ControlStatus.DISABLED


def test_warnings_only_outcome_stays_valid(tree):
    node = tree.register("a")
    node.apply_outcome(Outcome(warnings=("weak",)))
    assert node.status is ControlStatus.VALID
    assert node.errors == ()


@pytest.mark.asyncio
async def test_validation_run_sets_pending_then_result(tree):
    """A validator run marks the node pending and applies its outcome."""
    node = tree.register("age", 5)
    release = asyncio.Event()

    async def validator(value):
        await release.wait()
        return Outcome(errors=("too young",)) if value < 18 else None

    node.set_validator(validator)
    node.revalidate(emit=False)
    assert node.status is ControlStatus.PENDING
    assert tree.pending
    release.set()
    outcome = await node.wait_for_validation()
    assert outcome.errors == ("too young",)
    assert node.status is ControlStatus.INVALID


@pytest.mark.asyncio
async def test_superseded_run_is_ignored(tree):
    """An older run finishing last never overwrites the newer result."""
    node = tree.register("a", "slow")

    async def validator(value):
        await asyncio.sleep(0.05 if value == "slow" else 0)
        return Outcome(errors=(value,))

    node.set_validator(validator)
    node.revalidate(emit=False)
    node.set_value("fast")
    await node.wait_for_validation()
    await asyncio.sleep(0.08)
    assert node.outcome.errors == ("fast",)


@pytest.mark.asyncio
async def test_validator_exception_becomes_failure(tree):
    node = tree.register("a")

    async def validator(value):
        raise RuntimeError("broken")

    node.set_validator(validator)
    node.revalidate()
    outcome = await node.wait_for_validation()
    assert outcome.internal_error == "broken"
    assert node.status is ControlStatus.INVALID


@pytest.mark.asyncio
async def test_wait_for_node(tree):
    """wait_for_node resolves on registration and times out otherwise."""
    waiter = asyncio.ensure_future(tree.wait_for_node("late"))
    await asyncio.sleep(0)
    node = tree.register("late")
    assert await waiter is node
    assert await tree.wait_for_node("never", timeout=0.01) is None


@pytest.mark.asyncio
async def test_wait_for_idle(tree):
    node = tree.register("a")
    assert await tree.wait_for_idle(0.01)

    async def validator(value):
        await asyncio.sleep(0.02)
        return None

    node.set_validator(validator)
    node.revalidate()
    assert not await tree.wait_for_idle(0.001)
    assert await tree.wait_for_idle(1.0)


@pytest.mark.asyncio
async def test_group_revalidates_when_descendant_changes(person_tree):
    seen = []

    async def group_validator(value):
        seen.append(value)
        return None

    person_tree.node("address").set_validator(group_validator)
    person_tree.node("address.city").set_value("Rome")
    await person_tree.node("address").wait_for_validation()
    assert seen == [{"street": "Main St", "city": "Rome"}]
