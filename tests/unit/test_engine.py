# tests/unit/test_engine.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import asyncio
import logging

import pytest

from formsync.config import EngineConfig
from formsync.core.control import ControlTree
from formsync.core.dependencies import DependencyMap
from formsync.core.errors import EngineStateError
from formsync.core.paths import ROOT_FORM
from formsync.core.types import EngineStatus
from formsync.engine import FormEngine
from tests.suite_mocks import MockSuite, Rule, required

MISMATCH = Rule(ROOT_FORM, lambda s: s.get("password") == s.get("confirm"), "Passwords must match")


def make_tree(**values):
    tree = ControlTree()
    for path, value in values.items():
        tree.register(path, value)
    return tree


@pytest.mark.asyncio
async def test_lifecycle():
    engine = FormEngine(make_tree(name="Ada"))
    assert engine.status is EngineStatus.UNINITIALIZED
    await engine.start()
    await engine.start()
    assert engine.status is EngineStatus.ACTIVE

    await engine.stop()
    await engine.stop()
    assert engine.status is EngineStatus.TERMINATED
    with pytest.raises(EngineStateError):
        await engine.start()
    with pytest.raises(EngineStateError):
        await engine.submit()


@pytest.mark.asyncio
async def test_context_manager_stops_engine():
    async with FormEngine(make_tree(name="Ada")) as engine:
        assert engine.status is EngineStatus.ACTIVE
    assert engine.status is EngineStatus.TERMINATED


@pytest.mark.asyncio
async def test_operations_require_active_engine():
    engine = FormEngine(make_tree(name=""))
    with pytest.raises(EngineStateError):
        engine.validate_field("name")
    with pytest.raises(EngineStateError):
        engine.trigger_form_validation()


@pytest.mark.asyncio
async def test_bootstrap_validates_every_control():
    suite = MockSuite(required("name", "Name is required"))
    async with FormEngine(make_tree(name="", city="Paris"), suite) as engine:
        assert await engine.wait_until_idle(1.0)
        state = engine.state
        assert state.errors_for("name") == ("Name is required",)
        assert not state.valid
        assert state.first_invalid_field == "name"
        assert engine.snapshot == {"name": "", "city": "Paris"}
        assert sorted(path for _, path in suite.calls) == ["city", "name"]


@pytest.mark.asyncio
async def test_tree_edit_publishes_snapshot_and_revalidates():
    suite = MockSuite(required("name", "Name is required"))
    published = []
    states = []
    async with FormEngine(make_tree(name=""), suite) as engine:
        engine.subscribe_snapshot(published.append)
        engine.subscribe(states.append)
        await engine.wait_until_idle(1.0)

        engine.tree.node("name").set_value("Ada")
        await engine.wait_until_idle(1.0)

        assert published[-1] == {"name": "Ada"}
        assert engine.state.valid
        assert engine.state.dirty
        assert states[-1] is engine.state


@pytest.mark.asyncio
async def test_clearing_list_item_reaches_snapshot():
    tree = make_tree(name="x")
    tree.register("tags[0]", "a")
    async with FormEngine(tree) as engine:
        tree.node("tags[0]").set_value(None)
        await engine.wait_until_idle(1.0)
        assert engine.snapshot["tags"] == [None]
        assert engine.state.value == tree.merged_value()


@pytest.mark.asyncio
async def test_model_write_patches_tree():
    suite = MockSuite(required("name", "Name is required"))
    async with FormEngine(make_tree(name="Ada"), suite, snapshot={"name": "Ada"}) as engine:
        engine.set_snapshot({"name": ""})
        assert engine.tree.node("name").value == ""
        assert not engine.tree.node("name").dirty
        await engine.wait_until_idle(1.0)
        assert engine.state.errors_for("name") == ("Name is required",)


@pytest.mark.asyncio
async def test_batch_conflict_tree_wins():
    async with FormEngine(make_tree(name="Ada"), snapshot={"name": "Ada"}) as engine:
        with engine.batch():
            engine.tree.node("name").set_value("Grace")
            engine.set_snapshot({"name": "Linus"})
            assert engine.snapshot == {"name": "Linus"}
        assert engine.snapshot == {"name": "Grace"}
        assert engine.tree.node("name").value == "Grace"


@pytest.mark.asyncio
async def test_submit_runs_root_validation():
    root_suite = MockSuite(MISMATCH)
    tree = make_tree(password="secret", confirm="secrets")
    async with FormEngine(tree, MockSuite(), root_suite=root_suite) as engine:
        await engine.wait_until_idle(1.0)
        assert root_suite.calls == []
        assert engine.state.valid

        state = await engine.submit()
        assert state.submitted
        assert state.touched
        assert state.root.errors == ("Passwords must match",)
        assert state.first_invalid_field == ROOT_FORM
        assert not state.valid

        tree.node("confirm").set_value("secret")
        await engine.wait_until_idle(1.0)
        assert engine.state.root is None
        assert engine.state.valid

        engine.reset_submitted()
        assert not engine.state.submitted


@pytest.mark.asyncio
async def test_root_never_falls_back_to_field_suite():
    suite = MockSuite(MISMATCH)
    async with FormEngine(make_tree(password="a", confirm="b"), suite) as engine:
        state = await engine.submit()
        assert suite.calls_for(ROOT_FORM) == []
        assert state.root is None
        assert state.valid


@pytest.mark.asyncio
async def test_live_root_mode_runs_before_submit():
    config = EngineConfig(root_mode="live")
    async with FormEngine(make_tree(password="a", confirm="b"), root_suite=MockSuite(MISMATCH),
                          config=config) as engine:
        await engine.wait_until_idle(1.0)
        assert engine.state.root.errors == ("Passwords must match",)
        assert not engine.state.submitted


@pytest.mark.asyncio
async def test_validate_field():
    suite = MockSuite()
    async with FormEngine(make_tree(name="Ada"), suite) as engine:
        await engine.wait_until_idle(1.0)
        assert engine.validate_field("unknown") is None
        task = engine.validate_field("name")
        assert isinstance(task, asyncio.Task)
        await engine.wait_until_idle(1.0)
        assert len(suite.calls_for("name")) == 2


@pytest.mark.asyncio
async def test_trigger_form_validation_revalidates_all():
    suite = MockSuite()
    async with FormEngine(make_tree(a=1, b=2), suite) as engine:
        await engine.wait_until_idle(1.0)
        engine.trigger_form_validation()
        await engine.wait_until_idle(1.0)
        assert len(suite.calls_for("a")) == 2
        assert len(suite.calls_for("b")) == 2


@pytest.mark.asyncio
async def test_mounted_control_adopts_snapshot_value():
    suite = MockSuite(required("email", "Email is required"))
    snapshot = {"name": "Ada", "email": "ada@example.com"}
    async with FormEngine(make_tree(name="Ada"), suite, snapshot=snapshot) as engine:
        engine.tree.register("email")
        assert engine.tree.node("email").value == "ada@example.com"
        await engine.wait_until_idle(1.0)
        assert engine.state.valid
        assert engine.snapshot == snapshot


@pytest.mark.asyncio
async def test_unmount_forgets_warnings():
    suite = MockSuite(Rule("bio", lambda s: len(s.get("bio") or "") > 10, "Say more", warn=True))
    async with FormEngine(make_tree(bio="hi"), suite) as engine:
        await engine.wait_until_idle(1.0)
        assert engine.state.warnings_for("bio") == ("Say more",)
        assert engine.state.valid

        engine.tree.remove("bio")
        await engine.wait_until_idle(1.0)
        assert "bio" not in engine.warnings
        assert engine.state.warning_count == 0


@pytest.mark.asyncio
async def test_set_dependency_map_accepts_mapping():
    async with FormEngine(make_tree(a=1, b=2)) as engine:
        engine.set_dependency_map({"a": ["b"]})
        assert isinstance(engine.dependencies, DependencyMap)
        assert engine.dependencies.dependents_of("a") == ("b",)


@pytest.mark.asyncio
async def test_shape_mismatch_logged(caplog):
    config = EngineConfig(shape={"name": ""})
    with caplog.at_level(logging.WARNING, logger="formsync.core.shape"):
        async with FormEngine(make_tree(name="Ada", nmae="typo"), config=config):
            pass
    assert "Shape mismatch at 'nmae'" in caplog.text


@pytest.mark.asyncio
async def test_stop_releases_pending_validation():
    async def slow_suite(snapshot, field_path=None):
        await asyncio.sleep(10)

    engine = FormEngine(make_tree(name="Ada"), slow_suite)
    await engine.start()
    assert engine.state.pending
    await engine.stop()
    assert await engine.wait_until_idle(1.0)
