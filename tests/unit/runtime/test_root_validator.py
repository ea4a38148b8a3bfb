# tests/unit/runtime/test_root_validator.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import asyncio

import pytest

from formsync.core.outcome import DEFAULT_INTERNAL_ERROR_MESSAGE, Outcome
from formsync.core.paths import ROOT_FORM
from formsync.core.types import RootValidationMode
from formsync.runtime.root_validator import RootValidator
from formsync.runtime.suite import SuiteAdapter
from tests.suite_mocks import MockSuite, Rule

MISMATCH = Rule(ROOT_FORM, lambda s: s.get("password") == s.get("confirmPassword"), "Passwords must match")


def make_root(suite, snapshot, **kwargs):
    return RootValidator(SuiteAdapter(suite), lambda: snapshot, **kwargs)


@pytest.mark.asyncio
async def test_submit_mode_waits_for_submission():
    """SUBMIT mode never evaluates before the first submission."""
    suite = MockSuite(MISMATCH)
    root = make_root(suite, {"password": "a", "confirmPassword": "b"})
    assert not root.active
    assert await root.validate() is None
    assert suite.calls == []

    root.mark_submitted()
    assert await root.validate() == Outcome(errors=("Passwords must match",))
    assert suite.calls[0][1] == ROOT_FORM

    root.reset()
    assert not root.active


@pytest.mark.asyncio
async def test_live_mode_evaluates_immediately():
    suite = MockSuite(MISMATCH)
    root = make_root(suite, {"password": "a", "confirmPassword": "a"}, mode=RootValidationMode.LIVE)
    assert await root.validate() is None
    assert len(suite.calls) == 1


@pytest.mark.asyncio
async def test_disabled_or_unconfigured_resolves_none():
    assert await make_root(None, {}, mode=RootValidationMode.LIVE).validate() is None
    suite = MockSuite(MISMATCH)
    disabled = make_root(suite, {"password": "x"}, mode=RootValidationMode.LIVE, enabled=False)
    assert await disabled.validate() is None
    assert suite.calls == []


@pytest.mark.asyncio
async def test_suite_fault_becomes_internal_error(monitor):
    root = make_root(MockSuite(error=ValueError("bad rule")), {}, mode=RootValidationMode.LIVE, monitor=monitor)
    outcome = await root.validate()
    assert outcome.errors == (DEFAULT_INTERNAL_ERROR_MESSAGE,)
    assert outcome.internal_error == "bad rule"
    assert monitor.get_metric("internal_error") == 1


@pytest.mark.asyncio
async def test_debounced_take_latest(monitor):
    snapshot = {"password": "a", "confirmPassword": "b"}
    suite = MockSuite(MISMATCH)
    root = make_root(suite, snapshot, mode=RootValidationMode.LIVE, debounce=0.02, monitor=monitor)
    first = asyncio.ensure_future(root.validate())
    await asyncio.sleep(0)
    snapshot["confirmPassword"] = "a"
    second = asyncio.ensure_future(root.validate())
    assert await second is None
    assert await first is None
    assert monitor.get_metric("root_invoked") == 1
    assert root.generation == 2


def test_invalid_arguments():
    with pytest.raises(ValueError):
        make_root(None, {}, debounce=-0.1)
    with pytest.raises(ValueError):
        make_root(None, {}, mode="live")
