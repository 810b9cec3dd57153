"""Shared pytest fixtures: a virtual clock, fake radio driver and scripted shell runner."""

from typing import List
from unittest.mock import MagicMock

import pytest  # type: ignore[import-untyped]  # pylint: disable=E0401

# Import common fakes
from fakes import FakeRadioDriver, ScriptedCommandRunner

from roomsense.bluetooth import util
from roomsense.bluetooth.adapter import AdapterManager
from roomsense.scheduling import VirtualScheduler


@pytest.fixture
def scheduler():
    """Virtual clock starting at t=0."""
    return VirtualScheduler()


@pytest.fixture
def driver():
    return FakeRadioDriver()


@pytest.fixture
def runner():
    return ScriptedCommandRunner()


@pytest.fixture
def metrics():
    return MagicMock()


@pytest.fixture
def manager(driver, runner, scheduler, metrics):
    """AdapterManager on adapter 0 with LE hooks already installed."""
    manager = AdapterManager(
        driver,
        runner,
        low_energy_adapter_id=0,
        scheduler=scheduler,
        metrics=metrics,
    )
    manager.on_low_energy_discovery(lambda _peripheral: None)
    return manager


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """
    Replace the module-level `_sleep` hook with an instant coroutine.

    Returns:
        list[float]: Every requested delay, in call order.
    """
    delays: List[float] = []

    async def _fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(util, "_sleep", _fake_sleep)
    return delays
