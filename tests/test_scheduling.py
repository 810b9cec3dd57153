"""Tests for the scheduler abstractions."""

import asyncio

import pytest

from roomsense.scheduling import LoopScheduler, VirtualScheduler


class TestVirtualScheduler:
    """Deterministic clock used for replaying behavior timelines."""

    def test_advance_fires_due_callbacks_in_order(self):
        scheduler = VirtualScheduler()
        fired = []
        scheduler.call_later(2.0, fired.append, "b")
        scheduler.call_later(1.0, fired.append, "a")
        scheduler.call_later(2.0, fired.append, "c")

        scheduler.advance(1.5)
        assert fired == ["a"]
        assert scheduler.now() == 1.5

        scheduler.advance(0.5)
        assert fired == ["a", "b", "c"]
        assert scheduler.now() == 2.0

    def test_callbacks_see_their_due_time(self):
        scheduler = VirtualScheduler()
        seen = []
        scheduler.call_later(3.0, lambda: seen.append(scheduler.now()))

        scheduler.advance(10.0)

        assert seen == [3.0]
        assert scheduler.now() == 10.0

    def test_callbacks_scheduled_while_advancing_run_if_due(self):
        scheduler = VirtualScheduler()
        fired = []

        def first():
            fired.append(("first", scheduler.now()))
            scheduler.call_later(1.0, lambda: fired.append(("second", scheduler.now())))

        scheduler.call_later(1.0, first)
        scheduler.advance(5.0)

        assert fired == [("first", 1.0), ("second", 2.0)]

    def test_cancelled_handles_do_not_fire(self):
        scheduler = VirtualScheduler()
        fired = []
        handle = scheduler.call_later(1.0, fired.append, "x")
        assert scheduler.pending == 1

        handle.cancel()
        handle.cancel()
        scheduler.advance(2.0)

        assert fired == []
        assert handle.cancelled
        assert not handle.active
        assert scheduler.pending == 0

    def test_fired_handle_is_inactive(self):
        scheduler = VirtualScheduler()
        handle = scheduler.call_later(1.0, lambda: None)
        assert handle.active

        scheduler.advance(1.0)

        assert not handle.active
        assert not handle.cancelled

    def test_jump_moves_clock_without_firing(self):
        scheduler = VirtualScheduler()
        fired = []
        scheduler.call_later(1.0, fired.append, "x")

        scheduler.jump(5.0)
        assert fired == []
        assert scheduler.now() == 5.0

        scheduler.advance(0)
        assert fired == ["x"]
        assert scheduler.now() == 5.0

    def test_run_all_drains_queue(self):
        scheduler = VirtualScheduler()
        fired = []
        scheduler.call_later(30.0, fired.append, 2)
        scheduler.call_later(0.5, fired.append, 1)

        scheduler.run_all()

        assert fired == [1, 2]
        assert scheduler.now() == 30.0
        assert scheduler.pending == 0

    def test_run_all_guards_against_endless_rescheduling(self, monkeypatch):
        scheduler = VirtualScheduler()
        monkeypatch.setattr(VirtualScheduler, "MAX_CALLBACKS_PER_RUN", 10)

        def again():
            scheduler.call_later(1.0, again)

        scheduler.call_later(1.0, again)
        with pytest.raises(RuntimeError):
            scheduler.run_all()


class TestLoopScheduler:
    """Scheduler backed by the asyncio loop."""

    def test_call_later_runs_on_loop(self):
        fired = []

        async def _run():
            scheduler = LoopScheduler()
            scheduler.call_later(0.01, fired.append, "x")
            await asyncio.sleep(0.05)

        asyncio.run(_run())
        assert fired == ["x"]

    def test_cancel_prevents_callback(self):
        fired = []

        async def _run():
            scheduler = LoopScheduler()
            handle = scheduler.call_later(0.01, fired.append, "x")
            handle.cancel()
            await asyncio.sleep(0.05)
            return handle

        handle = asyncio.run(_run())
        assert fired == []
        assert handle.cancelled

    def test_now_is_monotonic(self):
        scheduler = LoopScheduler()
        first = scheduler.now()
        assert scheduler.now() >= first
