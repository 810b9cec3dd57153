"""Tests for AdapterStateStore."""

import logging

from roomsense.bluetooth.state import AdapterState, AdapterStateStore
from roomsense.scheduling import VirtualScheduler


class TestAdapterStateStore:
    """State records keyed by adapter index."""

    def test_unknown_adapter_reads_inactive(self):
        store = AdapterStateStore(VirtualScheduler())
        assert store.get_state(3) == AdapterState.INACTIVE
        assert store.get(3) is None

    def test_set_state_stamps_clock(self):
        scheduler = VirtualScheduler()
        store = AdapterStateStore(scheduler)

        scheduler.jump(4.0)
        record = store.set_state(1, AdapterState.INQUIRY)

        assert record.state == AdapterState.INQUIRY
        assert record.started_at == 4.0
        assert store.get(1) is record

    def test_restamping_same_state_updates_time(self):
        scheduler = VirtualScheduler()
        store = AdapterStateStore(scheduler)
        store.set_state(0, AdapterState.SCANNING)

        scheduler.jump(2.0)
        store.set_state(0, AdapterState.SCANNING)

        assert store.get(0).started_at == 2.0

    def test_items_is_snapshot(self):
        store = AdapterStateStore(VirtualScheduler())
        store.set_state(0, AdapterState.SCANNING)
        store.set_state(1, AdapterState.INACTIVE)

        for adapter_id, _record in store.items():
            store.set_state(adapter_id + 10, AdapterState.INACTIVE)

        assert {adapter_id for adapter_id, _ in store.items()} == {0, 1, 10, 11}

    def test_transitions_are_logged(self, caplog):
        store = AdapterStateStore(VirtualScheduler())
        with caplog.at_level(logging.DEBUG, logger="roomsense.bluetooth"):
            store.set_state(0, AdapterState.RESETTING)

        assert "inactive → resetting" in caplog.text
