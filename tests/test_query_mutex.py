"""Tests for the single-slot query gate."""

from roomsense.bluetooth.gating import QueryMutex


class TestQueryMutex:
    """Non-blocking admission for LE queries."""

    def test_starts_free(self):
        mutex = QueryMutex()
        assert not mutex.held
        assert mutex.owner is None

    def test_acquire_is_exclusive(self):
        mutex = QueryMutex()

        assert mutex.acquire("thermometer")
        assert not mutex.acquire("scale")
        assert mutex.owner == "thermometer"

    def test_release_frees_slot(self):
        mutex = QueryMutex()
        mutex.acquire()

        mutex.release()

        assert not mutex.held
        assert mutex.acquire()

    def test_release_when_free_is_noop(self):
        mutex = QueryMutex()
        mutex.release()
        assert not mutex.held
