"""Adapter state tracking for the Bluetooth resource manager."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

from roomsense.bluetooth.config import logger
from roomsense.scheduling import Scheduler


class AdapterState(Enum):
    """What an adapter is currently being used for."""

    INACTIVE = "inactive"
    SCANNING = "scanning"
    INQUIRY = "inquiry"
    RESETTING = "resetting"


@dataclass
class AdapterRecord:
    """State of one adapter and the clock reading when it entered that state."""

    state: AdapterState
    started_at: float


class AdapterStateStore:
    """State records keyed by adapter index.

    Mutated only from the event loop, so every adapter has exactly one state at
    any instant. Adapters that were never touched read as inactive.
    """

    def __init__(self, scheduler: Scheduler):
        self._scheduler = scheduler
        self._records: Dict[int, AdapterRecord] = {}

    def get_state(self, adapter_id: int) -> AdapterState:
        """Get the adapter's current state, defaulting to inactive."""
        record = self._records.get(adapter_id)
        return record.state if record is not None else AdapterState.INACTIVE

    def get(self, adapter_id: int) -> Optional[AdapterRecord]:
        """Get the adapter's record, or None if it has never changed state."""
        return self._records.get(adapter_id)

    def set_state(self, adapter_id: int, state: AdapterState) -> AdapterRecord:
        """Move the adapter to `state`, stamping the transition time."""
        previous = self.get_state(adapter_id)
        record = AdapterRecord(state=state, started_at=self._scheduler.now())
        self._records[adapter_id] = record
        logger.debug(
            "Adapter %s state transition: %s → %s",
            adapter_id,
            previous.value,
            state.value,
        )
        return record

    def items(self) -> Iterator[Tuple[int, AdapterRecord]]:
        """Iterate over a snapshot of (adapter_id, record) pairs."""
        return iter(list(self._records.items()))


__all__ = ["AdapterRecord", "AdapterState", "AdapterStateStore"]
