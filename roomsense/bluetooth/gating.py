"""Admission gate for LE characteristic queries."""

from typing import Optional

from roomsense.bluetooth.config import logger


class QueryMutex:
    """
    Single-slot, non-blocking gate.

    Only one LE query may be admitted at a time; a second caller is turned away
    instead of queued so integrations can skip a polling round.
    """

    def __init__(self) -> None:
        self._held = False
        self._owner: Optional[str] = None

    @property
    def held(self) -> bool:
        """True while a caller holds the gate."""
        return self._held

    @property
    def owner(self) -> Optional[str]:
        """Label passed by the current holder, if any."""
        return self._owner

    def acquire(self, owner: Optional[str] = None) -> bool:
        """
        Try to take the gate.

        Returns:
            bool: True if the gate was free and is now held, False otherwise.
        """
        if self._held:
            logger.debug("Query mutex busy (held by %s)", self._owner)
            return False
        self._held = True
        self._owner = owner
        return True

    def release(self) -> None:
        """Free the gate. Releasing a free gate is a no-op."""
        self._held = False
        self._owner = None


__all__ = ["QueryMutex"]
