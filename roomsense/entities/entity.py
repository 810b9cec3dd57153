"""Entity types published by the presence node."""

from typing import Any, Callable, Dict, List, Optional

__all__ = ["Entity", "Sensor", "BinarySensor", "Switch"]


class Entity:
    """
    Addressable piece of state: an `id`, a `state` value and free-form `attributes`.

    Parameters:
        id (str): Unique, immutable identifier.
        name (str): Human readable name.
        distributed (bool): The entity is shared across cluster instances.
        state_locked (bool): Only the cluster leader may speak for the entity's state.
    """

    def __init__(
        self,
        id: str,
        name: str,
        distributed: bool = False,
        state_locked: bool = True,
    ):
        self.id = id
        self.name = name
        self.distributed = distributed
        self.state_locked = state_locked
        self.state: Any = None
        self.attributes: Dict[str, Any] = {}
        self.behaviors: List[Any] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id!r}, {self.name!r})"


class Sensor(Entity):
    """Read-only measurement such as an RSSI or a distance."""

    def __init__(
        self,
        id: str,
        name: str,
        distributed: bool = False,
        state_locked: bool = True,
        unit_of_measurement: Optional[str] = None,
    ):
        super().__init__(id, name, distributed, state_locked)
        self.unit_of_measurement = unit_of_measurement


class BinarySensor(Entity):
    """On/off measurement such as presence."""


class Switch(Entity):
    """Entity that can be turned on and off by an external command."""

    def __init__(
        self,
        id: str,
        name: str,
        on_turn_on: Optional[Callable[[], Any]] = None,
        on_turn_off: Optional[Callable[[], Any]] = None,
        distributed: bool = False,
        state_locked: bool = True,
    ):
        super().__init__(id, name, distributed, state_locked)
        self._on_turn_on = on_turn_on
        self._on_turn_off = on_turn_off

    def turn_on(self) -> None:
        if self._on_turn_on is not None:
            self._on_turn_on()

    def turn_off(self) -> None:
        if self._on_turn_off is not None:
            self._on_turn_off()
