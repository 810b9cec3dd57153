"""Reactive entity model: entities, behaviors and the change-tracking registry."""

from roomsense.entities.behaviors import (
    BehaviorSpec,
    Debounce,
    RollingAverage,
    behaviors_from_config,
)
from roomsense.entities.entity import BinarySensor, Entity, Sensor, Switch
from roomsense.entities.messages import EntityUpdate, EntityUpdateDiff, NewEntity
from roomsense.entities.registry import EntityProxy, EntityRegistry

__all__ = [
    "BehaviorSpec",
    "BinarySensor",
    "Debounce",
    "Entity",
    "EntityProxy",
    "EntityRegistry",
    "EntityUpdate",
    "EntityUpdateDiff",
    "NewEntity",
    "RollingAverage",
    "Sensor",
    "Switch",
    "behaviors_from_config",
]
