"""Messages fanned out by the entity registry."""

from dataclasses import dataclass, field
from typing import Any, List, Optional

__all__ = [
    "EntityUpdate",
    "EntityUpdateDiff",
    "NewEntity",
    "TOPIC_ENTITY_UPDATE",
    "TOPIC_NEW_ENTITY",
]

TOPIC_NEW_ENTITY = "roomsense.entity.new"
TOPIC_ENTITY_UPDATE = "roomsense.entity.update"


@dataclass(frozen=True)
class EntityUpdateDiff:
    """One changed value, addressed by a slash-delimited path such as `/attributes/test/key1`."""

    path: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class NewEntity:
    """Announces a freshly registered entity."""

    entity: Any
    customizations: Optional[Any] = None
    topic = TOPIC_NEW_ENTITY


@dataclass(frozen=True)
class EntityUpdate:
    """A flushed batch of diffs, tagged with whether this node has authority over the entity."""

    entity: Any
    diffs: List[EntityUpdateDiff] = field(default_factory=list)
    has_authority: bool = True
    topic = TOPIC_ENTITY_UPDATE
