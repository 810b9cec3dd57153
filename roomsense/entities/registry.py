"""Entity registry: change tracking, diffing and update fan-out."""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Type, Union

from pubsub.core import Publisher

from roomsense.cluster import LeadershipOracle, StaticLeadership
from roomsense.config import EntityConfig
from roomsense.entities.behaviors import BehaviorSpec, Pipeline, behaviors_from_config, is_number
from roomsense.entities.entity import Entity
from roomsense.entities.messages import (
    TOPIC_ENTITY_UPDATE,
    TOPIC_NEW_ENTITY,
    EntityUpdate,
    EntityUpdateDiff,
    NewEntity,
)
from roomsense.errors import DuplicateEntityError
from roomsense.scheduling import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

__all__ = ["EntityProxy", "EntityRegistry", "format_path", "parse_path"]

_MISSING = object()
_ROOTS = ("state", "attributes")

BehaviorConfig = Union[Sequence[BehaviorSpec], Mapping[str, Mapping[str, Any]]]


def parse_path(path: str) -> List[str]:
    """
    Split a slash-delimited pointer (`/attributes/a~1b/0`) into unescaped segments.

    Raises:
        ValueError: The path does not start at `/state` or `/attributes`.
    """
    if not path.startswith("/"):
        raise ValueError(f"Path must start with '/': {path!r}")
    segments = [s.replace("~1", "/").replace("~0", "~") for s in path[1:].split("/")]
    if segments[0] not in _ROOTS:
        raise ValueError(f"Path must start with /state or /attributes: {path!r}")
    return segments


def format_path(segments: Iterable[Any]) -> str:
    """Inverse of `parse_path`."""
    return "".join("/" + str(s).replace("~", "~0").replace("/", "~1") for s in segments)


def _copy_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _copy_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_value(v) for v in value]
    return value


def _values_equal(a: Any, b: Any) -> bool:
    if is_number(a) and is_number(b):
        return a == b
    if type(a) is not type(b):
        return False
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(_values_equal(a[k], b[k]) for k in a)
    if isinstance(a, list):
        return len(a) == len(b) and all(_values_equal(x, y) for x, y in zip(a, b))
    return a == b


def _child(container: Any, segment: str) -> Any:
    if isinstance(container, dict):
        return container.get(segment, _MISSING)
    if isinstance(container, list):
        try:
            index = int(segment)
        except ValueError:
            return _MISSING
        return container[index] if 0 <= index < len(container) else _MISSING
    return _MISSING


def _lookup(root: Dict[str, Any], segments: Sequence[str]) -> Any:
    node: Any = root
    for segment in segments:
        node = _child(node, segment)
        if node is _MISSING:
            return _MISSING
    return node


def _assign(root: Dict[str, Any], segments: Sequence[str], value: Any) -> None:
    node: Any = root
    for i, segment in enumerate(segments[:-1]):
        nxt = _child(node, segment)
        if nxt is _MISSING or not isinstance(nxt, (dict, list)):
            nxt = {}
            _put(node, segment, nxt, format_path(segments[: i + 1]))
        node = nxt
    _put(node, segments[-1], value, format_path(segments))


def _put(container: Any, segment: str, value: Any, path: str) -> None:
    if isinstance(container, dict):
        container[segment] = value
    elif isinstance(container, list):
        index = int(segment)
        if index == len(container):
            container.append(value)
        elif 0 <= index < len(container):
            container[index] = value
        else:
            raise IndexError(f"Index out of range for {path}")
    else:
        raise TypeError(f"Cannot assign into {type(container).__name__} at {path}")


class _TrackedEntity:
    def __init__(self, entity: Entity):
        self.entity = entity
        self.values: Dict[str, Any] = {
            "state": _copy_value(entity.state),
            "attributes": _copy_value(entity.attributes or {}),
        }
        self.snapshot: Dict[str, Any] = _copy_value(self.values)
        self.change_log: List[str] = []
        self.pipelines: Dict[str, Pipeline] = {}
        self.flush_timer: Optional[TimerHandle] = None
        entity.attributes = self.values["attributes"]


class EntityProxy:
    """
    Accessor handed out for a registered entity.

    Reads return copies of committed values. Writes go through the behavior
    pipeline configured for their path and reach the entity once committed.
    """

    def __init__(self, registry: "EntityRegistry", tracked: _TrackedEntity):
        self._registry = registry
        self._tracked = tracked

    @property
    def entity(self) -> Entity:
        return self._tracked.entity

    @property
    def id(self) -> str:
        return self._tracked.entity.id

    @property
    def name(self) -> str:
        return self._tracked.entity.name

    @property
    def distributed(self) -> bool:
        return self._tracked.entity.distributed

    @property
    def state_locked(self) -> bool:
        return self._tracked.entity.state_locked

    @property
    def state(self) -> Any:
        return _copy_value(self._tracked.values["state"])

    @property
    def attributes(self) -> Dict[str, Any]:
        return _copy_value(self._tracked.values["attributes"])

    def get(self, path: str, default: Any = None) -> Any:
        """Committed value at `path`, or `default` when nothing is stored there."""
        value = _lookup(self._tracked.values, parse_path(path))
        return default if value is _MISSING else _copy_value(value)

    def set(self, path: str, value: Any) -> None:
        self._registry._write(self._tracked, path, value)

    def set_state(self, value: Any) -> None:
        self.set("/state", value)

    def set_attribute(self, key: str, value: Any) -> None:
        self.set(format_path(["attributes", key]), value)

    def append(self, path: str, value: Any) -> None:
        """Append `value` to the committed list at `path`, recorded as a write to its new index."""
        current = _lookup(self._tracked.values, parse_path(path))
        if not isinstance(current, list):
            raise TypeError(f"Cannot append to non-list value at {path}")
        self.set(f"{path}/{len(current)}", value)

    def __repr__(self) -> str:
        return f"EntityProxy({self._tracked.entity!r})"


class EntityRegistry:
    """
    Owns registered entities and publishes their changes.

    Committed writes are collected for `EntityConfig.FLUSH_WINDOW` seconds, then
    compared against the last published snapshot. Changed paths are published as
    one `EntityUpdate` per entity on the registry's PyPubSub publisher.

    Parameters:
        scheduler (Scheduler | None): Clock and timer source for flushes and behaviors.
        leadership (LeadershipOracle | None): Decides authority over distributed entities.
        behavior_config (Mapping | None): Extra behaviors per entity id, either a list of
            specs or a `behaviors_from_config` mapping.
    """

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        leadership: Optional[LeadershipOracle] = None,
        behavior_config: Optional[Mapping[str, BehaviorConfig]] = None,
    ):
        self.scheduler = scheduler or LoopScheduler()
        self.leadership = leadership or StaticLeadership()
        self.behavior_config = dict(behavior_config or {})
        self.publisher = Publisher()
        topics = self.publisher.getTopicMgr()
        topics.getOrCreateTopic(TOPIC_NEW_ENTITY, _message_prototype)
        topics.getOrCreateTopic(TOPIC_ENTITY_UPDATE, _message_prototype)
        self._entities: Dict[str, _TrackedEntity] = {}
        self._proxies: Dict[str, EntityProxy] = {}

    def subscribe(
        self,
        listener: Callable[..., Any],
        message_type: Type[Union[NewEntity, EntityUpdate]],
    ) -> Callable[..., Any]:
        """
        Call `listener(message=...)` for every message of `message_type`.

        Listeners are held weakly, as PyPubSub does; keep a reference for as
        long as the subscription should last.
        """
        self.publisher.subscribe(listener, message_type.topic)
        return listener

    def unsubscribe(
        self,
        listener: Callable[..., Any],
        message_type: Type[Union[NewEntity, EntityUpdate]],
    ) -> None:
        self.publisher.unsubscribe(listener, message_type.topic)

    def add(self, entity: Entity, customizations: Any = None) -> EntityProxy:
        """
        Register `entity` and return its proxy.

        Raises:
            DuplicateEntityError: An entity with the same id is already registered.
        """
        if entity.id in self._entities:
            raise DuplicateEntityError(entity.id)

        tracked = _TrackedEntity(entity)
        for spec_path, specs in self._specs_by_path(entity).items():
            tracked.pipelines[spec_path] = Pipeline(
                specs,
                self.scheduler,
                lambda value, _path=spec_path: self._commit(tracked, _path, value),
            )
        proxy = EntityProxy(self, tracked)
        self._entities[entity.id] = tracked
        self._proxies[entity.id] = proxy
        logger.debug("Registered entity %s", entity.id)

        self._publish(NewEntity(entity=entity, customizations=customizations))
        return proxy

    def get(self, entity_id: str) -> Optional[EntityProxy]:
        return self._proxies.get(entity_id)

    def has(self, entity_id: str) -> bool:
        return entity_id in self._entities

    def get_all(self) -> List[EntityProxy]:
        return list(self._proxies.values())

    def has_authority_over(self, entity: Union[Entity, EntityProxy]) -> bool:
        """
        Whether this node may speak for the entity's state.

        Entities that are local or not state-locked are always ours; shared,
        locked entities belong to the cluster's majority leader.
        """
        if not entity.distributed or not entity.state_locked:
            return True
        return self.leadership.is_majority_leader()

    def _specs_by_path(self, entity: Entity) -> Dict[str, List[BehaviorSpec]]:
        specs: List[BehaviorSpec] = list(entity.behaviors or [])
        extra = self.behavior_config.get(entity.id)
        if isinstance(extra, Mapping):
            specs.extend(behaviors_from_config(extra))
        elif extra:
            specs.extend(extra)
        by_path: Dict[str, List[BehaviorSpec]] = {}
        for spec in specs:
            parse_path(spec.path)
            by_path.setdefault(spec.path, []).append(spec)
        return by_path

    def _write(self, tracked: _TrackedEntity, path: str, value: Any) -> None:
        parse_path(path)
        pipeline = tracked.pipelines.get(path)
        if pipeline is None:
            self._commit(tracked, path, value)
        else:
            pipeline.write(value)

    def _commit(self, tracked: _TrackedEntity, path: str, value: Any) -> None:
        segments = parse_path(path)
        value = _copy_value(value)
        if len(segments) == 1:
            if segments[0] == "attributes" and not isinstance(value, dict):
                raise TypeError("Entity attributes must be a dict")
            tracked.values[segments[0]] = value
        else:
            _assign(tracked.values, segments, value)
        tracked.entity.state = tracked.values["state"]
        tracked.entity.attributes = tracked.values["attributes"]
        tracked.change_log.append(path)
        if tracked.flush_timer is None:
            tracked.flush_timer = self.scheduler.call_later(
                EntityConfig.FLUSH_WINDOW, self._flush, tracked
            )

    def _flush(self, tracked: _TrackedEntity) -> None:
        tracked.flush_timer = None
        paths = list(dict.fromkeys(tracked.change_log))
        tracked.change_log.clear()

        diffs: List[EntityUpdateDiff] = []
        for path in paths:
            segments = parse_path(path)
            old = _lookup(tracked.snapshot, segments)
            new = _lookup(tracked.values, segments)
            if _values_equal(old, new):
                continue
            diffs.append(
                EntityUpdateDiff(
                    path=path,
                    old_value=None if old is _MISSING else _copy_value(old),
                    new_value=None if new is _MISSING else _copy_value(new),
                )
            )
        if not diffs:
            return

        tracked.snapshot = _copy_value(tracked.values)
        proxy = self._proxies[tracked.entity.id]
        self._publish(
            EntityUpdate(entity=proxy, diffs=diffs, has_authority=self.has_authority_over(proxy))
        )

    def _publish(self, message: Union[NewEntity, EntityUpdate]) -> None:
        self.publisher.sendMessage(message.topic, message=message)


def _message_prototype(message):
    """Listener signature shared by all registry topics."""
