"""Tests for the entity registry: tracking, diffing, authority and fan-out."""

import datetime

import pytest

from fakes import Recorder

from roomsense.cluster import StaticLeadership
from roomsense.entities import (
    Debounce,
    Entity,
    EntityUpdate,
    EntityUpdateDiff,
    NewEntity,
    RollingAverage,
    Sensor,
    Switch,
)
from roomsense.entities.registry import EntityRegistry, format_path, parse_path
from roomsense.errors import DuplicateEntityError


@pytest.fixture
def registry(scheduler):
    return EntityRegistry(scheduler=scheduler)


@pytest.fixture
def updates(registry):
    recorder = Recorder()
    registry.subscribe(recorder, EntityUpdate)
    return recorder


def _with_behaviors(entity, *specs):
    entity.behaviors = list(specs)
    return entity


class TestPaths:
    """Slash-delimited pointers into state and attributes."""

    def test_parse_unescapes_segments(self):
        assert parse_path("/attributes/a~1b/c~0d/0") == ["attributes", "a/b", "c~d", "0"]

    def test_format_escapes_segments(self):
        assert format_path(["attributes", "a/b", "c~d", 0]) == "/attributes/a~1b/c~0d/0"

    @pytest.mark.parametrize("path", ["state", "/name", "/"])
    def test_invalid_roots_rejected(self, path):
        with pytest.raises(ValueError):
            parse_path(path)


class TestRegistration:
    """Adding and looking up entities."""

    def test_add_announces_raw_entity(self, registry):
        recorder = Recorder()
        registry.subscribe(recorder, NewEntity)
        entity = Entity("test", "Test")

        registry.add(entity, customizations={"icon": "mdi:bluetooth"})

        assert recorder.count == 1
        assert recorder.last.entity is entity
        assert recorder.last.customizations == {"icon": "mdi:bluetooth"}

    def test_get_returns_same_proxy(self, registry):
        proxy = registry.add(Entity("test", "Test"))

        assert registry.get("test") is proxy
        assert registry.get("missing") is None
        assert registry.has("test")
        assert registry.get_all() == [proxy]

    def test_duplicate_id_rejected(self, registry):
        registry.add(Entity("test", "Test"))

        with pytest.raises(DuplicateEntityError, match="test"):
            registry.add(Entity("test", "Other"))

    def test_proxy_passes_through_identity(self, registry):
        proxy = registry.add(Sensor("rssi", "RSSI", distributed=True, unit_of_measurement="dBm"))

        assert proxy.id == "rssi"
        assert proxy.name == "RSSI"
        assert proxy.distributed
        assert proxy.state_locked
        assert proxy.entity.unit_of_measurement == "dBm"

    def test_unsubscribed_listener_gets_nothing(self, registry):
        recorder = Recorder()
        registry.subscribe(recorder, NewEntity)
        registry.unsubscribe(recorder, NewEntity)

        registry.add(Entity("test", "Test"))

        assert recorder.count == 0

    def test_switch_callbacks(self):
        calls = []
        switch = Switch("s", "S", on_turn_on=lambda: calls.append("on"), on_turn_off=lambda: calls.append("off"))

        switch.turn_on()
        switch.turn_off()

        assert calls == ["on", "off"]


class TestChangeTracking:
    """Batched diffs against the last published snapshot."""

    def test_writes_commit_immediately_and_publish_after_flush(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set_state("on")
        assert proxy.state == "on"
        assert proxy.entity.state == "on"
        assert updates.count == 0

        scheduler.advance(0.25)

        assert updates.count == 1
        assert updates.last.entity is proxy
        assert updates.last.diffs == [EntityUpdateDiff("/state", None, "on")]

    def test_writes_within_window_are_batched(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set_state("a")
        proxy.set_state("b")
        proxy.set_attribute("room", "kitchen")
        scheduler.advance(0.25)

        assert updates.count == 1
        assert updates.last.diffs == [
            EntityUpdateDiff("/state", None, "b"),
            EntityUpdateDiff("/attributes/room", None, "kitchen"),
        ]

    def test_unchanged_value_is_not_republished(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set_state("test")
        scheduler.advance(0.25)
        proxy.set_state("test")
        scheduler.advance(0.25)

        assert updates.count == 1

    def test_revert_within_window_is_not_published(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))
        proxy.set_state("a")
        scheduler.advance(0.25)

        proxy.set_state("b")
        proxy.set_state("a")
        scheduler.advance(0.25)

        assert updates.count == 1

    def test_type_change_is_a_change(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set_state("123")
        scheduler.advance(0.25)
        proxy.set_state(123)
        scheduler.advance(0.25)

        assert updates.count == 2

    def test_int_and_float_compare_by_value(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set_state(1)
        scheduler.advance(0.25)
        proxy.set_state(1.0)
        scheduler.advance(0.25)

        assert updates.count == 1

    def test_diff_reports_old_value(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set_state("abc")
        scheduler.advance(0.25)
        proxy.set_state("def")
        scheduler.advance(0.25)

        assert updates.last.diffs == [EntityUpdateDiff("/state", "abc", "def")]

    def test_array_append_is_indexed_diff(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set("/attributes/test", ["item1"])
        scheduler.advance(0.25)
        proxy.append("/attributes/test", "item2")
        scheduler.advance(0.25)

        assert updates.last.diffs == [EntityUpdateDiff("/attributes/test/1", None, "item2")]
        assert proxy.get("/attributes/test") == ["item1", "item2"]

    def test_append_to_non_list_rejected(self, registry):
        proxy = registry.add(Entity("test", "Test"))
        proxy.set_attribute("test", "scalar")

        with pytest.raises(TypeError):
            proxy.append("/attributes/test", "x")

    def test_nested_attribute_diff(self, registry, updates, scheduler):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set("/attributes/test/key1", "value1")
        scheduler.advance(0.25)
        proxy.set("/attributes/test/key1", "value2")
        scheduler.advance(0.25)

        assert updates.last.diffs == [EntityUpdateDiff("/attributes/test/key1", "value1", "value2")]
        assert proxy.attributes == {"test": {"key1": "value2"}}

    def test_reads_are_copies(self, registry):
        proxy = registry.add(Entity("test", "Test"))
        proxy.set("/attributes/tags", ["a"])

        proxy.get("/attributes/tags").append("b")
        proxy.attributes["tags"].append("c")

        assert proxy.get("/attributes/tags") == ["a"]

    def test_datetime_passes_through_unchanged(self, registry):
        proxy = registry.add(Entity("test", "Test"))
        seen = datetime.datetime(2024, 1, 2, 3, 4, 5)

        proxy.set_attribute("last_seen", seen)

        assert proxy.get("/attributes/last_seen") is seen

    def test_get_missing_path_returns_default(self, registry):
        proxy = registry.add(Entity("test", "Test"))
        assert proxy.get("/attributes/nope", "fallback") == "fallback"

    def test_attributes_root_must_be_dict(self, registry):
        proxy = registry.add(Entity("test", "Test"))
        with pytest.raises(TypeError):
            proxy.set("/attributes", "nope")

    def test_attribute_keys_are_escaped(self, registry):
        proxy = registry.add(Entity("test", "Test"))

        proxy.set_attribute("a/b", 1)

        assert proxy.attributes == {"a/b": 1}


class TestAuthority:
    """Authority gate for distributed entities."""

    @pytest.mark.parametrize(
        "distributed, state_locked, leader, expected",
        [
            (False, True, False, True),
            (True, True, False, False),
            (True, True, True, True),
            (True, False, False, True),
        ],
    )
    def test_has_authority_over(self, scheduler, distributed, state_locked, leader, expected):
        registry = EntityRegistry(scheduler=scheduler, leadership=StaticLeadership(leader))
        entity = Entity("test", "Test", distributed=distributed, state_locked=state_locked)

        assert registry.has_authority_over(entity) is expected

    def test_update_carries_authority(self, registry, updates, scheduler, monkeypatch):
        proxy = registry.add(Entity("test", "Test", distributed=True))
        monkeypatch.setattr(registry, "has_authority_over", lambda _entity: False)

        proxy.set_state("on")
        scheduler.advance(0.25)

        assert updates.last.has_authority is False


class TestBehaviorsInRegistry:
    """Behavior pipelines wired into entity writes."""

    def test_rolling_average_numeric_timeline(self, registry, updates, scheduler):
        proxy = registry.add(_with_behaviors(Entity("test", "Test"), RollingAverage(10.0)))

        proxy.set_state(10)
        scheduler.advance(1.0)
        assert proxy.state == 10
        scheduler.advance(0.25)
        assert updates.last.diffs[0].new_value == 10

        scheduler.advance(8.75)
        proxy.set_state(20)
        assert proxy.state == 10

        scheduler.advance(6.0)
        assert proxy.state == pytest.approx(13.75)
        scheduler.advance(0.25)
        assert updates.last.diffs[0].new_value == pytest.approx(13.75)

        scheduler.advance(54.75)
        assert proxy.state == 20
        scheduler.advance(0.25)
        assert updates.last.diffs[0].new_value == 20

    def test_rolling_average_non_numeric_timeline(self, registry, updates, scheduler):
        proxy = registry.add(_with_behaviors(Entity("test", "Test"), RollingAverage(10.0)))

        proxy.set_state("test1")
        scheduler.advance(0.25)
        assert proxy.state == "test1"
        assert updates.count == 1

        scheduler.jump(10.0)
        proxy.set_state("test2")
        assert proxy.state == "test1"

        scheduler.advance(11.0)
        assert proxy.state == "test2"
        assert updates.last.diffs == [EntityUpdateDiff("/state", "test1", "test2")]
        assert updates.count == 2

        scheduler.advance(50.0)
        assert proxy.state == "test2"
        assert updates.count == 2

    def test_debounce_then_rolling_average(self, registry, scheduler):
        proxy = registry.add(
            _with_behaviors(Entity("test", "Test"), Debounce(1.0), RollingAverage(5.0))
        )

        proxy.set_state("test1")
        scheduler.advance(0.5)
        assert proxy.state is None

        proxy.set_state("test2")
        scheduler.advance(1.0)
        assert proxy.state == "test2"

        scheduler.advance(5.0)
        proxy.set_state("test3")
        scheduler.advance(1.0)
        assert proxy.state == "test2"

        scheduler.advance(7.0)
        assert proxy.state == "test3"

    def test_trailing_debounce(self, registry, updates, scheduler):
        proxy = registry.add(_with_behaviors(Entity("test", "Test"), Debounce(0.5)))

        proxy.set_state(42)
        proxy.set_state(1337)
        assert proxy.state is None

        scheduler.run_all()
        assert proxy.state == 1337
        assert updates.count == 1

    def test_leading_debounce(self, registry, updates, scheduler):
        proxy = registry.add(_with_behaviors(Entity("test", "Test"), Debounce(0.5, leading=True)))

        proxy.set_state(42)
        proxy.set_state(1337)
        assert proxy.state == 42

        scheduler.run_all()
        assert proxy.state == 42
        assert updates.count == 1

    def test_behaviors_apply_only_to_their_path(self, registry, scheduler):
        proxy = registry.add(
            _with_behaviors(Entity("test", "Test"), Debounce(1.0, path="/attributes/distance"))
        )

        proxy.set_state("on")
        proxy.set_attribute("distance", 3.5)

        assert proxy.state == "on"
        assert proxy.get("/attributes/distance") is None

        scheduler.advance(1.0)
        assert proxy.get("/attributes/distance") == 3.5

    def test_behavior_config_by_entity_id(self, scheduler):
        registry = EntityRegistry(
            scheduler=scheduler,
            behavior_config={"test": {"debounce": {"wait": 1.0}}},
        )
        proxy = registry.add(Entity("test", "Test"))

        proxy.set_state("on")
        assert proxy.state is None

        scheduler.advance(1.0)
        assert proxy.state == "on"
