"""Behavior pipeline: transforms applied to property writes before they are committed."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from roomsense.config import EntityConfig
from roomsense.scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

Commit = Callable[[Any], None]

__all__ = [
    "Behavior",
    "BehaviorSpec",
    "Debounce",
    "DebounceBehavior",
    "Pipeline",
    "RollingAverage",
    "RollingAverageBehavior",
    "behaviors_from_config",
    "is_number",
]


def is_number(value: Any) -> bool:
    """True for int and float values; bools are not numbers here."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class BehaviorSpec:
    """Declarative description of a behavior attached to one property path."""

    path: str = "/state"

    def build(self, scheduler: Scheduler, commit: Commit) -> "Behavior":
        raise NotImplementedError


@dataclass(frozen=True)
class Debounce(BehaviorSpec):
    """Commit only after `wait` seconds without writes (or immediately, with `leading`)."""

    wait: float
    leading: bool = False
    path: str = "/state"

    def build(self, scheduler: Scheduler, commit: Commit) -> "Behavior":
        return DebounceBehavior(scheduler, commit, self.wait, self.leading)


@dataclass(frozen=True)
class RollingAverage(BehaviorSpec):
    """Smooth numeric values with a time-weighted mean over `window` seconds."""

    window: float
    path: str = "/state"

    def build(self, scheduler: Scheduler, commit: Commit) -> "Behavior":
        return RollingAverageBehavior(scheduler, commit, self.window)


class Behavior:
    """Stateful stage of a pipeline. Calls `commit` with the value to pass on."""

    def __init__(self, scheduler: Scheduler, commit: Commit):
        self.scheduler = scheduler
        self.commit = commit

    def write(self, value: Any) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Cancel pending timers."""


class DebounceBehavior(Behavior):
    def __init__(self, scheduler: Scheduler, commit: Commit, wait: float, leading: bool = False):
        super().__init__(scheduler, commit)
        self.wait = wait
        self.leading = leading
        self._timer: Optional[TimerHandle] = None
        self._pending: Any = None

    def write(self, value: Any) -> None:
        window_open = self._timer is not None and self._timer.active
        if self._timer is not None:
            self._timer.cancel()
        if self.leading:
            if not window_open:
                self.commit(value)
            self._timer = self.scheduler.call_later(self.wait, self._close_window)
        else:
            self._pending = value
            self._timer = self.scheduler.call_later(self.wait, self._fire)

    def _close_window(self) -> None:
        self._timer = None

    def _fire(self) -> None:
        self._timer = None
        value, self._pending = self._pending, None
        self.commit(value)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class RollingAverageBehavior(Behavior):
    """
    Time-weighted rolling average.

    Each numeric sample is weighted by how long it was the current value, up
    to the next sample or now. A sample is dropped once it stopped being
    current more than `window` seconds ago, and no sample counts for more
    than `window` seconds. The average is recommitted on every write and on a
    periodic tick while more than one sample is retained.

    Non-numeric values cannot be averaged: the first one commits at once and
    later ones commit after standing unchanged for `window` seconds.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        commit: Commit,
        window: float,
        tick: float = EntityConfig.ROLLING_AVERAGE_TICK,
    ):
        super().__init__(scheduler, commit)
        self.window = window
        self.tick = tick
        self._samples: List[Tuple[float, Any]] = []
        self._numeric: Optional[bool] = None
        self._committed = False
        self._tick_timer: Optional[TimerHandle] = None
        self._settle_timer: Optional[TimerHandle] = None
        self._pending: Any = None

    @property
    def samples(self) -> List[Tuple[float, Any]]:
        return list(self._samples)

    def write(self, value: Any) -> None:
        numeric = is_number(value)
        if self._numeric is not None and numeric != self._numeric:
            logger.debug("Rolling average value type changed, resetting window")
            self.close()
            self._samples = []
        self._numeric = numeric

        if numeric:
            self._samples.append((self.scheduler.now(), value))
            self._recompute()
        elif not self._committed:
            self._emit(value)
        else:
            if self._settle_timer is not None:
                self._settle_timer.cancel()
            self._pending = value
            self._settle_timer = self.scheduler.call_later(self.window, self._settle)

    def _emit(self, value: Any) -> None:
        self._committed = True
        self.commit(value)

    def _settle(self) -> None:
        self._settle_timer = None
        value, self._pending = self._pending, None
        self._emit(value)

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while len(self._samples) > 1 and self._samples[1][0] < cutoff:
            self._samples.pop(0)

    def average(self, now: Optional[float] = None) -> Any:
        """Time-weighted mean of the retained samples at `now`."""
        if now is None:
            now = self.scheduler.now()
        total_weight = 0.0
        weighted_sum = 0.0
        for i, (started, value) in enumerate(self._samples):
            ended = self._samples[i + 1][0] if i + 1 < len(self._samples) else now
            weight = min(ended - started, self.window)
            total_weight += weight
            weighted_sum += value * weight
        if total_weight <= 0:
            return self._samples[-1][1]
        return weighted_sum / total_weight

    def _recompute(self) -> None:
        now = self.scheduler.now()
        self._prune(now)
        self._emit(self.average(now))
        if len(self._samples) > 1:
            if self._tick_timer is None or not self._tick_timer.active:
                self._tick_timer = self.scheduler.call_later(self.tick, self._on_tick)
        elif self._tick_timer is not None:
            self._tick_timer.cancel()
            self._tick_timer = None

    def _on_tick(self) -> None:
        self._tick_timer = None
        if self._samples:
            self._recompute()

    def close(self) -> None:
        for timer in (self._tick_timer, self._settle_timer):
            if timer is not None:
                timer.cancel()
        self._tick_timer = None
        self._settle_timer = None


class Pipeline:
    """
    Chain of behaviors for one property path.

    Each behavior's commit feeds the next one; the last commits to `sink`.
    """

    def __init__(self, specs: Iterable[BehaviorSpec], scheduler: Scheduler, sink: Commit):
        self.specs = list(specs)
        self.behaviors: List[Behavior] = []
        downstream = sink
        for spec in reversed(self.specs):
            behavior = spec.build(scheduler, downstream)
            self.behaviors.insert(0, behavior)
            downstream = behavior.write
        self._entry = downstream

    def write(self, value: Any) -> None:
        self._entry(value)

    def close(self) -> None:
        for behavior in self.behaviors:
            behavior.close()


_CONFIG_KEYS = {"debounce", "rollingAverage"}


def behaviors_from_config(config: Mapping[str, Mapping[str, Any]], path: str = "/state") -> List[BehaviorSpec]:
    """
    Turn a behavior configuration mapping into specs, keeping its order.

    Example:
        {"debounce": {"wait": 0.75, "leading": False}, "rollingAverage": {"window": 60}}

    Raises:
        ValueError: For unknown behavior names or missing parameters.
    """
    specs: List[BehaviorSpec] = []
    for name, options in config.items():
        options = options or {}
        if name not in _CONFIG_KEYS:
            raise ValueError(f"Unknown entity behavior {name!r}")
        try:
            if name == "debounce":
                specs.append(
                    Debounce(
                        wait=float(options["wait"]),
                        leading=bool(options.get("leading", False)),
                        path=path,
                    )
                )
            else:
                specs.append(RollingAverage(window=float(options["window"]), path=path))
        except KeyError as e:
            raise ValueError(f"Behavior {name!r} is missing option {e.args[0]!r}") from e
    return specs
