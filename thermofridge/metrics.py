"""In-process metrics collectors with Prometheus text exposition."""

from __future__ import annotations

import bisect
import math
import threading
from collections.abc import Iterable, Sequence
from typing import Any

from .model import Mode, OperatingState


def _number(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _labels(pairs: Iterable[tuple[str, str]]) -> str:
    rendered = ",".join(
        f'{name}="{value.replace(chr(92), chr(92) * 2).replace(chr(34), chr(92) + chr(34))}"'
        for name, value in pairs
    )
    return f"{{{rendered}}}" if rendered else ""


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, help_text: str, label_names: Sequence[str] = ()) -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _key(self, values: Sequence[object]) -> tuple[str, ...]:
        if len(values) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, got {len(values)}"
            )
        return tuple(str(value) for value in values)

    def _render(self, samples: Iterable[str]) -> str:
        header = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} {self.kind}"]
        return "\n".join([*header, *samples]) + "\n"


class Counter(_Metric):
    """A monotonically increasing count, optionally split by labels."""

    kind = "counter"

    def __init__(self, name: str, help_text: str, label_names: Sequence[str] = ()) -> None:
        super().__init__(name, help_text, label_names)
        self._values: dict[tuple[str, ...], float] = {} if self.label_names else {(): 0.0}

    def inc(self, *args: object) -> None:
        key = self._key(args)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + 1

    def get(self, *args: object) -> float:
        key = self._key(args)
        with self._lock:
            return self._values.get(key, 0.0)

    def expose(self) -> str:
        with self._lock:
            items = sorted(self._values.items())
        return self._render(
            f"{self.name}{_labels(zip(self.label_names, key))} {_number(value)}"
            for key, value in items
        )


class Gauge(_Metric):
    """A single value that can go up and down."""

    kind = "gauge"

    def __init__(self, name: str, help_text: str) -> None:
        super().__init__(name, help_text)
        self._value = 0.0

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def get(self) -> float:
        with self._lock:
            return self._value

    def expose(self) -> str:
        return self._render([f"{self.name} {_number(self.get())}"])


class Histogram(_Metric):
    """Observations sorted into cumulative buckets, optionally split by labels."""

    kind = "histogram"

    def __init__(
        self, name: str, help_text: str, buckets: Sequence[float], label_names: Sequence[str] = ()
    ) -> None:
        super().__init__(name, help_text, label_names)
        bounds = [float(b) for b in buckets]
        if not bounds or not math.isinf(bounds[-1]):
            bounds.append(math.inf)
        self.buckets = tuple(bounds)
        # Each series holds per-bucket counts, the sum and the count of observations.
        self._series: dict[tuple[str, ...], list[Any]] = {}
        if not self.label_names:
            self._series[()] = [[0] * len(self.buckets), 0.0, 0]

    def observe(self, value: float, *args: object) -> None:
        key = self._key(args)
        index = bisect.bisect_left(self.buckets, value)
        with self._lock:
            series = self._series.setdefault(key, [[0] * len(self.buckets), 0.0, 0])
            if index < len(self.buckets):
                series[0][index] += 1
            series[1] += value
            series[2] += 1

    def _field(self, args: Sequence[object], index: int, empty: Any) -> Any:
        key = self._key(args)
        with self._lock:
            return self._series[key][index] if key in self._series else empty

    def count(self, *args: object) -> int:
        return self._field(args, 2, 0)

    def total(self, *args: object) -> float:
        return self._field(args, 1, 0.0)

    def expose(self) -> str:
        samples = []
        with self._lock:
            for key, (counts, total, count) in sorted(self._series.items()):
                pairs = list(zip(self.label_names, key))
                cumulative = 0
                for bound, amount in zip(self.buckets, counts):
                    cumulative += amount
                    le = _labels([*pairs, ("le", _number(bound))])
                    samples.append(f"{self.name}_bucket{le} {cumulative}")
                samples.append(f"{self.name}_sum{_labels(pairs)} {_number(total)}")
                samples.append(f"{self.name}_count{_labels(pairs)} {count}")
        return self._render(samples)


class Registry:
    """A set of collectors exposed together."""

    def __init__(self) -> None:
        self._collectors: dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, collector: Any) -> Any:
        with self._lock:
            if collector.name in self._collectors:
                raise ValueError(
                    f"duplicate metrics collector registration attempted: {collector.name}"
                )
            self._collectors[collector.name] = collector
        return collector

    def expose(self) -> str:
        with self._lock:
            collectors = [self._collectors[name] for name in sorted(self._collectors)]
        return "".join(collector.expose() for collector in collectors)


_DURATION_BUCKETS = (
    0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, math.inf,
)

REQUESTS_HANDLED = Counter(
    "requests_handled",
    "Handled requests counter and metadata associated with them",
    ("route_name", "status_code"),
)
REQUESTS_DURATION = Histogram(
    "requests_duration", "Time spent processing requests", _DURATION_BUCKETS
)
EVENTS_PROCESSED = Counter(
    "events_processed",
    "Handled PubSub events counter and metadata associated with them",
    ("event_name", "status"),
)
EVENTS_DURATION = Histogram(
    "events_duration", "Time spent processing events", _DURATION_BUCKETS, ("event_name",)
)
THERMOFRIDGE_MODE = Gauge("thermofridge_mode", "Mode of the thermofridge")
THERMOFRIDGE_TARGET_TEMPERATURE = Gauge(
    "thermofridge_target_temperature", "Target temperature of the thermofridge"
)
THERMOFRIDGE_OPERATING_STATE = Gauge(
    "thermofridge_operating_state", "Operating state of the thermofridge"
)
THERMOFRIDGE_CURRENT_TEMPERATURE = Gauge(
    "thermofridge_current_temperature", "Current temperature reading of the thermofridge"
)

COLLECTORS = (
    REQUESTS_HANDLED,
    REQUESTS_DURATION,
    EVENTS_PROCESSED,
    EVENTS_DURATION,
    THERMOFRIDGE_MODE,
    THERMOFRIDGE_TARGET_TEMPERATURE,
    THERMOFRIDGE_OPERATING_STATE,
    THERMOFRIDGE_CURRENT_TEMPERATURE,
)

DEFAULT_REGISTRY = Registry()

_MODE_VALUES = {Mode.OFF: 0, Mode.HEAT: 1, Mode.COOL: 2, Mode.AUTO: 3}
_OPERATING_STATE_VALUES = {OperatingState.IDLE: 0, OperatingState.HEATING: 1, OperatingState.COOLING: 2}


def register_collectors(registry: Registry | None = None) -> None:
    """Register every application collector with the registry."""
    target = DEFAULT_REGISTRY if registry is None else registry
    for index, collector in enumerate(COLLECTORS):
        try:
            target.register(collector)
        except ValueError as exc:
            raise ValueError(
                f"error registering metrics collector with index {index}: {exc}"
            ) from exc


def add_request_handled(route_name: str, status_code: int) -> None:
    REQUESTS_HANDLED.inc(route_name, str(status_code))


def observe_request_duration(seconds: float) -> None:
    REQUESTS_DURATION.observe(seconds)


def add_event_processed(event_name: str, status: str) -> None:
    EVENTS_PROCESSED.inc(event_name, status)


def observe_event_duration(event_name: str, seconds: float) -> None:
    EVENTS_DURATION.observe(seconds, event_name)


def set_thermofridge_mode(mode: Mode | str) -> None:
    THERMOFRIDGE_MODE.set(_MODE_VALUES.get(mode, -1))


def set_thermofridge_target_temperature(temperature: int) -> None:
    THERMOFRIDGE_TARGET_TEMPERATURE.set(temperature)


def set_thermofridge_operating_state(state: OperatingState | str) -> None:
    THERMOFRIDGE_OPERATING_STATE.set(_OPERATING_STATE_VALUES.get(state, -1))


def set_thermofridge_current_temperature(temperature: float) -> None:
    THERMOFRIDGE_CURRENT_TEMPERATURE.set(temperature)