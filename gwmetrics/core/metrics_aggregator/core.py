"""Metrics Aggregator Core.

Provides metric families and their series:
- Counter, Gauge, Histogram
- Label vectors with lazily created series
- Per-series locking
"""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from bisect import bisect_left
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from gwmetrics.core.errors import (
    CardinalityLimitError,
    InvalidDeltaError,
    InvalidNameError,
    UnregisteredError,
)
from gwmetrics.core.metrics_aggregator.labels import (
    LabelsArg,
    as_label_set,
    validate_label_name,
    validate_label_names,
    validate_metric_name,
)

INF = float("inf")

# client_golang DefBuckets
DEFAULT_BUCKETS: Tuple[float, ...] = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)


def format_float(value: float) -> str:
    """Render a sample value or bucket bound the way the text format expects."""
    if math.isnan(value):
        return "NaN"
    if value == INF:
        return "+Inf"
    if value == -INF:
        return "-Inf"
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


class MetricType(Enum):
    """Types of metrics."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class SeriesSnapshot:
    """Point-in-time copy of one series.

    ``labels`` holds the variable labels in declared order followed by the
    const labels sorted by name. Histogram snapshots carry cumulative
    ``buckets`` as ``(upper_bound, count)`` pairs ending with ``+Inf``.
    """
    labels: Tuple[Tuple[str, str], ...] = ()
    value: float = 0.0
    buckets: Tuple[Tuple[float, float], ...] = ()
    sum: float = 0.0
    count: float = 0.0
    timestamp_ms: Optional[int] = None

    @property
    def label_dict(self) -> Dict[str, str]:
        return dict(self.labels)


@dataclass(frozen=True)
class MetricSample:
    """A family's metadata together with its series snapshots."""
    name: str
    metric_type: MetricType
    description: str
    label_names: Tuple[str, ...] = ()
    series: Tuple[SeriesSnapshot, ...] = field(default_factory=tuple)


class Collector(ABC):
    """Anything the registry can hold: it owns names and produces samples."""

    @abstractmethod
    def describe(self) -> Tuple[str, ...]:
        """Names this collector claims in a registry."""

    @abstractmethod
    def collect(self) -> List[MetricSample]:
        """Produce current samples."""


class _Series:
    __slots__ = ("lock", "updated")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.updated = time.time()


class _ValueSeries(_Series):
    __slots__ = ("value",)

    def __init__(self) -> None:
        super().__init__()
        self.value = 0.0


class _HistogramSeries(_Series):
    __slots__ = ("counts", "sum", "count")

    def __init__(self, size: int) -> None:
        super().__init__()
        # Non-cumulative per-bucket counts; cumulated on snapshot
        self.counts = [0] * size
        self.sum = 0.0
        self.count = 0


class Metric(Collector):
    """Abstract base class for metric families."""

    def __init__(
        self,
        name: str,
        description: str = "",
        label_names: Optional[Sequence[str]] = None,
        *,
        const_labels: Optional[Mapping[str, Any]] = None,
        max_series: Optional[int] = None,
    ):
        self._name = validate_metric_name(name)
        self._description = description
        self._label_names = validate_label_names(label_names or ())
        const = {validate_label_name(k): str(v) for k, v in (const_labels or {}).items()}
        overlap = set(const) & set(self._label_names)
        if overlap:
            raise InvalidNameError(f"Const labels {sorted(overlap)} overlap label names of {name!r}")
        self._const_labels: Tuple[Tuple[str, str], ...] = tuple(sorted(const.items()))
        if max_series is not None and max_series <= 0:
            max_series = None
        self._max_series = max_series
        self._series: Dict[Tuple[str, ...], _Series] = {}
        # Guards insertion into the series index only
        self._lock = threading.Lock()
        self._retired = False
        # Registries currently holding this family
        self._holders = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def label_names(self) -> Tuple[str, ...]:
        return self._label_names

    @property
    def const_labels(self) -> Dict[str, str]:
        return dict(self._const_labels)

    @property
    def retired(self) -> bool:
        return self._retired

    @property
    @abstractmethod
    def metric_type(self) -> MetricType:
        pass

    @abstractmethod
    def _new_series(self) -> _Series:
        pass

    @abstractmethod
    def _snapshot(self, key: Tuple[str, ...], series: _Series) -> SeriesSnapshot:
        pass

    @abstractmethod
    def _zero(self, series: _Series) -> None:
        pass

    def describe(self) -> Tuple[str, ...]:
        return (self._name,)

    def definition(self) -> Tuple[Any, ...]:
        """Everything that must match for two families to be interchangeable."""
        return (self.metric_type, self._name, self._description, self._label_names, self._const_labels)

    def __len__(self) -> int:
        return len(self._series)

    def _check_live(self) -> None:
        if self._retired:
            raise UnregisteredError(self._name)

    def _attach(self) -> None:
        with self._lock:
            self._holders += 1

    def _detach(self) -> None:
        """Release one registry's hold; the last release retires the family."""
        with self._lock:
            self._holders = max(0, self._holders - 1)
            if self._holders == 0:
                self._retired = True

    def _key(self, labels: LabelsArg) -> Tuple[str, ...]:
        return as_label_set(labels).key_for(self._label_names)

    def _series_for_key(self, key: Tuple[str, ...]) -> _Series:
        self._check_live()
        series = self._series.get(key)
        if series is None:
            with self._lock:
                series = self._series.get(key)
                if series is None:
                    if self._max_series is not None and len(self._series) >= self._max_series:
                        raise CardinalityLimitError(self._name, self._max_series)
                    series = self._new_series()
                    self._series[key] = series
        return series

    def _series_for(self, labels: LabelsArg) -> _Series:
        return self._series_for_key(self._key(labels))

    def _labeled(self, key: Tuple[str, ...]) -> Tuple[Tuple[str, str], ...]:
        return tuple(zip(self._label_names, key)) + self._const_labels

    def labels(self, labels: LabelsArg = None, /, **kwargs: Any) -> "LabeledMetric":
        """Return a handle bound to one series.

        Accepts a positional mapping, keyword label values, or both.
        """
        merged = dict(as_label_set(labels))
        merged.update({k: str(v) for k, v in kwargs.items()})
        key = self._key(merged)
        return self._child_class(self, key)

    _child_class: type

    def reset(self, labels: LabelsArg = None) -> None:
        """Zero one series, or every series when no labels are given."""
        self._check_live()
        if labels is not None:
            series = self._series.get(self._key(labels))
            targets = [series] if series is not None else []
        else:
            with self._lock:
                targets = list(self._series.values())
        for series in targets:
            with series.lock:
                self._zero(series)
                series.updated = time.time()

    def remove(self, labels: LabelsArg) -> bool:
        """Drop a single series. Returns whether it existed."""
        self._check_live()
        key = self._key(labels)
        with self._lock:
            return self._series.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every series."""
        self._check_live()
        with self._lock:
            self._series.clear()

    def collect(self) -> List[MetricSample]:
        self._check_live()
        with self._lock:
            items = list(self._series.items())
        items.sort(key=lambda kv: kv[0])
        series = tuple(self._snapshot(key, s) for key, s in items)
        return [
            MetricSample(
                name=self._name,
                metric_type=self.metric_type,
                description=self._description,
                label_names=self._label_names,
                series=series,
            )
        ]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._name!r}, labels={list(self._label_names)})"


class LabeledMetric:
    """A metric bound to a specific label set."""

    def __init__(self, metric: Metric, key: Tuple[str, ...]):
        self._metric = metric
        self._key = key

    @property
    def label_values(self) -> Tuple[str, ...]:
        return self._key

    def _series(self) -> Any:
        return self._metric._series_for_key(self._key)


class CounterChild(LabeledMetric):
    def inc(self, amount: float = 1) -> None:
        Counter._check_amount(amount)
        self._metric._add(self._series(), amount)  # type: ignore[attr-defined]


class GaugeChild(LabeledMetric):
    def set(self, value: float) -> None:
        self._metric._store(self._series(), value)  # type: ignore[attr-defined]

    def inc(self, amount: float = 1) -> None:
        self._metric._add(self._series(), amount)  # type: ignore[attr-defined]

    def dec(self, amount: float = 1) -> None:
        self._metric._add(self._series(), -amount)  # type: ignore[attr-defined]

    def set_to_current_time(self) -> None:
        self.set(time.time())


class HistogramChild(LabeledMetric):
    def observe(self, value: float) -> None:
        self._metric._record(self._series(), value)  # type: ignore[attr-defined]

    def time(self) -> "Timer":
        return Timer(self)


class Counter(Metric):
    """Counter metric (monotonically increasing)."""

    _child_class = CounterChild

    @property
    def metric_type(self) -> MetricType:
        return MetricType.COUNTER

    def inc(self, labels: LabelsArg = None, amount: float = 1) -> None:
        """Increment counter.

        The amount is checked before the series is looked up so a rejected
        increment never creates a series.
        """
        self._check_amount(amount)
        self._add(self._series_for(labels), amount)

    @staticmethod
    def _check_amount(amount: float) -> None:
        if amount < 0 or math.isnan(amount):
            raise InvalidDeltaError(f"Counter can only be incremented, got {amount}")

    def _add(self, series: _ValueSeries, amount: float) -> None:
        self._check_amount(amount)
        with series.lock:
            series.value += amount
            series.updated = time.time()

    def _new_series(self) -> _ValueSeries:
        return _ValueSeries()

    def _zero(self, series: _ValueSeries) -> None:  # type: ignore[override]
        series.value = 0.0

    def _snapshot(self, key: Tuple[str, ...], series: _ValueSeries) -> SeriesSnapshot:  # type: ignore[override]
        with series.lock:
            value, updated = series.value, series.updated
        return SeriesSnapshot(labels=self._labeled(key), value=value, timestamp_ms=int(updated * 1000))

    def get(self, labels: LabelsArg = None) -> float:
        """Current value of one series, 0 if it does not exist yet."""
        self._check_live()
        series = self._series.get(self._key(labels))
        if series is None:
            return 0.0
        with series.lock:
            return series.value  # type: ignore[attr-defined]


class Gauge(Metric):
    """Gauge metric (can go up and down)."""

    _child_class = GaugeChild

    @property
    def metric_type(self) -> MetricType:
        return MetricType.GAUGE

    def set(self, labels: LabelsArg = None, value: float = 0.0) -> None:
        """Set gauge value."""
        self._store(self._series_for(labels), value)

    def inc(self, labels: LabelsArg = None, amount: float = 1) -> None:
        """Increment gauge."""
        self._add(self._series_for(labels), amount)

    def dec(self, labels: LabelsArg = None, amount: float = 1) -> None:
        """Decrement gauge."""
        self._add(self._series_for(labels), -amount)

    def set_to_current_time(self, labels: LabelsArg = None) -> None:
        self._store(self._series_for(labels), time.time())

    def _store(self, series: _ValueSeries, value: float) -> None:
        with series.lock:
            series.value = float(value)
            series.updated = time.time()

    def _add(self, series: _ValueSeries, amount: float) -> None:
        with series.lock:
            series.value += amount
            series.updated = time.time()

    def _new_series(self) -> _ValueSeries:
        return _ValueSeries()

    def _zero(self, series: _ValueSeries) -> None:  # type: ignore[override]
        series.value = 0.0

    def _snapshot(self, key: Tuple[str, ...], series: _ValueSeries) -> SeriesSnapshot:  # type: ignore[override]
        with series.lock:
            value, updated = series.value, series.updated
        return SeriesSnapshot(labels=self._labeled(key), value=value, timestamp_ms=int(updated * 1000))

    def get(self, labels: LabelsArg = None) -> float:
        self._check_live()
        series = self._series.get(self._key(labels))
        if series is None:
            return 0.0
        with series.lock:
            return series.value  # type: ignore[attr-defined]


def _normalize_buckets(buckets: Iterable[float]) -> Tuple[float, ...]:
    bounds = [float(b) for b in buckets]
    if bounds and bounds[-1] == INF:
        bounds.pop()
    for b in bounds:
        if math.isnan(b) or math.isinf(b):
            raise InvalidNameError(f"Bucket bounds must be finite, got {b}")
    for lower, upper in zip(bounds, bounds[1:]):
        if not lower < upper:
            raise InvalidNameError(f"Bucket bounds must be strictly ascending: {bounds}")
    return tuple(bounds) + (INF,)


def linear_buckets(start: float, width: float, count: int) -> Tuple[float, ...]:
    """``count`` buckets, ``width`` apart, the lowest upper bound being ``start``."""
    if count < 1:
        raise InvalidNameError("linear_buckets needs a positive count")
    if width <= 0:
        raise InvalidNameError("linear_buckets needs a positive width")
    return tuple(start + i * width for i in range(count))


def exponential_buckets(start: float, factor: float, count: int) -> Tuple[float, ...]:
    """``count`` buckets where each upper bound is ``factor`` times the previous."""
    if count < 1:
        raise InvalidNameError("exponential_buckets needs a positive count")
    if start <= 0:
        raise InvalidNameError("exponential_buckets needs a positive start")
    if factor <= 1:
        raise InvalidNameError("exponential_buckets needs a factor greater than 1")
    return tuple(start * factor ** i for i in range(count))


class Histogram(Metric):
    """Histogram metric for distributions."""

    DEFAULT_BUCKETS = DEFAULT_BUCKETS
    _child_class = HistogramChild

    def __init__(
        self,
        name: str,
        description: str = "",
        label_names: Optional[Sequence[str]] = None,
        buckets: Optional[Sequence[float]] = None,
        *,
        const_labels: Optional[Mapping[str, Any]] = None,
        max_series: Optional[int] = None,
    ):
        if "le" in (label_names or ()) or "le" in (const_labels or {}):
            raise InvalidNameError(f"Histogram {name!r} cannot use the reserved label 'le'")
        super().__init__(name, description, label_names, const_labels=const_labels, max_series=max_series)
        self._upper_bounds = _normalize_buckets(self.DEFAULT_BUCKETS if buckets is None else buckets)

    @property
    def metric_type(self) -> MetricType:
        return MetricType.HISTOGRAM

    @property
    def buckets(self) -> Tuple[float, ...]:
        """Upper bounds including the trailing ``+Inf``."""
        return self._upper_bounds

    def describe(self) -> Tuple[str, ...]:
        return (self._name, f"{self._name}_bucket", f"{self._name}_sum", f"{self._name}_count")

    def definition(self) -> Tuple[Any, ...]:
        return super().definition() + (self._upper_bounds,)

    def observe(self, labels: LabelsArg = None, value: float = 0.0) -> None:
        """Observe a value."""
        self._record(self._series_for(labels), value)

    def time(self, labels: LabelsArg = None) -> "Timer":
        """Return a timer context manager."""
        return Timer(self.labels(labels))

    def _record(self, series: _HistogramSeries, value: float) -> None:
        value = float(value)
        if math.isnan(value):
            index = len(self._upper_bounds) - 1
        else:
            index = bisect_left(self._upper_bounds, value)
        with series.lock:
            series.counts[index] += 1
            series.sum += value
            series.count += 1
            series.updated = time.time()

    def _new_series(self) -> _HistogramSeries:
        return _HistogramSeries(len(self._upper_bounds))

    def _zero(self, series: _HistogramSeries) -> None:  # type: ignore[override]
        series.counts = [0] * len(self._upper_bounds)
        series.sum = 0.0
        series.count = 0

    def _snapshot(self, key: Tuple[str, ...], series: _HistogramSeries) -> SeriesSnapshot:  # type: ignore[override]
        with series.lock:
            counts = list(series.counts)
            total, count, updated = series.sum, series.count, series.updated
        cumulative = []
        running = 0
        for bound, c in zip(self._upper_bounds, counts):
            running += c
            cumulative.append((bound, float(running)))
        return SeriesSnapshot(
            labels=self._labeled(key),
            buckets=tuple(cumulative),
            sum=total,
            count=float(count),
            timestamp_ms=int(updated * 1000),
        )


class Timer:
    """Timer context manager for histograms."""

    def __init__(self, child: HistogramChild):
        self._child = child
        self._start: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._start is not None:
            self._child.observe(time.perf_counter() - self._start)


__all__ = [
    "DEFAULT_BUCKETS",
    "format_float",
    "MetricType",
    "SeriesSnapshot",
    "MetricSample",
    "Collector",
    "Metric",
    "LabeledMetric",
    "CounterChild",
    "GaugeChild",
    "HistogramChild",
    "Counter",
    "Gauge",
    "Histogram",
    "Timer",
    "linear_buckets",
    "exponential_buckets",
]
