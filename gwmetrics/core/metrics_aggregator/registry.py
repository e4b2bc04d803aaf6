"""Metrics Registry.

Provides the process-local collection of metric families:
- Registration with name/help/type consistency checks
- Deterministic, restartable collection
- Default registry and registration helpers
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

from gwmetrics.core.config import get_settings
from gwmetrics.core.errors import DuplicateNameError, UnregisteredError
from gwmetrics.core.metrics_aggregator.collectors import register_default_collectors
from gwmetrics.core.metrics_aggregator.core import (
    Collector,
    Counter,
    Gauge,
    Histogram,
    Metric,
    MetricSample,
    format_float,
)
from gwmetrics.core.metrics_aggregator.labels import LabelsArg, as_label_set

logger = logging.getLogger(__name__)


class CollectedMetrics:
    """Lazy view over a registry's samples.

    Every iteration walks the registry again, so the same object can be
    iterated repeatedly and always reflects current values.
    """

    def __init__(self, registry: "Registry", names: Optional[Sequence[str]] = None):
        self._registry = registry
        self._names = frozenset(names) if names is not None else None

    def __iter__(self) -> Iterator[MetricSample]:
        for collector in self._registry.collectors():
            if self._names is not None and not self._names.intersection(collector.describe()):
                continue
            try:
                samples = collector.collect()
            except UnregisteredError:
                # unregistered between the list copy and this read
                continue
            for sample in samples:
                if self._names is None or sample.name in self._names:
                    yield sample


class Registry:
    """Registry for all metrics."""

    def __init__(self) -> None:
        self._collectors: List[Collector] = []
        self._names: Dict[str, Collector] = {}
        self._lock = threading.Lock()

    def register(self, collector: Collector) -> Collector:
        """Register a collector, returning the one that ends up registered.

        Registering a family whose definition matches an already registered
        family returns the existing family, so several call sites can share
        one metric.
        """
        if isinstance(collector, Metric) and collector.retired:
            raise UnregisteredError(collector.name)
        names = collector.describe()

        with self._lock:
            if any(c is collector for c in self._collectors):
                return collector
            for name in names:
                existing = self._names.get(name)
                if existing is None:
                    continue
                if (
                    isinstance(existing, Metric)
                    and isinstance(collector, Metric)
                    and existing.definition() == collector.definition()
                ):
                    return existing
                raise DuplicateNameError(name)
            self._collectors.append(collector)
            for name in names:
                self._names[name] = collector
            if isinstance(collector, Metric):
                collector._attach()

        logger.debug(f"Registered collector {names[0] if names else collector!r}", extra={"family": list(names)})
        return collector

    def unregister(self, target: Union[str, Collector]) -> bool:
        """Remove a collector by one of its names or by identity.

        A family is retired once no registry holds it any more: later use
        of retained handles then raises ``UnregisteredError``.
        """
        with self._lock:
            if isinstance(target, str):
                collector = self._names.get(target)
            else:
                collector = next((c for c in self._collectors if c is target), None)
            if collector is None:
                return False
            self._collectors = [c for c in self._collectors if c is not collector]
            for name in [n for n, c in self._names.items() if c is collector]:
                del self._names[name]

        if isinstance(collector, Metric):
            collector._detach()
        logger.debug(f"Unregistered collector {collector!r}", extra={"family": list(collector.describe())})
        return True

    def collectors(self) -> List[Collector]:
        """Registered collectors in registration order (a copy)."""
        with self._lock:
            return list(self._collectors)

    def collect(self, names: Optional[Sequence[str]] = None) -> CollectedMetrics:
        """Collect all metrics, or only the families named in ``names``."""
        return CollectedMetrics(self, names)

    def get(self, name: str) -> Optional[Collector]:
        """Get collector by any of its names."""
        with self._lock:
            return self._names.get(name)

    def names(self) -> List[str]:
        """List all registered names."""
        with self._lock:
            return list(self._names.keys())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._collectors)

    def get_sample_value(self, name: str, labels: LabelsArg = None) -> Optional[float]:
        """Value of a single exposed sample, or None if absent.

        ``name`` may carry the histogram suffixes ``_bucket``, ``_sum`` and
        ``_count``; bucket lookups take the bound in an ``le`` label.
        """
        wanted = dict(as_label_set(labels))
        for sample in self.collect():
            for series in sample.series:
                if sample.name == name and not series.buckets and series.label_dict == wanted:
                    return series.value
                base = series.label_dict
                if name == f"{sample.name}_sum" and base == wanted:
                    return series.sum
                if name == f"{sample.name}_count" and base == wanted:
                    return series.count
                if name == f"{sample.name}_bucket":
                    for bound, count in series.buckets:
                        if {**base, "le": format_float(bound)} == wanted:
                            return count
        return None

    def _max_series(self, max_series: Optional[int]) -> Optional[int]:
        if max_series is not None:
            return max_series
        return get_settings().METRICS_MAX_SERIES_PER_FAMILY or None

    def counter(
        self,
        name: str,
        description: str = "",
        label_names: Optional[Sequence[str]] = None,
        *,
        const_labels: Optional[Mapping[str, Any]] = None,
        max_series: Optional[int] = None,
    ) -> Counter:
        """Get or create a counter."""
        counter = Counter(
            name,
            description,
            label_names,
            const_labels=const_labels,
            max_series=self._max_series(max_series),
        )
        return self.register(counter)  # type: ignore[return-value]

    def gauge(
        self,
        name: str,
        description: str = "",
        label_names: Optional[Sequence[str]] = None,
        *,
        const_labels: Optional[Mapping[str, Any]] = None,
        max_series: Optional[int] = None,
    ) -> Gauge:
        """Get or create a gauge."""
        gauge = Gauge(
            name,
            description,
            label_names,
            const_labels=const_labels,
            max_series=self._max_series(max_series),
        )
        return self.register(gauge)  # type: ignore[return-value]

    def histogram(
        self,
        name: str,
        description: str = "",
        label_names: Optional[Sequence[str]] = None,
        buckets: Optional[Sequence[float]] = None,
        *,
        const_labels: Optional[Mapping[str, Any]] = None,
        max_series: Optional[int] = None,
    ) -> Histogram:
        """Get or create a histogram."""
        histogram = Histogram(
            name,
            description,
            label_names,
            buckets,
            const_labels=const_labels,
            max_series=self._max_series(max_series),
        )
        return self.register(histogram)  # type: ignore[return-value]


# Default registry
_default_registry: Optional[Registry] = None
_default_lock = threading.Lock()


def get_default_registry() -> Registry:
    """Get default metrics registry, creating it on first use."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            registry = Registry()
            settings = get_settings()
            if settings.METRICS_DEFAULT_COLLECTORS:
                register_default_collectors(registry, namespace=settings.METRICS_NAMESPACE)
            _default_registry = registry
        return _default_registry


def set_default_registry(registry: Optional[Registry]) -> None:
    """Replace the default registry; ``None`` makes the next access build a fresh one."""
    global _default_registry
    with _default_lock:
        _default_registry = registry


def new_counter(
    name: str,
    description: str,
    label_names: Optional[Sequence[str]] = None,
    *,
    registry: Optional[Registry] = None,
    const_labels: Optional[Mapping[str, Any]] = None,
    max_series: Optional[int] = None,
) -> Counter:
    """Create counter in ``registry`` (default registry if omitted)."""
    if registry is None:
        registry = get_default_registry()
    return registry.counter(name, description, label_names, const_labels=const_labels, max_series=max_series)


def new_gauge(
    name: str,
    description: str,
    label_names: Optional[Sequence[str]] = None,
    *,
    registry: Optional[Registry] = None,
    const_labels: Optional[Mapping[str, Any]] = None,
    max_series: Optional[int] = None,
) -> Gauge:
    """Create gauge in ``registry`` (default registry if omitted)."""
    if registry is None:
        registry = get_default_registry()
    return registry.gauge(name, description, label_names, const_labels=const_labels, max_series=max_series)


def new_histogram(
    name: str,
    description: str,
    label_names: Optional[Sequence[str]] = None,
    buckets: Optional[Sequence[float]] = None,
    *,
    registry: Optional[Registry] = None,
    const_labels: Optional[Mapping[str, Any]] = None,
    max_series: Optional[int] = None,
) -> Histogram:
    """Create histogram in ``registry`` (default registry if omitted)."""
    if registry is None:
        registry = get_default_registry()
    return registry.histogram(
        name, description, label_names, buckets, const_labels=const_labels, max_series=max_series
    )
