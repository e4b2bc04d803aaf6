"""Metrics Aggregator Module.

Provides metric collection and export:
- Counter, Gauge, Histogram with label vectors
- Registry with default runtime collectors
- Text exposition and push gateway delivery
"""

from gwmetrics.core.metrics_aggregator.core import (
    DEFAULT_BUCKETS,
    MetricType,
    SeriesSnapshot,
    MetricSample,
    Collector,
    Metric,
    LabeledMetric,
    Counter,
    Gauge,
    Histogram,
    Timer,
    linear_buckets,
    exponential_buckets,
)
from gwmetrics.core.metrics_aggregator.labels import LabelSet
from gwmetrics.core.metrics_aggregator.registry import (
    Registry,
    get_default_registry,
    set_default_registry,
    new_counter,
    new_gauge,
    new_histogram,
)
from gwmetrics.core.metrics_aggregator.collectors import (
    ProcessCollector,
    PlatformCollector,
    GCCollector,
    register_default_collectors,
)
from gwmetrics.core.metrics_aggregator.exposition import (
    CONTENT_TYPE_LATEST,
    ExpositionEncoder,
    render_exposition,
)
from gwmetrics.core.metrics_aggregator.push import (
    PushMode,
    PushResult,
    PushGatewayConfig,
    PushGatewayClient,
    Pusher,
)

__all__ = [
    # Core
    "DEFAULT_BUCKETS",
    "MetricType",
    "SeriesSnapshot",
    "MetricSample",
    "Collector",
    "Metric",
    "LabeledMetric",
    "Counter",
    "Gauge",
    "Histogram",
    "Timer",
    "linear_buckets",
    "exponential_buckets",
    "LabelSet",
    # Registry
    "Registry",
    "get_default_registry",
    "set_default_registry",
    "new_counter",
    "new_gauge",
    "new_histogram",
    # Collectors
    "ProcessCollector",
    "PlatformCollector",
    "GCCollector",
    "register_default_collectors",
    # Exposition
    "CONTENT_TYPE_LATEST",
    "ExpositionEncoder",
    "render_exposition",
    # Push
    "PushMode",
    "PushResult",
    "PushGatewayConfig",
    "PushGatewayClient",
    "Pusher",
]
