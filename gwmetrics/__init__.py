"""In-process metrics with Prometheus exposition and push gateway delivery."""

from gwmetrics.core.errors import (
    CardinalityLimitError,
    DuplicateNameError,
    EncodingError,
    InvalidDeltaError,
    InvalidNameError,
    LabelMismatchError,
    MetricsError,
    PushFailedError,
    UnregisteredError,
)
from gwmetrics.core.metrics_aggregator import *  # noqa: F401,F403
from gwmetrics.core.metrics_aggregator import __all__ as _aggregator_all

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "MetricsError",
    "InvalidNameError",
    "DuplicateNameError",
    "UnregisteredError",
    "LabelMismatchError",
    "InvalidDeltaError",
    "CardinalityLimitError",
    "EncodingError",
    "PushFailedError",
    *_aggregator_all,
]
