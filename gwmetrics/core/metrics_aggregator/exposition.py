"""Prometheus text exposition format.

Output is deterministic: families in registration order, series in
canonical label order, histogram buckets ascending. Families without any
series are left out.

Example:
    # HELP requests_total Total requests
    # TYPE requests_total counter
    requests_total{service="a"} 6
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple, Union

from gwmetrics.core.config import get_settings
from gwmetrics.core.errors import EncodingError
from gwmetrics.core.metrics_aggregator.core import (
    Metric,
    MetricSample,
    MetricType,
    SeriesSnapshot,
    format_float,
)
from gwmetrics.core.metrics_aggregator.registry import Registry, get_default_registry

logger = logging.getLogger(__name__)

CONTENT_TYPE_LATEST = "text/plain; version=0.0.4"


def _check_text(text: str, what: str) -> str:
    if not isinstance(text, str):
        raise EncodingError(f"{what} must be a string, got {type(text).__name__}")
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingError(f"{what} {text!r} is not valid UTF-8: {e.reason}") from e
    return text


def escape_label_value(value: str) -> str:
    """Escape backslash, double quote and newline."""
    _check_text(value, "Label value")
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def escape_help(text: str) -> str:
    """Escape backslash and newline."""
    _check_text(text, "Help text")
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _format_labels(labels: Iterable[Tuple[str, str]]) -> str:
    parts = [f'{name}="{escape_label_value(value)}"' for name, value in labels]
    if not parts:
        return ""
    return "{" + ",".join(parts) + "}"


class ExpositionEncoder:
    """Serializes registry snapshots into the text exposition format."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, include_timestamps: Optional[bool] = None):
        if include_timestamps is None:
            include_timestamps = get_settings().METRICS_INCLUDE_TIMESTAMPS
        self.include_timestamps = include_timestamps

    def encode(self, source: Union[Registry, Iterable[MetricSample]]) -> str:
        """Encode every family of a registry, or an iterable of samples."""
        samples = source.collect() if isinstance(source, Registry) else source
        return self.encode_samples(samples)

    def encode_family(self, registry: Registry, name: str) -> str:
        """Encode one family in isolation.

        Raises:
            KeyError: no family called ``name`` is registered. Histogram
                suffix names such as ``<name>_bucket`` are not families.
        """
        collector = registry.get(name)
        if collector is None or (isinstance(collector, Metric) and collector.name != name):
            raise KeyError(name)
        return self.encode_samples(registry.collect(names=[name]))

    def encode_samples(self, samples: Iterable[MetricSample]) -> str:
        lines: List[str] = []
        for sample in samples:
            if not sample.series:
                continue
            lines.append(f"# HELP {sample.name} {escape_help(sample.description)}")
            lines.append(f"# TYPE {sample.name} {sample.metric_type.value}")
            for series in sample.series:
                if sample.metric_type is MetricType.HISTOGRAM:
                    lines.extend(self._histogram_lines(sample.name, series))
                else:
                    lines.append(self._line(sample.name, series.labels, series.value, series))
        if not lines:
            return ""
        return "\n".join(lines) + "\n"

    def _histogram_lines(self, name: str, series: SeriesSnapshot) -> List[str]:
        lines = [
            self._line(f"{name}_bucket", series.labels + (("le", format_float(bound)),), count, series)
            for bound, count in series.buckets
        ]
        lines.append(self._line(f"{name}_sum", series.labels, series.sum, series))
        lines.append(self._line(f"{name}_count", series.labels, series.count, series))
        return lines

    def _line(
        self,
        name: str,
        labels: Iterable[Tuple[str, str]],
        value: float,
        series: SeriesSnapshot,
    ) -> str:
        line = f"{name}{_format_labels(labels)} {format_float(value)}"
        if self.include_timestamps and series.timestamp_ms is not None:
            line = f"{line} {series.timestamp_ms}"
        return line


def render_exposition(
    registry: Optional[Registry] = None,
    *,
    include_timestamps: Optional[bool] = None,
) -> Tuple[str, str]:
    """Scrape contract: ``(content_type, body)`` for ``registry``.

    Uses the default registry when none is given. Encoding errors propagate
    so the HTTP layer can answer with a 5xx.
    """
    if registry is None:
        registry = get_default_registry()
    encoder = ExpositionEncoder(include_timestamps=include_timestamps)
    body = encoder.encode(registry)
    logger.debug(f"Rendered exposition of {len(body)} bytes", extra={"bytes": len(body)})
    return encoder.content_type, body


__all__ = [
    "CONTENT_TYPE_LATEST",
    "ExpositionEncoder",
    "escape_label_value",
    "escape_help",
    "render_exposition",
]
