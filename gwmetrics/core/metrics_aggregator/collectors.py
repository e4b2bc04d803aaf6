"""Default runtime collectors.

Process, platform and garbage collector self-metrics. Values are read at
collect time, so nothing needs refreshing in the background. They are plain
collectors and get no special treatment from the registry.
"""

from __future__ import annotations

import gc
import logging
import os
import platform
import sys
import time
from typing import TYPE_CHECKING, List, Optional, Tuple

import psutil

from gwmetrics.core.metrics_aggregator.core import (
    Collector,
    MetricSample,
    MetricType,
    SeriesSnapshot,
)

if TYPE_CHECKING:
    from gwmetrics.core.metrics_aggregator.registry import Registry

logger = logging.getLogger(__name__)


def _single(name: str, metric_type: MetricType, description: str, value: float) -> MetricSample:
    return MetricSample(
        name=name,
        metric_type=metric_type,
        description=description,
        series=(SeriesSnapshot(value=float(value)),),
    )


class ProcessCollector(Collector):
    """Resource usage of one process, read through psutil."""

    def __init__(self, namespace: str = "", pid: Optional[int] = None):
        self._prefix = f"{namespace}_" if namespace else ""
        self._pid = pid if pid is not None else os.getpid()
        self._process: Optional[psutil.Process] = None

    def _name(self, suffix: str) -> str:
        return f"{self._prefix}process_{suffix}"

    def describe(self) -> Tuple[str, ...]:
        return tuple(
            self._name(s)
            for s in (
                "cpu_seconds_total",
                "resident_memory_bytes",
                "virtual_memory_bytes",
                "start_time_seconds",
                "uptime_seconds",
                "threads",
                "open_fds",
                "max_fds",
            )
        )

    def _get_process(self) -> psutil.Process:
        if self._process is None:
            self._process = psutil.Process(self._pid)
        return self._process

    def collect(self) -> List[MetricSample]:
        try:
            proc = self._get_process()
            with proc.oneshot():
                cpu = proc.cpu_times()
                mem = proc.memory_info()
                start = proc.create_time()
                threads = proc.num_threads()
                open_fds = proc.num_fds() if hasattr(proc, "num_fds") else None
        except psutil.Error as e:
            logger.warning(f"Process collector read failed: {e}", extra={"collector": "process"})
            return []

        samples = [
            _single(
                self._name("cpu_seconds_total"),
                MetricType.COUNTER,
                "Total user and system CPU time spent in seconds.",
                cpu.user + cpu.system,
            ),
            _single(
                self._name("resident_memory_bytes"),
                MetricType.GAUGE,
                "Resident memory size in bytes.",
                mem.rss,
            ),
            _single(
                self._name("virtual_memory_bytes"),
                MetricType.GAUGE,
                "Virtual memory size in bytes.",
                mem.vms,
            ),
            _single(
                self._name("start_time_seconds"),
                MetricType.GAUGE,
                "Start time of the process since unix epoch in seconds.",
                start,
            ),
            _single(
                self._name("uptime_seconds"),
                MetricType.GAUGE,
                "Seconds since the process started.",
                max(0.0, time.time() - start),
            ),
            _single(
                self._name("threads"),
                MetricType.GAUGE,
                "Number of OS threads in the process.",
                threads,
            ),
        ]
        if open_fds is not None:
            samples.append(
                _single(self._name("open_fds"), MetricType.GAUGE, "Number of open file descriptors.", open_fds)
            )
        max_fds = self._max_fds()
        if max_fds is not None:
            samples.append(
                _single(self._name("max_fds"), MetricType.GAUGE, "Maximum number of open file descriptors.", max_fds)
            )
        return samples

    def _max_fds(self) -> Optional[float]:
        rlimit = getattr(psutil, "RLIMIT_NOFILE", None)
        if rlimit is None:
            return None
        try:
            soft, _hard = self._get_process().rlimit(rlimit)
        except (psutil.Error, AttributeError, OSError):
            return None
        if soft < 0:
            # RLIM_INFINITY
            return float("inf")
        return float(soft)


class PlatformCollector(Collector):
    """Python interpreter information as a constant ``python_info`` gauge."""

    def describe(self) -> Tuple[str, ...]:
        return ("python_info",)

    def collect(self) -> List[MetricSample]:
        major, minor, patchlevel = platform.python_version_tuple()
        labels = (
            ("implementation", platform.python_implementation()),
            ("major", major),
            ("minor", minor),
            ("patchlevel", patchlevel),
            ("version", platform.python_version()),
        )
        return [
            MetricSample(
                name="python_info",
                metric_type=MetricType.GAUGE,
                description="Python platform information",
                label_names=tuple(k for k, _ in labels),
                series=(SeriesSnapshot(labels=labels, value=1.0),),
            )
        ]


class GCCollector(Collector):
    """Per-generation statistics from the ``gc`` module."""

    _FIELDS = (
        ("python_gc_objects_collected_total", "collected", "Objects collected during gc"),
        ("python_gc_objects_uncollectable_total", "uncollectable", "Uncollectable objects found during GC"),
        ("python_gc_collections_total", "collections", "Number of times this generation was collected"),
    )

    def describe(self) -> Tuple[str, ...]:
        return tuple(name for name, _, _ in self._FIELDS)

    def collect(self) -> List[MetricSample]:
        if not hasattr(gc, "get_stats"):
            return []
        stats = gc.get_stats()
        samples = []
        for name, key, description in self._FIELDS:
            series = tuple(
                SeriesSnapshot(labels=(("generation", str(gen)),), value=float(stat.get(key, 0)))
                for gen, stat in enumerate(stats)
            )
            samples.append(
                MetricSample(
                    name=name,
                    metric_type=MetricType.COUNTER,
                    description=description,
                    label_names=("generation",),
                    series=series,
                )
            )
        return samples


def register_default_collectors(registry: "Registry", namespace: str = "") -> List[Collector]:
    """Register process, platform and gc collectors into ``registry``."""
    collectors: List[Collector] = [ProcessCollector(namespace=namespace), PlatformCollector()]
    if sys.implementation.name == "cpython":
        collectors.append(GCCollector())
    return [registry.register(c) for c in collectors]


__all__ = [
    "ProcessCollector",
    "PlatformCollector",
    "GCCollector",
    "register_default_collectors",
]
