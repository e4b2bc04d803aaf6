"""Push gateway client.

Encodes a registry and delivers it to a push gateway under a job/grouping
key. ``replace`` pushes use PUT (the gateway drops everything previously
pushed under the key), ``add`` pushes use POST (only the pushed families
are overwritten). Credentials travel as opaque headers supplied by the
caller. The client never retries; wrap it if you need that.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
import urllib.parse
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import httpx

from gwmetrics.core.config import Settings, get_settings
from gwmetrics.core.errors import (
    DuplicateNameError,
    InvalidNameError,
    LabelMismatchError,
    PushFailedError,
)
from gwmetrics.core.metrics_aggregator.core import Collector, MetricSample
from gwmetrics.core.metrics_aggregator.exposition import CONTENT_TYPE_LATEST, ExpositionEncoder
from gwmetrics.core.metrics_aggregator.labels import validate_label_name
from gwmetrics.core.metrics_aggregator.registry import Registry

logger = logging.getLogger(__name__)

Source = Union[Registry, Iterable[MetricSample]]


class PushMode(str, Enum):
    REPLACE = "replace"
    ADD = "add"

    @property
    def method(self) -> str:
        return "PUT" if self is PushMode.REPLACE else "POST"


@dataclass(frozen=True)
class PushResult:
    """Outcome of a successful gateway request."""
    status_code: int
    body: str
    method: str
    url: str


@dataclass(frozen=True)
class PushGatewayConfig:
    base_url: str = "http://localhost:9091"
    timeout_seconds: float = 10.0
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PushGatewayConfig":
        settings = settings or get_settings()
        return cls(
            base_url=settings.PUSHGATEWAY_URL.rstrip("/"),
            timeout_seconds=settings.PUSHGATEWAY_TIMEOUT_SECONDS,
            headers=dict(settings.PUSHGATEWAY_HEADERS),
        )


def _path_segments(name: str, value: str) -> List[str]:
    if value == "":
        return [f"{name}@base64", "="]
    if "/" in value:
        encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")
        return [f"{name}@base64", encoded]
    return [name, urllib.parse.quote(value, safe="")]


def grouping_path(job: str, grouping: Optional[Mapping[str, str]] = None) -> str:
    """``/metrics/job/<job>[/<label>/<value>...]`` with labels sorted by name."""
    if not job:
        raise InvalidNameError("Push job name must not be empty")
    segments = ["metrics", *_path_segments("job", job)]
    for name in sorted(grouping or {}):
        validate_label_name(name)
        if name == "job":
            raise InvalidNameError("'job' cannot be used as a grouping label")
        segments.extend(_path_segments(name, str(grouping[name])))  # type: ignore[index]
    return "/" + "/".join(segments)


def _check_grouping_conflicts(samples: Iterable[MetricSample], grouping: Mapping[str, str]) -> None:
    reserved = {"job", *grouping}
    for sample in samples:
        for series in sample.series:
            clash = reserved.intersection(name for name, _ in series.labels)
            if clash:
                raise LabelMismatchError(
                    f"Pushed metric {sample.name!r} already contains grouping label(s) {sorted(clash)}"
                )


class PushGatewayClient:
    """HTTP client for a Prometheus push gateway."""

    def __init__(
        self,
        config: Optional[PushGatewayConfig] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        async_transport: Optional[httpx.AsyncBaseTransport] = None,
        encoder: Optional[ExpositionEncoder] = None,
    ) -> None:
        self.config = config or PushGatewayConfig.from_settings()
        self._transport = transport
        self._async_transport = async_transport
        self._encoder = encoder or ExpositionEncoder(include_timestamps=False)

    def build_url(self, job: str, grouping: Optional[Mapping[str, str]] = None) -> str:
        return f"{self.config.base_url.rstrip('/')}{grouping_path(job, grouping)}"

    def _headers(self, extra: Optional[Mapping[str, str]]) -> Dict[str, str]:
        headers = {"Content-Type": CONTENT_TYPE_LATEST}
        headers.update(self.config.headers)
        if extra:
            headers.update(extra)
        return headers

    def _deadline(self, timeout: Optional[float]) -> float:
        return self.config.timeout_seconds if timeout is None else timeout

    def _prepare(
        self,
        source: Source,
        job: str,
        grouping: Optional[Mapping[str, str]],
    ) -> Tuple[str, bytes]:
        grouping = dict(grouping or {})
        url = self.build_url(job, grouping)
        samples = list(source.collect() if isinstance(source, Registry) else source)
        _check_grouping_conflicts(samples, grouping)
        body = self._encoder.encode_samples(samples)
        return url, body.encode("utf-8")

    def _result(self, status_code: int, text: str, method: str, url: str, job: str, started: float) -> PushResult:
        latency_ms = (time.perf_counter() - started) * 1000
        extra = {
            "job": job,
            "method": method,
            "gateway_url": url,
            "status_code": status_code,
            "latency_ms": latency_ms,
        }
        if not 200 <= status_code < 300:
            logger.warning(f"Push gateway returned {status_code} for {method} {url}", extra=extra)
            raise PushFailedError(
                f"Push gateway returned status {status_code}",
                status_code=status_code,
                body=text,
                url=url,
            )
        logger.info(f"Pushed metrics with {method} {url}", extra=extra)
        return PushResult(status_code=status_code, body=text, method=method, url=url)

    def _failure(self, method: str, url: str, job: str, timed_out: bool, detail: str = "") -> PushFailedError:
        reason = "timed out" if timed_out else f"failed: {detail}"
        logger.warning(f"Push {method} {url} {reason}", extra={"job": job, "method": method, "gateway_url": url})
        return PushFailedError(f"Push request {reason}", timed_out=timed_out, url=url)

    def _send(
        self,
        method: str,
        url: str,
        job: str,
        body: Optional[bytes],
        headers: Optional[Mapping[str, str]],
        timeout: Optional[float],
    ) -> PushResult:
        started = time.perf_counter()
        limit = self._deadline(timeout)
        # httpx timeouts bound each phase; the deadline bounds the whole exchange
        deadline = time.monotonic() + limit
        with httpx.Client(timeout=httpx.Timeout(limit), transport=self._transport) as client:
            try:
                with client.stream(method, url, content=body, headers=self._headers(headers)) as response:
                    chunks: List[bytes] = []
                    if time.monotonic() > deadline:
                        raise self._failure(method, url, job, timed_out=True)
                    for chunk in response.iter_bytes():
                        chunks.append(chunk)
                        if time.monotonic() > deadline:
                            raise self._failure(method, url, job, timed_out=True)
                    status_code = response.status_code
                    text = b"".join(chunks).decode(response.charset_encoding or "utf-8", errors="replace")
            except httpx.TimeoutException as e:
                raise self._failure(method, url, job, timed_out=True) from e
            except httpx.RequestError as e:
                raise self._failure(method, url, job, timed_out=False, detail=str(e)) from e
        return self._result(status_code, text, method, url, job, started)

    async def _asend(
        self,
        method: str,
        url: str,
        job: str,
        body: Optional[bytes],
        headers: Optional[Mapping[str, str]],
        timeout: Optional[float],
    ) -> PushResult:
        started = time.perf_counter()
        limit = self._deadline(timeout)
        async with httpx.AsyncClient(timeout=httpx.Timeout(limit), transport=self._async_transport) as client:
            try:
                response = await asyncio.wait_for(
                    client.request(method, url, content=body, headers=self._headers(headers)),
                    timeout=limit,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException) as e:
                raise self._failure(method, url, job, timed_out=True) from e
            except httpx.RequestError as e:
                raise self._failure(method, url, job, timed_out=False, detail=str(e)) from e
        return self._result(response.status_code, response.text, method, url, job, started)

    def push(
        self,
        registry: Source,
        job: str,
        grouping: Optional[Mapping[str, str]] = None,
        mode: PushMode = PushMode.REPLACE,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> PushResult:
        """Encode ``registry`` and send it in one request.

        Args:
            registry: Registry (or samples) to push
            job: Job name of the grouping key
            grouping: Additional grouping labels
            mode: ``REPLACE`` (PUT) or ``ADD`` (POST)
            headers: Extra transport headers, passed through untouched
            timeout: Deadline in seconds, defaults to the configured one

        Returns:
            PushResult with the gateway's status and body

        Raises:
            PushFailedError: transport error, timeout or non-2xx response
        """
        url, body = self._prepare(registry, job, grouping)
        return self._send(PushMode(mode).method, url, job, body, headers, timeout)

    async def apush(
        self,
        registry: Source,
        job: str,
        grouping: Optional[Mapping[str, str]] = None,
        mode: PushMode = PushMode.REPLACE,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> PushResult:
        """Async variant of :meth:`push`."""
        url, body = self._prepare(registry, job, grouping)
        return await self._asend(PushMode(mode).method, url, job, body, headers, timeout)

    def delete(
        self,
        job: str,
        grouping: Optional[Mapping[str, str]] = None,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> PushResult:
        """Delete everything pushed under a grouping key."""
        return self._send("DELETE", self.build_url(job, grouping), job, None, headers, timeout)

    async def adelete(
        self,
        job: str,
        grouping: Optional[Mapping[str, str]] = None,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> PushResult:
        return await self._asend("DELETE", self.build_url(job, grouping), job, None, headers, timeout)


class Pusher:
    """Builder that pushes several registries and collectors under one key.

    Example:
        Pusher(client, "db_backup").gatherer(registry).collector(success_time).add()
    """

    def __init__(self, client: PushGatewayClient, job: str):
        self._client = client
        self._job = job
        self._gatherers: List[Registry] = []
        self._collectors: List[Collector] = []
        self._grouping: Dict[str, str] = {}

    def gatherer(self, registry: Registry) -> "Pusher":
        self._gatherers.append(registry)
        return self

    def collector(self, collector: Collector) -> "Pusher":
        self._collectors.append(collector)
        return self

    def grouping(self, name: str, value: str) -> "Pusher":
        self._grouping[name] = value
        return self

    def _samples(self) -> List[MetricSample]:
        samples: List[MetricSample] = []
        seen = set()
        sources: List[Iterable[MetricSample]] = [r.collect() for r in self._gatherers]
        sources.extend(c.collect() for c in self._collectors)
        for source in sources:
            for sample in source:
                if sample.name in seen:
                    raise DuplicateNameError(sample.name, f"Metric {sample.name!r} is gathered more than once")
                seen.add(sample.name)
                samples.append(sample)
        return samples

    def push(self, *, timeout: Optional[float] = None) -> PushResult:
        return self._client.push(self._samples(), self._job, self._grouping, PushMode.REPLACE, timeout=timeout)

    def add(self, *, timeout: Optional[float] = None) -> PushResult:
        return self._client.push(self._samples(), self._job, self._grouping, PushMode.ADD, timeout=timeout)

    def delete(self, *, timeout: Optional[float] = None) -> PushResult:
        return self._client.delete(self._job, self._grouping, timeout=timeout)


__all__ = [
    "PushMode",
    "PushResult",
    "PushGatewayConfig",
    "PushGatewayClient",
    "Pusher",
    "grouping_path",
]
