"""Tests for metrics_aggregator core module."""

import math
import time

import pytest

from gwmetrics.core.errors import (
    CardinalityLimitError,
    InvalidDeltaError,
    InvalidNameError,
    LabelMismatchError,
)
from gwmetrics.core.metrics_aggregator.core import (
    DEFAULT_BUCKETS,
    Counter,
    Gauge,
    Histogram,
    Metric,
    MetricType,
    Timer,
    exponential_buckets,
    format_float,
    linear_buckets,
)
from gwmetrics.core.metrics_aggregator.labels import LabelSet


class TestLabelSet:
    """Tests for LabelSet class."""

    def test_hash_ignores_order(self):
        labels1 = LabelSet({"a": "1", "b": "2"})
        labels2 = LabelSet({"b": "2", "a": "1"})

        assert hash(labels1) == hash(labels2)
        d = {labels1: "value"}
        assert d[labels2] == "value"

    def test_values_are_stringified(self):
        labels = LabelSet(code=200)

        assert labels["code"] == "200"
        assert labels == {"code": "200"}

    def test_eq_with_different_labels(self):
        assert LabelSet({"a": "1"}) != LabelSet({"a": "2"})
        assert LabelSet({"a": "1"}) != "string"

    def test_key_for_returns_declared_order(self):
        labels = LabelSet({"status": "ok", "method": "GET"})

        assert labels.key_for(("method", "status")) == ("GET", "ok")

    def test_key_for_missing_name(self):
        with pytest.raises(LabelMismatchError):
            LabelSet({"method": "GET"}).key_for(("method", "status"))

    def test_key_for_extra_name(self):
        with pytest.raises(LabelMismatchError):
            LabelSet({"method": "GET", "status": "ok"}).key_for(("method",))


class TestNames:
    @pytest.mark.parametrize("name", ["", "1abc", "with-dash", "sp ace"])
    def test_invalid_metric_names(self, name):
        with pytest.raises(InvalidNameError):
            Counter(name, "help")

    def test_colon_allowed(self):
        assert Counter("job:requests:rate5m", "help").name == "job:requests:rate5m"

    def test_reserved_label_prefix(self):
        with pytest.raises(InvalidNameError):
            Counter("c_total", "help", ["__internal"])

    def test_duplicate_label_names(self):
        with pytest.raises(InvalidNameError):
            Counter("c_total", "help", ["a", "a"])

    def test_const_labels_overlap(self):
        with pytest.raises(InvalidNameError):
            Counter("c_total", "help", ["env"], const_labels={"env": "prod"})

    def test_invalid_name_is_value_error(self):
        with pytest.raises(ValueError):
            Gauge("bad name")


class TestMetricAbstract:
    def test_metric_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            Metric("test")


class TestCounter:
    """Tests for Counter class."""

    def test_unlabeled_inc(self):
        counter = Counter("requests_total", "Total requests")
        counter.inc()
        counter.inc(amount=2.5)

        assert counter.get() == 3.5
        assert counter.metric_type == MetricType.COUNTER

    def test_labeled_inc_accumulates(self):
        counter = Counter("requests_total", "Total requests", ["service"])
        counter.inc({"service": "a"}, 1)
        counter.inc({"service": "a"}, 5)
        counter.inc({"service": "b"}, 1)

        assert counter.get({"service": "a"}) == 6
        assert counter.get({"service": "b"}) == 1
        assert len(counter) == 2

    def test_negative_delta_rejected(self):
        counter = Counter("requests_total", "Total requests", ["service"])
        counter.inc({"service": "a"}, 1)

        with pytest.raises(InvalidDeltaError):
            counter.inc({"service": "a"}, -1)

        assert counter.get({"service": "a"}) == 1

    def test_nan_delta_rejected_without_creating_series(self):
        counter = Counter("requests_total", "Total requests", ["service"])

        with pytest.raises(InvalidDeltaError):
            counter.inc({"service": "a"}, float("nan"))

        assert len(counter) == 0

    def test_child_negative_delta_creates_no_series(self):
        counter = Counter("requests_total", "Total requests", ["service"])
        child = counter.labels(service="a")

        with pytest.raises(InvalidDeltaError):
            child.inc(-1)

        assert len(counter) == 0

    def test_label_mismatch_creates_no_series(self):
        counter = Counter("requests_total", "Total requests", ["service"])

        with pytest.raises(LabelMismatchError):
            counter.inc({"svc": "a"})
        with pytest.raises(LabelMismatchError):
            counter.inc({"service": "a", "extra": "x"})

        assert len(counter) == 0
        assert counter.collect()[0].series == ()

    def test_non_mapping_labels_rejected(self):
        counter = Counter("requests_total", "Total requests", ["service"])

        with pytest.raises(LabelMismatchError):
            counter.inc(["a"])

    def test_label_named_labels_keyword(self):
        counter = Counter("c_total", "help", ["labels"])
        counter.labels(labels="x").inc()

        assert counter.get({"labels": "x"}) == 1

    def test_mapping_and_keywords_combined(self):
        counter = Counter("c_total", "help", ["a", "b"])
        counter.labels({"a": "1"}, b="2").inc(3)

        assert counter.get({"a": "1", "b": "2"}) == 3

    def test_reset_keeps_series(self):
        counter = Counter("c_total", "help", ["k"])
        counter.inc({"k": "x"}, 4)
        counter.reset()

        assert counter.get({"k": "x"}) == 0
        assert len(counter) == 1

    def test_remove_and_clear(self):
        counter = Counter("c_total", "help", ["k"])
        counter.inc({"k": "x"})
        counter.inc({"k": "y"})

        assert counter.remove({"k": "x"}) is True
        assert counter.remove({"k": "x"}) is False
        assert len(counter) == 1

        counter.clear()
        assert len(counter) == 0

    def test_collect_orders_series_by_label_values(self):
        counter = Counter("c_total", "help", ["k"])
        for value in ("b", "c", "a"):
            counter.inc({"k": value})

        series = counter.collect()[0].series
        assert [s.label_dict["k"] for s in series] == ["a", "b", "c"]

    def test_const_labels_appended(self):
        counter = Counter("c_total", "help", ["k"], const_labels={"region": "eu", "env": "prod"})
        counter.inc({"k": "x"})

        (series,) = counter.collect()[0].series
        assert series.labels == (("k", "x"), ("env", "prod"), ("region", "eu"))

    def test_max_series_cap(self):
        counter = Counter("c_total", "help", ["k"], max_series=2)
        counter.inc({"k": "a"})
        counter.inc({"k": "b"})

        with pytest.raises(CardinalityLimitError):
            counter.inc({"k": "c"})

        # existing series still writable
        counter.inc({"k": "a"})
        assert counter.get({"k": "a"}) == 2


class TestGauge:
    """Tests for Gauge class."""

    def test_set_inc_dec(self):
        gauge = Gauge("temperature", "Temperature", ["room"])
        gauge.set({"room": "lab"}, 20)
        gauge.inc({"room": "lab"}, 2.5)
        gauge.dec({"room": "lab"}, 0.5)

        assert gauge.get({"room": "lab"}) == 22.0

    def test_may_go_negative(self):
        gauge = Gauge("balance")
        gauge.dec(amount=3)

        assert gauge.get() == -3

    def test_set_to_current_time(self):
        gauge = Gauge("last_success_seconds")
        before = time.time()
        gauge.set_to_current_time()

        assert before <= gauge.get() <= time.time()

    def test_child_handle(self):
        gauge = Gauge("queue_depth", "Depth", ["queue"])
        child = gauge.labels(queue="jobs")
        child.set(5)
        child.dec()

        assert gauge.get({"queue": "jobs"}) == 4
        assert child.label_values == ("jobs",)


class TestHistogram:
    """Tests for Histogram class."""

    def test_default_buckets(self):
        histogram = Histogram("latency_seconds", "Latency")

        assert histogram.buckets == DEFAULT_BUCKETS + (math.inf,)

    def test_observe_bucket_sum_count(self):
        histogram = Histogram("latency_seconds", "Latency", buckets=[0.1, 1.0])
        for value in (0.05, 0.1, 0.5, 2.0):
            histogram.observe(value=value)

        (series,) = histogram.collect()[0].series
        assert series.buckets == ((0.1, 2.0), (1.0, 3.0), (math.inf, 4.0))
        assert series.count == 4
        assert series.sum == pytest.approx(2.65)
        # +Inf bucket equals count
        assert series.buckets[-1][1] == series.count

    def test_buckets_monotone(self):
        histogram = Histogram("h", "help", ["k"], buckets=linear_buckets(1, 1, 5))
        for value in (0.5, 3, 3, 4.5, 100):
            histogram.observe({"k": "x"}, value)

        counts = [c for _, c in histogram.collect()[0].series[0].buckets]
        assert counts == sorted(counts)

    def test_trailing_inf_accepted(self):
        histogram = Histogram("h", "help", buckets=[1, 2, float("inf")])

        assert histogram.buckets == (1.0, 2.0, math.inf)

    @pytest.mark.parametrize("buckets", [[2, 1], [1, 1], [float("nan")]])
    def test_invalid_buckets(self, buckets):
        with pytest.raises(InvalidNameError):
            Histogram("h", "help", buckets=buckets)

    def test_le_label_reserved(self):
        with pytest.raises(InvalidNameError):
            Histogram("h", "help", ["le"])

    def test_describe_includes_suffixes(self):
        assert Histogram("h").describe() == ("h", "h_bucket", "h_sum", "h_count")

    def test_time_context_manager(self):
        histogram = Histogram("job_seconds", "Job duration", ["job"])
        with histogram.time({"job": "backup"}):
            pass

        (series,) = histogram.collect()[0].series
        assert series.count == 1
        assert series.sum >= 0

    def test_reset_zeroes_buckets(self):
        histogram = Histogram("h", "help", buckets=[1])
        histogram.observe(value=0.5)
        histogram.reset()

        (series,) = histogram.collect()[0].series
        assert series.count == 0
        assert series.buckets == ((1.0, 0.0), (math.inf, 0.0))


class TestBucketHelpers:
    def test_linear(self):
        assert linear_buckets(0.5, 0.5, 3) == (0.5, 1.0, 1.5)

    def test_exponential(self):
        assert exponential_buckets(1, 2, 4) == (1, 2, 4, 8)

    def test_invalid(self):
        with pytest.raises(InvalidNameError):
            linear_buckets(0, 1, 0)
        with pytest.raises(InvalidNameError):
            exponential_buckets(1, 1, 3)


class TestTimer:
    def test_timer_observes_elapsed(self):
        histogram = Histogram("t_seconds", "help")
        with Timer(histogram.labels()) as timer:
            assert isinstance(timer, Timer)

        assert histogram.collect()[0].series[0].count == 1


class TestFormatFloat:
    @pytest.mark.parametrize(
        "value,expected",
        [(6.0, "6"), (0.25, "0.25"), (math.inf, "+Inf"), (-math.inf, "-Inf"), (math.nan, "NaN")],
    )
    def test_format(self, value, expected):
        assert format_float(value) == expected
