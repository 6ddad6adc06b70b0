"""Tests for the in-memory collector."""
import threading

import pytest

from src.collector import MetricsCollector
from src.series import MetricKind, encode_key


def test_counter_accumulates_and_resets_on_drain(collector):
    deltas = [1, 2.5, 0, 10]
    for d in deltas:
        collector.increment_counter("requests", d, {"route": "/a"})

    drained = collector.drain()
    key = encode_key(MetricKind.COUNTER, "requests", {"route": "/a"})

    assert drained.counters[key] == sum(deltas)
    assert collector.counter_value("requests", {"route": "/a"}) == 0
    assert collector.drain().counters == {}


def test_counter_default_increment_is_one(collector):
    collector.increment_counter("hits")
    collector.increment_counter("hits")
    assert collector.counter_value("hits") == 2


def test_negative_counter_delta_is_rejected(collector):
    with pytest.raises(ValueError):
        collector.increment_counter("hits", -1)
    assert collector.counter_value("hits") == 0


def test_gauge_is_last_write_wins_and_survives_drain(collector):
    collector.set_gauge("temperature", 5)
    collector.set_gauge("temperature", 9)

    key = encode_key(MetricKind.GAUGE, "temperature")
    assert collector.drain().gauges[key] == 9
    # Not reset: reported again on the next drain
    assert collector.drain().gauges[key] == 9
    assert collector.gauge_value("temperature") == 9


def test_histogram_buffer_is_cleared_on_drain(collector):
    for v in (3, 1, 2):
        collector.record_histogram("latency", v)

    key = encode_key(MetricKind.HISTOGRAM, "latency")
    assert collector.drain().histograms[key] == [3, 1, 2]
    assert collector.histogram_samples("latency") == []
    assert collector.drain().histograms[key] == []


def test_histogram_buffer_evicts_oldest_sample():
    collector = MetricsCollector(histogram_capacity=1000)
    for v in range(1000):
        collector.record_histogram("size", 1000 - v)

    collector.record_histogram("size", 5000)
    samples = collector.histogram_samples("size")

    assert len(samples) == 1000
    # First recorded (and largest before the new one) value 1000 is gone
    assert samples[0] == 999
    assert samples[-1] == 5000
    assert 1 in samples


def test_label_order_creates_separate_series(collector):
    collector.increment_counter("hits", 1, {"a": "1", "b": "2"})
    collector.increment_counter("hits", 1, {"b": "2", "a": "1"})

    assert len(collector.drain().counters) == 2


def test_sorted_labels_merge_series():
    collector = MetricsCollector(sort_labels=True)
    collector.increment_counter("hits", 1, {"a": "1", "b": "2"})
    collector.increment_counter("hits", 1, {"b": "2", "a": "1"})

    drained = collector.drain()
    assert drained.counters == {"metrics:counter:hits:a=1,b=2": 2}


def test_label_values_are_stringified(collector):
    collector.set_gauge("workers", 4, {"pool": 1})
    assert "metrics:gauge:workers:pool=1" in collector.drain().gauges


def test_restore_merges_drained_deltas(collector):
    collector.increment_counter("hits", 3)
    collector.record_histogram("latency", 1)
    drained = collector.drain()

    collector.increment_counter("hits", 2)
    collector.record_histogram("latency", 2)
    collector.restore(drained)

    assert collector.counter_value("hits") == 5
    assert collector.histogram_samples("latency") == [1, 2]


def test_restore_respects_capacity():
    collector = MetricsCollector(histogram_capacity=3)
    for v in (1, 2, 3):
        collector.record_histogram("latency", v)
    drained = collector.drain()

    collector.record_histogram("latency", 4)
    collector.record_histogram("latency", 5)
    collector.restore(drained)

    assert collector.histogram_samples("latency") == [3, 4, 5]


def test_invalid_capacity():
    with pytest.raises(ValueError):
        MetricsCollector(histogram_capacity=0)


def test_concurrent_writes_are_never_lost_or_duplicated():
    """Every increment lands in exactly one drain."""
    collector = MetricsCollector()
    writers = 8
    increments = 2000
    drained_total = []
    done = threading.Event()

    def write():
        for _ in range(increments):
            collector.increment_counter("hits", 1)

    def drain_loop():
        while not done.is_set():
            drained_total.append(sum(collector.drain().counters.values()))

    drainer = threading.Thread(target=drain_loop)
    drainer.start()
    threads = [threading.Thread(target=write) for _ in range(writers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    done.set()
    drainer.join()

    drained_total.append(sum(collector.drain().counters.values()))
    assert sum(drained_total) == writers * increments


def test_series_keys(collector):
    collector.increment_counter("hits")
    collector.set_gauge("depth", 1)
    collector.record_histogram("latency", 1)

    assert sorted(collector.series_keys()) == [
        "metrics:counter:hits",
        "metrics:gauge:depth",
        "metrics:histogram:latency",
    ]


def test_name_with_colon_is_rejected(collector):
    with pytest.raises(ValueError):
        collector.increment_counter("job:requests_total", 3, {"code": "200"})
    with pytest.raises(ValueError):
        collector.set_gauge("", 1)

    assert collector.series_keys() == []


def test_labels_that_break_the_key_are_rejected(collector):
    with pytest.raises(ValueError):
        collector.increment_counter("hits", 1, {"a,b": "1"})
    with pytest.raises(ValueError):
        collector.set_gauge("depth", 1, {"queue=x": "a"})
    with pytest.raises(ValueError):
        collector.record_histogram("latency", 1, {"zone:id": "a"})
    with pytest.raises(ValueError):
        collector.increment_counter("hits", 1, {"route": "/a,/b"})

    assert collector.series_keys() == []


def test_label_value_with_equals_is_accepted(collector):
    collector.increment_counter("hits", 1, {"query": "a=b"})
    assert collector.counter_value("hits", {"query": "a=b"}) == 1
