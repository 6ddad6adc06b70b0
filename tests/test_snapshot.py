"""Tests for snapshot record encoding."""
import json

import pytest
from pydantic import ValidationError

from src.reducer import reduce_samples
from src.series import MetricKind
from src.snapshot import (
    GaugeSnapshot, HistogramSnapshot, counter_record, decode_record,
    encode_record, histogram_record, record_kind
)


def test_counter_record_fields():
    raw = json.loads(encode_record(counter_record(3, 42)))
    assert raw == {"type": "counter", "value": 3.0, "timestamp": 42}


def test_histogram_record_fields():
    raw = json.loads(encode_record(histogram_record(reduce_samples([2, 4]), 42)))
    assert set(raw) == {"type", "timestamp", "count", "sum", "min", "max", "avg", "p50", "p95", "p99"}
    assert raw["avg"] == 3


def test_decode_dispatches_on_type():
    record = decode_record('{"type": "gauge", "value": 1.5, "timestamp": 7}')
    assert isinstance(record, GaugeSnapshot)
    assert record_kind(record) is MetricKind.GAUGE

    record = decode_record(encode_record(histogram_record(reduce_samples([1]), 7)))
    assert isinstance(record, HistogramSnapshot)


@pytest.mark.parametrize("raw", [
    "not json",
    '{"type": "summary", "value": 1, "timestamp": 1}',
    '{"type": "counter", "timestamp": 1}',
    '{"value": 1, "timestamp": 1}',
])
def test_decode_rejects_malformed(raw):
    with pytest.raises(ValidationError):
        decode_record(raw)
