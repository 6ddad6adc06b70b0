"""Snapshot records persisted to the store, one per series key."""
from typing import Annotated, Literal, Union
import time

from pydantic import BaseModel, Field, TypeAdapter

from src.reducer import HistogramSummary
from src.series import MetricKind


class CounterSnapshot(BaseModel):
    """Counter delta accumulated during one flush interval."""
    type: Literal["counter"] = "counter"
    value: float
    timestamp: int


class GaugeSnapshot(BaseModel):
    """Last gauge level at flush time."""
    type: Literal["gauge"] = "gauge"
    value: float
    timestamp: int


class HistogramSnapshot(BaseModel):
    """Histogram summary for one flush interval."""
    type: Literal["histogram"] = "histogram"
    count: int
    sum: float
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float
    timestamp: int


SnapshotRecord = Annotated[
    Union[CounterSnapshot, GaugeSnapshot, HistogramSnapshot],
    Field(discriminator="type")
]

_record_adapter = TypeAdapter(SnapshotRecord)


def now_ms() -> int:
    """Current unix time in milliseconds."""
    return int(time.time() * 1000)


def record_kind(record: Union[CounterSnapshot, GaugeSnapshot, HistogramSnapshot]) -> MetricKind:
    return MetricKind(record.type)


def counter_record(value: float, timestamp: int) -> CounterSnapshot:
    return CounterSnapshot(value=value, timestamp=timestamp)


def gauge_record(value: float, timestamp: int) -> GaugeSnapshot:
    return GaugeSnapshot(value=value, timestamp=timestamp)


def histogram_record(summary: HistogramSummary, timestamp: int) -> HistogramSnapshot:
    return HistogramSnapshot(timestamp=timestamp, **summary.to_dict())


def encode_record(record: Union[CounterSnapshot, GaugeSnapshot, HistogramSnapshot]) -> str:
    """Serialize a record to the JSON stored under its key."""
    return record.model_dump_json()


def decode_record(raw: Union[str, bytes]) -> Union[CounterSnapshot, GaugeSnapshot, HistogramSnapshot]:
    """
    Parse a stored JSON value.

    Raises:
        pydantic.ValidationError: malformed JSON, unknown ``type`` or
            missing fields
    """
    return _record_adapter.validate_json(raw)
