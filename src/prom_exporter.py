"""Prometheus text exposition of stored snapshots, plus pipeline self-metrics."""
from typing import Any, Dict, List, Optional, Tuple
import logging
import time

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from prometheus_client.utils import floatToGoString
from pydantic import ValidationError

from src.cardinality import validate_label_names, validate_metric_name
from src.series import DEFAULT_KEY_PREFIX, MetricKey, MetricKind, parse_key
from src.snapshot import HistogramSnapshot, decode_record, record_kind
from src.store import SnapshotStore, StoredValue

logger = logging.getLogger(__name__)

# The HTTP layer appends "; charset=utf-8"
CONTENT_TYPE = "text/plain; version=0.0.4"

HELP_SUFFIX = {
    MetricKind.COUNTER: "total",
    MetricKind.GAUGE: "gauge",
    MetricKind.HISTOGRAM: "histogram",
}


def as_text(value: StoredValue) -> str:
    """Decode a stored key or value. Raises UnicodeDecodeError on bad bytes."""
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def escape_label_value(value: str) -> str:
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r'\"')


def format_labels(labels: Dict[str, str]) -> str:
    """Render ``{k1="v1",k2="v2"}``, or an empty string without labels."""
    if not labels:
        return ""
    pairs = ",".join(f'{k}="{escape_label_value(v)}"' for k, v in labels.items())
    return "{" + pairs + "}"


class ExpositionRenderer:
    """Builds exposition text from the snapshots currently in the store."""

    def __init__(
        self,
        store: SnapshotStore,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        self_metrics: Optional["SelfMetrics"] = None
    ):
        self.store = store
        self.key_prefix = key_prefix
        self.self_metrics = self_metrics

    def _load(self) -> List[Tuple[str, MetricKey, Any]]:
        """Scan, parse and decode every snapshot key, skipping bad ones."""
        stored_keys = sorted(self.store.scan_keys(f"{self.key_prefix}:*"))
        values = self.store.get_many(stored_keys)

        loaded = []
        for stored_key, raw in zip(stored_keys, values):
            try:
                key = as_text(stored_key)
            except UnicodeDecodeError:
                logger.debug(f"Skipping metric key that is not UTF-8: {stored_key!r}")
                self._record_skip("key")
                continue

            parsed = parse_key(key, self.key_prefix)
            if (
                parsed is None
                or not validate_metric_name(parsed.name)
                or not validate_label_names(parsed.labels)
            ):
                logger.debug(f"Skipping unparseable metric key: {key}")
                self._record_skip("key")
                continue

            if raw is None:
                # Expired between scan and get
                continue

            try:
                record = decode_record(as_text(raw))
            except (UnicodeDecodeError, ValidationError) as e:
                logger.warning(f"Failed to parse metric data for key {key}: {e}")
                self._record_skip("record")
                continue

            if record_kind(record) != parsed.kind:
                logger.warning(
                    f"Record type '{record.type}' does not match key kind "
                    f"'{parsed.kind.value}' for key {key}"
                )
                self._record_skip("record")
                continue

            loaded.append((key, parsed, record))

        return loaded

    def _record_skip(self, reason: str):
        if self.self_metrics:
            self.self_metrics.record_render_skip(reason)

    def render(self) -> str:
        """Render all stored snapshots as Prometheus exposition text."""
        render_start = time.time()
        lines: List[str] = []

        for _, parsed, record in self._load():
            name = parsed.name
            labels = format_labels(parsed.labels)
            timestamp = record.timestamp

            lines.append(f"# HELP {name} {name} {HELP_SUFFIX[parsed.kind]}")
            lines.append(f"# TYPE {name} {parsed.kind.value}")

            if isinstance(record, HistogramSnapshot):
                lines.append(f"{name}_count{labels} {floatToGoString(record.count)} {timestamp}")
                lines.append(f"{name}_sum{labels} {floatToGoString(record.sum)} {timestamp}")
            else:
                lines.append(f"{name}{labels} {floatToGoString(record.value)} {timestamp}")

        if self.self_metrics:
            self.self_metrics.record_render_duration(time.time() - render_start)

        return "\n".join(lines) + "\n" if lines else ""

    def query(self) -> Dict[str, Dict[str, Any]]:
        """Decoded records keyed by store key."""
        return {key: record.model_dump() for key, _, record in self._load()}


class SelfMetrics:
    """Self-monitoring metrics for the flush and render pipeline."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.flushes_total = Counter(
            f"{prefix}flushes_total",
            "Total number of flush cycles by outcome",
            ["outcome"],
            registry=registry
        )

        self.records_written_total = Counter(
            f"{prefix}records_written_total",
            "Total number of snapshot records written to the store",
            ["kind"],
            registry=registry
        )

        self.lost_records_total = Counter(
            f"{prefix}lost_records_total",
            "Snapshot records dropped because the store write failed",
            registry=registry
        )

        self.flush_duration_seconds = Histogram(
            f"{prefix}flush_duration_seconds",
            "Duration of each flush cycle in seconds",
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0],
            registry=registry
        )

        self.render_duration_seconds = Histogram(
            f"{prefix}render_duration_seconds",
            "Duration of each exposition render in seconds",
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=registry
        )

        self.render_skipped_keys_total = Counter(
            f"{prefix}render_skipped_keys_total",
            "Keys skipped while rendering",
            ["reason"],
            registry=registry
        )

        self.last_flush_records = Gauge(
            f"{prefix}last_flush_records",
            "Number of records in the most recent flush batch",
            registry=registry
        )

    def record_flush(self, outcome: str, duration: float):
        self.flushes_total.labels(outcome=outcome).inc()
        self.flush_duration_seconds.observe(duration)

    def record_written(self, kind: MetricKind, count: int):
        if count:
            self.records_written_total.labels(kind=kind.value).inc(count)

    def record_lost(self, count: int):
        if count:
            self.lost_records_total.inc(count)

    def set_last_flush_records(self, count: int):
        self.last_flush_records.set(count)

    def record_render_duration(self, duration: float):
        self.render_duration_seconds.observe(duration)

    def record_render_skip(self, reason: str):
        self.render_skipped_keys_total.labels(reason=reason).inc()
