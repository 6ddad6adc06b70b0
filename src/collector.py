"""In-memory accumulation of counters, gauges and histogram samples."""
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional
import logging
import threading

from src.cardinality import normalize_labels
from src.series import DEFAULT_KEY_PREFIX, MetricKind, check_key_parts, encode_key

logger = logging.getLogger(__name__)

DEFAULT_HISTOGRAM_CAPACITY = 1000


@dataclass
class CollectorSnapshot:
    """Point-in-time copy of the collector taken by one drain."""
    counters: Dict[str, float] = field(default_factory=dict)
    gauges: Dict[str, float] = field(default_factory=dict)
    histograms: Dict[str, List[float]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.counters or self.gauges or any(self.histograms.values()))


class MetricsCollector:
    """
    Thread-safe accumulator keyed by encoded series key.

    Counters hold the delta since the last drain, gauges hold the last value
    set, histograms hold a FIFO-bounded buffer of samples. One lock covers
    all three maps so that a drain is atomic with respect to writers.
    """

    def __init__(
        self,
        histogram_capacity: int = DEFAULT_HISTOGRAM_CAPACITY,
        sort_labels: bool = False,
        key_prefix: str = DEFAULT_KEY_PREFIX
    ):
        if histogram_capacity < 1:
            raise ValueError("histogram_capacity must be at least 1")

        self.histogram_capacity = histogram_capacity
        self.sort_labels = sort_labels
        self.key_prefix = key_prefix

        self._counters: Dict[str, float] = {}
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _key(self, kind: MetricKind, name: str, labels: Optional[Dict[str, str]]) -> str:
        normalized = normalize_labels(labels, sort=self.sort_labels)
        check_key_parts(name, normalized)
        return encode_key(kind, name, normalized, self.key_prefix)

    def increment_counter(self, name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None):
        """Add a non-negative delta to a counter."""
        if value < 0:
            raise ValueError(f"Counter '{name}' cannot be incremented by a negative value ({value})")

        key = self._key(MetricKind.COUNTER, name, labels)
        with self._lock:
            current = self._counters.get(key, 0.0) + value
            self._counters[key] = current

        logger.debug(f"Incremented counter {key} by {value}. Current value: {current}")

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Set a gauge to the given level."""
        key = self._key(MetricKind.GAUGE, name, labels)
        with self._lock:
            self._gauges[key] = value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Append a sample; the oldest sample is evicted when the buffer is full."""
        key = self._key(MetricKind.HISTOGRAM, name, labels)
        with self._lock:
            buffer = self._histograms.get(key)
            if buffer is None:
                buffer = deque(maxlen=self.histogram_capacity)
                self._histograms[key] = buffer
            buffer.append(value)

    def drain(self) -> CollectorSnapshot:
        """
        Atomically take everything accumulated since the last drain.

        Counters are removed, histogram buffers are emptied, gauges are
        copied and kept.
        """
        with self._lock:
            snapshot = CollectorSnapshot(
                counters=dict(self._counters),
                gauges=dict(self._gauges),
                histograms={}
            )
            for key, buffer in self._histograms.items():
                snapshot.histograms[key] = list(buffer)
                buffer.clear()
            self._counters.clear()

        return snapshot

    def restore(self, snapshot: CollectorSnapshot):
        """
        Merge drained counters and histogram samples back in.

        Restored samples are placed before anything recorded since the
        drain, and the buffer capacity still applies. Gauges are left alone
        since they were never cleared.
        """
        with self._lock:
            for key, value in snapshot.counters.items():
                self._counters[key] = self._counters.get(key, 0.0) + value

            for key, samples in snapshot.histograms.items():
                if not samples:
                    continue
                buffer = self._histograms.get(key)
                newer = list(buffer) if buffer is not None else []
                self._histograms[key] = deque(samples + newer, maxlen=self.histogram_capacity)

        logger.info(
            f"Restored {len(snapshot.counters)} counters and "
            f"{sum(1 for s in snapshot.histograms.values() if s)} histograms after failed flush"
        )

    def counter_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current un-flushed counter delta (0 when absent)."""
        key = self._key(MetricKind.COUNTER, name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def gauge_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        key = self._key(MetricKind.GAUGE, name, labels)
        with self._lock:
            return self._gauges.get(key)

    def histogram_samples(self, name: str, labels: Optional[Dict[str, str]] = None) -> List[float]:
        key = self._key(MetricKind.HISTOGRAM, name, labels)
        with self._lock:
            buffer = self._histograms.get(key)
            return list(buffer) if buffer is not None else []

    def series_keys(self) -> List[str]:
        """All series keys currently tracked in memory."""
        with self._lock:
            return list(self._counters) + list(self._gauges) + list(self._histograms)
