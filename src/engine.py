"""Periodic flush engine: drain the collector, reduce, persist snapshots."""
from dataclasses import dataclass
from typing import Dict, Optional
import logging
import threading
import time

from src.collector import CollectorSnapshot, MetricsCollector
from src.config import DEFAULT_TTL_S, FlushConfig
from src.prom_exporter import SelfMetrics
from src.reducer import reduce_samples
from src.series import MetricKind
from src.snapshot import (
    counter_record, encode_record, gauge_record, histogram_record, now_ms
)
from src.store import SnapshotStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class FlushResult:
    """Outcome of one flush cycle."""
    timestamp: int
    counters: int = 0
    gauges: int = 0
    histograms: int = 0
    written: bool = False
    skipped: bool = False
    error: Optional[str] = None

    @property
    def records(self) -> int:
        return self.counters + self.gauges + self.histograms


class FlushEngine:
    """
    Owns the flush cycle and the background thread that runs it.

    Counters and histogram buffers are cleared from the collector before the
    store write is confirmed. When the write fails those deltas are lost,
    unless ``retain_on_failure`` is set, in which case they are merged back
    and may be counted twice if the store partially applied the batch.
    """

    def __init__(
        self,
        collector: MetricsCollector,
        store: SnapshotStore,
        flush_config: Optional[FlushConfig] = None,
        ttl_s: int = DEFAULT_TTL_S,
        self_metrics: Optional[SelfMetrics] = None
    ):
        self.collector = collector
        self.store = store
        self.config = flush_config or FlushConfig()
        self.ttl_s = ttl_s
        self.self_metrics = self_metrics

        self.running = False
        self.flush_count = 0
        self.failed_flush_count = 0
        self.last_result: Optional[FlushResult] = None
        self.start_time = time.time()

        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _build_records(self, drained: CollectorSnapshot, timestamp: int, result: FlushResult) -> Dict[str, str]:
        records: Dict[str, str] = {}

        for key, value in drained.counters.items():
            records[key] = encode_record(counter_record(value, timestamp))
            result.counters += 1
            logger.debug(f"Queued counter {key} = {value}")

        for key, value in drained.gauges.items():
            records[key] = encode_record(gauge_record(value, timestamp))
            result.gauges += 1
            logger.debug(f"Queued gauge {key} = {value}")

        for key, samples in drained.histograms.items():
            summary = reduce_samples(samples)
            if summary is None:
                continue
            records[key] = encode_record(histogram_record(summary, timestamp))
            result.histograms += 1
            logger.debug(f"Queued histogram {key} with {summary.count} values")

        return records

    def flush(self, blocking: bool = False) -> FlushResult:
        """
        Run one flush cycle.

        If another flush is in progress the call returns immediately with a
        result marked ``skipped``, unless ``blocking`` is set, in which case
        it waits for the running flush to finish.
        """
        if not self._flush_lock.acquire(blocking=blocking):
            logger.warning("Flush already in progress, skipping overlapping tick")
            return FlushResult(timestamp=now_ms(), skipped=True)

        timestamp = now_ms()
        flush_start = time.time()
        try:
            drained = self.collector.drain()
            result = FlushResult(timestamp=timestamp)
            records = self._build_records(drained, timestamp, result)

            logger.info(
                f"Flushing metrics: {result.counters} counters, "
                f"{result.gauges} gauges, {result.histograms} histograms"
            )

            if not records:
                result.written = True
                self._finish(result, "empty", flush_start)
                return result

            try:
                batch = self.store.batch()
                for key, value in records.items():
                    batch.set(key, value, self.ttl_s)
                batch.execute()
            except StoreError as e:
                logger.error(f"Error flushing metrics to store: {e}")
                result.error = str(e)
                self.failed_flush_count += 1
                if self.config.retain_on_failure:
                    self.collector.restore(drained)
                elif self.self_metrics:
                    self.self_metrics.record_lost(result.counters + result.histograms)
                self._finish(result, "error", flush_start)
                return result

            result.written = True
            logger.info(f"Successfully wrote {len(records)} snapshot records")
            if self.self_metrics:
                self.self_metrics.record_written(MetricKind.COUNTER, result.counters)
                self.self_metrics.record_written(MetricKind.GAUGE, result.gauges)
                self.self_metrics.record_written(MetricKind.HISTOGRAM, result.histograms)
            self._finish(result, "success", flush_start)
            return result
        finally:
            self._flush_lock.release()

    def _finish(self, result: FlushResult, outcome: str, flush_start: float):
        self.flush_count += 1
        self.last_result = result
        if self.self_metrics:
            self.self_metrics.record_flush(outcome, time.time() - flush_start)
            self.self_metrics.set_last_flush_records(result.records)

    def run(self):
        """Flush every ``interval_s`` seconds until stopped."""
        self.running = True
        self.start_time = time.time()

        logger.info("Starting flush engine")

        interval = self.config.interval_s
        sleep_time = interval

        # First flush happens one full interval after start
        while not self._stop_event.wait(sleep_time):
            tick_start = time.time()

            try:
                self.flush()
            except Exception as e:
                logger.error(f"Error in flush: {e}", exc_info=True)

            # Sleep for remaining time in the interval
            tick_duration = time.time() - tick_start
            sleep_time = max(0, interval - tick_duration)

            if sleep_time == 0:
                logger.warning(
                    f"Flush took {tick_duration:.3f}s, longer than interval {interval}s"
                )

        self.running = False

    def start(self):
        """Run the engine on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Flush engine already started")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=run_engine_thread,
            args=(self,),
            name="flush-engine",
            daemon=True
        )
        self._thread.start()
        logger.info("Flush engine started")

    def stop(self, final_flush: bool = True, timeout: Optional[float] = None):
        """Stop the loop and run one last flush, waiting out any flush in progress."""
        logger.info("Stopping flush engine")
        self._stop_event.set()

        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

        if final_flush:
            try:
                result = self.flush(blocking=True)
                logger.info(f"Final flush wrote {result.records} records (written={result.written})")
            except Exception as e:
                logger.error(f"Final flush failed: {e}", exc_info=True)


def run_engine_thread(engine: FlushEngine):
    """Run engine in a separate thread."""
    try:
        engine.run()
    except Exception as e:
        logger.error(f"Engine thread error: {e}", exc_info=True)
        engine.running = False
