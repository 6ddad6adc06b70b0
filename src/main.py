"""Main entry point for the metrics snapshot exporter."""
import argparse
import logging
import sys
import signal

from src.collector import MetricsCollector
from src.config import Config, StoreConfig, load_config
from src.control_api import ControlAPI
from src.engine import FlushEngine
from src.prom_exporter import ExpositionRenderer, SelfMetrics
from src.store import InMemorySnapshotStore, RedisSnapshotStore, SnapshotStore


def setup_logging(log_level: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Reduce noise from some libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def create_store(config: StoreConfig) -> SnapshotStore:
    """Build the snapshot store selected by configuration."""
    if config.backend == "memory":
        return InMemorySnapshotStore()

    return RedisSnapshotStore.from_url(
        config.url,
        socket_timeout_s=config.socket_timeout_s,
        socket_connect_timeout_s=config.socket_connect_timeout_s,
        scan_count=config.scan_count
    )


class ExporterService:
    """Composition root: owns the collector, flush engine and read path."""

    def __init__(self, config: Config, store: SnapshotStore = None):
        self.config = config
        self.store = store if store is not None else create_store(config.store)
        self.self_metrics = SelfMetrics(prefix=config.global_.self_metrics_prefix)

        self.collector = MetricsCollector(
            histogram_capacity=config.flush.histogram_capacity,
            sort_labels=config.collector.sort_labels,
            key_prefix=config.store.key_prefix
        )
        self.engine = FlushEngine(
            self.collector,
            self.store,
            config.flush,
            ttl_s=config.store.ttl_s,
            self_metrics=self.self_metrics
        )
        self.renderer = ExpositionRenderer(
            self.store,
            key_prefix=config.store.key_prefix,
            self_metrics=self.self_metrics
        )
        self.control_api = ControlAPI(self.engine, self.renderer, self.self_metrics)
        self._stopped = False

    def start(self):
        self.engine.start()

    def stop(self):
        """Stop flushing, do the final flush and release the store. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self.engine.stop(final_flush=True)
        self.store.close()


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Metrics Snapshot Exporter - periodic metric snapshots with Prometheus read path"
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Path to configuration YAML file (defaults are used when omitted)"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("Metrics Snapshot Exporter")
    logger.info("=" * 60)
    logger.info(f"Configuration loaded from: {args.config or '<defaults>'}")
    logger.info(f"Store backend: {config.store.backend}")
    logger.info(f"Flush interval: {config.flush.interval_s}s, snapshot TTL: {config.store.ttl_s}s")

    try:
        service = ExporterService(config)
    except Exception as e:
        logger.error(f"Failed to initialize exporter: {e}", exc_info=True)
        sys.exit(1)

    service.start()

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        service.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run API (blocking)
    logger.info(f"Starting API on port {config.global_.api_port}")
    try:
        service.control_api.run(
            host=config.global_.api_host,
            port=config.global_.api_port
        )
    except Exception as e:
        logger.error(f"API error: {e}", exc_info=True)
        service.stop()
        sys.exit(1)

    # uvicorn handles SIGINT/SIGTERM itself and returns here
    service.stop()


if __name__ == "__main__":
    main()
