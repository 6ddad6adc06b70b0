"""HTTP read path and runtime control using FastAPI."""
from dataclasses import asdict
from typing import Optional
from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
import logging
import time

from src.cardinality import count_series
from src.prom_exporter import CONTENT_TYPE, ExpositionRenderer, SelfMetrics
from src.store import StoreError

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI app exposing rendered snapshots and flush control."""

    def __init__(self, engine, renderer: ExpositionRenderer, self_metrics: Optional[SelfMetrics] = None):
        """
        Initialize control API.

        Args:
            engine: Reference to the flush engine
            renderer: Exposition renderer reading the snapshot store
            self_metrics: Pipeline self-metrics served on /selfmetrics
        """
        self.engine = engine
        self.renderer = renderer
        self.self_metrics = self_metrics
        self.app = FastAPI(title="Metrics Snapshot Exporter")

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        def healthz():
            """Health check endpoint."""
            store_ok = self.engine.store.ping()
            return {
                "status": "healthy" if store_ok else "degraded",
                "store": store_ok,
                "timestamp": time.time()
            }

        @self.app.get("/metrics")
        def metrics():
            """Prometheus exposition of the snapshots currently stored."""
            try:
                logger.info("Retrieving metrics for Prometheus...")
                body = self.renderer.render()
                logger.info(f"Generated Prometheus format: {len(body)} characters")
                return Response(content=body, media_type=CONTENT_TYPE)
            except Exception as e:
                logger.error(f"Failed to get metrics: {e}", exc_info=True)
                raise HTTPException(status_code=500, detail="Error retrieving metrics")

        @self.app.get("/metrics/json")
        def metrics_json():
            """Decoded snapshot records keyed by store key."""
            try:
                records = self.renderer.query()
                return {"count": len(records), "metrics": records}
            except StoreError as e:
                logger.error(f"Error getting metrics from store: {e}")
                raise HTTPException(status_code=503, detail=str(e))
            except Exception as e:
                logger.error(f"Error getting metrics: {e}", exc_info=True)
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get("/status")
        def status():
            """Flush engine status and live series counts."""
            last = self.engine.last_result
            return {
                "uptime_seconds": time.time() - self.engine.start_time,
                "running": self.engine.running,
                "flush_count": self.engine.flush_count,
                "failed_flush_count": self.engine.failed_flush_count,
                "last_flush": asdict(last) if last else None,
                "series": count_series(
                    self.engine.collector.series_keys(),
                    self.engine.collector.key_prefix
                ),
                "config": {
                    "interval_s": self.engine.config.interval_s,
                    "histogram_capacity": self.engine.collector.histogram_capacity,
                    "retain_on_failure": self.engine.config.retain_on_failure,
                    "ttl_s": self.engine.ttl_s,
                }
            }

        @self.app.post("/control/flush")
        def force_flush():
            """Run a flush cycle now."""
            result = self.engine.flush()
            if result.error:
                raise HTTPException(status_code=503, detail=result.error)
            return asdict(result)

        @self.app.post("/control/generate")
        def generate_test_metrics():
            """Record one sample counter, gauge and histogram value."""
            collector = self.engine.collector
            try:
                collector.increment_counter("test_requests_total", 1, {"method": "GET", "status": "200"})
                collector.set_gauge("test_active_connections", 42, {"service": "api"})
                collector.record_histogram("test_request_duration_seconds", 0.125, {"method": "GET"})
            except Exception as e:
                logger.error(f"Error generating test metrics: {e}", exc_info=True)
                raise HTTPException(status_code=500, detail=str(e))

            logger.info("Generated test metrics")
            return {
                "status": "test_metrics_generated",
                "series": ["test_requests_total", "test_active_connections", "test_request_duration_seconds"],
                "timestamp": time.time()
            }

        @self.app.get("/selfmetrics")
        def selfmetrics():
            """Pipeline self-metrics in Prometheus format."""
            if self.self_metrics is None:
                raise HTTPException(status_code=404, detail="Self metrics disabled")
            return Response(
                content=generate_latest(self.self_metrics.registry),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8080):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
