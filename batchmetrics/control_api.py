"""Control API for runtime management using FastAPI."""
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from prometheus_client import CONTENT_TYPE_LATEST
import logging
import time

from batchmetrics.batcher import AllLabelsBatcher

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for runtime management."""

    def __init__(self, engine):
        """
        Initialize control API.

        Args:
            engine: Reference to the collection engine
        """
        self.engine = engine
        self.app = FastAPI(title="batchmetrics Control API")

        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get current engine status."""
            instruments = {}
            for instrument in self.engine.instruments:
                batcher = instrument.batcher
                if isinstance(batcher, AllLabelsBatcher):
                    temporality = "delta" if batcher.delta else "cumulative"
                    active_series = batcher.active_series
                else:
                    temporality = "noop"
                    active_series = 0
                instruments[instrument.name] = {
                    "kind": instrument.descriptor.kind.value,
                    "value_type": instrument.descriptor.value_type.value,
                    "temporality": temporality,
                    "active_series": active_series,
                    "last_points": self.engine.last_points.get(instrument.name, 0),
                }

            return {
                "uptime_seconds": time.time() - self.engine.start_time,
                "tick_count": self.engine.tick_count,
                "running": self.engine.running,
                "instruments": instruments,
                "config": {
                    "collection_interval_s": self.engine.config.global_.collection_interval_s,
                },
            }

        @self.app.post("/control/collect")
        async def collect():
            """Force a collection cycle."""
            try:
                metrics = self.engine.tick()
            except Exception as e:
                logger.error(f"Error forcing collection: {e}")
                raise HTTPException(status_code=500, detail=str(e))

            return {
                "status": "collected",
                "tick_count": self.engine.tick_count,
                "points": {m.descriptor.name: len(m.points) for m in metrics},
            }

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

        @self.app.get("/metrics")
        async def self_metrics():
            """Self-monitoring metrics in the Prometheus text format."""
            return PlainTextResponse(
                self.engine.self_metrics.render(),
                media_type=CONTENT_TYPE_LATEST,
            )

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
