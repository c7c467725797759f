"""Self-monitoring metrics for the collection engine."""
from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, generate_latest
)


class SelfMetrics:
    """Self-monitoring metrics exposed in the Prometheus text format."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            # Custom registry keeps default Python/process metrics out
            registry = CollectorRegistry()
        self.registry = registry

        self.collections_total = Counter(
            f"{prefix}collections_total",
            "Total number of collection cycles",
            registry=registry
        )

        self.points_exported_total = Counter(
            f"{prefix}points_exported_total",
            "Total number of points handed to exporters",
            ["instrument"],
            registry=registry
        )

        self.export_errors_total = Counter(
            f"{prefix}export_errors_total",
            "Total number of collection and export errors",
            ["exporter", "instrument"],
            registry=registry
        )

        self.collection_duration_seconds = Histogram(
            f"{prefix}collection_duration_seconds",
            "Duration of each collection cycle in seconds",
            buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
            registry=registry
        )

        self.active_series = Gauge(
            f"{prefix}active_series",
            "Number of points in the last collection of each instrument",
            ["instrument"],
            registry=registry
        )

    def record_collection(self, duration: float):
        """Record one completed collection cycle."""
        self.collections_total.inc()
        self.collection_duration_seconds.observe(duration)

    def record_points(self, instrument: str, count: int):
        """Record points exported for an instrument."""
        self.points_exported_total.labels(instrument=instrument).inc(count)
        self.active_series.labels(instrument=instrument).set(count)

    def record_export_error(self, exporter: str, instrument: str):
        """Record export error."""
        self.export_errors_total.labels(exporter=exporter, instrument=instrument).inc()

    def render(self) -> bytes:
        """Render all self metrics in the text exposition format."""
        return generate_latest(self.registry)
