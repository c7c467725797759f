"""Metric exporters consuming collection snapshots."""
from abc import ABC, abstractmethod
import logging
import threading
from typing import List, Sequence

from batchmetrics.data import LongPoint, DoublePoint, MetricData, SummaryPoint

logger = logging.getLogger(__name__)


class MetricExporter(ABC):
    """Receives the MetricData produced by each collection cycle."""

    name = "exporter"

    @abstractmethod
    def export(self, metrics: Sequence[MetricData]):
        pass

    def shutdown(self):
        pass


class InMemoryMetricExporter(MetricExporter):
    """Keeps every exported metric; used in tests and by the control API."""

    name = "in_memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._metrics: List[MetricData] = []
        self._stopped = False

    def export(self, metrics: Sequence[MetricData]):
        with self._lock:
            if self._stopped:
                raise RuntimeError("Exporter already shut down")
            self._metrics.extend(metrics)

    def get_finished_metrics(self) -> List[MetricData]:
        with self._lock:
            return list(self._metrics)

    def reset(self):
        with self._lock:
            self._metrics = []

    def shutdown(self):
        with self._lock:
            self._stopped = True


def format_point(point) -> str:
    """Render one point on a single line."""
    labels = point.labels.label_key()
    if isinstance(point, SummaryPoint):
        values = " ".join(f"p{v.percentile:g}={v.value}" for v in point.percentile_values)
        return f"{{{labels}}} count={point.count} sum={point.sum} {values}".rstrip()
    if isinstance(point, (LongPoint, DoublePoint)):
        return f"{{{labels}}} value={point.value}"
    return f"{{{labels}}} {point!r}"


class LoggingMetricExporter(MetricExporter):
    """Logs every collected point."""

    name = "logging"

    def __init__(self, level: str = "INFO"):
        self.level = getattr(logging, level.upper(), logging.INFO)

    def export(self, metrics: Sequence[MetricData]):
        for metric in metrics:
            descriptor = metric.descriptor
            logger.log(
                self.level,
                f"{descriptor.name} ({descriptor.type.value}, unit={descriptor.unit}): "
                f"{len(metric.points)} points"
            )
            for point in metric.points:
                logger.log(self.level, f"  {descriptor.name}{format_point(point)}")
