"""Periodic collection engine."""
import time
import logging
import threading
from typing import Dict, List, Optional

from opentelemetry.sdk.resources import Resource

from batchmetrics.clock import Clock
from batchmetrics.config import Config
from batchmetrics.data import MetricData
from batchmetrics.exporters import InMemoryMetricExporter, LoggingMetricExporter, MetricExporter
from batchmetrics.instruments import Instrument
from batchmetrics.meter import Meter, MeterProvider
from batchmetrics.self_metrics import SelfMetrics

logger = logging.getLogger(__name__)

METER_NAME = "batchmetrics"


class CollectionEngine:
    """Collects every instrument of a provider on a fixed interval and exports the result."""

    def __init__(
        self,
        config: Config,
        meter_provider: MeterProvider,
        exporters: Optional[List[MetricExporter]] = None,
        self_metrics: Optional[SelfMetrics] = None,
    ):
        self.config = config
        self.meter_provider = meter_provider
        self.exporters: List[MetricExporter] = list(exporters or [])
        self.self_metrics = self_metrics or SelfMetrics(prefix=config.global_.self_metrics_prefix)
        self.running = False
        self.tick_count = 0
        self.start_time = time.time()
        self.last_points: Dict[str, int] = {}

        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info(f"Collection engine initialized with {len(self.exporters)} exporters")

    @property
    def instruments(self) -> List[Instrument]:
        return self.meter_provider.instruments()

    def tick(self) -> List[MetricData]:
        """Run one collection cycle over all instruments and export it."""
        with self._tick_lock:
            tick_start = time.time()
            all_metrics: List[MetricData] = []

            for instrument in self.instruments:
                try:
                    metrics = instrument.collect_all()
                except Exception as e:
                    logger.error(f"Error collecting instrument '{instrument.name}': {e}", exc_info=True)
                    self.self_metrics.record_export_error("collector", instrument.name)
                    continue

                points = sum(len(m.points) for m in metrics)
                self.last_points[instrument.name] = points
                self.self_metrics.record_points(instrument.name, points)
                all_metrics.extend(metrics)

            for exporter in self.exporters:
                try:
                    exporter.export(all_metrics)
                except Exception as e:
                    logger.error(f"Error exporting to {exporter.name}: {e}")
                    for metric in all_metrics:
                        self.self_metrics.record_export_error(exporter.name, metric.descriptor.name)

            tick_duration = time.time() - tick_start
            self.self_metrics.record_collection(tick_duration)
            self.tick_count += 1

            if self.tick_count % 60 == 0:  # Log every 60 ticks
                logger.info(
                    f"Tick {self.tick_count}: collected {len(all_metrics)} metrics "
                    f"in {tick_duration:.3f}s"
                )
            return all_metrics

    def run(self):
        """Run the collection loop until stopped."""
        self.running = True
        self.start_time = time.time()

        logger.info("Starting collection engine")

        interval = self.config.global_.collection_interval_s

        while not self._stop_event.is_set():
            tick_start = time.time()

            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in tick: {e}", exc_info=True)

            # Sleep for remaining time in the collection interval
            tick_duration = time.time() - tick_start
            sleep_time = max(0, interval - tick_duration)

            if sleep_time > 0:
                self._stop_event.wait(sleep_time)
            else:
                logger.warning(
                    f"Tick took {tick_duration:.3f}s, longer than interval {interval}s"
                )

        self.running = False

    def start(self):
        """Run the collection loop in a background thread."""
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="collection-engine", daemon=True)
        self._thread.start()

    def stop(self):
        """Stop the loop, run a final collection and shut exporters down."""
        logger.info("Stopping collection engine")
        self.running = False
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

        self.tick()

        for exporter in self.exporters:
            exporter.shutdown()


def create_exporters(config: Config) -> List[MetricExporter]:
    """Build the exporters enabled in configuration."""
    exporters: List[MetricExporter] = []
    if config.exporters.logging.enabled:
        exporters.append(LoggingMetricExporter(config.exporters.logging.level))
        logger.info("Logging exporter initialized")
    if config.exporters.in_memory:
        exporters.append(InMemoryMetricExporter())
        logger.info("In-memory exporter initialized")
    return exporters


def create_meter_provider(config: Config, clock: Optional[Clock] = None) -> MeterProvider:
    """Build the provider and register every configured instrument."""
    attributes = {"service.name": config.resource.service_name}
    attributes.update(config.resource.attributes)

    provider = MeterProvider(clock=clock, resource=Resource(attributes))
    meter = provider.get_meter(METER_NAME)
    for instrument_config in config.instruments:
        meter.from_config(instrument_config)
    return provider


def get_meter(provider: MeterProvider) -> Meter:
    return provider.get_meter(METER_NAME)
