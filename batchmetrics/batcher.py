"""
Batchers map label sets to aggregators and produce collection snapshots.

Recording call sites hand their aggregators to ``Batcher.batch``; the
collector calls ``Batcher.complete_collection_cycle`` once per cycle.
"""
from abc import ABC, abstractmethod
import logging
import threading
from typing import Dict, List

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.util.instrumentation import InstrumentationScope

from batchmetrics.aggregation import Aggregation
from batchmetrics.aggregators import NOOP_FACTORY, Aggregator, AggregatorFactory
from batchmetrics.clock import Clock
from batchmetrics.data import Descriptor, InstrumentDescriptor, MetricData, Point
from batchmetrics.labels import LabelSet
from batchmetrics.state import MeterProviderSharedState, MeterSharedState

logger = logging.getLogger(__name__)


class Batcher(ABC):
    """Base class for batchers."""

    @abstractmethod
    def get_aggregator(self) -> Aggregator:
        """Return a fresh aggregator for this batcher's aggregation."""
        pass

    @abstractmethod
    def batch(self, label_set: LabelSet, aggregator: Aggregator, unmapped_aggregator: bool):
        """
        Merge ``aggregator`` into the canonical aggregate for ``label_set``.

        Args:
            label_set: Identity of the time series
            aggregator: Aggregator holding the caller's recordings
            unmapped_aggregator: True when no one else holds a reference to
                ``aggregator``; the batcher may then adopt it as-is
        """
        pass

    @abstractmethod
    def complete_collection_cycle(self) -> List[MetricData]:
        """Snapshot every label set and start the next cycle."""
        pass


class NoopBatcher(Batcher):
    """Batcher for disabled instruments."""

    def get_aggregator(self) -> Aggregator:
        return NOOP_FACTORY.get_aggregator()

    def batch(self, label_set: LabelSet, aggregator: Aggregator, unmapped_aggregator: bool):
        pass

    def complete_collection_cycle(self) -> List[MetricData]:
        return []


_NOOP = NoopBatcher()


class AllLabelsBatcher(Batcher):
    """
    Keeps one aggregator per distinct label set.

    With ``delta=False`` aggregates accumulate for the lifetime of the
    batcher and every cycle reports from the same start time. With
    ``delta=True`` the mapping is dropped after each cycle and the next
    window starts where the previous one ended.
    """

    def __init__(
        self,
        descriptor: Descriptor,
        resource: Resource,
        instrumentation_library: InstrumentationScope,
        aggregator_factory: AggregatorFactory,
        clock: Clock,
        delta: bool,
    ):
        self.descriptor = descriptor
        self.resource = resource
        self.instrumentation_library = instrumentation_library
        self.aggregator_factory = aggregator_factory
        self.clock = clock
        self.delta = delta

        self._lock = threading.Lock()
        self._aggregators: Dict[LabelSet, Aggregator] = {}
        self._start_epoch_nanos = clock.now()

    @property
    def start_epoch_nanos(self) -> int:
        with self._lock:
            return self._start_epoch_nanos

    @property
    def active_series(self) -> int:
        with self._lock:
            return len(self._aggregators)

    def get_aggregator(self) -> Aggregator:
        return self.aggregator_factory.get_aggregator()

    def batch(self, label_set: LabelSet, aggregator: Aggregator, unmapped_aggregator: bool):
        with self._lock:
            current = self._aggregators.get(label_set)
            if current is None:
                if unmapped_aggregator:
                    # Nobody else references this aggregator, adopt it.
                    self._aggregators[label_set] = aggregator
                    return
                current = self.aggregator_factory.get_aggregator()
                self._aggregators[label_set] = current
            aggregator.merge_to_and_reset(current)

    def complete_collection_cycle(self) -> List[MetricData]:
        with self._lock:
            epoch_nanos = self.clock.now()
            points: List[Point] = []
            for label_set, aggregator in self._aggregators.items():
                point = aggregator.to_point(self._start_epoch_nanos, epoch_nanos, label_set)
                if point is not None:
                    points.append(point)

            if self.delta:
                self._start_epoch_nanos = epoch_nanos
                self._aggregators = {}

        logger.debug(
            f"Collected {len(points)} points for '{self.descriptor.name}' "
            f"({'delta' if self.delta else 'cumulative'})"
        )
        return [
            MetricData.create(
                self.descriptor, self.resource, self.instrumentation_library, points
            )
        ]


def get_noop() -> Batcher:
    return _NOOP


def get_cumulative_all_labels(
    descriptor: InstrumentDescriptor,
    meter_provider_shared_state: MeterProviderSharedState,
    meter_shared_state: MeterSharedState,
    aggregation: Aggregation,
) -> Batcher:
    """Batcher that never resets its aggregates."""
    return _all_labels(
        descriptor, meter_provider_shared_state, meter_shared_state, aggregation, delta=False
    )


def get_delta_all_labels(
    descriptor: InstrumentDescriptor,
    meter_provider_shared_state: MeterProviderSharedState,
    meter_shared_state: MeterSharedState,
    aggregation: Aggregation,
) -> Batcher:
    """Batcher that resets its aggregates after every collection cycle."""
    return _all_labels(
        descriptor, meter_provider_shared_state, meter_shared_state, aggregation, delta=True
    )


def _all_labels(
    descriptor: InstrumentDescriptor,
    meter_provider_shared_state: MeterProviderSharedState,
    meter_shared_state: MeterSharedState,
    aggregation: Aggregation,
    delta: bool,
) -> AllLabelsBatcher:
    return AllLabelsBatcher(
        get_default_metric_descriptor(descriptor, aggregation),
        meter_provider_shared_state.resource,
        meter_shared_state.instrumentation_library,
        aggregation.get_aggregator_factory(descriptor.value_type),
        meter_provider_shared_state.clock,
        delta,
    )


def get_default_metric_descriptor(
    descriptor: InstrumentDescriptor,
    aggregation: Aggregation,
) -> Descriptor:
    """Build the exported descriptor for an instrument and its aggregation."""
    return Descriptor(
        name=descriptor.name,
        description=descriptor.description,
        unit=aggregation.get_unit(descriptor.unit),
        type=aggregation.get_descriptor_type(descriptor.kind, descriptor.value_type),
        constant_labels=descriptor.constant_labels,
    )
