"""Aggregation views: how an instrument's recordings become a metric."""
from dataclasses import dataclass
from typing import Optional

from batchmetrics.aggregators import AggregationKind, AggregatorFactory
from batchmetrics.data import DescriptorType, InstrumentKind, ValueType


@dataclass(frozen=True)
class Aggregation:
    """
    Aggregation chosen for an instrument.

    Exposes the three things the batcher needs from it: an aggregator
    factory for the instrument's value type, the exported unit, and the
    exported descriptor type.
    """
    kind: AggregationKind

    def get_aggregator_factory(self, value_type: ValueType) -> AggregatorFactory:
        return AggregatorFactory(self.kind, value_type)

    def get_unit(self, initial_unit: str) -> str:
        if self.kind is AggregationKind.COUNT:
            return "1"
        return initial_unit

    def get_descriptor_type(
        self,
        instrument_kind: InstrumentKind,
        value_type: ValueType,
    ) -> DescriptorType:
        if self.kind is AggregationKind.MIN_MAX_SUM_COUNT:
            return DescriptorType.SUMMARY
        if self.kind is AggregationKind.COUNT:
            return DescriptorType.MONOTONIC_LONG
        if self.kind in (AggregationKind.SUM, AggregationKind.LAST_VALUE) and instrument_kind.monotonic:
            if value_type is ValueType.LONG:
                return DescriptorType.MONOTONIC_LONG
            return DescriptorType.MONOTONIC_DOUBLE
        if value_type is ValueType.LONG:
            return DescriptorType.NON_MONOTONIC_LONG
        return DescriptorType.NON_MONOTONIC_DOUBLE


SUM = Aggregation(AggregationKind.SUM)
COUNT = Aggregation(AggregationKind.COUNT)
LAST_VALUE = Aggregation(AggregationKind.LAST_VALUE)
MIN_MAX_SUM_COUNT = Aggregation(AggregationKind.MIN_MAX_SUM_COUNT)
NOOP = Aggregation(AggregationKind.NOOP)


def get_aggregation(kind) -> Aggregation:
    """Look up an aggregation by kind or kind name."""
    return Aggregation(AggregationKind(kind))


def default_aggregation(instrument_kind: InstrumentKind) -> Aggregation:
    """Default aggregation for each instrument kind."""
    if instrument_kind in (InstrumentKind.VALUE_RECORDER, InstrumentKind.VALUE_OBSERVER):
        return MIN_MAX_SUM_COUNT
    if instrument_kind in (InstrumentKind.SUM_OBSERVER, InstrumentKind.UP_DOWN_SUM_OBSERVER):
        # Observers report the running total itself
        return LAST_VALUE
    return SUM


def default_delta(instrument_kind: InstrumentKind, override: Optional[str] = None) -> bool:
    """Whether an instrument reports delta (True) or cumulative (False) values."""
    if override is not None:
        return override == "delta"
    return instrument_kind is InstrumentKind.VALUE_OBSERVER
