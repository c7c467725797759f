"""Immutable descriptors, points and metric snapshots."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.util.instrumentation import InstrumentationScope

from batchmetrics.labels import EMPTY, LabelSet


class InstrumentKind(str, Enum):
    """Kinds of instruments the meter can build."""
    COUNTER = "counter"
    UP_DOWN_COUNTER = "up_down_counter"
    VALUE_RECORDER = "value_recorder"
    SUM_OBSERVER = "sum_observer"
    UP_DOWN_SUM_OBSERVER = "up_down_sum_observer"
    VALUE_OBSERVER = "value_observer"

    @property
    def monotonic(self) -> bool:
        return self in (InstrumentKind.COUNTER, InstrumentKind.SUM_OBSERVER)


class ValueType(str, Enum):
    """Numeric type recorded by an instrument."""
    LONG = "long"
    DOUBLE = "double"


class DescriptorType(str, Enum):
    """Type of the exported metric, as seen by exporters."""
    NON_MONOTONIC_LONG = "non_monotonic_long"
    NON_MONOTONIC_DOUBLE = "non_monotonic_double"
    MONOTONIC_LONG = "monotonic_long"
    MONOTONIC_DOUBLE = "monotonic_double"
    SUMMARY = "summary"


@dataclass(frozen=True)
class InstrumentDescriptor:
    """Static description of an instrument, fixed at construction."""
    name: str
    description: str
    unit: str
    kind: InstrumentKind
    value_type: ValueType
    constant_labels: LabelSet = field(default=EMPTY)


@dataclass(frozen=True)
class Descriptor:
    """Description of an exported metric."""
    name: str
    description: str
    unit: str
    type: DescriptorType
    constant_labels: LabelSet = field(default=EMPTY)


@dataclass(frozen=True)
class LongPoint:
    """Integer value over [start_epoch_nanos, epoch_nanos)."""
    start_epoch_nanos: int
    epoch_nanos: int
    labels: LabelSet
    value: int


@dataclass(frozen=True)
class DoublePoint:
    """Floating point value over [start_epoch_nanos, epoch_nanos)."""
    start_epoch_nanos: int
    epoch_nanos: int
    labels: LabelSet
    value: float


@dataclass(frozen=True)
class ValueAtPercentile:
    """A value at a given percentile in [0.0, 100.0]."""
    percentile: float
    value: float


@dataclass(frozen=True)
class SummaryPoint:
    """Count, sum and percentile values over [start_epoch_nanos, epoch_nanos)."""
    start_epoch_nanos: int
    epoch_nanos: int
    labels: LabelSet
    count: int
    sum: float
    percentile_values: Tuple[ValueAtPercentile, ...] = ()


Point = Union[LongPoint, DoublePoint, SummaryPoint]


@dataclass(frozen=True)
class MetricData:
    """Snapshot of one metric produced by a collection cycle."""
    descriptor: Descriptor
    resource: Resource
    instrumentation_library: Optional[InstrumentationScope]
    points: Tuple[Point, ...] = ()

    @classmethod
    def create(cls, descriptor, resource, instrumentation_library, points) -> "MetricData":
        return cls(descriptor, resource, instrumentation_library, tuple(points))
