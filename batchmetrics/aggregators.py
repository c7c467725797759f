"""Aggregators: mutable per-label-set accumulators."""
from abc import ABC, abstractmethod
from enum import Enum
import math
import threading
from typing import Any, Dict, Optional, Tuple, Type

from batchmetrics.data import (
    DoublePoint,
    LongPoint,
    Point,
    SummaryPoint,
    ValueAtPercentile,
    ValueType,
)
from batchmetrics.labels import LabelSet


class AggregationKind(str, Enum):
    """Supported aggregation kinds."""
    SUM = "sum"
    COUNT = "count"
    LAST_VALUE = "last_value"
    MIN_MAX_SUM_COUNT = "min_max_sum_count"
    NOOP = "noop"


class AggregatorMismatchError(TypeError):
    """Raised when merging aggregators of different kinds."""


class Aggregator(ABC):
    """
    Base class for aggregators.

    Every aggregator guards its state with its own lock, so a long-lived bound
    aggregator can be recorded into from many threads while it is merged away.
    Subclasses implement the state hooks; the base class owns the locking and
    the merge protocol.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._has_recordings = False

    def record(self, value):
        """Fold one observation into the aggregator."""
        with self._lock:
            self._record(value)
            self._has_recordings = True

    def merge_to_and_reset(self, target: "Aggregator"):
        """
        Add this aggregator's state into ``target``, then reset to identity.

        The state is detached under this aggregator's lock and applied under
        the target's lock; the two locks are never held together.
        """
        if type(target) is not type(self):
            raise AggregatorMismatchError(
                f"Cannot merge {type(self).__name__} into {type(target).__name__}"
            )
        if target is self:
            raise ValueError("Cannot merge an aggregator into itself")

        with self._lock:
            if not self._has_recordings:
                return
            state = self._snapshot()
            self._reset()
            self._has_recordings = False

        with target._lock:
            target._merge(state)
            target._has_recordings = True

    def to_point(
        self,
        start_epoch_nanos: int,
        epoch_nanos: int,
        labels: LabelSet,
    ) -> Optional[Point]:
        """Return the point for [start, end), or None if nothing was recorded."""
        with self._lock:
            if not self._has_recordings:
                return None
            state = self._snapshot()
        return self._make_point(state, start_epoch_nanos, epoch_nanos, labels)

    @property
    def has_recordings(self) -> bool:
        with self._lock:
            return self._has_recordings

    @abstractmethod
    def _record(self, value):
        pass

    @abstractmethod
    def _snapshot(self) -> Any:
        pass

    @abstractmethod
    def _reset(self):
        pass

    @abstractmethod
    def _merge(self, state: Any):
        pass

    @abstractmethod
    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels) -> Point:
        pass


class NoopAggregator(Aggregator):
    """Aggregator that drops everything."""

    def record(self, value):
        pass

    def merge_to_and_reset(self, target: Aggregator):
        pass

    def to_point(self, start_epoch_nanos, epoch_nanos, labels) -> Optional[Point]:
        return None

    def _record(self, value):
        pass

    def _snapshot(self):
        return None

    def _reset(self):
        pass

    def _merge(self, state):
        pass

    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels):
        return None


class _SumAggregator(Aggregator):
    """Running total; identity is zero."""

    _zero = 0

    def __init__(self):
        super().__init__()
        self._value = self._zero

    def _record(self, value):
        self._value += value

    def _snapshot(self):
        return self._value

    def _reset(self):
        self._value = self._zero

    def _merge(self, state):
        self._value += state


class LongSumAggregator(_SumAggregator):
    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels):
        return LongPoint(start_epoch_nanos, epoch_nanos, labels, state)


class DoubleSumAggregator(_SumAggregator):
    _zero = 0.0

    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels):
        return DoublePoint(start_epoch_nanos, epoch_nanos, labels, float(state))


class CountAggregator(Aggregator):
    """Counts recordings regardless of their value."""

    def __init__(self):
        super().__init__()
        self._count = 0

    def _record(self, value):
        self._count += 1

    def _snapshot(self):
        return self._count

    def _reset(self):
        self._count = 0

    def _merge(self, state):
        self._count += state

    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels):
        return LongPoint(start_epoch_nanos, epoch_nanos, labels, state)


class _LastValueAggregator(Aggregator):
    """Keeps the most recent value; merging overwrites the target."""

    def __init__(self):
        super().__init__()
        self._value = None

    def _record(self, value):
        self._value = value

    def _snapshot(self):
        return self._value

    def _reset(self):
        self._value = None

    def _merge(self, state):
        self._value = state


class LongLastValueAggregator(_LastValueAggregator):
    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels):
        return LongPoint(start_epoch_nanos, epoch_nanos, labels, state)


class DoubleLastValueAggregator(_LastValueAggregator):
    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels):
        return DoublePoint(start_epoch_nanos, epoch_nanos, labels, float(state))


class MinMaxSumCountAggregator(Aggregator):
    """Summary of observations: count, sum, min and max."""

    def __init__(self):
        super().__init__()
        self._count = 0
        self._sum = 0
        self._min = math.inf
        self._max = -math.inf

    def _record(self, value):
        self._count += 1
        self._sum += value
        self._min = min(self._min, value)
        self._max = max(self._max, value)

    def _snapshot(self) -> Tuple:
        return self._count, self._sum, self._min, self._max

    def _reset(self):
        self._count = 0
        self._sum = 0
        self._min = math.inf
        self._max = -math.inf

    def _merge(self, state):
        count, total, minimum, maximum = state
        self._count += count
        self._sum += total
        self._min = min(self._min, minimum)
        self._max = max(self._max, maximum)

    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels):
        count, total, minimum, maximum = state
        return SummaryPoint(
            start_epoch_nanos,
            epoch_nanos,
            labels,
            count,
            total,
            (ValueAtPercentile(0.0, minimum), ValueAtPercentile(100.0, maximum)),
        )


class DoubleMinMaxSumCountAggregator(MinMaxSumCountAggregator):
    """Summary of floating point observations."""

    def _make_point(self, state, start_epoch_nanos, epoch_nanos, labels):
        count, total, minimum, maximum = state
        return super()._make_point(
            (count, float(total), float(minimum), float(maximum)),
            start_epoch_nanos,
            epoch_nanos,
            labels,
        )


_AGGREGATOR_CLASSES: Dict[Tuple[AggregationKind, ValueType], Type[Aggregator]] = {
    (AggregationKind.SUM, ValueType.LONG): LongSumAggregator,
    (AggregationKind.SUM, ValueType.DOUBLE): DoubleSumAggregator,
    (AggregationKind.COUNT, ValueType.LONG): CountAggregator,
    (AggregationKind.COUNT, ValueType.DOUBLE): CountAggregator,
    (AggregationKind.LAST_VALUE, ValueType.LONG): LongLastValueAggregator,
    (AggregationKind.LAST_VALUE, ValueType.DOUBLE): DoubleLastValueAggregator,
    (AggregationKind.MIN_MAX_SUM_COUNT, ValueType.LONG): MinMaxSumCountAggregator,
    (AggregationKind.MIN_MAX_SUM_COUNT, ValueType.DOUBLE): DoubleMinMaxSumCountAggregator,
    (AggregationKind.NOOP, ValueType.LONG): NoopAggregator,
    (AggregationKind.NOOP, ValueType.DOUBLE): NoopAggregator,
}


class AggregatorFactory:
    """Stateless factory of fresh aggregators for one kind and value type."""

    def __init__(self, kind: AggregationKind, value_type: ValueType):
        try:
            self._aggregator_class = _AGGREGATOR_CLASSES[
                (AggregationKind(kind), ValueType(value_type))
            ]
        except (KeyError, ValueError):
            raise ValueError(
                f"Unsupported aggregation {kind!r} for value type {value_type!r}"
            )
        self.kind = AggregationKind(kind)
        self.value_type = ValueType(value_type)

    def get_aggregator(self) -> Aggregator:
        return self._aggregator_class()

    def __repr__(self) -> str:
        return f"AggregatorFactory({self.kind.value}, {self.value_type.value})"


NOOP_FACTORY = AggregatorFactory(AggregationKind.NOOP, ValueType.DOUBLE)
