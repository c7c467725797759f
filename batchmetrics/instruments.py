"""Synchronous and asynchronous instruments feeding a batcher."""
from abc import ABC, abstractmethod
import logging
import threading
from typing import Callable, Dict, List, Mapping, Optional, Union

from batchmetrics.aggregators import Aggregator
from batchmetrics.batcher import Batcher
from batchmetrics.data import InstrumentDescriptor, MetricData, ValueType
from batchmetrics.labels import LabelSet, validate_label_names

logger = logging.getLogger(__name__)

Labels = Optional[Union[LabelSet, Mapping[str, str]]]


def _to_label_set(labels: Labels) -> LabelSet:
    if isinstance(labels, LabelSet):
        return labels
    label_set = LabelSet(labels)
    if not validate_label_names(label_set):
        raise ValueError(f"Invalid label names: {list(label_set.keys())}")
    return label_set


class Instrument(ABC):
    """Base class for instruments."""

    def __init__(self, descriptor: InstrumentDescriptor, batcher: Batcher):
        self.descriptor = descriptor
        self.batcher = batcher
        self._collect_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.descriptor.name

    @abstractmethod
    def collect_all(self) -> List[MetricData]:
        """Run one collection cycle for this instrument."""
        pass

    def _check_value(self, value):
        """Reject values that do not fit the instrument."""
        if self.descriptor.value_type is ValueType.LONG:
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(
                    f"Instrument '{self.name}' records integers, got {value!r}"
                )
        elif not isinstance(value, (int, float)) or isinstance(value, bool):
            raise TypeError(f"Instrument '{self.name}' records numbers, got {value!r}")

        if self.descriptor.kind.monotonic and value < 0:
            raise ValueError(
                f"Instrument '{self.name}' is monotonic, negative value {value!r} rejected"
            )


class _BoundEntry:
    """
    Aggregator shared by every handle bound to one label set.

    The entry is reference counted, one reference per live handle. Once the
    count drops to zero the collector may unmap it; an unmapped entry is never
    handed out again, which is what lets the batcher adopt its aggregator.
    """

    _UNMAPPED = -1

    def __init__(self, aggregator: Aggregator):
        self.aggregator = aggregator
        self._ref_lock = threading.Lock()
        self._ref_count = 1

    def try_acquire(self) -> bool:
        with self._ref_lock:
            if self._ref_count == self._UNMAPPED:
                return False
            self._ref_count += 1
            return True

    def release(self):
        with self._ref_lock:
            if self._ref_count > 0:
                self._ref_count -= 1

    def try_unmap(self) -> bool:
        """Mark the entry unmapped if no handle holds it."""
        with self._ref_lock:
            if self._ref_count != 0:
                return False
            self._ref_count = self._UNMAPPED
            return True

    @property
    def unmapped(self) -> bool:
        with self._ref_lock:
            return self._ref_count == self._UNMAPPED


class BoundRecorder:
    """
    One caller's recording handle on a label set.

    Every ``bind`` returns a new handle holding one reference on the label
    set's shared entry. ``unbind`` gives that reference back exactly once,
    and recording through a handle after ``unbind`` raises ``RuntimeError``.
    """

    def __init__(self, instrument: "SynchronousInstrument", entry: _BoundEntry):
        self._instrument = instrument
        self._entry = entry
        self._lock = threading.Lock()
        self._released = False

    @property
    def aggregator(self) -> Aggregator:
        return self._entry.aggregator

    def record(self, value):
        """Record a value for this recorder's label set."""
        self._instrument._check_value(value)
        with self._lock:
            if self._released:
                raise RuntimeError(
                    f"Recorder for '{self._instrument.name}' used after unbind()"
                )
            self._entry.aggregator.record(value)

    add = record

    def unbind(self):
        """Release this handle. Further calls do nothing."""
        with self._lock:
            if self._released:
                return
            self._released = True
        self._entry.release()

    @property
    def released(self) -> bool:
        with self._lock:
            return self._released

    @property
    def unmapped(self) -> bool:
        return self._entry.unmapped


class SynchronousInstrument(Instrument):
    """Instrument recorded into directly from application code."""

    def __init__(self, descriptor: InstrumentDescriptor, batcher: Batcher):
        super().__init__(descriptor, batcher)
        self._bound: Dict[LabelSet, _BoundEntry] = {}
        self._bound_lock = threading.Lock()

    def bind(self, labels: Labels = None) -> BoundRecorder:
        """Return a new handle on the aggregator for ``labels``."""
        label_set = _to_label_set(labels)
        while True:
            with self._bound_lock:
                entry = self._bound.get(label_set)
                if entry is None:
                    entry = _BoundEntry(self.batcher.get_aggregator())
                    self._bound[label_set] = entry
                    return BoundRecorder(self, entry)
                if entry.try_acquire():
                    return BoundRecorder(self, entry)
                # Unmapped by a concurrent collection; drop it and retry.
                del self._bound[label_set]

    def _record(self, value, labels: Labels):
        self._check_value(value)
        bound = self.bind(labels)
        try:
            bound.record(value)
        finally:
            bound.unbind()

    @property
    def bound_count(self) -> int:
        with self._bound_lock:
            return len(self._bound)

    def collect_all(self) -> List[MetricData]:
        with self._collect_lock:
            with self._bound_lock:
                entries = list(self._bound.items())

            for label_set, entry in entries:
                unmapped = entry.try_unmap()
                if unmapped:
                    with self._bound_lock:
                        if self._bound.get(label_set) is entry:
                            del self._bound[label_set]
                self.batcher.batch(label_set, entry.aggregator, unmapped)

            return self.batcher.complete_collection_cycle()


class Counter(SynchronousInstrument):
    """Monotonic sum of increments."""

    def add(self, value, labels: Labels = None):
        self._record(value, labels)


class UpDownCounter(SynchronousInstrument):
    """Non-monotonic sum of increments."""

    def add(self, value, labels: Labels = None):
        self._record(value, labels)


class ValueRecorder(SynchronousInstrument):
    """Records arbitrary measurements, summarized by default."""

    def record(self, value, labels: Labels = None):
        self._record(value, labels)


class ObserverResult:
    """Sink handed to observer callbacks during collection."""

    def __init__(self, instrument: "AsynchronousInstrument"):
        self._instrument = instrument

    def observe(self, value, labels: Labels = None):
        instrument = self._instrument
        instrument._check_value(value)
        aggregator = instrument.batcher.get_aggregator()
        aggregator.record(value)
        # Fresh aggregator, never referenced again: hand over ownership.
        instrument.batcher.batch(_to_label_set(labels), aggregator, True)


Callback = Callable[[ObserverResult], None]


class AsynchronousInstrument(Instrument):
    """Instrument whose values are observed by a callback at collection time."""

    def __init__(
        self,
        descriptor: InstrumentDescriptor,
        batcher: Batcher,
        callback: Optional[Callback] = None,
    ):
        super().__init__(descriptor, batcher)
        self._callback = callback

    def set_callback(self, callback: Callback):
        if self._callback is not None:
            raise ValueError(f"Callback already set for observer '{self.name}'")
        self._callback = callback

    def collect_all(self) -> List[MetricData]:
        with self._collect_lock:
            if self._callback is not None:
                self._callback(ObserverResult(self))
            return self.batcher.complete_collection_cycle()


class SumObserver(AsynchronousInstrument):
    """Observes monotonic sums."""


class UpDownSumObserver(AsynchronousInstrument):
    """Observes non-monotonic sums."""


class ValueObserver(AsynchronousInstrument):
    """Observes arbitrary values."""
