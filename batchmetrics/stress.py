"""Concurrent recording harness: writer threads racing a periodic collector."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

from batchmetrics.config import WorkloadConfig
from batchmetrics.data import MetricData, ValueType
from batchmetrics.generators import ValueGenerator, create_generator
from batchmetrics.instruments import BoundRecorder, Labels, SynchronousInstrument
from batchmetrics.labels import LabelSet

logger = logging.getLogger(__name__)


class OperationUpdater(ABC):
    """One kind of recording performed repeatedly by a writer thread."""

    @abstractmethod
    def update(self):
        pass

    def cleanup(self):
        pass


@dataclass
class Operation:
    """Run ``updater`` ``num_operations`` times, pausing between updates."""
    num_operations: int
    update_delay_ms: float
    updater: OperationUpdater


def _recording_method(instrument: SynchronousInstrument) -> Callable:
    if hasattr(instrument, "add"):
        return instrument.add
    return instrument.record


class DirectRecordUpdater(OperationUpdater):
    """Records through the instrument, one label lookup per update."""

    def __init__(
        self,
        instrument: SynchronousInstrument,
        labels: Labels,
        value_source: Callable[[], float],
    ):
        self._record = _recording_method(instrument)
        self._labels = labels
        self._value_source = value_source

    def update(self):
        self._record(self._value_source(), self._labels)


class RoundRobinRecordUpdater(OperationUpdater):
    """Records through the instrument, cycling over a list of label sets."""

    def __init__(
        self,
        instrument: SynchronousInstrument,
        label_sets: Sequence[LabelSet],
        value_source: Callable[[], float],
    ):
        if not label_sets:
            raise ValueError("At least one label set is required")
        self._record = _recording_method(instrument)
        self._label_sets = list(label_sets)
        self._value_source = value_source
        self._next = 0

    def update(self):
        labels = self._label_sets[self._next % len(self._label_sets)]
        self._next += 1
        self._record(self._value_source(), labels)


class BoundRecordUpdater(OperationUpdater):
    """Records through a bound recorder, released at cleanup."""

    def __init__(self, bound: BoundRecorder, value_source: Callable[[], float]):
        self._bound = bound
        self._value_source = value_source

    def update(self):
        self._bound.record(self._value_source())

    def cleanup(self):
        self._bound.unbind()


class StressTestRunner:
    """
    Runs every operation in its own thread while a collector thread calls
    ``collect`` (the instrument's ``collect_all`` by default) every
    ``collection_interval_ms``.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        instrument: SynchronousInstrument,
        operations: Optional[List[Operation]] = None,
        collection_interval_ms: float = 100,
        collect: Optional[Callable[[], List[MetricData]]] = None,
    ):
        self.instrument = instrument
        self.operations: List[Operation] = list(operations or [])
        self.collection_interval_ms = collection_interval_ms
        self.collect = collect or instrument.collect_all
        self.collections = 0

    def add_operation(self, operation: Operation) -> "StressTestRunner":
        self.operations.append(operation)
        return self

    def run(self) -> int:
        """Run all operations to completion; returns the number of collections."""
        start_barrier = threading.Barrier(len(self.operations) + 1)
        done = threading.Event()
        errors: List[BaseException] = []

        def run_operation(operation: Operation):
            start_barrier.wait()
            try:
                for _ in range(operation.num_operations):
                    operation.updater.update()
                    if operation.update_delay_ms:
                        time.sleep(operation.update_delay_ms / 1000.0)
            except Exception as e:
                logger.error(f"Operation failed: {e}", exc_info=True)
                errors.append(e)
            finally:
                operation.updater.cleanup()

        def run_collector():
            while not done.wait(self.collection_interval_ms / 1000.0):
                try:
                    self._collect()
                except Exception as e:
                    logger.error(f"Collection failed: {e}", exc_info=True)
                    errors.append(e)
                    return

        threads = [
            threading.Thread(target=run_operation, args=(operation,), daemon=True)
            for operation in self.operations
        ]
        collector = threading.Thread(target=run_collector, daemon=True)

        for thread in threads:
            thread.start()
        collector.start()

        start = time.time()
        start_barrier.wait()
        for thread in threads:
            thread.join()
        done.set()
        collector.join()

        logger.info(
            f"Stress run on '{self.instrument.name}': {len(self.operations)} operations, "
            f"{self.collections} collections in {time.time() - start:.3f}s"
        )
        if errors:
            raise errors[0]
        return self.collections

    def _collect(self):
        self.collect()
        self.collections += 1


def _value_source(
    generator: ValueGenerator,
    instrument: SynchronousInstrument,
) -> Callable[[], float]:
    """Adapt generated values to what the instrument accepts."""
    value_type = instrument.descriptor.value_type
    monotonic = instrument.descriptor.kind.monotonic
    started = time.time()

    def next_value():
        value = generator.next_value(time.time() - started)
        if monotonic:
            value = max(0.0, value)
        if value_type is ValueType.LONG:
            return int(round(value))
        return value

    return next_value


def build_workload_operations(
    workload: WorkloadConfig,
    instrument: SynchronousInstrument,
    label_sets: Sequence[LabelSet],
    global_seed: int,
) -> List[Operation]:
    """Create one operation per configured writer."""
    operations = []
    for writer in range(workload.writers):
        generator = create_generator(workload, global_seed, stream=writer)
        source = _value_source(generator, instrument)
        if workload.bound:
            labels = label_sets[writer % len(label_sets)]
            updater = BoundRecordUpdater(instrument.bind(labels), source)
        else:
            updater = RoundRobinRecordUpdater(instrument, label_sets, source)
        operations.append(
            Operation(workload.updates_per_writer, workload.update_delay_ms, updater)
        )
    return operations
