"""Tests for the stress runner and configured workloads."""
import pytest

from batchmetrics.clock import TestClock
from batchmetrics.config import Config, WorkloadConfig
from batchmetrics.engine import CollectionEngine, create_meter_provider, get_meter
from batchmetrics.exporters import InMemoryMetricExporter
from batchmetrics.labels import LabelSet
from batchmetrics.main import run_workloads
from batchmetrics.stress import (
    BoundRecordUpdater,
    Operation,
    OperationUpdater,
    RoundRobinRecordUpdater,
    StressTestRunner,
    build_workload_operations,
)


class FailingUpdater(OperationUpdater):
    def update(self):
        raise RuntimeError("writer failed")


def test_round_robin_covers_every_label_set(meter):
    counter = meter.counter("requests", value_type="long")
    label_sets = [LabelSet({"shard": str(i)}) for i in range(3)]
    updater = RoundRobinRecordUpdater(counter, label_sets, lambda: 1)

    for _ in range(9):
        updater.update()

    points = counter.collect_all()[0].points
    assert {p.labels: p.value for p in points} == {labels: 3 for labels in label_sets}


def test_round_robin_requires_label_sets(meter):
    with pytest.raises(ValueError):
        RoundRobinRecordUpdater(meter.counter("requests"), [], lambda: 1.0)


def test_runner_reports_writer_errors(meter):
    counter = meter.counter("requests")
    runner = StressTestRunner(counter, [Operation(1, 0, FailingUpdater())], collection_interval_ms=1)

    with pytest.raises(RuntimeError, match="writer failed"):
        runner.run()


def test_runner_reports_collector_errors(meter):
    """A collect that fails during the race makes the whole run fail."""
    counter = meter.counter("requests")
    bound = counter.bind({"k": "v"})

    def broken_collect():
        raise RuntimeError("collect failed")

    runner = StressTestRunner(counter, collection_interval_ms=1, collect=broken_collect)
    runner.add_operation(Operation(20, 5, BoundRecordUpdater(bound, lambda: 1.0)))

    with pytest.raises(RuntimeError, match="collect failed"):
        runner.run()
    assert runner.collections == 0


def test_runner_counts_collections(meter):
    counter = meter.counter("requests")
    bound = counter.bind({"k": "v"})
    runner = StressTestRunner(counter, collection_interval_ms=1)
    runner.add_operation(Operation(20, 5, BoundRecordUpdater(bound, lambda: 1.0)))

    collections = runner.run()

    assert collections == runner.collections
    assert collections > 0
    # cleanup released the recorder
    counter.collect_all()
    assert bound.unmapped


def test_build_workload_operations(meter):
    counter = meter.counter("requests", value_type="long")
    label_sets = [LabelSet({"k": "a"}), LabelSet({"k": "b"})]
    workload = WorkloadConfig(
        instrument="requests",
        profile="p",
        algorithm="lognormal",
        writers=3,
        updates_per_writer=50,
        bound=True,
    )

    operations = build_workload_operations(workload, counter, label_sets, global_seed=42)

    assert len(operations) == 3
    assert all(op.num_operations == 50 for op in operations)
    assert all(isinstance(op.updater, BoundRecordUpdater) for op in operations)
    for operation in operations:
        operation.updater.update()
        operation.updater.cleanup()
    # Long instruments receive rounded, non-negative values.
    points = counter.collect_all()[0].points
    assert all(isinstance(p.value, int) and p.value >= 0 for p in points)


def test_run_workloads_records_every_update():
    config = Config(
        **{
            "global": {"collection_interval_s": 0.005},
            "profiles": {
                "web": {"labels": {"region": {"values": ["us", "eu"]}}},
            },
            "instruments": [
                {"name": "requests_total", "kind": "counter", "value_type": "long"},
                {"name": "temperature", "kind": "value_observer"},
            ],
            "workloads": [
                {
                    "instrument": "requests_total",
                    "profile": "web",
                    "algorithm": "constant",
                    "value": 2,
                    "writers": 3,
                    "updates_per_writer": 400,
                },
                {"instrument": "temperature", "profile": "web"},
            ],
        }
    )
    provider = create_meter_provider(config, clock=TestClock())
    exporter = InMemoryMetricExporter()
    engine = CollectionEngine(config, provider, [exporter])

    run_workloads(config, get_meter(provider), engine)
    metrics = engine.tick()

    requests = next(m for m in metrics if m.descriptor.name == "requests_total")
    assert sum(p.value for p in requests.points) == 3 * 400 * 2
    assert {p.labels for p in requests.points} == {
        LabelSet({"region": "us"}),
        LabelSet({"region": "eu"}),
    }
