"""Tests for instruments, bound recorders and their collection cycles."""
import threading

import pytest

from batchmetrics import batcher as batchers
from batchmetrics.config import InstrumentConfig
from batchmetrics.data import (
    Descriptor,
    DescriptorType,
    DoublePoint,
    LongPoint,
    MetricData,
    SummaryPoint,
    ValueAtPercentile,
    ValueType,
)
from batchmetrics.instruments import Instrument
from batchmetrics.labels import LabelSet
from batchmetrics.stress import (
    BoundRecordUpdater,
    DirectRecordUpdater,
    Operation,
    StressTestRunner,
)

from tests.conftest import INSTRUMENTATION_LIBRARY, RESOURCE, SECOND_NANOS

KV = LabelSet({"K": "V"})


def _constant(value):
    return lambda: value


def _assert_summary(point, labels, count, total, minimum, maximum):
    assert isinstance(point, SummaryPoint)
    assert point.labels == labels
    assert point.count == count
    assert point.sum == pytest.approx(total)
    assert point.percentile_values == (
        ValueAtPercentile(0.0, minimum),
        ValueAtPercentile(100.0, maximum),
    )


def _points_by_labels(metric_data):
    return {point.labels: point for point in metric_data.points}


def _build_measure(meter):
    return meter.value_recorder(
        "testMeasure",
        description="My very own measure",
        unit="ms",
        constant_labels={"sk1": "sv1"},
    )


def test_collect_metrics_no_records(meter):
    """An instrument without records reports its descriptor with no points."""
    measure = _build_measure(meter)

    assert measure.collect_all() == [
        MetricData.create(
            Descriptor(
                "testMeasure",
                "My very own measure",
                "ms",
                DescriptorType.SUMMARY,
                LabelSet({"sk1": "sv1"}),
            ),
            RESOURCE,
            INSTRUMENTATION_LIBRARY,
            [],
        )
    ]


def test_collect_metrics_empty_cycle_after_bind(meter):
    """Binding without recording produces no point."""
    measure = _build_measure(meter)
    bound = measure.bind(KV)
    try:
        assert measure.collect_all()[0].points == ()
    finally:
        bound.unbind()


def test_collect_metrics_with_one_record(meter, test_clock):
    measure = _build_measure(meter)
    start = test_clock.now()
    measure.record(12.0)
    test_clock.advance_nanos(SECOND_NANOS)

    metric_data = measure.collect_all()

    assert metric_data[0].points == (
        SummaryPoint(
            start,
            test_clock.now(),
            LabelSet(),
            1,
            12.0,
            (ValueAtPercentile(0.0, 12.0), ValueAtPercentile(100.0, 12.0)),
        ),
    )


def test_collect_metrics_with_multiple_collects(meter, test_clock):
    """Cumulative values survive collections; direct and bound records mix."""
    start = test_clock.now()
    measure = _build_measure(meter)
    bound = measure.bind(KV)
    try:
        measure.record(12.1)
        bound.record(123.3)
        measure.record(-13.1)
        # Advancing time here should not matter.
        test_clock.advance_nanos(SECOND_NANOS)
        bound.record(321.5)
        measure.record(-121.5, {"K": "V"})

        first_collect = test_clock.now()
        metric_data = measure.collect_all()
        assert len(metric_data) == 1
        points = _points_by_labels(metric_data[0])
        assert len(points) == 2
        _assert_summary(points[LabelSet()], LabelSet(), 2, -1.0, -13.1, 12.1)
        _assert_summary(points[KV], KV, 3, 323.3, -121.5, 321.5)
        assert all(p.start_epoch_nanos == start for p in points.values())
        assert all(p.epoch_nanos == first_collect for p in points.values())

        # Repeat to prove previous values are kept.
        test_clock.advance_nanos(SECOND_NANOS)
        bound.record(222.0)
        measure.record(17.0)

        second_collect = test_clock.now()
        points = _points_by_labels(measure.collect_all()[0])
        assert len(points) == 2
        _assert_summary(points[LabelSet()], LabelSet(), 3, 16.0, -13.1, 17.0)
        _assert_summary(points[KV], KV, 4, 545.3, -121.5, 321.5)
        assert all(p.start_epoch_nanos == start for p in points.values())
        assert all(p.epoch_nanos == second_collect for p in points.values())
    finally:
        bound.unbind()


def test_same_aggregator_for_same_labels(meter):
    """Each bind returns its own handle on the label set's shared aggregator."""
    measure = _build_measure(meter)
    bound = measure.bind(KV)
    duplicate = measure.bind({"K": "V"})
    try:
        assert bound is not duplicate
        assert bound.aggregator is duplicate.aggregator
    finally:
        bound.unbind()
        duplicate.unbind()


def test_same_aggregator_for_same_labels_across_collections(meter):
    """A held recorder survives collection; a released one is replaced."""
    measure = _build_measure(meter)
    bound = measure.bind(KV)
    duplicate = measure.bind(KV)
    try:
        assert bound.aggregator is duplicate.aggregator
        duplicate.unbind()
        measure.collect_all()
        duplicate = measure.bind(KV)
        assert bound.aggregator is duplicate.aggregator
    finally:
        bound.unbind()
        duplicate.unbind()

    measure.collect_all()
    assert bound.unmapped
    replacement = measure.bind(KV)
    try:
        assert replacement.aggregator is not bound.aggregator
    finally:
        replacement.unbind()


def test_repeated_unbind_keeps_other_handles_mapped(meter):
    """Unbinding one handle twice does not release a reference held elsewhere."""
    counter = meter.from_config(
        InstrumentConfig(name="shared", kind="counter", value_type="long", temporality="delta")
    )
    first = counter.bind(KV)
    second = counter.bind(KV)

    first.unbind()
    first.unbind()
    counter.collect_all()
    assert not second.unmapped

    second.add(7)
    totals = [sum(p.value for p in counter.collect_all()[0].points) for _ in range(3)]
    second.unbind()

    assert totals == [7, 0, 0]
    assert first.released and second.released


def test_record_after_unbind_raises(meter):
    """A released handle refuses values instead of recording them nowhere."""
    counter = meter.from_config(
        InstrumentConfig(name="stale", kind="counter", value_type="long", temporality="delta")
    )
    bound = counter.bind(KV)
    bound.add(1)
    bound.unbind()
    counter.collect_all()

    with pytest.raises(RuntimeError):
        bound.add(5)
    assert counter.collect_all()[0].points == ()


def test_unmapped_recorder_is_dropped_from_instrument(meter):
    measure = meter.counter("dropped", value_type=ValueType.LONG)
    measure.add(1, {"k": "v"})
    assert measure.bound_count == 1

    measure.collect_all()

    assert measure.bound_count == 0
    assert measure.collect_all()[0].points[0].value == 1


def test_bind_rejects_invalid_label_names(meter):
    measure = _build_measure(meter)

    with pytest.raises(ValueError):
        measure.bind({"1bad": "v"})


def test_stress(meter, test_clock):
    """Direct and bound writers racing a collector lose no recordings."""
    measure = meter.value_recorder("testMeasure")
    runner = StressTestRunner(measure, collection_interval_ms=1)
    for _ in range(4):
        runner.add_operation(
            Operation(2000, 0, DirectRecordUpdater(measure, KV, _constant(10.0)))
        )
        runner.add_operation(
            Operation(2000, 0, BoundRecordUpdater(measure.bind(KV), _constant(10.0)))
        )

    runner.run()

    now = test_clock.now()
    assert measure.collect_all()[0].points == (
        SummaryPoint(
            now,
            now,
            KV,
            16000,
            160000.0,
            (ValueAtPercentile(0.0, 10.0), ValueAtPercentile(100.0, 10.0)),
        ),
    )


def test_stress_with_different_label_sets(meter):
    measure = meter.value_recorder("testMeasure")
    label_sets = [LabelSet({f"Key_{i}": f"Value_{i}"}) for i in range(4)]
    runner = StressTestRunner(measure, collection_interval_ms=1)
    for labels in label_sets:
        runner.add_operation(
            Operation(2000, 0, DirectRecordUpdater(measure, labels, _constant(10.0)))
        )
        runner.add_operation(
            Operation(2000, 0, BoundRecordUpdater(measure.bind(labels), _constant(10.0)))
        )

    runner.run()

    points = _points_by_labels(measure.collect_all()[0])
    assert set(points) == set(label_sets)
    for labels in label_sets:
        _assert_summary(points[labels], labels, 4000, 40000.0, 10.0, 10.0)


def test_delta_stress_totals_across_collections(meter):
    """Every delta point is reported exactly once across all cycles."""
    counter = meter.from_config(
        InstrumentConfig(
            name="deltaCounter", kind="counter", value_type="long", temporality="delta"
        )
    )
    collected = []
    collected_lock = threading.Lock()

    def collect():
        metric_data = counter.collect_all()
        with collected_lock:
            collected.extend(metric_data[0].points)
        return metric_data

    runner = StressTestRunner(counter, collection_interval_ms=1, collect=collect)
    for _ in range(4):
        runner.add_operation(Operation(2000, 0, DirectRecordUpdater(counter, KV, _constant(1))))
        runner.add_operation(
            Operation(2000, 0, BoundRecordUpdater(counter.bind(KV), _constant(1)))
        )

    runner.run()
    collect()

    assert sum(point.value for point in collected) == 16000
    assert all(isinstance(point, LongPoint) for point in collected)


def test_counter_rejects_negative_values(meter):
    counter = meter.counter("requests")

    with pytest.raises(ValueError):
        counter.add(-1.0)
    with pytest.raises(ValueError):
        counter.bind().add(-1.0)


def test_up_down_counter_accepts_negative_values(meter):
    counter = meter.up_down_counter("queue", value_type=ValueType.LONG)
    counter.add(5)
    counter.add(-7)

    assert counter.collect_all()[0].points[0].value == -2


def test_long_instrument_rejects_floats(meter):
    counter = meter.counter("requests", value_type=ValueType.LONG)

    with pytest.raises(TypeError):
        counter.add(1.5)
    with pytest.raises(TypeError):
        counter.add(True)


def test_double_instrument_rejects_non_numbers(meter):
    recorder = meter.value_recorder("latency")

    with pytest.raises(TypeError):
        recorder.record("12")


def test_disabled_instrument_collects_nothing(meter):
    counter = meter.from_config(
        InstrumentConfig(name="debug_probe", kind="counter", enabled=False)
    )
    counter.add(1.0, {"k": "v"})

    assert counter.collect_all() == []


def test_sum_observer_reports_last_observed_total(meter, test_clock):
    """Sum observers report the callback's value, not a sum of observations."""
    totals = iter([10, 25])

    def callback(result):
        result.observe(next(totals), {"cpu": "0"})

    start = test_clock.now()
    observer = meter.sum_observer("cpu_time", callback=callback, value_type=ValueType.LONG)

    first = observer.collect_all()[0]
    test_clock.advance_nanos(SECOND_NANOS)
    second = observer.collect_all()[0]

    assert first.descriptor.type is DescriptorType.MONOTONIC_LONG
    assert first.points == (LongPoint(start, start, LabelSet({"cpu": "0"}), 10),)
    assert second.points == (
        LongPoint(start, start + SECOND_NANOS, LabelSet({"cpu": "0"}), 25),
    )


def test_up_down_sum_observer_is_non_monotonic(meter):
    observer = meter.up_down_sum_observer(
        "pool_size", callback=lambda result: result.observe(-3.5)
    )

    metric_data = observer.collect_all()[0]

    assert metric_data.descriptor.type is DescriptorType.NON_MONOTONIC_DOUBLE
    assert isinstance(metric_data.points[0], DoublePoint)
    assert metric_data.points[0].value == -3.5


def test_value_observer_is_delta(meter, test_clock):
    """Value observers summarize each cycle's observations only."""
    rounds = iter([[1.0, 3.0], [5.0]])

    def callback(result):
        for value in next(rounds):
            result.observe(value)

    start = test_clock.now()
    observer = meter.value_observer("temperature", callback=callback)

    first = observer.collect_all()[0].points
    test_clock.advance_nanos(SECOND_NANOS)
    second = observer.collect_all()[0].points

    _assert_summary(first[0], LabelSet(), 2, 4.0, 1.0, 3.0)
    assert first[0].start_epoch_nanos == start
    _assert_summary(second[0], LabelSet(), 1, 5.0, 5.0, 5.0)
    assert second[0].start_epoch_nanos == start
    assert second[0].epoch_nanos == start + SECOND_NANOS


def test_observer_without_callback_reports_no_points(meter):
    observer = meter.value_observer("idle")

    assert observer.collect_all()[0].points == ()


def test_observer_callback_can_only_be_set_once(meter):
    observer = meter.value_observer("temperature")
    observer.set_callback(lambda result: None)

    with pytest.raises(ValueError):
        observer.set_callback(lambda result: None)


def test_duplicate_instrument_names(meter):
    """Re-registering the same descriptor returns the existing instrument."""
    counter = meter.counter("requests", unit="1")

    assert meter.counter("requests", unit="1") is counter
    with pytest.raises(ValueError):
        meter.counter("requests", unit="ms")


@pytest.mark.parametrize("name", ["", "1abc", "has space", "a" * 64])
def test_invalid_instrument_names(meter, name):
    with pytest.raises(ValueError):
        meter.counter(name)


def test_meter_provider_reuses_meters(meter_provider):
    meter = meter_provider.get_meter("lib", "1.0")

    assert meter_provider.get_meter("lib", "1.0") is meter
    assert meter_provider.get_meter("lib", "2.0") is not meter


def test_instrument_base_class_is_abstract(meter):
    descriptor = meter.counter("requests").descriptor

    with pytest.raises(TypeError):
        Instrument(descriptor, batchers.get_noop())
