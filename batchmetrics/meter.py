"""Meter provider and meter: build instruments and pick their batchers."""
import logging
import re
import threading
from typing import Dict, List, Mapping, Optional, Type

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.util.instrumentation import InstrumentationScope

from batchmetrics import batcher as batchers
from batchmetrics.aggregation import default_aggregation, default_delta, get_aggregation
from batchmetrics.batcher import Batcher
from batchmetrics.clock import Clock, SystemClock
from batchmetrics.config import InstrumentConfig
from batchmetrics.data import InstrumentDescriptor, InstrumentKind, MetricData, ValueType
from batchmetrics.instruments import (
    AsynchronousInstrument,
    Callback,
    Counter,
    Instrument,
    SumObserver,
    UpDownCounter,
    UpDownSumObserver,
    ValueObserver,
    ValueRecorder,
)
from batchmetrics.labels import LabelSet, validate_label_names
from batchmetrics.state import MeterProviderSharedState, MeterSharedState

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9_.\-]*$')
_NAME_MAX_LENGTH = 63

_INSTRUMENT_CLASSES: Dict[InstrumentKind, Type[Instrument]] = {
    InstrumentKind.COUNTER: Counter,
    InstrumentKind.UP_DOWN_COUNTER: UpDownCounter,
    InstrumentKind.VALUE_RECORDER: ValueRecorder,
    InstrumentKind.SUM_OBSERVER: SumObserver,
    InstrumentKind.UP_DOWN_SUM_OBSERVER: UpDownSumObserver,
    InstrumentKind.VALUE_OBSERVER: ValueObserver,
}


def validate_instrument_name(name: str):
    """Instrument names must match [a-zA-Z][a-zA-Z0-9_.-]* and be at most 63 chars."""
    if not name or len(name) > _NAME_MAX_LENGTH or not _NAME_PATTERN.match(name):
        raise ValueError(f"Invalid instrument name: {name!r}")


def create_batcher(
    descriptor: InstrumentDescriptor,
    provider_state: MeterProviderSharedState,
    meter_state: MeterSharedState,
    config: Optional[InstrumentConfig] = None,
) -> Batcher:
    """Choose the batcher for an instrument from its kind and optional config."""
    if config is not None and not config.enabled:
        return batchers.get_noop()

    if config is not None and config.aggregation is not None:
        aggregation = get_aggregation(config.aggregation)
    else:
        aggregation = default_aggregation(descriptor.kind)

    temporality = config.temporality if config is not None else None
    if default_delta(descriptor.kind, temporality):
        return batchers.get_delta_all_labels(descriptor, provider_state, meter_state, aggregation)
    return batchers.get_cumulative_all_labels(descriptor, provider_state, meter_state, aggregation)


class Meter:
    """Creates and tracks the instruments of one instrumentation library."""

    def __init__(
        self,
        provider_state: MeterProviderSharedState,
        instrumentation_library: InstrumentationScope,
    ):
        self.provider_state = provider_state
        self.meter_state = MeterSharedState(instrumentation_library)
        self._instruments: Dict[str, Instrument] = {}
        self._lock = threading.Lock()

    @property
    def instruments(self) -> List[Instrument]:
        with self._lock:
            return list(self._instruments.values())

    def counter(self, name: str, **kwargs) -> Counter:
        return self._build(name, InstrumentKind.COUNTER, **kwargs)

    def up_down_counter(self, name: str, **kwargs) -> UpDownCounter:
        return self._build(name, InstrumentKind.UP_DOWN_COUNTER, **kwargs)

    def value_recorder(self, name: str, **kwargs) -> ValueRecorder:
        return self._build(name, InstrumentKind.VALUE_RECORDER, **kwargs)

    def sum_observer(self, name: str, callback: Optional[Callback] = None, **kwargs) -> SumObserver:
        return self._build(name, InstrumentKind.SUM_OBSERVER, callback=callback, **kwargs)

    def up_down_sum_observer(
        self, name: str, callback: Optional[Callback] = None, **kwargs
    ) -> UpDownSumObserver:
        return self._build(name, InstrumentKind.UP_DOWN_SUM_OBSERVER, callback=callback, **kwargs)

    def value_observer(self, name: str, callback: Optional[Callback] = None, **kwargs) -> ValueObserver:
        return self._build(name, InstrumentKind.VALUE_OBSERVER, callback=callback, **kwargs)

    def from_config(self, config: InstrumentConfig) -> Instrument:
        """Build an instrument described by configuration."""
        return self._build(
            config.name,
            InstrumentKind(config.kind),
            description=config.description,
            unit=config.unit,
            constant_labels=config.constant_labels,
            value_type=ValueType(config.value_type),
            config=config,
        )

    def _build(
        self,
        name: str,
        kind: InstrumentKind,
        description: str = "",
        unit: str = "1",
        constant_labels: Optional[Mapping[str, str]] = None,
        value_type: ValueType = ValueType.DOUBLE,
        config: Optional[InstrumentConfig] = None,
        callback: Optional[Callback] = None,
    ):
        validate_instrument_name(name)
        labels = LabelSet.of(constant_labels)
        if not validate_label_names(labels):
            raise ValueError(f"Invalid constant label names: {list(labels.keys())}")

        descriptor = InstrumentDescriptor(
            name=name,
            description=description,
            unit=unit,
            kind=kind,
            value_type=ValueType(value_type),
            constant_labels=labels,
        )

        with self._lock:
            existing = self._instruments.get(name)
            if existing is not None:
                if existing.descriptor != descriptor:
                    raise ValueError(
                        f"Instrument '{name}' already registered with a different descriptor"
                    )
                return existing

            batcher = create_batcher(descriptor, self.provider_state, self.meter_state, config)
            instrument_class = _INSTRUMENT_CLASSES[kind]
            if issubclass(instrument_class, AsynchronousInstrument):
                instrument = instrument_class(descriptor, batcher, callback)
            else:
                instrument = instrument_class(descriptor, batcher)
            self._instruments[name] = instrument

        logger.info(
            f"Registered {kind.value} '{name}' ({descriptor.value_type.value}) "
            f"with {type(batcher).__name__}"
        )
        return instrument

    def collect_all(self) -> List[MetricData]:
        """Collect every instrument of this meter."""
        result: List[MetricData] = []
        for instrument in self.instruments:
            result.extend(instrument.collect_all())
        return result


class MeterProvider:
    """Owns the clock and resource, and hands out meters."""

    def __init__(self, clock: Optional[Clock] = None, resource: Optional[Resource] = None):
        self.shared_state = MeterProviderSharedState(
            clock=clock or SystemClock(),
            resource=resource if resource is not None else Resource.get_empty(),
        )
        self._meters: Dict[InstrumentationScope, Meter] = {}
        self._lock = threading.Lock()

    def get_meter(self, name: str, version: Optional[str] = None) -> Meter:
        """Return the meter for an instrumentation library, creating it once."""
        scope = InstrumentationScope(name, version)
        with self._lock:
            meter = self._meters.get(scope)
            if meter is None:
                meter = Meter(self.shared_state, scope)
                self._meters[scope] = meter
            return meter

    @property
    def meters(self) -> List[Meter]:
        with self._lock:
            return list(self._meters.values())

    def instruments(self) -> List[Instrument]:
        return [i for meter in self.meters for i in meter.instruments]
