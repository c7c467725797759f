"""Shared test fixtures."""
import pytest
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.util.instrumentation import InstrumentationScope

from batchmetrics.clock import TestClock
from batchmetrics.meter import MeterProvider
from batchmetrics.state import MeterProviderSharedState, MeterSharedState

SECOND_NANOS = 1_000_000_000

RESOURCE = Resource({"resource_key": "resource_value"})
INSTRUMENTATION_LIBRARY = InstrumentationScope("batchmetrics.tests", None)


@pytest.fixture
def test_clock() -> TestClock:
    return TestClock()


@pytest.fixture
def provider_state(test_clock) -> MeterProviderSharedState:
    return MeterProviderSharedState(clock=test_clock, resource=RESOURCE)


@pytest.fixture
def meter_state() -> MeterSharedState:
    return MeterSharedState(INSTRUMENTATION_LIBRARY)


@pytest.fixture
def meter_provider(test_clock) -> MeterProvider:
    return MeterProvider(clock=test_clock, resource=RESOURCE)


@pytest.fixture
def meter(meter_provider):
    return meter_provider.get_meter(INSTRUMENTATION_LIBRARY.name)
