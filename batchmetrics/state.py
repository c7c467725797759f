"""State shared by every instrument of a provider or a meter."""
from dataclasses import dataclass, field

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.util.instrumentation import InstrumentationScope

from batchmetrics.clock import Clock, SystemClock


@dataclass(frozen=True)
class MeterProviderSharedState:
    """Clock and resource shared by all meters of a provider."""
    clock: Clock = field(default_factory=SystemClock)
    resource: Resource = field(default_factory=Resource.get_empty)


@dataclass(frozen=True)
class MeterSharedState:
    """Instrumentation library identity shared by a meter's instruments."""
    instrumentation_library: InstrumentationScope
