"""Configuration models using Pydantic for validation."""
from typing import Dict, List, Optional, Literal
from pydantic import BaseModel, Field, field_validator, model_validator
import os


class LabelValueSpec(BaseModel):
    """Specification for label value generation."""
    values: Optional[List[str]] = None
    range: Optional[List[int]] = None  # [start, end]
    fmt: Optional[str] = None  # Format string for range values


class CardinalityProfile(BaseModel):
    """Cardinality profile defining label spaces."""
    labels: Dict[str, LabelValueSpec] = Field(default_factory=dict)
    series_cap: Optional[int] = None
    sampling_strategy: Literal["first_n", "hash"] = "first_n"


class InstrumentConfig(BaseModel):
    """Configuration for a single instrument and its batcher."""
    name: str
    kind: Literal[
        "counter",
        "up_down_counter",
        "value_recorder",
        "sum_observer",
        "up_down_sum_observer",
        "value_observer",
    ]
    value_type: Literal["long", "double"] = "double"
    description: str = ""
    unit: str = "1"
    constant_labels: Dict[str, str] = Field(default_factory=dict)

    # None means the instrument kind's default
    aggregation: Optional[Literal["sum", "count", "last_value", "min_max_sum_count", "noop"]] = None
    temporality: Optional[Literal["cumulative", "delta"]] = None

    # Disabled instruments get a no-op batcher
    enabled: bool = True


class WorkloadConfig(BaseModel):
    """Synthetic recording workload driven against one instrument."""
    instrument: str
    profile: str
    algorithm: Literal[
        "constant", "poisson", "lognormal", "exponential", "uniform", "sine", "random_walk"
    ] = "constant"
    seed: Optional[int] = None

    # Concurrency
    writers: int = Field(default=4, ge=1)
    updates_per_writer: int = Field(default=1000, ge=1)
    update_delay_ms: float = Field(default=0.0, ge=0.0)
    bound: bool = False

    # Algorithm-specific parameters
    value: Optional[float] = None
    base_rate: Optional[float] = None
    mu: Optional[float] = None
    sigma: Optional[float] = None
    lam: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    period_s: Optional[int] = None
    start: Optional[float] = None
    step: Optional[float] = None
    clamp: Optional[List[float]] = None


class ResourceConfig(BaseModel):
    """Resource attributes attached to every exported metric."""
    service_name: str = "batchmetrics"
    attributes: Dict[str, str] = Field(default_factory=dict)


class LoggingExporterConfig(BaseModel):
    """Exporter that logs every collected metric."""
    enabled: bool = True
    level: str = "INFO"


class ExportersConfig(BaseModel):
    """Configuration for all exporters."""
    logging: LoggingExporterConfig = Field(default_factory=LoggingExporterConfig)
    in_memory: bool = False


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    collection_interval_s: float = Field(default=10.0, gt=0)
    seed: int = 42
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_port: int = 8081
    self_metrics_prefix: str = "batchmetrics_"


class Config(BaseModel):
    """Root configuration model."""
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    resource: ResourceConfig = Field(default_factory=ResourceConfig)
    exporters: ExportersConfig = Field(default_factory=ExportersConfig)
    profiles: Dict[str, CardinalityProfile] = Field(default_factory=dict)
    instruments: List[InstrumentConfig] = Field(default_factory=list)
    workloads: List[WorkloadConfig] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    @field_validator('instruments')
    @classmethod
    def validate_instruments(cls, v):
        """Validate instrument configurations."""
        if not v:
            raise ValueError("At least one instrument must be defined")

        names = [i.name for i in v]
        if len(names) != len(set(names)):
            raise ValueError("Instrument names must be unique")

        return v

    @model_validator(mode='after')
    def validate_workload_references(self):
        """Ensure workloads reference existing instruments and profiles."""
        instrument_names = {i.name for i in self.instruments}
        profile_names = set(self.profiles.keys())
        for workload in self.workloads:
            if workload.instrument not in instrument_names:
                raise ValueError(
                    f"Workload references undefined instrument '{workload.instrument}'"
                )
            if workload.profile not in profile_names:
                raise ValueError(
                    f"Workload for '{workload.instrument}' references undefined profile '{workload.profile}'"
                )
        return self

    def instrument(self, name: str) -> Optional[InstrumentConfig]:
        for instrument in self.instruments:
            if instrument.name == name:
                return instrument
        return None


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    if env_interval := os.getenv('COLLECTION_INTERVAL_S'):
        raw_config.setdefault('global', {})['collection_interval_s'] = env_interval

    try:
        config = Config(**raw_config)
        return config
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
