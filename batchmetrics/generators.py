"""Synthetic value generators for recording workloads."""
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from batchmetrics.config import WorkloadConfig


class ValueGenerator(ABC):
    """Base class for value generators."""

    def __init__(self, config: WorkloadConfig, seed: int):
        self.config = config
        # Initialize RNG with deterministic seed
        self.rng = np.random.default_rng(seed)

    @abstractmethod
    def next_value(self, t_s: float) -> float:
        """Generate the next value at time ``t_s`` (seconds)."""
        pass

    def _clamp_value(self, value: float) -> float:
        """Clamp value to configured range."""
        if self.config.clamp:
            min_val, max_val = self.config.clamp
            return float(np.clip(value, min_val, max_val))
        return value


class ConstantGenerator(ValueGenerator):
    """Always the configured value."""

    def next_value(self, t_s: float) -> float:
        return self.config.value if self.config.value is not None else 1.0


class PoissonGenerator(ValueGenerator):
    """Poisson-distributed non-negative integers."""

    def next_value(self, t_s: float) -> float:
        base_rate = self.config.base_rate or 1.0
        return float(self.rng.poisson(base_rate))


class LognormalGenerator(ValueGenerator):
    def next_value(self, t_s: float) -> float:
        mu = self.config.mu or 0.0
        sigma = self.config.sigma or 1.0
        return self._clamp_value(float(self.rng.lognormal(mu, sigma)))


class ExponentialGenerator(ValueGenerator):
    def next_value(self, t_s: float) -> float:
        lam = self.config.lam or 1.0
        return self._clamp_value(float(self.rng.exponential(1.0 / lam)))


class UniformGenerator(ValueGenerator):
    def next_value(self, t_s: float) -> float:
        low = self.config.min if self.config.min is not None else 0.0
        high = self.config.max if self.config.max is not None else 1.0
        return float(self.rng.uniform(low, high))


class SineGenerator(ValueGenerator):
    """Sinusoid between min and max with the configured period."""

    def next_value(self, t_s: float) -> float:
        period = self.config.period_s or 3600
        low = self.config.min if self.config.min is not None else 0.0
        high = self.config.max if self.config.max is not None else 1.0
        amplitude = high - low
        baseline = (high + low) / 2

        phase = (t_s % period) / period
        return float(baseline + (amplitude / 2) * np.sin(2 * np.pi * phase))


class RandomWalkGenerator(ValueGenerator):
    """Gaussian random walk from the configured start."""

    def __init__(self, config: WorkloadConfig, seed: int):
        super().__init__(config, seed)
        self.current = config.start or 0.0

    def next_value(self, t_s: float) -> float:
        step = self.config.step or 0.1
        self.current = self._clamp_value(self.current + float(self.rng.normal(0, step)))
        return self.current


_GENERATORS = {
    "constant": ConstantGenerator,
    "poisson": PoissonGenerator,
    "lognormal": LognormalGenerator,
    "exponential": ExponentialGenerator,
    "uniform": UniformGenerator,
    "sine": SineGenerator,
    "random_walk": RandomWalkGenerator,
}


def create_generator(
    config: WorkloadConfig,
    global_seed: int,
    stream: int = 0,
    seed: Optional[int] = None,
) -> ValueGenerator:
    """
    Factory function to create the generator for a workload.

    Args:
        config: Workload configuration
        global_seed: Seed used when the workload does not set one
        stream: Index of the writer; each writer gets an independent stream
        seed: Explicit seed, overriding both of the above
    """
    generator_class = _GENERATORS.get(config.algorithm)
    if generator_class is None:
        raise ValueError(f"Unknown algorithm: {config.algorithm}")

    if seed is None:
        base = config.seed if config.seed is not None else global_seed
        seed = base + stream
    return generator_class(config, seed)
