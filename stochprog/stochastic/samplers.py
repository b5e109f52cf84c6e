"""
Scenario Samplers
=================

Samplers draw scenarios from a distribution of the uncertain parameters.
Every sampler owns a seeded numpy generator so that sampled programs are
reproducible.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence, Union

import numpy as np

from ..exceptions import InvalidInputError, ProbabilityError
from .scenarios import Scenario


class Sampler(ABC):
    """
    Base class for scenario samplers.

    Subclasses implement :meth:`draw`, returning one payload.

    Args:
        seed: Seed of the sampler's random generator
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self.rng = np.random.default_rng(seed)

    @abstractmethod
    def draw(self) -> Any:
        """Draw one scenario payload."""

    def reseed(self, seed: Optional[int]) -> None:
        self.rng = np.random.default_rng(seed)

    def __call__(self) -> Scenario:
        return Scenario(1.0, data=self.draw())

    def sample(self, n: int) -> List[Scenario]:
        """Draw ``n`` scenarios, each with probability ``1/n``."""
        if n < 1:
            raise InvalidInputError(f"sample size must be positive, got {n}")
        return [Scenario(1.0 / n, data=self.draw()) for _ in range(n)]


def _scalar_or_array(value: np.ndarray, scalar: bool) -> Union[float, np.ndarray]:
    return float(value) if scalar else value


class DiscreteSampler(Sampler):
    """
    Discrete distribution with finite support.

    Args:
        values: Possible payloads (numbers, arrays or any records)
        probabilities: Probability of each value

    Example:
        >>> # Demand can be 10, 20, or 30 with probabilities 0.2, 0.5, 0.3
        >>> sampler = DiscreteSampler([10.0, 20.0, 30.0], [0.2, 0.5, 0.3], seed=1)
        >>> scenarios = sampler.sample(100)
    """

    def __init__(
        self,
        values: Sequence[Any],
        probabilities: Optional[Sequence[float]] = None,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__(seed)
        self.values = list(values)
        if not self.values:
            raise InvalidInputError("DiscreteSampler needs at least one value")
        if probabilities is None:
            probabilities = np.full(len(self.values), 1.0 / len(self.values))
        probs = np.asarray(probabilities, dtype=np.float64)
        if probs.shape != (len(self.values),) or np.any(probs < 0) or probs.sum() <= 0:
            raise ProbabilityError("probabilities must be non-negative, one per value")
        self.probabilities = probs / probs.sum()

    def draw(self) -> Any:
        idx = self.rng.choice(len(self.values), p=self.probabilities)
        value = self.values[idx]
        return value.copy() if isinstance(value, np.ndarray) else value

    def scenarios(self) -> List[Scenario]:
        """The full support as scenarios (exact distribution)."""
        return [Scenario(float(p), data=v) for v, p in zip(self.values, self.probabilities)]


class NormalSampler(Sampler):
    """
    Multivariate normal distribution.

    Args:
        mean: Mean (scalar or vector)
        std: Standard deviation (scalar or vector)
        cov: Covariance matrix (optional, overrides std)
        lower: Optional elementwise clip applied to draws
    """

    def __init__(
        self,
        mean: Union[float, Sequence[float]],
        std: Optional[Union[float, Sequence[float]]] = None,
        cov: Optional[np.ndarray] = None,
        lower: Optional[float] = None,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__(seed)
        self._scalar = np.ndim(mean) == 0
        self.mean_ = np.atleast_1d(np.asarray(mean, dtype=np.float64))
        if cov is not None:
            self.cov = np.asarray(cov, dtype=np.float64)
        elif std is not None:
            std_arr = np.broadcast_to(np.asarray(std, dtype=np.float64), self.mean_.shape)
            self.cov = np.diag(std_arr ** 2)
        else:
            self.cov = np.eye(len(self.mean_))
        if self.cov.shape != (len(self.mean_), len(self.mean_)):
            raise InvalidInputError(f"cov must be {len(self.mean_)}x{len(self.mean_)}")
        self.lower = lower

    def draw(self) -> Union[float, np.ndarray]:
        value = self.rng.multivariate_normal(self.mean_, self.cov)
        if self.lower is not None:
            value = np.maximum(value, self.lower)
        return _scalar_or_array(value[0] if self._scalar else value, self._scalar)

    def mean(self) -> np.ndarray:
        return self.mean_.copy()


class UniformSampler(Sampler):
    """Uniform distribution on ``[low, high]`` (scalar or elementwise)."""

    def __init__(self, low, high, seed: Optional[int] = None) -> None:
        super().__init__(seed)
        self._scalar = np.ndim(low) == 0 and np.ndim(high) == 0
        self.low = np.asarray(low, dtype=np.float64)
        self.high = np.asarray(high, dtype=np.float64)
        if np.any(self.low > self.high):
            raise InvalidInputError("low must not exceed high")

    def draw(self) -> Union[float, np.ndarray]:
        return _scalar_or_array(self.rng.uniform(self.low, self.high), self._scalar)

    def mean(self) -> np.ndarray:
        return (self.low + self.high) / 2


class LogNormalSampler(Sampler):
    """
    Log-normal distribution (always positive).

    Args:
        mu: Mean of log(X)
        sigma: Std of log(X)
    """

    def __init__(self, mu, sigma, seed: Optional[int] = None) -> None:
        super().__init__(seed)
        self._scalar = np.ndim(mu) == 0 and np.ndim(sigma) == 0
        self.mu = np.asarray(mu, dtype=np.float64)
        self.sigma = np.asarray(sigma, dtype=np.float64)

    def draw(self) -> Union[float, np.ndarray]:
        return _scalar_or_array(self.rng.lognormal(self.mu, self.sigma), self._scalar)

    def mean(self) -> np.ndarray:
        return np.exp(self.mu + self.sigma ** 2 / 2)


class FunctionSampler(Sampler):
    """Sampler built from a callable ``func(rng) -> payload``."""

    def __init__(self, func: Callable[[np.random.Generator], Any], seed: Optional[int] = None) -> None:
        super().__init__(seed)
        self.func = func

    def draw(self) -> Any:
        return self.func(self.rng)
