"""
Scenario Management
===================

Scenarios and the weighted-sum reduction used to form expected scenarios.
"""

from __future__ import annotations

import dataclasses
import numbers
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence

import numpy as np

from ..exceptions import NotExpectable, ProbabilityError


@dataclass(frozen=True)
class Scenario:
    """
    A single scenario in a stochastic program.

    Represents one possible realization of the uncertain parameters
    with an associated probability.

    Args:
        probability: Scenario probability in [0, 1]
        data: Payload handed to the second-stage recipe
        name: Optional scenario identifier

    Example:
        >>> scenario = Scenario(0.4, data=np.array([-24.0, -28.0, 500.0, 100.0]))
    """

    probability: float
    data: Any = None
    name: Optional[str] = None

    def __post_init__(self):
        p = float(self.probability)
        if not np.isfinite(p) or p < 0 or p > 1:
            raise ProbabilityError(f"Probability must be in [0,1], got {self.probability}")
        object.__setattr__(self, "probability", p)

    def scale_probability(self, factor: float) -> "Scenario":
        """Return a copy with the probability multiplied by ``factor``."""
        return replace(self, probability=self.probability * factor)

    def with_probability(self, probability: float) -> "Scenario":
        return replace(self, probability=probability)

    def __repr__(self) -> str:
        label = f"{self.name}, " if self.name else ""
        return f"Scenario({label}p={self.probability:.4g})"


def _is_real(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def expectation(payloads: Sequence[Any], weights: Sequence[float]) -> Any:
    """
    Weighted sum of scenario payloads.

    Supported payloads are real numbers, numpy arrays, dataclasses,
    namedtuples, tuples/lists and mappings whose fields are themselves
    supported, and any type defining an ``expectation(payloads, weights)``
    classmethod.

    Raises:
        NotExpectable: If a payload has no weighted-sum reduction
    """
    if len(payloads) == 0:
        raise ProbabilityError("cannot take the expectation of an empty scenario set")
    weights = [float(w) for w in weights]
    first = payloads[0]
    kind = type(first)

    hook = getattr(kind, "expectation", None)
    if hook is not None and callable(hook):
        return hook(list(payloads), weights)

    if _is_real(first):
        if not all(_is_real(p) for p in payloads):
            raise NotExpectable(kind)
        return float(sum(w * float(p) for p, w in zip(payloads, weights)))

    if isinstance(first, np.ndarray):
        arrays = [np.asarray(p) for p in payloads]
        if any(a.shape != first.shape for a in arrays) or not np.issubdtype(first.dtype, np.number):
            raise NotExpectable(kind)
        return sum(w * a.astype(np.float64) for a, w in zip(arrays, weights))

    if any(type(p) is not kind for p in payloads):
        raise NotExpectable(kind)

    if dataclasses.is_dataclass(first):
        values = {
            f.name: expectation([getattr(p, f.name) for p in payloads], weights)
            for f in dataclasses.fields(first)
            if f.init
        }
        return replace(first, **values)

    if isinstance(first, tuple) and hasattr(first, "_fields"):
        return kind(*(expectation(list(col), weights) for col in zip(*payloads)))

    if isinstance(first, (tuple, list)):
        if any(len(p) != len(first) for p in payloads):
            raise NotExpectable(kind)
        return kind(expectation(list(col), weights) for col in zip(*payloads))

    if isinstance(first, Mapping):
        keys = list(first.keys())
        if any(set(p.keys()) != set(keys) for p in payloads):
            raise NotExpectable(kind)
        return {k: expectation([p[k] for p in payloads], weights) for k in keys}

    raise NotExpectable(kind)


def expected(scenarios: Sequence[Scenario], name: str = "expected") -> Scenario:
    """
    Fold scenarios into their probability-weighted expected scenario.

    Probabilities are normalized by their total mass, so partial sets
    (e.g. one partition) give their conditional expectation.
    """
    if not scenarios:
        raise ProbabilityError("cannot take the expectation of an empty scenario set")
    mass = sum(s.probability for s in scenarios)
    if mass <= 0:
        raise ProbabilityError("scenario probabilities sum to zero")
    data = expectation([s.data for s in scenarios], [s.probability / mass for s in scenarios])
    return Scenario(1.0, data=data, name=name)
