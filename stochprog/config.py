"""Configuration dataclasses for the structured solvers."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional

from .exceptions import InvalidInputError


@dataclass
class SolverConfig:
    """
    Settings shared by all structured solvers.

    Attributes:
        max_iterations: Cap on decomposition rounds
        tolerance: Relative optimality gap used as stopping criterion
        time_limit: Wall clock limit in seconds (None for no limit)
        verbose: Log per-iteration progress at INFO instead of DEBUG
        lp_params: Parameters handed to the LP backend
    """

    max_iterations: int = 1000
    tolerance: float = 1e-6
    time_limit: Optional[float] = None
    verbose: bool = False
    lp_params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise InvalidInputError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.tolerance < 0:
            raise InvalidInputError(f"tolerance must be non-negative, got {self.tolerance}")
        if self.time_limit is not None and self.time_limit <= 0:
            raise InvalidInputError(f"time_limit must be positive, got {self.time_limit}")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None, **overrides: Any):
        """Build a config from a mapping, rejecting unknown keys."""
        values = dict(data or {})
        values.update(overrides)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise InvalidInputError(f"unknown {cls.__name__} keys: {unknown}")
        return cls(**values)

    def with_options(self, **overrides: Any):
        return replace(self, **overrides)


@dataclass
class LShapedConfig(SolverConfig):
    """
    L-shaped settings.

    Attributes:
        multicut: One recourse variable per scenario (False aggregates cuts)
        feasibility_cuts: Derive feasibility cuts from infeasible subproblems
            instead of aborting with INFEASIBLE
        cut_tolerance: Minimum violation for an optimality cut to be added
        master_bound: Box on the first-stage columns used while the cuts
            leave the master unbounded
    """

    multicut: bool = True
    feasibility_cuts: bool = True
    cut_tolerance: float = 1e-9
    master_bound: float = 1e6

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.master_bound > 0:
            raise InvalidInputError(f"master_bound must be positive, got {self.master_bound}")
