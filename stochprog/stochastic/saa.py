"""
Sample Average Approximation
============================

Sampled instances of a :class:`~stochprog.stochastic.program.StochasticModel`
and the statistical bounds built from them.

For a minimization model the replicated SAA optimal values estimate a lower
bound on the true optimum, and the result of a fixed decision on a fresh
sample estimates an upper bound. For maximization the roles swap.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from ..exceptions import InvalidInputError, SolveFailure
from ..result import Status
from .evaluation import decision_outcomes
from .program import StochasticModel, StochasticProgram
from .samplers import Sampler

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfidenceInterval:
    """Two-sided confidence interval."""

    lower: float
    upper: float
    confidence: float = 0.95

    @property
    def length(self) -> float:
        return self.upper - self.lower

    @property
    def midpoint(self) -> float:
        return 0.5 * (self.lower + self.upper)

    def __contains__(self, value: float) -> bool:
        return self.lower <= value <= self.upper

    def __repr__(self) -> str:
        return f"ConfidenceInterval([{self.lower:.6g}, {self.upper:.6g}], {self.confidence:.0%})"


def _check_confidence(confidence: float) -> float:
    if not 0.0 < confidence < 1.0:
        raise InvalidInputError(f"confidence must be in (0, 1), got {confidence}")
    return float(confidence)


def _interval(values: np.ndarray, confidence: float, distribution: str) -> ConfidenceInterval:
    """Interval around the mean of ``values`` (t or normal critical value)."""
    n = len(values)
    mean = float(values.mean())
    if n < 2:
        return ConfidenceInterval(mean, mean, confidence)
    alpha = 1 - confidence
    if distribution == "t":
        crit = stats.t.ppf(1 - alpha / 2, n - 1)
    else:
        crit = stats.norm.ppf(1 - alpha / 2)
    margin = float(crit * values.std(ddof=1) / np.sqrt(n))
    return ConfidenceInterval(mean - margin, mean + margin, confidence)


def SAA(
    model: StochasticModel,
    sampler: Sampler,
    n: int,
    first_stage_data: Any = None,
    second_stage_data: Any = None,
    **kwargs: Any,
) -> StochasticProgram:
    """
    Program with ``n`` scenarios drawn from ``sampler``, each of probability 1/n.

    Args:
        model: Stage recipes
        sampler: Scenario sampler
        n: Sample size
        **kwargs: Passed to :class:`StochasticProgram` (``workers``, ``solver``, ...)

    Example:
        >>> program = SAA(model, NormalSampler(100.0, 10.0, seed=1), 200)
        >>> program.optimize()
    """
    if int(n) < 1:
        raise InvalidInputError(f"sample size must be positive, got {n}")
    return model.instantiate(
        sampler.sample(int(n)),
        first_stage_data=first_stage_data,
        second_stage_data=second_stage_data,
        **kwargs,
    )


def _solve_replications(
    model: StochasticModel,
    sampler: Sampler,
    n: int,
    replications: int,
    solver=None,
    **kwargs: Any,
) -> Tuple[np.ndarray, List[np.ndarray], float]:
    """Solve ``replications`` independent SAA programs; returns values, decisions, sign."""
    if int(replications) < 1:
        raise InvalidInputError(f"replications must be positive, got {replications}")
    values, decisions = [], []
    sign = 1.0
    for rep in range(int(replications)):
        with SAA(model, sampler, n, **kwargs) as program:
            status = program.optimize(solver)
            if status != Status.OPTIMAL:
                raise SolveFailure(status, message=f"SAA replication {rep} ended with status {status}")
            values.append(program.optimal_value())
            decisions.append(np.array(program.optimal_decision()))
            sign = program.sign
        log.debug("SAA replication %d/%d: %.10g", rep + 1, replications, values[-1])
    return np.array(values), decisions, sign


def lower_bound(
    model: StochasticModel,
    sampler: Sampler,
    n: int = 100,
    replications: int = 10,
    confidence: float = 0.95,
    solver=None,
    **kwargs: Any,
) -> ConfidenceInterval:
    """
    Confidence interval of the mean SAA optimal value over replications.

    For minimization this bounds the true optimum from below (an upper
    bound for maximization). Uses the t-distribution.
    """
    confidence = _check_confidence(confidence)
    values, _, _ = _solve_replications(model, sampler, n, replications, solver, **kwargs)
    return _interval(values, confidence, "t")


def estimate_decision(
    model: StochasticModel,
    decision: Sequence[float],
    sampler: Sampler,
    n: int = 1000,
    confidence: float = 0.95,
    solver=None,
    **kwargs: Any,
) -> ConfidenceInterval:
    """
    Monte Carlo estimate of the result of ``decision`` on a fresh sample.

    Raises:
        SolveFailure: If the decision is infeasible for some sampled scenario
    """
    confidence = _check_confidence(confidence)
    with SAA(model, sampler, n, **kwargs) as program:
        outcomes = decision_outcomes(program, decision, solver)
    return _interval(outcomes, confidence, "normal")


def confidence_interval(
    model: StochasticModel,
    sampler: Sampler,
    n: int = 100,
    replications: int = 10,
    n_evaluation: int = 1000,
    confidence: float = 0.95,
    solver=None,
    **kwargs: Any,
) -> ConfidenceInterval:
    """
    Interval expected to contain the true optimal value.

    Combines the replicated SAA bound with the estimate of the best
    replication decision on an independent sample.
    """
    result = SAASolver(
        model,
        sampler,
        n_samples=n,
        n_replications=replications,
        n_evaluation=n_evaluation,
        confidence_level=confidence,
        solver=solver,
        **kwargs,
    ).solve()
    return ConfidenceInterval(result.ci_lower, result.ci_upper, confidence)


@dataclass
class SAAResult:
    """
    Outcome of a replicated SAA run.

    ``x`` is the replication decision with the best SAA value, ``objective``
    that value. ``lower_bound``/``upper_bound`` are point estimates of the
    bounds on the true optimum and ``ci_lower``/``ci_upper`` the interval
    combining both at ``confidence_level``.
    """

    x: np.ndarray
    objective: float
    lower_bound: float
    upper_bound: float
    gap_estimate: float
    ci_lower: float
    ci_upper: float
    confidence_level: float
    n_samples: int
    n_replications: int
    solve_time: float

    def __repr__(self) -> str:
        return (
            f"SAAResult(objective={self.objective:.6g}, gap_estimate={self.gap_estimate:.4g}, "
            f"ci=[{self.ci_lower:.6g}, {self.ci_upper:.6g}], "
            f"{self.n_replications}x{self.n_samples} samples)"
        )

    def summary(self) -> str:
        rows = [
            ("SAA objective", f"{self.objective:.6g}"),
            ("Bounds", f"[{self.lower_bound:.6g}, {self.upper_bound:.6g}]"),
            ("Gap estimate", f"{self.gap_estimate:.4g}"),
            (f"Confidence interval ({self.confidence_level:.0%})", f"[{self.ci_lower:.6g}, {self.ci_upper:.6g}]"),
            ("Replications", f"{self.n_replications} x {self.n_samples} scenarios"),
            ("Time", f"{self.solve_time:.3f} s"),
        ]
        width = max(len(label) for label, _ in rows)
        lines = ["SAA Solution Summary", "-" * (width + 24)]
        lines += [f"{label:<{width}}  {value}" for label, value in rows]
        return "\n".join(lines)


class SAASolver:
    """
    Replicated sample average approximation of a two-stage model.

    Each replication instantiates ``model`` on ``n_samples`` fresh scenarios
    and solves it. The mean of the replication values is a statistical bound
    on the true optimum (below it for minimization); the best replication
    decision evaluated on ``n_evaluation`` further scenarios gives the bound
    on the other side.

    Args:
        model: Stage recipes
        sampler: Scenario sampler
        n_samples: Scenarios per SAA program
        n_replications: Independent replications
        n_evaluation: Sample size for evaluating the chosen decision
            (twice ``n_samples`` by default)
        confidence_level: Level of the reported intervals
        solver: Structured solver for the SAA programs
        seed: Reseeds ``sampler`` at the start of :meth:`solve`
        **kwargs: Passed to every sampled program

    Example:
        >>> saa = SAASolver(model, UniformSampler(40.0, 100.0), n_samples=200, seed=1)
        >>> saa.solve().summary()
    """

    def __init__(
        self,
        model: StochasticModel,
        sampler: Sampler,
        n_samples: int = 100,
        n_replications: int = 10,
        n_evaluation: Optional[int] = None,
        confidence_level: float = 0.95,
        solver=None,
        seed: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.model = model
        self.sampler = sampler
        self.n_samples = int(n_samples)
        self.n_replications = int(n_replications)
        self.n_evaluation = int(n_evaluation) if n_evaluation is not None else 2 * self.n_samples
        self.confidence_level = _check_confidence(confidence_level)
        self.solver = solver
        self.seed = seed
        self.program_options = kwargs

    def solve(self) -> SAAResult:
        """Run the replications, then estimate the best decision out of sample."""
        if self.seed is not None:
            self.sampler.reseed(self.seed)
        start_time = time.perf_counter()

        values, decisions, sign = _solve_replications(
            self.model,
            self.sampler,
            self.n_samples,
            self.n_replications,
            self.solver,
            **self.program_options,
        )
        best = int(np.argmin(sign * values))
        x_best = decisions[best]

        bound = _interval(values, self.confidence_level, "t")
        estimate = estimate_decision(
            self.model,
            x_best,
            self.sampler,
            n=self.n_evaluation,
            confidence=self.confidence_level,
            solver=self.solver,
            **self.program_options,
        )

        if sign > 0:
            lower, upper = bound.midpoint, estimate.midpoint
            ci_lower, ci_upper = bound.lower, estimate.upper
        else:
            lower, upper = estimate.midpoint, bound.midpoint
            ci_lower, ci_upper = estimate.lower, bound.upper

        solve_time = time.perf_counter() - start_time
        log.info(
            "SAA: %d x %d samples, bounds [%.6g, %.6g] in %.2fs",
            self.n_replications,
            self.n_samples,
            lower,
            upper,
            solve_time,
        )
        return SAAResult(
            x=x_best,
            objective=float(values[best]),
            lower_bound=lower,
            upper_bound=upper,
            gap_estimate=upper - lower,
            ci_lower=min(ci_lower, ci_upper),
            ci_upper=max(ci_lower, ci_upper),
            confidence_level=self.confidence_level,
            n_samples=self.n_samples,
            n_replications=self.n_replications,
            solve_time=solve_time,
        )
