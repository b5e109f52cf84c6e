"""
Solve Results
=============

Status codes and the result record returned by the LP backend. Structured
solvers report the same :class:`Status` values.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np


class Status(Enum):
    """
    Outcome of an LP solve or a structured solver run.

    ``ITERATION_LIMIT`` is also what a cancelled run reports.
    """
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    ITERATION_LIMIT = "iteration_limit"
    TIME_LIMIT = "time_limit"
    NUMERICAL_ERROR = "numerical_error"
    UNSOLVED = "unsolved"

    def __str__(self) -> str:
        return self.value

    @property
    def is_successful(self) -> bool:
        return self is Status.OPTIMAL

    @property
    def has_solution(self) -> bool:
        """Whether the backend returns a primal point (possibly not optimal)."""
        return self in (Status.OPTIMAL, Status.ITERATION_LIMIT, Status.TIME_LIMIT)


@dataclass
class SolveResult:
    """
    Primal and dual solution of one LP.

    Everything is reported in the model's own objective sense: ``objective``
    includes the constant term, ``y[i]`` is d(objective)/d(rhs of row i) and
    ``reduced_costs[j]`` is d(objective)/d(active bound of column j).

    Example:
        >>> result = LinearSolver().optimize(model)
        >>> if result.status == Status.OPTIMAL:
        ...     print(result.objective, result.value(x))
    """

    status: Status
    objective: float
    x: np.ndarray
    y: np.ndarray
    iterations: int
    solve_time: float
    reduced_costs: Optional[np.ndarray] = None
    gap: float = 0.0

    def value(self, var) -> float:
        return float(self.x[var.index])

    def values(self, variables: Sequence) -> np.ndarray:
        return self.x[[v.index for v in variables]]

    def dual(self, constr) -> float:
        return float(self.y[constr.index])

    def reduced_cost(self, var) -> float:
        if self.reduced_costs is None:
            return 0.0
        return float(self.reduced_costs[var.index])

    def __repr__(self) -> str:
        return (
            f"SolveResult({self.status}, objective={self.objective:.6g}, "
            f"iterations={self.iterations}, {self.solve_time:.4f}s)"
        )

    def summary(self) -> str:
        """Printable block with status, objective and problem size."""
        rule = "-" * 44
        return "\n".join(
            [
                rule,
                f"Status       {self.status}",
                f"Objective    {self.objective:.10g}",
                f"Columns      {len(self.x)}",
                f"Rows         {len(self.y)}",
                f"Iterations   {self.iterations}",
                f"Solve time   {self.solve_time:.4f} s",
                rule,
            ]
        )
