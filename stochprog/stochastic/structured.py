"""
Structured Solver Protocol
==========================

Contract between a :class:`~stochprog.stochastic.program.StochasticProgram`
and a decomposition algorithm:

``build(program) -> state``
    Read the master and the partitions into algorithm state. Never mutates
    the program.
``run(state) -> Status``
    Iterate until OPTIMAL, INFEASIBLE, UNBOUNDED or ITERATION_LIMIT
    (TIME_LIMIT when a time limit is configured).
``commit(program, state)``
    Write the decision, reduced costs, duals and second-stage solutions back
    into the program, all or nothing.
``internal_solver()``
    The LP backend the solver holds, reused for auxiliary solves.

Solve rounds broadcast one first-stage decision to every partition and
gather one :class:`SubproblemOutcome` (or :class:`RoundFailure`) per scenario.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple, Union

import numpy as np

from ..config import SolverConfig
from ..exceptions import InvalidInputError, SolveFailure, StaleStateConflict
from ..model import Model
from ..result import SolveResult, Status
from ..solver import LinearSolver

log = logging.getLogger(__name__)


class CutType(Enum):
    OPTIMALITY = "optimality"
    FEASIBILITY = "feasibility"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Cut:
    """
    Linear inequality on the first-stage decision, in minimization form.

    Optimality cuts bound the recourse variable(s) of ``scenarios`` from
    below by :meth:`evaluate`; feasibility cuts require ``evaluate(x) <= 0``.

    Attributes:
        cut_type: Optimality or feasibility
        gradient: Cut slope with respect to the decision
        value: Cut value at ``decision``
        decision: Decision the cut was derived at
        scenarios: Scenario indices the cut covers
    """

    cut_type: CutType
    gradient: np.ndarray
    value: float
    decision: np.ndarray
    scenarios: Tuple[int, ...] = ()

    @property
    def constant(self) -> float:
        return float(self.value - self.gradient @ self.decision)

    def evaluate(self, x: np.ndarray) -> float:
        return float(self.constant + self.gradient @ np.asarray(x, dtype=np.float64))


@dataclass(frozen=True)
class SubproblemOutcome:
    """
    Solved subproblem at a broadcast decision.

    ``objective``, ``gradient`` and ``result`` use the subproblem's own
    objective sense; ``gradient`` is d(objective)/d(decision).
    """

    index: int
    probability: float
    objective: float
    gradient: np.ndarray
    result: SolveResult


@dataclass(frozen=True)
class RoundFailure:
    """A subproblem that did not solve to optimality during a round."""

    index: int
    probability: float
    status: Status


@dataclass
class SolveRound:
    decision: np.ndarray
    outcomes: List[SubproblemOutcome] = field(default_factory=list)
    failures: List[RoundFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def expected_recourse(self) -> float:
        return float(sum(o.probability * o.objective for o in self.outcomes))

    def results(self) -> List[SolveResult]:
        return [o.result for o in sorted(self.outcomes, key=lambda o: o.index)]


def recourse_gradient(model: Model, result: SolveResult, dims: int) -> np.ndarray:
    """
    Gradient of a subproblem's optimal value with respect to the decision.

    ``c_j - sum_i y_i * T_ij`` over the master terms ``(i, j, T_ij)``, with
    ``y`` the row duals (objective sensitivity to the right-hand side).
    """
    gradient = np.zeros(dims)
    if model.num_decisions:
        gradient += model.decision_objective()
    for row, col, coef in model.masterterms():
        gradient[col] -= result.y[row] * coef
    return gradient


def solve_round(program, backend: LinearSolver, decision: np.ndarray) -> SolveRound:
    """
    Broadcast ``decision`` and solve every subproblem.

    Partitions run through the program's transport; results become visible
    only after every partition finished.
    """
    decision = np.array(decision, dtype=np.float64)
    decision.setflags(write=False)
    dims = len(decision)

    def evaluate(index: int, scenario, model: Model):
        result = backend.optimize(model, decision=decision)
        if result.status != Status.OPTIMAL:
            return RoundFailure(index, scenario.probability, result.status)
        return SubproblemOutcome(
            index=index,
            probability=scenario.probability,
            objective=result.objective,
            gradient=recourse_gradient(model, result, dims),
            result=result,
        )

    round_ = SolveRound(decision=decision)
    for item in program.collect(evaluate):
        if isinstance(item, RoundFailure):
            round_.failures.append(item)
        else:
            round_.outcomes.append(item)
    return round_


@dataclass
class AlgorithmState:
    """
    Mutable state of one structured solve.

    Attributes:
        program: Program the state was built from
        config: Solver configuration
        status: Current (or terminal) status
        iterations: Completed iterations
        decision: Resolved first-stage decision
        objective: Objective value in the program's sense
        second_stage: Per-scenario results at ``decision``
        reduced_costs: First-stage reduced costs
        duals: First-stage constraint duals
    """

    program: Any
    config: SolverConfig
    sign: float = 1.0
    status: Status = Status.UNSOLVED
    iterations: int = 0
    decision: Optional[np.ndarray] = None
    objective: float = float("nan")
    second_stage: List[SolveResult] = field(default_factory=list)
    reduced_costs: Optional[np.ndarray] = None
    duals: Optional[np.ndarray] = None
    master_result: Optional[SolveResult] = None
    started: float = field(default_factory=time.perf_counter)
    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        """Stop at the next transition point, discarding the round in flight."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started

    @property
    def done(self) -> bool:
        return self.status != Status.UNSOLVED

    def out_of_time(self) -> bool:
        limit = self.config.time_limit
        return limit is not None and self.elapsed > limit


class StructuredSolver(ABC):
    """
    Base class of decomposition algorithms working on a program.

    Args:
        config: Config object or mapping (keys of ``config_class``)
        backend: LP backend for master and subproblems
        **options: Overrides applied to ``config``
    """

    name = "structured"
    config_class = SolverConfig

    def __init__(
        self,
        config: Optional[Union[SolverConfig, Mapping[str, Any]]] = None,
        backend: Optional[LinearSolver] = None,
        **options: Any,
    ) -> None:
        if config is None or isinstance(config, Mapping):
            config = self.config_class.from_dict(config, **options)
        elif not isinstance(config, self.config_class):
            raise InvalidInputError(
                f"{type(self).__name__} needs a {self.config_class.__name__}, got {type(config).__name__}"
            )
        elif options:
            config = config.with_options(**options)
        self.config = config
        self.backend = backend if backend is not None else LinearSolver(config.lp_params)

    @abstractmethod
    def build(self, program) -> AlgorithmState:
        """Create algorithm state from the program's master and partitions."""

    @abstractmethod
    def run(self, state: AlgorithmState) -> Status:
        """Iterate until a terminal status."""

    def commit(self, program, state: AlgorithmState) -> None:
        """Write the resolved solution into ``program`` (all or nothing)."""
        from .program import Solution

        if state.program is not program:
            raise InvalidInputError("algorithm state belongs to another program")
        if state.status != Status.OPTIMAL or state.decision is None:
            raise SolveFailure(state.status, message=f"nothing to commit, status {state.status}")
        dims = len(state.decision)
        solution = Solution(
            decision=state.decision,
            objective=state.objective,
            reduced_costs=state.reduced_costs if state.reduced_costs is not None else np.zeros(dims),
            duals=state.duals if state.duals is not None else np.zeros(0),
            status=state.status,
            solver=str(self),
            iterations=state.iterations,
        )
        program.commit_solution(solution, state.second_stage, state.master_result)
        log.debug("%s committed objective %.10g", self, state.objective)

    def internal_solver(self) -> Optional[LinearSolver]:
        return self.backend

    def _check_program(self, program) -> float:
        """Require a generated, well-formed program; return its objective sign."""
        if program.deferred:
            raise StaleStateConflict("generate() the program before building a solver")
        program.validate(normalize=False)
        master = program.stage_one_model()
        for i in range(program.nscenarios):
            if program.subproblem(i).sense != master.sense:
                raise InvalidInputError(
                    f"subproblem {i} has objective sense {program.subproblem(i).sense}, "
                    f"master has {master.sense}"
                )
        return -1.0 if master.sense == "maximize" else 1.0

    def _log_level(self) -> int:
        return logging.INFO if self.config.verbose else logging.DEBUG

    def __str__(self) -> str:
        return f"{self.name} ({self.backend})"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config!r})"
