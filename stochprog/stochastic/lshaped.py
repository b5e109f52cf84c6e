"""
L-shaped Method
===============

Benders decomposition of a two-stage program, written as an explicit state
machine::

    INIT -> MASTER_SOLVE -> BROADCAST -> SUBPROBLEM_SOLVE -> AGGREGATE
                 ^                                               |
                 +-----------------------------------------------+
                                                      AGGREGATE -> CONVERGED

The master is kept in minimization form: for a maximization program every
objective, gradient and bound is multiplied by ``sign = -1``. Recourse
variables (one per scenario in multi-cut mode, one in total otherwise) stay
fixed at zero until their first optimality cut, and the lower bound is only
reported once all of them are active. A master the cuts do not bound yet is
re-solved with its first-stage columns boxed by ``master_bound``; the run
only ends UNBOUNDED if it converges while the box is still needed.

References
----------
- Van Slyke & Wets (1969): "L-shaped linear programs with applications to
  optimal control and stochastic programming"
- Birge & Louveaux (2011): "Introduction to Stochastic Programming", ch. 5
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
from scipy import sparse

from ..config import LShapedConfig
from ..exceptions import SolveFailure
from ..model import Model
from ..result import SolveResult, Status
from ..solver import solve
from .structured import (
    AlgorithmState,
    Cut,
    CutType,
    RoundFailure,
    SolveRound,
    StructuredSolver,
    solve_round,
)

log = logging.getLogger(__name__)


class Phase(Enum):
    INIT = "init"
    MASTER_SOLVE = "master_solve"
    BROADCAST = "broadcast"
    SUBPROBLEM_SOLVE = "subproblem_solve"
    AGGREGATE = "aggregate"
    CONVERGED = "converged"
    TERMINATED = "terminated"

    def __str__(self) -> str:
        return self.value


@dataclass
class LShapedState(AlgorithmState):
    """
    L-shaped algorithm state.

    Attributes:
        phase: Current phase of the state machine
        lower_bound: Master bound (minimization form)
        upper_bound: Best evaluated decision (minimization form)
        cuts: Every cut added to the master
        active: Which recourse variables are bounded by a cut
        boxed: Whether the last master needed the ``master_bound`` box
    """

    phase: Phase = Phase.INIT
    nfirst: int = 0
    constant: float = 0.0
    probabilities: np.ndarray = field(default_factory=lambda: np.zeros(0))
    c: np.ndarray = field(default_factory=lambda: np.zeros(0))
    A: Any = None
    b: np.ndarray = field(default_factory=lambda: np.zeros(0))
    senses: List[str] = field(default_factory=list)
    lb: np.ndarray = field(default_factory=lambda: np.zeros(0))
    ub: np.ndarray = field(default_factory=lambda: np.zeros(0))
    active: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=bool))
    cuts: List[Cut] = field(default_factory=list)
    cut_rows: List[np.ndarray] = field(default_factory=list)
    cut_rhs: List[float] = field(default_factory=list)
    lower_bound: float = -np.inf
    upper_bound: float = np.inf
    candidate: Optional[np.ndarray] = None
    master_solution: Optional[SolveResult] = None
    round: Optional[SolveRound] = None
    incumbent: Optional[Tuple[np.ndarray, SolveRound, SolveResult]] = None
    boxed: bool = False

    @property
    def ntheta(self) -> int:
        return len(self.active)

    @property
    def gap(self) -> float:
        if not np.isfinite(self.lower_bound) or not np.isfinite(self.upper_bound):
            return np.inf
        return (self.upper_bound - self.lower_bound) / max(1.0, abs(self.upper_bound))


def phase_one(model: Model, decision: np.ndarray, dims: int, params: Optional[Dict[str, Any]] = None):
    """
    Infeasibility measure of a subproblem at ``decision`` and its gradient.

    Minimizes the total constraint violation with one slack per row side.

    Returns:
        ``(value, gradient)``; a positive value means infeasible
    """
    form = model.standard_form(decision)
    m, n = form.shape
    rows, cols, data = [], [], []
    for i, sense in enumerate(form.senses):
        signs = {"<=": (-1.0,), ">=": (1.0,)}.get(sense, (1.0, -1.0))
        for coef in signs:
            rows.append(i)
            cols.append(len(cols))
            data.append(coef)
    ns = len(cols)
    slack = sparse.csr_matrix((data, (rows, cols)), shape=(m, ns))
    result = solve(
        c=np.concatenate([np.zeros(n), np.ones(ns)]),
        A=sparse.hstack([form.A, slack], format="csr"),
        b=form.b,
        lb=np.concatenate([form.lb, np.zeros(ns)]),
        ub=np.concatenate([form.ub, np.full(ns, np.inf)]),
        constraint_senses=list(form.senses),
        params=params,
    )
    if result.status != Status.OPTIMAL:
        raise SolveFailure(result.status, message=f"phase-one problem ended with status {result.status}")
    gradient = np.zeros(dims)
    for row, col, coef in model.masterterms():
        gradient[col] -= result.y[row] * coef
    return result.objective, gradient


class LShapedSolver(StructuredSolver):
    """
    L-shaped (Benders) structured solver.

    Args:
        config: :class:`~stochprog.config.LShapedConfig` or mapping
        backend: LP backend for the master and the subproblems
        **options: Config overrides, e.g. ``multicut=False``

    Example:
        >>> solver = LShapedSolver(tolerance=1e-8, max_iterations=200)
        >>> status = program.optimize(solver)
    """

    name = "L-shaped"
    config_class = LShapedConfig

    def build(self, program) -> LShapedState:
        sign = self._check_program(program)
        form = program.stage_one_model().standard_form()
        nfirst = len(form.c)
        ntheta = program.nscenarios if self.config.multicut else 1
        return LShapedState(
            program=program,
            config=self.config,
            sign=sign,
            nfirst=nfirst,
            constant=sign * form.constant,
            probabilities=program.probabilities(),
            c=np.concatenate([sign * form.c, np.ones(ntheta)]),
            A=sparse.hstack([form.A, sparse.csr_matrix((form.shape[0], ntheta))], format="csr"),
            b=form.b,
            senses=list(form.senses),
            lb=np.concatenate([form.lb, np.zeros(ntheta)]),
            ub=np.concatenate([form.ub, np.zeros(ntheta)]),
            active=np.zeros(ntheta, dtype=bool),
        )

    def run(self, state: LShapedState) -> Status:
        with state.program.exclusive():
            for _ in self.iterate(state):
                pass
        return state.status

    def iterate(self, state: LShapedState) -> Iterator[Phase]:
        """Advance the state machine, yielding each phase entered."""
        while not state.done:
            yield self.step(state)

    def step(self, state: LShapedState) -> Phase:
        """Run the current phase and move to the next one."""
        if state.done:
            return state.phase
        if state.cancelled:
            state.round = None
            state.phase = self._finish(state, Status.ITERATION_LIMIT)
            return state.phase
        if state.out_of_time():
            state.phase = self._finish(state, Status.TIME_LIMIT)
            return state.phase
        handlers = {
            Phase.INIT: self._init,
            Phase.MASTER_SOLVE: self._master_solve,
            Phase.BROADCAST: self._broadcast,
            Phase.SUBPROBLEM_SOLVE: self._subproblem_solve,
            Phase.AGGREGATE: self._aggregate,
            Phase.CONVERGED: self._converged,
        }
        state.phase = handlers[state.phase](state)
        return state.phase

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _init(self, state: LShapedState) -> Phase:
        state.lower_bound, state.upper_bound = -np.inf, np.inf
        log.log(
            self._log_level(),
            "L-shaped: %d decisions, %d scenarios, %s",
            state.nfirst,
            len(state.probabilities),
            "multi-cut" if self.config.multicut else "single-cut",
        )
        return Phase.MASTER_SOLVE

    def _master_solve(self, state: LShapedState) -> Phase:
        if state.iterations >= self.config.max_iterations:
            return self._finish(state, Status.ITERATION_LIMIT)
        state.iterations += 1

        A, b, senses = state.A, state.b, state.senses
        if state.cut_rows:
            A = sparse.vstack([A, sparse.csr_matrix(np.vstack(state.cut_rows))], format="csr")
            b = np.concatenate([b, state.cut_rhs])
            senses = senses + ["<="] * len(state.cut_rows)
        result = solve(
            c=state.c, A=A, b=b, lb=state.lb, ub=state.ub,
            constraint_senses=senses, params=self.backend.params,
        )
        state.boxed = result.status == Status.UNBOUNDED
        if state.boxed:
            # Cuts do not bound the master yet.
            bound = self.config.master_bound
            lb, ub = state.lb.copy(), state.ub.copy()
            lb[: state.nfirst] = np.maximum(lb[: state.nfirst], -bound)
            ub[: state.nfirst] = np.minimum(ub[: state.nfirst], bound)
            result = solve(
                c=state.c, A=A, b=b, lb=lb, ub=ub,
                constraint_senses=senses, params=self.backend.params,
            )
        if result.status in (Status.INFEASIBLE, Status.UNBOUNDED):
            return self._finish(state, result.status)
        if result.status != Status.OPTIMAL:
            raise SolveFailure(result.status, message=f"master problem ended with status {result.status}")

        state.master_solution = result
        state.candidate = result.x[: state.nfirst].copy()
        if state.active.all() and not state.boxed:
            state.lower_bound = max(state.lower_bound, result.objective + state.constant)
        return Phase.BROADCAST

    def _broadcast(self, state: LShapedState) -> Phase:
        state.round = SolveRound(decision=state.candidate)
        return Phase.SUBPROBLEM_SOLVE

    def _subproblem_solve(self, state: LShapedState) -> Phase:
        round_ = solve_round(state.program, self.backend, state.round.decision)
        if state.cancelled:
            state.round = None
            return self._finish(state, Status.ITERATION_LIMIT)
        state.round = round_
        return Phase.AGGREGATE

    def _aggregate(self, state: LShapedState) -> Phase:
        round_, state.round = state.round, None
        x = round_.decision

        if round_.failures:
            for failure in round_.failures:
                terminal = self._handle_failure(state, failure, x)
                if terminal is not None:
                    return self._finish(state, terminal)
            self._log_iteration(state, round_)
            return Phase.MASTER_SOLVE

        value = float(state.c[: state.nfirst] @ x) + state.constant + state.sign * round_.expected_recourse()
        if value < state.upper_bound:
            state.upper_bound = value
            state.incumbent = (x, round_, state.master_solution)

        added = self._add_optimality_cuts(state, round_)
        self._log_iteration(state, round_)
        if state.active.all() and (added == 0 or state.gap <= self.config.tolerance):
            if state.boxed:
                return self._finish(state, Status.UNBOUNDED)
            return Phase.CONVERGED
        return Phase.MASTER_SOLVE

    def _converged(self, state: LShapedState) -> Phase:
        x, round_, master = state.incumbent
        latest = state.master_solution
        if np.allclose(latest.x[: state.nfirst], x):
            master = latest
        s = state.sign
        m1 = state.A.shape[0]
        state.decision = x.copy()
        state.objective = s * state.upper_bound
        state.second_stage = round_.results()
        state.duals = s * master.y[:m1]
        state.reduced_costs = s * master.reduced_costs[: state.nfirst]
        state.master_result = SolveResult(
            status=Status.OPTIMAL,
            objective=state.objective,
            x=state.decision,
            y=state.duals,
            reduced_costs=state.reduced_costs,
            iterations=state.iterations,
            solve_time=state.elapsed,
            gap=state.gap,
        )
        log.log(
            self._log_level(),
            "L-shaped converged after %d iterations: objective=%.10g (%d cuts)",
            state.iterations,
            state.objective,
            len(state.cuts),
        )
        return self._finish(state, Status.OPTIMAL)

    def _finish(self, state: LShapedState, status: Status) -> Phase:
        state.status = status
        if status != Status.OPTIMAL:
            log.log(self._log_level(), "L-shaped stopped: %s after %d iterations", status, state.iterations)
        return Phase.TERMINATED

    # ------------------------------------------------------------------
    # Cuts
    # ------------------------------------------------------------------

    def _add_cut(self, state: LShapedState, cut: Cut, theta: Optional[int]) -> None:
        row = np.zeros(state.nfirst + state.ntheta)
        row[: state.nfirst] = cut.gradient
        if theta is not None:
            row[state.nfirst + theta] = -1.0
            if not state.active[theta]:
                state.active[theta] = True
                state.lb[state.nfirst + theta] = -np.inf
                state.ub[state.nfirst + theta] = np.inf
        state.cut_rows.append(row)
        state.cut_rhs.append(-cut.constant)
        state.cuts.append(cut)

    def _add_optimality_cuts(self, state: LShapedState, round_: SolveRound) -> int:
        s = state.sign
        x = round_.decision
        thetas = state.master_solution.x[state.nfirst:]
        if self.config.multicut:
            groups = [(o.index, [o]) for o in round_.outcomes]
        else:
            groups = [(0, list(round_.outcomes))]

        added = 0
        for theta, outcomes in groups:
            value = s * sum(o.probability * o.objective for o in outcomes)
            gradient = s * sum(o.probability * o.gradient for o in outcomes)
            violation = value - thetas[theta]
            if state.active[theta] and violation <= self.config.cut_tolerance * (1.0 + abs(value)):
                continue
            cut = Cut(
                CutType.OPTIMALITY,
                gradient=np.asarray(gradient, dtype=np.float64),
                value=value,
                decision=x,
                scenarios=tuple(o.index for o in outcomes),
            )
            self._add_cut(state, cut, theta)
            added += 1
        return added

    def _handle_failure(self, state: LShapedState, failure: RoundFailure, x: np.ndarray) -> Optional[Status]:
        if failure.status == Status.INFEASIBLE and self.config.feasibility_cuts:
            model = state.program.subproblem(failure.index)
            value, gradient = phase_one(model, x, state.nfirst, self.backend.params)
            if value <= 1e-9:
                raise SolveFailure(
                    failure.status,
                    index=failure.index,
                    message=f"subproblem {failure.index} reported infeasible but its phase-one value is {value:.3g}",
                )
            self._add_cut(
                state,
                Cut(CutType.FEASIBILITY, gradient=gradient, value=value, decision=x, scenarios=(failure.index,)),
                theta=None,
            )
            return None
        if failure.status in (Status.INFEASIBLE, Status.UNBOUNDED):
            return failure.status
        raise SolveFailure(failure.status, index=failure.index)

    def _log_iteration(self, state: LShapedState, round_: SolveRound) -> None:
        log.log(
            self._log_level(),
            "iter %3d  lower=%.10g  upper=%.10g  gap=%.3e  cuts=%d  failures=%d",
            state.iterations,
            state.lower_bound,
            state.upper_bound,
            state.gap,
            len(state.cuts),
            len(round_.failures),
        )
