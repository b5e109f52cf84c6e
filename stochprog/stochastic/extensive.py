"""
Extensive Form
==============

The deterministic equivalent problem (DEP): the first stage and every
scenario's second stage in one LP, with the recourse objectives weighted by
their probabilities.

    minimize    c'x + sum_s p_s q_s'y_s
    subject to  Ax (sense) b
                T_s x + W_s y_s (sense) h_s      for every scenario s
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from ..exceptions import SolveFailure
from ..model import Constraint, LinearExpr, Model
from ..result import SolveResult, Status
from .structured import AlgorithmState, StructuredSolver

log = logging.getLogger(__name__)


@dataclass
class ExtensiveForm:
    """
    Deterministic equivalent of a program and its index maps.

    Attributes:
        model: The DEP model
        nfirst: Number of first-stage columns (the leading columns)
        nfirst_rows: Number of first-stage rows (the leading rows)
        columns: Per scenario, DEP column of every subproblem variable
        rows: Per scenario, DEP row of every subproblem constraint
        probabilities: Scenario probabilities
    """

    model: Model
    nfirst: int
    nfirst_rows: int
    columns: List[np.ndarray] = field(default_factory=list)
    rows: List[np.ndarray] = field(default_factory=list)
    probabilities: np.ndarray = field(default_factory=lambda: np.zeros(0))


def _copy_constraint(constr: Constraint, mapping: Dict[int, int], suffix: str = "") -> Constraint:
    lhs = LinearExpr(
        {mapping[idx]: coef for idx, coef in constr.lhs.terms.items()},
        constr.lhs.constant,
    )
    name = f"{constr.name}{suffix}" if constr.name else None
    return Constraint(lhs, constr.sense, constr.rhs, name=name)


def extensive_form(program) -> ExtensiveForm:
    """Build the DEP of a generated program."""
    program.generate()
    master = program.stage_one_model()
    dep = Model(name="DEP")

    first = [dep.add_var(lb=v.lb, ub=v.ub, name=v.name) for v in master.variables]
    identity = {v.index: v.index for v in master.variables}
    for constr in master.constraints:
        dep.add_constr(_copy_constraint(constr, identity))

    terms = dict(master.objective.terms)
    constant = master.objective.constant
    form = ExtensiveForm(
        model=dep,
        nfirst=len(first),
        nfirst_rows=master.num_constrs,
        probabilities=program.probabilities(),
    )
    for s in range(program.nscenarios):
        sub = program.subproblem(s)
        p = form.probabilities[s]
        mapping = {}
        for v in sub.variables:
            if v.is_decision:
                mapping[v.index] = first[v.decision].index
            else:
                name = f"{v.name or f'y_{v.index}'}[{s}]"
                mapping[v.index] = dep.add_var(lb=v.lb, ub=v.ub, name=name).index
        rows = [dep.add_constr(_copy_constraint(c, mapping, f"[{s}]")).index for c in sub.constraints]
        for idx, coef in sub.objective.terms.items():
            terms[mapping[idx]] = terms.get(mapping[idx], 0.0) + p * coef
        constant += p * sub.objective.constant
        form.columns.append(np.array([mapping[v.index] for v in sub.variables], dtype=int))
        form.rows.append(np.array(rows, dtype=int))

    objective = LinearExpr(terms, constant)
    if master.sense == "maximize":
        dep.maximize(objective)
    else:
        dep.minimize(objective)
    return form


@dataclass
class ExtensiveState(AlgorithmState):
    form: Optional[ExtensiveForm] = None


class ExtensiveFormSolver(StructuredSolver):
    """
    Solves the program through its deterministic equivalent.

    Implements the structured protocol so it can be swapped with
    decomposition solvers; it is the default solver of a program.
    """

    name = "Extensive form"

    def build(self, program) -> ExtensiveState:
        sign = self._check_program(program)
        state = ExtensiveState(program=program, config=self.config, sign=sign, form=extensive_form(program))
        log.log(
            self._log_level(),
            "DEP with %d variables and %d constraints",
            state.form.model.num_vars,
            state.form.model.num_constrs,
        )
        return state

    def run(self, state: ExtensiveState) -> Status:
        with state.program.exclusive():
            if state.cancelled:
                state.status = Status.ITERATION_LIMIT
                return state.status
            backend = self.backend
            if self.config.time_limit is not None and "time_limit" not in backend.params:
                backend = type(backend)({**backend.params, "time_limit": self.config.time_limit})
            result = backend.optimize(state.form.model)
            state.iterations = result.iterations
            if state.cancelled:
                state.status = Status.ITERATION_LIMIT
                return state.status
            if result.status == Status.NUMERICAL_ERROR:
                raise SolveFailure(result.status, message="deterministic equivalent failed numerically")
            if result.status == Status.OPTIMAL:
                self._unpack(state, result)
            state.status = result.status
        return state.status

    def _unpack(self, state: ExtensiveState, result: SolveResult) -> None:
        form = state.form
        program = state.program
        decision = result.x[: form.nfirst].copy()
        state.decision = decision
        state.objective = result.objective
        state.duals = result.y[: form.nfirst_rows].copy()
        state.reduced_costs = result.reduced_costs[: form.nfirst].copy()
        state.master_result = SolveResult(
            status=Status.OPTIMAL,
            objective=result.objective,
            x=decision,
            y=state.duals,
            reduced_costs=state.reduced_costs,
            iterations=result.iterations,
            solve_time=result.solve_time,
        )
        second_stage = []
        for s, (cols, rows) in enumerate(zip(form.columns, form.rows)):
            sub = program.subproblem(s)
            p = form.probabilities[s]
            scale = 1.0 / p if p > 0 else 0.0
            x_s = result.x[cols].copy()
            # Placeholder columns are the shared first-stage columns.
            reduced = np.where(cols < form.nfirst, 0.0, result.reduced_costs[cols] * scale)
            second_stage.append(
                SolveResult(
                    status=Status.OPTIMAL,
                    objective=sub.evaluate_objective(x_s),
                    x=x_s,
                    y=result.y[rows] * scale,
                    reduced_costs=reduced,
                    iterations=0,
                    solve_time=0.0,
                )
            )
        state.second_stage = second_stage
