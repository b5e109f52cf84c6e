"""
Solution Evaluation for Stochastic Programming
==============================================

Value constructs built on the public operations of a program:

- VRP: value of the recourse problem
- WS / EWS: wait-and-see value of one scenario / its expectation
- EVP / EV / EVP_decision: expected value problem, its value and decision
- EEV: expected result of using the expected value decision
- EVPI: expected value of perfect information
- VSS: value of the stochastic solution

For a minimization program ``EVPI = VRP - EWS`` and ``VSS = EEV - VRP``;
for a maximization program both differences are flipped. Either way they
are non-negative.
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

from ..exceptions import DimensionError, SolveFailure, UndefinedRecipe
from ..model import Model
from ..result import Status
from ..solver import LinearSolver
from .extensive import ExtensiveFormSolver, extensive_form
from .program import StochasticProgram
from .scenarios import Scenario
from .structured import StructuredSolver

log = logging.getLogger(__name__)

FEASIBILITY_TOLERANCE = 1e-6

ScenarioRef = Union[int, Scenario]


@dataclass
class EvaluationResult:
    """
    Solution evaluation result.

    Attributes:
        objective: First-stage value plus expected recourse
        first_stage_cost: First-stage objective at the decision
        expected_recourse: E[Q(x, xi)]
        std_recourse: Standard deviation of recourse
        worst_case: Largest recourse value
        best_case: Smallest recourse value
        n_scenarios: Number of scenarios evaluated
    """
    objective: float
    first_stage_cost: float
    expected_recourse: float
    std_recourse: float
    worst_case: float
    best_case: float
    n_scenarios: int

    def __repr__(self) -> str:
        return (
            f"EvaluationResult(\n"
            f"  objective={self.objective:.4f},\n"
            f"  expected_recourse={self.expected_recourse:.4f},\n"
            f"  std_recourse={self.std_recourse:.4f}\n"
            f")"
        )


# ============================================================================
# Solver selection
# ============================================================================

def _structured(program: StochasticProgram, solver=None) -> StructuredSolver:
    if isinstance(solver, StructuredSolver):
        return solver
    if isinstance(program.solver, StructuredSolver):
        return program.solver
    return ExtensiveFormSolver()


def _backend(program: StochasticProgram, solver=None) -> LinearSolver:
    """LP backend for auxiliary solves, reusing a structured solver's own."""
    if isinstance(solver, LinearSolver):
        return solver
    for candidate in (solver, program.solver):
        if candidate is not None and hasattr(candidate, "internal_solver"):
            backend = candidate.internal_solver()
            if backend is not None:
                return backend
    return LinearSolver()


def _restricted(program: StochasticProgram, scenario: Scenario) -> StochasticProgram:
    """Program with the same recipes and data holding only ``scenario``."""
    for stage in (1, 2):
        if program.recipe(stage) is None:
            raise UndefinedRecipe(stage)
    scenario_type = program.scenario_type
    # The expectation of integer payloads is a float.
    if isinstance(scenario_type, type) and issubclass(scenario_type, numbers.Real):
        scenario_type = numbers.Real
    single = StochasticProgram(
        program.first_stage_data,
        program.second_stage_data,
        scenario_type=scenario_type,
        solver=program.solver,
    )
    single.register_recipe(1, program.recipe(1), defer=True)
    single.register_recipe(2, program.recipe(2), defer=True)
    single.add_scenario(scenario.with_probability(1.0), defer=True)
    single.generate()
    return single


def _resolve(program: StochasticProgram, scenario: ScenarioRef) -> Scenario:
    if isinstance(scenario, Scenario):
        return scenario
    return program.scenario(scenario)


# ============================================================================
# Value constructs
# ============================================================================

def compute_vrp(program: StochasticProgram, solver=None) -> float:
    """
    Value of the recourse problem.

    Generates and solves the whole program (committing the solution).

    Raises:
        SolveFailure: If the program does not solve to optimality
    """
    status = program.optimize(_structured(program, solver))
    if status != Status.OPTIMAL:
        raise SolveFailure(status, message=f"recourse problem ended with status {status}")
    return program.optimal_value()


def wait_and_see(program: StochasticProgram, scenario: ScenarioRef, solver=None) -> float:
    """
    Optimal value when ``scenario`` is known in advance.

    Args:
        program: Program providing recipes and staged data
        scenario: Scenario index or a Scenario
    """
    index = scenario if isinstance(scenario, (int, np.integer)) else None
    single = _restricted(program, _resolve(program, scenario))
    status = single.optimize(_structured(program, solver))
    if status != Status.OPTIMAL:
        raise SolveFailure(status, index=index)
    return single.optimal_value()


def compute_ews(program: StochasticProgram, solver=None) -> float:
    """
    Expected wait-and-see value.

    One wait-and-see problem per scenario, dispatched per partition.
    """
    program.validate()
    structured = _structured(program, solver)

    def weighted(index, scenario, _model):
        return scenario.probability * wait_and_see(program, scenario, structured)

    return float(sum(program.collect(weighted, generated=False)))


def expected_value_problem(program: StochasticProgram) -> StochasticProgram:
    """
    Program restricted to the expected scenario.

    Raises:
        NotExpectable: If the payloads have no weighted-sum reduction
    """
    return _restricted(program, program.expected_scenario())


def compute_ev(program: StochasticProgram, solver=None) -> float:
    """Optimal value of the expected value problem."""
    evp = expected_value_problem(program)
    status = evp.optimize(_structured(program, solver))
    if status != Status.OPTIMAL:
        raise SolveFailure(status, message=f"expected value problem ended with status {status}")
    return evp.optimal_value()


def evp_decision(program: StochasticProgram, solver=None) -> np.ndarray:
    """Optimal first-stage decision of the expected value problem."""
    evp = expected_value_problem(program)
    status = evp.optimize(_structured(program, solver))
    if status != Status.OPTIMAL:
        raise SolveFailure(status, message=f"expected value problem ended with status {status}")
    return np.array(evp.optimal_decision())


def _check_decision(program: StochasticProgram, decision: Sequence[float]) -> np.ndarray:
    x = np.asarray(decision, dtype=np.float64).ravel()
    dims = program.first_stage_dims()
    if len(x) != dims:
        raise DimensionError(f"decision has {len(x)} entries, expected {dims}")
    return x


def _first_stage_value(master: Model, x: np.ndarray) -> float:
    """First-stage objective at ``x``; raises if ``x`` violates the first stage."""
    form = master.standard_form()
    tol = FEASIBILITY_TOLERANCE
    if np.any(x < form.lb - tol) or np.any(x > form.ub + tol):
        raise SolveFailure(Status.INFEASIBLE, message="decision violates first-stage bounds")
    lhs = form.A @ x
    for i, sense in enumerate(form.senses):
        if (
            (sense == "<=" and lhs[i] > form.b[i] + tol)
            or (sense == ">=" and lhs[i] < form.b[i] - tol)
            or (sense == "==" and abs(lhs[i] - form.b[i]) > tol)
        ):
            raise SolveFailure(Status.INFEASIBLE, message=f"decision violates first-stage row {i}")
    return master.evaluate_objective(x)


def _recourse_values(program: StochasticProgram, x: np.ndarray, backend: LinearSolver) -> np.ndarray:
    def evaluate(index, scenario, model):
        result = backend.optimize(model, decision=x)
        if result.status != Status.OPTIMAL:
            raise SolveFailure(result.status, index=index)
        return result.objective

    return np.array(program.collect(evaluate), dtype=np.float64)


def decision_outcomes(program: StochasticProgram, decision: Sequence[float], solver=None) -> np.ndarray:
    """Result of ``decision`` in every scenario, in global scenario order."""
    program.generate()
    x = _check_decision(program, decision)
    first = _first_stage_value(program.stage_one_model(), x)
    return first + _recourse_values(program, x, _backend(program, solver))


def evaluate_decision(program: StochasticProgram, decision: Sequence[float], solver=None) -> float:
    """
    Expected result of taking ``decision`` in the first stage.

    Every subproblem is solved with the decision fixed; the probability
    weighted recourse is added to the first-stage objective.

    Raises:
        DimensionError: If the decision has the wrong length
        SolveFailure: If the decision is first-stage infeasible or some
            subproblem does not solve to optimality
    """
    program.generate()
    program.validate()
    x = _check_decision(program, decision)
    first = _first_stage_value(program.stage_one_model(), x)
    recourse = _recourse_values(program, x, _backend(program, solver))
    return float(first + program.probabilities() @ recourse)


def evaluate_solution(program: StochasticProgram, decision: Sequence[float], solver=None) -> EvaluationResult:
    """Like :func:`evaluate_decision`, with recourse statistics."""
    program.generate()
    program.validate()
    x = _check_decision(program, decision)
    first = _first_stage_value(program.stage_one_model(), x)
    recourse = _recourse_values(program, x, _backend(program, solver))
    probs = program.probabilities()
    expected_recourse = float(probs @ recourse)
    return EvaluationResult(
        objective=first + expected_recourse,
        first_stage_cost=first,
        expected_recourse=expected_recourse,
        std_recourse=float(np.sqrt(probs @ (recourse - expected_recourse) ** 2)),
        worst_case=float(recourse.max()),
        best_case=float(recourse.min()),
        n_scenarios=len(recourse),
    )


def outcome_model(
    program: StochasticProgram,
    scenario: ScenarioRef,
    decision: Sequence[float],
) -> Model:
    """
    Second-stage model of ``scenario`` with the decision fixed, unsolved.

    Solve it with ``LinearSolver().solve(model)``.
    """
    program.generate()
    x = _check_decision(program, decision)
    model = program.recipe(2).generate(program.second_stage_data, program.decisions, _resolve(program, scenario))
    if model.num_decisions:
        model.fix_decisions(x)
    return model


def evaluate_scenario(
    program: StochasticProgram,
    scenario: ScenarioRef,
    decision: Sequence[float],
    solver=None,
) -> float:
    """Result of ``decision`` if ``scenario`` occurs: first stage plus its recourse."""
    model = outcome_model(program, scenario, decision)
    x = _check_decision(program, decision)
    first = _first_stage_value(program.stage_one_model(), x)
    result = _backend(program, solver).optimize(model)
    if result.status != Status.OPTIMAL:
        index = scenario if isinstance(scenario, (int, np.integer)) else None
        raise SolveFailure(result.status, index=index)
    return first + result.objective


def compute_eev(program: StochasticProgram, solver=None) -> float:
    """Expected result of the expected value decision."""
    return evaluate_decision(program, evp_decision(program, solver), solver)


def compute_evpi(program: StochasticProgram, solver=None) -> float:
    """
    Expected value of perfect information, ``VRP - EWS`` (minimization).

    Example:
        >>> evpi = compute_evpi(program)
        >>> print(f"Perfect information worth: {evpi:.2f}")
    """
    vrp = compute_vrp(program, solver)
    ews = compute_ews(program, solver)
    log.debug("VRP %.10g, EWS %.10g", vrp, ews)
    return program.sign * (vrp - ews)


def compute_vss(program: StochasticProgram, solver=None) -> float:
    """Value of the stochastic solution, ``EEV - VRP`` (minimization)."""
    vrp = compute_vrp(program, solver)
    eev = compute_eev(program, solver)
    log.debug("VRP %.10g, EEV %.10g", vrp, eev)
    return program.sign * (eev - vrp)


def deterministic_equivalent(program: StochasticProgram) -> Model:
    """The extensive form of ``program`` as a single model."""
    return extensive_form(program).model


VRP = compute_vrp
WS = wait_and_see
EWS = compute_ews
EVP = expected_value_problem
EV = compute_ev
EVP_decision = evp_decision
EEV = compute_eev
EVPI = compute_evpi
VSS = compute_vss
DEP = deterministic_equivalent
