"""
stochprog Stochastic Programming
================================

Two-stage stochastic linear programs built from stage recipes and
scenarios, distributed over scenario partitions.

Two-Stage Stochastic Programming
--------------------------------
A two-stage problem has:
- **First stage**: "Here and now" decisions (x) before uncertainty is revealed
- **Second stage**: "Recourse" decisions (y) after observing random outcome ξ

Standard form:
    minimize    c'x + E[Q(x, ξ)]
    subject to  Ax (sense) b

    where Q(x, ξ) = min  q(ξ)'y
                   s.t. W(ξ)y (sense) h(ξ) - T(ξ)x

Stage models are plain :class:`~stochprog.Model` objects produced by
recipes. The second stage refers to the first-stage decisions through
``model.add_decisions(decisions)``:

>>> from stochprog import Model
>>> from stochprog.stochastic import Scenario, StochasticProgram
>>>
>>> program = StochasticProgram(scenarios=[Scenario(0.4, 100.0), Scenario(0.6, 50.0)])
>>>
>>> @program.first_stage(defer=True)
... def first(data):
...     m = Model()
...     x = m.add_var(lb=40, ub=120, name="x")
...     m.minimize(100 * x)
...     return m
>>>
>>> @program.second_stage
... def second(data, decisions, demand):
...     m = Model()
...     x, = m.add_decisions(decisions)
...     y = m.add_var(lb=0, name="y")
...     m.add_constr(y + x >= demand)
...     m.minimize(150 * y)
...     return m
>>>
>>> program.optimize(LShapedSolver())
>>> program.optimal_decision()

Value of information
--------------------
``VRP``, ``EWS``, ``EEV``, ``EVPI`` and ``VSS`` quantify how much the
stochastic model is worth compared with perfect information or with
planning for the expected scenario.

Sample Average Approximation (SAA)
----------------------------------
:func:`SAA` instantiates a :class:`StochasticModel` on sampled scenarios;
:class:`SAASolver` replicates it for statistical bounds:

>>> solver = SAASolver(model, NormalSampler(100.0, 10.0), n_samples=200)
>>> result = solver.solve()
>>> print(f"95% CI: [{result.ci_lower:.4f}, {result.ci_upper:.4f}]")

Classes
-------
StochasticProgram
    Recipes, staged data, scenario partitions and the committed solution
StochasticModel
    Recipes only, instantiated into programs
Scenario
    Probability-weighted scenario payload
LShapedSolver
    L-shaped decomposition (multi-cut or single-cut)
ExtensiveFormSolver
    Deterministic equivalent solve (the default)
SAASolver
    Replicated sample average approximation
"""

from .evaluation import (
    DEP,
    EEV,
    EV,
    EVP,
    EVP_decision,
    EVPI,
    EWS,
    VRP,
    VSS,
    WS,
    EvaluationResult,
    compute_eev,
    compute_ev,
    compute_evpi,
    compute_ews,
    compute_vrp,
    compute_vss,
    decision_outcomes,
    deterministic_equivalent,
    evaluate_decision,
    evaluate_scenario,
    evaluate_solution,
    evp_decision,
    expected_value_problem,
    outcome_model,
    wait_and_see,
)
from .extensive import ExtensiveForm, ExtensiveFormSolver, extensive_form
from .lshaped import LShapedSolver, LShapedState, Phase
from .partition import LocalTransport, ScenarioPartition, ThreadTransport, Transport
from .program import Solution, StageState, StochasticModel, StochasticProgram
from .recipes import FirstStageRecipe, Recipe, SecondStageRecipe
from .saa import (
    SAA,
    ConfidenceInterval,
    SAAResult,
    SAASolver,
    confidence_interval,
    estimate_decision,
    lower_bound,
)
from .samplers import (
    DiscreteSampler,
    FunctionSampler,
    LogNormalSampler,
    NormalSampler,
    Sampler,
    UniformSampler,
)
from .scenarios import Scenario, expectation, expected
from .structured import AlgorithmState, Cut, CutType, StructuredSolver

__all__ = [
    # Program
    "StochasticProgram",
    "StochasticModel",
    "StageState",
    "Solution",
    "Recipe",
    "FirstStageRecipe",
    "SecondStageRecipe",
    # Scenarios
    "Scenario",
    "expectation",
    "expected",
    # Partitions
    "ScenarioPartition",
    "Transport",
    "LocalTransport",
    "ThreadTransport",
    # Structured solvers
    "StructuredSolver",
    "AlgorithmState",
    "Cut",
    "CutType",
    "LShapedSolver",
    "LShapedState",
    "Phase",
    "ExtensiveFormSolver",
    "ExtensiveForm",
    "extensive_form",
    # Evaluation
    "EvaluationResult",
    "VRP",
    "WS",
    "EWS",
    "EVP",
    "EV",
    "EVP_decision",
    "EEV",
    "EVPI",
    "VSS",
    "DEP",
    "compute_vrp",
    "wait_and_see",
    "compute_ews",
    "expected_value_problem",
    "compute_ev",
    "evp_decision",
    "compute_eev",
    "compute_evpi",
    "compute_vss",
    "deterministic_equivalent",
    "evaluate_decision",
    "evaluate_solution",
    "evaluate_scenario",
    "decision_outcomes",
    "outcome_model",
    # Sampling
    "Sampler",
    "DiscreteSampler",
    "NormalSampler",
    "UniformSampler",
    "LogNormalSampler",
    "FunctionSampler",
    "SAA",
    "SAASolver",
    "SAAResult",
    "ConfidenceInterval",
    "lower_bound",
    "estimate_decision",
    "confidence_interval",
]
