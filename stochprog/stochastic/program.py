"""
Stochastic Program Container
============================

:class:`StochasticProgram` holds the stage recipes, the staged data, the
first-stage (master) model and the scenario partitions with their generated
subproblems. Generation is deferred and incremental: each stage carries an
epoch that is bumped whenever its data or recipe is replaced, and
:meth:`StochasticProgram.generate` rebuilds only what is missing or stale.

>>> sp = StochasticProgram(workers=2)
>>> @sp.first_stage
... def first(data):
...     ...
>>> @sp.second_stage
... def second(data, decisions, xi):
...     ...
>>> sp.add_scenarios([Scenario(0.4, xi1), Scenario(0.6, xi2)])
>>> sp.optimize()
>>> sp.optimal_decision()
"""

from __future__ import annotations

import copy
import logging
import numbers
import threading
import warnings
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..exceptions import (
    DimensionError,
    GenerationError,
    IndexOutOfRange,
    InvalidInputError,
    ProbabilityError,
    SchemaMismatch,
    StaleStateConflict,
    UndefinedRecipe,
)
from ..model import Decisions, Model
from ..result import SolveResult, Status
from .partition import (
    LocalTransport,
    ScenarioPartition,
    Transport,
    even_split,
    fill_counts,
    least_loaded,
)
from .recipes import Recipe, as_recipe, stage_key
from .scenarios import Scenario, expectation

log = logging.getLogger(__name__)

PROBABILITY_TOLERANCE = 1e-9


class StageState(Enum):
    """Generation state of one stage."""
    UNDEFINED = "undefined"
    DEFERRED = "deferred"
    GENERATED = "generated"
    STALE = "stale"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Solution:
    """
    Committed first-stage solution.

    Published by reference swap, so readers see either the previous or the
    new solution, never a mix.
    """

    decision: np.ndarray
    objective: float
    reduced_costs: np.ndarray
    duals: np.ndarray
    status: Status = Status.OPTIMAL
    solver: str = ""
    iterations: int = 0

    def __post_init__(self):
        for name in ("decision", "reduced_costs", "duals"):
            arr = np.array(getattr(self, name), dtype=np.float64)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)


class StochasticProgram:
    """
    Two-stage stochastic program distributed over scenario partitions.

    Args:
        first_stage_data: Staged data handed to the first-stage recipe
        second_stage_data: Staged data handed to the second-stage recipe
        scenarios: Initial scenarios (added deferred)
        scenario_type: Payload type every scenario must have; inferred from
            the first scenario when omitted
        workers: Number of partitions
        transport: Executes partition-local work (LocalTransport by default)
        solver: Default structured solver used by :meth:`optimize`
        normalize: Rescale probabilities that do not sum to one instead of
            raising in :meth:`validate`
    """

    def __init__(
        self,
        first_stage_data: Any = None,
        second_stage_data: Any = None,
        scenarios: Optional[Iterable[Scenario]] = None,
        *,
        scenario_type: Optional[type] = None,
        workers: int = 1,
        transport: Optional[Transport] = None,
        solver: Any = None,
        normalize: bool = False,
    ) -> None:
        if int(workers) < 1:
            raise InvalidInputError(f"workers must be positive, got {workers}")
        self._lock = threading.RLock()
        self._stage_data: Dict[int, Any] = {1: first_stage_data, 2: second_stage_data}
        self._recipes: Dict[int, Optional[Recipe]] = {1: None, 2: None}
        self._epoch: Dict[int, int] = {1: 0, 2: 0}
        self._generated_epoch: Dict[int, int] = {1: -1, 2: -1}
        self._master: Optional[Model] = None
        self._master_epoch = -1
        self._decisions: Optional[Decisions] = None
        self._partitions: List[ScenarioPartition] = [ScenarioPartition(k) for k in range(int(workers))]
        self._owns_transport = transport is None
        self._transport = transport if transport is not None else LocalTransport()
        self._scenario_type = scenario_type
        self._solver = solver
        self.normalize = normalize
        self._solution: Optional[Solution] = None
        if scenarios is not None:
            self.add_scenarios(list(scenarios), defer=True)

    # ------------------------------------------------------------------
    # Locking & lifecycle
    # ------------------------------------------------------------------

    @contextmanager
    def exclusive(self) -> Iterator["StochasticProgram"]:
        """Hold the generation lock (generation, mutation, solver runs and commits)."""
        with self._lock:
            yield self

    def close(self) -> None:
        """Tear down the transport if the program created it."""
        if self._owns_transport:
            self._transport.close()

    def __enter__(self) -> "StochasticProgram":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def solver(self):
        return self._solver

    def set_solver(self, solver) -> None:
        self._solver = solver

    # ------------------------------------------------------------------
    # Staged data & recipes
    # ------------------------------------------------------------------

    @property
    def first_stage_data(self) -> Any:
        return self._stage_data[1]

    @property
    def second_stage_data(self) -> Any:
        return self._stage_data[2]

    def stage_data(self, stage: Union[int, str]) -> Any:
        return self._stage_data[stage_key(stage)]

    def _invalidate(self, stage: int) -> None:
        self._epoch[stage] += 1
        self._solution = None

    def set_stage_data(self, stage: Union[int, str], value: Any) -> None:
        """Replace the data of ``stage``; its artifacts become stale."""
        stage = stage_key(stage)
        with self._lock:
            self._stage_data[stage] = value
            self._invalidate(stage)
            log.debug("stage %d data replaced (epoch %d)", stage, self._epoch[stage])

    def set_first_stage_data(self, value: Any) -> None:
        self.set_stage_data(1, value)

    def set_second_stage_data(self, value: Any) -> None:
        self.set_stage_data(2, value)

    def register_recipe(
        self,
        stage: Union[int, str],
        recipe: Union[Recipe, Callable[..., Model]],
        defer: bool = False,
    ) -> Recipe:
        """
        Register the recipe of ``stage``, replacing any previous one.

        Unless ``defer`` is set, the program is regenerated right away when
        both recipes are known.
        """
        stage = stage_key(stage)
        recipe = as_recipe(stage, recipe)
        with self._lock:
            self._recipes[stage] = recipe
            self._invalidate(stage)
            log.debug("stage %d recipe %r registered", stage, recipe.name)
            if not defer and self._can_generate():
                self.generate()
        return recipe

    def first_stage(self, func: Optional[Callable] = None, *, defer: bool = False):
        """Decorator registering the first-stage recipe."""
        def register(f):
            self.register_recipe(1, f, defer=defer)
            return f
        return register if func is None else register(func)

    def second_stage(self, func: Optional[Callable] = None, *, defer: bool = False):
        """Decorator registering the second-stage recipe."""
        def register(f):
            self.register_recipe(2, f, defer=defer)
            return f
        return register if func is None else register(func)

    def recipe(self, stage: Union[int, str]) -> Optional[Recipe]:
        return self._recipes[stage_key(stage)]

    def has_generator(self, stage: Union[int, str]) -> bool:
        return self._recipes[stage_key(stage)] is not None

    def _can_generate(self) -> bool:
        return self._recipes[1] is not None and (
            self._recipes[2] is not None or self.nscenarios == 0
        )

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------

    @property
    def scenario_type(self) -> Optional[type]:
        return self._scenario_type

    def _check_types(self, scenarios: Sequence[Scenario]) -> type:
        """Payload type the scenarios are checked against (inferred if unset)."""
        expected_type = self._scenario_type
        for scenario in scenarios:
            if not isinstance(scenario, Scenario):
                raise InvalidInputError(f"expected a Scenario, got {type(scenario).__name__}")
            if expected_type is None:
                data = scenario.data
                if isinstance(data, numbers.Real) and not isinstance(data, bool):
                    expected_type = numbers.Real
                else:
                    expected_type = type(data)
            if not isinstance(scenario.data, expected_type):
                raise SchemaMismatch(expected_type, type(scenario.data))
        return expected_type

    def _own(self, scenario: Scenario) -> Scenario:
        return Scenario(scenario.probability, data=copy.deepcopy(scenario.data), name=scenario.name)

    def _check_worker(self, worker: int) -> int:
        if not 0 <= worker < len(self._partitions):
            raise IndexOutOfRange(worker, len(self._partitions), "worker")
        return worker

    def add_scenario(self, scenario: Scenario, worker: Optional[int] = None, defer: bool = False) -> None:
        """
        Add one scenario to ``worker`` (least-loaded partition by default).

        The subproblem is generated right away unless ``defer`` is set or a
        recipe is still missing.

        Raises:
            SchemaMismatch: If the payload type differs from the scenario type
            IndexOutOfRange: If ``worker`` is not a partition index
        """
        with self._lock:
            k = least_loaded(self.partition_sizes()) if worker is None else self._check_worker(worker)
            self._scenario_type = self._check_types([scenario])
            self._partitions[k].add(self._own(scenario))
            self._solution = None
            if not defer and self._recipes[1] is not None and self._recipes[2] is not None:
                self.generate()

    def add_scenarios(
        self,
        scenarios: Sequence[Scenario],
        worker: Optional[int] = None,
        defer: bool = False,
    ) -> None:
        """
        Add many scenarios in one pass.

        Without a target worker the new scenarios are split into contiguous
        chunks, sized so that the partition loads end up as even as possible.
        """
        scenarios = list(scenarios)
        if not scenarios:
            return
        with self._lock:
            if worker is not None:
                self._check_worker(worker)
            self._scenario_type = self._check_types(scenarios)
            owned = [self._own(s) for s in scenarios]
            if worker is not None:
                self._partitions[worker].extend(owned)
            else:
                start = 0
                for k, count in enumerate(fill_counts(self.partition_sizes(), len(owned))):
                    self._partitions[k].extend(owned[start:start + count])
                    start += count
            self._solution = None
            log.debug("added %d scenarios, partition sizes %s", len(owned), self.partition_sizes())
            if not defer and self._recipes[1] is not None and self._recipes[2] is not None:
                self.generate()

    def sample(self, sampler, n: int, defer: bool = False) -> None:
        """
        Add ``n`` scenarios drawn from ``sampler``.

        Existing scenarios keep their relative weights: with ``N`` scenarios
        already present they are rescaled by ``N/(N+n)`` and every new one
        gets probability ``1/(N+n)``.
        """
        if n < 1:
            raise InvalidInputError(f"sample size must be positive, got {n}")
        with self._lock:
            total = self.nscenarios + n
            drawn = [s.with_probability(1.0 / total) for s in sampler.sample(n)]
            # Existing weights are only touched once the draws are known to fit.
            self._check_types(drawn)
            if self.nscenarios:
                factor = self.nscenarios / total
                for partition in self._partitions:
                    partition.rescale(factor)
            self.add_scenarios(drawn, defer=defer)

    @property
    def nscenarios(self) -> int:
        return sum(len(p) for p in self._partitions)

    def __len__(self) -> int:
        return self.nscenarios

    def _offsets(self) -> List[int]:
        offsets, total = [], 0
        for p in self._partitions:
            offsets.append(total)
            total += len(p)
        return offsets

    def _locate(self, i: int) -> Tuple[ScenarioPartition, int]:
        n = self.nscenarios
        if not isinstance(i, (int, np.integer)) or not 0 <= i < n:
            raise IndexOutOfRange(i, n)
        for partition in self._partitions:
            if i < len(partition):
                return partition, int(i)
            i -= len(partition)
        raise IndexOutOfRange(i, n)

    def scenario(self, i: int) -> Scenario:
        """Scenario ``i`` of the flattened, partition-ordered sequence."""
        partition, local = self._locate(i)
        return partition.scenario(local)

    def scenarios(self) -> List[Scenario]:
        return [s for p in self._partitions for s in p.scenarios]

    def probabilities(self) -> np.ndarray:
        return np.array([s.probability for s in self.scenarios()], dtype=np.float64)

    def subproblem(self, i: int) -> Model:
        """
        Generated subproblem of scenario ``i``.

        Raises:
            IndexOutOfRange: If ``i`` is not a scenario index
            StaleStateConflict: If the subproblem is missing or stale
        """
        partition, local = self._locate(i)
        return partition.subproblem(local, self._epoch[2])

    def subproblems(self) -> List[Model]:
        return [self.subproblem(i) for i in range(self.nscenarios)]

    @property
    def nsubproblems(self) -> int:
        """Number of up-to-date subproblems."""
        return sum(p.generated(self._epoch[2]) for p in self._partitions)

    def masterterms(self, i: int) -> List[Tuple[int, int, float]]:
        """``(row, column, coefficient)`` first-stage terms of subproblem ``i``."""
        return self.subproblem(i).masterterms()

    # ------------------------------------------------------------------
    # Partitions
    # ------------------------------------------------------------------

    @property
    def partitions(self) -> Tuple[ScenarioPartition, ...]:
        return tuple(self._partitions)

    @property
    def nworkers(self) -> int:
        return len(self._partitions)

    def partition_sizes(self) -> List[int]:
        return [len(p) for p in self._partitions]

    def rebalance(self, worker_count: int) -> None:
        """
        Redistribute the scenarios over ``worker_count`` partitions.

        Contiguous, even split in global order. Subproblems move with their
        scenarios and nothing is invalidated.
        """
        with self._lock:
            entries = [e for p in self._partitions for e in p.entries()]
            sizes = even_split(len(entries), int(worker_count))
            partitions, start = [], 0
            for k, size in enumerate(sizes):
                partitions.append(ScenarioPartition(k, entries[start:start + size]))
                start += size
            self._partitions = partitions
            log.debug("rebalanced to %d partitions: %s", worker_count, sizes)

    def collect(
        self,
        func: Callable[[int, Scenario, Optional[Model]], Any],
        generated: bool = True,
    ) -> List[Any]:
        """
        Run ``func(index, scenario, subproblem)`` on every scenario.

        Work is dispatched per partition through the transport and gathered
        in global order once every partition finished. With
        ``generated=False`` subproblems are not required and ``func``
        receives ``None`` instead.
        """
        epoch = self._epoch[2] if generated else None
        offsets = self._offsets()
        jobs = list(zip(self._partitions, offsets))
        chunks = self._transport.map(lambda job: job[0].map(func, epoch, job[1]), jobs)
        return [item for chunk in chunks for item in chunk]

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def stage_state(self, stage: Union[int, str]) -> StageState:
        stage = stage_key(stage)
        if self._recipes[stage] is None:
            return StageState.UNDEFINED
        if stage == 1:
            if self._master is None:
                return StageState.DEFERRED
            if self._master_epoch != self._epoch[1]:
                return StageState.STALE
            return StageState.GENERATED
        epoch = self._epoch[2]
        if any(p.stale(epoch) for p in self._partitions):
            return StageState.STALE
        if any(p.pending(epoch) for p in self._partitions):
            return StageState.DEFERRED
        if self.nscenarios == 0 and self._generated_epoch[2] != epoch:
            return StageState.STALE if self._generated_epoch[2] >= 0 else StageState.DEFERRED
        return StageState.GENERATED

    @property
    def deferred(self) -> bool:
        """True unless both stages are generated and current."""
        return not (
            self.stage_state(1) == StageState.GENERATED
            and self.stage_state(2) == StageState.GENERATED
        )

    def generate(self) -> None:
        """
        Generate the master and every missing or stale subproblem.

        Idempotent: with nothing pending this is a no-op. Subproblems are
        built partition by partition through the transport.

        Raises:
            UndefinedRecipe: If a needed recipe is not registered
            GenerationError: If some subproblems failed; the rest are kept
        """
        with self._lock:
            if self._recipes[1] is None:
                raise UndefinedRecipe(1)
            if self._master is None or self._master_epoch != self._epoch[1]:
                self._generate_master()

            if self.nscenarios == 0:
                if self._recipes[2] is not None:
                    self._generated_epoch[2] = self._epoch[2]
                return
            if self._recipes[2] is None:
                raise UndefinedRecipe(2)

            recipe = self._recipes[2]
            data = self._stage_data[2]
            decisions = self._decisions
            epoch = self._epoch[2]

            def build(scenario: Scenario) -> Model:
                return recipe.generate(data, decisions, scenario)

            jobs = list(zip(self._partitions, self._offsets()))
            results = self._transport.map(lambda job: job[0].generate(build, epoch, job[1]), jobs)
            failed: Dict[int, BaseException] = {}
            for chunk in results:
                failed.update(chunk)
            if failed:
                log.warning("stage 2 generation failed for %d scenarios", len(failed))
                raise GenerationError(failed)
            self._generated_epoch[2] = epoch
            log.debug("generated %d subproblems (epoch %d)", self.nscenarios, epoch)

    def _generate_master(self) -> None:
        master = self._recipes[1].generate(self._stage_data[1])
        if master.num_vars == 0:
            raise InvalidInputError("first-stage model has no decision variables")
        decisions = Decisions.from_model(master)
        if self._decisions is not None and decisions != self._decisions:
            # Subproblems were built against other decisions.
            self._epoch[2] += 1
        self._master = master
        self._master_epoch = self._epoch[1]
        self._generated_epoch[1] = self._epoch[1]
        self._decisions = decisions
        log.debug("generated master with %d decisions", len(decisions))

    def stage_one_model(self) -> Model:
        """The generated first-stage model."""
        if self._master is None or self._master_epoch != self._epoch[1]:
            raise StaleStateConflict("first-stage model is not generated")
        return self._master

    @property
    def decisions(self) -> Decisions:
        if self._decisions is None:
            raise StaleStateConflict("first-stage model is not generated")
        return self._decisions

    def first_stage_dims(self) -> int:
        return len(self.decisions)

    def recourse_length(self) -> int:
        """Number of second-stage variables (excluding decision placeholders)."""
        if self.nscenarios == 0:
            return 0
        model = self.subproblem(0)
        return model.num_vars - model.num_decisions

    @property
    def objective_sense(self) -> str:
        return self.stage_one_model().sense

    @property
    def sign(self) -> float:
        """-1 for maximization programs, 1 otherwise."""
        return -1.0 if self.objective_sense == "maximize" else 1.0

    # ------------------------------------------------------------------
    # Well-formedness
    # ------------------------------------------------------------------

    def total_probability(self) -> float:
        return float(sum(p.probability() for p in self._partitions))

    @property
    def is_well_formed(self) -> bool:
        return self.nscenarios > 0 and abs(self.total_probability() - 1.0) <= PROBABILITY_TOLERANCE

    def validate(self, normalize: Optional[bool] = None) -> None:
        """
        Check that the scenario probabilities sum to one.

        Args:
            normalize: Rescale instead of raising (defaults to the program
                setting)

        Raises:
            ProbabilityError: If the program has no scenarios or the
                probabilities cannot be normalized
        """
        normalize = self.normalize if normalize is None else normalize
        with self._lock:
            if self.nscenarios == 0:
                raise ProbabilityError("program has no scenarios")
            total = self.total_probability()
            if abs(total - 1.0) <= PROBABILITY_TOLERANCE:
                return
            if not normalize or total <= 0:
                raise ProbabilityError(f"scenario probabilities sum to {total:.12g}, expected 1")
            warnings.warn(f"Normalizing scenario probabilities (sum was {total:.12g})", stacklevel=2)
            for partition in self._partitions:
                partition.rescale(1.0 / total)
            self._solution = None

    def expected_scenario(self) -> Scenario:
        """
        Probability-weighted expected scenario.

        Each partition reduces its own scenarios; the partial results are
        combined by probability mass.
        """
        if self.nscenarios == 0:
            raise ProbabilityError("program has no scenarios")
        partials = self._transport.map(lambda p: p.partial_expectation(), self._partitions)
        partials = [(mass, data) for mass, data in partials if mass > 0]
        total = sum(mass for mass, _ in partials)
        if total <= 0:
            raise ProbabilityError("scenario probabilities sum to zero")
        data = expectation([d for _, d in partials], [m / total for m, _ in partials])
        return Scenario(1.0, data=data, name="expected")

    # ------------------------------------------------------------------
    # Solving & committed solution
    # ------------------------------------------------------------------

    def optimize(self, solver=None) -> Status:
        """
        Generate, validate and solve the program with a structured solver.

        The solution is committed only when the solver reports OPTIMAL.
        """
        if solver is None:
            solver = self._solver
        if solver is None:
            from .extensive import ExtensiveFormSolver

            solver = ExtensiveFormSolver()
        with self._lock:
            self.generate()
            self.validate()
            state = solver.build(self)
            status = solver.run(state)
            if status == Status.OPTIMAL:
                solver.commit(self, state)
            else:
                log.info("%s finished with status %s; nothing committed", solver, status)
        return status

    def commit_solution(
        self,
        solution: Solution,
        second_stage: Sequence[SolveResult],
        master_result: Optional[SolveResult] = None,
    ) -> None:
        """
        Install a solver's result.

        Everything is validated before anything is written; the decision is
        published last, as one immutable object.
        """
        with self._lock:
            dims = self.first_stage_dims()
            if len(solution.decision) != dims:
                raise DimensionError(f"decision has {len(solution.decision)} entries, expected {dims}")
            if len(second_stage) != self.nscenarios:
                raise DimensionError(
                    f"{len(second_stage)} second-stage results for {self.nscenarios} scenarios"
                )
            models = self.subproblems()
            for i, (model, result) in enumerate(zip(models, second_stage)):
                if len(result.x) != model.num_vars:
                    raise DimensionError(f"second-stage result {i} does not match its subproblem")
            for model, result in zip(models, second_stage):
                model.load_solution(result)
            if master_result is not None:
                self._master.load_solution(master_result)
            self._solution = solution

    @property
    def solution(self) -> Solution:
        solution = self._solution
        if solution is None:
            raise StaleStateConflict()
        return solution

    @property
    def has_solution(self) -> bool:
        return self._solution is not None

    def optimal_decision(self) -> np.ndarray:
        return self.solution.decision

    def optimal_value(self) -> float:
        return self.solution.objective

    def reduced_costs(self) -> np.ndarray:
        return self.solution.reduced_costs

    def dual_prices(self) -> np.ndarray:
        return self.solution.duals

    def __repr__(self) -> str:
        return (
            f"StochasticProgram(scenarios={self.nscenarios}, workers={self.nworkers}, "
            f"first_stage={self.stage_state(1)}, second_stage={self.stage_state(2)})"
        )


class StochasticModel:
    """
    Stage recipes without data or scenarios.

    :meth:`instantiate` turns the model into a :class:`StochasticProgram`,
    e.g. once per sampled scenario set.
    """

    def __init__(self, first_stage: Optional[Callable] = None, second_stage: Optional[Callable] = None) -> None:
        self._recipes: Dict[int, Optional[Recipe]] = {
            1: as_recipe(1, first_stage) if first_stage is not None else None,
            2: as_recipe(2, second_stage) if second_stage is not None else None,
        }

    def first_stage(self, func: Callable) -> Callable:
        self._recipes[1] = as_recipe(1, func)
        return func

    def second_stage(self, func: Callable) -> Callable:
        self._recipes[2] = as_recipe(2, func)
        return func

    def instantiate(
        self,
        scenarios: Iterable[Scenario] = (),
        first_stage_data: Any = None,
        second_stage_data: Any = None,
        defer: bool = False,
        **kwargs: Any,
    ) -> StochasticProgram:
        """Build a program from the recipes, the given data and scenarios."""
        for stage, recipe in self._recipes.items():
            if recipe is None:
                raise UndefinedRecipe(stage)
        program = StochasticProgram(first_stage_data, second_stage_data, **kwargs)
        program.register_recipe(1, self._recipes[1], defer=True)
        program.register_recipe(2, self._recipes[2], defer=True)
        program.add_scenarios(list(scenarios), defer=True)
        if not defer:
            program.generate()
        return program

    def __repr__(self) -> str:
        return f"StochasticModel(first_stage={self._recipes[1]}, second_stage={self._recipes[2]})"
