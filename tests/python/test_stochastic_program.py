"""
Tests for the StochasticProgram container: recipes, generation, staleness,
scenario management and probability validation.
"""

import pytest
import numpy as np

from stochprog import Model, Status
from stochprog.exceptions import (
    DimensionError,
    GenerationError,
    IndexOutOfRange,
    InvalidInputError,
    ProbabilityError,
    SchemaMismatch,
    StaleStateConflict,
    UndefinedRecipe,
)
from stochprog.stochastic import (
    FunctionSampler,
    Scenario,
    StageState,
    StochasticModel,
    StochasticProgram,
    UniformSampler,
)


def _first(data):
    model = Model()
    x = model.add_var(lb=0, ub=10, name="x")
    model.minimize(x)
    return model


def _second(data, decisions, xi):
    model = Model()
    (x,) = model.add_decisions(decisions)
    y = model.add_var(lb=0, name="y")
    model.add_constr(y + x >= xi)
    model.minimize(2 * y)
    return model


class TestRecipes:
    """Tests for recipe registration and the stage registry."""

    def test_undefined_states(self):
        """A fresh program has no recipes and nothing generated."""
        program = StochasticProgram()
        assert program.stage_state(1) == StageState.UNDEFINED
        assert program.stage_state("stage_2") == StageState.UNDEFINED
        assert not program.has_generator(1)
        assert program.deferred

    def test_generate_without_recipe(self):
        """generate() names the missing stage."""
        program = StochasticProgram(scenarios=[Scenario(1.0, 1.0)])
        with pytest.raises(UndefinedRecipe) as info:
            program.generate()
        assert info.value.stage == 1

        program.register_recipe(1, _first)
        with pytest.raises(UndefinedRecipe) as info:
            program.generate()
        assert info.value.stage == 2

    def test_decorators_generate(self):
        """Registering both recipes generates right away."""
        program = StochasticProgram(scenarios=[Scenario(0.5, 1.0), Scenario(0.5, 2.0)])

        @program.first_stage
        def first(data):
            return _first(data)

        @program.second_stage
        def second(data, decisions, xi):
            return _second(data, decisions, xi)

        assert program.stage_state(1) == StageState.GENERATED
        assert program.stage_state(2) == StageState.GENERATED
        assert program.nsubproblems == 2

    def test_deferred_registration(self):
        """defer=True leaves the stages DEFERRED."""
        program = StochasticProgram(scenarios=[Scenario(1.0, 1.0)])
        program.register_recipe(1, _first, defer=True)
        program.register_recipe(2, _second, defer=True)

        assert program.stage_state(1) == StageState.DEFERRED
        assert program.stage_state(2) == StageState.DEFERRED
        with pytest.raises(StaleStateConflict):
            program.subproblem(0)

        program.generate()
        assert not program.deferred

    def test_stage_keys(self):
        """Stage identifiers accept several spellings."""
        program = StochasticProgram()
        program.register_recipe("first", _first, defer=True)
        assert program.has_generator(":stage_1")
        with pytest.raises(InvalidInputError):
            program.recipe(3)

    def test_recipe_must_return_model(self):
        """Recipes returning something else fail generation."""
        program = StochasticProgram()
        program.register_recipe(1, lambda data: "not a model", defer=True)
        with pytest.raises(InvalidInputError):
            program.generate()

    def test_first_stage_rejects_placeholders(self):
        def first(data):
            model = Model()
            model.add_decisions(1)
            return model

        program = StochasticProgram()
        with pytest.raises(InvalidInputError):
            program.register_recipe(1, first)

    def test_stochastic_model_requires_recipes(self):
        with pytest.raises(UndefinedRecipe):
            StochasticModel(_first).instantiate([Scenario(1.0, 1.0)])


class TestGeneration:
    """Tests for deferred, incremental and idempotent generation."""

    def test_generate_is_idempotent(self, scalar):
        """A second generate() rebuilds nothing."""
        before = scalar.subproblems()
        master = scalar.stage_one_model()

        scalar.generate()

        assert scalar.stage_one_model() is master
        assert all(a is b for a, b in zip(before, scalar.subproblems()))

    def test_second_stage_data_marks_stale(self, maximizing):
        """Replacing stage-2 data makes the subproblems STALE, not the master."""
        master = maximizing.stage_one_model()
        maximizing.set_second_stage_data((2.0, -0.5, 0.5))

        assert maximizing.stage_state(2) == StageState.STALE
        assert maximizing.stage_state(1) == StageState.GENERATED
        with pytest.raises(StaleStateConflict):
            maximizing.subproblem(0)

        maximizing.generate()
        assert maximizing.stage_state(2) == StageState.GENERATED
        assert maximizing.stage_one_model() is master
        assert maximizing.subproblem(0).variables[1].ub == 0.5

    def test_first_stage_data_marks_master_stale(self, maximizing):
        """Replacing stage-1 data regenerates only the master."""
        sub = maximizing.subproblem(0)
        maximizing.set_first_stage_data((-2.0, 2.0))

        assert maximizing.stage_state(1) == StageState.STALE
        with pytest.raises(StaleStateConflict):
            maximizing.stage_one_model()

        maximizing.generate()
        assert maximizing.stage_one_model().variables[0].ub == 2.0
        assert maximizing.subproblem(0) is sub

    def test_new_decisions_restale_subproblems(self):
        """A master with different decisions invalidates the subproblems."""
        def first(data):
            model = Model()
            for name in data:
                model.add_var(lb=0, ub=1, name=name)
            model.minimize(0)
            return model

        def second(data, decisions, xi):
            model = Model()
            model.add_decisions(decisions)
            model.add_var(name="y")
            return model

        program = StochasticProgram(("a",), scenarios=[Scenario(1.0, 0.0)])
        program.register_recipe(1, first, defer=True)
        program.register_recipe(2, second)
        assert program.subproblem(0).num_decisions == 1

        program.set_first_stage_data(("a", "b"))
        program.generate()
        assert program.first_stage_dims() == 2
        assert program.subproblem(0).num_decisions == 2

    def test_incremental_add(self, scalar):
        """Adding a scenario generates only its subproblem."""
        existing = scalar.subproblems()
        scalar.add_scenario(Scenario(0.0, 75.0))

        assert scalar.nscenarios == 3
        assert all(a is b for a, b in zip(existing, scalar.subproblems()))

    def test_add_deferred(self, scalar):
        scalar.add_scenario(Scenario(0.0, 75.0), defer=True)
        assert scalar.stage_state(2) == StageState.DEFERRED
        assert scalar.nsubproblems == 2

    def test_partial_generation_failure(self):
        """Failing scenarios are reported; the others stay generated."""
        calls = {"fail": True}

        def second(data, decisions, xi):
            if xi < 0 and calls["fail"]:
                raise ValueError("bad scenario")
            return _second(data, decisions, abs(xi))

        program = StochasticProgram(scenarios=[Scenario(0.5, 1.0), Scenario(0.5, -1.0)], workers=2)
        program.register_recipe(1, _first, defer=True)
        program.register_recipe(2, second, defer=True)

        with pytest.raises(GenerationError) as info:
            program.generate()
        assert info.value.indices == [1]
        assert program.nsubproblems == 1
        assert program.stage_state(2) == StageState.DEFERRED

        calls["fail"] = False
        program.generate()
        assert program.nsubproblems == 2

    def test_decision_count_mismatch(self):
        """Second stages must reference every decision or none."""
        def second(data, decisions, xi):
            model = Model()
            model.add_decisions(len(decisions) + 1)
            return model

        program = StochasticProgram(scenarios=[Scenario(1.0, 1.0)])
        program.register_recipe(1, _first, defer=True)
        program.register_recipe(2, second, defer=True)
        with pytest.raises(GenerationError) as info:
            program.generate()
        assert isinstance(info.value.failed[0], DimensionError)

    def test_recipes_get_payload_and_data(self):
        """Second-stage recipes see the stage data and the scenario payload."""
        seen = []

        def second(data, decisions, xi):
            seen.append((data, xi))
            return _second(data, decisions, xi)

        program = StochasticProgram(None, "stage-2", scenarios=[Scenario(1.0, 4.0)])
        program.register_recipe(1, _first, defer=True)
        program.register_recipe(2, second)
        assert seen == [("stage-2", 4.0)]


class TestScenarios:
    """Tests for scenario access and typing."""

    def test_indexing(self, quickstart):
        """Scenarios and subproblems are indexed globally."""
        assert quickstart.nscenarios == len(quickstart) == 2
        assert quickstart.scenario(1).name == "xi2"
        np.testing.assert_allclose(quickstart.probabilities(), [0.4, 0.6])
        assert quickstart.masterterms(0) == [(0, 0, -60.0), (1, 1, -80.0)]

    def test_index_out_of_range(self, quickstart):
        with pytest.raises(IndexOutOfRange):
            quickstart.scenario(2)
        with pytest.raises(IndexOutOfRange):
            quickstart.subproblem(-1)

    def test_worker_out_of_range(self, scalar):
        with pytest.raises(IndexOutOfRange):
            scalar.add_scenario(Scenario(0.0, 1.0), worker=5)

    def test_schema_mismatch(self, quickstart, scalar):
        """Payloads must match the program's scenario type."""
        with pytest.raises(SchemaMismatch):
            quickstart.add_scenario(Scenario(0.0, 3.0))
        with pytest.raises(SchemaMismatch):
            scalar.add_scenario(Scenario(0.0, "high"))

    def test_explicit_scenario_type(self):
        program = StochasticProgram(scenario_type=np.ndarray)
        with pytest.raises(SchemaMismatch):
            program.add_scenario(Scenario(1.0, [1.0, 2.0]))

    def test_payload_is_copied(self):
        """The program owns a copy of each payload."""
        payload = np.array([1.0])
        program = StochasticProgram()
        program.add_scenario(Scenario(1.0, payload))
        payload[0] = 99.0
        assert program.scenario(0).data[0] == 1.0

    def test_sample_rescales(self, scalar):
        """Sampling keeps existing relative weights."""
        scalar.sample(UniformSampler(40.0, 60.0, seed=0), 2)

        probs = scalar.probabilities()
        assert len(probs) == 4
        assert probs.sum() == pytest.approx(1.0)
        np.testing.assert_allclose(probs[:2] / probs[:2].sum(), [0.4, 0.6])
        assert scalar.nsubproblems == 4

    def test_sample_mismatch_keeps_weights(self, scalar):
        """A rejected draw leaves the existing scenarios untouched."""
        sampler = FunctionSampler(lambda rng: np.array([1.0, 2.0]))
        with pytest.raises(SchemaMismatch):
            scalar.sample(sampler, 2)

        assert scalar.nscenarios == 2
        np.testing.assert_allclose(scalar.probabilities(), [0.4, 0.6])
        assert scalar.is_well_formed


class TestProbabilities:
    """Tests for well-formedness."""

    def test_well_formed(self, scalar):
        assert scalar.is_well_formed
        assert scalar.total_probability() == pytest.approx(1.0)

    def test_ill_formed_raises(self, scalar):
        """Probabilities must sum to one before solving."""
        scalar.add_scenario(Scenario(0.5, 75.0))
        assert not scalar.is_well_formed
        with pytest.raises(ProbabilityError):
            scalar.validate()
        with pytest.raises(ProbabilityError):
            scalar.optimize()
        assert not scalar.has_solution

    def test_normalize(self, scalar):
        """normalize=True rescales with a warning."""
        scalar.add_scenario(Scenario(1.0, 75.0))
        with pytest.warns(UserWarning):
            scalar.validate(normalize=True)
        assert scalar.is_well_formed
        np.testing.assert_allclose(scalar.probabilities(), [0.2, 0.3, 0.5])

    def test_empty_program(self):
        with pytest.raises(ProbabilityError):
            StochasticProgram().validate()


class TestCommittedSolution:
    """Tests for the committed solution."""

    def test_no_solution_before_optimize(self, scalar):
        assert not scalar.has_solution
        with pytest.raises(StaleStateConflict):
            scalar.optimal_decision()

    def test_optimize_commits(self, scalar):
        """optimize() writes decision, value and second-stage solutions."""
        assert scalar.optimize() == Status.OPTIMAL

        np.testing.assert_allclose(scalar.optimal_decision(), [50.0], atol=1e-7)
        assert scalar.optimal_value() == pytest.approx(8000.0)
        assert scalar.solution.status == Status.OPTIMAL
        assert scalar.subproblem(0).objective_value == pytest.approx(150 * 50.0)
        assert scalar.stage_one_model().objective_value == pytest.approx(8000.0)

    def test_solution_is_read_only(self, scalar):
        scalar.optimize()
        with pytest.raises(ValueError):
            scalar.optimal_decision()[0] = 1.0

    def test_mutation_drops_solution(self, scalar):
        """Replacing data invalidates the committed solution."""
        scalar.optimize()
        scalar.set_second_stage_data("anything")
        assert not scalar.has_solution

    def test_commit_validates_first(self, scalar):
        """A malformed commit leaves the previous solution in place."""
        scalar.optimize()
        previous = scalar.solution
        bad = type(previous)(
            decision=np.zeros(3),
            objective=0.0,
            reduced_costs=np.zeros(3),
            duals=np.zeros(0),
        )
        with pytest.raises(DimensionError):
            scalar.commit_solution(bad, [])
        assert scalar.solution is previous

    def test_repr(self, scalar):
        assert "scenarios=2" in repr(scalar)
