"""
Tests for the algebraic model builder and decision placeholders.
"""

import pytest
import numpy as np

from stochprog import Model, Decisions, Status
from stochprog.exceptions import DimensionError, InvalidInputError
from stochprog.model import Variable, LinearExpr, Constraint


@pytest.fixture
def farm():
    """Empty model with two acreage columns."""
    model = Model("farm")
    wheat = model.add_var(lb=0, ub=500, name="wheat")
    corn = model.add_var(name="corn")
    return model, wheat, corn


class TestVariable:
    """Tests for columns."""

    def test_bounds_and_index(self, farm):
        model, wheat, corn = farm

        assert isinstance(wheat, Variable)
        assert (wheat.index, wheat.lb, wheat.ub) == (0, 0.0, 500.0)
        assert corn.index == 1
        assert corn.ub == np.inf
        assert not wheat.is_decision
        assert repr(wheat) == "Variable(wheat)"

    def test_unnamed_repr(self):
        assert repr(Model().add_var()) == "Variable(x_0)"

    def test_add_vars(self):
        """Scalar or per-column bounds, names from the prefix."""
        model = Model()
        plots = model.add_vars(3, lb=np.array([0.0, 1.0, 2.0]), ub=5, name_prefix="plot")

        assert [v.name for v in plots] == ["plot_0", "plot_1", "plot_2"]
        assert [v.lb for v in plots] == [0.0, 1.0, 2.0]
        assert all(v.ub == 5 for v in plots)

    def test_inverted_bounds_rejected(self):
        """lb > ub is an input error."""
        with pytest.raises(InvalidInputError):
            Model().add_var(lb=5, ub=1)

    def test_bound_array_length(self):
        """Bound arrays must match the variable count."""
        with pytest.raises(DimensionError):
            Model().add_vars(3, lb=np.zeros(2))


class TestLinearExpr:
    """Tests for expression arithmetic."""

    def test_sum_of_columns(self, farm):
        _, wheat, corn = farm
        expr = wheat + corn

        assert isinstance(expr, LinearExpr)
        assert expr.terms == {0: 1.0, 1: 1.0}

    def test_costs_and_constant(self, farm):
        _, wheat, corn = farm
        expr = 150 * wheat + 230 * corn - 40

        assert expr.terms == {0: 150.0, 1: 230.0}
        assert expr.constant == -40

    def test_repeated_variable_accumulates(self, farm):
        """Terms on the same variable are summed."""
        _, wheat, _ = farm
        expr = wheat + 2 * wheat - 0.5 * wheat
        assert expr.terms[wheat.index] == pytest.approx(2.5)

    def test_negation_and_division(self, farm):
        _, wheat, _ = farm
        assert (-wheat).terms[wheat.index] == -1
        assert (wheat / 4).terms[wheat.index] == 0.25
        assert (10 - wheat).constant == 10

    def test_numpy_coefficients(self, farm):
        """numpy scalars on the left still build expressions."""
        _, wheat, corn = farm
        expr = np.float64(2.5) * wheat + np.int64(3) * corn
        assert isinstance(expr, LinearExpr)
        assert expr.terms == {0: 2.5, 1: 3.0}

    def test_sum_builtin(self, farm):
        _, wheat, corn = farm
        expr = sum(c * v for c, v in zip([1.0, 2.0], [wheat, corn]))
        assert expr.terms == {0: 1.0, 1: 2.0}

    def test_wrap(self, farm):
        """wrap() lifts constants and variables to expressions."""
        _, wheat, _ = farm
        assert LinearExpr.wrap(3.0).constant == 3.0
        assert LinearExpr.wrap(wheat).terms == {wheat.index: 1.0}

    def test_repr(self, farm):
        _, wheat, corn = farm
        assert repr(2 * wheat - corn + 1) == "2*wheat - corn + 1"
        assert repr(-wheat) == "-wheat"
        assert repr(LinearExpr()) == "0"


class TestConstraint:
    """Tests for rows built by comparison."""

    @pytest.mark.parametrize("op, sense", [("le", "<="), ("ge", ">="), ("eq", "==")])
    def test_senses(self, farm, op, sense):
        _, wheat, corn = farm
        build = {
            "le": lambda: wheat + corn <= 500,
            "ge": lambda: wheat + corn >= 500,
            "eq": lambda: wheat + corn == 500,
        }
        row = build[op]()

        assert isinstance(row, Constraint)
        assert row.sense == sense
        assert row.lhs.constant == -500

    def test_equality_builds_constraint(self, farm):
        """== is a row, not an identity test; columns compare by index."""
        model, wheat, corn = farm
        assert isinstance(wheat == corn, Constraint)
        assert [v.index for v in model.variables].count(corn.index) == 1
        with pytest.raises(TypeError):
            hash(wheat)

    def test_reflected_comparison(self, farm):
        """A constant on the left flips the sense."""
        _, wheat, _ = farm
        row = 200 <= wheat
        assert row.sense == ">="

    def test_add_constr(self, farm):
        model, wheat, corn = farm
        row = model.add_constr(wheat + corn <= 500, name="acreage")

        assert row.index == 0
        assert repr(row) == "acreage: wheat + corn - 500 <= 0"

    def test_add_constr_type_checked(self, farm):
        """Only Constraint objects are accepted."""
        model, wheat, _ = farm
        with pytest.raises(InvalidInputError):
            model.add_constr(wheat + 1)


class TestModel:
    """Tests for Model class."""

    def test_empty_model(self):
        model = Model()
        assert (model.num_vars, model.num_constrs) == (0, 0)
        assert model.status == Status.UNSOLVED
        assert model.standard_form().shape == (0, 0)

    def test_objective_sense(self, farm):
        model, wheat, _ = farm

        model.minimize(-wheat)
        assert model.sense == "minimize"
        model.maximize(wheat)
        assert model.sense == "maximize"
        assert model.standard_form().sign == -1.0

    def test_standard_form(self):
        """Constants move to the right-hand side."""
        model = Model()
        x = model.add_var(lb=0, name="x")
        y = model.add_var(lb=0, name="y")

        model.add_constr(x + 2*y + 1 <= 11)
        model.add_constr(3*x + y >= 15)
        model.minimize(-x - y + 4)

        form = model.standard_form()

        assert form.shape == (2, 2)
        np.testing.assert_array_equal(form.c, [-1, -1])
        np.testing.assert_array_equal(form.b, [10, 15])
        assert list(form.senses) == ["<=", ">="]
        assert form.constant == 4
        assert form.sign == 1.0
        np.testing.assert_array_equal(form.A.toarray(), [[1, 2], [3, 1]])

    def test_evaluate_objective(self):
        """Objective value at given values, constant included."""
        model = Model()
        x = model.add_var(name="x")
        y = model.add_var(name="y")
        model.minimize(2*x + 3*y + 1)

        assert model.evaluate_objective([1.0, 2.0]) == pytest.approx(9.0)
        with pytest.raises(DimensionError):
            model.evaluate_objective([1.0])

    def test_model_repr(self, farm):
        model, wheat, _ = farm
        model.add_constr(wheat <= 10)

        text = repr(model)
        assert "vars=2" in text
        assert "constrs=1" in text
        assert "decisions=0" in text


class TestDecisions:
    """Tests for first-stage decision placeholders."""

    @pytest.fixture
    def second_stage(self):
        model = Model()
        x1, x2 = model.add_decisions(Decisions(("x1", "x2")))
        y = model.add_var(lb=0, name="y")
        model.add_constr(y - 2*x1 >= 1, name="link")
        model.add_constr(y + x2 <= 10, name="cap")
        model.minimize(3*y + 5*x2)
        return model

    def test_placeholders(self, second_stage):
        """Placeholders keep their decision position and names."""
        placeholders = second_stage.decision_vars
        assert [v.decision for v in placeholders] == [0, 1]
        assert [v.name for v in placeholders] == ["x1", "x2"]
        assert second_stage.num_decisions == 2
        assert all(v.is_decision for v in placeholders)

    def test_add_decisions_once(self, second_stage):
        """A model holds a single set of placeholders."""
        with pytest.raises(InvalidInputError):
            second_stage.add_decisions(2)

    def test_add_decisions_by_count(self):
        """An integer count creates default names."""
        model = Model()
        placeholders = model.add_decisions(3)
        assert [v.name for v in placeholders] == ["x_0", "x_1", "x_2"]

    def test_masterterms(self, second_stage):
        """Coefficients of decisions per row, in decision positions."""
        assert second_stage.masterterms() == [(0, 0, -2.0), (1, 1, 1.0)]

    def test_decision_objective(self, second_stage):
        """Objective coefficients on decisions."""
        np.testing.assert_array_equal(second_stage.decision_objective(), [0.0, 5.0])

    def test_standard_form_fixes_placeholders(self, second_stage):
        """Placeholder bounds collapse to the decision."""
        form = second_stage.standard_form([1.5, 2.0])
        assert form.lb[0] == form.ub[0] == 1.5
        assert form.lb[1] == form.ub[1] == 2.0

    def test_standard_form_needs_decision(self, second_stage):
        """Second-stage models need a decision to be solved."""
        with pytest.raises(InvalidInputError):
            second_stage.standard_form()

    def test_fix_decisions(self, second_stage):
        """Stored decisions are used by default and can be cleared."""
        second_stage.fix_decisions([1.0, 3.0])
        np.testing.assert_array_equal(second_stage.fixed_decisions, [1.0, 3.0])
        form = second_stage.standard_form()
        assert form.lb[1] == 3.0

        second_stage.fix_decisions(None)
        assert second_stage.fixed_decisions is None

    def test_fix_decisions_length(self, second_stage):
        """Decision length must match the placeholders."""
        with pytest.raises(DimensionError):
            second_stage.fix_decisions([1.0])

    def test_solve_with_decision(self, second_stage):
        """y = max(1 + 2 x1, 0) with the decision fixed."""
        result = second_stage.solve(decision=[2.0, 1.0])

        assert result.status == Status.OPTIMAL
        assert second_stage.value(second_stage.variables[2]) == pytest.approx(5.0)
        assert second_stage.objective_value == pytest.approx(3 * 5.0 + 5 * 1.0)


class TestSolutionAccess:
    """Tests for reading a loaded solution."""

    def test_no_solution(self):
        """Reading without a solution is an error."""
        model = Model()
        x = model.add_var(name="x")
        with pytest.raises(InvalidInputError):
            model.value(x)
        with pytest.raises(InvalidInputError):
            model.objective_value

    def test_values_and_duals(self, simple_lp):
        """Values, duals and reduced costs after a solve."""
        model = Model()
        x = model.add_var(lb=0, name="x")
        y = model.add_var(lb=0, name="y")
        c1 = model.add_constr(x + 2*y <= 10)
        c2 = model.add_constr(3*x + y <= 15)
        model.minimize(-x - y)

        model.solve()

        np.testing.assert_allclose(model.values(), simple_lp["expected_x"], atol=1e-7)
        assert model.objective_value == pytest.approx(simple_lp["expected_obj"])
        # d(objective)/d(rhs)
        assert model.dual(c1) == pytest.approx(-0.4)
        assert model.dual(c2) == pytest.approx(-0.2)
        assert model.reduced_cost(x) == pytest.approx(0.0, abs=1e-9)

    def test_clear_solution(self):
        """clear_solution() resets the status."""
        model = Model()
        x = model.add_var(lb=1, name="x")
        model.minimize(x)
        model.solve()
        assert model.status == Status.OPTIMAL

        model.clear_solution()
        assert model.status == Status.UNSOLVED
