"""
pytest configuration and fixtures for stochprog tests.

Stochastic fixtures
-------------------
quickstart
    min 100 x1 + 150 x2 + E[Q(x, ξ)]
    s.t. x1 + x2 <= 120, x1 >= 40, x2 >= 20

    Q(x, ξ) = min q1 y1 + q2 y2
              s.t. 6 y1 + 10 y2 <= 60 x1
                   8 y1 +  5 y2 <= 80 x2
                   0 <= y1 <= d1, 0 <= y2 <= d2

    ξ1 = (q1=-24, q2=-28, d1=500, d2=100), p = 0.4
    ξ2 = (q1=-28, q2=-32, d1=300, d2=300), p = 0.6

    Optimal: x = (46.667, 36.25), objective = -855.83

scalar
    min 100 x + E[150 y],  40 <= x <= 120,  y >= ξ - x,  y >= 0
    ξ = 100 (p = 0.4), ξ = 50 (p = 0.6)

    Optimal: x = 50, objective = 8000

maximizing
    max x + E[q y],  l1 <= x <= u1,  y + x <= U,  l2 <= y <= u2
    q = 1 (p = 0.5), q = -1 (p = 0.5)
    stage data (l1, u1) = (-1, 1), (U, l2, u2) = (2, -1, 1)

    Optimal: objective = 2
"""

from dataclasses import dataclass

import pytest
import numpy as np

from stochprog import Model
from stochprog.stochastic import Scenario, StochasticModel


@dataclass(frozen=True)
class Demand:
    """Quickstart scenario payload: selling prices (negated) and demands."""

    q1: float
    q2: float
    d1: float
    d2: float


# ============================================================================
# LP Fixtures
# ============================================================================

@pytest.fixture
def simple_lp():
    """
    Two-column LP with a known vertex optimum.

        min  -x - y
        s.t.  x + 2y <= 10,  3x + y <= 15,  x, y >= 0

    Optimum at (4, 3) with value -7.
    """
    return {
        "c": np.array([-1.0, -1.0]),
        "A": np.array([[1.0, 2.0], [3.0, 1.0]]),
        "b": np.array([10.0, 15.0]),
        "senses": ["<=", "<="],
        "lb": np.array([0.0, 0.0]),
        "ub": np.array([np.inf, np.inf]),
        "expected_obj": -7.0,
        "expected_x": np.array([4.0, 3.0]),
    }


@pytest.fixture
def random_lp():
    """Generate a random feasible LP with <= rows."""
    rng = np.random.default_rng(42)
    n, m = 60, 30

    A = rng.standard_normal((m, n))
    x_feas = np.abs(rng.standard_normal(n))
    b = A @ x_feas + 0.1
    return {
        "c": np.abs(rng.standard_normal(n)),
        "A": A,
        "b": b,
        "senses": ["<="] * m,
        "lb": np.zeros(n),
        "ub": np.full(n, 10.0),
    }


# ============================================================================
# Stochastic Fixtures
# ============================================================================

def _quickstart_first(data):
    model = Model(name="first")
    x1 = model.add_var(lb=40, name="x1")
    x2 = model.add_var(lb=20, name="x2")
    model.add_constr(x1 + x2 <= 120, name="acreage")
    model.minimize(100 * x1 + 150 * x2)
    return model


def _quickstart_second(data, decisions, demand):
    model = Model(name="second")
    x1, x2 = model.add_decisions(decisions)
    y1 = model.add_var(lb=0, ub=demand.d1, name="y1")
    y2 = model.add_var(lb=0, ub=demand.d2, name="y2")
    model.add_constr(6 * y1 + 10 * y2 <= 60 * x1, name="product1")
    model.add_constr(8 * y1 + 5 * y2 <= 80 * x2, name="product2")
    model.minimize(demand.q1 * y1 + demand.q2 * y2)
    return model


def _scalar_first(data):
    model = Model()
    x = model.add_var(lb=40, ub=120, name="x")
    model.minimize(100 * x)
    return model


def _scalar_second(data, decisions, xi):
    model = Model()
    (x,) = model.add_decisions(decisions)
    y = model.add_var(lb=0, name="y")
    model.add_constr(y + x >= xi, name="shortfall")
    model.minimize(150 * y)
    return model


def _max_first(data):
    l1, u1 = data
    model = Model()
    x = model.add_var(lb=l1, ub=u1, name="x")
    model.maximize(x)
    return model


def _max_second(data, decisions, q):
    U, l2, u2 = data
    model = Model()
    (x,) = model.add_decisions(decisions)
    y = model.add_var(lb=l2, ub=u2, name="y")
    model.add_constr(y + x <= U, name="capacity")
    model.maximize(q * y)
    return model


@pytest.fixture
def quickstart_model():
    return StochasticModel(_quickstart_first, _quickstart_second)


@pytest.fixture
def quickstart_scenarios():
    return [
        Scenario(0.4, Demand(-24.0, -28.0, 500.0, 100.0), name="xi1"),
        Scenario(0.6, Demand(-28.0, -32.0, 300.0, 300.0), name="xi2"),
    ]


@pytest.fixture
def quickstart(quickstart_model, quickstart_scenarios):
    """Generated quickstart program."""
    program = quickstart_model.instantiate(quickstart_scenarios)
    yield program
    program.close()


@pytest.fixture
def scalar_model():
    return StochasticModel(_scalar_first, _scalar_second)


@pytest.fixture
def make_scalar(scalar_model):
    """Factory for the scalar program; keyword arguments go to the program."""
    programs = []

    def make(**kwargs):
        scenarios = [Scenario(0.4, 100.0), Scenario(0.6, 50.0)]
        program = scalar_model.instantiate(scenarios, **kwargs)
        programs.append(program)
        return program

    yield make
    for program in programs:
        program.close()


@pytest.fixture
def scalar(make_scalar):
    return make_scalar()


@pytest.fixture
def maximizing():
    """Generated maximization program with staged data."""
    program = StochasticModel(_max_first, _max_second).instantiate(
        [Scenario(0.5, 1.0), Scenario(0.5, -1.0)],
        first_stage_data=(-1.0, 1.0),
        second_stage_data=(2.0, -1.0, 1.0),
    )
    yield program
    program.close()


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line("markers", "concurrency: marks tests that run threads")
