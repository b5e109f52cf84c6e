"""
stochprog: Two-Stage Stochastic Linear Programming
==================================================

stochprog models two-stage stochastic linear programs from stage recipes
and scenarios, and solves them through their deterministic equivalent or by
L-shaped decomposition, on top of the HiGHS LP solver shipped with SciPy.

Quick Start
-----------
>>> import stochprog
>>> model = stochprog.Model()
>>> x = model.add_var(lb=0, name="x")
>>> y = model.add_var(lb=0, name="y")
>>> model.add_constr(x + 2*y <= 10)
>>> model.minimize(-x - y)
>>> result = model.solve()
>>> print(result.status, result.objective)
optimal -10.0

Stochastic programs live in :mod:`stochprog.stochastic`:

>>> from stochprog.stochastic import StochasticProgram, LShapedSolver, EVPI
"""

__version__ = "0.1.0"
__author__ = "stochprog Contributors"

# Import public API
from .model import Model, Variable, Constraint, LinearExpr, Decisions, StandardForm
from .solver import solve, LinearSolver
from .result import SolveResult, Status
from .config import SolverConfig, LShapedConfig
from .logging_config import setup_logging
from .exceptions import (
    StochprogError,
    DimensionError,
    InvalidInputError,
    SchemaMismatch,
    UndefinedRecipe,
    NotExpectable,
    IndexOutOfRange,
    ProbabilityError,
    SolveFailure,
    StaleStateConflict,
    GenerationError,
)

__all__ = [
    # Version
    "__version__",

    # Model building
    "Model",
    "Variable",
    "Constraint",
    "LinearExpr",
    "Decisions",
    "StandardForm",

    # Solving
    "solve",
    "LinearSolver",
    "SolverConfig",
    "LShapedConfig",

    # Results
    "SolveResult",
    "Status",

    # Logging
    "setup_logging",

    # Exceptions
    "StochprogError",
    "DimensionError",
    "InvalidInputError",
    "SchemaMismatch",
    "UndefinedRecipe",
    "NotExpectable",
    "IndexOutOfRange",
    "ProbabilityError",
    "SolveFailure",
    "StaleStateConflict",
    "GenerationError",
]


def info() -> str:
    """Return information about the stochprog installation."""
    import platform

    import numpy
    import scipy

    lines = [
        f"stochprog version: {__version__}",
        f"Python version: {platform.python_version()}",
        f"Platform: {platform.platform()}",
        f"NumPy version: {numpy.__version__}",
        f"SciPy version: {scipy.__version__}",
        f"LP backend: {LinearSolver.name}",
    ]

    return "\n".join(lines)
