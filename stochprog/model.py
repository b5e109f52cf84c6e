"""
Model Builder
=============

Algebraic LP models used as the stages of a stochastic program.

A first-stage model declares the first-stage decisions as ordinary variables.
A second-stage model refers to them through decision placeholders created
with :meth:`Model.add_decisions`; those columns are fixed to a concrete
first-stage decision whenever the model is solved.

>>> model = Model("harvest")
>>> wheat = model.add_var(lb=0, name="wheat")
>>> corn = model.add_var(lb=0, name="corn")
>>> model.add_constr(wheat + corn <= 500, name="acreage")
>>> model.minimize(150 * wheat + 230 * corn)
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import sparse

from .exceptions import DimensionError, InvalidInputError

if TYPE_CHECKING:
    from .result import SolveResult

Operand = Union["Variable", "LinearExpr", float]


class _Affine:
    """
    Operators shared by variables and expressions, via ``as_expr()``.

    Comparisons build constraints, ``==`` included. Variables and expressions
    are therefore unhashable, and ``var in sequence`` is always true; look
    columns up by ``index`` instead.
    """

    # numpy scalars defer to the reflected operators
    __array_ufunc__ = None

    def as_expr(self) -> "LinearExpr":
        raise NotImplementedError

    def __add__(self, other: Operand) -> "LinearExpr":
        return self.as_expr().combine(other, 1.0)

    __radd__ = __add__

    def __sub__(self, other: Operand) -> "LinearExpr":
        return self.as_expr().combine(other, -1.0)

    def __rsub__(self, other: Operand) -> "LinearExpr":
        return self.as_expr().scaled(-1.0).combine(other, 1.0)

    def __mul__(self, factor: float) -> "LinearExpr":
        return self.as_expr().scaled(factor)

    __rmul__ = __mul__

    def __truediv__(self, divisor: float) -> "LinearExpr":
        return self.as_expr().scaled(1.0 / float(divisor))

    def __neg__(self) -> "LinearExpr":
        return self.as_expr().scaled(-1.0)

    def __le__(self, other: Operand) -> "Constraint":
        return Constraint(self.as_expr().combine(other, -1.0), "<=", 0.0)

    def __ge__(self, other: Operand) -> "Constraint":
        return Constraint(self.as_expr().combine(other, -1.0), ">=", 0.0)

    def __eq__(self, other: Operand) -> "Constraint":  # type: ignore[override]
        return Constraint(self.as_expr().combine(other, -1.0), "==", 0.0)


@dataclass(eq=False)
class Variable(_Affine):
    """
    Column of a model.

    ``decision`` is set on the placeholders of a second-stage model and holds
    the position of the first-stage decision the column stands for.
    """

    index: int
    lb: float = 0.0
    ub: float = float("inf")
    name: Optional[str] = None
    decision: Optional[int] = None

    @property
    def is_decision(self) -> bool:
        return self.decision is not None

    def as_expr(self) -> "LinearExpr":
        names = {self.index: self.name} if self.name else {}
        return LinearExpr({self.index: 1.0}, 0.0, names)

    def __repr__(self) -> str:
        return f"Variable({self.name or f'x_{self.index}'})"


@dataclass(eq=False)
class LinearExpr(_Affine):
    """``sum(coef * column) + constant``, keyed by column index."""

    terms: Dict[int, float] = field(default_factory=dict)
    constant: float = 0.0
    _var_names: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_var(cls, var: Variable, coef: float = 1.0) -> "LinearExpr":
        return var.as_expr().scaled(coef)

    @classmethod
    def wrap(cls, value: Operand) -> "LinearExpr":
        if isinstance(value, _Affine):
            return value.as_expr()
        return cls(constant=float(value))

    def as_expr(self) -> "LinearExpr":
        return self

    def scaled(self, factor: float) -> "LinearExpr":
        factor = float(factor)
        return LinearExpr(
            {idx: coef * factor for idx, coef in self.terms.items()},
            self.constant * factor,
            dict(self._var_names),
        )

    def combine(self, other: Operand, weight: float) -> "LinearExpr":
        """``self + weight * other`` as a new expression."""
        other = LinearExpr.wrap(other)
        terms = dict(self.terms)
        for idx, coef in other.terms.items():
            terms[idx] = terms.get(idx, 0.0) + weight * coef
        names = {**self._var_names, **other._var_names}
        return LinearExpr(terms, self.constant + weight * other.constant, names)

    def __repr__(self) -> str:
        out = []
        for idx in sorted(self.terms):
            coef = self.terms[idx]
            label = self._var_names.get(idx, f"x_{idx}")
            sign = "-" if coef < 0 else "+"
            mag = abs(coef)
            body = label if mag == 1 else f"{mag:g}*{label}"
            out.append((sign, body))
        if self.constant or not out:
            out.append(("-" if self.constant < 0 else "+", f"{abs(self.constant):g}"))
        text = " ".join(f"{s} {b}" for s, b in out)
        return text[2:] if text.startswith("+ ") else "-" + text[2:]


@dataclass
class Constraint:
    """
    Row ``lhs <sense> rhs`` with ``sense`` one of ``"<="``, ``">="``, ``"=="``.

    Comparisons build rows with everything on the left and ``rhs = 0``;
    ``index`` is assigned by :meth:`Model.add_constr`.
    """

    lhs: LinearExpr
    sense: str
    rhs: float
    name: Optional[str] = None
    index: int = -1

    def __repr__(self) -> str:
        prefix = f"{self.name}: " if self.name else ""
        return f"{prefix}{self.lhs} {self.sense} {self.rhs:g}"


@dataclass(frozen=True)
class Decisions:
    """
    Handle on the first-stage decisions passed to second-stage recipes.

    Attributes:
        names: Names of the first-stage decision variables, in order
    """

    names: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.names)

    @classmethod
    def from_model(cls, model: "Model") -> "Decisions":
        return cls(tuple(v.name or f"x_{v.index}" for v in model.variables))


@dataclass
class StandardForm:
    """
    Matrix form of a model.

    ``c`` keeps the model's own objective sense; ``sign`` is -1 for a
    maximization model so that ``sign * c`` is always a minimization.
    """

    c: np.ndarray
    A: sparse.csr_matrix
    b: np.ndarray
    senses: np.ndarray
    lb: np.ndarray
    ub: np.ndarray
    constant: float = 0.0
    maximize: bool = False

    @property
    def sign(self) -> float:
        return -1.0 if self.maximize else 1.0

    @property
    def shape(self) -> Tuple[int, int]:
        return self.A.shape


class Model:
    """
    LP built from variables, rows and a linear objective.

    Rows and the objective are given algebraically; :meth:`standard_form`
    turns them into matrices for the backend.

    Example:
        >>> model = Model("mix")
        >>> beans = model.add_var(lb=0, ub=10, name="beans")
        >>> rice = model.add_var(lb=0, name="rice")
        >>> model.add_constr(beans + 2 * rice <= 20, name="cash")
        >>> model.maximize(5 * beans + 4 * rice)
        >>> model.solve().objective
        70.0
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._vars: List[Variable] = []
        self._constrs: List[Constraint] = []
        self._objective: Optional[LinearExpr] = None
        self._sense: str = "minimize"
        self._decision_values: Optional[np.ndarray] = None
        self._result = None

    @property
    def num_vars(self) -> int:
        return len(self._vars)

    @property
    def num_constrs(self) -> int:
        return len(self._constrs)

    @property
    def variables(self) -> List[Variable]:
        return list(self._vars)

    @property
    def constraints(self) -> List[Constraint]:
        return list(self._constrs)

    @property
    def sense(self) -> str:
        """Objective sense, "minimize" or "maximize"."""
        return self._sense

    @property
    def objective(self) -> LinearExpr:
        return self._objective if self._objective is not None else LinearExpr()

    def add_var(self, lb: float = 0.0, ub: float = float("inf"), name: Optional[str] = None) -> Variable:
        """Append a column with bounds ``lb <= x <= ub``."""
        if lb > ub:
            raise InvalidInputError(f"lb={lb} exceeds ub={ub} for variable {name!r}")
        var = Variable(index=len(self._vars), lb=float(lb), ub=float(ub), name=name)
        self._vars.append(var)
        return var

    def add_vars(
        self,
        count: int,
        lb: Union[float, np.ndarray] = 0.0,
        ub: Union[float, np.ndarray] = float("inf"),
        name_prefix: str = "x",
    ) -> List[Variable]:
        """
        Append ``count`` columns named ``{name_prefix}_{i}``.

        ``lb`` and ``ub`` are scalars or arrays of length ``count``.
        """
        lbs = np.broadcast_to(np.asarray(lb, dtype=np.float64), np.shape(lb))
        ubs = np.broadcast_to(np.asarray(ub, dtype=np.float64), np.shape(ub))
        for label, bounds in (("lb", lbs), ("ub", ubs)):
            if bounds.ndim and len(bounds) != count:
                raise DimensionError(f"{label} has length {len(bounds)}, expected {count}")
        lbs = np.broadcast_to(lbs, (count,))
        ubs = np.broadcast_to(ubs, (count,))
        return [self.add_var(lb=lbs[i], ub=ubs[i], name=f"{name_prefix}_{i}") for i in range(count)]

    def add_decisions(self, decisions: Union[Decisions, int]) -> List[Variable]:
        """
        Add placeholders for the first-stage decisions to a second-stage model.

        The placeholders behave like variables when building constraints and
        the objective, but are fixed to the first-stage decision on solve.

        Args:
            decisions: Decisions handle received by the recipe, or a count

        Returns:
            One placeholder Variable per first-stage decision
        """
        if self.decision_vars:
            raise InvalidInputError("decisions were already added to this model")
        if isinstance(decisions, int):
            decisions = Decisions(tuple(f"x_{j}" for j in range(decisions)))
        placeholders = []
        for j, name in enumerate(decisions.names):
            var = Variable(
                index=len(self._vars),
                lb=-np.inf,
                ub=np.inf,
                name=name,
                decision=j,
            )
            self._vars.append(var)
            placeholders.append(var)
        return placeholders

    @property
    def decision_vars(self) -> List[Variable]:
        """Decision placeholders, ordered by decision position."""
        return sorted((v for v in self._vars if v.is_decision), key=lambda v: v.decision)

    @property
    def num_decisions(self) -> int:
        return sum(1 for v in self._vars if v.is_decision)

    def add_constr(self, constraint: Constraint, name: Optional[str] = None) -> Constraint:
        """Append a row built with ``<=``, ``>=`` or ``==``; returns it with its index set."""
        if not isinstance(constraint, Constraint):
            raise InvalidInputError(f"expected a Constraint, got {type(constraint).__name__}")
        if name:
            constraint.name = name
        constraint.index = len(self._constrs)
        self._constrs.append(constraint)
        return constraint

    def add_constrs(self, constraints: Sequence[Constraint]) -> List[Constraint]:
        return [self.add_constr(row) for row in constraints]

    def _set_objective(self, expr: Operand, sense: str) -> None:
        self._objective = LinearExpr.wrap(expr)
        self._sense = sense

    def minimize(self, expr: Operand) -> None:
        self._set_objective(expr, "minimize")

    def maximize(self, expr: Operand) -> None:
        self._set_objective(expr, "maximize")

    def masterterms(self) -> List[Tuple[int, int, float]]:
        """
        Coefficients that multiply first-stage decisions.

        Returns:
            ``(row, column, coefficient)`` triples, where ``row`` is the
            constraint index and ``column`` the first-stage decision position,
            as they appear on the left-hand side of each constraint.
        """
        positions = {v.index: v.decision for v in self._vars if v.is_decision}
        terms = []
        for constr in self._constrs:
            for idx, coef in sorted(constr.lhs.terms.items()):
                if idx in positions and coef != 0:
                    terms.append((constr.index, positions[idx], float(coef)))
        return terms

    def decision_objective(self) -> np.ndarray:
        """Objective coefficients on the decision placeholders, by position."""
        coefs = np.zeros(self.num_decisions)
        for v in self.decision_vars:
            coefs[v.decision] = self.objective.terms.get(v.index, 0.0)
        return coefs

    def fix_decisions(self, decision: Optional[Sequence[float]]) -> None:
        """Store the first-stage decision used by later solves (None clears it)."""
        if decision is None:
            self._decision_values = None
            return
        values = np.asarray(decision, dtype=np.float64).ravel()
        if len(values) != self.num_decisions:
            raise DimensionError(
                f"decision has {len(values)} entries, model expects {self.num_decisions}"
            )
        self._decision_values = values

    @property
    def fixed_decisions(self) -> Optional[np.ndarray]:
        return self._decision_values

    def standard_form(self, decision: Optional[Sequence[float]] = None) -> StandardForm:
        """
        Convert the model to matrix form.

        Args:
            decision: First-stage decision used to fix the placeholders;
                defaults to the value stored by :meth:`fix_decisions`

        Returns:
            StandardForm with the objective in the model's own sense
        """
        n = self.num_vars
        m = self.num_constrs

        c = np.zeros(n)
        for idx, coef in self.objective.terms.items():
            c[idx] = coef

        lb = np.array([v.lb for v in self._vars], dtype=np.float64)
        ub = np.array([v.ub for v in self._vars], dtype=np.float64)

        placeholders = self.decision_vars
        if placeholders:
            values = self._decision_values if decision is None else decision
            if values is None:
                raise InvalidInputError(
                    "second-stage model solved without a first-stage decision"
                )
            values = np.asarray(values, dtype=np.float64).ravel()
            if len(values) != len(placeholders):
                raise DimensionError(
                    f"decision has {len(values)} entries, model expects {len(placeholders)}"
                )
            for v in placeholders:
                lb[v.index] = ub[v.index] = values[v.decision]

        triplets = [(row.index, idx, coef) for row in self._constrs for idx, coef in row.lhs.terms.items()]
        row_idx, col_idx, coefs = zip(*triplets) if triplets else ((), (), ())
        A = sparse.csr_matrix((coefs, (row_idx, col_idx)), shape=(m, n))
        b = np.array([row.rhs - row.lhs.constant for row in self._constrs], dtype=np.float64)
        senses = [row.sense for row in self._constrs]

        return StandardForm(
            c=c,
            A=A,
            b=b,
            senses=np.array(senses, dtype=object),
            lb=lb,
            ub=ub,
            constant=self.objective.constant,
            maximize=self._sense == "maximize",
        )

    def evaluate_objective(self, values: Sequence[float]) -> float:
        """Objective value at the given variable values."""
        values = np.asarray(values, dtype=np.float64).ravel()
        if len(values) != self.num_vars:
            raise DimensionError(f"got {len(values)} values, model has {self.num_vars} variables")
        expr = self.objective
        return float(sum(coef * values[idx] for idx, coef in expr.terms.items()) + expr.constant)

    def solve(
        self,
        params: Optional[Dict[str, Any]] = None,
        decision: Optional[Sequence[float]] = None,
    ) -> "SolveResult":
        """
        Solve with a fresh :class:`~stochprog.solver.LinearSolver` and load the
        result, so that :attr:`objective_value`, :meth:`value` and :meth:`dual`
        can be read afterwards. ``decision`` fixes the placeholders of a
        second-stage model.
        """
        from .solver import LinearSolver

        result = LinearSolver(params).optimize(self, decision=decision)
        self.load_solution(result)
        return result

    def load_solution(self, result: "SolveResult") -> None:
        self._result = result

    def clear_solution(self) -> None:
        self._result = None

    @property
    def result(self) -> Optional["SolveResult"]:
        return self._result

    @property
    def status(self):
        from .result import Status

        return Status.UNSOLVED if self._result is None else self._result.status

    def _require_solution(self) -> "SolveResult":
        if self._result is None or not self._result.status.has_solution:
            raise InvalidInputError(f"model {self.name!r} has no solution loaded")
        return self._result

    @property
    def objective_value(self) -> float:
        return float(self._require_solution().objective)

    def value(self, var: Variable) -> float:
        return self._require_solution().value(var)

    def values(self, vars: Optional[List[Variable]] = None) -> np.ndarray:
        result = self._require_solution()
        if vars is None:
            return np.array(result.x, dtype=np.float64)
        return result.values(vars)

    def dual(self, constr: Constraint) -> float:
        return self._require_solution().dual(constr)

    def reduced_cost(self, var: Variable) -> float:
        return self._require_solution().reduced_cost(var)

    def __repr__(self) -> str:
        return (
            f"Model(vars={self.num_vars}, constrs={self.num_constrs}, "
            f"decisions={self.num_decisions}, sense={self._sense})"
        )

