"""stochprog LP backend (scipy HiGHS)."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
from scipy import sparse
from scipy.optimize import linprog

from .exceptions import DimensionError, InvalidInputError
from .result import SolveResult, Status
from .utils.validation import check_lp_data

log = logging.getLogger(__name__)

_STATUS_MAP = {
    0: Status.OPTIMAL,
    1: Status.ITERATION_LIMIT,
    2: Status.INFEASIBLE,
    3: Status.UNBOUNDED,
    4: Status.NUMERICAL_ERROR,
}


def _highs_options(params: Dict[str, Any]) -> Dict[str, Any]:
    options: Dict[str, Any] = {"disp": bool(params.get("verbose", False))}
    max_iters = params.get("max_iterations", params.get("max_iters"))
    if max_iters is not None:
        options["maxiter"] = int(max_iters)
    tol = params.get("tolerance", params.get("tol"))
    if tol is not None:
        options["primal_feasibility_tolerance"] = float(tol)
        options["dual_feasibility_tolerance"] = float(tol)
    if params.get("time_limit") is not None:
        options["time_limit"] = float(params["time_limit"])
    if "presolve" in params:
        options["presolve"] = bool(params["presolve"])
    return options


def _row_bounds(
    m: int,
    b: Optional[np.ndarray],
    constraint_l: Optional[np.ndarray],
    constraint_u: Optional[np.ndarray],
    constraint_senses: Optional[Sequence[str]],
):
    if constraint_senses is not None:
        if b is None:
            raise InvalidInputError("b required with constraint_senses")
        if len(constraint_senses) != m:
            raise DimensionError(f"{len(constraint_senses)} senses for {m} rows")
        constr_l = np.full(m, -np.inf)
        constr_u = np.full(m, np.inf)
        for i, sense in enumerate(constraint_senses):
            if sense in ("=", "=="):
                constr_l[i] = constr_u[i] = b[i]
            elif sense in ("<=", "<"):
                constr_u[i] = b[i]
            elif sense in (">=", ">"):
                constr_l[i] = b[i]
            else:
                raise InvalidInputError(f"unknown constraint sense {sense!r}")
        return constr_l, constr_u
    if constraint_l is not None or constraint_u is not None:
        constr_l = (
            np.asarray(constraint_l, dtype=np.float64) if constraint_l is not None else np.full(m, -np.inf)
        )
        constr_u = (
            np.asarray(constraint_u, dtype=np.float64) if constraint_u is not None else np.full(m, np.inf)
        )
        return constr_l, constr_u
    if b is not None:
        return b, b
    return np.full(m, -np.inf), np.full(m, np.inf)


def solve(
    c: np.ndarray,
    A: Optional[Union[np.ndarray, sparse.spmatrix]] = None,
    b: Optional[np.ndarray] = None,
    lb: Optional[np.ndarray] = None,
    ub: Optional[np.ndarray] = None,
    constraint_l: Optional[np.ndarray] = None,
    constraint_u: Optional[np.ndarray] = None,
    constraint_senses: Optional[List[str]] = None,
    params: Optional[Dict[str, Any]] = None,
) -> SolveResult:
    """
    Solve ``min c'x`` over linear rows and variable bounds.

    Rows are given either by ``constraint_senses`` with ``b``, by explicit
    row bounds ``constraint_l <= Ax <= constraint_u``, or as ``Ax = b``.

    Returns:
        SolveResult whose ``y`` holds d(objective)/d(row bound) per row and
        ``reduced_costs`` holds d(objective)/d(variable bound)
    """
    start_time = time.perf_counter()
    params = params or {}

    c = np.asarray(c, dtype=np.float64).ravel()
    n = len(c)
    lb = np.zeros(n) if lb is None else np.asarray(lb, dtype=np.float64).ravel()
    ub = np.full(n, np.inf) if ub is None else np.asarray(ub, dtype=np.float64).ravel()

    A = sparse.csr_matrix(A, dtype=np.float64) if A is not None else sparse.csr_matrix((0, n))
    m = A.shape[0]
    if b is not None:
        b = np.asarray(b, dtype=np.float64).ravel()
    check_lp_data(c, A, b, lb, ub)

    constr_l, constr_u = _row_bounds(m, b, constraint_l, constraint_u, constraint_senses)

    eq_rows = np.flatnonzero(np.abs(constr_l - constr_u) < 1e-12)
    ineq = np.setdiff1d(np.arange(m), eq_rows)
    upper_rows = ineq[~np.isinf(constr_u[ineq])]
    lower_rows = ineq[~np.isinf(constr_l[ineq])]

    A_eq = A[eq_rows] if len(eq_rows) else None
    b_eq = constr_l[eq_rows] if len(eq_rows) else None
    A_ub, b_ub = None, None
    if len(upper_rows) or len(lower_rows):
        A_ub = sparse.vstack([A[upper_rows], -A[lower_rows]], format="csr")
        b_ub = np.concatenate([constr_u[upper_rows], -constr_l[lower_rows]])

    bounds = [
        (None if np.isinf(lo) else lo, None if np.isinf(hi) else hi)
        for lo, hi in zip(lb, ub)
    ]
    res = linprog(
        c,
        A_ub=A_ub,
        b_ub=b_ub,
        A_eq=A_eq,
        b_eq=b_eq,
        bounds=bounds,
        method="highs",
        options=_highs_options(params),
    )

    status = _STATUS_MAP.get(res.status, Status.NUMERICAL_ERROR)
    if status == Status.ITERATION_LIMIT and "time limit" in str(res.message).lower():
        status = Status.TIME_LIMIT

    y = np.zeros(m)
    reduced = np.zeros(n)
    if res.status == 0:
        if A_eq is not None:
            y[eq_rows] = res.eqlin.marginals
        if A_ub is not None:
            marg = res.ineqlin.marginals
            k = len(upper_rows)
            np.add.at(y, upper_rows, marg[:k])
            np.add.at(y, lower_rows, -marg[k:])
        reduced = np.asarray(res.lower.marginals) + np.asarray(res.upper.marginals)

    log.debug("linprog finished: status=%s nit=%s message=%s", status, getattr(res, "nit", 0), res.message)

    return SolveResult(
        status=status,
        objective=float(res.fun) if res.status == 0 else float("nan"),
        x=np.asarray(res.x) if res.x is not None else np.full(n, np.nan),
        y=y,
        reduced_costs=reduced,
        iterations=int(getattr(res, "nit", 0)),
        solve_time=time.perf_counter() - start_time,
    )


class LinearSolver:
    """
    LP backend for :class:`~stochprog.model.Model` objects.

    Args:
        params: Solver parameters. Supported keys are ``max_iterations``,
            ``tolerance``, ``time_limit``, ``presolve`` and ``verbose``.

    Example:
        >>> backend = LinearSolver({"time_limit": 10})
        >>> status = backend.solve(model)
        >>> model.objective_value
    """

    name = "HiGHS"

    def __init__(self, params: Optional[Dict[str, Any]] = None) -> None:
        self.params = dict(params or {})

    def optimize(self, model, decision: Optional[Sequence[float]] = None) -> SolveResult:
        """
        Solve ``model`` without writing anything back to it.

        Decision placeholders are fixed to ``decision`` (or to the value
        stored on the model). Objective, duals and reduced costs are reported
        in the model's own sense.
        """
        form = model.standard_form(decision)
        result = solve(
            c=form.sign * form.c,
            A=form.A,
            b=form.b,
            lb=form.lb,
            ub=form.ub,
            constraint_senses=list(form.senses),
            params=self.params,
        )
        result.objective = form.sign * result.objective + form.constant
        result.y = form.sign * result.y
        result.reduced_costs = form.sign * result.reduced_costs
        return result

    def solve(self, model, decision: Optional[Sequence[float]] = None) -> Status:
        """Solve ``model``, load the solution into it and return the status."""
        result = self.optimize(model, decision=decision)
        model.load_solution(result)
        return result.status

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"LinearSolver(params={self.params})"
