"""Checks on raw LP data before it reaches the backend."""

from typing import Optional

import numpy as np
from scipy import sparse

from ..exceptions import DimensionError, InvalidInputError


def check_lp_data(
    c: np.ndarray,
    A: sparse.spmatrix,
    b: Optional[np.ndarray],
    lb: np.ndarray,
    ub: np.ndarray,
) -> None:
    """
    Raise on inconsistent shapes or unusable values.

    Raises:
        DimensionError: If ``A``, ``b`` or the bounds do not match ``c``
        InvalidInputError: On NaN/inf costs, NaN data or crossed bounds
    """
    n = len(c)
    m, cols = A.shape
    if cols != n:
        raise DimensionError(f"A has {cols} columns, c has {n} entries")
    if b is not None and len(b) != m:
        raise DimensionError(f"b has {len(b)} entries, A has {m} rows")
    if len(lb) != n or len(ub) != n:
        raise DimensionError(f"bounds have {len(lb)}/{len(ub)} entries, expected {n}")

    if not np.all(np.isfinite(c)):
        raise InvalidInputError("objective has NaN or infinite coefficients")
    if b is not None and np.any(np.isnan(b)):
        raise InvalidInputError("right-hand side has NaN entries")
    if np.any(np.isnan(A.data)):
        raise InvalidInputError("constraint matrix has NaN entries")
    if np.any(np.isnan(lb)) or np.any(np.isnan(ub)):
        raise InvalidInputError("bounds have NaN entries")
    crossed = np.flatnonzero(lb > ub)
    if len(crossed):
        raise InvalidInputError(f"lower bound exceeds upper bound for columns {crossed.tolist()}")
