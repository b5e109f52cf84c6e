"""
stochprog Exception Classes
===========================

Errors raised by the modeling layer, the LP backend and the stochastic
program container.
"""

from typing import Any, Dict, Optional


class StochprogError(Exception):
    """Base exception for all stochprog errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DimensionError(StochprogError):
    """
    Raised when matrix/vector dimensions are incompatible.

    Also raised when a first-stage decision has the wrong length.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Dimension mismatch: {message}")


class InvalidInputError(StochprogError):
    """
    Raised when input data is invalid.

    Examples: NaN values, invalid constraint sense, unknown stage key.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid input: {message}")


class SchemaMismatch(StochprogError, TypeError):
    """Raised when a scenario payload differs from the container's scenario type."""

    def __init__(self, expected: type, got: type) -> None:
        self.expected = expected
        self.got = got
        super().__init__(
            f"Scenario payload of type {got.__name__} does not match "
            f"the container scenario type {expected.__name__}"
        )


class UndefinedRecipe(StochprogError):
    """Raised when generation needs a stage recipe that was never registered."""

    def __init__(self, stage: int) -> None:
        self.stage = stage
        super().__init__(f"No recipe registered for stage {stage}")


class NotExpectable(StochprogError, TypeError):
    """
    Raised when scenario payloads cannot be folded into an expected scenario.

    The payload type needs weighted addition (numbers, arrays, records of
    those, or an ``expectation`` classmethod).
    """

    def __init__(self, payload_type: type) -> None:
        self.payload_type = payload_type
        super().__init__(
            f"Payload type {payload_type.__name__} does not support a weighted-sum reduction"
        )


class IndexOutOfRange(StochprogError, IndexError):
    """Raised for an invalid scenario, subproblem or worker index."""

    def __init__(self, index: int, size: int, what: str = "scenario") -> None:
        self.index = index
        self.size = size
        super().__init__(f"{what} index {index} out of range for size {size}")


class ProbabilityError(StochprogError, ValueError):
    """Raised when scenario probabilities are invalid or do not sum to one."""


class SolveFailure(StochprogError):
    """
    Raised when the backend returns a non-optimal status.

    Attributes:
        status: Backend status of the failed solve
        index: Scenario index of the failing subproblem, if any
    """

    def __init__(self, status: Any, index: Optional[int] = None, message: str = "") -> None:
        self.status = status
        self.index = index
        where = "" if index is None else f" (scenario {index})"
        super().__init__(message or f"Solve failed with status {status}{where}")


class StaleStateConflict(StochprogError):
    """Raised when reading results that were never committed or were invalidated."""

    def __init__(self, message: str = "No committed solution available") -> None:
        super().__init__(message)


class GenerationError(StochprogError):
    """
    Raised when some scenario subproblems could not be generated.

    Successfully generated subproblems are kept, so a later ``generate()``
    only retries the failures.

    Attributes:
        failed: Mapping from global scenario index to the raised exception
        stage: Stage whose recipe failed
    """

    def __init__(self, failed: Dict[int, BaseException], stage: int = 2) -> None:
        self.failed = dict(failed)
        self.stage = stage
        super().__init__(
            f"Stage {stage} generation failed for scenarios {self.indices}"
        )

    @property
    def indices(self) -> list:
        return sorted(self.failed)

