"""
Scenario Partitions
===================

A :class:`ScenarioPartition` owns a contiguous slice of the scenario set and
the subproblems generated for it. Partitions are bound to one worker of a
:class:`Transport`; the transport runs partition-local work and acts as the
barrier between rounds.
"""

from __future__ import annotations

import heapq
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..exceptions import IndexOutOfRange, InvalidInputError, StaleStateConflict
from ..model import Model
from .scenarios import Scenario, expected

log = logging.getLogger(__name__)

_ABSENT = -1


# ============================================================================
# Transports
# ============================================================================

class Transport(ABC):
    """
    Executes one function per partition and gathers the results.

    ``map`` is a collective: it returns only once every call finished, with
    results in input order. Exceptions propagate to the caller.
    """

    @abstractmethod
    def map(self, func: Callable[[Any], Any], items: Iterable[Any]) -> List[Any]:
        """Apply ``func`` to every item."""

    def close(self) -> None:
        """Release worker resources."""


class LocalTransport(Transport):
    """Runs partitions sequentially in the calling thread."""

    def map(self, func, items):
        return [func(item) for item in items]

    def __repr__(self) -> str:
        return "LocalTransport()"


class ThreadTransport(Transport):
    """
    Runs partitions concurrently on a thread pool.

    Args:
        max_workers: Pool size (defaults to the executor's own default)
    """

    def __init__(self, max_workers: Optional[int] = None) -> None:
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="stochprog-partition"
        )

    def map(self, func, items):
        futures = [self._executor.submit(func, item) for item in items]
        # Wait for every partition before surfacing an error.
        errors = [f.exception() for f in futures]
        for err in errors:
            if err is not None:
                raise err
        return [f.result() for f in futures]

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __repr__(self) -> str:
        return f"ThreadTransport(max_workers={self.max_workers})"


# ============================================================================
# Distribution policy
# ============================================================================

def least_loaded(sizes: Sequence[int]) -> int:
    """Index of the smallest partition, lowest index on ties."""
    if not sizes:
        raise InvalidInputError("no partitions to choose from")
    return min(range(len(sizes)), key=lambda k: (sizes[k], k))


def fill_counts(sizes: Sequence[int], n: int) -> List[int]:
    """
    How many of ``n`` new scenarios each partition receives.

    Water filling over the current loads: the result equals ``n`` repeated
    least-loaded insertions, computed in one pass.
    """
    counts = [0] * len(sizes)
    heap = [(size, k) for k, size in enumerate(sizes)]
    heapq.heapify(heap)
    for _ in range(n):
        size, k = heapq.heappop(heap)
        counts[k] += 1
        heapq.heappush(heap, (size + 1, k))
    return counts


def even_split(total: int, parts: int) -> List[int]:
    """Sizes of ``parts`` contiguous chunks of ``total`` items, differing by at most one."""
    if parts < 1:
        raise InvalidInputError(f"partition count must be positive, got {parts}")
    base, extra = divmod(total, parts)
    return [base + (1 if k < extra else 0) for k in range(parts)]


# ============================================================================
# Partition
# ============================================================================

Entry = Tuple[Scenario, Optional[Model], int]


class ScenarioPartition:
    """
    Scenarios held by one worker, with one subproblem slot per scenario.

    Each slot records the stage-2 epoch it was generated at, so staleness is
    a comparison with the container's current epoch.

    Args:
        owner: Worker id of the partition
        entries: Initial ``(scenario, subproblem, epoch)`` triples
    """

    def __init__(self, owner: int, entries: Iterable[Entry] = ()) -> None:
        self.owner = owner
        self._scenarios: List[Scenario] = []
        self._subproblems: List[Optional[Model]] = []
        self._epochs: List[int] = []
        for scenario, model, epoch in entries:
            self._scenarios.append(scenario)
            self._subproblems.append(model)
            self._epochs.append(epoch if model is not None else _ABSENT)

    def __len__(self) -> int:
        return len(self._scenarios)

    def __repr__(self) -> str:
        built = sum(1 for m in self._subproblems if m is not None)
        return f"ScenarioPartition(owner={self.owner}, scenarios={len(self)}, generated={built})"

    @property
    def scenarios(self) -> Tuple[Scenario, ...]:
        return tuple(self._scenarios)

    def entries(self) -> List[Entry]:
        return list(zip(self._scenarios, self._subproblems, self._epochs))

    def add(self, scenario: Scenario) -> int:
        self._scenarios.append(scenario)
        self._subproblems.append(None)
        self._epochs.append(_ABSENT)
        return len(self._scenarios) - 1

    def extend(self, scenarios: Iterable[Scenario]) -> None:
        for scenario in scenarios:
            self.add(scenario)

    def scenario(self, i: int) -> Scenario:
        if not 0 <= i < len(self):
            raise IndexOutOfRange(i, len(self))
        return self._scenarios[i]

    def subproblem(self, i: int, epoch: int) -> Model:
        if not 0 <= i < len(self):
            raise IndexOutOfRange(i, len(self), "subproblem")
        if self._subproblems[i] is None or self._epochs[i] != epoch:
            raise StaleStateConflict(
                f"subproblem {i} of partition {self.owner} is not generated"
            )
        return self._subproblems[i]

    def pending(self, epoch: int) -> List[int]:
        """Local indices whose subproblem is missing or stale."""
        return [
            i for i, (model, e) in enumerate(zip(self._subproblems, self._epochs))
            if model is None or e != epoch
        ]

    def stale(self, epoch: int) -> List[int]:
        """Local indices holding a subproblem from an older epoch."""
        return [
            i for i, (model, e) in enumerate(zip(self._subproblems, self._epochs))
            if model is not None and e != epoch
        ]

    def is_generated(self, epoch: int) -> bool:
        return not self.pending(epoch)

    def generated(self, epoch: int) -> int:
        return len(self) - len(self.pending(epoch))

    def generate(
        self,
        build: Callable[[Scenario], Model],
        epoch: int,
        offset: int = 0,
    ) -> Dict[int, BaseException]:
        """
        Build every pending subproblem.

        Failures do not stop the remaining builds. A failed slot is left
        absent and reported by global index (``offset + local index``).
        """
        failed: Dict[int, BaseException] = {}
        for i in self.pending(epoch):
            try:
                model = build(self._scenarios[i])
            except Exception as exc:
                log.debug("partition %d: scenario %d failed to generate: %s", self.owner, offset + i, exc)
                self._subproblems[i] = None
                self._epochs[i] = _ABSENT
                failed[offset + i] = exc
                continue
            self._subproblems[i] = model
            self._epochs[i] = epoch
        return failed

    def map(
        self,
        func: Callable[[int, Scenario, Optional[Model]], Any],
        epoch: Optional[int] = None,
        offset: int = 0,
    ) -> List[Any]:
        """
        Apply ``func(global_index, scenario, subproblem)`` to every scenario.

        With an ``epoch`` every subproblem must be generated; without one,
        ``func`` receives ``None`` for the subproblem.
        """
        if epoch is None:
            return [func(offset + i, s, None) for i, s in enumerate(self._scenarios)]
        if not self.is_generated(epoch):
            raise StaleStateConflict(f"partition {self.owner} has ungenerated subproblems")
        return [
            func(offset + i, s, m)
            for i, (s, m) in enumerate(zip(self._scenarios, self._subproblems))
        ]

    def probability(self) -> float:
        return float(sum(s.probability for s in self._scenarios))

    def rescale(self, factor: float) -> None:
        """Multiply every probability by ``factor``; subproblems are kept."""
        self._scenarios = [s.scale_probability(factor) for s in self._scenarios]

    def partial_expectation(self) -> Tuple[float, Any]:
        """Probability mass of the partition and its conditional expected payload."""
        mass = self.probability()
        if not self._scenarios or mass <= 0:
            return 0.0, None
        return mass, expected(self._scenarios).data
