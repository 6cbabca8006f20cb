"""
Execution order planner — topological layering into batches.

Each batch holds modules with no edges between them; every module's
dependencies sit in a strictly earlier batch. Batches run one after
another, members of a batch run concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from spin.core.engine.graph import DependencyGraph


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered batches of module paths."""

    batches: tuple[tuple[str, ...], ...] = ()
    reverse: bool = False
    _index: dict[str, int] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        for idx, batch in enumerate(self.batches):
            for path in batch:
                self._index[path] = idx

    @property
    def total_modules(self) -> int:
        return len(self._index)

    def batch_index(self, path: str) -> int:
        """Position of the batch containing ``path``."""
        return self._index[path]

    def flatten(self) -> list[str]:
        """All module paths in execution order."""
        return [path for batch in self.batches for path in batch]

    def to_dict(self) -> dict[str, Any]:
        return {
            "reverse": self.reverse,
            "batches": [list(batch) for batch in self.batches],
        }


def plan_batches(graph: DependencyGraph, reverse: bool = False) -> ExecutionPlan:
    """Layer a validated graph into execution batches.

    Repeatedly emits every module whose prerequisites are all in earlier
    batches. With ``reverse`` the prerequisites are a module's dependents
    instead of its dependencies, giving teardown order.

    The graph is acyclic by construction, so this always terminates with
    every module placed exactly once.
    """
    if reverse:
        prerequisites = {
            path: {m.path for m in graph.dependents_of(path)} for path in graph
        }
    else:
        prerequisites = {path: set(graph[path].dependencies) for path in graph}

    remaining = set(prerequisites)
    emitted: set[str] = set()
    batches: list[tuple[str, ...]] = []

    while remaining:
        batch = sorted(p for p in remaining if prerequisites[p] <= emitted)
        if not batch:
            # Unreachable for graphs produced by build_graph.
            raise ValueError(
                "Cannot order modules, cycle among: " + ", ".join(sorted(remaining))
            )
        batches.append(tuple(batch))
        emitted.update(batch)
        remaining.difference_update(batch)

    return ExecutionPlan(batches=tuple(batches), reverse=reverse)
