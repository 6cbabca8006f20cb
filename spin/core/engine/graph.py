"""
Dependency graph — validated module set plus dependency edges.

The graph is built once per run from the discovery snapshot and is
read-only afterwards. Edges are stored as path keys into the module
set, so cycle detection and equality are plain traversals over strings.

Flow:
    discovered modules → resolve declared paths → check unresolved
    → check cycles → DependencyGraph
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from spin.core.errors import (
    DependencyCycleError,
    GraphError,
    UnrecognizedDependencyError,
)
from spin.core.models.module import Module

logger = logging.getLogger(__name__)


def clean_path(path: str | os.PathLike[str]) -> str:
    """Absolute, normalised form of a path ('.' and '..' collapsed).

    Symlinks are deliberately not resolved: two modules are the same
    module only if their cleaned paths are equal.
    """
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def resolve_dependency_path(module_path: str, raw: str) -> str:
    """Resolve a declared dependency path relative to its module."""
    joined = raw if os.path.isabs(raw) else os.path.join(module_path, raw)
    return os.path.normpath(joined)


class DependencyGraph:
    """Modules keyed by path, with dependency edges as path tuples.

    Equality ignores iteration order: two graphs are equal when they hold
    the same module paths and each path has the same set of dependencies.
    """

    def __init__(self, modules: Mapping[str, Module]):
        self._modules: Mapping[str, Module] = MappingProxyType(dict(modules))

        dependents: dict[str, list[str]] = {path: [] for path in self._modules}
        for path, module in self._modules.items():
            if path != module.path:
                raise GraphError(f"Module keyed as {path} reports path {module.path}")
            for dep in module.dependencies:
                if dep not in dependents:
                    raise GraphError(f"Edge {path} -> {dep} points outside the graph")
                dependents[dep].append(path)
        self._dependents = {path: tuple(sorted(v)) for path, v in dependents.items()}

    # ── Mapping-ish access ───────────────────────────────────────

    @property
    def modules(self) -> Mapping[str, Module]:
        """Read-only view of path → Module."""
        return self._modules

    @property
    def paths(self) -> list[str]:
        """All module paths, sorted."""
        return sorted(self._modules)

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, path: object) -> bool:
        return path in self._modules

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)

    def __getitem__(self, path: str) -> Module:
        return self._modules[path]

    # ── Edges ────────────────────────────────────────────────────

    def dependencies_of(self, path: str) -> list[Module]:
        """Direct dependencies of a module, in declaration order."""
        return [self._modules[dep] for dep in self._modules[path].dependencies]

    def dependents_of(self, path: str) -> list[Module]:
        """Modules that directly depend on ``path``, sorted by path."""
        return [self._modules[dep] for dep in self._dependents[path]]

    def transitive_dependents(self, path: str) -> set[str]:
        """Every module that depends on ``path``, directly or not."""
        seen: set[str] = set()
        pending = list(self._dependents[path])
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._dependents[current])
        return seen

    def declared(self) -> dict[str, frozenset[str]]:
        """The graph's structure: path → set of dependency paths."""
        return {
            path: frozenset(module.dependencies)
            for path, module in self._modules.items()
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DependencyGraph):
            return NotImplemented
        return self.declared() == other.declared()

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<DependencyGraph modules={len(self)}>"

    # ── Rendering ────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "modules": [
                {
                    "path": path,
                    "dependencies": list(self._modules[path].dependencies),
                    "load_error": self._modules[path].load_error,
                }
                for path in self.paths
            ],
        }

    def to_dot(self, root: str | None = None) -> str:
        """Render the graph in Graphviz dot syntax.

        Edges point from a module to the modules it depends on. Paths are
        shown relative to ``root`` when given.
        """

        def label(path: str) -> str:
            shown = os.path.relpath(path, root) if root else path
            return '"' + shown.replace('"', '\\"') + '"'

        lines = ["digraph {"]
        for path in self.paths:
            lines.append(f"  {label(path)};")
            for dep in self._modules[path].dependencies:
                lines.append(f"  {label(path)} -> {label(dep)};")
        lines.append("}")
        return "\n".join(lines) + "\n"


def build_graph(
    modules: Mapping[str, Module],
    ignore_missing: bool = False,
) -> DependencyGraph:
    """Resolve declared dependencies and validate the result.

    Args:
        modules: Discovery snapshot, path → Module (raw dependencies).
        ignore_missing: Drop edges to undiscovered paths with a warning
            instead of failing. Used when a run is deliberately restricted
            to part of a tree.

    Returns:
        A DependencyGraph whose modules carry resolved dependencies.

    Raises:
        UnrecognizedDependencyError: Some declared path matches no module.
            The error names every unresolved path of the first offending
            module (by path order); ``all_missing`` covers all modules.
        DependencyCycleError: The dependency relation is cyclic.
    """
    resolved: dict[str, Module] = {}
    missing: dict[str, list[str]] = {}

    for path in sorted(modules):
        module = modules[path]
        deps: list[str] = []
        unresolved: list[str] = []

        for raw in module.declared_dependencies:
            dep_path = resolve_dependency_path(module.path, raw)
            if dep_path in modules:
                if dep_path not in deps:
                    deps.append(dep_path)
            elif dep_path not in unresolved:
                unresolved.append(dep_path)

        if unresolved:
            if ignore_missing:
                logger.warning(
                    "Ignoring dependencies of %s outside the run: %s",
                    path,
                    ", ".join(unresolved),
                )
            else:
                missing[path] = unresolved

        resolved[path] = module.model_copy(update={"dependencies": tuple(deps)})

    if missing:
        first = min(missing)
        raise UnrecognizedDependencyError(first, missing[first], all_missing=missing)

    cycle = find_cycle({path: m.dependencies for path, m in resolved.items()})
    if cycle is not None:
        raise DependencyCycleError(cycle)

    graph = DependencyGraph(resolved)
    logger.debug("Built dependency graph with %d modules", len(graph))
    return graph


_IN_PROGRESS = 1
_DONE = 2


def find_cycle(adjacency: Mapping[str, Sequence[str]]) -> list[str] | None:
    """Depth-first search for a cycle.

    Nodes are visited in sorted order. Returns the cycle members in
    traversal order, starting with the node that was reached again while
    still in progress, or None when the relation is acyclic.
    """
    state: dict[str, int] = {}

    for start in sorted(adjacency):
        if start in state:
            continue
        state[start] = _IN_PROGRESS
        trail: list[str] = [start]
        stack: list[Iterator[str]] = [iter(adjacency.get(start, ()))]
        # One pending dependency iterator per node on the trail
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                state[trail.pop()] = _DONE
                continue
            mark = state.get(dep)
            if mark == _IN_PROGRESS:
                return trail[trail.index(dep):]
            if mark is None:
                state[dep] = _IN_PROGRESS
                trail.append(dep)
                stack.append(iter(adjacency.get(dep, ())))
    return None
