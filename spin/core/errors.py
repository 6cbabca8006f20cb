"""
Error taxonomy — every exception spin raises on purpose.

Structural errors (GraphError and subclasses) abort a run before any
module is touched. Per-module problems never escape the coordinator:
they end up as failure or skip receipts in the run report.
"""

from __future__ import annotations


class SpinError(Exception):
    """Base class for all spin errors."""


class RunCancelled(SpinError):
    """The run was cancelled while a module was waiting to start."""


class ConfigError(SpinError):
    """Raised when settings or a module configuration file are invalid."""


class ModuleLoadError(ConfigError):
    """A single module's configuration could not be read or validated."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load module {path}: {reason}")


class RemoteStateError(ConfigError):
    """A remote_state block does not address any state object."""


# ── Graph construction ──────────────────────────────────────────


class GraphError(SpinError):
    """Base class for errors that make the dependency graph untrustworthy."""


class UnrecognizedDependencyError(GraphError):
    """A module declares dependency paths that match no discovered module.

    Carries every unresolved path of the offending module, in declaration
    order. When more than one module is affected, ``all_missing`` maps each
    of them to its unresolved paths.
    """

    def __init__(
        self,
        module_path: str,
        missing_paths: list[str],
        all_missing: dict[str, list[str]] | None = None,
    ):
        self.module_path = module_path
        self.missing_paths = list(missing_paths)
        self.all_missing = dict(all_missing or {module_path: self.missing_paths})
        super().__init__(
            f"Module {module_path} specifies dependencies that do not match "
            f"any discovered module: {', '.join(self.missing_paths)}"
        )


class DependencyCycleError(GraphError):
    """The dependency relation contains a cycle.

    ``cycle`` lists the member paths in traversal order, starting at the
    module that was re-entered. A self-dependency is a one-element cycle.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(
            "Found a dependency cycle between modules: "
            + " -> ".join([*self.cycle, self.cycle[0]])
        )
