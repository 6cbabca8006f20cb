"""
Module model — one directory of Terraform code plus its spin.yml.

Modules are immutable once discovery has bound them. The graph builder
produces copies with ``dependencies`` filled in; dependencies are paths
(keys into the run's module set), never object references.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field

from spin.core.models.config import ModuleConfig, RemoteState


class RunOptions(BaseModel):
    """Effective options for running the tool in one module."""

    model_config = ConfigDict(frozen=True)

    working_dir: str
    config_path: str = ""
    tool: str = "terraform"
    tool_args: tuple[str, ...] = ()
    non_interactive: bool = True
    env: dict[str, str] = Field(default_factory=dict)
    log_prefix: str = ""          # prefix for relayed tool output
    timeout: float | None = None  # seconds, None = no limit


class Module(BaseModel):
    """A discovered module.

    ``config`` is None when the module's configuration could not be parsed;
    ``load_error`` then says why. Such a module stays in the run so that
    its dependents can be skipped with a proper cause.
    """

    model_config = ConfigDict(frozen=True)

    path: str                            # cleaned absolute path, unique per run
    config: ModuleConfig | None = None
    load_error: str | None = None
    options: RunOptions
    dependencies: tuple[str, ...] = ()   # resolved paths, set by build_graph

    @property
    def name(self) -> str:
        """Directory name, for display."""
        return os.path.basename(self.path) or self.path

    @property
    def declared_dependencies(self) -> list[str]:
        """Raw dependency paths as written in the configuration."""
        return list(self.config.dependencies) if self.config else []

    @property
    def remote_state(self) -> RemoteState | None:
        return self.config.remote_state if self.config else None

    @property
    def loaded(self) -> bool:
        """Whether the configuration was parsed successfully."""
        return self.load_error is None

    def __str__(self) -> str:
        return self.path
