"""
Module configuration — the parsed contents of a module's spin.yml.

Only two things matter to the coordinator: the dependency paths a module
declares and the remote state backend its Terraform code writes to.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RemoteState(BaseModel):
    """A remote state backend descriptor (kind + backend parameters)."""

    model_config = ConfigDict(frozen=True)

    backend: str
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("backend")
    @classmethod
    def _backend_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("remote_state.backend must not be empty")
        return value


class ModuleConfig(BaseModel):
    """Declared configuration of a single module."""

    model_config = ConfigDict(frozen=True)

    dependencies: list[str] = Field(default_factory=list)  # raw, unresolved
    remote_state: RemoteState | None = None
    extra_args: list[str] = Field(default_factory=list)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _flatten_dependencies(cls, value: Any) -> Any:
        # Accept both `dependencies: [..]` and `dependencies: {paths: [..]}`
        if value is None:
            return []
        if isinstance(value, dict):
            return value.get("paths") or []
        return value
