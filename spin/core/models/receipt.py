"""
Receipt model — the outcome of one module in a run.

Invokers return receipts, the coordinator records them. Never
exceptions: a tool failure, a lock timeout and an upstream failure
all end up here, distinguished by ``status``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Result of running (or not running) the tool in a module.

    A skipped receipt names the module whose failure caused the skip in
    ``cause`` and the full chain from that module down to the direct
    prerequisite in ``upstream``.
    """

    module: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    exit_code: int | None = None
    output: str = ""
    error: str | None = None

    cause: str | None = None
    upstream: list[str] = Field(default_factory=list)

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the module succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the module itself failed."""
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(
        cls,
        module: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(module=module, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        module: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(module=module, status="failed", error=error, **kwargs)

    @classmethod
    def skip(
        cls,
        module: str,
        reason: str = "",
        cause: str | None = None,
        upstream: list[str] | None = None,
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            module=module,
            status="skipped",
            output=reason,
            cause=cause,
            upstream=list(upstream or []),
            **kwargs,
        )
