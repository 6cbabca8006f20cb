"""
Run use case — execute the tool across every module under a root.

This is the top-level orchestrator: it discovers modules, builds and
validates the dependency graph, plans the batches, coordinates the run
under remote-state locks, and appends the outcome to the audit ledger.
The full vertical slice from user intent to audited execution.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from spin.adapters.base import Invoker
from spin.adapters.locks import LockStore, create_lock_store
from spin.adapters.terraform import TerraformInvoker
from spin.core.config.discovery import discover_modules
from spin.core.config.settings import Settings
from spin.core.engine.executor import Coordinator, RunReport, generate_run_id
from spin.core.engine.graph import DependencyGraph, build_graph, clean_path
from spin.core.engine.planner import ExecutionPlan, plan_batches
from spin.core.errors import ConfigError, GraphError
from spin.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


@dataclass
class GraphResult:
    """Discovery + graph + plan, or the structural error that stopped them."""

    root: str = ""
    graph: DependencyGraph | None = None
    plan: ExecutionPlan | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if self.error:
            return {"root": self.root, "error": self.error, **self.details}
        assert self.graph is not None and self.plan is not None
        return {"root": self.root, **self.graph.to_dict(), **self.plan.to_dict()}


@dataclass
class RunResult:
    """Result of a run-all."""

    root: str = ""
    report: RunReport | None = None
    plan: ExecutionPlan | None = None
    error: str | None = None
    duration_ms: int = 0

    @property
    def exit_code(self) -> int:
        if self.error or self.report is None:
            return EXIT_FAILED
        if self.report.cancelled:
            return EXIT_CANCELLED
        return EXIT_OK if self.report.failed == 0 else EXIT_FAILED

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"root": self.root}
        if self.error:
            result["error"] = self.error
            return result
        result["duration_ms"] = self.duration_ms
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def load_graph(
    root: Path | str,
    settings: Settings | None = None,
    tool_args: Sequence[str] = (),
    reverse: bool = False,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
    ignore_external_dependencies: bool = False,
    env: Mapping[str, str] | None = None,
) -> GraphResult:
    """Discover modules under ``root``, build the graph and plan it.

    Structural problems (unreadable root, unrecognized dependency,
    cycle) are reported on the result rather than raised.
    """
    settings = settings or Settings()
    result = GraphResult(root=clean_path(root))

    try:
        modules = discover_modules(
            root,
            settings=settings,
            tool_args=tool_args,
            include=include,
            exclude=exclude,
            env=env,
        )
        graph = build_graph(modules, ignore_missing=ignore_external_dependencies)
    except ConfigError as e:
        result.error = str(e)
        return result
    except GraphError as e:
        result.error = str(e)
        cycle = getattr(e, "cycle", None)
        if cycle is not None:
            result.details["cycle"] = cycle
        all_missing = getattr(e, "all_missing", None)
        if all_missing is not None:
            result.details["missing"] = all_missing
        return result

    result.graph = graph
    result.plan = plan_batches(graph, reverse=reverse)
    return result


def run_all(
    root: Path | str,
    tool_args: Sequence[str] = (),
    settings: Settings | None = None,
    reverse: bool = False,
    dry_run: bool = False,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
    ignore_external_dependencies: bool = False,
    invoker: Invoker | None = None,
    lock_store: LockStore | None = None,
    cancel: threading.Event | None = None,
    audit: bool = True,
) -> RunResult:
    """Run the tool with ``tool_args`` in every module under ``root``.

    Args:
        root: Directory tree to scan for modules.
        tool_args: Arguments for the tool (e.g. ``["apply", "-auto-approve"]``).
        settings: Effective settings. Defaults to environment only.
        reverse: Teardown order, dependents before dependencies.
        dry_run: Plan and report, but neither lock nor invoke.
        include: Glob patterns of module dirs to run (relative to root).
        exclude: Glob patterns of module dirs to leave out.
        ignore_external_dependencies: Drop dependencies on modules that
            are not part of the run instead of failing.
        invoker: Tool binding. Defaults to TerraformInvoker.
        lock_store: Lock backend. Defaults to the one the settings select.
        cancel: Set from a signal handler to stop the run.
        audit: Append the outcome to ``<root>/.spin/audit.ndjson``.

    Returns:
        RunResult with the sealed run report, or the structural error.
    """
    settings = settings or Settings()
    loaded = load_graph(
        root,
        settings=settings,
        tool_args=tool_args,
        reverse=reverse,
        include=include,
        exclude=exclude,
        ignore_external_dependencies=ignore_external_dependencies,
    )
    result = RunResult(root=loaded.root, plan=loaded.plan)
    if loaded.error:
        result.error = loaded.error
        return result
    assert loaded.graph is not None and loaded.plan is not None

    if len(loaded.graph) == 0:
        result.error = f"No modules found under {loaded.root} (looking for {settings.config_filename})"
        return result

    if invoker is None:
        invoker = TerraformInvoker(tool=settings.tool)
    if not dry_run and not invoker.is_available():
        result.error = f"Tool '{settings.tool}' is not available on PATH"
        return result

    try:
        if lock_store is None:
            lock_store = create_lock_store(settings)
    except ConfigError as e:
        result.error = str(e)
        return result

    coordinator = Coordinator(
        invoker=invoker,
        lock_store=lock_store,
        retry_policy=settings.retry_policy,
        parallelism=settings.parallelism,
        cancel=cancel,
        dry_run=dry_run,
    )

    command = [settings.tool, *tool_args]
    logger.info(
        "Running '%s' in %d modules (%d batches%s)",
        " ".join(command),
        loaded.plan.total_modules,
        len(loaded.plan.batches),
        ", reverse" if reverse else "",
    )

    start = time.monotonic()
    report = coordinator.run(
        loaded.graph,
        loaded.plan,
        run_id=generate_run_id(),
        command=command,
    )
    result.duration_ms = int((time.monotonic() - start) * 1000)
    result.report = report

    # ── Write audit log ──────────────────────────────────────────
    if audit:
        writer = AuditWriter(root=Path(loaded.root))
        writer.write(AuditEntry.from_report(report, duration_ms=result.duration_ms, dry_run=dry_run))

    return result
