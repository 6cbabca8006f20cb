"""
Engine executor — the coordinator that runs a plan.

Batches run strictly one after another; the modules of a batch run
concurrently on a thread pool. Before the tool touches a module's
remote state, the coordinator takes the lock named after that state's
identity and gives it back afterwards, whatever happens.

Flow per module:
    prerequisites ok? → identity → lock (bounded retry) → invoke → release

A failure never aborts the run: the module's dependents (its
prerequisites' transitive closure, in teardown runs its dependencies)
are recorded as skipped with the failure as cause, and unrelated
branches carry on.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Mapping

from spin.adapters.base import Invoker
from spin.adapters.locks.base import LockAcquisitionTimeout, LockStore, LockStoreError
from spin.adapters.locks.memory import MemoryLockStore
from spin.core.engine.graph import DependencyGraph
from spin.core.engine.identity import group_by_identity, identity_for
from spin.core.engine.locking import hold_lock
from spin.core.engine.planner import ExecutionPlan
from spin.core.errors import RemoteStateError, RunCancelled
from spin.core.models.module import Module
from spin.core.models.receipt import Receipt
from spin.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

_MARKERS = {"ok": "✓", "failed": "✗", "skipped": "⊘"}


@dataclass
class RunReport:
    """Per-module outcomes of a run.

    Filled incrementally while the run progresses (thread-safe) and
    sealed when it completes; a sealed report is read-only.
    """

    run_id: str = ""
    command: list[str] = field(default_factory=list)
    batches: list[list[str]] = field(default_factory=list)
    reverse: bool = False
    cancelled: bool = False
    _receipts: dict[str, Receipt] = field(default_factory=dict, repr=False)
    _sealed: bool = field(default=False, repr=False)
    _mutex: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, receipt: Receipt) -> None:
        """Store the outcome of one module."""
        with self._mutex:
            if self._sealed:
                raise RuntimeError("Run report is sealed; the run has completed")
            self._receipts[receipt.module] = receipt

    def seal(self) -> None:
        with self._mutex:
            self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def receipts(self) -> Mapping[str, Receipt]:
        """Read-only view of path → Receipt."""
        return MappingProxyType(self._receipts)

    def outcome(self, path: str) -> Receipt | None:
        return self._receipts.get(path)

    def paths_with(self, status: str) -> list[str]:
        return sorted(p for p, r in self._receipts.items() if r.status == status)

    @property
    def total(self) -> int:
        return len(self._receipts)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self._receipts.values() if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self._receipts.values() if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self._receipts.values() if r.skipped)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and not self.cancelled

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "command": self.command,
            "status": self.status,
            "reverse": self.reverse,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "batches": self.batches,
            "receipts": [
                self._receipts[path].model_dump(mode="json")
                for batch in self.batches
                for path in batch
                if path in self._receipts
            ],
        }


class Coordinator:
    """Runs an ExecutionPlan over a DependencyGraph.

    Args:
        invoker: Runs the tool for one module.
        lock_store: Lock backend. Defaults to an in-process store, which
            only protects against other modules of the same run.
        retry_policy: Retry budget for contended locks.
        parallelism: Max concurrent modules; 0 = a whole batch at once.
        cancel: Set it to stop the run at the next safe point.
        dry_run: Record what would run without locking or invoking.
    """

    def __init__(
        self,
        invoker: Invoker,
        lock_store: LockStore | None = None,
        retry_policy: RetryPolicy | None = None,
        parallelism: int = 0,
        cancel: threading.Event | None = None,
        dry_run: bool = False,
    ):
        self.invoker = invoker
        self.lock_store = lock_store if lock_store is not None else MemoryLockStore()
        self.retry_policy = retry_policy or RetryPolicy()
        self.parallelism = parallelism
        self.cancel = cancel or threading.Event()
        self.dry_run = dry_run

    def run(
        self,
        graph: DependencyGraph,
        plan: ExecutionPlan,
        run_id: str | None = None,
        command: list[str] | None = None,
    ) -> RunReport:
        """Execute every batch of the plan and return the sealed report."""
        report = RunReport(
            run_id=run_id or generate_run_id(),
            command=list(command or []),
            batches=[list(batch) for batch in plan.batches],
            reverse=plan.reverse,
        )

        for key, paths in group_by_identity(list(graph.modules.values())).items():
            logger.info("Modules sharing state %s will not overlap: %s", key, ", ".join(paths))

        max_workers = self.parallelism or max((len(b) for b in plan.batches), default=1)
        with ThreadPoolExecutor(max_workers=max(max_workers, 1), thread_name_prefix="spin") as pool:
            for idx, batch in enumerate(plan.batches):
                if self.cancel.is_set():
                    self._skip_cancelled(plan.batches[idx:], report)
                    break
                logger.info("Batch %d/%d: %d module(s)", idx + 1, len(plan.batches), len(batch))
                self._run_batch(batch, graph, plan, report, pool)

        # A signal after the last module finished leaves the run complete
        report.cancelled = any(r.metadata.get("cancelled") for r in report.receipts.values())
        report.seal()
        logger.info(
            "Run %s finished: %s (%d ok, %d failed, %d skipped)",
            report.run_id,
            report.status,
            report.succeeded,
            report.failed,
            report.skipped,
        )
        return report

    # ── Batches ──────────────────────────────────────────────────

    def _run_batch(
        self,
        batch: tuple[str, ...],
        graph: DependencyGraph,
        plan: ExecutionPlan,
        report: RunReport,
        pool: ThreadPoolExecutor,
    ) -> None:
        futures: dict[Future[Receipt], str] = {}
        for path in batch:
            blocked = self._blocked_by(path, graph, plan, report)
            if blocked is not None:
                self._record(report, blocked)
                continue
            futures[pool.submit(self._run_module, graph[path])] = path

        # The batch is done only when every member is done
        for future in as_completed(futures):
            path = futures[future]
            try:
                receipt = future.result()
            except Exception as e:  # invokers should never raise
                logger.error("Module %s raised during execution: %s", path, e)
                receipt = Receipt.failure(module=path, error=f"Unexpected error: {e}")
            self._record(report, receipt)

    def _blocked_by(
        self,
        path: str,
        graph: DependencyGraph,
        plan: ExecutionPlan,
        report: RunReport,
    ) -> Receipt | None:
        """A skip receipt if a prerequisite failed or was skipped for a failure."""
        if plan.reverse:
            prerequisites = sorted(m.path for m in graph.dependents_of(path))
        else:
            prerequisites = sorted(graph[path].dependencies)

        for prereq in prerequisites:
            outcome = report.outcome(prereq)
            if outcome is None:
                continue
            if outcome.failed:
                return Receipt.skip(
                    module=path,
                    reason=f"upstream module {prereq} failed",
                    cause=prereq,
                    upstream=[prereq],
                )
            if outcome.skipped and outcome.cause is not None:
                return Receipt.skip(
                    module=path,
                    reason=f"upstream module {outcome.cause} failed",
                    cause=outcome.cause,
                    upstream=[*outcome.upstream, prereq],
                )
        return None

    def _skip_cancelled(self, batches: tuple[tuple[str, ...], ...], report: RunReport) -> None:
        logger.warning("Run cancelled; not starting %d remaining batch(es)", len(batches))
        for batch in batches:
            for path in batch:
                self._record(
                    report,
                    Receipt.skip(module=path, reason="run cancelled", metadata={"cancelled": True}),
                )

    def _record(self, report: RunReport, receipt: Receipt) -> None:
        report.record(receipt)
        marker = _MARKERS.get(receipt.status, "?")
        detail = receipt.error or receipt.output if not receipt.ok else ""
        logger.info("%s %s → %s%s", marker, receipt.module, receipt.status, f" ({detail})" if detail else "")

    # ── Modules ──────────────────────────────────────────────────

    def _run_module(self, module: Module) -> Receipt:
        """Lock, invoke and release for a single module. Never raises."""
        if self.cancel.is_set():
            return Receipt.skip(module=module.path, reason="run cancelled", metadata={"cancelled": True})

        if not module.loaded:
            return Receipt.failure(
                module=module.path,
                error=f"Configuration error: {module.load_error}",
                metadata={"load_error": True},
            )

        if self.dry_run:
            return Receipt.skip(module=module.path, reason="dry-run", metadata={"dry_run": True})

        try:
            identity = identity_for(module)
        except RemoteStateError as e:
            return Receipt.failure(module=module.path, error=f"Configuration error: {e}")

        if identity is None:
            return self._invoke(module)

        try:
            with hold_lock(self.lock_store, identity.key, self.retry_policy, self.cancel):
                receipt = self._invoke(module)
        except LockAcquisitionTimeout as e:
            return Receipt.failure(
                module=module.path,
                error=str(e),
                metadata={"lock": identity.key, "lock_contention": True},
            )
        except LockStoreError as e:
            return Receipt.failure(
                module=module.path,
                error=f"Lock store error: {e}",
                metadata={"lock": identity.key},
            )
        except RunCancelled:
            return Receipt.skip(
                module=module.path,
                reason="run cancelled while waiting for lock",
                metadata={"cancelled": True, "lock": identity.key},
            )

        receipt.metadata["lock"] = identity.key
        return receipt

    def _invoke(self, module: Module) -> Receipt:
        start = time.monotonic()
        try:
            receipt = self.invoker.invoke(module)
        except Exception as e:
            # Invokers should never raise, but defense in depth
            logger.error("Invoker %s raised for %s: %s", self.invoker.name, module.path, e)
            receipt = Receipt.failure(module=module.path, error=f"Unexpected error: {e}")
        if not receipt.duration_ms:
            receipt.duration_ms = int((time.monotonic() - start) * 1000)
        return receipt


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
