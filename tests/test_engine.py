"""
Tests for the execution coordinator — ordering, failure propagation,
locking and cancellation.
"""

import threading
import time

import pytest

from spin.adapters.locks import LockTable, MemoryLockStore
from spin.adapters.mock import MockInvoker
from spin.core.engine.executor import Coordinator, RunReport, generate_run_id
from spin.core.engine.planner import plan_batches
from spin.core.models.receipt import Receipt
from spin.core.reliability.retry import RetryPolicy

FAST = RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=0.001, jitter=0)


def p(name: str) -> str:
    return f"/infra/{name}"


def s3(key: str) -> dict:
    return {"backend": "s3", "config": {"bucket": "acme", "key": key, "region": "us-east-1"}}


def run(graph, invoker=None, reverse=False, **kwargs):
    invoker = invoker or MockInvoker()
    kwargs.setdefault("retry_policy", FAST)
    coordinator = Coordinator(invoker=invoker, **kwargs)
    return coordinator.run(graph, plan_batches(graph, reverse=reverse), command=["terraform", "plan"])


# ── Ordering ─────────────────────────────────────────────────────────


class TestOrdering:
    def test_all_succeed(self, make_graph):
        g = make_graph({"net": [], "db": ["net"], "app": ["net", "db"]})
        mock = MockInvoker()
        report = run(g, mock)
        assert report.status == "ok"
        assert report.succeeded == 3
        assert mock.called_paths == [p("net"), p("db"), p("app")]

    def test_dependencies_finish_before_dependents_start(self, make_graph):
        g = make_graph({"a": [], "b": [], "c": ["a", "b"], "d": ["c"], "e": ["a"]})
        finished: dict[str, float] = {}
        started: dict[str, float] = {}

        def hook(module):
            started[module.path] = time.monotonic()
            time.sleep(0.01)
            finished[module.path] = time.monotonic()

        report = run(g, MockInvoker(hook=hook))
        assert report.all_ok
        for path in g:
            for dep in g[path].dependencies:
                assert finished[dep] <= started[path]

    def test_exactly_one_outcome_per_module(self, make_graph):
        g = make_graph({"net": [], "db": ["net"], "dns": [], "app": ["db", "dns"]})
        mock = MockInvoker()
        mock.set_failure(p("db"))
        report = run(g, mock)
        assert set(report.receipts) == set(g.paths)
        assert report.succeeded + report.failed + report.skipped == len(g)

    def test_limited_parallelism(self, make_graph):
        g = make_graph({"a": [], "b": [], "c": [], "d": ["a", "b", "c"]})
        report = run(g, parallelism=1)
        assert report.succeeded == 4

    def test_reverse_runs_dependents_first(self, make_graph):
        g = make_graph({"net": [], "db": ["net"], "app": ["net", "db"]})
        mock = MockInvoker()
        report = run(g, mock, reverse=True)
        assert report.reverse
        assert mock.called_paths == [p("app"), p("db"), p("net")]


# ── Failure propagation ──────────────────────────────────────────────


class TestFailurePropagation:
    def test_chain_skipped_with_cause(self, make_graph):
        g = make_graph({"a": [], "b": ["a"], "c": ["b"]})
        mock = MockInvoker()
        mock.set_failure(p("a"), error="Error: creating VPC")
        report = run(g, mock)

        a, b, c = (report.outcome(p(n)) for n in "abc")
        assert a.failed
        assert a.error == "Error: creating VPC"
        assert b.skipped and b.cause == p("a") and b.upstream == [p("a")]
        assert c.skipped and c.cause == p("a") and c.upstream == [p("a"), p("b")]
        assert mock.called_paths == [p("a")]

    def test_independent_branch_continues(self, make_graph):
        g = make_graph({"net": [], "db": ["net"], "dns": [], "cdn": ["dns"]})
        mock = MockInvoker()
        mock.set_failure(p("net"))
        report = run(g, mock)
        assert report.outcome(p("db")).skipped
        assert report.outcome(p("dns")).ok
        assert report.outcome(p("cdn")).ok
        assert report.status == "partial"

    def test_every_transitive_dependent_skipped(self, make_graph):
        g = make_graph({"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"], "e": []})
        mock = MockInvoker()
        mock.set_failure(p("a"))
        report = run(g, mock)
        for path in g.transitive_dependents(p("a")):
            assert report.outcome(path).skipped
            assert report.outcome(path).cause == p("a")
        assert report.outcome(p("e")).ok

    def test_failed_status_when_nothing_succeeds(self, make_graph):
        g = make_graph({"a": [], "b": ["a"]})
        mock = MockInvoker()
        mock.set_failure(p("a"))
        assert run(g, mock).status == "failed"

    def test_reverse_failure_skips_dependencies(self, make_graph):
        """A failed destroy of app keeps db and net in place."""
        g = make_graph({"net": [], "db": ["net"], "app": ["net", "db"]})
        mock = MockInvoker()
        mock.set_failure(p("app"))
        report = run(g, mock, reverse=True)
        assert report.outcome(p("db")).cause == p("app")
        assert report.outcome(p("net")).cause == p("app")
        assert mock.called_paths == [p("app")]

    def test_broken_config_fails_without_invocation(self, make_graph):
        g = make_graph({"net": [], "app": ["net"]}, broken={"net": "invalid YAML in spin.yml"})
        mock = MockInvoker()
        report = run(g, mock)
        net = report.outcome(p("net"))
        assert net.failed
        assert "invalid YAML" in net.error
        assert net.metadata["load_error"] is True
        assert report.outcome(p("app")).cause == p("net")
        assert mock.call_count == 0

    def test_invoker_exception_becomes_failure(self, make_graph):
        g = make_graph({"net": [], "app": ["net"]})

        def explode(module):
            raise RuntimeError("kaboom")

        report = run(g, MockInvoker(hook=explode))
        assert report.outcome(p("net")).failed
        assert "kaboom" in report.outcome(p("net")).error
        assert report.outcome(p("app")).skipped


# ── Locking ──────────────────────────────────────────────────────────


class TestLocking:
    def test_locks_taken_and_released(self, make_graph):
        g = make_graph(
            {"net": [], "db": ["net"]},
            states={"net": s3("net"), "db": s3("db")},
        )
        store = MemoryLockStore()
        report = run(g, lock_store=store)
        assert report.all_ok
        assert store.acquire_log == ["s3:bucket=acme,key=net", "s3:bucket=acme,key=db"]
        assert store.table.locks == {}
        assert report.outcome(p("db")).metadata["lock"] == "s3:bucket=acme,key=db"

    def test_no_state_no_lock(self, make_graph):
        g = make_graph({"net": []}, states={"net": {"backend": "local", "config": {}}})
        store = MemoryLockStore()
        assert run(g, lock_store=store).all_ok
        assert store.acquire_log == []

    def test_shared_state_never_overlaps(self, make_graph):
        """Two modules on one state object, no edge between them."""
        g = make_graph(
            {"db": [], "cache": [], "queue": []},
            states={"db": s3("shared"), "cache": s3("shared"), "queue": s3("shared")},
        )
        active = 0
        peak = 0
        guard = threading.Lock()

        def hook(module):
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with guard:
                active -= 1

        retry = RetryPolicy(max_attempts=100, base_delay=0.01, max_delay=0.02, jitter=0)
        report = run(g, MockInvoker(hook=hook), retry_policy=retry)
        assert report.all_ok
        assert peak == 1

    def test_distinct_state_runs_concurrently(self, make_graph):
        g = make_graph({"db": [], "cache": []}, states={"db": s3("db"), "cache": s3("cache")})
        barrier = threading.Barrier(2, timeout=5)

        def hook(module):
            barrier.wait()  # both modules must be in flight at once

        report = run(g, MockInvoker(hook=hook))
        assert report.all_ok

    def test_contention_exhausted_fails_module(self, make_graph):
        g = make_graph({"db": [], "app": ["db"], "dns": []}, states={"db": s3("db")})
        table = LockTable()
        MemoryLockStore(owner="ci-runner-7", table=table).acquire("s3:bucket=acme,key=db")

        mock = MockInvoker()
        report = run(g, mock, lock_store=MemoryLockStore(table=table))
        db = report.outcome(p("db"))
        assert db.failed
        assert db.metadata["lock_contention"] is True
        assert "ci-runner-7" in db.error
        assert report.outcome(p("app")).cause == p("db")
        assert report.outcome(p("dns")).ok
        assert p("db") not in mock.called_paths

    def test_lock_released_when_module_fails(self, make_graph):
        g = make_graph({"db": []}, states={"db": s3("db")})
        mock = MockInvoker()
        mock.set_failure(p("db"))
        store = MemoryLockStore()
        run(g, mock, lock_store=store)
        assert store.table.locks == {}


# ── Dry run & cancellation ───────────────────────────────────────────


class TestDryRun:
    def test_nothing_invoked_or_locked(self, make_graph):
        g = make_graph({"net": [], "db": ["net"]}, states={"net": s3("net"), "db": s3("db")})
        mock = MockInvoker()
        store = MemoryLockStore()
        report = run(g, mock, lock_store=store, dry_run=True)
        assert mock.call_count == 0
        assert store.acquire_log == []
        assert all(r.skipped and r.output == "dry-run" for r in report.receipts.values())
        assert report.status == "ok"

    def test_broken_config_still_reported(self, make_graph):
        g = make_graph({"net": [], "app": ["net"]}, broken={"net": "bad"})
        report = run(g, dry_run=True)
        assert report.outcome(p("net")).failed
        assert report.outcome(p("app")).cause == p("net")


class TestCancellation:
    def test_cancelled_before_start(self, make_graph):
        g = make_graph({"net": [], "db": ["net"]})
        cancel = threading.Event()
        cancel.set()
        mock = MockInvoker()
        report = run(g, mock, cancel=cancel)
        assert mock.call_count == 0
        assert report.cancelled
        assert report.status == "cancelled"
        assert all(r.metadata.get("cancelled") for r in report.receipts.values())

    def test_no_batch_after_cancel(self, make_graph):
        g = make_graph(
            {"net": [], "db": ["net"], "app": ["db"]},
            states={"net": s3("net")},
        )
        cancel = threading.Event()
        store = MemoryLockStore()

        def hook(module):
            if module.path == p("net"):
                cancel.set()

        mock = MockInvoker(hook=hook)
        report = run(g, mock, lock_store=store, cancel=cancel)
        assert mock.called_paths == [p("net")]
        assert report.outcome(p("net")).ok  # in-flight module completes
        assert report.outcome(p("db")).skipped
        assert report.outcome(p("app")).skipped
        assert report.cancelled
        assert store.table.locks == {}

    def test_cancel_after_last_module_is_not_a_cancelled_run(self, make_graph):
        g = make_graph({"net": [], "db": ["net"]})
        cancel = threading.Event()

        def hook(module):
            if module.path == p("db"):
                cancel.set()

        report = run(g, MockInvoker(hook=hook), cancel=cancel)
        assert report.succeeded == 2
        assert not report.cancelled
        assert report.status == "ok"

    def test_cancel_while_waiting_for_lock(self, make_graph):
        g = make_graph({"db": []}, states={"db": s3("db")})
        table = LockTable()
        MemoryLockStore(owner="other", table=table).acquire("s3:bucket=acme,key=db")
        cancel = threading.Event()
        slow = RetryPolicy(max_attempts=1000, base_delay=0.05, max_delay=0.05, jitter=0)

        threading.Timer(0.1, cancel.set).start()
        report = run(g, lock_store=MemoryLockStore(table=table), retry_policy=slow, cancel=cancel)
        db = report.outcome(p("db"))
        assert db.skipped
        assert db.metadata["cancelled"] is True
        assert report.cancelled


# ── Report ───────────────────────────────────────────────────────────


class TestRunReport:
    def test_sealed_after_run(self, make_graph):
        report = run(make_graph({"net": []}))
        assert report.sealed
        with pytest.raises(RuntimeError, match="sealed"):
            report.record(Receipt.success(module=p("late")))

    def test_receipts_view_read_only(self, make_graph):
        report = run(make_graph({"net": []}))
        with pytest.raises(TypeError):
            report.receipts[p("x")] = Receipt.success(module=p("x"))  # type: ignore[index]

    def test_to_dict_in_plan_order(self, make_graph):
        g = make_graph({"net": [], "db": ["net"]})
        mock = MockInvoker()
        mock.set_failure(p("net"))
        data = run(g, mock).to_dict()
        assert data["status"] == "failed"
        assert data["failed"] == 1
        assert data["skipped"] == 1
        assert data["command"] == ["terraform", "plan"]
        assert [r["module"] for r in data["receipts"]] == [p("net"), p("db")]
        assert data["receipts"][1]["cause"] == p("net")

    def test_paths_with(self):
        report = RunReport()
        report.record(Receipt.success(module="/b"))
        report.record(Receipt.success(module="/a"))
        report.record(Receipt.failure(module="/c", error="x"))
        assert report.paths_with("ok") == ["/a", "/b"]
        assert report.paths_with("failed") == ["/c"]

    def test_run_id_format(self):
        run_id = generate_run_id()
        assert run_id.startswith("run-")
        assert run_id != generate_run_id()
