"""
spin — CLI entrypoint.

Usage:
    spin --help
    spin graph
    spin plan-all
    spin run-all -- validate
    spin destroy-all --yes
    spin lock show "s3:bucket=acme,key=db/terraform.tfstate"
"""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click

from spin import __version__
from spin.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="spin")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output, tool output included.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--root",
    "-r",
    "root",
    type=click.Path(file_okay=False),
    default=".",
    help="Directory tree containing the modules (default: current directory).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    root: str,
) -> None:
    """spin — run infrastructure modules in dependency order."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["root"] = Path(root)

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("SPIN_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("SPIN_LOG_FILE"),
        log_file_level=os.environ.get("SPIN_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
        tool_output=not quiet,
    )


def _load_settings(**overrides: Any):
    """Settings from the environment plus CLI overrides, or exit 1."""
    from spin.core.config.settings import Settings
    from spin.core.errors import ConfigError

    try:
        return Settings.load(**overrides)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


def _rel(path: str, root: str) -> str:
    rel = os.path.relpath(path, root)
    return "." if rel == os.curdir else rel


# ── Graph ───────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dot", "as_dot", is_flag=True, help="Output in Graphviz dot syntax.")
@click.option("--reverse", is_flag=True, help="Show teardown order.")
@click.option("--include-dir", "include", multiple=True, help="Only modules matching this glob.")
@click.option("--exclude-dir", "exclude", multiple=True, help="Leave out modules matching this glob.")
@click.option(
    "--ignore-external-dependencies",
    is_flag=True,
    help="Drop dependencies on modules outside the selection.",
)
@click.pass_context
def graph(
    ctx: click.Context,
    as_json: bool,
    as_dot: bool,
    reverse: bool,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    ignore_external_dependencies: bool,
) -> None:
    """Show the dependency graph and the execution batches."""
    from spin.core.use_cases.run import load_graph

    settings = _load_settings()
    result = load_graph(
        ctx.obj["root"],
        settings=settings,
        reverse=reverse,
        include=include,
        exclude=exclude,
        ignore_external_dependencies=ignore_external_dependencies,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    dep_graph, plan = result.graph, result.plan
    assert dep_graph is not None and plan is not None

    if as_dot:
        click.echo(dep_graph.to_dot(root=result.root), nl=False)
        return

    click.secho(f"\n🧭 Modules under {result.root}: {len(dep_graph)}", fg="cyan", bold=True)
    for path in dep_graph.paths:
        module = dep_graph[path]
        if module.load_error:
            click.secho(f"   ✗ {_rel(path, result.root)}", fg="red", nl=False)
            click.echo(f"  ({module.load_error})")
            continue
        deps = ", ".join(_rel(d, result.root) for d in module.dependencies)
        click.echo(f"   • {_rel(path, result.root)}" + (f"  → {deps}" if deps else ""))

    click.echo()
    label = "Teardown order" if reverse else "Execution order"
    click.secho(f"   {label}:", fg="white", bold=True)
    for idx, batch in enumerate(plan.batches, start=1):
        click.echo(f"     {idx}. " + ", ".join(_rel(p, result.root) for p in batch))
    click.echo()


# ── Run ─────────────────────────────────────────────────────────


def _run_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by run-all and its shortcuts."""
    options = [
        click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not ask for confirmation."),
        click.option("--dry-run", is_flag=True, help="Plan and report, but lock and run nothing."),
        click.option("--parallelism", type=int, default=None, help="Max modules running at once (0 = unbounded)."),
        click.option(
            "--lock-backend",
            type=click.Choice(["dynamodb", "memory"]),
            default=None,
            help="Lock store (default: dynamodb when SPIN_LOCK_TABLE is set).",
        ),
        click.option("--include-dir", "include", multiple=True, help="Only modules matching this glob."),
        click.option("--exclude-dir", "exclude", multiple=True, help="Leave out modules matching this glob."),
        click.option(
            "--ignore-external-dependencies",
            is_flag=True,
            help="Drop dependencies on modules outside the selection.",
        ),
        click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


_PASSTHROUGH = {"ignore_unknown_options": True}


@cli.command("run-all", context_settings=_PASSTHROUGH)
@click.option("--reverse", is_flag=True, help="Run dependents before their dependencies.")
@_run_options
@click.argument("tool_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run_all_cmd(ctx: click.Context, reverse: bool, tool_args: tuple[str, ...], **opts: Any) -> None:
    """Run the tool with TOOL_ARGS in every module.

    Examples:

        spin run-all -- validate

        spin run-all --reverse -- state list
    """
    if not tool_args:
        click.secho("❌ Nothing to run: pass the tool arguments after --", fg="red")
        sys.exit(1)
    _execute(ctx, list(tool_args), reverse=reverse, confirm=False, **opts)


@cli.command("plan-all", context_settings=_PASSTHROUGH)
@_run_options
@click.argument("tool_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def plan_all(ctx: click.Context, tool_args: tuple[str, ...], **opts: Any) -> None:
    """Run 'plan' in every module."""
    _execute(ctx, ["plan", *tool_args], reverse=False, confirm=False, **opts)


@cli.command("apply-all", context_settings=_PASSTHROUGH)
@_run_options
@click.argument("tool_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def apply_all(ctx: click.Context, tool_args: tuple[str, ...], **opts: Any) -> None:
    """Run 'apply' in every module, dependencies first."""
    _execute(ctx, ["apply", "-auto-approve", *tool_args], reverse=False, confirm=True, **opts)


@cli.command("output-all", context_settings=_PASSTHROUGH)
@_run_options
@click.argument("tool_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def output_all(ctx: click.Context, tool_args: tuple[str, ...], **opts: Any) -> None:
    """Run 'output' in every module."""
    _execute(ctx, ["output", *tool_args], reverse=False, confirm=False, **opts)


@cli.command("destroy-all", context_settings=_PASSTHROUGH)
@_run_options
@click.argument("tool_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def destroy_all(ctx: click.Context, tool_args: tuple[str, ...], **opts: Any) -> None:
    """Run 'destroy' in every module, dependents first."""
    _execute(ctx, ["destroy", "-auto-approve", *tool_args], reverse=True, confirm=True, **opts)


@contextmanager
def _cancel_on_signal() -> Iterator[threading.Event]:
    """Turn the first SIGINT/SIGTERM into a cancellation request.

    A second SIGINT falls through to the default handler.
    """
    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}

    def _handler(signum: int, frame: Any) -> None:
        click.secho(
            "\n⚠️  Cancelling: waiting for running modules to finish (Ctrl-C again to abort)",
            fg="yellow",
            err=True,
        )
        cancel.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    for sig in previous:
        signal.signal(sig, _handler)
    try:
        yield cancel
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _execute(
    ctx: click.Context,
    tool_args: Sequence[str],
    reverse: bool,
    confirm: bool,
    assume_yes: bool,
    dry_run: bool,
    parallelism: int | None,
    lock_backend: str | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    ignore_external_dependencies: bool,
    as_json: bool,
) -> None:
    from spin.core.use_cases.run import load_graph, run_all

    settings = _load_settings(parallelism=parallelism, lock_backend=lock_backend)
    root = ctx.obj["root"]

    if confirm and not assume_yes and not dry_run:
        preview = load_graph(
            root,
            settings=settings,
            reverse=reverse,
            include=include,
            exclude=exclude,
            ignore_external_dependencies=ignore_external_dependencies,
        )
        if preview.plan is not None and preview.plan.total_modules:
            click.echo(f"Modules under {preview.root}, in order:")
            for path in preview.plan.flatten():
                click.echo(f"   • {_rel(path, preview.root)}")
            if not click.confirm(f"Run '{settings.tool} {' '.join(tool_args)}' in these modules?"):
                click.secho("Aborted.", fg="yellow")
                sys.exit(1)

    with _cancel_on_signal() as cancel:
        result = run_all(
            root,
            tool_args=tool_args,
            settings=settings,
            reverse=reverse,
            dry_run=dry_run,
            include=include,
            exclude=exclude,
            ignore_external_dependencies=ignore_external_dependencies,
            invoker=ctx.obj.get("invoker"),
            lock_store=ctx.obj.get("lock_store"),
            cancel=cancel,
        )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    report = result.report
    assert report is not None

    mode_label = "[dry-run] " if dry_run else ""
    click.secho(
        f"\n⚡ {mode_label}{settings.tool} {' '.join(tool_args)} — {result.root}",
        fg="cyan",
        bold=True,
    )
    click.echo(f"   Modules: {report.total} | Batches: {len(report.batches)}")
    click.echo()

    for batch in report.batches:
        for path in batch:
            receipt = report.outcome(path)
            if receipt is None:
                continue
            name = _rel(path, result.root)
            timing = f" ({receipt.duration_ms}ms)" if receipt.duration_ms else ""
            if receipt.ok:
                click.secho(f"   ✓ {name}", fg="green", nl=False)
                click.echo(timing)
            elif receipt.failed:
                click.secho(f"   ✗ {name}", fg="red", nl=False)
                click.echo(timing)
                if receipt.error:
                    for line in receipt.error.split("\n")[-5:]:
                        click.echo(f"     │ {line}")
            else:
                click.secho(f"   ⊘ {name} ", fg="yellow", nl=False)
                if receipt.upstream:
                    chain = " → ".join(_rel(p, result.root) for p in receipt.upstream)
                    click.echo(f"(skipped: {chain} failed upstream)")
                else:
                    click.echo(f"({receipt.output})")

    click.echo()
    status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(report.status, "yellow")
    click.secho(
        f"   Result: {report.succeeded}/{report.total} succeeded, "
        f"{report.failed} failed, {report.skipped} skipped",
        fg=status_color,
        bold=True,
    )
    click.echo()
    sys.exit(result.exit_code)


# ── History ─────────────────────────────────────────────────────


@cli.command()
@click.option("-n", "count", type=int, default=10, help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent runs from the audit ledger."""
    from spin.core.engine.graph import clean_path
    from spin.core.persistence.audit import AuditWriter

    writer = AuditWriter(root=Path(clean_path(ctx.obj["root"])))
    entries = writer.read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No runs recorded yet.")
        return

    for entry in entries:
        color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(entry.status, "yellow")
        click.echo(f"   {entry.timestamp}  {entry.run_id}  ", nl=False)
        click.secho(f"{entry.status:<9}", fg=color, nl=False)
        click.echo(
            f" {' '.join(entry.command)}  "
            f"({entry.modules_succeeded}/{entry.modules_total} ok)"
        )


# ── Register sub-command groups from spin/ui/cli/ ───────────────

from spin.ui.cli.lock import lock  # noqa: E402

cli.add_command(lock)


if __name__ == "__main__":
    cli()
