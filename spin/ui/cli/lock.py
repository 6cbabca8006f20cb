"""
CLI commands for the remote-state lock store.

Operator tooling for inspecting and clearing locks left behind by a
crashed run, and for creating the DynamoDB lock table.

Usage::

    spin lock show "s3:bucket=acme,key=db/terraform.tfstate"
    spin lock release "s3:bucket=acme,key=db/terraform.tfstate" --yes
    spin lock init
"""

from __future__ import annotations

import json
import sys
from datetime import UTC, datetime

import click


def _store(ctx: click.Context):
    """Lock store for the configured backend, or exit 1."""
    from spin.adapters.locks import create_lock_store
    from spin.core.config.settings import Settings
    from spin.core.errors import ConfigError

    injected = ctx.obj.get("lock_store")
    if injected is not None:
        return injected
    try:
        settings = Settings.load(lock_backend=ctx.obj.get("lock_backend"))
        return create_lock_store(settings)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


def _when(epoch: float) -> str:
    if not epoch:
        return "never"
    return datetime.fromtimestamp(epoch, UTC).isoformat(timespec="seconds")


@click.group()
@click.option(
    "--lock-backend",
    type=click.Choice(["dynamodb", "memory"]),
    default=None,
    help="Lock store (default: dynamodb when SPIN_LOCK_TABLE is set).",
)
@click.pass_context
def lock(ctx: click.Context, lock_backend: str | None) -> None:
    """Lock — inspect and manage remote-state locks."""
    ctx.ensure_object(dict)
    ctx.obj["lock_backend"] = lock_backend


@lock.command()
@click.argument("key")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, key: str, as_json: bool) -> None:
    """Show who holds the lock KEY."""
    from spin.adapters.locks import LockError

    store = _store(ctx)
    try:
        holder = store.describe(key)
    except LockError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(holder.model_dump(mode="json") if holder else None, indent=2))
        return

    if holder is None:
        click.secho(f"🔓 {key} is free", fg="green")
        return

    state = " (expired, reclaimable)" if holder.expired() else ""
    click.secho(f"🔒 {key}{state}", fg="yellow", bold=True)
    click.echo(f"   Owner:    {holder.owner}")
    click.echo(f"   Lease:    {holder.lease_id}")
    click.echo(f"   Acquired: {_when(holder.acquired_at)}")
    click.echo(f"   Expires:  {_when(holder.expires_at)}")


@lock.command()
@click.argument("key")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def release(ctx: click.Context, key: str, assume_yes: bool) -> None:
    """Force-release the lock KEY, whoever holds it."""
    from spin.adapters.locks import LockError

    if not assume_yes:
        click.confirm(
            f"Release '{key}'? Only do this if its holder is no longer running.",
            abort=True,
        )

    store = _store(ctx)
    try:
        removed = store.force_release(key)
    except LockError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if removed:
        click.secho(f"✅ Released {key}", fg="green")
    else:
        click.echo(f"{key} was not held")


@lock.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the DynamoDB lock table if it does not exist."""
    from spin.adapters.locks import DynamoDBLockStore, LockError

    store = _store(ctx)
    if not isinstance(store, DynamoDBLockStore):
        click.secho(f"❌ Backend '{store.name}' has no table to create", fg="red")
        sys.exit(1)

    try:
        created = store.ensure_table()
    except LockError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if created:
        click.secho(f"✅ Created lock table {store.table_name}", fg="green")
    else:
        click.echo(f"Lock table {store.table_name} already exists")
