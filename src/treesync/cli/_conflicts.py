"""The conflicts, resolve and log commands."""

from __future__ import annotations

import json
from pathlib import Path

import click

from .._lock import sync_lock
from ..actions import ConflictAction, ConflictActionRunner
from ..exceptions import TreeSyncError
from ..local import DiskStore
from ._helpers import (
    main,
    _branch_option,
    _load_config,
    _open_remote,
    _open_state,
    _remote_option,
    _state_path,
    _token_option,
)

_KEEP_CHOICES = {
    "local": ConflictAction.KEEP_LOCAL,
    "remote": ConflictAction.KEEP_REMOTE,
    "both": ConflictAction.KEEP_BOTH,
}


@main.command()
@click.argument("local", type=click.Path(file_okay=False))
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def conflicts(ctx, local, as_json):
    """List the conflicts recorded by the last sync of LOCAL."""
    try:
        records = _open_state(ctx, local).load_conflicts()
    except TreeSyncError as exc:
        raise click.ClickException(str(exc))
    if as_json:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return
    if not records:
        click.echo("No conflicts.")
        return
    for r in records:
        click.echo(f"{r.path}\t{r.reason}\t{r.policy}\t{r.timestamp}")


@main.command()
@click.argument("local", type=click.Path(exists=True, file_okay=False))
@click.argument("path")
@click.option("--keep", required=True, type=click.Choice(sorted(_KEEP_CHOICES)),
              help="Which side to keep.")
@_remote_option
@_token_option
@_branch_option
@click.pass_context
def resolve(ctx, local, path, keep, remote_spec, token, branch):
    """Resolve the recorded conflict for PATH in LOCAL by hand."""
    config = _load_config(ctx, branch=branch)
    state = _open_state(ctx, local)
    try:
        record = next((r for r in state.load_conflicts() if r.path == path), None)
        if record is None:
            raise click.ClickException(f"No recorded conflict for {path}")
        runner = ConflictActionRunner(
            DiskStore(Path(local)),
            _open_remote(remote_spec, token, config.branch, create=False),
            state,
        )
        with sync_lock(_state_path(ctx, local).parent):
            sibling = runner.resolve(record, _KEEP_CHOICES[keep], config)
    except TreeSyncError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Resolved {path}: kept {keep}.")
    if sibling:
        click.echo(f"  copy saved as: {sibling}")


@main.command()
@click.argument("local", type=click.Path(file_okay=False))
@click.option("-n", "count", type=int, default=20, show_default=True,
              help="Number of entries to show.")
@click.pass_context
def log(ctx, local, count):
    """Show the most recent sync log entries for LOCAL."""
    try:
        entries = _open_state(ctx, local).load_logs()
    except TreeSyncError as exc:
        raise click.ClickException(str(exc))
    if count > 0:
        entries = entries[-count:]
    for entry in entries:
        click.echo(f"{entry.timestamp} {entry.level.upper():5} {entry.message}")
