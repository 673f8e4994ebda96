"""The sync and status commands."""

from __future__ import annotations

import click

from .._lock import sync_lock
from ..exceptions import TreeSyncError
from ._helpers import (
    main,
    _branch_option,
    _load_config,
    _open_engine,
    _overrides,
    _remote_option,
    _state_path,
    _status,
    _sync_options,
    _token_option,
)


@main.command()
@click.argument("local", type=click.Path(file_okay=False))
@_remote_option
@_token_option
@_branch_option
@_sync_options
@click.pass_context
def sync(ctx, local, remote_spec, token, branch, policy, ignore, root_path):
    """Sync LOCAL with the remote in both directions.

    Conflicts are handled by the policy; with keep-both, the other side's
    copy is saved next to the file under a tagged, timestamped name.
    """
    config = _load_config(ctx, **_overrides(branch, policy, ignore, root_path))
    engine = _open_engine(ctx, local, remote_spec, token, config.branch)

    def progress(p):
        pct = f" ({p.percentage}%)" if p.percentage is not None else ""
        _status(ctx, f"[{p.stage}] {p.message}{pct}")

    try:
        with sync_lock(_state_path(ctx, local).parent):
            report = engine.sync(config, progress=progress)
    except TreeSyncError as exc:
        raise click.ClickException(str(exc))

    click.echo(
        f"Synced: {len(report.executed)} operations, "
        f"{len(report.conflict_records)} conflicts."
    )
    for path in report.keep_both_paths:
        click.echo(f"  kept both: {path}")
    for record in report.conflict_records:
        click.echo(f"  conflict: {record.path} ({record.reason})")


@main.command()
@click.argument("local", type=click.Path(file_okay=False))
@_remote_option
@_token_option
@_branch_option
@_sync_options
@click.pass_context
def status(ctx, local, remote_spec, token, branch, policy, ignore, root_path):
    """Show what a sync of LOCAL would do, without changing anything."""
    config = _load_config(ctx, **_overrides(branch, policy, ignore, root_path))
    engine = _open_engine(ctx, local, remote_spec, token, config.branch, create=False)
    try:
        sync_plan = engine.preview(config)
    except TreeSyncError as exc:
        raise click.ClickException(str(exc))

    if sync_plan.in_sync:
        click.echo("Already in sync.")
        return
    for op in sync_plan.ops:
        click.echo(op.label)
    for op in sync_plan.conflicts:
        click.echo(op.label)
