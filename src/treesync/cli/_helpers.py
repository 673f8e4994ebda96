"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from ..config import SyncConfig, load_config
from ..engine import SyncEngine
from ..exceptions import ConfigError, TreeSyncError
from ..github import GitHubRemote
from ..gitrepo import GitRepoRemote
from ..local import DiskStore
from ..model import ConflictPolicy
from ..state import JsonStateStore

STATE_DIR = ".treesync"
STATE_FILE = "state.json"
GITHUB_PREFIX = "github:"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(level=level, handlers=[handler])


def _state_path(ctx, local: str) -> Path:
    """The --state file, defaulting to ``<local>/.treesync/state.json``."""
    explicit = ctx.obj.get("state_path")
    if explicit:
        return Path(explicit)
    return Path(local) / STATE_DIR / STATE_FILE


def _open_state(ctx, local: str) -> JsonStateStore:
    return JsonStateStore(_state_path(ctx, local))


def _load_config(ctx, *, ignore=(), **overrides) -> SyncConfig:
    """Config file (if any) with command-line *overrides* applied.

    *ignore* patterns extend the configured ones.  The state directory
    is always ignored.
    """
    path = ctx.obj.get("config_path")
    try:
        config = load_config(path) if path else SyncConfig()
        config = config.replace(**overrides)
        patterns = list(config.ignore_patterns) + list(ignore)
        if STATE_DIR + "/" not in patterns:
            patterns.append(STATE_DIR + "/")
        return config.replace(ignore_patterns=patterns)
    except ConfigError as exc:
        raise click.ClickException(str(exc))


def _open_remote(spec: str, token: str | None, branch: str = "main", *, create: bool = True):
    """``github:OWNER/REPO`` or a path to a bare git repository."""
    if not spec:
        raise click.ClickException("No remote specified. Use --remote or set TREESYNC_REMOTE.")
    if spec.startswith(GITHUB_PREFIX):
        owner, _, repo = spec[len(GITHUB_PREFIX):].partition("/")
        if not owner or not repo or "/" in repo:
            raise click.ClickException(f"Invalid GitHub remote: {spec} (expected github:OWNER/REPO)")
        if not token:
            raise click.ClickException("GitHub remotes need --token or TREESYNC_TOKEN.")
        remote = GitHubRemote(token, owner, repo)
    else:
        try:
            remote = GitRepoRemote.open(spec, create=create, branch=branch)
        except TreeSyncError as exc:
            raise click.ClickException(str(exc))
    click.get_current_context().call_on_close(remote.close)
    return remote


def _open_engine(
    ctx, local: str, remote_spec: str, token: str | None, branch: str, *, create: bool = True,
) -> SyncEngine:
    local_path = Path(local)
    if not local_path.is_dir():
        raise click.ClickException(f"Local directory not found: {local}")
    return SyncEngine(
        DiskStore(local_path),
        _open_remote(remote_spec, token, branch, create=create),
        _open_state(ctx, local),
    )


# ---------------------------------------------------------------------------
# Shared options
# ---------------------------------------------------------------------------

def _remote_option(f):
    """Shared --remote option."""
    return click.option(
        "--remote", "remote_spec", envvar="TREESYNC_REMOTE", default=None,
        help="github:OWNER/REPO or path to a bare git repository (or set TREESYNC_REMOTE).",
    )(f)


def _token_option(f):
    return click.option(
        "--token", envvar="TREESYNC_TOKEN", default=None,
        help="GitHub token (or set TREESYNC_TOKEN).",
    )(f)


def _branch_option(f):
    return click.option(
        "--branch", "-b", default=None,
        help="Remote branch to sync (default: from config, else main).",
    )(f)


def _sync_options(f):
    """--policy / --ignore / --root overrides for planning commands."""
    f = click.option(
        "--root", "root_path", default=None,
        help="Only sync this folder of the local tree.",
    )(f)
    f = click.option(
        "--ignore", multiple=True,
        help="Also ignore files matching pattern (gitignore syntax, repeatable).",
    )(f)
    f = click.option(
        "--policy", type=click.Choice([p.value for p in ConflictPolicy]), default=None,
        help="Conflict policy (default: keep-both).",
    )(f)
    return f


def _overrides(branch, policy=None, ignore=(), root_path=None) -> dict:
    return {
        "branch": branch, "conflict_policy": policy, "root_path": root_path, "ignore": ignore,
    }


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--state", "state_path", type=click.Path(dir_okay=False), envvar="TREESYNC_STATE",
              help="State file (default: LOCAL/.treesync/state.json).")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              envvar="TREESYNC_CONFIG", help="JSON config file.")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output on stderr.")
@click.pass_context
def main(ctx, state_path, config_path, verbose):
    """treesync: three-way sync between a folder and a git repository.

    \b
    Quick start:
      treesync sync ./notes --remote notes.git
      treesync status ./notes --remote github:me/notes --token $TOKEN
      treesync conflicts ./notes
      treesync resolve ./notes a.md --keep both --remote notes.git
      treesync log ./notes -n 20

    \b
    Set TREESYNC_REMOTE and TREESYNC_TOKEN to avoid passing them each time.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["state_path"] = state_path
    ctx.obj["config_path"] = config_path
    _configure_logging(verbose)
