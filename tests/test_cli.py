"""Tests for the treesync CLI."""

import json

import pytest

from treesync import GitHubRemote
from treesync.cli import main
from treesync.exceptions import RemoteAuthError


@pytest.fixture
def cli(runner, local_dir, remote_path):
    """Invoke ``treesync <command> LOCAL --remote REMOTE ...``."""
    def _invoke(command, *args, remote=True, env=None):
        argv = [command, str(local_dir)]
        if remote:
            argv += ["--remote", str(remote_path)]
        return runner.invoke(main, argv + list(args), env=env)
    return _invoke


@pytest.fixture
def diverged(cli, write_local, remote, push):
    """notes.md edited on both sides since the last sync."""
    write_local({"notes.md": b"base"})
    assert cli("sync").exit_code == 0
    write_local({"notes.md": b"local edit"})
    push({"notes.md": b"remote edit"})


# ---------------------------------------------------------------------------
# sync / status
# ---------------------------------------------------------------------------

class TestSync:
    def test_push_and_summary(self, cli, write_local, read_remote, remote):
        write_local({"a.txt": b"a", "d/b.txt": b"b"})
        result = cli("sync")
        assert result.exit_code == 0, result.output
        assert "Synced: 2 operations, 0 conflicts." in result.output
        assert read_remote() == {"a.txt": b"a", "d/b.txt": b"b"}

    def test_state_kept_out_of_remote(self, cli, write_local, read_remote, local_dir, remote):
        write_local({"a.txt": b"a"})
        assert cli("sync").exit_code == 0
        assert (local_dir / ".treesync" / "state.json").exists()
        assert cli("sync").exit_code == 0
        assert list(read_remote()) == ["a.txt"]

    def test_explicit_state_path(self, runner, cli, write_local, tmp_path, local_dir, remote_path):
        write_local({"a.txt": b"a"})
        state = tmp_path / "elsewhere" / "state.json"
        result = runner.invoke(main, [
            "--state", str(state), "sync", str(local_dir), "--remote", str(remote_path),
        ])
        assert result.exit_code == 0, result.output
        assert state.exists()
        assert not (local_dir / ".treesync" / "state.json").exists()

    def test_remote_from_env(self, cli, write_local, read_remote, remote, remote_path):
        write_local({"a.txt": b"a"})
        result = cli("sync", remote=False, env={"TREESYNC_REMOTE": str(remote_path)})
        assert result.exit_code == 0, result.output
        assert list(read_remote()) == ["a.txt"]

    def test_keep_both_reported(self, cli, diverged):
        result = cli("sync")
        assert result.exit_code == 0, result.output
        assert "1 conflicts." in result.output
        assert "kept both: notes (conflict-remote-" in result.output
        assert "conflict: notes.md (modify-modify)" in result.output

    def test_policy_option(self, cli, diverged, read_remote):
        result = cli("sync", "--policy", "prefer-local")
        assert result.exit_code == 0, result.output
        assert read_remote() == {"notes.md": b"local edit"}

    def test_invalid_policy(self, cli):
        result = cli("sync", "--policy", "coin-flip")
        assert result.exit_code == 2

    def test_ignore_option(self, cli, write_local, read_remote, remote):
        write_local({"a.txt": b"a", "b.log": b"l"})
        result = cli("sync", "--ignore", "*.log")
        assert result.exit_code == 0, result.output
        assert list(read_remote()) == ["a.txt"]

    def test_root_option(self, cli, write_local, read_remote, remote):
        write_local({"docs/a.md": b"a", "other.txt": b"o"})
        result = cli("sync", "--root", "docs")
        assert result.exit_code == 0, result.output
        assert list(read_remote()) == ["docs/a.md"]

    def test_branch_from_config_file(self, runner, write_local, local_dir, remote_path, remote, tmp_path):
        cfg = tmp_path / "treesync.json"
        cfg.write_text(json.dumps({"branch": "dev"}))
        write_local({"a.txt": b"a"})
        result = runner.invoke(main, [
            "--config", str(cfg), "sync", str(local_dir), "--remote", str(remote_path),
        ])
        assert result.exit_code == 0, result.output
        assert remote.get_commit_info("dev") is not None
        assert remote.get_commit_info("main") is None

    def test_bad_config_file(self, runner, local_dir, remote_path, tmp_path):
        cfg = tmp_path / "bad.json"
        cfg.write_text(json.dumps({"nope": 1}))
        result = runner.invoke(main, [
            "--config", str(cfg), "sync", str(local_dir), "--remote", str(remote_path),
        ])
        assert result.exit_code == 1
        assert "Unknown config keys: nope" in result.output

    def test_missing_remote(self, cli):
        result = cli("sync", remote=False, env={"TREESYNC_REMOTE": None})
        assert result.exit_code == 1
        assert "No remote specified" in result.output

    def test_github_needs_token(self, runner, local_dir):
        result = runner.invoke(
            main, ["sync", str(local_dir), "--remote", "github:me/notes"],
            env={"TREESYNC_TOKEN": None},
        )
        assert result.exit_code == 1
        assert "--token" in result.output

    def test_github_client_closed(self, runner, local_dir, monkeypatch):
        closed = []

        class Unreachable(GitHubRemote):
            def get_repo_info(self):
                raise RemoteAuthError("Bad credentials", status=401)

            def close(self):
                closed.append(self.repo)
                super().close()

        monkeypatch.setattr("treesync.cli._helpers.GitHubRemote", Unreachable)
        result = runner.invoke(
            main, ["sync", str(local_dir), "--remote", "github:me/notes", "--token", "t"],
        )
        assert result.exit_code == 1
        assert "Bad credentials" in result.output
        assert closed == ["notes"]

    def test_github_bad_spec(self, runner, local_dir):
        result = runner.invoke(
            main, ["sync", str(local_dir), "--remote", "github:justowner", "--token", "t"],
        )
        assert result.exit_code == 1
        assert "expected github:OWNER/REPO" in result.output

    def test_missing_local_dir(self, runner, tmp_path, remote_path):
        result = runner.invoke(
            main, ["sync", str(tmp_path / "absent"), "--remote", str(remote_path)],
        )
        assert result.exit_code == 1
        assert "Local directory not found" in result.output

    def test_verbose_progress(self, runner, write_local, local_dir, remote_path):
        write_local({"a.txt": b"a"})
        result = runner.invoke(
            main, ["-v", "sync", str(local_dir), "--remote", str(remote_path)],
        )
        assert result.exit_code == 0, result.output
        assert "[scanning]" in result.output
        assert "[saving]" in result.output


class TestStatus:
    def test_in_sync(self, cli, write_local, remote):
        write_local({"a.txt": b"a"})
        cli("sync")
        result = cli("status")
        assert result.exit_code == 0, result.output
        assert "Already in sync." in result.output

    def test_pending_changes(self, cli, write_local, remote):
        write_local({"a.txt": b"a"})
        cli("sync")
        write_local({"a.txt": b"changed", "b.txt": b"b"})
        result = cli("status")
        assert result.exit_code == 0, result.output
        assert "push_update a.txt" in result.output
        assert "push_new b.txt" in result.output

    def test_does_not_create_remote(self, cli, remote_path):
        result = cli("status")
        assert result.exit_code == 1
        assert "No git repository" in result.output
        assert not remote_path.exists()


# ---------------------------------------------------------------------------
# conflicts / resolve / log
# ---------------------------------------------------------------------------

class TestConflicts:
    def test_none(self, cli):
        result = cli("conflicts", remote=False)
        assert result.exit_code == 0, result.output
        assert "No conflicts." in result.output

    def test_listed(self, cli, diverged):
        cli("sync", "--policy", "manual")
        result = cli("conflicts", remote=False)
        assert result.exit_code == 0, result.output
        line = result.output.strip().splitlines()[-1]
        assert line.split("\t")[:3] == ["notes.md", "modify-modify", "manual"]

    def test_json(self, cli, diverged):
        cli("sync", "--policy", "manual")
        result = cli("conflicts", "--json", remote=False)
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data[0]["path"] == "notes.md"
        assert data[0]["reason"] == "modify-modify"


class TestResolve:
    def test_keep_local(self, cli, diverged, read_remote):
        cli("sync", "--policy", "manual")
        result = cli("resolve", "notes.md", "--keep", "local")
        assert result.exit_code == 0, result.output
        assert "Resolved notes.md: kept local." in result.output
        assert read_remote() == {"notes.md": b"local edit"}
        assert "No conflicts." in cli("conflicts", remote=False).output

    def test_keep_both(self, cli, diverged, local_dir):
        cli("sync", "--policy", "manual")
        result = cli("resolve", "notes.md", "--keep", "both")
        assert result.exit_code == 0, result.output
        assert "copy saved as: notes (conflict-manual-" in result.output

    def test_unknown_path(self, cli, write_local, remote):
        write_local({"a.txt": b"a"})
        cli("sync")
        result = cli("resolve", "a.txt", "--keep", "remote")
        assert result.exit_code == 1
        assert "No recorded conflict for a.txt" in result.output

    def test_keep_required(self, cli):
        result = cli("resolve", "a.txt")
        assert result.exit_code == 2


class TestLog:
    def test_entries(self, cli, write_local, remote):
        write_local({"a.txt": b"a"})
        cli("sync")
        result = cli("log", remote=False)
        assert result.exit_code == 0, result.output
        lines = result.output.strip().splitlines()
        assert "Sync started." in lines[0]
        assert "INFO" in lines[0]
        assert lines[-1].endswith("Sync completed.")

    def test_count(self, cli, write_local, remote):
        write_local({"a.txt": b"a"})
        cli("sync")
        result = cli("log", "-n", "1", remote=False)
        assert result.output.strip().endswith("Sync completed.")
        assert len(result.output.strip().splitlines()) == 1

    def test_empty(self, cli):
        result = cli("log", remote=False)
        assert result.exit_code == 0
        assert result.output == ""
