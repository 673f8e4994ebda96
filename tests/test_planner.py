"""Tests for three-way planning."""

import pytest

from treesync import plan
from treesync.engine import build_baseline
from treesync.model import (
    Baseline,
    BaselineEntry,
    ConflictReason,
    LocalEntry,
    OpType,
    RemoteEntry,
    SyncOp,
)
from treesync.planner import MASS_DELETION_THRESHOLD


def L(path, h="h1", mtime=100.0, size=3):
    return LocalEntry(path, h, mtime, size)


def R(path, oid="o1", t=0):
    return RemoteEntry(path, oid, 3, t)


def B(path, h="h1", mtime=100.0, oid="o1", t=None):
    return BaselineEntry(path, content_hash=h, mod_time=mtime, size=3,
                         object_id=oid, last_change_time=t)


def idx(*entries):
    return {e.path: e for e in entries}


def base(*entries, commit_id="c0"):
    return Baseline(commit_id, {e.path: e for e in entries})


# ---------------------------------------------------------------------------
# No baseline
# ---------------------------------------------------------------------------

class TestFirstSync:
    def test_everything_empty(self):
        result = plan({}, {}, None)
        assert result.in_sync
        assert result.total == 0

    def test_local_only_pushes(self):
        result = plan(idx(L("a.txt")), {}, None)
        assert result.ops == [SyncOp(OpType.PUSH_NEW, path="a.txt")]
        assert result.conflicts == []

    def test_remote_only_pulls(self):
        result = plan({}, idx(R("a.txt")), None)
        assert result.ops == [SyncOp(OpType.PULL_NEW, path="a.txt")]

    def test_both_without_baseline_conflict(self):
        result = plan(idx(L("a.txt")), idx(R("a.txt")), None)
        assert result.ops == []
        assert result.conflicts == [
            SyncOp.conflict("a.txt", ConflictReason.MODIFY_MODIFY)
        ]

    def test_ops_sorted_by_path(self):
        result = plan(idx(L("b"), L("a")), idx(R("d"), R("c")), None)
        assert [op.path for op in result.ops] == ["a", "b", "c", "d"]


# ---------------------------------------------------------------------------
# With baseline
# ---------------------------------------------------------------------------

class TestWithBaseline:
    def test_unchanged(self):
        result = plan(idx(L("a")), idx(R("a")), base(B("a")))
        assert result.in_sync

    def test_local_modified_pushes(self):
        result = plan(idx(L("a", h="h2")), idx(R("a")), base(B("a")))
        assert result.ops == [SyncOp(OpType.PUSH_UPDATE, path="a")]

    def test_local_mtime_change_counts_as_modified(self):
        result = plan(idx(L("a", mtime=200.0)), idx(R("a")), base(B("a")))
        assert result.ops == [SyncOp(OpType.PUSH_UPDATE, path="a")]

    def test_remote_modified_pulls(self):
        result = plan(idx(L("a")), idx(R("a", oid="o2")), base(B("a")))
        assert result.ops == [SyncOp(OpType.PULL_UPDATE, path="a")]

    def test_remote_change_time_counts_when_known(self):
        result = plan(idx(L("a")), idx(R("a", t=50)), base(B("a", t=40)))
        assert result.ops == [SyncOp(OpType.PULL_UPDATE, path="a")]

    def test_unknown_change_time_not_compared(self):
        result = plan(idx(L("a")), idx(R("a", t=50)), base(B("a", t=None)))
        assert result.in_sync
        result = plan(idx(L("a")), idx(R("a", t=0)), base(B("a", t=0)))
        assert result.in_sync

    def test_both_modified_conflict(self):
        result = plan(idx(L("a", h="h2")), idx(R("a", oid="o2")), base(B("a")))
        assert result.ops == []
        assert result.conflicts == [SyncOp.conflict("a", ConflictReason.MODIFY_MODIFY)]

    def test_remote_deleted_unchanged_local(self):
        result = plan(idx(L("a")), {}, base(B("a")))
        assert result.ops == [SyncOp(OpType.PULL_DELETE, path="a")]

    def test_remote_deleted_modified_local(self):
        result = plan(idx(L("a", h="h2")), {}, base(B("a")))
        assert result.conflicts == [
            SyncOp.conflict("a", ConflictReason.DELETE_MODIFY_REMOTE)
        ]

    def test_local_missing_unchanged_remote(self):
        result = plan({}, idx(R("a")), base(B("a")))
        assert result.ops == []
        assert result.conflicts == [
            SyncOp.conflict("a", ConflictReason.LOCAL_MISSING_REMOTE)
        ]

    def test_local_deleted_modified_remote(self):
        result = plan({}, idx(R("a", oid="o2")), base(B("a")))
        assert result.conflicts == [
            SyncOp.conflict("a", ConflictReason.DELETE_MODIFY_LOCAL)
        ]

    def test_gone_on_both_sides(self):
        result = plan({}, {}, base(B("a")))
        assert result.in_sync

    def test_local_delete_never_planned_as_push_delete(self):
        result = plan({}, idx(R("a")), base(B("a")))
        assert all(op.type is not OpType.PUSH_DELETE for op in result.ops)


class TestOneSidedBaseline:
    def test_local_only_entry_still_local(self):
        # A push that never landed: only the local side was recorded.
        entry = BaselineEntry("a", content_hash="h1", mod_time=100.0, size=3)
        result = plan(idx(L("a")), {}, base(entry))
        assert result.ops == [SyncOp(OpType.PUSH_NEW, path="a")]
        assert result.conflicts == []

    def test_remote_only_entry_still_remote(self):
        entry = BaselineEntry("a", object_id="o1")
        result = plan({}, idx(R("a")), base(entry))
        assert result.ops == [SyncOp(OpType.PULL_NEW, path="a")]
        assert result.conflicts == []

    def test_unrecorded_local_file_survives_remote_delete(self):
        entry = BaselineEntry("a", object_id="o1")
        result = plan(idx(L("a")), {}, base(entry))
        assert result.ops == []
        assert result.conflicts == [
            SyncOp.conflict("a", ConflictReason.DELETE_MODIFY_REMOTE)
        ]

    def test_unrecorded_remote_side_counts_as_changed(self):
        entry = BaselineEntry("a", content_hash="h1", mod_time=100.0, size=3)
        result = plan(idx(L("a")), idx(R("a")), base(entry))
        assert result.ops == [SyncOp(OpType.PULL_UPDATE, path="a")]


# ---------------------------------------------------------------------------
# Renames
# ---------------------------------------------------------------------------

class TestRenames:
    def test_local_rename(self):
        result = plan(
            idx(L("new.txt")),
            idx(R("old.txt")),
            base(B("old.txt")),
        )
        assert result.ops == [SyncOp.rename(OpType.RENAME_LOCAL, "old.txt", "new.txt")]
        assert result.conflicts == []

    def test_local_rename_requires_matching_hash(self):
        result = plan(
            idx(L("new.txt", h="other")),
            idx(R("old.txt")),
            base(B("old.txt")),
        )
        types = sorted(str(op.type) for op in result.ops)
        assert "rename_local" not in types
        assert SyncOp(OpType.PUSH_NEW, path="new.txt") in result.ops

    def test_remote_rename(self):
        result = plan(
            idx(L("old.txt")),
            idx(R("new.txt")),
            base(B("old.txt")),
        )
        assert result.ops == [SyncOp.rename(OpType.RENAME_REMOTE, "old.txt", "new.txt")]

    def test_remote_rename_needs_unchanged_local(self):
        result = plan(
            idx(L("old.txt", h="h2")),
            idx(R("new.txt")),
            base(B("old.txt")),
        )
        assert all(op.type is not OpType.RENAME_REMOTE for op in result.ops)
        assert SyncOp(OpType.PULL_NEW, path="new.txt") in result.ops

    def test_first_match_wins(self):
        result = plan(
            idx(L("x.txt"), L("y.txt")),
            idx(R("old.txt")),
            base(B("old.txt")),
        )
        assert SyncOp.rename(OpType.RENAME_LOCAL, "old.txt", "x.txt") in result.ops
        assert SyncOp(OpType.PUSH_NEW, path="y.txt") in result.ops

    def test_rename_paths_not_diffed_again(self):
        result = plan(
            idx(L("new.txt")),
            idx(R("old.txt")),
            base(B("old.txt")),
        )
        touched = [p for op in result.ops for p in op.paths]
        assert touched.count("old.txt") == 1
        assert touched.count("new.txt") == 1


# ---------------------------------------------------------------------------
# Mass remote deletion
# ---------------------------------------------------------------------------

class TestMassDeletion:
    def _setup(self, n):
        names = [f"f{i:02d}.txt" for i in range(n)]
        local = idx(*(L(p) for p in names))
        baseline = base(*(B(p) for p in names))
        return local, baseline

    def test_above_threshold_becomes_conflicts(self):
        local, baseline = self._setup(MASS_DELETION_THRESHOLD + 1)
        result = plan(local, {}, baseline)
        assert result.ops == []
        assert len(result.conflicts) == MASS_DELETION_THRESHOLD + 1
        assert {op.reason for op in result.conflicts} == {
            ConflictReason.MASS_REMOTE_DELETION
        }

    def test_at_threshold_deletes_normally(self):
        local, baseline = self._setup(MASS_DELETION_THRESHOLD)
        result = plan(local, {}, baseline)
        assert result.conflicts == []
        assert {op.type for op in result.ops} == {OpType.PULL_DELETE}
        assert len(result.ops) == MASS_DELETION_THRESHOLD

    def test_warning_logged(self, caplog):
        local, baseline = self._setup(MASS_DELETION_THRESHOLD + 1)
        with caplog.at_level("WARNING", logger="treesync.planner"):
            plan(local, {}, baseline)
        assert "Remote appears empty" in caplog.text


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

class TestIdempotence:
    def test_plan_after_baseline_is_empty(self):
        local = idx(L("a"), L("d/b", h="h2"))
        remote = idx(R("a"), R("d/b", oid="o2"), R("c", oid="o3"))
        baseline = build_baseline(local, remote, "c1")
        # "c" is remote-only in the baseline and missing locally
        result = plan(local, remote, baseline)
        assert [op.path for op in result.conflicts] == []
        assert result.ops == [SyncOp(OpType.PULL_NEW, path="c")]

    def test_plan_after_matching_sides(self):
        local = idx(L("a"), L("b", h="h2"))
        remote = idx(R("a"), R("b", oid="o2"))
        baseline = build_baseline(local, remote, "c1")
        assert plan(local, remote, baseline).in_sync

    def test_plan_is_pure(self):
        local = idx(L("a", h="h2"))
        remote = idx(R("a"))
        baseline = base(B("a"))
        first = plan(local, remote, baseline)
        second = plan(local, remote, baseline)
        assert first == second
        assert baseline.get("a") == B("a")


@pytest.mark.parametrize("op,label", [
    (SyncOp(OpType.PUSH_NEW, path="a"), "push_new a"),
    (SyncOp.rename(OpType.RENAME_LOCAL, "a", "b"), "rename_local a -> b"),
    (SyncOp.conflict("a", ConflictReason.MODIFY_MODIFY), "conflict a (modify-modify)"),
])
def test_op_label(op, label):
    assert op.label == label


def test_op_validation():
    with pytest.raises(ValueError):
        SyncOp(OpType.RENAME_LOCAL, path="a")
    with pytest.raises(ValueError):
        SyncOp(OpType.CONFLICT, path="a")
    with pytest.raises(ValueError):
        SyncOp(OpType.PUSH_NEW)
