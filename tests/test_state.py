"""Tests for JSON state persistence and the log handler."""

import json
import logging

import pytest

from treesync import JsonStateStore, StateLogHandler
from treesync.exceptions import StateError
from treesync.model import (
    Baseline,
    BaselineEntry,
    ConflictPolicy,
    ConflictReason,
    ConflictRecord,
    LogEntry,
)


def _record(path="a.txt"):
    return ConflictRecord(
        path=path,
        type="modify-modify",
        reason=ConflictReason.MODIFY_MODIFY,
        policy=ConflictPolicy.KEEP_BOTH,
        timestamp="2024-01-31T09:15:00+00:00",
        local_version={"content_hash": "h", "mod_time": 1.5},
        remote_version={"object_id": "o", "last_change_time": 7},
    )


class TestBaseline:
    def test_missing_file_is_empty(self, state):
        assert state.load_baseline() is None
        assert state.load_conflicts() == []
        assert state.load_logs() == []

    def test_round_trip(self, state):
        baseline = Baseline("c1", {
            "a.txt": BaselineEntry("a.txt", "h", 1.5, 3, "o", 9),
            "remote-only": BaselineEntry("remote-only", object_id="o2"),
        })
        state.save_baseline(baseline)
        assert state.load_baseline() == baseline

    def test_one_sided_entry_omits_absent_fields(self, state):
        state.save_baseline(Baseline("c1", {"r": BaselineEntry("r", object_id="o")}))
        data = json.loads(state.path.read_text())
        assert data["baseline"]["entries"]["r"] == {"path": "r", "object_id": "o"}
        assert data["version"] == 1

    def test_save_replaces(self, state):
        state.save_baseline(Baseline("c1", {"a": BaselineEntry("a", "h")}))
        state.save_baseline(Baseline("c2", {}))
        assert state.load_baseline() == Baseline("c2", {})

    def test_creates_parent_directory(self, tmp_path):
        store = JsonStateStore(tmp_path / "nested" / "dir" / "state.json")
        store.save_baseline(Baseline())
        assert store.load_baseline() == Baseline()

    def test_sections_independent(self, state):
        state.save_baseline(Baseline("c1", {}))
        state.save_conflicts([_record()])
        state.append_log(LogEntry("t", "info", "hello"))
        assert state.load_baseline().commit_id == "c1"
        assert len(state.load_conflicts()) == 1
        assert len(state.load_logs()) == 1

    def test_no_temp_files_left(self, state):
        state.save_baseline(Baseline("c1", {}))
        assert [p.name for p in state.path.parent.iterdir()] == ["state.json"]


class TestCorruption:
    def test_invalid_json(self, state):
        state.path.write_text("{not json")
        with pytest.raises(StateError):
            state.load_baseline()

    def test_not_an_object(self, state):
        state.path.write_text("[]")
        with pytest.raises(StateError):
            state.load_conflicts()

    def test_bad_conflict_record(self, state):
        state.path.write_text(json.dumps({"conflicts": [{"path": "a"}]}))
        with pytest.raises(StateError):
            state.load_conflicts()


class TestConflicts:
    def test_round_trip(self, state):
        records = [_record("a"), _record("b")]
        state.save_conflicts(records)
        assert state.load_conflicts() == records

    def test_replaced_wholesale(self, state):
        state.save_conflicts([_record("a"), _record("b")])
        state.save_conflicts([_record("c")])
        assert [r.path for r in state.load_conflicts()] == ["c"]


class TestLogs:
    def test_append_order(self, state):
        for i in range(3):
            state.append_log(LogEntry(f"t{i}", "info", f"m{i}"))
        assert [e.message for e in state.load_logs()] == ["m0", "m1", "m2"]

    def test_capped(self, tmp_path):
        store = JsonStateStore(tmp_path / "state.json", max_log_entries=5)
        for i in range(8):
            store.append_log(LogEntry(f"t{i}", "info", f"m{i}"))
        assert [e.message for e in store.load_logs()] == ["m3", "m4", "m5", "m6", "m7"]


class TestLogHandler:
    @pytest.fixture
    def log(self, state):
        logger = logging.getLogger("treesync.test_state")
        logger.setLevel(logging.DEBUG)
        handler = StateLogHandler(state)
        logger.addHandler(handler)
        yield logger
        logger.removeHandler(handler)

    def test_levels(self, state, log):
        log.info("one")
        log.warning("two %s", "args")
        log.error("three")
        entries = state.load_logs()
        assert [(e.level, e.message) for e in entries] == [
            ("info", "one"), ("warn", "two args"), ("error", "three"),
        ]

    def test_debug_not_persisted(self, state, log):
        log.debug("noise")
        assert state.load_logs() == []

    def test_timestamp_is_utc_iso(self, state, log):
        log.info("x")
        assert state.load_logs()[0].timestamp.endswith("+00:00")
