"""Persistence: baseline, conflict records and the bounded sync log.

Everything lives in one JSON document::

    {
      "version": 1,
      "baseline": {"commit_id": ..., "entries": {...}} | null,
      "conflicts": [ConflictRecord, ...],
      "logs": [LogEntry, ...]
    }

Writes replace the file atomically (temp file + ``os.replace``), so a
crash mid-write leaves the previous state intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from .exceptions import StateError
from .model import Baseline, ConflictRecord, LogEntry

__all__ = ["JsonStateStore", "StateLogHandler", "MAX_LOG_ENTRIES"]

MAX_LOG_ENTRIES = 500
STATE_VERSION = 1


class JsonStateStore:
    """A :class:`~treesync.interfaces.StateStore` backed by a JSON file."""

    def __init__(self, path: str | os.PathLike[str], *, max_log_entries: int = MAX_LOG_ENTRIES):
        self.path = Path(path)
        self.max_log_entries = max_log_entries
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"JsonStateStore({str(self.path)!r})"

    # -- raw document ------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            raise StateError(f"Corrupt state file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StateError(f"Corrupt state file {self.path}: expected a JSON object")
        return data

    def _save(self, data: dict[str, Any]) -> None:
        data["version"] = STATE_VERSION
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def _update(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    # -- baseline ----------------------------------------------------------

    def load_baseline(self) -> Baseline | None:
        with self._lock:
            raw = self._load().get("baseline")
        if raw is None:
            return None
        try:
            return Baseline.from_dict(raw)
        except (KeyError, TypeError, AttributeError) as exc:
            raise StateError(f"Corrupt baseline in {self.path}: {exc}") from exc

    def save_baseline(self, baseline: Baseline) -> None:
        self._update("baseline", baseline.to_dict())

    # -- conflicts ---------------------------------------------------------

    def load_conflicts(self) -> list[ConflictRecord]:
        with self._lock:
            raw = self._load().get("conflicts") or []
        try:
            return [ConflictRecord.from_dict(r) for r in raw]
        except (KeyError, TypeError, ValueError) as exc:
            raise StateError(f"Corrupt conflict list in {self.path}: {exc}") from exc

    def save_conflicts(self, records: Sequence[ConflictRecord]) -> None:
        self._update("conflicts", [r.to_dict() for r in records])

    # -- log ---------------------------------------------------------------

    def append_log(self, entry: LogEntry) -> None:
        """Append *entry*, dropping the oldest lines beyond the cap."""
        with self._lock:
            data = self._load()
            logs = list(data.get("logs") or [])
            logs.append(entry.to_dict())
            data["logs"] = logs[-self.max_log_entries:]
            self._save(data)

    def load_logs(self) -> list[LogEntry]:
        with self._lock:
            raw = self._load().get("logs") or []
        return [LogEntry.from_dict(r) for r in raw]


def _level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    return "info"


class StateLogHandler(logging.Handler):
    """Forward log records to a state store's persisted sync log.

    Attached to the ``treesync`` logger for the duration of one sync.
    Records below INFO are not persisted.
    """

    def __init__(self, store, level: int = logging.INFO):
        super().__init__(level)
        self.store = store

    def emit(self, record: logging.LogRecord) -> None:
        try:
            timestamp = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
            self.store.append_log(
                LogEntry(timestamp, _level_name(record.levelno), record.getMessage())
            )
        except Exception:
            self.handleError(record)
