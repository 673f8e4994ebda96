"""Immutable sync configuration.

A :class:`SyncConfig` value is built once (from defaults, a JSON file,
and command-line overrides) and passed explicitly to every component
that needs it.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .exceptions import ConfigError
from .model import ConflictPolicy

__all__ = ["SyncConfig", "load_config", "DEFAULT_IGNORE_PATTERNS"]

DEFAULT_IGNORE_PATTERNS = (".git/", ".treesync/")


@dataclass(frozen=True)
class SyncConfig:
    """Settings for one sync pair.

    Attributes:
        branch: Remote branch to track.
        root_path: Only local files under this relative folder are synced
            (empty string for the whole tree).  Paths keep their full
            relative form on both sides.
        ignore_patterns: Glob patterns excluded before indexing; a
            trailing ``/`` matches a directory prefix.
        conflict_policy: How detected conflicts are disposed of.
        max_file_size_mb: Local files above this size are skipped.
        commit_message_prefix: Prefix for remote commit messages.
    """
    branch: str = "main"
    root_path: str = ""
    ignore_patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS
    conflict_policy: ConflictPolicy = ConflictPolicy.KEEP_BOTH
    max_file_size_mb: float = 50
    commit_message_prefix: str = "sync"

    def __post_init__(self):
        if not self.branch or any(ch in self.branch for ch in (" ", ":", "\t", "\n")):
            raise ConfigError(f"Invalid branch name: {self.branch!r}")
        if self.max_file_size_mb <= 0:
            raise ConfigError("max_file_size_mb must be positive")
        if not isinstance(self.conflict_policy, ConflictPolicy):
            raise ConfigError(f"Invalid conflict policy: {self.conflict_policy!r}")

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    def replace(self, **changes: Any) -> SyncConfig:
        """Return a copy with *changes* applied (``None`` values are ignored)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return self
        return SyncConfig.from_dict({**self.to_dict(), **changes})

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["ignore_patterns"] = list(self.ignore_patterns)
        data["conflict_policy"] = self.conflict_policy.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Build a config from a plain mapping, validating every key."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

        kwargs = dict(data)
        if "conflict_policy" in kwargs:
            try:
                kwargs["conflict_policy"] = ConflictPolicy(kwargs["conflict_policy"])
            except ValueError:
                raise ConfigError(
                    f"Invalid conflict policy: {kwargs['conflict_policy']!r}"
                ) from None
        if "ignore_patterns" in kwargs:
            patterns = kwargs["ignore_patterns"]
            if isinstance(patterns, str):
                raise ConfigError("ignore_patterns must be a list of strings")
            kwargs["ignore_patterns"] = tuple(patterns)
        if "root_path" in kwargs:
            kwargs["root_path"] = kwargs["root_path"].strip("/")
        return cls(**kwargs)


def load_config(path: str | Path) -> SyncConfig:
    """Read a :class:`SyncConfig` from a JSON file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return SyncConfig.from_dict(data)
