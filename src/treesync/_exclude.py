"""Ignore-pattern support for local indexing and remote scoping.

Combines explicit patterns and an optional exclude file into a single
predicate used by ``DiskStore.list_files`` and the engine's remote
scope check.

Pattern syntax follows gitignore rules (implemented by
``pathspec.GitIgnoreSpec``): a trailing ``/`` matches directories only,
``!`` re-includes, and the last matching pattern wins.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from pathspec import GitIgnoreSpec


class ExcludeFilter:
    """Combines explicit patterns and an optional exclude file."""

    def __init__(
        self,
        patterns: Sequence[str] | None = None,
        *,
        exclude_from: str | Path | None = None,
    ) -> None:
        lines = [p.strip() for p in patterns or ()]
        if exclude_from is not None:
            lines.extend(
                line.strip()
                for line in Path(exclude_from).read_text(encoding="utf-8").splitlines()
            )
        spec = GitIgnoreSpec.from_lines(line for line in lines if line)
        # Comment lines parse to patterns that neither include nor exclude.
        self._spec: GitIgnoreSpec | None = (
            spec if any(p.include is not None for p in spec.patterns) else None
        )

    @property
    def active(self) -> bool:
        """True if any filtering is configured."""
        return self._spec is not None

    def is_excluded(self, rel_path: str, *, is_dir: bool = False) -> bool:
        """Check *rel_path* and every ancestor directory against the patterns.

        An excluded directory excludes everything below it, as in git.
        """
        if self._spec is None:
            return False
        parts = rel_path.strip("/").split("/")
        for depth in range(1, len(parts)):
            if self._spec.match_file("/".join(parts[:depth]) + "/"):
                return True
        check = "/".join(parts)
        return bool(self._spec.match_file(check + "/" if is_dir else check))
