"""Excluded-path policy shared by plan validation and step execution.

Excluded entries are absolute path prefixes.  A candidate path is resolved
against the working directory and matches when it equals a prefix or lies
underneath one.  Matches are policy violations: the agent was told not to
touch those paths.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Sequence
from pathlib import Path

from ..errors import ExcludedPathViolation
from ..structured import ExecutionResult


class ExclusionPolicy:
    """Resolved set of excluded prefixes bound to a working directory."""

    __slots__ = ("_cwd", "_prefixes")

    def __init__(self, prefixes: Iterable[str | Path], cwd: str | Path) -> None:
        self._cwd = Path(cwd).resolve()
        resolved: list[Path] = []
        for entry in prefixes:
            if entry is None or not str(entry).strip():
                continue
            candidate = Path(entry)
            if not candidate.is_absolute():
                candidate = self._cwd / candidate
            resolved.append(Path(os.path.normpath(candidate)))
        self._prefixes = tuple(dict.fromkeys(resolved))

    @property
    def cwd(self) -> Path:
        return self._cwd

    @property
    def prefixes(self) -> tuple[Path, ...]:
        return self._prefixes

    def __bool__(self) -> bool:
        return bool(self._prefixes)

    def is_excluded(self, path: str | Path) -> bool:
        if not self._prefixes:
            return False
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._cwd / candidate
        absolute = os.path.normpath(candidate)
        for prefix in self._prefixes:
            text = str(prefix)
            if absolute == text or absolute.startswith(text.rstrip(os.sep) + os.sep):
                return True
        return False

    def find_excluded(self, paths: Iterable[str]) -> list[str]:
        """Return the entries of ``paths`` that fall under an excluded prefix."""
        return [path for path in dict.fromkeys(paths) if path and self.is_excluded(path)]

    def partition(self, paths: Sequence[str]) -> tuple[list[str], list[str]]:
        """Split ``paths`` into ``(included, excluded)`` preserving order."""
        included: list[str] = []
        excluded: list[str] = []
        for path in paths:
            (excluded if self.is_excluded(path) else included).append(path)
        return included, excluded

    def enforce(self, result: ExecutionResult) -> None:
        """Raise :class:`ExcludedPathViolation` when ``result`` names an excluded file."""
        if not self._prefixes:
            return
        named = [*result.files_touched, *result.files_written, *patch_header_paths(result.patch)]
        hits = self.find_excluded(named)
        if hits:
            raise ExcludedPathViolation(hits)

    def describe(self) -> list[str]:
        """Render prefixes for prompts, relative to the working directory when inside it."""
        rendered: list[str] = []
        for prefix in self._prefixes:
            try:
                relative = prefix.relative_to(self._cwd)
            except ValueError:
                rendered.append(prefix.as_posix())
                continue
            rendered.append(relative.as_posix() or ".")
        return rendered


def patch_header_paths(patch: str | None) -> list[str]:
    """Return file paths named by ``---``/``+++`` headers of a unified diff."""
    if not patch:
        return []
    files: list[str] = []
    for line in patch.splitlines():
        if not (line.startswith("+++ ") or line.startswith("--- ")):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        name = parts[1]
        if name == "/dev/null":
            continue
        if name.startswith("a/") or name.startswith("b/"):
            name = name[2:]
        files.append(name)
    return list(dict.fromkeys(files))


__all__ = ["ExclusionPolicy", "patch_header_paths"]
