"""File and worktree snapshots used to detect what an executor turn changed."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .commands import run_command

LOGGER = logging.getLogger(__name__)

Snapshot = dict[str, "str | None"]


class SnapshotProvider(Protocol):
    async def read(self, paths: Sequence[str], cwd: Path) -> Snapshot:
        ...


class FileSnapshotProvider:
    """Read file contents from disk; unreadable files map to ``None``."""

    async def read(self, paths: Sequence[str], cwd: Path) -> Snapshot:
        return await asyncio.to_thread(read_snapshots, paths, cwd)


def read_snapshots(paths: Sequence[str], cwd: str | Path) -> Snapshot:
    root = Path(cwd)
    snapshots: Snapshot = {}
    for entry in dict.fromkeys(path for path in paths if path):
        try:
            snapshots[entry] = (root / entry).read_text(encoding="utf-8", errors="replace")
        except OSError:
            snapshots[entry] = None
    return snapshots


def files_changed(before: Mapping[str, str | None], after: Mapping[str, str | None], files: Iterable[str]) -> bool:
    """Return ``True`` when any of ``files`` differs between the snapshots.

    A file absent from both snapshots counts as unchanged.
    """
    for path in files:
        if not path:
            continue
        if before.get(path) != after.get(path):
            return True
    return False


@dataclass(slots=True)
class WorktreeSnapshot:
    """Dirty paths reported by ``git status`` with a content hash for each."""

    files: dict[str, str | None] = field(default_factory=dict)


class WorktreeProbe(Protocol):
    async def capture(self, cwd: Path) -> WorktreeSnapshot | None:
        ...


class GitWorktreeProbe:
    """Capture worktree snapshots through ``git status``; ``None`` outside a repository."""

    async def capture(self, cwd: Path) -> WorktreeSnapshot | None:
        status = await run_command("git status --porcelain=v1 -z --untracked-files=all", cwd)
        if not status.ok:
            return None
        paths = parse_status_paths(status.stdout)
        hashes = await asyncio.to_thread(_hash_files, paths, Path(cwd))
        return WorktreeSnapshot(files=hashes)


class NullWorktreeProbe:
    """Probe for directories without version control."""

    async def capture(self, cwd: Path) -> WorktreeSnapshot | None:
        return None


def parse_status_paths(output: str) -> list[str]:
    """Parse ``git status --porcelain=v1 -z`` output into paths, keeping rename sources."""
    if not output:
        return []
    entries = [entry for entry in output.split("\0") if entry]
    files: list[str] = []
    index = 0
    while index < len(entries):
        entry = entries[index]
        index += 1
        if len(entry) < 4:
            continue
        status, path = entry[:2], entry[3:]
        if not path:
            continue
        files.append(path)
        if ("R" in status or "C" in status) and index < len(entries):
            files.append(entries[index])
            index += 1
    return list(dict.fromkeys(files))


def diff_worktree_snapshots(before: WorktreeSnapshot, after: WorktreeSnapshot) -> list[str]:
    """Return sorted paths whose dirty state or content hash changed."""
    changed = set(after.files.keys() ^ before.files.keys())
    for path, digest in after.files.items():
        if path in before.files and before.files[path] != digest:
            changed.add(path)
    return sorted(changed)


def _hash_files(paths: Sequence[str], cwd: Path) -> dict[str, str | None]:
    hashes: dict[str, str | None] = {}
    for path in paths:
        target = cwd / path
        try:
            if target.is_dir():
                hashes[path] = None
                continue
            hashes[path] = hashlib.sha1(target.read_bytes()).hexdigest()
        except OSError:
            hashes[path] = None
    return hashes


__all__ = [
    "FileSnapshotProvider",
    "GitWorktreeProbe",
    "NullWorktreeProbe",
    "Snapshot",
    "SnapshotProvider",
    "WorktreeProbe",
    "WorktreeSnapshot",
    "diff_worktree_snapshots",
    "files_changed",
    "parse_status_paths",
    "read_snapshots",
]
