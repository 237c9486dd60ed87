"""Git plumbing for the audit loop: work branches, patches, commits, rollback.

Everything here is synchronous; the async pipelines reach it through
``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import NamedTuple, Sequence

LOGGER = logging.getLogger(__name__)

_IDENTITY = {"user.email": "remedy@localhost", "user.name": "remedy"}
_NOTHING_TO_COMMIT = ("nothing to commit", "nothing added to commit")


class GitError(RuntimeError):
    """A git invocation failed or the directory is not usable as a repository."""


class GitOutput(NamedTuple):
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def message(self, fallback: str) -> str:
        return self.stderr.strip() or self.stdout.strip() or fallback


def run_git(args: Sequence[str], cwd: Path, *, check: bool = True, stdin: str | None = None) -> GitOutput:
    """Run ``git args`` in ``cwd``; raise :class:`GitError` on failure when ``check``."""
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=cwd,
            input=None if stdin is None else stdin.encode("utf-8"),
            capture_output=True,
            check=False,
        )
    except OSError as error:
        raise GitError(f"Unable to run git {' '.join(args)}: {error}") from error
    output = GitOutput(
        completed.returncode,
        (completed.stdout or b"").decode("utf-8", errors="replace"),
        (completed.stderr or b"").decode("utf-8", errors="replace"),
    )
    if check and not output.ok:
        raise GitError(f"git {' '.join(args)} failed: {output.message('unknown git error')}")
    return output


def apply_patch(patch: str, cwd: Path | str) -> None:
    """Dry-run then apply a unified diff in ``cwd``.

    The dry run keeps a half-applicable patch from touching the tree. Works
    outside a repository too, since ``git apply`` does not need one.
    """
    body = patch if patch.endswith("\n") else patch + "\n"
    where = Path(cwd)
    dry_run = run_git(["apply", "--check", "--whitespace=nowarn", "-"], where, check=False, stdin=body)
    if not dry_run.ok:
        raise GitError(f"git apply --check failed: {dry_run.message('patch does not apply')}")
    run_git(["apply", "--whitespace=nowarn", "-"], where, stdin=body)


@dataclass(slots=True, frozen=True)
class GitCheckpoint:
    """``HEAD`` plus the untracked files present before a plan began."""

    repo: "GitRepository"
    label: str
    head: str | None
    preexisting: frozenset[str]

    def rollback(self) -> None:
        self.repo.restore(self)


class GitRepository:
    """A git working tree rooted at ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        origin = Path(start or Path.cwd()).resolve()
        found = next((path for path in (origin, *origin.parents) if (path / ".git").exists()), None)
        if found is None:
            raise GitError(f"Unable to locate a git repository from {origin}")
        return cls(found)

    @classmethod
    def initialise(cls, root: Path | str) -> "GitRepository":
        """``git init`` at ``root`` and commit whatever is already there."""
        target = Path(root).resolve()
        target.mkdir(parents=True, exist_ok=True)
        run_git(["init"], target)
        for key, value in _IDENTITY.items():
            if not run_git(["config", "--get", key], target, check=False).stdout.strip():
                run_git(["config", key, value], target)
        run_git(["add", "--all"], target)
        run_git(["commit", "--allow-empty", "-m", "Initial commit"], target)
        return cls(target)

    def git(self, *args: str, check: bool = True, stdin: str | None = None) -> GitOutput:
        return run_git(args, self.root, check=check, stdin=stdin)

    def head(self) -> str | None:
        resolved = self.git("rev-parse", "--verify", "HEAD", check=False)
        if not resolved.ok:
            return None
        return resolved.stdout.strip() or None

    def current_branch(self) -> str | None:
        """Branch name, or ``None`` on a detached or unborn ``HEAD``."""
        resolved = self.git("symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        name = resolved.stdout.strip()
        if not resolved.ok or not name or self.head() is None:
            return None
        return name

    def create_branch(self, prefix: str = "remedy") -> str:
        name = f"{prefix}/{datetime.now():%Y%m%d-%H%M%S}"
        self.git("switch", "-c", name)
        LOGGER.debug("Created work branch %s", name)
        return name

    def checkout(self, branch: str) -> None:
        self.git("switch", branch)

    def changed_paths(self) -> list[str]:
        """Tracked modifications plus untracked files, as sorted POSIX paths."""
        listing = self.git("status", "--porcelain=v1", "-z", "--untracked-files=all").stdout
        fields = iter(listing.split("\0"))
        changed: set[str] = set()
        for entry in fields:
            if len(entry) < 4:
                continue
            changed.add(entry[3:])
            if entry[0] in "RC":
                next(fields, None)
        return sorted(changed)

    def untracked(self) -> set[str]:
        listing = self.git("ls-files", "--others", "--exclude-standard", "-z").stdout
        return {path for path in listing.split("\0") if path}

    def is_clean(self) -> bool:
        return not self.changed_paths()

    def ensure_clean(self) -> None:
        dirty = self.changed_paths()
        if not dirty:
            return
        shown = "\n".join(dirty[:20])
        raise GitError(
            "Working tree is not clean. Commit or stash your changes before running remedy.\n\n" + shown
        )

    def create_checkpoint(self, label: str | None = None) -> GitCheckpoint:
        head = self.head()
        return GitCheckpoint(
            repo=self,
            label=label or head or "working-tree",
            head=head,
            preexisting=frozenset(self.untracked()),
        )

    def restore(self, checkpoint: GitCheckpoint) -> None:
        """Reset tracked files to the checkpoint and remove files created since."""
        if checkpoint.repo is not self:
            raise GitError("Checkpoint does not belong to this repository.")
        if checkpoint.head is not None:
            self.git("reset", "--hard", checkpoint.head)
        else:
            self.git("restore", "--staged", "--worktree", "--", ".", check=False)
        for relative in sorted(self.untracked() - checkpoint.preexisting):
            self._remove(self.root / relative)

    def _remove(self, target: Path) -> None:
        target.unlink(missing_ok=True)
        parent = target.parent
        while parent != self.root and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent

    def apply_patch(self, patch: str) -> None:
        apply_patch(patch, self.root)

    def commit_all(self, message: str) -> str | None:
        """Stage and commit everything; ``None`` when the tree had no changes."""
        self.git("add", "--all")
        committed = self.git("commit", "-m", message, check=False)
        if not committed.ok:
            detail = committed.message("")
            combined = f"{committed.stdout}\n{committed.stderr}".lower()
            if any(marker in combined for marker in _NOTHING_TO_COMMIT):
                return None
            raise GitError(f"git commit failed: {detail}")
        return self.head()


__all__ = ["GitCheckpoint", "GitError", "GitOutput", "GitRepository", "apply_patch", "run_git"]
