from __future__ import annotations

from pathlib import Path

import pytest

from remedy.tools.vcs import GitError, GitRepository, apply_patch

PATCH = """\
--- a/app.py
+++ b/app.py
@@ -1 +1 @@
-VALUE = 1
+VALUE = 2
"""


def test_apply_patch_updates_working_tree(git_repo: Path) -> None:
    apply_patch(PATCH, git_repo)
    assert (git_repo / "app.py").read_text(encoding="utf-8") == "VALUE = 2\n"


def test_apply_patch_rejects_mismatched_context(git_repo: Path) -> None:
    (git_repo / "app.py").write_text("VALUE = 9\n", encoding="utf-8")
    with pytest.raises(GitError) as excinfo:
        apply_patch(PATCH, git_repo)
    assert "git apply --check failed" in str(excinfo.value)
    assert (git_repo / "app.py").read_text(encoding="utf-8") == "VALUE = 9\n"


def test_checkpoint_rollback_restores_tracked_and_removes_new_files(git_repo: Path) -> None:
    repo = GitRepository(git_repo)
    (git_repo / "scratch.txt").write_text("keep me", encoding="utf-8")
    checkpoint = repo.create_checkpoint("plan")

    repo.apply_patch(PATCH)
    (git_repo / "new_module.py").write_text("x = 1\n", encoding="utf-8")
    checkpoint.rollback()

    assert (git_repo / "app.py").read_text(encoding="utf-8") == "VALUE = 1\n"
    assert not (git_repo / "new_module.py").exists()
    assert (git_repo / "scratch.txt").exists()


def test_commit_all_returns_sha_or_none(git_repo: Path) -> None:
    repo = GitRepository(git_repo)
    assert repo.commit_all("remedy(security): nothing") is None

    repo.apply_patch(PATCH)
    sha = repo.commit_all("remedy(security): bump value")

    assert sha and len(sha) == 40
    assert repo.is_clean()
    log = repo.git("log", "-1", "--pretty=%s").stdout.strip()
    assert log == "remedy(security): bump value"


def test_ensure_clean_lists_dirty_paths(git_repo: Path) -> None:
    repo = GitRepository(git_repo)
    repo.ensure_clean()
    (git_repo / "app.py").write_text("VALUE = 3\n", encoding="utf-8")
    with pytest.raises(GitError) as excinfo:
        repo.ensure_clean()
    assert "app.py" in str(excinfo.value)


def test_discover_and_branching(git_repo: Path) -> None:
    nested = git_repo / "pkg"
    nested.mkdir()
    repo = GitRepository.discover(nested)
    original = repo.current_branch()

    created = repo.create_branch()
    assert created.startswith("remedy/")
    assert repo.current_branch() == created

    repo.checkout(original)
    assert repo.current_branch() == original


def test_initialise_creates_repository(tmp_path: Path) -> None:
    root = tmp_path / "fresh"
    root.mkdir()
    (root / "README.md").write_text("hi\n", encoding="utf-8")
    repo = GitRepository.initialise(root)
    assert repo.is_clean()


def test_not_a_repository(tmp_path: Path) -> None:
    with pytest.raises(GitError):
        GitRepository(tmp_path)


def test_missing_git_binary_raises_git_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    empty_bin = tmp_path / "bin"
    empty_bin.mkdir()
    monkeypatch.setenv("PATH", str(empty_bin))

    with pytest.raises(GitError) as excinfo:
        apply_patch(PATCH, tmp_path)
    assert "Unable to run git" in str(excinfo.value)
