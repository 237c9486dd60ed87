from __future__ import annotations

from pathlib import Path

import pytest

from remedy.errors import ExcludedPathViolation
from remedy.policy.exclusions import ExclusionPolicy, patch_header_paths
from remedy.structured import ExecutionResult


def test_relative_paths_resolve_against_working_directory(tmp_path: Path) -> None:
    policy = ExclusionPolicy([tmp_path / "vendor"], tmp_path)

    assert policy.is_excluded("vendor")
    assert policy.is_excluded("vendor/lib/module.py")
    assert policy.is_excluded("./src/../vendor/x.py")
    assert not policy.is_excluded("vendored/x.py")
    assert not policy.is_excluded("src/app.py")


def test_partition_preserves_order(tmp_path: Path) -> None:
    policy = ExclusionPolicy(["secrets"], tmp_path)
    included, excluded = policy.partition(["a.py", "secrets/key.pem", "b.py"])
    assert included == ["a.py", "b.py"]
    assert excluded == ["secrets/key.pem"]


def test_empty_policy_excludes_nothing(tmp_path: Path) -> None:
    policy = ExclusionPolicy([], tmp_path)
    assert not policy
    assert policy.find_excluded(["anything.py"]) == []


def test_enforce_checks_patch_headers(tmp_path: Path) -> None:
    policy = ExclusionPolicy([tmp_path / "vendor"], tmp_path)
    result = ExecutionResult(
        success=True,
        summary="edited",
        files_touched=["src/app.py"],
        patch="--- a/vendor/lib.py\n+++ b/vendor/lib.py\n@@ -1 +1 @@\n-a\n+b\n",
    )

    with pytest.raises(ExcludedPathViolation) as excinfo:
        policy.enforce(result)
    assert "excluded path(s)" in str(excinfo.value)
    assert excinfo.value.paths == ("vendor/lib.py",)


def test_enforce_accepts_clean_results(tmp_path: Path) -> None:
    policy = ExclusionPolicy([tmp_path / "vendor"], tmp_path)
    policy.enforce(ExecutionResult(success=True, summary="ok", files_written=["src/app.py"]))


def test_patch_header_paths_skip_dev_null() -> None:
    patch = "--- /dev/null\n+++ b/new.py\n@@ -0,0 +1 @@\n+x\n--- a/old.py\n+++ /dev/null\n"
    assert patch_header_paths(patch) == ["new.py", "old.py"]
    assert patch_header_paths(None) == []


def test_describe_renders_relative_prefixes(tmp_path: Path) -> None:
    outside = tmp_path.parent / "elsewhere"
    policy = ExclusionPolicy([tmp_path / "vendor", outside], tmp_path)
    rendered = policy.describe()
    assert rendered[0] == "vendor"
    assert rendered[1].endswith("/elsewhere")
