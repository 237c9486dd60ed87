from __future__ import annotations

import subprocess
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from remedy.cli import app


def _branch(repo: Path) -> str:
    return subprocess.run(
        ["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=repo, check=True, capture_output=True, text=True
    ).stdout.strip()


def test_init_writes_default_config(tmp_path: Path) -> None:
    config_path = tmp_path / "remedy.yaml"
    runner = CliRunner()

    result = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert data["auditors"]["security"]["enabled"] is True

    again = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)
    assert again.exit_code == 1
    assert "already exists" in again.output

    forced = runner.invoke(app, ["init", "--config", str(config_path), "--force"], catch_exceptions=False)
    assert forced.exit_code == 0, forced.output


def test_offline_audit_reports_no_work(git_repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(git_repo)
    original = _branch(git_repo)

    result = CliRunner().invoke(app, ["audit", "--offline"], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "Using offline stub client." in result.output
    assert "- Exit reason: no_work" in result.output
    assert "- Auditor turns: 2" in result.output
    assert "No plans committed." in result.output
    assert f"Restored branch {original}." in result.output
    assert _branch(git_repo) == original


def test_audit_outside_git_skips_branching(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(app, ["audit", "security", "--offline", "--no-branch"], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "Git not available" in result.output
    assert "- Auditor turns: 1" in result.output


def test_unknown_auditor_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(app, ["audit", "nonexistent", "--offline"], catch_exceptions=False)

    assert result.exit_code == 1
    assert "Unknown auditor: nonexistent" in result.output


def test_invalid_config_exits_with_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "remedy.yaml").write_text("unknown_key: 1\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["audit", "--offline"], catch_exceptions=False)

    assert result.exit_code == 1
    assert "Failed to load config" in result.output
