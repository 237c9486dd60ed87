from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from remedy.config import parse_config
from remedy.errors import RemedyError
from remedy.orchestrator import AuditLoop, Orchestrator, commit_message
from remedy.planning.executor import PlanRunResult
from remedy.planning.schemas import parse_plan
from remedy.signals import ExitSignal
from remedy.structured import QualityGateVerdict
from remedy.tools.vcs import GitRepository, apply_patch

PATCH = """\
--- a/app.py
+++ b/app.py
@@ -1 +1 @@
-VALUE = 1
+VALUE = 2
"""

NOOP_PLAN = {"plan": [], "noop": True, "reason": "Nothing to do."}


class _Script:
    """Plan runner replaying canned outcomes per auditor, then reporting no work."""

    def __init__(self, **outcomes: list) -> None:
        self.outcomes = {name: list(items) for name, items in outcomes.items()}
        self.calls: list[str] = []

    async def __call__(self, auditor: str) -> PlanRunResult:
        self.calls.append(auditor)
        pending = self.outcomes.get(auditor) or []
        if pending:
            entry = pending.pop(0)
            if isinstance(entry, BaseException):
                raise entry
            return entry(auditor) if callable(entry) else entry
        return PlanRunResult(auditor, "no_plan", reason="nothing", no_plan_kind="noop")


def _git_log(repo: Path) -> str:
    return subprocess.run(
        ["git", "log", "--format=%s"], cwd=repo, check=True, capture_output=True, text=True
    ).stdout


@pytest.mark.asyncio
async def test_round_of_no_plans_ends_the_loop() -> None:
    script = _Script()
    result = await AuditLoop(["security", "complexity"], script, exit_signal=ExitSignal()).run()

    assert result.exit_reason == "no_work"
    assert result.turns == 2
    assert script.calls == ["security", "complexity"]


@pytest.mark.asyncio
async def test_failure_resets_the_no_plan_streak() -> None:
    script = _Script(security=[PlanRunResult("security", "failed", reason="step failed")])
    result = await AuditLoop(["security", "complexity"], script, exit_signal=ExitSignal()).run()

    assert result.exit_reason == "no_work"
    assert script.calls == ["security", "complexity", "security"]


@pytest.mark.asyncio
async def test_exit_request_stops_before_the_next_turn() -> None:
    exit_signal = ExitSignal()

    def _request_exit(auditor: str) -> PlanRunResult:
        exit_signal.request("test")
        return PlanRunResult(auditor, "failed", reason="interrupted")

    script = _Script(security=[_request_exit])
    result = await AuditLoop(["security", "complexity"], script, exit_signal=exit_signal).run()

    assert result.exit_reason == "user_exit"
    assert result.turns == 1


@pytest.mark.asyncio
async def test_failing_baseline_skips_auditors() -> None:
    script = _Script()

    async def baseline() -> QualityGateVerdict:
        return QualityGateVerdict(passed=False, additional_context="Quality gate failed at test: boom")

    result = await AuditLoop(["security"], script, exit_signal=ExitSignal(), baseline=baseline).run()

    assert result.exit_reason == "baseline_failed"
    assert result.baseline_failure == "Quality gate failed at test: boom"
    assert script.calls == []


@pytest.mark.asyncio
async def test_auditor_errors_become_failed_outcomes() -> None:
    script = _Script(security=[RemedyError("prompt file missing")])
    result = await AuditLoop(["security"], script, exit_signal=ExitSignal()).run()

    assert result.outcomes[0].status == "failed"
    assert result.outcomes[0].reason == "prompt file missing"
    assert result.exit_reason == "no_work"


@pytest.mark.asyncio
async def test_successful_plan_is_committed(git_repo: Path) -> None:
    plan = parse_plan({"name": "Bump value", "plan": [{"action": "Bump", "why": "stale", "steps": ["edit"]}]})

    def _edit(auditor: str) -> PlanRunResult:
        (git_repo / "app.py").write_text("VALUE = 2\n", encoding="utf-8")
        return PlanRunResult(auditor, "success", plan=plan)

    script = _Script(security=[_edit])
    result = await AuditLoop(
        ["security"], script, exit_signal=ExitSignal(), repository=GitRepository(git_repo)
    ).run()

    assert len(result.committed_plans) == 1
    assert result.committed_plans[0].commit
    assert _git_log(git_repo).splitlines()[0] == commit_message("security", "Bump value")
    assert GitRepository(git_repo).is_clean()


@pytest.mark.asyncio
async def test_failed_plan_is_rolled_back(git_repo: Path) -> None:
    def _break(auditor: str) -> PlanRunResult:
        (git_repo / "app.py").write_text("VALUE = 3\n", encoding="utf-8")
        (git_repo / "scratch.py").write_text("x = 1\n", encoding="utf-8")
        return PlanRunResult(auditor, "failed", reason="regressions exhausted")

    script = _Script(security=[_break])
    result = await AuditLoop(
        ["security"], script, exit_signal=ExitSignal(), repository=GitRepository(git_repo)
    ).run()

    assert result.committed_plans == []
    assert (git_repo / "app.py").read_text(encoding="utf-8") == "VALUE = 1\n"
    assert not (git_repo / "scratch.py").exists()


def _config(root: Path, **overrides):
    data = {"quality_gate": {"test": {"enabled": False}}}
    data.update(overrides)
    return parse_config(data, base_dir=root)


@pytest.mark.asyncio
async def test_orchestrator_stops_when_every_auditor_is_idle(git_repo: Path, executor_factory) -> None:
    executor = executor_factory(plan=[NOOP_PLAN, NOOP_PLAN])
    orchestrator = Orchestrator(
        _config(git_repo), executor, repository=GitRepository(git_repo), exit_signal=ExitSignal()
    )

    result = await orchestrator.run()

    assert result.exit_reason == "no_work"
    assert result.turns == 2
    assert [call.metadata["auditor"] for call in executor.calls] == ["security", "complexity"]
    assert list((git_repo / ".remedy" / "logs" / "phases").glob("phase__plan__*.json"))
    assert GitRepository(git_repo).is_clean()


@pytest.mark.asyncio
async def test_orchestrator_applies_validates_and_commits(git_repo: Path, executor_factory) -> None:
    executor = executor_factory(
        plan=[
            {
                "name": "Bump value",
                "plan": [
                    {
                        "action": "Bump VALUE",
                        "why": "The constant is stale.",
                        "filesInvolved": ["app.py"],
                        "steps": ["Change VALUE to 2."],
                    }
                ],
            },
            NOOP_PLAN,
        ],
        validate_plan=[{"valid": True, "reason": None}],
        execute_step=[
            {
                "success": True,
                "summary": "Bumped VALUE.",
                "filesTouched": ["app.py"],
                "filesWritten": ["app.py"],
                "patch": PATCH,
                "mode": "apply",
            }
        ],
        validate_step=[{"valid": True, "reason": "Matches the step."}],
        pull_request=[{"title": "Refresh stale VALUE constant", "body": "## Changes\n- Bump VALUE"}],
    )
    orchestrator = Orchestrator(
        _config(git_repo), executor, repository=GitRepository(git_repo), exit_signal=ExitSignal()
    )

    result = await orchestrator.run(["security"])

    assert [outcome.status for outcome in result.outcomes] == ["success", "no_plan"]
    assert (git_repo / "app.py").read_text(encoding="utf-8") == "VALUE = 2\n"
    assert _git_log(git_repo).splitlines()[0] == "remedy(security): Bump value"
    committed = result.committed_plans[0]
    assert committed.steps == 1
    assert committed.commit_message == "remedy(security): Bump value"
    assert committed.actions == ("Bump VALUE",)

    summary = await orchestrator.summarize_pull_request(result, branch="remedy/run", base_branch="main")

    assert summary is not None
    assert summary.title == "Refresh stale VALUE constant"
    prompt = executor.prompts("pull_request")[0]
    assert "RUN_SUMMARY_JSON" in prompt
    assert '"commitMessage": "remedy(security): Bump value"' in prompt
    assert '"baseBranch": "main"' in prompt


@pytest.mark.asyncio
async def test_orchestrator_baseline_uses_the_gate(git_repo: Path, executor_factory, stage_runner, command_results) -> None:
    _, failed = command_results
    stage_runner.script("pytest -q", failed("FAIL test_value"))
    config = parse_config({"run_baseline_quality_gate": True}, base_dir=git_repo)
    executor = executor_factory(condense=[{"summary": "test_value expects 1"}])
    orchestrator = Orchestrator(
        config,
        executor,
        repository=GitRepository(git_repo),
        stage_runner=stage_runner,
        exit_signal=ExitSignal(),
    )

    result = await orchestrator.run()

    assert result.exit_reason == "baseline_failed"
    assert "test_value expects 1" in (result.baseline_failure or "")
    assert executor.count("plan") == 0


@pytest.mark.asyncio
async def test_missing_git_binary_fails_the_turn_without_stopping_the_loop(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    (tmp_path / "app.py").write_text("VALUE = 1\n", encoding="utf-8")
    empty_bin = tmp_path / "bin"
    empty_bin.mkdir()
    monkeypatch.setenv("PATH", str(empty_bin))

    def _apply(auditor: str) -> PlanRunResult:
        apply_patch(PATCH, tmp_path)
        return PlanRunResult(auditor, "success")

    script = _Script(security=[_apply])
    result = await AuditLoop(["security"], script, exit_signal=ExitSignal()).run()

    assert result.outcomes[0].status == "failed"
    assert "Unable to run git" in (result.outcomes[0].reason or "")
    assert result.exit_reason == "no_work"
