"""Audit Loop and the wiring that builds pipelines from configuration."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Literal, Sequence

from .config import RemedyConfig
from .errors import ConfigError, RemedyError
from .models.executor import AgentExecutor, LLMAgentExecutor
from .models.llm_client import LLMClient
from .phases import pull_request
from .phases.base import PhaseContext
from .phases.condense import agent_summarizer
from .phases.pull_request import PlanSummary, PullRequestRequest, PullRequestSummary
from .planning.executor import PlanPipeline, PlanRoles, PlanRunResult
from .planning.steps import StepEnvironment, StepLimits, StepPipeline, StepRoles
from .policy.exclusions import ExclusionPolicy
from .signals import EXIT_SIGNAL, ExitSignal
from .structured import QualityGateVerdict
from .tools.gates import (
    DISABLED_SUMMARY,
    QualityGateRunner,
    StageCommandRunner,
    TestFailureCondenser,
    stages_from_config,
)
from .tools.snapshots import FileSnapshotProvider, GitWorktreeProbe, NullWorktreeProbe, SnapshotProvider
from .tools.vcs import GitCheckpoint, GitError, GitRepository

LOGGER = logging.getLogger(__name__)

ExitReason = Literal["no_work", "user_exit", "baseline_failed"]
PlanRunner = Callable[[str], Awaitable[PlanRunResult]]
BaselineGate = Callable[[], Awaitable[QualityGateVerdict]]


@dataclass(slots=True, frozen=True)
class CommittedPlan:
    """Summary of a plan whose steps all succeeded."""

    auditor: str
    title: str
    commit: str | None = None
    steps: int = 0
    commit_message: str = ""
    plan_name: str | None = None
    actions: tuple[str, ...] = ()

    def describe(self) -> str:
        sha = self.commit[:10] if self.commit else "uncommitted"
        return f"[{self.auditor}] {self.title} ({sha}, {self.steps} step(s))"

    def pull_request_entry(self) -> PlanSummary:
        return PlanSummary(
            auditor=self.auditor,
            plan_name=self.plan_name,
            commit_message=self.commit_message or commit_message(self.auditor, self.title),
            actions=self.actions,
        )


@dataclass(slots=True)
class AuditRunResult:
    """Everything the Audit Loop accumulated before it stopped."""

    exit_reason: ExitReason = "no_work"
    committed_plans: list[CommittedPlan] = field(default_factory=list)
    outcomes: list[PlanRunResult] = field(default_factory=list)
    baseline_failure: str | None = None

    @property
    def turns(self) -> int:
        return len(self.outcomes)


def commit_message(auditor: str, title: str) -> str:
    return f"remedy({auditor}): {title}"


class AuditLoop:
    """Round-robin over auditors until a full round yields no work or exit is requested."""

    def __init__(
        self,
        auditors: Sequence[str],
        run_plan: PlanRunner,
        *,
        exit_signal: ExitSignal | None = None,
        repository: GitRepository | None = None,
        commit: bool = True,
        baseline: BaselineGate | None = None,
    ) -> None:
        self._auditors = list(auditors)
        self._run_plan = run_plan
        self._exit = exit_signal or EXIT_SIGNAL
        self._repository = repository
        self._commit = commit
        self._baseline = baseline

    async def run(self) -> AuditRunResult:
        result = AuditRunResult()
        if not self._auditors:
            LOGGER.warning("No auditors selected or enabled to run.")
            return result

        if self._baseline is not None:
            verdict = await self._baseline()
            if not verdict.passed:
                LOGGER.error("Baseline quality gate failed; fix the workspace before running auditors.")
                result.exit_reason = "baseline_failed"
                result.baseline_failure = verdict.additional_context
                return result

        index = 0
        no_plan_streak = 0
        while True:
            if self._exit.is_requested():
                LOGGER.info("Exit requested; stopping after %d auditor turn(s).", result.turns)
                result.exit_reason = "user_exit"
                return result

            auditor = self._auditors[index]
            outcome = await self._run_auditor(auditor, result)
            result.outcomes.append(outcome)

            if outcome.status == "no_plan":
                no_plan_streak += 1
                if no_plan_streak >= len(self._auditors):
                    LOGGER.info("All auditors returned no plan consecutively; exiting.")
                    result.exit_reason = "no_work"
                    return result
            else:
                no_plan_streak = 0

            index = (index + 1) % len(self._auditors)

    async def _run_auditor(self, auditor: str, result: AuditRunResult) -> PlanRunResult:
        checkpoint = await self._checkpoint(auditor)
        try:
            outcome = await self._run_plan(auditor)
        except (RemedyError, GitError) as error:
            LOGGER.error("[%s] auditor turn failed: %s", auditor, error)
            outcome = PlanRunResult(auditor, "failed", reason=str(error), error=error)

        if outcome.status == "success":
            committed = await self._record_success(outcome)
            if committed is not None:
                result.committed_plans.append(committed)
            else:
                outcome.status = "failed"
        if outcome.status == "failed":
            await self._rollback(auditor, checkpoint)
        return outcome

    async def _checkpoint(self, auditor: str) -> GitCheckpoint | None:
        if self._repository is None:
            return None
        try:
            return await asyncio.to_thread(self._repository.create_checkpoint, auditor)
        except GitError as error:
            LOGGER.warning("[%s] unable to create git checkpoint: %s", auditor, error)
            return None

    async def _rollback(self, auditor: str, checkpoint: GitCheckpoint | None) -> None:
        if checkpoint is None:
            return
        try:
            await asyncio.to_thread(checkpoint.rollback)
        except GitError as error:
            LOGGER.error("[%s] rollback failed: %s", auditor, error)
            return
        LOGGER.info("[%s] rolled back working tree to %s", auditor, (checkpoint.head or "initial state")[:10])

    async def _record_success(self, outcome: PlanRunResult) -> CommittedPlan | None:
        sha: str | None = None
        message = commit_message(outcome.auditor, outcome.title)
        if self._repository is not None and self._commit:
            try:
                sha = await asyncio.to_thread(self._repository.commit_all, message)
            except GitError as error:
                LOGGER.error("[%s] commit failed: %s", outcome.auditor, error)
                outcome.reason = f"Commit failed: {error}"
                return None
            LOGGER.info("[%s] committed %s", outcome.auditor, (sha or "nothing")[:10])
        return CommittedPlan(
            auditor=outcome.auditor,
            title=outcome.title,
            commit=sha,
            steps=len(outcome.steps),
            commit_message=message,
            plan_name=outcome.plan.name if outcome.plan is not None else None,
            actions=tuple(item.action for item in outcome.plan.items) if outcome.plan is not None else (),
        )


class Orchestrator:
    """Build plan pipelines per auditor from a :class:`RemedyConfig`."""

    def __init__(
        self,
        config: RemedyConfig,
        executor: AgentExecutor,
        *,
        cwd: Path | str | None = None,
        repository: GitRepository | None = None,
        exit_signal: ExitSignal | None = None,
        stage_runner: StageCommandRunner | None = None,
        snapshots: SnapshotProvider | None = None,
    ) -> None:
        self.config = config
        self.executor = executor
        self.cwd = Path(cwd or config.root).resolve()
        self.repository = repository
        self.exit_signal = exit_signal or EXIT_SIGNAL
        self._stage_runner = stage_runner
        self._snapshots = snapshots or FileSnapshotProvider()
        self._policy = ExclusionPolicy(config.exclude, self.cwd)
        self._formatter_cache: dict[str, str] = {}
        self._ignore_logs()

    @classmethod
    def from_client(cls, config: RemedyConfig, client: LLMClient, **kwargs) -> "Orchestrator":
        return cls(config, LLMAgentExecutor(client), **kwargs)

    def _ignore_logs(self) -> None:
        """Keep phase logs and test artifacts out of status, commits, and rollback."""
        logs_dir = self.config.logs_dir
        if logs_dir is None:
            return
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            marker = logs_dir / ".gitignore"
            if not marker.exists():
                marker.write_text("*\n", encoding="utf-8")
        except OSError as error:
            LOGGER.debug("Unable to prepare logs directory %s: %s", logs_dir, error)

    @property
    def policy(self) -> ExclusionPolicy:
        return self._policy

    def phase_context(self) -> PhaseContext:
        return PhaseContext(
            executor=self.executor,
            cwd=self.cwd,
            logs_dir=self.config.logs_dir,
            timeout=self.config.turn_timeout,
        )

    def _role_text(self, group: str, name: str) -> str:
        key = f"{group}.{name}"
        if key not in self._formatter_cache:
            roles = self.config.formatters if group == "formatters" else self.config.validators
            if name not in roles:
                raise ConfigError(f"Missing {group} entry {name!r}")
            self._formatter_cache[key] = roles[name].read()
        return self._formatter_cache[key]

    def build_gate(self, auditor: str | None = None) -> QualityGateRunner:
        condenser = None
        if self.config.logs_dir is not None:
            summarizer = agent_summarizer(
                self.phase_context(),
                self.config.condenser_fingerprint(auditor),
                self._role_text("formatters", "test_failure_summary"),
            )
            condenser = TestFailureCondenser(self.config.logs_dir / "artifacts", summarizer=summarizer)
        return QualityGateRunner(
            stages_from_config(self.config.quality_gate),
            self.cwd,
            runner=self._stage_runner,
            condenser=condenser,
        )

    def build_plan_pipeline(self, auditor: str) -> PlanPipeline:
        entry = self.config.auditor(auditor)
        context = self.phase_context()
        environment = StepEnvironment(
            context=context,
            policy=self._policy,
            gate=self.build_gate(auditor),
            snapshots=self._snapshots,
            worktree=GitWorktreeProbe() if self.repository is not None else NullWorktreeProbe(),
        )
        steps = StepPipeline(
            environment,
            StepRoles(
                formatter=self._role_text("formatters", "execute_step"),
                executor=self.config.executor_fingerprint(auditor),
                validator=self._role_text("validators", "step"),
                validator_fingerprint=self.config.validator_fingerprint(auditor, "step"),
            ),
            StepLimits(
                max_validation_retries=self.config.max_validation_retries,
                max_regression_attempts=self.config.max_regression_attempts,
                max_thread_lifetime_attempts=self.config.max_thread_lifetime_attempts,
            ),
            auditor=auditor,
        )
        return PlanPipeline(
            auditor,
            PlanRoles(
                directive=entry.read(),
                formatter=self._role_text("formatters", "plan"),
                fingerprint=self.config.plan_fingerprint(auditor),
                validator=self._role_text("validators", "plan"),
                validator_fingerprint=self.config.validator_fingerprint(auditor, "plan"),
            ),
            steps,
            context=context,
            policy=self._policy,
            max_plan_revisions=self.config.max_plan_revisions,
        )

    async def run_plan(self, auditor: str) -> PlanRunResult:
        entry = self.config.auditor(auditor)
        if not entry.enabled:
            LOGGER.info("[%s] auditor disabled; skipping", auditor)
            return PlanRunResult(auditor, "no_plan", reason="auditor disabled", no_plan_kind="noop")
        return await self.build_plan_pipeline(auditor).run()

    async def run_baseline(self) -> QualityGateVerdict:
        gate = self.build_gate()
        if gate.disabled:
            LOGGER.info("Baseline: %s", DISABLED_SUMMARY)
            return QualityGateVerdict(passed=True)
        LOGGER.info("Running baseline quality gate")
        return await gate.run(label="baseline")

    def audit_loop(self, auditors: Sequence[str] | None = None) -> AuditLoop:
        selected = list(auditors) if auditors else self.config.enabled_auditors()
        for name in selected:
            self.config.auditor(name)
        return AuditLoop(
            selected,
            self.run_plan,
            exit_signal=self.exit_signal,
            repository=self.repository,
            commit=self.config.commit,
            baseline=self.run_baseline if self.config.run_baseline_quality_gate else None,
        )

    async def run(self, auditors: Sequence[str] | None = None) -> AuditRunResult:
        return await self.audit_loop(auditors).run()

    async def summarize_pull_request(
        self,
        result: AuditRunResult,
        *,
        branch: str | None = None,
        base_branch: str | None = None,
    ) -> PullRequestSummary | None:
        """Best-effort pull request title and body for the committed plans."""
        if not result.committed_plans or not self.config.pull_request_summary:
            return None
        try:
            formatter = self._role_text("formatters", "pull_request")
            fingerprint = self.config.pull_request_fingerprint()
        except ConfigError as error:
            LOGGER.warning("Pull request summary skipped: %s", error)
            return None
        return await pull_request.run(
            PullRequestRequest(
                formatter=formatter,
                plans=[plan.pull_request_entry() for plan in result.committed_plans],
                branch=branch,
                base_branch=base_branch,
            ),
            context=self.phase_context(),
            fingerprint=fingerprint,
        )


__all__ = [
    "AuditLoop",
    "AuditRunResult",
    "CommittedPlan",
    "ExitReason",
    "Orchestrator",
    "PullRequestSummary",
    "commit_message",
]
