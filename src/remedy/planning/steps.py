"""Step Pipeline: apply one plan step, validate it, and gate it.

Each step runs ``apply`` until an attempt proceeds or aborts, then the
quality gate.  A failing gate enters the regression loop, which re-invokes
the executor in ``fix_regression`` mode with the latest failure text until
the gate passes or a budget runs out.  Every phase returns an
:data:`~remedy.structured.StepPhaseOutcome` instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import (
    ExcludedPathViolation,
    ExecutorFailure,
    QualityGateFailure,
    RegressionCapExceeded,
    RemedyError,
    ThreadLifetimeExhausted,
)
from ..phases import execute_step, validate_step
from ..phases.base import PhaseContext
from ..phases.execute_step import ExecuteStepRequest
from ..phases.validate_step import StepValidationRequest
from ..policy.exclusions import ExclusionPolicy, patch_header_paths
from ..prompts import render_file_contents, render_step_text
from ..session import NO_SESSION, SessionFingerprint, SessionState, release_session
from ..structured import (
    Abort,
    ExecutionResult,
    Proceed,
    QualityGateVerdict,
    Retry,
    StepMode,
    StepPhaseOutcome,
)
from ..tools.gates import DISABLED_SUMMARY, QualityGateRunner
from ..tools.snapshots import (
    FileSnapshotProvider,
    NullWorktreeProbe,
    Snapshot,
    SnapshotProvider,
    WorktreeProbe,
    diff_worktree_snapshots,
    files_changed,
)
from ..tools.vcs import GitError, apply_patch
from ..tracker import AttemptTracker

LOGGER = logging.getLogger(__name__)

NOTHING_TO_CHANGE_PHRASES: tuple[str, ...] = (
    "nothing to change",
    "nothing can be removed",
    "no changes made",
    "no change to apply",
    "no changes to apply",
    "no patch to apply",
    "no changes needed",
    "no change needed",
    "already lacks",
    "already removed",
    "already doesn't have",
    "already does not have",
    "already re-exported",
    "already exported",
    "already present",
    "already exists",
    "already done",
    "already satisfied",
    "no regression to fix",
    "no regression fix is necessary",
    "no regression fix necessary",
    "no regression fix is needed",
    "no regression fix needed",
    "no regression fix required",
    "no fix is necessary",
    "no fix necessary",
    "no fix required",
    "nothing to delete",
    "nothing to remove",
    "no-op",
    "noop",
)

TEST_RUNNER_STARTUP_PHRASES: tuple[str, ...] = (
    "test runner failed to start",
    "failed to start plugin worker",
    "nx failed to start plugin worker",
    "failed to start worker process",
    "worker process failed to start",
    "could not start plugin worker",
)

NON_RETRYABLE_REGRESSION_PHRASES: tuple[str, ...] = (
    "out of scope",
    "outside scope",
    "outside the scope",
    "scope limit",
    "unrelated",
    "not enough context",
    "insufficient context",
    "without broader context",
    "needs broader context",
    "no safe",
    "no minimal fix",
    "cannot be fixed safely",
    "can't be fixed safely",
    "not allowed",
    "cannot resolve",
    "cannot modify",
    "cannot touch",
    "cannot edit",
    "unable to resolve",
    "requires changes in",
    "requires changes to",
)

PatchApplier = Callable[[str, Path], Awaitable[None]]


def summary_matches(summary: str | None, phrases: Sequence[str]) -> bool:
    """Case-insensitive substring match of ``summary`` against ``phrases``."""
    if not summary:
        return False
    lowered = summary.lower()
    return any(phrase in lowered for phrase in phrases)


def is_nothing_to_change(result: ExecutionResult) -> bool:
    return result.noop or summary_matches(result.summary, NOTHING_TO_CHANGE_PHRASES)


async def git_apply(patch: str, cwd: Path) -> None:
    await asyncio.to_thread(apply_patch, patch, cwd)


@dataclass(slots=True)
class StepRoles:
    """Prompts and fingerprints for the agent roles a step uses."""

    formatter: str
    executor: SessionFingerprint
    validator: str | None = None
    validator_fingerprint: SessionFingerprint | None = None


@dataclass(slots=True)
class StepLimits:
    max_validation_retries: int = 1
    max_regression_attempts: int = 3
    max_thread_lifetime_attempts: int = 10


@dataclass(slots=True)
class StepEnvironment:
    """External collaborators the pipeline reads from and writes through."""

    context: PhaseContext
    policy: ExclusionPolicy
    gate: QualityGateRunner
    snapshots: SnapshotProvider = field(default_factory=FileSnapshotProvider)
    worktree: WorktreeProbe = field(default_factory=NullWorktreeProbe)
    apply_patch: PatchApplier = git_apply

    @property
    def cwd(self) -> Path:
        return self.context.cwd


@dataclass(slots=True)
class StepExecutionState:
    """Mutable bookkeeping owned by one step for its whole lifetime."""

    tracker: AttemptTracker
    regression_attempts: int = 0
    additional_context: str = ""
    snapshot: Snapshot = field(default_factory=dict)
    session: SessionState = NO_SESSION


@dataclass(slots=True, frozen=True)
class StepResult:
    """Final outcome of one step."""

    success: bool
    regression_attempts: int = 0
    turns: int = 0
    reason: str | None = None
    noop: bool = False
    policy_violation: bool = False
    error: Exception | None = None
    execution: ExecutionResult | None = None


class StepPipeline:
    """Drive single plan steps through apply, validation, and the quality gate."""

    def __init__(
        self,
        environment: StepEnvironment,
        roles: StepRoles,
        limits: StepLimits | None = None,
        *,
        auditor: str = "auditor",
    ) -> None:
        self._env = environment
        self._roles = roles
        self._limits = limits or StepLimits()
        self._auditor = auditor

    async def run(self, step_text: str, files_involved: Sequence[str] = ()) -> StepResult:
        """Run ``step_text`` to completion; the session is released on every exit."""
        state = StepExecutionState(tracker=AttemptTracker(self._limits.max_thread_lifetime_attempts))
        try:
            return await self._run(step_text, list(files_involved), state)
        finally:
            state.session = release_session(state.session)

    async def _run(self, step_text: str, files_involved: list[str], state: StepExecutionState) -> StepResult:
        mode: StepMode = "apply"
        while True:
            outcome = await self.execute_phase(step_text, mode, state, files_involved)
            state.session = outcome.session
            if isinstance(outcome, Abort):
                return self._aborted(state, outcome)
            if isinstance(outcome, Retry):
                LOGGER.info("[%s] retrying step (%s): %s", self._auditor, mode, _first_line(outcome.reason))
                state.additional_context = outcome.reason
                continue

            verdict = await self.evaluate_gate()
            if verdict.passed:
                LOGGER.info(
                    "[%s] step completed after %d regression attempt(s)",
                    self._auditor,
                    state.regression_attempts,
                )
                return StepResult(
                    success=True,
                    regression_attempts=state.regression_attempts,
                    turns=state.tracker.attempts,
                    execution=outcome.execution,
                )

            if state.regression_attempts >= self._limits.max_regression_attempts:
                error = RegressionCapExceeded(
                    f"Regression attempts exhausted ({self._limits.max_regression_attempts}); "
                    f"last failure: {_first_line(verdict.additional_context or 'quality gate failed')}"
                )
                LOGGER.error("[%s] %s", self._auditor, error)
                return self._failed(state, error)
            state.regression_attempts += 1
            LOGGER.warning(
                "[%s] quality gate failed; regression attempt %d/%d",
                self._auditor,
                state.regression_attempts,
                self._limits.max_regression_attempts,
            )
            state.additional_context = verdict.additional_context or "Quality gate failed."
            mode = "fix_regression"

    async def execute_phase(
        self,
        step_text: str,
        mode: StepMode,
        state: StepExecutionState,
        files_involved: Sequence[str] = (),
    ) -> StepPhaseOutcome:
        """Run one executor turn and check what it changed."""
        if not state.tracker.record_attempt():
            error = ThreadLifetimeExhausted(f"Thread attempts exhausted for step: {_first_line(step_text)}")
            LOGGER.error("[%s] %s", self._auditor, error)
            return Abort(reason=str(error), session=state.session, error=error)

        cwd = self._env.cwd
        state.snapshot = dict(await self._env.snapshots.read(list(files_involved), cwd))
        workspace_before = await self._env.worktree.capture(cwd)
        file_contents = None
        if files_involved:
            file_contents = await asyncio.to_thread(render_file_contents, cwd, list(files_involved))

        request = ExecuteStepRequest(
            auditor=self._auditor,
            step_text=render_step_text(step_text, state.additional_context, mode),
            mode=mode,
            formatter=self._roles.formatter,
            file_contents=file_contents,
        )
        response = await execute_step.run(
            request,
            context=self._env.context,
            fingerprint=self._roles.executor,
            policy=self._env.policy,
            session=state.session,
        )
        session = response.session
        if response.violation is not None:
            LOGGER.error("[%s] %s", self._auditor, response.violation)
            return Abort(
                reason=str(response.violation),
                session=session,
                policy_violation=True,
                error=response.violation,
            )

        result = response.result
        if result is None:
            error = ExecutorFailure(
                f"Executor returned no result for step: {_first_line(step_text)}"
                + (f" ({response.error})" if response.error else "")
            )
            LOGGER.error("[%s] %s", self._auditor, error)
            return Abort(reason=str(error), session=session, error=error)

        if not result.success or not result.has_patch:
            return self._classify_failure(result, mode, session)

        claimed = list(dict.fromkeys([*result.claimed_files(), *patch_header_paths(result.patch)]))
        missing = [path for path in claimed if path not in state.snapshot]
        if missing:
            state.snapshot.update(await self._env.snapshots.read(missing, cwd))

        try:
            await self._env.apply_patch(result.patch or "", cwd)
        except GitError as error:
            LOGGER.warning("[%s] patch failed to apply: %s", self._auditor, error)
            return Retry(reason=f"Patch failed to apply: {error}", session=session)

        workspace_after = await self._env.worktree.capture(cwd)
        if workspace_before is not None and workspace_after is not None:
            changed = diff_worktree_snapshots(workspace_before, workspace_after)
            included, excluded = self._env.policy.partition(changed)
            if excluded:
                error = ExcludedPathViolation(excluded, source="workspace changes")
                LOGGER.error("[%s] %s", self._auditor, error)
                return Abort(reason=str(error), session=session, policy_violation=True, error=error)
            if not included:
                LOGGER.warning(
                    "[%s] executor reported success but git detected no file changes for step: %s",
                    self._auditor,
                    _first_line(step_text),
                )
                return Abort(reason="Executor reported success but no files changed.", session=session)
            result.files_touched = list(included)
            result.files_written = list(included)
            after = dict(await self._env.snapshots.read(included, cwd))
        else:
            after = dict(await self._env.snapshots.read(claimed, cwd))
            if not files_changed(state.snapshot, after, claimed):
                LOGGER.warning(
                    "[%s] executor claimed changes but snapshots are identical for: %s",
                    self._auditor,
                    ", ".join(claimed) or "(no files)",
                )
                return Abort(reason="Executor reported success but claimed files are unchanged.", session=session)

        if mode == "apply":
            verdict = await self._validate_step(step_text, result, after)
            if verdict is not None and not verdict.valid:
                reason = verdict.reason or "unknown"
                LOGGER.warning("[%s] execute-step validation failed (%s): %s", self._auditor, mode, reason)
                return Retry(reason=f"Execute-step validation failed: {reason}", session=session)

        return Proceed(execution=result, snapshot=after, session=session)

    async def evaluate_gate(self) -> QualityGateVerdict:
        """Run the whole gate up to ``max_validation_retries`` times; any pass wins."""
        gate = self._env.gate
        if gate.disabled:
            LOGGER.info("[%s] %s", self._auditor, DISABLED_SUMMARY)
            return QualityGateVerdict(passed=True)
        attempts = max(1, self._limits.max_validation_retries)
        verdict = QualityGateVerdict(passed=False)
        for attempt in range(1, attempts + 1):
            verdict = await gate.run(label=self._auditor)
            if verdict.passed:
                return verdict
            if attempt < attempts:
                LOGGER.info("[%s] re-running quality gate (%d/%d)", self._auditor, attempt + 1, attempts)
        return verdict

    async def _validate_step(self, step_text: str, result: ExecutionResult, snapshots: Snapshot):
        if not self._roles.validator or self._roles.validator_fingerprint is None:
            return None
        return await validate_step.run(
            StepValidationRequest(
                auditor=self._auditor,
                validator=self._roles.validator,
                step_text=step_text,
                execution=result,
                snapshots=snapshots,
            ),
            context=self._env.context,
            fingerprint=self._roles.validator_fingerprint,
        )

    def _classify_failure(self, result: ExecutionResult, mode: StepMode, session: SessionState) -> StepPhaseOutcome:
        summary = result.summary or ""
        if summary_matches(summary, TEST_RUNNER_STARTUP_PHRASES):
            LOGGER.warning("[%s] test runner failed to start; skipping step: %s", self._auditor, summary)
            return Abort(reason=summary, session=session, noop=True)

        if is_nothing_to_change(result):
            if mode == "apply":
                LOGGER.info("[%s] no changes needed; skipping step: %s", self._auditor, summary or "no summary")
                return Abort(reason=summary or "no changes needed", session=session, noop=True)
            LOGGER.error("[%s] executor found nothing to fix in regression mode: %s", self._auditor, summary)
            return Abort(reason=summary or "no regression fix produced", session=session)

        if result.success:
            LOGGER.warning("[%s] executor reported success without a patch: %s", self._auditor, summary)
            return Retry(reason=f"Executor reported success but returned no patch. {summary}".strip(), session=session)

        LOGGER.error("[%s] executor failed step (%s): %s", self._auditor, mode, summary or "no summary")
        if mode == "fix_regression" and summary_matches(summary, NON_RETRYABLE_REGRESSION_PHRASES):
            return Abort(reason=summary, session=session, error=QualityGateFailure(summary))
        return Retry(reason=summary or "executor failed", session=session)

    def _aborted(self, state: StepExecutionState, outcome: Abort) -> StepResult:
        return StepResult(
            success=False,
            regression_attempts=state.regression_attempts,
            turns=state.tracker.attempts,
            reason=outcome.reason or "step aborted",
            noop=outcome.noop,
            policy_violation=outcome.policy_violation,
            error=outcome.error,
        )

    def _failed(self, state: StepExecutionState, error: RemedyError) -> StepResult:
        return StepResult(
            success=False,
            regression_attempts=state.regression_attempts,
            turns=state.tracker.attempts,
            reason=str(error),
            error=error,
        )


def _first_line(text: str) -> str:
    for line in (text or "").splitlines():
        if line.strip():
            return line.strip()
    return ""


__all__ = [
    "NON_RETRYABLE_REGRESSION_PHRASES",
    "NOTHING_TO_CHANGE_PHRASES",
    "PatchApplier",
    "StepEnvironment",
    "StepExecutionState",
    "StepLimits",
    "StepPipeline",
    "StepResult",
    "StepRoles",
    "git_apply",
    "is_nothing_to_change",
    "summary_matches",
]
