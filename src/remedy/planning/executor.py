"""Plan Pipeline: generate, validate, decompose, and execute one auditor's plan."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Literal

from ..errors import ExcludedPathViolation, RemedyError
from ..models.llm_client import LLMClientError
from ..phases import plan as plan_phase
from ..phases.base import PhaseContext
from ..phases.plan import PlanRequest, PlanRevision
from ..policy.exclusions import ExclusionPolicy
from ..prompts import render_workspace_listing
from ..session import NO_SESSION, SessionFingerprint, SessionState, release_session
from ..structured import ParsedPlan, PlanItem
from .steps import StepPipeline, StepResult
from .validation import PlanValidationResult, validate_plan_candidate

LOGGER = logging.getLogger(__name__)

PlanStatus = Literal["success", "no_plan", "failed"]
NoPlanKind = Literal["noop", "empty", "error"]


@dataclass(slots=True, frozen=True)
class PlanStep:
    """One decomposed step: instruction text plus the item it came from."""

    index: int
    text: str
    item: PlanItem


@dataclass(slots=True)
class PlanRoles:
    """Prompts and fingerprints used to obtain and judge a plan."""

    directive: str
    formatter: str
    fingerprint: SessionFingerprint
    validator: str | None = None
    validator_fingerprint: SessionFingerprint | None = None


@dataclass(slots=True)
class PlanRunResult:
    """Outcome of one auditor turn as seen by the Audit Loop."""

    auditor: str
    status: PlanStatus
    reason: str | None = None
    plan: ParsedPlan | None = None
    steps: list[StepResult] = field(default_factory=list)
    no_plan_kind: NoPlanKind | None = None
    policy_violation: bool = False
    error: Exception | None = None

    @property
    def title(self) -> str:
        return self.plan.title() if self.plan is not None else "untitled plan"


def render_step_instruction(item: PlanItem, step: str) -> str:
    """Append the parent item's action, rationale, files and evidence to ``step``."""
    lines = [step.strip(), "", "Plan item context:"]
    if item.action:
        lines.append(f"Action: {item.action}")
    if item.why:
        lines.append(f"Why: {item.why}")
    if item.files_involved:
        lines.append(f"Files involved: {', '.join(item.files_involved)}")
    if item.supportive_evidence:
        lines.append("Supportive evidence:")
        lines.extend(f"- {entry}" for entry in item.supportive_evidence)
    return "\n".join(lines)


def decompose(plan: ParsedPlan) -> list[PlanStep]:
    """Flatten every item's steps in order."""
    steps: list[PlanStep] = []
    for item in plan.items:
        for step in item.steps:
            if not step.strip():
                continue
            steps.append(PlanStep(index=len(steps), text=render_step_instruction(item, step), item=item))
    return steps


class PlanPipeline:
    """Obtain a validated plan for one auditor and run its steps in order."""

    def __init__(
        self,
        auditor: str,
        roles: PlanRoles,
        steps: StepPipeline,
        *,
        context: PhaseContext,
        policy: ExclusionPolicy,
        max_plan_revisions: int = 2,
        include_workspace_listing: bool = True,
    ) -> None:
        self._auditor = auditor
        self._roles = roles
        self._steps = steps
        self._context = context
        self._policy = policy
        self._max_revisions = max(0, max_plan_revisions)
        self._include_listing = include_workspace_listing

    async def run(self) -> PlanRunResult:
        try:
            validation = await self.obtain_plan()
        except (LLMClientError, RemedyError) as error:
            LOGGER.error("[%s] plan generation failed: %s", self._auditor, error)
            return PlanRunResult(self._auditor, "no_plan", reason=str(error), no_plan_kind="error", error=error)

        if not validation.valid or validation.plan is None:
            return PlanRunResult(
                self._auditor,
                "failed",
                reason=validation.reason or "Plan failed validation",
                plan=validation.plan,
                policy_violation=isinstance(validation.error, ExcludedPathViolation),
                error=validation.error,
            )

        plan = validation.plan
        if plan.noop:
            reason = plan.reason or "No changes required"
            LOGGER.warning("[%s] no work: %s", self._auditor, reason)
            return PlanRunResult(self._auditor, "no_plan", reason=reason, plan=plan, no_plan_kind="noop")

        steps = decompose(plan)
        if not steps:
            LOGGER.warning("[%s] plan has no executable steps; treating as no-op", self._auditor)
            return PlanRunResult(
                self._auditor, "no_plan", reason="Plan contained no steps", plan=plan, no_plan_kind="empty"
            )

        LOGGER.info("[%s] plan accepted: %s (%d step(s))", self._auditor, plan.title(), len(steps))
        results: list[StepResult] = []
        for step in steps:
            LOGGER.info("[%s] step %d/%d: %s", self._auditor, step.index + 1, len(steps), step.text.splitlines()[0])
            outcome = await self._steps.run(step.text, step.item.files_involved)
            results.append(outcome)
            if not outcome.success:
                LOGGER.error(
                    "[%s] step %d failed: %s",
                    self._auditor,
                    step.index + 1,
                    outcome.reason or "unknown",
                )
                return PlanRunResult(
                    self._auditor,
                    "failed",
                    reason=outcome.reason,
                    plan=plan,
                    steps=results,
                    policy_violation=outcome.policy_violation,
                    error=outcome.error,
                )
        return PlanRunResult(self._auditor, "success", plan=plan, steps=results)

    async def obtain_plan(self) -> PlanValidationResult:
        """Ask for a plan, feeding rejections back up to ``max_plan_revisions`` times.

        Generation errors propagate; the plan session is released before returning.
        """
        listing = None
        if self._include_listing:
            listing = await asyncio.to_thread(render_workspace_listing, self._context.cwd)
        session: SessionState = NO_SESSION
        revision: PlanRevision | None = None
        try:
            for revision_index in range(self._max_revisions + 1):
                turn = await plan_phase.run(
                    PlanRequest(
                        auditor=self._auditor,
                        directive=self._roles.directive,
                        formatter=self._roles.formatter,
                        excluded=self._policy.describe(),
                        workspace_listing=listing,
                        revision=revision,
                    ),
                    context=self._context,
                    fingerprint=self._roles.fingerprint,
                    session=session,
                )
                session = turn.session
                validation = await validate_plan_candidate(
                    turn.structured,
                    auditor=self._auditor,
                    policy=self._policy,
                    validator=self._roles.validator,
                    context=self._context,
                    fingerprint=self._roles.validator_fingerprint,
                )
                if validation.valid or revision_index >= self._max_revisions:
                    return validation
                LOGGER.info(
                    "[%s] requesting plan revision %d/%d",
                    self._auditor,
                    revision_index + 1,
                    self._max_revisions,
                )
                revision = PlanRevision(
                    previous_plan=turn.structured,
                    rejection_reason=validation.reason or "Plan failed validation",
                )
        finally:
            release_session(session)
        raise RemedyError("plan revision loop exited without a verdict")


__all__ = [
    "PlanPipeline",
    "PlanRoles",
    "PlanRunResult",
    "PlanStep",
    "decompose",
    "render_step_instruction",
]
