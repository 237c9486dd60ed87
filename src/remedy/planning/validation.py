"""Plan validation in three ordered checks: schema, excluded paths, semantics.

The cheap structural checks run first so a malformed plan or one that
targets excluded paths never reaches the (costlier) semantic validator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from ..errors import ExcludedPathViolation, RemedyError, SchemaViolation, ValidationFailure
from ..phases import validate_plan
from ..phases.base import PhaseContext
from ..phases.validate_plan import PlanValidationRequest
from ..policy.exclusions import ExclusionPolicy
from ..session import SessionFingerprint
from ..structured import ParsedPlan
from .schemas import parse_plan, plan_to_payload

LOGGER = logging.getLogger(__name__)

RejectionStage = Literal["schema", "excluded", "semantic"]


@dataclass(slots=True, frozen=True)
class PlanValidationResult:
    """Accepted plan, or the stage and reason it was rejected at."""

    valid: bool
    plan: ParsedPlan | None = None
    reason: str | None = None
    stage: RejectionStage | None = None
    error: RemedyError | None = None


def plan_excluded_paths(plan: ParsedPlan, policy: ExclusionPolicy) -> list[str]:
    """Return every ``filesInvolved`` entry that resolves under an excluded prefix."""
    involved = [path for item in plan.items for path in item.files_involved]
    return policy.find_excluded(involved)


async def validate_plan_candidate(
    raw: Any,
    *,
    auditor: str,
    policy: ExclusionPolicy,
    validator: str | None,
    context: PhaseContext,
    fingerprint: SessionFingerprint | None,
) -> PlanValidationResult:
    try:
        plan = parse_plan(raw)
    except SchemaViolation as error:
        LOGGER.warning("[%s] plan rejected: %s", auditor, error)
        return PlanValidationResult(valid=False, reason=str(error), stage="schema", error=error)

    if plan.noop or plan.step_count == 0:
        return PlanValidationResult(valid=True, plan=plan)

    excluded = plan_excluded_paths(plan, policy)
    if excluded:
        violation = ExcludedPathViolation(excluded, source="Plan")
        LOGGER.warning("[%s] plan rejected: %s", auditor, violation)
        return PlanValidationResult(
            valid=False, plan=plan, reason=str(violation), stage="excluded", error=violation
        )

    if not validator or fingerprint is None:
        return PlanValidationResult(valid=True, plan=plan)

    verdict = await validate_plan.run(
        PlanValidationRequest(auditor=auditor, validator=validator, plan_payload=plan_to_payload(plan)),
        context=context,
        fingerprint=fingerprint,
    )
    if not verdict.valid:
        reason = verdict.reason or "Plan failed validation"
        LOGGER.warning("[%s] plan rejected: %s", auditor, reason)
        return PlanValidationResult(
            valid=False, plan=plan, reason=reason, stage="semantic", error=ValidationFailure(reason)
        )
    return PlanValidationResult(valid=True, plan=plan)


__all__ = ["PlanValidationResult", "plan_excluded_paths", "validate_plan_candidate"]
