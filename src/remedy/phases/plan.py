"""Planning phase: turn an auditor directive into a structured change plan."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..models.executor import AgentRequest, AgentTurn
from ..planning.schemas import PlanModel, output_schema
from ..prompts import render_plan_prompt
from ..session import SessionFingerprint, SessionState
from . import PhaseName
from .base import PhaseContext, invoke_phase


@dataclass(slots=True)
class PlanRevision:
    """Previous plan plus the reason it was rejected."""

    previous_plan: Any
    rejection_reason: str


@dataclass(slots=True)
class PlanRequest:
    """Input payload for the planning phase."""

    auditor: str
    directive: str
    formatter: str
    excluded: list[str] = field(default_factory=list)
    workspace_listing: str | None = None
    revision: PlanRevision | None = None


async def run(
    request: PlanRequest,
    *,
    context: PhaseContext,
    fingerprint: SessionFingerprint,
    session: SessionState | None = None,
) -> AgentTurn:
    """Ask the agent for a plan; transport errors propagate to the caller."""
    revision = None
    if request.revision is not None:
        revision = {
            "previous_plan": request.revision.previous_plan,
            "rejection_reason": request.revision.rejection_reason,
        }
    prompt = render_plan_prompt(
        request.directive,
        request.formatter,
        excluded=request.excluded,
        workspace_listing=request.workspace_listing,
        revision=revision,
    )
    agent_request = AgentRequest(
        prompt=prompt,
        output_schema=output_schema(PlanModel),
        fingerprint=fingerprint,
        schema_name="remedy_plan",
        label=request.auditor,
        metadata={"phase": PhaseName.PLAN.value, "auditor": request.auditor},
    )
    return await invoke_phase(
        PhaseName.PLAN.value,
        request,
        agent_request,
        context=context,
        session=session,
    )


__all__ = ["PlanRequest", "PlanRevision", "run"]
