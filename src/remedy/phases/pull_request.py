"""Summarise the committed plans of a run as a pull request title and body."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from pydantic import ValidationError

from ..errors import RemedyError
from ..models.executor import AgentRequest
from ..models.llm_client import LLMClientError
from ..planning.schemas import PullRequestSummaryModel, output_schema
from ..prompts import render_pull_request_prompt
from ..session import SessionFingerprint, release_session
from . import PhaseName
from .base import PhaseContext, invoke_phase

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PlanSummary:
    """What one committed plan contributes to the pull request."""

    auditor: str
    plan_name: str | None
    commit_message: str
    actions: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "auditorName": self.auditor,
            "planName": self.plan_name,
            "commitMessage": self.commit_message,
            "actions": list(self.actions),
        }


@dataclass(slots=True)
class PullRequestRequest:
    formatter: str
    plans: Sequence[PlanSummary] = field(default_factory=tuple)
    branch: str | None = None
    base_branch: str | None = None

    def run_summary(self) -> dict[str, Any]:
        return {
            "branch": self.branch,
            "baseBranch": self.base_branch,
            "committedPlans": [plan.to_payload() for plan in self.plans],
        }


@dataclass(slots=True, frozen=True)
class PullRequestSummary:
    title: str
    body: str

    def render(self) -> str:
        return f"{self.title}\n\n{self.body}".rstrip()


async def run(
    request: PullRequestRequest,
    *,
    context: PhaseContext,
    fingerprint: SessionFingerprint,
) -> PullRequestSummary | None:
    """Ask the agent for a pull request summary; ``None`` on any failure."""
    if not request.plans:
        return None
    LOGGER.info("[pull-request] generating summary with %s", fingerprint.describe())
    agent_request = AgentRequest(
        prompt=render_pull_request_prompt(request.formatter, request.run_summary()),
        output_schema=output_schema(PullRequestSummaryModel),
        fingerprint=fingerprint,
        schema_name="remedy_pull_request",
        label="pull-request",
        metadata={"phase": PhaseName.PULL_REQUEST.value},
    )
    try:
        turn = await invoke_phase(PhaseName.PULL_REQUEST.value, request, agent_request, context=context)
    except (LLMClientError, RemedyError) as error:
        LOGGER.warning("[pull-request] summary unavailable: %s", error)
        return None
    release_session(turn.session)

    try:
        parsed = PullRequestSummaryModel.model_validate(turn.structured)
    except ValidationError as error:
        LOGGER.warning("[pull-request] summary did not match the schema: %s", error)
        return None
    if not parsed.title.strip():
        return None
    return PullRequestSummary(title=parsed.title.strip(), body=parsed.body.strip())


__all__ = ["PlanSummary", "PullRequestRequest", "PullRequestSummary", "run"]
