"""Semantic plan validation phase."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import SchemaViolation
from ..models.executor import AgentRequest
from ..models.llm_client import LLMClientError
from ..planning.schemas import VerdictModel, output_schema, parse_verdict
from ..prompts import render_plan_validation_prompt
from ..session import SessionFingerprint, release_session
from ..structured import ValidationVerdict
from . import PhaseName
from .base import PhaseContext, invoke_phase

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PlanValidationRequest:
    auditor: str
    validator: str
    plan_payload: Any


async def run(
    request: PlanValidationRequest,
    *,
    context: PhaseContext,
    fingerprint: SessionFingerprint,
) -> ValidationVerdict:
    """Judge the plan in a fresh session; transport errors reject the plan."""
    agent_request = AgentRequest(
        prompt=render_plan_validation_prompt(request.validator, request.plan_payload),
        output_schema=output_schema(VerdictModel),
        fingerprint=fingerprint,
        schema_name="remedy_verdict",
        label=request.auditor,
        metadata={"phase": PhaseName.VALIDATE_PLAN.value, "auditor": request.auditor},
    )
    try:
        turn = await invoke_phase(PhaseName.VALIDATE_PLAN.value, request, agent_request, context=context)
    except LLMClientError as error:
        LOGGER.warning("[%s] plan validator failed: %s", request.auditor, error)
        return ValidationVerdict(valid=False, reason=f"Plan validator failed: {error}")
    release_session(turn.session)
    try:
        return parse_verdict(turn.structured)
    except SchemaViolation as error:
        return ValidationVerdict(valid=False, reason=str(error))


__all__ = ["PlanValidationRequest", "run"]
