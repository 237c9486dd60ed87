"""Step validation phase: judge whether an applied step met its intent."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from ..errors import SchemaViolation
from ..models.executor import AgentRequest
from ..models.llm_client import LLMClientError
from ..planning.schemas import VerdictModel, output_schema, parse_verdict
from ..prompts import render_step_validation_prompt
from ..session import SessionFingerprint, release_session
from ..structured import ExecutionResult, ValidationVerdict
from . import PhaseName
from .base import PhaseContext, invoke_phase

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StepValidationRequest:
    auditor: str
    validator: str
    step_text: str
    execution: ExecutionResult
    snapshots: Mapping[str, str | None] = field(default_factory=dict)


async def run(
    request: StepValidationRequest,
    *,
    context: PhaseContext,
    fingerprint: SessionFingerprint,
) -> ValidationVerdict:
    agent_request = AgentRequest(
        prompt=render_step_validation_prompt(
            request.validator,
            request.step_text,
            request.execution.to_payload(),
            request.snapshots,
        ),
        output_schema=output_schema(VerdictModel),
        fingerprint=fingerprint,
        schema_name="remedy_verdict",
        label=request.auditor,
        metadata={"phase": PhaseName.VALIDATE_STEP.value},
    )
    try:
        turn = await invoke_phase(PhaseName.VALIDATE_STEP.value, request, agent_request, context=context)
    except LLMClientError as error:
        LOGGER.warning("[%s] step validator failed: %s", request.auditor, error)
        return ValidationVerdict(valid=False, reason=f"Step validator failed: {error}")
    release_session(turn.session)
    try:
        return parse_verdict(turn.structured)
    except SchemaViolation as error:
        return ValidationVerdict(valid=False, reason=str(error))


__all__ = ["StepValidationRequest", "run"]
