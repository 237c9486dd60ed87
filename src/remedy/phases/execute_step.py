"""Executor phase: ask the agent to carry out one plan step as a patch."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import ExcludedPathViolation, SchemaViolation
from ..models.executor import AgentRequest
from ..models.llm_client import LLMClientError
from ..planning.schemas import StepResultModel, output_schema, parse_step_result
from ..policy.exclusions import ExclusionPolicy
from ..prompts import render_step_prompt
from ..session import SessionFingerprint, SessionState, reusable_session
from ..structured import ExecutionResult, StepMode
from . import PhaseName
from .base import PhaseContext, invoke_phase

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecuteStepRequest:
    """Step instruction (already carrying any failure summary) plus formatter."""

    auditor: str
    step_text: str
    mode: StepMode
    formatter: str
    file_contents: str | None = None


@dataclass(slots=True)
class ExecuteStepResponse:
    """Parsed result, or ``None`` when the turn produced nothing usable."""

    result: ExecutionResult | None
    session: SessionState
    raw_text: str | None = None
    error: str | None = None
    violation: ExcludedPathViolation | None = None


async def run(
    request: ExecuteStepRequest,
    *,
    context: PhaseContext,
    fingerprint: SessionFingerprint,
    policy: ExclusionPolicy,
    session: SessionState | None = None,
) -> ExecuteStepResponse:
    """Run the executor turn and enforce the excluded-path policy on its output.

    A policy breach is reported through ``violation``; transport and schema
    errors are reported as a missing result.  The returned session is always
    the live one for this turn.
    """
    state = reusable_session(session, fingerprint)
    agent_request = AgentRequest(
        prompt=render_step_prompt(
            request.step_text,
            request.mode,
            request.formatter,
            file_contents=request.file_contents,
        ),
        output_schema=output_schema(StepResultModel),
        fingerprint=fingerprint,
        schema_name="remedy_step_result",
        label=request.auditor,
        metadata={"phase": PhaseName.EXECUTE_STEP.value, "mode": request.mode},
    )
    try:
        turn = await invoke_phase(
            PhaseName.EXECUTE_STEP.value,
            request,
            agent_request,
            context=context,
            session=state,
        )
    except LLMClientError as error:
        LOGGER.error("[%s] executor turn failed (%s): %s", request.auditor, request.mode, error)
        return ExecuteStepResponse(result=None, session=state, error=str(error))

    try:
        result = parse_step_result(turn.structured, mode=request.mode)
    except SchemaViolation as error:
        LOGGER.error("[%s] executor returned an invalid result: %s", request.auditor, error)
        return ExecuteStepResponse(result=None, session=turn.session, raw_text=turn.raw_text, error=str(error))

    try:
        policy.enforce(result)
    except ExcludedPathViolation as error:
        return ExecuteStepResponse(
            result=None, session=turn.session, raw_text=turn.raw_text, error=str(error), violation=error
        )
    return ExecuteStepResponse(result=result, session=turn.session, raw_text=turn.raw_text)


__all__ = ["ExecuteStepRequest", "ExecuteStepResponse", "run"]
