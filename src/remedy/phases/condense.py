"""Condense raw test output into a short failure summary."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..models.executor import AgentRequest
from ..planning.schemas import FailureSummaryModel, output_schema
from ..prompts import render_condense_prompt
from ..session import SessionFingerprint, release_session
from ..tools.gates import tail
from . import PhaseName
from .base import PhaseContext, invoke_phase

LOGGER = logging.getLogger(__name__)

_OUTPUT_BUDGET = 12_000


@dataclass(slots=True)
class CondenseRequest:
    formatter: str
    stdout: str
    stderr: str
    label: str = "condense"


async def run(
    request: CondenseRequest,
    *,
    context: PhaseContext,
    fingerprint: SessionFingerprint,
) -> str | None:
    """Return the agent's summary, or ``None`` when it had nothing to say.

    Errors propagate; callers treat condensation as best effort.
    """
    agent_request = AgentRequest(
        prompt=render_condense_prompt(
            request.formatter,
            tail(request.stdout, _OUTPUT_BUDGET),
            tail(request.stderr, _OUTPUT_BUDGET),
        ),
        output_schema=output_schema(FailureSummaryModel),
        fingerprint=fingerprint,
        schema_name="remedy_failure_summary",
        label=request.label,
        metadata={"phase": PhaseName.CONDENSE.value},
    )
    turn = await invoke_phase(PhaseName.CONDENSE.value, request, agent_request, context=context)
    release_session(turn.session)
    structured = turn.structured
    if not isinstance(structured, dict):
        return None
    summary = structured.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        return None
    return summary.strip()


def agent_summarizer(
    context: PhaseContext,
    fingerprint: SessionFingerprint,
    formatter: str,
) -> Callable[[str, str], Awaitable[str | None]]:
    """Bind the condense phase into the ``(stdout, stderr)`` summarizer shape."""

    async def _summarize(stdout: str, stderr: str) -> str | None:
        return await run(
            CondenseRequest(formatter=formatter, stdout=stdout, stderr=stderr),
            context=context,
            fingerprint=fingerprint,
        )

    return _summarize


__all__ = ["CondenseRequest", "agent_summarizer", "run"]
