"""Pydantic models describing the JSON shapes exchanged with the agent."""

from __future__ import annotations

import copy
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import SchemaViolation
from ..models.llm_client import close_schema
from ..structured import ExecutionResult, ParsedPlan, PlanItem, StepMode, ValidationVerdict


class StrictModel(BaseModel):
    """Base model rejecting unknown keys."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PlanItemModel(StrictModel):
    action: str
    why: str
    files_involved: List[str] = Field(default_factory=list, alias="filesInvolved")
    steps: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    risk: Optional[str] = None
    supportive_evidence: List[str] = Field(default_factory=list, alias="supportiveEvidence")


class PlanModel(StrictModel):
    """Top-level plan: ``{"plan": [...], "noop"?, "reason"?, "name"?}``."""

    plan: List[PlanItemModel] = Field(default_factory=list)
    noop: bool = False
    reason: Optional[str] = None
    name: Optional[str] = None


class VerdictModel(StrictModel):
    valid: bool
    reason: Optional[str] = None


class StepResultModel(StrictModel):
    success: bool
    summary: str
    details: Optional[str] = None
    files_touched: List[str] = Field(default_factory=list, alias="filesTouched")
    files_written: List[str] = Field(default_factory=list, alias="filesWritten")
    patch: Optional[str] = None
    mode: Literal["apply", "fix_regression"] = "apply"
    noop: bool = False


class FailureSummaryModel(StrictModel):
    summary: str


class PullRequestSummaryModel(StrictModel):
    title: str
    body: str


@lru_cache(maxsize=None)
def _cached_schema(model: type[BaseModel]) -> Dict[str, Any]:
    schema = model.model_json_schema(by_alias=True)
    return close_schema(schema)


def output_schema(model: type[BaseModel]) -> Dict[str, Any]:
    """Return a strict JSON schema for ``model`` suitable for structured output."""
    return copy.deepcopy(_cached_schema(model))


def parse_plan(raw: Any) -> ParsedPlan:
    """Validate ``raw`` against the plan shape and convert it to a :class:`ParsedPlan`."""
    if not isinstance(raw, dict):
        raise SchemaViolation(f"Plan must be a JSON object, got {type(raw).__name__}.")
    try:
        model = PlanModel.model_validate(raw)
    except ValidationError as error:
        raise SchemaViolation(f"Plan failed schema validation: {_describe(error)}") from error

    items = tuple(
        PlanItem(
            action=item.action,
            why=item.why,
            files_involved=tuple(item.files_involved),
            steps=tuple(step for step in item.steps if step.strip()),
            category=item.category,
            risk=item.risk,
            supportive_evidence=tuple(item.supportive_evidence),
        )
        for item in model.plan
    )
    return ParsedPlan(items=items, noop=model.noop, reason=model.reason, name=model.name)


def parse_verdict(raw: Any) -> ValidationVerdict:
    if not isinstance(raw, dict):
        raise SchemaViolation("Validator verdict must be a JSON object.")
    try:
        model = VerdictModel.model_validate(raw)
    except ValidationError as error:
        raise SchemaViolation(f"Validator verdict failed schema validation: {_describe(error)}") from error
    return ValidationVerdict(valid=model.valid, reason=model.reason)


def parse_step_result(raw: Any, *, mode: StepMode) -> ExecutionResult:
    if not isinstance(raw, dict):
        raise SchemaViolation("Step result must be a JSON object.")
    try:
        model = StepResultModel.model_validate(raw)
    except ValidationError as error:
        raise SchemaViolation(f"Step result failed schema validation: {_describe(error)}") from error
    return ExecutionResult.from_payload(model.model_dump(by_alias=True), mode=mode)


def plan_to_payload(plan: ParsedPlan) -> Dict[str, Any]:
    """Render ``plan`` back into its JSON shape, used for revision prompts."""
    return {
        "name": plan.name,
        "noop": plan.noop,
        "reason": plan.reason,
        "plan": [
            {
                "action": item.action,
                "why": item.why,
                "filesInvolved": list(item.files_involved),
                "steps": list(item.steps),
                "category": item.category,
                "risk": item.risk,
                "supportiveEvidence": list(item.supportive_evidence),
            }
            for item in plan.items
        ],
    }


def _describe(error: ValidationError) -> str:
    parts = []
    for entry in error.errors()[:5]:
        location = ".".join(str(part) for part in entry.get("loc", ())) or "<root>"
        parts.append(f"{location}: {entry.get('msg', 'invalid')}")
    return "; ".join(parts)


__all__ = [
    "FailureSummaryModel",
    "PlanItemModel",
    "PlanModel",
    "PullRequestSummaryModel",
    "StepResultModel",
    "VerdictModel",
    "output_schema",
    "parse_plan",
    "parse_step_result",
    "parse_verdict",
    "plan_to_payload",
]
