"""Typed payloads exchanged between the audit, plan, and step pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Union

from .session import NO_SESSION, SessionState

StepMode = Literal["apply", "fix_regression"]
STEP_MODES: tuple[StepMode, ...] = ("apply", "fix_regression")


@dataclass(slots=True, frozen=True)
class PlanItem:
    """One proposed change, decomposed into ordered step instructions."""

    action: str = ""
    why: str = ""
    files_involved: tuple[str, ...] = ()
    steps: tuple[str, ...] = ()
    category: str | None = None
    risk: str | None = None
    supportive_evidence: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ParsedPlan:
    """Plan returned by an auditor turn after schema validation."""

    items: tuple[PlanItem, ...] = ()
    noop: bool = False
    reason: str | None = None
    name: str | None = None

    @property
    def step_count(self) -> int:
        return sum(len(item.steps) for item in self.items)

    def title(self) -> str:
        """Return a short human readable label for commit messages and logs."""
        if self.name and self.name.strip():
            return self.name.strip()
        for item in self.items:
            if item.action.strip():
                return item.action.strip()
        return "untitled plan"


@dataclass(slots=True)
class ExecutionResult:
    """Structured result of one executor turn."""

    success: bool
    summary: str = ""
    mode: StepMode = "apply"
    details: str | None = None
    files_touched: list[str] = field(default_factory=list)
    files_written: list[str] = field(default_factory=list)
    patch: str | None = None
    noop: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, mode: StepMode) -> "ExecutionResult":
        """Build a result from the executor's JSON, tolerating missing optional keys."""
        raw_mode = payload.get("mode")
        resolved_mode: StepMode = raw_mode if raw_mode in STEP_MODES else mode
        details = payload.get("details")
        patch = payload.get("patch")
        return cls(
            success=bool(payload.get("success")),
            summary=str(payload.get("summary") or ""),
            mode=resolved_mode,
            details=str(details) if details is not None else None,
            files_touched=_string_list(payload.get("filesTouched")),
            files_written=_string_list(payload.get("filesWritten")),
            patch=str(patch) if patch is not None else None,
            noop=bool(payload.get("noop")),
        )

    @property
    def has_patch(self) -> bool:
        return bool(self.patch and self.patch.strip())

    def claimed_files(self) -> list[str]:
        """Return written then touched paths, de-duplicated in order."""
        ordered = [entry for entry in (*self.files_written, *self.files_touched) if entry]
        return list(dict.fromkeys(ordered))

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "summary": self.summary,
            "details": self.details,
            "filesTouched": list(self.files_touched),
            "filesWritten": list(self.files_written),
            "patch": self.patch,
            "mode": self.mode,
            "noop": self.noop,
        }


@dataclass(slots=True, frozen=True)
class ValidationVerdict:
    """Judgement returned by a plan or step validator."""

    valid: bool
    reason: str | None = None


@dataclass(slots=True, frozen=True)
class QualityGateVerdict:
    """Single pass/fail verdict for one quality gate evaluation."""

    passed: bool
    additional_context: str | None = None


# ----------------------------------------------------------------- outcomes
@dataclass(slots=True, frozen=True)
class Abort:
    """Terminal failure of the current step; no further retries."""

    reason: str = ""
    session: SessionState = NO_SESSION
    policy_violation: bool = False
    noop: bool = False
    error: Exception | None = None


@dataclass(slots=True, frozen=True)
class Retry:
    """Recoverable failure; ``reason`` feeds the next attempt's context."""

    reason: str
    session: SessionState = NO_SESSION


@dataclass(slots=True, frozen=True)
class Proceed:
    """Phase succeeded; carry the execution and post-apply snapshot forward."""

    execution: ExecutionResult
    snapshot: Mapping[str, str | None] = field(default_factory=dict)
    session: SessionState = NO_SESSION


StepPhaseOutcome = Union[Abort, Retry, Proceed]


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(entry) for entry in value if isinstance(entry, str) and entry.strip()]


__all__ = [
    "Abort",
    "ExecutionResult",
    "ParsedPlan",
    "PlanItem",
    "Proceed",
    "QualityGateVerdict",
    "Retry",
    "STEP_MODES",
    "StepMode",
    "StepPhaseOutcome",
    "ValidationVerdict",
]
