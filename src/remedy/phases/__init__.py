"""Agent phase names used for logging and request labels."""

from __future__ import annotations

from enum import Enum


class PhaseName(str, Enum):
    """Enumeration of the agent capabilities the pipelines invoke."""

    PLAN = "plan"
    VALIDATE_PLAN = "validate_plan"
    EXECUTE_STEP = "execute_step"
    VALIDATE_STEP = "validate_step"
    CONDENSE = "condense"
    PULL_REQUEST = "pull_request"


__all__ = ["PhaseName"]
