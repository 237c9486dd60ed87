"""
Plan and step pipelines driving one auditor's change plan.
"""

from importlib import import_module
from typing import Any

_EXPORTS = {
    "PlanPipeline": "remedy.planning.executor",
    "PlanRoles": "remedy.planning.executor",
    "PlanRunResult": "remedy.planning.executor",
    "decompose": "remedy.planning.executor",
    "StepEnvironment": "remedy.planning.steps",
    "StepLimits": "remedy.planning.steps",
    "StepPipeline": "remedy.planning.steps",
    "StepResult": "remedy.planning.steps",
    "StepRoles": "remedy.planning.steps",
    "validate_plan_candidate": "remedy.planning.validation",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import pipeline classes; the phases import ``planning.schemas`` eagerly."""
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name])
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
