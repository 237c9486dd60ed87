"""Error taxonomy shared by the planning and step pipelines."""

from __future__ import annotations

from typing import Sequence


class RemedyError(RuntimeError):
    """Base error for orchestration failures."""


class ConfigError(RemedyError):
    """Raised when the configuration file is missing, malformed, or inconsistent."""


class SchemaViolation(RemedyError):
    """Raised when a plan or step payload does not match its JSON shape."""


class ExcludedPathViolation(RemedyError):
    """Raised when agent output names a path under an excluded prefix."""

    def __init__(self, paths: Sequence[str], *, source: str = "executor output") -> None:
        self.paths = tuple(dict.fromkeys(paths))
        joined = ", ".join(self.paths) or "(unknown)"
        super().__init__(f"{source} touches excluded path(s): {joined}")


class ExecutorFailure(RemedyError):
    """Raised when an agent turn produced no usable result."""


class ValidationFailure(RemedyError):
    """Raised when a semantic validator rejects a plan or a step."""


class QualityGateFailure(RemedyError):
    """Raised when build, lint, or test fails after retries are exhausted."""


class ThreadLifetimeExhausted(RemedyError):
    """Raised when a step consumes every agent turn it was budgeted."""


class RegressionCapExceeded(RemedyError):
    """Raised when a step exceeds its regression-attempt cap."""


__all__ = [
    "ConfigError",
    "ExcludedPathViolation",
    "ExecutorFailure",
    "QualityGateFailure",
    "RegressionCapExceeded",
    "RemedyError",
    "SchemaViolation",
    "ThreadLifetimeExhausted",
    "ValidationFailure",
]
