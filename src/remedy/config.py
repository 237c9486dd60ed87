"""YAML configuration for auditors, agent roles, limits, and the quality gate.

The user file (``remedy.yaml`` by default) is deep-merged over
:data:`DEFAULT_CONFIG` and parsed into slotted dataclasses.  Relative paths
resolve against the directory holding the file.  Every problem is reported
as :class:`~remedy.errors.ConfigError` naming the dotted key at fault.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .errors import ConfigError
from .prompts import asset_path
from .session import SessionFingerprint

DEFAULT_CONFIG_NAME = "remedy.yaml"

REASONING_LEVELS = ("minimal", "low", "medium", "high")

DEFAULT_CONFIG: Dict[str, Any] = {
    "model": "gpt-5",
    "reasoning": "medium",
    "auditors": {
        "security": {"enabled": True, "path": None},
        "complexity": {"enabled": True, "path": None},
        "consistency": {"enabled": False, "path": None},
    },
    "validators": {
        "plan": {"path": None, "model": None, "reasoning": None},
        "step": {"path": None, "model": None, "reasoning": None},
    },
    "formatters": {
        "plan": {"path": None, "model": None, "reasoning": None},
        "execute_step": {"path": None, "model": None, "reasoning": None},
        "test_failure_summary": {"path": None, "model": None, "reasoning": "low"},
        "pull_request": {"path": None, "model": None, "reasoning": "low"},
    },
    "quality_gate": {
        "build": {"enabled": False, "run": "python -m compileall -q src"},
        "lint": {"enabled": False, "run": "ruff check ."},
        "test": {"enabled": True, "run": "pytest -q"},
    },
    "max_validation_retries": 1,
    "max_regression_attempts": 3,
    "max_thread_lifetime_attempts": 10,
    "max_plan_revisions": 2,
    "run_baseline_quality_gate": False,
    "exclude": [],
    "turn_timeout": 600,
    "commit": True,
    "pull_request_summary": True,
    "paths": {"logs": ".remedy/logs"},
}

_TOP_LEVEL_KEYS = frozenset(DEFAULT_CONFIG)


@dataclass(slots=True)
class RoleConfig:
    """Prompt text location and model overrides for one agent role."""

    path: Path
    model: str | None = None
    reasoning: str | None = None

    def read(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as error:
            raise ConfigError(f"Unable to read prompt file {self.path}: {error}") from error


@dataclass(slots=True)
class AuditorConfig:
    name: str
    enabled: bool
    path: Path
    model: str | None = None
    reasoning: str | None = None

    def read(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as error:
            raise ConfigError(f"Unable to read auditor directive {self.path}: {error}") from error


@dataclass(slots=True)
class StageConfig:
    enabled: bool = False
    run: str = ""


@dataclass(slots=True)
class QualityGateConfig:
    build: StageConfig = field(default_factory=StageConfig)
    lint: StageConfig = field(default_factory=StageConfig)
    test: StageConfig = field(default_factory=StageConfig)

    @property
    def disabled(self) -> bool:
        return not any(stage.enabled for stage in (self.build, self.lint, self.test))


@dataclass(slots=True)
class RemedyConfig:
    """Fully resolved configuration."""

    root: Path
    model: str | None
    reasoning: str | None
    auditors: Dict[str, AuditorConfig]
    validators: Dict[str, RoleConfig]
    formatters: Dict[str, RoleConfig]
    quality_gate: QualityGateConfig
    max_validation_retries: int = 1
    max_regression_attempts: int = 3
    max_thread_lifetime_attempts: int = 10
    max_plan_revisions: int = 2
    run_baseline_quality_gate: bool = False
    exclude: list[Path] = field(default_factory=list)
    turn_timeout: float | None = None
    commit: bool = True
    pull_request_summary: bool = True
    logs_dir: Path | None = None
    source: Path | None = None

    def enabled_auditors(self) -> list[str]:
        return [name for name, auditor in self.auditors.items() if auditor.enabled]

    def auditor(self, name: str) -> AuditorConfig:
        try:
            return self.auditors[name]
        except KeyError as error:
            raise ConfigError(f"Unknown auditor {name!r}") from error

    # ----------------------------------------------------------- model chains
    def _global(self) -> str:
        if self.model:
            return self.model
        raise ConfigError("No model configured. Set a global model or provide overrides.")

    def _auditor_override(self, auditor: str | None) -> AuditorConfig | None:
        return self.auditors.get(auditor) if auditor else None

    def plan_fingerprint(self, auditor: str | None) -> SessionFingerprint:
        """Auditor model, then plan formatter model, then the global model."""
        entry = self._auditor_override(auditor)
        formatter = self.formatters["plan"]
        model = (entry.model if entry else None) or formatter.model or self._global()
        reasoning = (entry.reasoning if entry else None) or formatter.reasoning or self.reasoning
        return SessionFingerprint(model=model, reasoning=reasoning)

    def executor_fingerprint(self, auditor: str | None) -> SessionFingerprint:
        """Execute-step formatter model, then auditor model, then the global model."""
        entry = self._auditor_override(auditor)
        formatter = self.formatters["execute_step"]
        model = formatter.model or (entry.model if entry else None) or self._global()
        reasoning = formatter.reasoning or (entry.reasoning if entry else None) or self.reasoning
        return SessionFingerprint(model=model, reasoning=reasoning)

    def validator_fingerprint(self, auditor: str | None, validator: str) -> SessionFingerprint:
        """Validator model, then auditor model, then the global model."""
        entry = self._auditor_override(auditor)
        role = self.validators[validator]
        model = role.model or (entry.model if entry else None) or self._global()
        reasoning = role.reasoning or (entry.reasoning if entry else None) or self.reasoning
        return SessionFingerprint(model=model, reasoning=reasoning)

    def condenser_fingerprint(self, auditor: str | None) -> SessionFingerprint:
        """Condenser model, then step validator, then auditor, then the global model."""
        entry = self._auditor_override(auditor)
        role = self.formatters["test_failure_summary"]
        step = self.validators["step"]
        model = role.model or step.model or (entry.model if entry else None) or self._global()
        reasoning = role.reasoning or step.reasoning or (entry.reasoning if entry else None) or self.reasoning
        return SessionFingerprint(model=model, reasoning=reasoning)

    def pull_request_fingerprint(self) -> SessionFingerprint:
        """Pull-request formatter model, then the global model."""
        role = self.formatters["pull_request"]
        return SessionFingerprint(model=role.model or self._global(), reasoning=role.reasoning or self.reasoning)


def default_config_data() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_CONFIG)


def deep_merge(base: Any, override: Any) -> Any:
    """Merge ``override`` into ``base``; mappings merge, everything else replaces."""
    if override is None:
        return copy.deepcopy(base)
    if isinstance(base, Mapping) and isinstance(override, Mapping):
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in override.items():
            merged[key] = deep_merge(base[key], value) if key in base else copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def load_config(config_path: Path | str | None = None, *, cwd: Path | str | None = None) -> RemedyConfig:
    """Load the YAML file at ``config_path`` (defaults apply when it is absent)."""
    root = Path(cwd or Path.cwd()).resolve()
    path = Path(config_path) if config_path is not None else root / DEFAULT_CONFIG_NAME
    if not path.is_absolute():
        path = (root / path).resolve()

    raw: Any = {}
    if path.exists():
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as error:
            raise ConfigError(f"Failed to parse {path}: {error}") from error
        base_dir = path.parent
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {path}")
    else:
        base_dir = root

    config = parse_config(raw, base_dir=base_dir)
    config.source = path if path.exists() else None
    return config


def parse_config(raw: Any, *, base_dir: Path) -> RemedyConfig:
    if not isinstance(raw, Mapping):
        raise ConfigError("Configuration must be a mapping at the top level.")
    for key in raw:
        if key not in _TOP_LEVEL_KEYS:
            allowed = ", ".join(sorted(_TOP_LEVEL_KEYS))
            raise ConfigError(f"Unknown top-level key {key!r}. Allowed keys are: {allowed}.")

    data = deep_merge(DEFAULT_CONFIG, raw)
    reader = _Reader(base_dir)

    auditors_raw = reader.mapping(data, "auditors")
    auditors: Dict[str, AuditorConfig] = {}
    for name in auditors_raw:
        key = f"auditors.{name}"
        section = reader.mapping(auditors_raw, str(name), key)
        auditors[str(name)] = AuditorConfig(
            name=str(name),
            enabled=reader.boolean(section, "enabled", f"{key}.enabled", default=True),
            path=reader.prompt_path(section, f"{key}.path", ("auditors", f"{name}.md")),
            model=reader.optional_str(section, "model", f"{key}.model"),
            reasoning=reader.reasoning(section, f"{key}.reasoning"),
        )

    validators = {
        name: reader.role(data, "validators", name, ("validators", f"{name}.md"))
        for name in ("plan", "step")
    }
    formatters = {
        name: reader.role(data, "formatters", name, ("formatters", f"{name}.md"))
        for name in ("plan", "execute_step", "test_failure_summary", "pull_request")
    }

    gate_raw = reader.mapping(data, "quality_gate")
    stages = {}
    for stage in ("build", "lint", "test"):
        key = f"quality_gate.{stage}"
        section = reader.mapping(gate_raw, stage, key)
        stages[stage] = StageConfig(
            enabled=reader.boolean(section, "enabled", f"{key}.enabled", default=False),
            run=reader.optional_str(section, "run", f"{key}.run") or "",
        )
        if stages[stage].enabled and not stages[stage].run.strip():
            raise ConfigError(f"{key}.run must be set when {key}.enabled is true.")

    exclude_raw = data.get("exclude") or []
    if not isinstance(exclude_raw, list) or not all(isinstance(entry, str) for entry in exclude_raw):
        raise ConfigError("exclude must be a list of path strings.")

    paths_raw = reader.mapping(data, "paths")
    logs_value = reader.optional_str(paths_raw, "logs", "paths.logs")

    timeout = data.get("turn_timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ConfigError("turn_timeout must be a positive number of seconds or null.")

    return RemedyConfig(
        root=base_dir.resolve(),
        model=reader.optional_str(data, "model", "model"),
        reasoning=reader.reasoning(data, "reasoning"),
        auditors=auditors,
        validators=validators,
        formatters=formatters,
        quality_gate=QualityGateConfig(**stages),
        max_validation_retries=reader.integer(data, "max_validation_retries", minimum=1),
        max_regression_attempts=reader.integer(data, "max_regression_attempts", minimum=0),
        max_thread_lifetime_attempts=reader.integer(data, "max_thread_lifetime_attempts"),
        max_plan_revisions=reader.integer(data, "max_plan_revisions", minimum=0),
        run_baseline_quality_gate=reader.boolean(data, "run_baseline_quality_gate", "run_baseline_quality_gate"),
        exclude=[reader.resolve(entry) for entry in exclude_raw],
        turn_timeout=float(timeout) if timeout is not None else None,
        commit=reader.boolean(data, "commit", "commit", default=True),
        pull_request_summary=reader.boolean(data, "pull_request_summary", "pull_request_summary", default=True),
        logs_dir=reader.resolve(logs_value) if logs_value else None,
    )


class _Reader:
    """Typed accessors that report failures with the dotted key path."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    def resolve(self, value: str) -> Path:
        candidate = Path(value).expanduser()
        if not candidate.is_absolute():
            candidate = self.base_dir / candidate
        return candidate.resolve()

    def mapping(self, data: Mapping[str, Any], key: str, dotted: str | None = None) -> Mapping[str, Any]:
        value = data.get(key)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ConfigError(f"{dotted or key} must be a mapping.")
        return value

    def boolean(self, data: Mapping[str, Any], key: str, dotted: str, *, default: bool = False) -> bool:
        value = data.get(key, default)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise ConfigError(f"{dotted} must be a boolean.")
        return value

    def optional_str(self, data: Mapping[str, Any], key: str, dotted: str) -> str | None:
        value = data.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise ConfigError(f"{dotted} must be a string.")
        return value.strip() or None

    def reasoning(self, data: Mapping[str, Any], dotted: str) -> str | None:
        value = self.optional_str(data, "reasoning", dotted)
        if value is not None and value not in REASONING_LEVELS:
            raise ConfigError(f"{dotted} must be one of {', '.join(REASONING_LEVELS)}.")
        return value

    def integer(self, data: Mapping[str, Any], key: str, *, minimum: int | None = None) -> int:
        value = data.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key} must be an integer.")
        if minimum is not None and value < minimum:
            raise ConfigError(f"{key} must be >= {minimum}.")
        return value

    def prompt_path(self, data: Mapping[str, Any], dotted: str, builtin: tuple[str, ...]) -> Path:
        value = self.optional_str(data, "path", dotted)
        if value is None:
            return asset_path(*builtin)
        return self.resolve(value)

    def role(self, data: Mapping[str, Any], group: str, name: str, builtin: tuple[str, ...]) -> RoleConfig:
        key = f"{group}.{name}"
        section = self.mapping(self.mapping(data, group), name, key)
        return RoleConfig(
            path=self.prompt_path(section, f"{key}.path", builtin),
            model=self.optional_str(section, "model", f"{key}.model"),
            reasoning=self.reasoning(section, f"{key}.reasoning"),
        )


def write_default_config(path: Path) -> None:
    """Persist the default configuration with stable key order."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(default_config_data(), handle, sort_keys=False)


__all__ = [
    "AuditorConfig",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_NAME",
    "QualityGateConfig",
    "RemedyConfig",
    "RoleConfig",
    "StageConfig",
    "deep_merge",
    "default_config_data",
    "load_config",
    "parse_config",
    "write_default_config",
]
