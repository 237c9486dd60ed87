"""Quality gate orchestration for build, lint, and test stages.

Stages run in a fixed order (build, lint, test) and stop at the first
failure.  A failing stage is reported as ``Quality gate failed at <stage>:
<detail>``; test failures prefer a condensed summary and fall back to an
ANSI-stripped tail of the raw output.  The runner keeps no state between
invocations, so callers may re-run the whole gate freely.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from ..structured import QualityGateVerdict
from .commands import CommandResult, run_command

LOGGER = logging.getLogger(__name__)

StageName = Literal["build", "lint", "test"]
STAGE_ORDER: tuple[StageName, ...] = ("build", "lint", "test")

DEFAULT_TAIL_CHARS = 4000
DISABLED_SUMMARY = "Validation disabled (build/test/lint all disabled)."

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07")
_TEST_RUNNER_STARTUP_RES = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"test runner failed to start",
        r"failed to start plugin worker",
        r"nx failed to start plugin worker",
        r"failed to start worker process",
        r"worker process failed to start",
        r"could not start plugin worker",
    )
)
_HIGHLIGHT_RES = (
    re.compile(r"^fail\s+", re.IGNORECASE),
    re.compile(r"^●\s+"),
    re.compile(r"^FAILED\s+"),
    re.compile(r"\b(assertionerror|expect\(|received:|expected:)", re.IGNORECASE),
)
_MAX_HIGHLIGHTS = 20
_MAX_HIGHLIGHT_CHARS = 240

StageCommandRunner = Callable[[str, Path], Awaitable[CommandResult]]
Condenser = Callable[[str, str], Awaitable["str | None"]]


@dataclass(slots=True, frozen=True)
class QualityStage:
    """One gate stage: an enabled flag and the shell command it runs."""

    name: StageName
    enabled: bool
    command: str = ""


def gate_disabled(stages: Sequence[QualityStage]) -> bool:
    """Return ``True`` when no stage is enabled."""
    return not any(stage.enabled and stage.command.strip() for stage in stages)


def stages_from_config(section: Any) -> list[QualityStage]:
    """Build stages from a quality gate config section with build/lint/test entries."""
    stages: list[QualityStage] = []
    for name in STAGE_ORDER:
        entry = getattr(section, name, None)
        if entry is None and isinstance(section, Mapping):
            entry = section.get(name)
        if entry is None:
            stages.append(QualityStage(name=name, enabled=False))
            continue
        enabled = getattr(entry, "enabled", None)
        command = getattr(entry, "run", None)
        if isinstance(entry, Mapping):
            enabled = entry.get("enabled", False)
            command = entry.get("run", "")
        stages.append(QualityStage(name=name, enabled=bool(enabled), command=str(command or "")))
    return stages


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text or "")


def tail(text: str, max_chars: int = DEFAULT_TAIL_CHARS) -> str:
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[-max_chars:]


def _pretty(text: str) -> str:
    stripped = text.strip()
    if not stripped or stripped[0] not in "{[":
        return text
    try:
        return json.dumps(json.loads(stripped), indent=2)
    except ValueError:
        return text


def summarize_failure(stage: StageName, result: CommandResult) -> str:
    """Render ``stage=<s> | code=<c> | stdout=... | stderr=...`` for a failed stage."""
    stdout = tail(_pretty(strip_ansi(result.stdout)))
    stderr = tail(_pretty(strip_ansi(result.stderr)))
    parts = [f"stage={stage}", f"code={result.exit_code}"]
    if stdout:
        parts.append(f"stdout={json.dumps(stdout)}")
    if stderr:
        parts.append(f"stderr={json.dumps(stderr)}")
    return " | ".join(parts)


def format_gate_failure(stage: StageName, detail: str) -> str:
    return f"Quality gate failed at {stage}: {detail}"


def is_test_runner_startup_failure(result: CommandResult) -> bool:
    combined = f"{result.stdout}\n{result.stderr}"
    return any(pattern.search(combined) for pattern in _TEST_RUNNER_STARTUP_RES)


async def maybe_condense(condenser: Condenser | None, stdout: str, stderr: str) -> str | None:
    """Run ``condenser`` best effort; any failure yields ``None``."""
    if condenser is None:
        return None
    try:
        condensed = await condenser(stdout or "", stderr or "")
    except Exception as error:  # noqa: BLE001 - condensing is advisory
        LOGGER.debug("Test failure condenser failed: %s", error)
        return None
    if condensed and condensed.strip():
        return condensed.strip()
    return None


async def _default_stage_runner(command: str, cwd: Path) -> CommandResult:
    def _log_line(stream: str, line: str) -> None:
        if line:
            LOGGER.debug("%s: %s", stream, line)

    return await run_command(command, cwd, env={"CI": "true"}, on_line=_log_line)


class QualityGateRunner:
    """Run the enabled stages fail-fast and return one verdict."""

    def __init__(
        self,
        stages: Sequence[QualityStage],
        cwd: str | Path,
        *,
        runner: StageCommandRunner | None = None,
        condenser: Condenser | None = None,
    ) -> None:
        order = {name: index for index, name in enumerate(STAGE_ORDER)}
        self._stages = tuple(sorted(stages, key=lambda stage: order[stage.name]))
        self._cwd = Path(cwd)
        self._runner = runner or _default_stage_runner
        self._condenser = condenser

    @property
    def stages(self) -> tuple[QualityStage, ...]:
        return self._stages

    @property
    def disabled(self) -> bool:
        return gate_disabled(self._stages)

    async def run(self, *, label: str = "gate") -> QualityGateVerdict:
        for stage in self._stages:
            if not stage.enabled or not stage.command.strip():
                continue
            LOGGER.info("[%s] running %s: %s", label, stage.name, stage.command)
            result = await self._runner(stage.command, self._cwd)
            if result.ok:
                continue

            if stage.name == "test" and is_test_runner_startup_failure(result):
                LOGGER.warning(
                    "[%s] test runner failed to start; treating as soft warning and skipping test gate.",
                    label,
                )
                continue

            detail = await self._failure_detail(stage.name, result)
            context = format_gate_failure(stage.name, detail)
            LOGGER.warning("[%s] %s", label, _first_line(context))
            return QualityGateVerdict(passed=False, additional_context=context)

        return QualityGateVerdict(passed=True)

    async def _failure_detail(self, stage: StageName, result: CommandResult) -> str:
        if stage == "test":
            condensed = await maybe_condense(self._condenser, result.stdout, result.stderr)
            if condensed:
                return condensed
        return summarize_failure(stage, result) or "unknown failure"


class TestFailureCondenser:
    """Persist raw test output and reduce it to highlights for the next agent turn.

    When ``summarizer`` is provided it is asked for a natural-language
    summary of the captured logs; its answer leads the condensed text.
    """

    __test__ = False

    def __init__(
        self,
        artifacts_dir: str | Path,
        *,
        summarizer: Callable[[str, str], Awaitable["str | None"]] | None = None,
    ) -> None:
        self._artifacts_dir = Path(artifacts_dir)
        self._summarizer = summarizer

    async def __call__(self, stdout: str, stderr: str) -> str | None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        base = f"test-{stamp}-{secrets.token_hex(4)}"
        stdout_path = self._artifacts_dir / f"{base}-stdout.log"
        stderr_path = self._artifacts_dir / f"{base}-stderr.log"
        try:
            self._artifacts_dir.mkdir(parents=True, exist_ok=True)
            stdout_path.write_text(stdout or "", encoding="utf-8")
            stderr_path.write_text(stderr or "", encoding="utf-8")
        except OSError as error:
            LOGGER.debug("Unable to persist test logs under %s: %s", self._artifacts_dir, error)
            return None

        highlights = extract_failure_highlights(stdout, stderr)
        sections: list[str] = []
        summary = await maybe_condense(self._summarizer, stdout, stderr)
        if summary:
            sections.append(summary)
        sections.append(
            "Test failure logs captured (untrusted). Prefer targeted searches "
            "(e.g. lines starting with `FAIL` or `●`)."
        )
        sections.append(_log_reference("stdout", stdout_path, stdout))
        sections.append(_log_reference("stderr", stderr_path, stderr))
        if highlights:
            sections.append("Highlights:\n" + "\n".join(f"- {line}" for line in highlights))
        return "\n".join(sections)


def extract_failure_highlights(stdout: str, stderr: str) -> list[str]:
    """Return up to twenty distinct failure lines, each clipped to 240 characters."""
    combined = strip_ansi(f"{stdout or ''}\n{stderr or ''}")
    hits: list[str] = []
    seen: set[str] = set()
    for raw_line in combined.splitlines():
        if len(hits) >= _MAX_HIGHLIGHTS:
            break
        line = raw_line.strip()
        if not line or not any(pattern.search(line) for pattern in _HIGHLIGHT_RES):
            continue
        if len(line) > _MAX_HIGHLIGHT_CHARS:
            line = f"{line[: _MAX_HIGHLIGHT_CHARS - 3]}..."
        if line in seen:
            continue
        seen.add(line)
        hits.append(line)
    return hits


def _log_reference(stream: str, path: Path, content: str) -> str:
    escaped = (
        str(path).replace("&", "&amp;").replace('"', "&quot;").replace("<", "&lt;").replace(">", "&gt;")
    )
    return f'<untrusted_log trust="untrusted" stream="{stream}" path="{escaped}" bytes="{len(content or "")}" />'


def _first_line(text: str) -> str:
    return text.splitlines()[0] if text else text


__all__ = [
    "DEFAULT_TAIL_CHARS",
    "DISABLED_SUMMARY",
    "QualityGateRunner",
    "QualityStage",
    "STAGE_ORDER",
    "StageName",
    "TestFailureCondenser",
    "extract_failure_highlights",
    "format_gate_failure",
    "gate_disabled",
    "is_test_runner_startup_failure",
    "maybe_condense",
    "stages_from_config",
    "strip_ansi",
    "summarize_failure",
    "tail",
]
