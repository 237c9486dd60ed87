"""Prompt templates and helpers shared by the agent roles."""

from __future__ import annotations

import json
import os
from importlib import resources
from pathlib import Path
from typing import Any, Mapping, Sequence

from .structured import StepMode

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the documented response schema. "
    "Do not include markdown fences, explanations, or trailing text."
)

_LISTING_LIMIT = 400
_FILE_CHAR_BUDGET = 60_000
_SKIPPED_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build", ".remedy"}


def asset_path(*segments: str) -> Path:
    """Return the path of a text bundled with the package."""
    return Path(str(resources.files("remedy").joinpath("assets", *segments)))


def combine(*parts: str | None) -> str:
    """Join non-empty prompt sections with blank lines."""
    return "\n\n".join(part.strip() for part in parts if part and part.strip())


def _untrusted(tag: str, body: str) -> str:
    return f'<{tag} trust="untrusted">\n{body}\n</{tag}>'


def render_excluded_paths(paths: Sequence[str]) -> str:
    unique = [entry for entry in dict.fromkeys(paths) if entry]
    if not unique:
        return "<excluded_paths>(none)</excluded_paths>"
    lines = "\n".join(f"- {entry}" for entry in unique)
    return f"<excluded_paths>\n{lines}\n</excluded_paths>"


def render_revision_context(previous_plan: Any, rejection_reason: str | None) -> str:
    payload = json.dumps(
        {"previousPlan": previous_plan, "rejectionReason": rejection_reason},
        indent=2,
        default=str,
    )
    return "\n".join(
        [
            "PLAN_REVISION_CONTEXT:",
            _untrusted("plan_revision_context", payload),
            "Revise the previous plan to address the rejection reason. "
            "Do not re-scan the repository unless the reason explicitly requires new evidence.",
        ]
    )


def render_workspace_listing(cwd: Path, *, limit: int = _LISTING_LIMIT) -> str:
    """List up to ``limit`` files under ``cwd`` relative to it, skipping tool directories."""
    entries: list[str] = []
    for root, dirs, files in os.walk(cwd):
        dirs[:] = sorted(name for name in dirs if name not in _SKIPPED_DIRS and not name.startswith("."))
        for name in sorted(files):
            entries.append((Path(root) / name).relative_to(cwd).as_posix())
            if len(entries) >= limit:
                return "\n".join(entries + ["... (listing truncated)"])
    return "\n".join(entries) or "(empty)"


def render_file_contents(cwd: Path, paths: Sequence[str], *, budget: int = _FILE_CHAR_BUDGET) -> str:
    """Inline the current contents of ``paths`` within a character budget."""
    sections: list[str] = []
    remaining = budget
    for entry in dict.fromkeys(path for path in paths if path):
        target = cwd / entry
        try:
            text = target.read_text(encoding="utf-8", errors="replace")
        except OSError:
            sections.append(f"FILE: {entry}\n<missing>")
            continue
        if remaining <= 0:
            sections.append(f"FILE: {entry}\n<omitted: prompt budget exhausted>")
            continue
        if len(text) > remaining:
            text = text[:remaining] + "\n<truncated>"
        remaining -= len(text)
        sections.append(f"FILE: {entry}\n{text}")
    return "\n\n".join(sections) or "<none>"


def render_plan_prompt(
    directive: str,
    formatter: str,
    *,
    excluded: Sequence[str],
    workspace_listing: str | None = None,
    revision: Mapping[str, Any] | None = None,
) -> str:
    sections = [directive, formatter, JSON_RESPONSE_INSTRUCTION]
    if workspace_listing:
        sections.append(f"Workspace files:\n{workspace_listing}")
    sections.append(render_excluded_paths(excluded))
    if revision is not None:
        sections.append(
            render_revision_context(revision.get("previous_plan"), revision.get("rejection_reason"))
        )
    return combine(*sections)


def render_step_text(step_text: str, additional_context: str, mode: StepMode) -> str:
    """Append the previous attempt's diagnostics to a step instruction."""
    if not additional_context:
        return step_text
    if mode == "fix_regression":
        tag, label = "failure_summary", "Failure Summary"
    else:
        tag, label = "quality_summary", "Quality Summary"
    return f"{step_text}\n\n{label}:\n{_untrusted(tag, additional_context)}"


def render_step_prompt(step_text: str, mode: StepMode, formatter: str, *, file_contents: str | None = None) -> str:
    sections = [f"{step_text.strip()}\n\nMODE: {mode}"]
    if file_contents:
        sections.append(f"Current file contents:\n{_untrusted('file_contents', file_contents)}")
    sections.extend([formatter, JSON_RESPONSE_INSTRUCTION])
    return combine(*sections)


def render_plan_validation_prompt(validator: str, plan_payload: Any) -> str:
    return combine(
        validator,
        f"Plan JSON:\n{json.dumps(plan_payload, indent=2, default=str)}",
        JSON_RESPONSE_INSTRUCTION,
    )


def render_step_validation_prompt(
    validator: str,
    step_description: str,
    execution_payload: Any,
    snapshots: Mapping[str, str | None],
) -> str:
    snapshot_text = "\n\n".join(
        f"FILE: {path}\n{content if content is not None else '<deleted>'}" for path, content in snapshots.items()
    )
    return combine(
        validator,
        f"Step Description:\n{_untrusted('step_description', step_description)}",
        "Executor Result JSON:\n"
        + _untrusted("executor_result_json", json.dumps(execution_payload, indent=2, default=str)),
        f"Code Snapshots:\n{_untrusted('code_snapshots', snapshot_text or '<none>')}",
        JSON_RESPONSE_INSTRUCTION,
    )


def render_condense_prompt(formatter: str, stdout: str, stderr: str) -> str:
    return combine(
        formatter,
        f"STDOUT:\n{_untrusted('test_stdout', stdout or '<empty>')}",
        f"STDERR:\n{_untrusted('test_stderr', stderr or '<empty>')}",
        JSON_RESPONSE_INSTRUCTION,
    )


def render_pull_request_prompt(formatter: str, run_summary: Mapping[str, Any]) -> str:
    return combine(
        formatter,
        "RUN_SUMMARY_JSON:\n" + json.dumps(run_summary, indent=2, default=str),
        JSON_RESPONSE_INSTRUCTION,
    )


__all__ = [
    "JSON_RESPONSE_INSTRUCTION",
    "asset_path",
    "combine",
    "render_condense_prompt",
    "render_excluded_paths",
    "render_file_contents",
    "render_plan_prompt",
    "render_plan_validation_prompt",
    "render_pull_request_prompt",
    "render_revision_context",
    "render_step_prompt",
    "render_step_text",
    "render_step_validation_prompt",
    "render_workspace_listing",
]
