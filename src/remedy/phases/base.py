"""Shared plumbing for agent phases: one turn in, one JSON phase log out."""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..models.executor import AgentEvent, AgentExecutor, AgentRequest, AgentTurn
from ..session import SessionState

LOGGER = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^a-zA-Z0-9]+")


@dataclass(slots=True)
class PhaseContext:
    """Collaborators every phase needs: the executor and where to log."""

    executor: AgentExecutor
    cwd: Path
    logs_dir: Path | None = None
    timeout: float | None = None

    def event_sink(self, label: str):
        def _sink(event: AgentEvent) -> None:
            LOGGER.debug("[%s] %s %s", label, event.kind, event.text)

        return _sink


@dataclass(slots=True)
class PhaseRecord:
    """One agent turn as written under ``<logs>/phases``."""

    phase: str
    request: Any
    agent_request: AgentRequest
    started: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def document(self, *, raw: str | None, result: Any, error: BaseException | None) -> dict[str, Any]:
        fingerprint = self.agent_request.fingerprint
        document: dict[str, Any] = {
            "timestamp": self.started.isoformat(),
            "phase": self.phase,
            "label": self.agent_request.label,
            "model": fingerprint.model,
            "reasoning": fingerprint.reasoning,
            "request": to_jsonable(self.request),
            "prompt": self.agent_request.prompt,
        }
        if raw is not None:
            document["raw"] = raw
        if result is not None:
            document["result"] = to_jsonable(result)
        if error is not None:
            document["error"] = f"{type(error).__name__}: {error}"
        return document

    def file_name(self) -> str:
        stamp = self.started.strftime("%Y%m%dT%H%M%S%fZ")
        parts = ("phase", _token(self.phase), _token(self.agent_request.label), stamp, uuid.uuid4().hex[:6])
        return "__".join(parts) + ".json"

    def write(
        self,
        logs_dir: Path | None,
        *,
        raw: str | None = None,
        result: Any = None,
        error: BaseException | None = None,
    ) -> Path | None:
        """Write the record; logging failures never interrupt the pipeline."""
        if logs_dir is None:
            return None
        target = logs_dir / "phases" / self.file_name()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(
                json.dumps(self.document(raw=raw, result=result, error=error), indent=2, sort_keys=True, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as write_error:
            LOGGER.debug("Unable to write phase log %s: %s", target, write_error)
            return None
        return target


async def invoke_phase(
    phase: str,
    request: Any,
    agent_request: AgentRequest,
    *,
    context: PhaseContext,
    session: SessionState | None = None,
) -> AgentTurn:
    """Run one agent turn, recording it whether it succeeds or raises."""
    if agent_request.on_event is None:
        agent_request.on_event = context.event_sink(agent_request.label)
    if agent_request.timeout is None:
        agent_request.timeout = context.timeout
    record = PhaseRecord(phase, request, agent_request)
    try:
        turn = await context.executor.run(agent_request, session)
    except Exception as error:
        record.write(context.logs_dir, error=error)
        raise
    record.write(context.logs_dir, raw=turn.raw_text, result=turn.structured)
    return turn


def to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, Path):
        return value.as_posix()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return repr(value)


def _token(value: str) -> str:
    return _UNSAFE.sub("-", value or "").strip("-").lower()[:48] or "item"


__all__ = ["PhaseContext", "PhaseRecord", "invoke_phase", "to_jsonable"]
