"""Agent Executor contract and the LLM-backed implementation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol

from ..session import ActiveSession, SessionFingerprint, SessionState, reusable_session
from .llm_client import LLMClient, LLMRequest, assistant_message

__all__ = [
    "AgentEvent",
    "AgentExecutor",
    "AgentRequest",
    "AgentTurn",
    "Conversation",
    "LLMAgentExecutor",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AgentEvent:
    """Progress notification emitted while a turn is running."""

    kind: str
    text: str = ""


EventSink = Callable[[AgentEvent], None]


@dataclass(slots=True)
class AgentRequest:
    """One agent turn: a prompt plus the JSON schema its answer must follow."""

    prompt: str
    output_schema: Dict[str, Any]
    fingerprint: SessionFingerprint
    schema_name: str = "remedy_response"
    timeout: Optional[float] = None
    label: str = "agent"
    metadata: Dict[str, Any] = field(default_factory=dict)
    on_event: Optional[EventSink] = None

    def emit(self, kind: str, text: str = "") -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(AgentEvent(kind=kind, text=text))
        except Exception:  # pragma: no cover - sinks are logging only
            LOGGER.debug("Event sink for %s raised; ignoring", self.label, exc_info=True)


@dataclass(slots=True)
class AgentTurn:
    """Structured result, raw text, and the session to continue with."""

    structured: Any
    raw_text: str
    session: SessionState


class AgentExecutor(Protocol):
    """Anything able to run an agent turn, optionally continuing a session."""

    async def run(self, request: AgentRequest, session: SessionState | None = None) -> AgentTurn:
        ...


class Conversation:
    """Message history shared by turns that continue the same session."""

    __slots__ = ("messages", "closed")

    def __init__(self) -> None:
        self.messages: list[Dict[str, Any]] = []
        self.closed = False

    def record(self, user: Dict[str, Any], assistant: Dict[str, Any]) -> None:
        self.messages.extend((user, assistant))

    def close(self) -> None:
        self.messages.clear()
        self.closed = True

    def __len__(self) -> int:
        return len(self.messages)


class LLMAgentExecutor:
    """Run agent turns through an :class:`LLMClient` off the event loop."""

    def __init__(self, client: LLMClient) -> None:
        self._client = client

    @property
    def client(self) -> LLMClient:
        return self._client

    async def run(self, request: AgentRequest, session: SessionState | None = None) -> AgentTurn:
        state = reusable_session(session, request.fingerprint)
        if isinstance(state, ActiveSession) and not state.handle.closed:
            conversation: Conversation = state.handle
        else:
            conversation = Conversation()

        llm_request = LLMRequest(
            prompt=request.prompt,
            schema=request.output_schema,
            schema_name=request.schema_name,
            model=request.fingerprint.model,
            reasoning=request.fingerprint.reasoning,
            history=list(conversation.messages),
            metadata=dict(request.metadata),
            timeout=request.timeout,
        )

        def _attempt_logger(payload, raw, parsed, error, attempt) -> None:
            if error is not None:
                request.emit("attempt.failed", f"attempt {attempt}: {error}")
            else:
                request.emit("attempt.completed", f"attempt {attempt}")

        request.emit("turn.started", request.label)
        structured, raw = await asyncio.to_thread(
            self._client.invoke_json, llm_request, logger=_attempt_logger
        )
        conversation.record(llm_request.user_message(), assistant_message(raw))
        request.emit("turn.completed", request.label)
        return AgentTurn(
            structured=structured,
            raw_text=raw,
            session=ActiveSession(handle=conversation, fingerprint=request.fingerprint),
        )
