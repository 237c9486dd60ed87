from __future__ import annotations

import json
from typing import Any, Dict, Optional

import pytest

from remedy.models.executor import AgentRequest, Conversation, LLMAgentExecutor
from remedy.models.llm_client import LLMClient
from remedy.session import ActiveSession, SessionFingerprint, release_session

SCHEMA = {"type": "object", "properties": {"answer": {"type": "string"}}}
FAST = SessionFingerprint(model="fast", reasoning="low")
SLOW = SessionFingerprint(model="slow", reasoning="high")


class _EchoClient(LLMClient):
    def __init__(self) -> None:
        super().__init__("echo", max_attempts=1)
        self.payloads: list[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> str:
        self.payloads.append(payload)
        return json.dumps({"answer": f"turn {len(self.payloads)}"})


def _request(prompt: str, fingerprint: SessionFingerprint) -> AgentRequest:
    return AgentRequest(prompt=prompt, output_schema=SCHEMA, fingerprint=fingerprint, metadata={"phase": "plan"})


@pytest.mark.asyncio
async def test_continued_session_replays_history() -> None:
    client = _EchoClient()
    executor = LLMAgentExecutor(client)

    first = await executor.run(_request("first", FAST))
    second = await executor.run(_request("second", FAST), first.session)

    assert second.structured == {"answer": "turn 2"}
    assert isinstance(second.session, ActiveSession)
    assert second.session.handle is first.session.handle
    replayed = [message["content"][0]["text"] for message in client.payloads[1]["input"]]
    assert replayed == ["first", '{"answer": "turn 1"}', "second"]
    assert client.payloads[1]["model"] == "fast"


@pytest.mark.asyncio
async def test_fingerprint_change_starts_fresh_session() -> None:
    client = _EchoClient()
    executor = LLMAgentExecutor(client)

    first = await executor.run(_request("first", FAST))
    second = await executor.run(_request("second", SLOW), first.session)

    assert first.session.handle.closed
    assert second.session.handle is not first.session.handle
    assert len(client.payloads[1]["input"]) == 1
    assert client.payloads[1]["reasoning"] == {"effort": "high"}


@pytest.mark.asyncio
async def test_released_session_is_not_reused() -> None:
    client = _EchoClient()
    executor = LLMAgentExecutor(client)
    events: list[str] = []

    first = await executor.run(_request("first", FAST))
    release_session(first.session)
    request = _request("second", FAST)
    request.on_event = lambda event: events.append(event.kind)
    second = await executor.run(request, first.session)

    assert isinstance(second.session.handle, Conversation)
    assert second.session.handle is not first.session.handle
    assert len(client.payloads[1]["input"]) == 1
    assert events == ["turn.started", "attempt.completed", "turn.completed"]
