from __future__ import annotations

import json
from typing import Any, Dict, Optional

import pytest

from remedy.models.gpt5 import ResponsesClient
from remedy.models.llm_client import (
    LLMClient,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    close_schema,
)

SCHEMA = {
    "type": "object",
    "properties": {"valid": {"type": "boolean"}, "reason": {"type": "string"}},
}


class _QueuedClient(LLMClient):
    def __init__(self, *responses: str) -> None:
        super().__init__("test-model", max_attempts=3, retry_delay=0.0)
        self.responses = list(responses)
        self.payloads: list[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> str:
        self.payloads.append(payload)
        return self.responses.pop(0)


def test_parse_json_repairs_fenced_output_with_trailing_commas() -> None:
    raw = '```json\n{"valid": true, "reason": "ok",}\n```'
    assert LLMClient._parse_json(raw) == {"valid": True, "reason": "ok"}


def test_parse_json_rejects_prose() -> None:
    with pytest.raises(LLMResponseFormatError):
        LLMClient._parse_json("I could not decide.")


def test_close_schema_forbids_unknown_keys() -> None:
    closed = close_schema(json.loads(json.dumps(SCHEMA)))
    assert closed["additionalProperties"] is False
    assert closed["required"] == ["valid", "reason"]


def test_request_payload_carries_history_and_reasoning() -> None:
    history = [{"role": "user", "content": [{"type": "input_text", "text": "earlier"}]}]
    request = LLMRequest(
        prompt="now",
        schema=SCHEMA,
        schema_name="verdict",
        reasoning="high",
        history=history,
        metadata={"phase": "validate_plan", "extra": {"a": 1}},
    )
    payload = request.to_payload("default-model")

    assert payload["model"] == "default-model"
    assert payload["reasoning"] == {"effort": "high"}
    assert [message["content"][0]["text"] for message in payload["input"]] == ["earlier", "now"]
    assert payload["text"]["format"]["name"] == "verdict"
    assert payload["metadata"] == {"phase": "validate_plan", "extra": '{"a":1}'}


def test_invoke_json_retries_until_valid() -> None:
    client = _QueuedClient("not json", '{"valid": false, "reason": "nope"}')
    data, raw = client.invoke_json(LLMRequest(prompt="judge", schema=SCHEMA))

    assert data == {"valid": False, "reason": "nope"}
    assert raw == '{"valid": false, "reason": "nope"}'
    assert len(client.payloads) == 2


def test_invoke_json_raises_after_exhausting_attempts() -> None:
    client = _QueuedClient("nope", "still nope", "never")
    attempts: list[int] = []

    def logger(payload, raw, parsed, error, attempt) -> None:
        attempts.append(attempt)

    with pytest.raises(LLMRetryError):
        client.invoke_json(LLMRequest(prompt="judge", schema=SCHEMA), logger=logger)
    assert attempts == [1, 2, 3]


def test_responses_client_extracts_output_text() -> None:
    seen: list[float] = []

    def transport(payload: Dict[str, Any], timeout: float) -> str:
        seen.append(timeout)
        return json.dumps(
            {
                "output": [
                    {
                        "type": "message",
                        "role": "assistant",
                        "content": [{"type": "output_text", "text": '{"valid": true, "reason": "fine"}'}],
                    }
                ]
            }
        )

    client = ResponsesClient(model="gpt-5-mini", transport=transport, timeout=42.0)
    data, _ = client.invoke_json(LLMRequest(prompt="judge", schema=SCHEMA))

    assert data == {"valid": True, "reason": "fine"}
    assert seen == [42.0]


def test_responses_client_accepts_json_content_blocks() -> None:
    def transport(payload: Dict[str, Any], timeout: float) -> str:
        return json.dumps({"output": [{"content": [{"type": "output_json", "json": {"valid": True}}]}]})

    client = ResponsesClient(transport=transport)
    data, _ = client.invoke_json(LLMRequest(prompt="judge", schema=SCHEMA, timeout=5))
    assert data == {"valid": True}


def test_responses_client_requires_api_key_without_transport(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("REMEDY_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        ResponsesClient()
