"""Structured-output client base shared by every agent role.

Requests carry a JSON schema and optional conversation history; the client
renders them for the Responses API, retries malformed answers, and repairs
the usual model slips (code fences, smart quotes, trailing commas, Python
literals) before giving up.
"""

from __future__ import annotations

import ast
import copy
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "assistant_message",
    "close_schema",
]

AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Any], Optional[Exception], int], None]

_METADATA_LIMIT = 512


class LLMClientError(RuntimeError):
    """Base error for failed agent turns."""


class LLMTransportError(LLMClientError):
    """The transport returned nothing usable (network, HTTP status, timeout)."""


class LLMResponseFormatError(LLMClientError):
    """The model answered with text that could not be read as JSON."""


class LLMRetryError(LLMClientError):
    """Every attempt of a request failed."""


def close_schema(node: Any) -> Any:
    """Mark every object schema closed and all of its properties required.

    Strict structured output rejects open objects, so this walks the whole
    schema (``$defs`` included) in place and returns it.
    """
    if isinstance(node, list):
        return [close_schema(entry) for entry in node]
    if not isinstance(node, dict):
        return node
    if node.get("type") == "object":
        node["additionalProperties"] = False
        properties = node.get("properties")
        if isinstance(properties, dict):
            required = node.get("required") if isinstance(node.get("required"), list) else []
            node["required"] = required + [name for name in properties if name not in required]
    for key, child in node.items():
        if key == "properties" and isinstance(child, dict):
            for name in child:
                child[name] = close_schema(child[name])
        elif isinstance(child, (dict, list)):
            node[key] = close_schema(child)
    return node


def _message(role: str, text: str) -> Dict[str, Any]:
    kind = "output_text" if role == "assistant" else "input_text"
    return {"role": role, "content": [{"type": kind, "text": text}]}


def assistant_message(text: str) -> Dict[str, Any]:
    """History entry recording a model reply."""
    return _message("assistant", text)


@dataclass(slots=True)
class LLMRequest:
    """One structured-output call, optionally continuing earlier ``history``."""

    prompt: str
    schema: Dict[str, Any]
    schema_name: str = "remedy_response"
    model: Optional[str] = None
    reasoning: Optional[str] = None
    system_prompt: Optional[str] = None
    history: list[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    timeout: Optional[float] = None
    max_attempts: Optional[int] = None

    def user_message(self) -> Dict[str, Any]:
        return _message("user", self.prompt)

    def messages(self) -> list[Dict[str, Any]]:
        rendered = [_message("system", self.system_prompt)] if self.system_prompt else []
        rendered.extend(copy.deepcopy(self.history))
        rendered.append(self.user_message())
        return rendered

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": self.messages(),
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": self.schema_name,
                    "schema": close_schema(copy.deepcopy(self.schema)),
                    "strict": True,
                }
            },
        }
        if self.reasoning:
            payload["reasoning"] = {"effort": self.reasoning}
        if self.metadata:
            payload["metadata"] = {key: _metadata_value(value) for key, value in self.metadata.items()}
        return payload


def _metadata_value(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"), sort_keys=True)
    if len(text) > _METADATA_LIMIT:
        return text[: _METADATA_LIMIT - 3] + "..."
    return text


class LLMClient:
    """Transport-agnostic client that insists on JSON answers.

    Subclasses implement :meth:`_raw_invoke`; everything else (payload
    rendering, parsing, retries) lives here.
    """

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        return self._model

    def invoke_json(
        self,
        request: LLMRequest,
        *,
        logger: Optional[AttemptLogger] = None,
    ) -> tuple[Any, str]:
        """Return ``(parsed, raw_text)``; raise :class:`LLMRetryError` once attempts run out."""
        attempts = request.max_attempts or self._max_attempts
        payload = request.to_payload(self._model)
        failure: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            raw: Optional[str] = None
            try:
                raw = self._raw_invoke(payload, timeout=request.timeout)
                parsed = self._parse_json(raw)
            except (LLMTransportError, LLMResponseFormatError) as error:
                failure = error
                if logger is not None:
                    logger(payload, raw, None, error, attempt)
                if attempt < attempts and self._retry_delay > 0:
                    time.sleep(self._retry_delay)
                continue
            if logger is not None:
                logger(payload, raw, parsed, None, attempt)
            return parsed, raw
        raise LLMRetryError(
            f"No valid JSON from {request.model or self._model} after {attempts} attempt(s): {failure}"
        ) from failure

    def _raw_invoke(self, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> str:
        raise NotImplementedError

    @staticmethod
    def _parse_json(raw_response: str) -> Any:
        """Parse a model answer, trying progressively looser readings."""
        text = (raw_response or "").strip()
        if not text:
            raise LLMResponseFormatError("Model returned an empty response.")
        for candidate in _candidates(text):
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                pass
            literal = _python_literal(candidate)
            if literal is not None:
                return literal
        raise LLMResponseFormatError(f"Model returned invalid JSON: {text[:200]}")


_TYPOGRAPHY = str.maketrans(
    {
        "\u201c": '"',
        "\u201d": '"',
        "\u2018": "'",
        "\u2019": "'",
        "\uff07": "'",
        "\u2013": "-",
        "\u2014": "-",
        "\u2026": "...",
        "\u00a0": " ",
        "\ufeff": "",
    }
)
_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n(?P<body>.*?)\n?```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def _candidates(text: str) -> Iterator[str]:
    """Yield the raw text, then de-fenced, then the first balanced JSON value."""
    seen: set[str] = set()
    plain = text.translate(_TYPOGRAPHY)
    fenced = _FENCE_RE.match(plain)
    body = fenced.group("body").strip() if fenced else plain
    for candidate in (plain, body, _TRAILING_COMMA_RE.sub(r"\1", body), _balanced_value(body)):
        if candidate and candidate not in seen:
            seen.add(candidate)
            yield candidate


def _balanced_value(text: str) -> Optional[str]:
    """Return the first bracket-balanced ``{...}``/``[...]`` span, trailing commas removed."""
    start = next((index for index, char in enumerate(text) if char in "{["), None)
    if start is None:
        return None
    closers: list[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            closers.append("}" if char == "{" else "]")
        elif closers and char == closers[-1]:
            closers.pop()
            if not closers:
                return _TRAILING_COMMA_RE.sub(r"\1", text[start : index + 1])
    return None


def _python_literal(candidate: str) -> Any:
    try:
        value = ast.literal_eval(candidate)
    except (SyntaxError, ValueError, TypeError):
        return None
    if not isinstance(value, (dict, list, tuple)):
        return None
    return _jsonable(value)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
