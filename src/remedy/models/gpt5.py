"""Responses API client used for every agent role."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["ResponsesClient"]

LOGGER = logging.getLogger(__name__)

Transport = Callable[[Dict[str, Any], float], str]

DEFAULT_ENDPOINT = "https://api.openai.com/v1/responses"


class ResponsesClient(LLMClient):
    """Posts structured-output payloads; ``transport`` replaces HTTP in tests and offline runs."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_ENDPOINT,
        model: str = "gpt-5",
        transport: Optional[Transport] = None,
        timeout: float = 600.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or os.getenv("REMEDY_API_KEY") or os.getenv("OPENAI_API_KEY")
        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")
        self._endpoint = os.getenv("REMEDY_BASE_URL") or base_url
        self._timeout = timeout
        self._transport: Transport = transport or self._post

    def _raw_invoke(self, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> str:
        wait = timeout if timeout and timeout > 0 else self._timeout
        try:
            envelope = self._transport(payload, wait)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover - transport plug-ins vary
            raise LLMTransportError(f"Transport rejected the request: {error}") from error
        answer = output_text(envelope)
        if answer is None:
            raise LLMResponseFormatError("Response did not contain JSON output text.")
        return answer

    def _post(self, payload: Dict[str, Any], timeout: float) -> str:
        LOGGER.debug("POST %s model=%s", self._endpoint, payload.get("model"))
        request = urllib.request.Request(
            self._endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                return response.read().decode("utf-8")
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {detail}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach {self._endpoint}: {error.reason}") from error
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Model turn timed out after {timeout:.0f}s.") from error


def output_text(envelope: str) -> Optional[str]:
    """Return the model's answer from a Responses API envelope.

    Non-JSON bodies and bare structured payloads are treated as the answer
    itself; JSON content blocks are re-serialised.
    """
    if not envelope:
        return None
    try:
        data = json.loads(envelope)
    except json.JSONDecodeError:
        return envelope
    if not isinstance(data, dict):
        return envelope
    shortcut = data.get("output_text")
    if isinstance(shortcut, str) and shortcut.strip():
        return shortcut
    nested = data.get("response")
    sources = (data.get("output"), nested.get("output") if isinstance(nested, dict) else None, data.get("choices"))
    for source in sources:
        found = next(_texts(source), None)
        if found:
            return found
    return envelope


def _texts(source: Any) -> Iterator[str]:
    items: Iterable[Any] = [source] if isinstance(source, dict) else (source or ())
    for item in items:
        if not isinstance(item, dict):
            continue
        for block in item.get("content") if isinstance(item.get("content"), list) else ():
            if not isinstance(block, dict):
                continue
            if isinstance(block.get("json"), (dict, list)):
                yield json.dumps(block["json"])
            elif isinstance(block.get("text"), str) and block["text"].strip():
                yield block["text"]
        message = item.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str) and message["content"].strip():
            yield message["content"]
