"""Conversation continuity handles for agent turns.

A session is either absent or active.  An active session pairs an opaque
handle owned by the executor with the model/reasoning fingerprint it was
created under; a turn requested under a different fingerprint must start a
fresh session and release the old one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SessionFingerprint:
    """Configuration a session was created under."""

    model: str
    reasoning: str | None = None

    def describe(self) -> str:
        if self.reasoning:
            return f"{self.model} (reasoning: {self.reasoning})"
        return self.model


@dataclass(slots=True, frozen=True)
class NoSession:
    """Marker for "start a fresh conversation"."""

    @property
    def active(self) -> bool:
        return False


@dataclass(slots=True, frozen=True)
class ActiveSession:
    """Live conversation handle plus the fingerprint it belongs to."""

    handle: Any
    fingerprint: SessionFingerprint

    @property
    def active(self) -> bool:
        return True


SessionState = Union[NoSession, ActiveSession]

NO_SESSION = NoSession()


def reusable_session(state: SessionState | None, fingerprint: SessionFingerprint) -> SessionState:
    """Return ``state`` when it may continue under ``fingerprint``.

    A mismatched active session is released and :data:`NO_SESSION` is
    returned so the caller starts a new conversation.
    """
    if not isinstance(state, ActiveSession):
        return NO_SESSION
    if state.fingerprint == fingerprint:
        return state
    LOGGER.debug(
        "Discarding session created for %s; next turn uses %s",
        state.fingerprint.describe(),
        fingerprint.describe(),
    )
    release_session(state)
    return NO_SESSION


def release_session(state: SessionState | None) -> NoSession:
    """Release the handle held by ``state`` and return :data:`NO_SESSION`."""
    if isinstance(state, ActiveSession):
        closer = getattr(state.handle, "close", None)
        if callable(closer):
            closer()
    return NO_SESSION


__all__ = [
    "ActiveSession",
    "NO_SESSION",
    "NoSession",
    "SessionFingerprint",
    "SessionState",
    "release_session",
    "reusable_session",
]
