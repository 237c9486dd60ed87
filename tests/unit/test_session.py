from __future__ import annotations

from remedy.session import (
    NO_SESSION,
    ActiveSession,
    SessionFingerprint,
    release_session,
    reusable_session,
)


class _Handle:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


def test_matching_fingerprint_reuses_session() -> None:
    fingerprint = SessionFingerprint("gpt-5", "medium")
    handle = _Handle()
    state = ActiveSession(handle=handle, fingerprint=fingerprint)

    assert reusable_session(state, SessionFingerprint("gpt-5", "medium")) is state
    assert handle.closed is False


def test_mismatched_fingerprint_releases_old_handle() -> None:
    handle = _Handle()
    state = ActiveSession(handle=handle, fingerprint=SessionFingerprint("gpt-5", "medium"))

    result = reusable_session(state, SessionFingerprint("gpt-5", "high"))

    assert result is NO_SESSION
    assert handle.closed is True


def test_absent_session_stays_absent() -> None:
    assert reusable_session(None, SessionFingerprint("gpt-5")) is NO_SESSION
    assert reusable_session(NO_SESSION, SessionFingerprint("gpt-5")) is NO_SESSION
    assert not NO_SESSION.active


def test_release_session_closes_handle() -> None:
    handle = _Handle()
    assert release_session(ActiveSession(handle, SessionFingerprint("m"))) is NO_SESSION
    assert handle.closed
    assert release_session(NO_SESSION) is NO_SESSION


def test_fingerprint_describe() -> None:
    assert SessionFingerprint("gpt-5", "low").describe() == "gpt-5 (reasoning: low)"
    assert SessionFingerprint("gpt-5").describe() == "gpt-5"
