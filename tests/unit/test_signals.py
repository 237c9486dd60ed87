from __future__ import annotations

import signal

import pytest

from remedy.signals import ExitSignal, install_sigint_handler


def test_first_interrupt_requests_exit_and_second_raises() -> None:
    exit_signal = ExitSignal()
    previous = install_sigint_handler(exit_signal)
    try:
        handler = signal.getsignal(signal.SIGINT)
        handler(signal.SIGINT, None)
        assert exit_signal.is_requested()
        assert exit_signal.reason == "SIGINT"
        with pytest.raises(KeyboardInterrupt):
            handler(signal.SIGINT, None)
    finally:
        signal.signal(signal.SIGINT, previous)


def test_reset_clears_the_request() -> None:
    exit_signal = ExitSignal()
    exit_signal.request("done")
    exit_signal.reset()
    assert not exit_signal.is_requested()
    assert exit_signal.reason is None
