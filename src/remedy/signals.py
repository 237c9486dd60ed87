"""Process-wide exit request read by the Audit Loop between auditor turns."""

from __future__ import annotations

import logging
import signal
from typing import Any

LOGGER = logging.getLogger(__name__)


class ExitSignal:
    """Cooperative exit flag.

    Nothing is interrupted when the flag is set; the Audit Loop polls it at
    the top of each auditor turn and stops there.
    """

    __slots__ = ("_requested", "_reason")

    def __init__(self) -> None:
        self._requested = False
        self._reason: str | None = None

    def request(self, reason: str = "exit requested") -> None:
        if not self._requested:
            LOGGER.info("Exit requested (%s); finishing the current auditor turn.", reason)
        self._requested = True
        self._reason = reason

    def is_requested(self) -> bool:
        return self._requested

    @property
    def reason(self) -> str | None:
        return self._reason

    def reset(self) -> None:
        self._requested = False
        self._reason = None


EXIT_SIGNAL = ExitSignal()


def install_sigint_handler(exit_signal: ExitSignal = EXIT_SIGNAL) -> Any:
    """Route the first SIGINT to ``exit_signal``; a second one interrupts immediately.

    Returns the previous handler so callers can restore it.
    """

    def _handler(signum: int, frame: Any) -> None:
        if exit_signal.is_requested():
            raise KeyboardInterrupt
        exit_signal.request("SIGINT")

    return signal.signal(signal.SIGINT, _handler)


__all__ = ["EXIT_SIGNAL", "ExitSignal", "install_sigint_handler"]
