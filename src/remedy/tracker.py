"""Bounded counter for agent turns consumed by a single plan step."""

from __future__ import annotations

import math


class AttemptTracker:
    """Count agent turns and report whether the budget still allows another.

    Counting is 1-indexed: the first :meth:`record_attempt` call moves the
    counter to 1.  A non-positive ``max_attempts`` disables the ceiling.
    """

    __slots__ = ("_attempts", "_max_attempts")

    def __init__(self, max_attempts: int | float) -> None:
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, (int, float)):
            raise ValueError("max_attempts must be a finite number")
        if not math.isfinite(max_attempts):
            raise ValueError("max_attempts must be a finite number")
        self._attempts = 0
        self._max_attempts: float = math.inf if max_attempts <= 0 else math.floor(max_attempts)

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> float:
        return self._max_attempts

    @property
    def unbounded(self) -> bool:
        return math.isinf(self._max_attempts)

    def record_attempt(self) -> bool:
        """Increment the counter and return ``True`` while within budget."""
        self._attempts += 1
        return self._attempts <= self._max_attempts

    def is_exhausted(self) -> bool:
        """Return ``True`` once the budget has been fully consumed."""
        return self._attempts >= self._max_attempts

    def __repr__(self) -> str:
        limit = "unbounded" if self.unbounded else int(self._max_attempts)
        return f"AttemptTracker(attempts={self._attempts}, max={limit})"


__all__ = ["AttemptTracker"]
