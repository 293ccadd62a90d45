"""Runaway-generation guard: length, duration and repetition loop limits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional
import time


class StreamGuardTripped(RuntimeError):
    """Raised when a generation breaks one of the guard limits."""


@dataclass(frozen=True)
class GuardVerdict:
    allowed: bool
    reason: Optional[str] = None


ALLOWED = GuardVerdict(True)


class StreamGuard:
    def __init__(
        self,
        max_response_chars: int = 50000,
        timeout_sec: float = 120.0,
        max_repetitions: int = 5,
        min_pattern_len: int = 5,
        max_pattern_len: int = 80,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_response_chars = max_response_chars
        self.timeout_sec = timeout_sec
        self.max_repetitions = max(2, max_repetitions)
        self.min_pattern_len = min_pattern_len
        self.max_pattern_len = max_pattern_len
        self._clock = clock
        self._started = clock()
        self._length = 0

    def check(self, delta: str, content: str) -> GuardVerdict:
        """Inspect one delta; ``content`` is everything generated so far, delta included."""
        if self._clock() - self._started > self.timeout_sec:
            return GuardVerdict(False, "Response timeout exceeded")

        self._length += len(delta)
        if self._length > self.max_response_chars:
            return GuardVerdict(False, "Response length limit exceeded")

        pattern = self._repeating_tail(content)
        if pattern is not None:
            preview = pattern[:20] + ("..." if len(pattern) > 20 else "")
            return GuardVerdict(
                False,
                f'Detected repetitive pattern: "{preview}" repeated {self.max_repetitions} times',
            )
        return ALLOWED

    def _repeating_tail(self, content: str) -> Optional[str]:
        n = self.max_repetitions
        upper = min(self.max_pattern_len, len(content) // n)
        for size in range(self.min_pattern_len, upper + 1):
            pattern = content[-size:]
            if len(pattern.strip()) < self.min_pattern_len:
                continue
            if content.endswith(pattern * n):
                return pattern
        return None
