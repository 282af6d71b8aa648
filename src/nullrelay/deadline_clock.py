from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
import time


class DeadlineClock(Protocol):
    def get_mark(self) -> int:
        """Return the current monotonic mark in nanoseconds."""


@dataclass(frozen=True)
class MonotonicClock:
    """Default wall-clock implementation used when no clock is injected."""

    def get_mark(self) -> int:
        return time.monotonic_ns()


@dataclass
class ManualClock:
    """Clock advanced explicitly; used to test deadline arithmetic."""

    current: int = 0

    def advance_ms(self, milliseconds: int) -> None:
        self.current += int(milliseconds) * 1_000_000

    def get_mark(self) -> int:
        return self.current
