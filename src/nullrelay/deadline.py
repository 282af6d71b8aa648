from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from nullrelay.deadline_clock import DeadlineClock, MonotonicClock
from nullrelay.invariants import never

DEFAULT_TIMEOUT_MS = 5_000
DEFAULT_BATCH_TIMEOUT_MS = 10_000

_SYSTEM_CLOCK = MonotonicClock()


@dataclass(frozen=True)
class Deadline:
    deadline_ns: int
    clock: DeadlineClock = field(default=_SYSTEM_CLOCK, compare=False, repr=False)

    @classmethod
    def from_timeout_ms(
        cls,
        milliseconds: int,
        *,
        clock: DeadlineClock | None = None,
    ) -> "Deadline":
        ms_value = int(milliseconds)
        if ms_value < 0:
            never("invalid timeout ms", ms=milliseconds)
        active_clock = clock if clock is not None else _SYSTEM_CLOCK
        return cls(
            deadline_ns=active_clock.get_mark() + ms_value * 1_000_000,
            clock=active_clock,
        )

    def remaining_ns(self) -> int:
        return max(0, self.deadline_ns - self.clock.get_mark())

    def remaining_seconds(self) -> float:
        return self.remaining_ns() / 1_000_000_000

    def expired(self) -> bool:
        return self.clock.get_mark() >= self.deadline_ns


def coerce_timeout_ms(value: object) -> int | None:
    """Return a positive millisecond count, or None when value is unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if parsed <= 0:
        return None
    return int(parsed)


def resolve_timeout_ms(*candidates: object, default: int = DEFAULT_TIMEOUT_MS) -> int:
    for candidate in candidates:
        timeout = coerce_timeout_ms(candidate)
        if timeout is not None:
            return timeout
    return default
