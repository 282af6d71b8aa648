"""Failure containment for user-supplied callbacks.

Every call into a source (generators, runtime conditions, code-action
callbacks) goes through ``ErrorReporter.attempt``. A raised exception becomes
a ``WarningEvent`` carrying the source name, the method and a message, and the
caller receives an ``Attempt`` describing the failure instead of the
exception itself.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_EVENT_HISTORY = 200

T = TypeVar("T")


class WarningKind(str, Enum):
    ERROR = "error"
    TIMEOUT = "timeout"
    INVALID = "invalid"


@dataclass(frozen=True)
class WarningEvent:
    source: str
    method: str
    message: str
    kind: WarningKind = WarningKind.ERROR


@dataclass(frozen=True)
class Attempt:
    ok: bool
    value: object = None
    error: Exception | None = None


WarningListener = Callable[[WarningEvent], None]


def describe_error(error: BaseException) -> str:
    text = str(error).strip()
    if not text:
        return type(error).__name__
    return f"{type(error).__name__}: {text}"


class ErrorReporter:
    def __init__(self, *, history: int = DEFAULT_EVENT_HISTORY) -> None:
        self._events: deque[WarningEvent] = deque(maxlen=history)
        self._listeners: list[WarningListener] = []

    @property
    def events(self) -> tuple[WarningEvent, ...]:
        return tuple(self._events)

    def clear(self) -> None:
        self._events.clear()

    def subscribe(self, listener: WarningListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def warn(
        self,
        source: str,
        method: str,
        message: str,
        *,
        kind: WarningKind = WarningKind.ERROR,
    ) -> WarningEvent:
        event = WarningEvent(source=source, method=str(method), message=message, kind=kind)
        self._events.append(event)
        logger.warning("%s [%s] %s", event.source, event.method, event.message)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("warning listener %r failed", listener)
        return event

    def attempt(
        self,
        fn: Callable[..., object],
        *args: object,
        source: str,
        method: str,
    ) -> Attempt:
        try:
            value = fn(*args)
        except Exception as exc:
            self.warn(source, method, describe_error(exc))
            return Attempt(ok=False, error=exc)
        return Attempt(ok=True, value=value)

    def wrap(
        self,
        fn: Callable[..., T],
        *,
        source: str,
        method: str,
        default: object = None,
    ) -> Callable[..., T | object]:
        def _safe(*args: object) -> T | object:
            outcome = self.attempt(fn, *args, source=source, method=method)
            return outcome.value if outcome.ok else default

        return _safe
