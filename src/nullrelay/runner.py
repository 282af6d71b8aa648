"""Concurrent execution of matched generators.

Each matched source gets one ``Invocation``. Invocations move from PENDING to
RUNNING when the safe executor runs them, and from RUNNING to exactly one
terminal state. Anything that arrives after the terminal transition (a second
``done()`` call, a result delivered after the deadline) is dropped.

Three generator styles are supported:

* plain callables, whose return value is the result list;
* callback-async callables (``async=True``), which receive a ``DoneHandle``
  and must call it with the result list;
* coroutine functions, which are awaited as tasks.

The latter two are bounded by a per-invocation deadline.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from nullrelay.deadline import DEFAULT_TIMEOUT_MS, resolve_timeout_ms
from nullrelay.deadline_clock import MonotonicClock
from nullrelay.exceptions import GeneratorError, GeneratorTimeout
from nullrelay.host import SafeExecutor
from nullrelay.invariants import never
from nullrelay.model import Params, Source
from nullrelay.reporter import ErrorReporter, WarningKind, describe_error

logger = logging.getLogger(__name__)

_CLOCK = MonotonicClock()


class InvocationState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset(
    {InvocationState.COMPLETED, InvocationState.FAILED, InvocationState.TIMED_OUT}
)


class Invocation:
    def __init__(
        self,
        source: Source,
        params: Params,
        *,
        timeout_ms: int,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.source = source
        self.params = params
        self.timeout_ms = timeout_ms
        self.state = InvocationState.PENDING
        self.results: tuple[object, ...] = ()
        self.error: Optional[Exception] = None
        self.finished: asyncio.Future[None] = loop.create_future()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._started_ns = 0
        self._elapsed_ns = 0

    def __repr__(self) -> str:
        return f"Invocation({self.source_name!r}, {self.state.value})"

    @property
    def source_name(self) -> str:
        return self.source.display_name

    @property
    def method(self) -> str:
        return self.params.method.value

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def elapsed_ms(self) -> float:
        return self._elapsed_ns / 1_000_000

    @property
    def contribution(self) -> tuple[object, ...]:
        if self.state is InvocationState.COMPLETED:
            return self.results
        return ()

    def start(self) -> None:
        if self.state is not InvocationState.PENDING:
            never("invocation started twice", source=self.source_name, state=self.state.value)
        self.state = InvocationState.RUNNING
        self._started_ns = _CLOCK.get_mark()

    def arm(self, timer: asyncio.TimerHandle) -> None:
        self._timer = timer

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def complete(self, results: tuple[object, ...]) -> bool:
        return self._finish(InvocationState.COMPLETED, results=results)

    def fail(self, error: Exception) -> bool:
        return self._finish(InvocationState.FAILED, error=error)

    def time_out(self) -> bool:
        error = GeneratorTimeout(
            source_name=self.source_name,
            method=self.method,
            timeout_ms=self.timeout_ms,
        )
        return self._finish(InvocationState.TIMED_OUT, error=error)

    def _finish(
        self,
        state: InvocationState,
        *,
        results: tuple[object, ...] = (),
        error: Optional[Exception] = None,
    ) -> bool:
        if self.terminal:
            return False
        if self._started_ns:
            self._elapsed_ns = _CLOCK.get_mark() - self._started_ns
        self.state = state
        self.results = results
        self.error = error
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if not self.finished.done():
            self.finished.set_result(None)
        logger.debug(
            "%s %s for %s after %.1fms",
            self.source_name,
            state.value,
            self.method,
            self.elapsed_ms,
        )
        return True


class DoneHandle:
    """Completion callback handed to callback-async generators."""

    def __init__(self, runner: "GeneratorRunner", invocation: Invocation) -> None:
        self._runner = runner
        self._invocation = invocation
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def __call__(self, results: object = None) -> None:
        if self._fired:
            logger.debug("ignoring repeated done() from %s", self._invocation.source_name)
            return
        self._fired = True
        self._runner.executor.schedule(self._runner.resolve, self._invocation, results)


@dataclass(frozen=True)
class Batch:
    invocations: tuple[Invocation, ...]

    def __len__(self) -> int:
        return len(self.invocations)

    @property
    def pending(self) -> tuple[Invocation, ...]:
        return tuple(invocation for invocation in self.invocations if not invocation.terminal)

    @property
    def complete(self) -> bool:
        return not self.pending


def expire(
    invocation: Invocation,
    reporter: ErrorReporter,
    *,
    limit_ms: int | None = None,
    reason: str = "",
) -> bool:
    if not invocation.time_out():
        return False
    limit = invocation.timeout_ms if limit_ms is None else limit_ms
    message = f"timed out after {limit}ms"
    if reason:
        message = f"{message} ({reason})"
    reporter.warn(
        invocation.source_name,
        invocation.method,
        message,
        kind=WarningKind.TIMEOUT,
    )
    return True


def normalize_results(value: object) -> tuple[object, ...] | None:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return None


class GeneratorRunner:
    def __init__(
        self,
        executor: SafeExecutor,
        reporter: ErrorReporter,
        *,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self.executor = executor
        self.reporter = reporter
        self.default_timeout_ms = default_timeout_ms

    def start(
        self,
        matches: Iterable[tuple[Source, Params]],
        *,
        timeout_ms: int | None = None,
    ) -> Batch:
        """Schedule one invocation per match and return without waiting."""
        loop = asyncio.get_running_loop()
        invocations = tuple(
            Invocation(
                source,
                params,
                timeout_ms=resolve_timeout_ms(
                    timeout_ms,
                    source.generator.options.get("timeout"),
                    default=self.default_timeout_ms,
                ),
                loop=loop,
            )
            for source, params in matches
        )
        for invocation in invocations:
            self.executor.schedule(self._invoke, invocation)
        return Batch(invocations)

    def resolve(self, invocation: Invocation, value: object) -> None:
        if invocation.terminal:
            logger.debug(
                "discarding result from %s delivered after it was %s",
                invocation.source_name,
                invocation.state.value,
            )
            return
        results = normalize_results(value)
        if results is None:
            error = GeneratorError(
                f"generator returned {type(value).__name__}, expected a list or None",
                source_name=invocation.source_name,
                method=invocation.method,
            )
            self.reporter.warn(
                invocation.source_name,
                invocation.method,
                str(error),
                kind=WarningKind.INVALID,
            )
            invocation.fail(error)
            return
        invocation.complete(results)

    def _expire(self, invocation: Invocation) -> None:
        expire(invocation, self.reporter)

    def _invoke(self, invocation: Invocation) -> None:
        if invocation.terminal:
            return
        invocation.start()
        generator = invocation.source.generator
        if inspect.iscoroutinefunction(generator.fn):
            self._invoke_coroutine(invocation)
        elif generator.is_async:
            self._invoke_callback(invocation)
        else:
            self._invoke_sync(invocation)

    def _attempt(self, invocation: Invocation, *args: object):
        return self.reporter.attempt(
            invocation.source.generator.fn,
            *args,
            source=invocation.source_name,
            method=invocation.method,
        )

    def _invoke_sync(self, invocation: Invocation) -> None:
        outcome = self._attempt(invocation, invocation.params)
        if not outcome.ok:
            invocation.fail(self._wrap_error(invocation, outcome.error))
            return
        self.resolve(invocation, outcome.value)

    def _invoke_callback(self, invocation: Invocation) -> None:
        self._arm(invocation)
        outcome = self._attempt(invocation, invocation.params, DoneHandle(self, invocation))
        if not outcome.ok:
            invocation.fail(self._wrap_error(invocation, outcome.error))

    def _invoke_coroutine(self, invocation: Invocation) -> None:
        outcome = self._attempt(invocation, invocation.params)
        if not outcome.ok:
            invocation.fail(self._wrap_error(invocation, outcome.error))
            return
        task = asyncio.ensure_future(outcome.value)
        invocation.attach(task)
        task.add_done_callback(lambda done: self._on_task_done(invocation, done))
        self._arm(invocation)

    def _on_task_done(self, invocation: Invocation, task: asyncio.Task) -> None:
        if invocation.terminal:
            return
        if task.cancelled():
            error = GeneratorError(
                "generator task was cancelled",
                source_name=invocation.source_name,
                method=invocation.method,
            )
            self.reporter.warn(invocation.source_name, invocation.method, str(error))
            invocation.fail(error)
            return
        error = task.exception()
        if error is not None:
            self.reporter.warn(
                invocation.source_name, invocation.method, describe_error(error)
            )
            invocation.fail(self._wrap_error(invocation, error))
            return
        self.resolve(invocation, task.result())

    def _arm(self, invocation: Invocation) -> None:
        loop = asyncio.get_running_loop()
        invocation.arm(
            loop.call_later(invocation.timeout_ms / 1000, self._expire, invocation)
        )

    @staticmethod
    def _wrap_error(invocation: Invocation, error: Exception | None) -> Exception:
        if isinstance(error, GeneratorError):
            return error
        wrapped = GeneratorError(
            str(error) if error is not None else "generator failed",
            source_name=invocation.source_name,
            method=invocation.method,
        )
        wrapped.__cause__ = error
        return wrapped
