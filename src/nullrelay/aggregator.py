"""Per-method merging of generator results.

The aggregator owns three decisions: how long to wait for a batch, whether a
finished batch is still the newest one for its buffer and method, and how the
surviving items are validated and merged. Items are validated one at a time
so a single malformed item costs only itself.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

from pydantic import ValidationError

from nullrelay.action_cache import ActionCache
from nullrelay.config import EngineConfig
from nullrelay.deadline import Deadline, resolve_timeout_ms
from nullrelay.host import DiagnosticsSink, EditSink, SafeExecutor
from nullrelay.model import (
    DEFAULT_DIAGNOSTIC_SOURCE,
    ActionTitle,
    CachedAction,
    CodeActionMenu,
    CompletionItem,
    Diagnostic,
    FormattingEdit,
    Method,
)
from nullrelay.reporter import ErrorReporter, WarningKind
from nullrelay.runner import Batch, Invocation, expire
from nullrelay.schema import (
    HOVER_LINE,
    CodeActionDTO,
    CompletionItemDTO,
    DiagnosticDTO,
    FormattingEditDTO,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ticket:
    buffer_id: int
    method: Method
    serial: int


@dataclass(frozen=True)
class Superseded:
    ticket: Ticket


_PLACEHOLDER = re.compile(r"#\{([msc])\}")

MergedResult = Union[
    list[Diagnostic],
    list[FormattingEdit],
    list[CompletionItem],
    list[str],
    CodeActionMenu,
    Superseded,
]


def format_diagnostic_message(template: str, *, message: str, source: str, code: object) -> str:
    values = {"m": message, "s": source, "c": "" if code is None else str(code)}
    return _PLACEHOLDER.sub(lambda match: values[match.group(1)], template)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "item"
    return f"{location}: {first.get('msg', 'invalid value')}"


class ResultAggregator:
    def __init__(
        self,
        reporter: ErrorReporter,
        cache: ActionCache,
        executor: SafeExecutor,
        *,
        diagnostics_sink: Optional[DiagnosticsSink] = None,
        edit_sink: Optional[EditSink] = None,
        config: EngineConfig = EngineConfig(),
    ) -> None:
        self._reporter = reporter
        self._cache = cache
        self._executor = executor
        self._diagnostics_sink = diagnostics_sink
        self._edit_sink = edit_sink
        self._config = config
        self._latest: dict[tuple[int, Method], int] = {}
        self._serials = itertools.count(1)
        self._mergers: dict[Method, Callable[[Ticket, Batch], MergedResult]] = {
            Method.DIAGNOSTICS: self._merge_diagnostics,
            Method.FORMATTING: self._merge_edits,
            Method.RANGE_FORMATTING: self._merge_edits,
            Method.CODE_ACTION: self._merge_code_actions,
            Method.HOVER: self._merge_hover,
            Method.COMPLETION: self._merge_completion,
        }

    def begin(self, buffer_id: int, method: Method) -> Ticket:
        ticket = Ticket(buffer_id=buffer_id, method=method, serial=next(self._serials))
        self._latest[(buffer_id, method)] = ticket.serial
        return ticket

    def is_current(self, ticket: Ticket) -> bool:
        return self._latest.get((ticket.buffer_id, ticket.method)) == ticket.serial

    def forget(self, buffer_id: int) -> None:
        for key in [key for key in self._latest if key[0] == buffer_id]:
            del self._latest[key]

    async def collect(self, batch: Batch, *, timeout_ms: int | None = None) -> Batch:
        """Wait for every invocation or the batch deadline, whichever is first.

        Invocations still running at the deadline are timed out so the batch
        is fully terminal on return.
        """
        limit = resolve_timeout_ms(timeout_ms, default=self._config.batch_timeout_ms)
        deadline = Deadline.from_timeout_ms(limit)
        waiting = [invocation.finished for invocation in batch.pending]
        if waiting:
            await asyncio.wait(waiting, timeout=deadline.remaining_seconds())
        for invocation in batch.pending:
            expire(invocation, self._reporter, limit_ms=limit, reason="batch deadline")
        return batch

    def merge(self, ticket: Ticket, batch: Batch) -> MergedResult:
        if not self.is_current(ticket):
            logger.debug(
                "dropping superseded %s batch for buffer %s",
                ticket.method.value,
                ticket.buffer_id,
            )
            return Superseded(ticket)
        return self._mergers[ticket.method](ticket, batch)

    def empty(self, ticket: Ticket) -> MergedResult:
        """Method-shaped empty result with no sink, cache, or ticket side effects."""
        if ticket.method is Method.CODE_ACTION:
            current = self._cache.current(ticket.buffer_id)
            generation = current.generation if current is not None else 0
            return CodeActionMenu(buffer_id=ticket.buffer_id, generation=generation)
        return []

    def _validated(self, invocation: Invocation, model: type, item: object):
        try:
            if isinstance(item, dict):
                return model.model_validate(item)
            return model.model_validate(item, from_attributes=True)
        except ValidationError as exc:
            self._invalid(invocation, _first_error(exc))
            return None

    def _invalid(self, invocation: Invocation, detail: str) -> None:
        self._reporter.warn(
            invocation.source_name,
            invocation.method,
            f"invalid result item: {detail}",
            kind=WarningKind.INVALID,
        )

    def _merge_diagnostics(self, ticket: Ticket, batch: Batch) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        template = self._config.diagnostics_format
        for invocation in batch.invocations:
            for item in invocation.contribution:
                dto = self._validated(invocation, DiagnosticDTO, item)
                if dto is None:
                    continue
                source = dto.source or DEFAULT_DIAGNOSTIC_SOURCE
                code = None if dto.code is None else str(dto.code)
                diagnostics.append(
                    Diagnostic(
                        message=format_diagnostic_message(
                            template, message=dto.message, source=source, code=code
                        ),
                        severity=dto.severity or self._config.fallback_severity,
                        row=dto.row,
                        col=dto.col,
                        end_row=dto.end_row,
                        end_col=dto.end_col,
                        source=source,
                        code=code,
                    )
                )
        if self._diagnostics_sink is not None:
            self._executor.schedule(
                self._diagnostics_sink.publish, ticket.buffer_id, tuple(diagnostics)
            )
        return diagnostics

    def _merge_edits(self, ticket: Ticket, batch: Batch) -> list[FormattingEdit]:
        edits: list[FormattingEdit] = []
        for invocation in batch.invocations:
            for item in invocation.contribution:
                dto = self._validated(invocation, FormattingEditDTO, item)
                if dto is None:
                    continue
                edits.append(
                    FormattingEdit(
                        text=dto.text,
                        row=dto.row,
                        col=dto.col,
                        end_row=dto.end_row,
                        end_col=dto.end_col,
                    )
                )
        if edits and self._edit_sink is not None:
            self._executor.schedule(
                functools.partial(
                    self._edit_sink.apply,
                    ticket.buffer_id,
                    tuple(edits),
                    persist=self._config.save_after_format,
                )
            )
        return edits

    def _merge_code_actions(self, ticket: Ticket, batch: Batch) -> CodeActionMenu:
        actions: list[CachedAction] = []
        for invocation in batch.invocations:
            for item in invocation.contribution:
                dto = self._validated(invocation, CodeActionDTO, item)
                if dto is None:
                    continue
                actions.append(
                    CachedAction(
                        title=dto.title,
                        action=dto.action,
                        source_name=invocation.source_name,
                    )
                )
        generation = self._cache.store(ticket.buffer_id, actions)
        return CodeActionMenu(
            buffer_id=ticket.buffer_id,
            generation=generation,
            titles=tuple(
                ActionTitle(index=index, title=action.title)
                for index, action in enumerate(actions)
            ),
        )

    def _merge_hover(self, ticket: Ticket, batch: Batch) -> list[str]:
        lines: list[str] = []
        for invocation in batch.invocations:
            for item in invocation.contribution:
                try:
                    text = HOVER_LINE.validate_python(item)
                except ValidationError as exc:
                    self._invalid(invocation, _first_error(exc))
                    continue
                lines.extend(text.split("\n"))
        return lines

    def _merge_completion(self, ticket: Ticket, batch: Batch) -> list[CompletionItem]:
        items: list[CompletionItem] = []
        for invocation in batch.invocations:
            for item in invocation.contribution:
                dto = self._validated(invocation, CompletionItemDTO, item)
                if dto is None:
                    continue
                items.append(CompletionItem(**dto.model_dump()))
        return items
