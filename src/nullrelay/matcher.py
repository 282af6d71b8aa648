from __future__ import annotations

import logging

from nullrelay.host import BufferProvider, BufferSnapshot
from nullrelay.model import Params, Request, Source
from nullrelay.registry import SourceRegistry
from nullrelay.reporter import ErrorReporter

logger = logging.getLogger(__name__)


def build_params(snapshot: BufferSnapshot, request: Request) -> Params:
    return Params(
        content=tuple(snapshot.lines),
        lsp_method=request.method.lsp_method,
        method=request.method,
        row=request.row,
        col=request.col,
        buffer_id=snapshot.buffer_id,
        buffer_name=snapshot.name,
        filetype=snapshot.filetype,
        root=snapshot.root,
        range=request.range,
    )


class RequestMatcher:
    """Selects the active sources for a request and snapshots the buffer once."""

    def __init__(
        self,
        registry: SourceRegistry,
        buffers: BufferProvider,
        reporter: ErrorReporter,
    ) -> None:
        self._registry = registry
        self._buffers = buffers
        self._reporter = reporter

    def match(self, request: Request) -> list[tuple[Source, Params]]:
        snapshot = self._buffers.snapshot(request.buffer_id)
        params = build_params(snapshot, request)
        matched: list[tuple[Source, Params]] = []
        for source in self._registry.query(request.method, snapshot.filetype):
            if source.condition is not None and not self._condition_holds(source, params):
                logger.debug("%s skipped by its condition", source.display_name)
                continue
            matched.append((source, params))
        return matched

    def _condition_holds(self, source: Source, params: Params) -> bool:
        outcome = self._reporter.attempt(
            source.condition,
            params,
            source=source.display_name,
            method=params.method.value,
        )
        return outcome.ok and bool(outcome.value)
