from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from nullrelay.action_cache import ActionCache
from nullrelay.aggregator import MergedResult, ResultAggregator
from nullrelay.config import EngineConfig, TomlOptionsProvider, load_engine_config
from nullrelay.exceptions import UnknownBufferError
from nullrelay.host import (
    BufferProvider,
    DiagnosticsSink,
    EditSink,
    LoopExecutor,
    OptionsProvider,
    SafeExecutor,
)
from nullrelay.matcher import RequestMatcher
from nullrelay.model import CachedAction, Method, Request, RowRange, Source
from nullrelay.registry import Batch as SourceBatch
from nullrelay.registry import RegistryChange, SourceRegistry
from nullrelay.reporter import ErrorReporter
from nullrelay.runner import GeneratorRunner

logger = logging.getLogger(__name__)

ENGINE_SOURCE_NAME = "nullrelay"


class Engine:
    """Entry point tying the registry, runner, aggregator and cache together.

    One engine is created per host process and driven from its event loop.
    Registering or deregistering a diagnostics source schedules one refresh
    for each open buffer the change affects.
    """

    def __init__(
        self,
        *,
        buffers: BufferProvider,
        diagnostics_sink: Optional[DiagnosticsSink] = None,
        edit_sink: Optional[EditSink] = None,
        executor: Optional[SafeExecutor] = None,
        config: EngineConfig = EngineConfig(),
        options_provider: Optional[OptionsProvider] = None,
        reporter: Optional[ErrorReporter] = None,
    ) -> None:
        self.config = config
        self.reporter = reporter if reporter is not None else ErrorReporter()
        self.executor = executor if executor is not None else LoopExecutor()
        self.registry = SourceRegistry(options_provider=options_provider)
        self.cache = ActionCache(self.executor, self.reporter)
        self.matcher = RequestMatcher(self.registry, buffers, self.reporter)
        self.runner = GeneratorRunner(
            self.executor,
            self.reporter,
            default_timeout_ms=config.default_timeout_ms,
        )
        self.aggregator = ResultAggregator(
            self.reporter,
            self.cache,
            self.executor,
            diagnostics_sink=diagnostics_sink,
            edit_sink=edit_sink,
            config=config,
        )
        self._buffers = buffers
        self._background: set[asyncio.Task] = set()
        self._unsubscribe = self.registry.subscribe(self._on_registry_change)

    @classmethod
    def from_config(
        cls,
        *,
        buffers: BufferProvider,
        root: Path | None = None,
        config_path: Path | None = None,
        **collaborators,
    ) -> "Engine":
        return cls(
            buffers=buffers,
            config=load_engine_config(root=root, config_path=config_path),
            options_provider=TomlOptionsProvider.from_config(root=root, config_path=config_path),
            **collaborators,
        )

    def register(self, batch: SourceBatch) -> tuple[Source, ...]:
        return self.registry.register(batch)

    def deregister(self, name: str) -> tuple[Source, ...]:
        return self.registry.deregister(name)

    def is_registered(self, name: str) -> bool:
        return self.registry.is_registered(name)

    async def request(
        self,
        method: Method | str,
        buffer_id: int,
        *,
        row: int = 0,
        col: int = 0,
        range: RowRange | None = None,
        timeout_ms: int | None = None,
        batch_timeout_ms: int | None = None,
    ) -> MergedResult:
        return await self.dispatch(
            Request(
                method=Method.parse(method),
                buffer_id=buffer_id,
                row=row,
                col=col,
                range=range,
                timeout_ms=timeout_ms,
                batch_timeout_ms=batch_timeout_ms,
            )
        )

    async def dispatch(self, request: Request) -> MergedResult:
        ticket = self.aggregator.begin(request.buffer_id, request.method)
        try:
            matches = self.matcher.match(request)
        except UnknownBufferError as exc:
            self.reporter.warn(ENGINE_SOURCE_NAME, request.method.value, str(exc))
            return self.aggregator.empty(ticket)
        logger.debug(
            "dispatching %s for buffer %s to %d source(s)",
            request.method.value,
            request.buffer_id,
            len(matches),
        )
        batch = self.runner.start(matches, timeout_ms=request.timeout_ms)
        await self.aggregator.collect(batch, timeout_ms=request.batch_timeout_ms)
        return self.aggregator.merge(ticket, batch)

    def invoke_action(
        self,
        buffer_id: int,
        index: int,
        generation: int | None = None,
    ) -> CachedAction:
        return self.cache.invoke(buffer_id, index, generation)

    async def refresh_diagnostics(self, buffer_id: int) -> MergedResult:
        return await self.dispatch(Request(method=Method.DIAGNOSTICS, buffer_id=buffer_id))

    def close_buffer(self, buffer_id: int) -> None:
        self.cache.clear(buffer_id)
        self.aggregator.forget(buffer_id)

    async def drain(self) -> None:
        """Wait for scheduled refreshes and the sink calls they make."""
        await asyncio.sleep(0)
        while self._background:
            await asyncio.gather(*tuple(self._background), return_exceptions=True)
            await asyncio.sleep(0)

    def close(self) -> None:
        self._unsubscribe()
        for task in tuple(self._background):
            task.cancel()

    def _on_registry_change(self, change: RegistryChange) -> None:
        sources = [source for source in change.sources if source.method is Method.DIAGNOSTICS]
        if not sources:
            return
        for snapshot in self._buffers.open_buffers():
            if not any(source.handles_filetype(snapshot.filetype) for source in sources):
                continue
            try:
                self.executor.schedule(self._spawn_refresh, snapshot.buffer_id)
            except RuntimeError:
                logger.debug("no running event loop; skipping refresh of buffer %s", snapshot.buffer_id)
                return

    def _spawn_refresh(self, buffer_id: int) -> None:
        task = asyncio.ensure_future(self.refresh_diagnostics(buffer_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_task_failure)


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("diagnostics refresh failed", exc_info=error)
