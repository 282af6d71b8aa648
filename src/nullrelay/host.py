"""Interfaces the engine requires of its host editor, plus in-memory versions.

The engine never talks to an editor directly. Buffer contents come from a
``BufferProvider``, merged diagnostics go to a ``DiagnosticsSink``, merged
formatting edits go to an ``EditSink``, and anything that may touch host state
is scheduled through a ``SafeExecutor``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

from nullrelay.exceptions import UnknownBufferError
from nullrelay.model import Diagnostic, FormattingEdit


@dataclass(frozen=True)
class BufferSnapshot:
    buffer_id: int
    name: str
    filetype: str
    lines: Tuple[str, ...] = ()
    root: Optional[str] = None
    version: int = 0


@runtime_checkable
class BufferProvider(Protocol):
    def snapshot(self, buffer_id: int) -> BufferSnapshot: ...

    def open_buffers(self) -> Iterable[BufferSnapshot]: ...


@runtime_checkable
class DiagnosticsSink(Protocol):
    def publish(self, buffer_id: int, diagnostics: Sequence[Diagnostic]) -> None: ...


@runtime_checkable
class EditSink(Protocol):
    def apply(
        self,
        buffer_id: int,
        edits: Sequence[FormattingEdit],
        *,
        persist: bool = False,
    ) -> None: ...


@runtime_checkable
class SafeExecutor(Protocol):
    def schedule(self, callback: Callable[..., object], *args: object) -> None: ...


@runtime_checkable
class OptionsProvider(Protocol):
    def options_for(self, name: str | None) -> Mapping[str, object]: ...


class LoopExecutor:
    """Defers callbacks onto the event loop with ``call_soon``."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def schedule(self, callback: Callable[..., object], *args: object) -> None:
        loop = self._loop if self._loop is not None else asyncio.get_running_loop()
        loop.call_soon(callback, *args)


class InMemoryBuffers:
    def __init__(self) -> None:
        self._buffers: dict[int, BufferSnapshot] = {}

    def open(
        self,
        buffer_id: int,
        *,
        name: str,
        filetype: str,
        lines: Iterable[str] = (),
        root: str | None = None,
    ) -> BufferSnapshot:
        snapshot = BufferSnapshot(
            buffer_id=buffer_id,
            name=name,
            filetype=filetype,
            lines=tuple(lines),
            root=root,
        )
        self._buffers[buffer_id] = snapshot
        return snapshot

    def update(self, buffer_id: int, lines: Iterable[str]) -> BufferSnapshot:
        current = self.snapshot(buffer_id)
        snapshot = replace(current, lines=tuple(lines), version=current.version + 1)
        self._buffers[buffer_id] = snapshot
        return snapshot

    def close(self, buffer_id: int) -> None:
        self._buffers.pop(buffer_id, None)

    def snapshot(self, buffer_id: int) -> BufferSnapshot:
        try:
            return self._buffers[buffer_id]
        except KeyError:
            raise UnknownBufferError(buffer_id) from None

    def open_buffers(self) -> list[BufferSnapshot]:
        return list(self._buffers.values())


@dataclass
class RecordingDiagnosticsSink:
    published: list[tuple[int, tuple[Diagnostic, ...]]] = field(default_factory=list)

    def publish(self, buffer_id: int, diagnostics: Sequence[Diagnostic]) -> None:
        self.published.append((buffer_id, tuple(diagnostics)))

    def calls_for(self, buffer_id: int) -> list[tuple[Diagnostic, ...]]:
        return [diagnostics for target, diagnostics in self.published if target == buffer_id]


@dataclass
class RecordingEditSink:
    applied: list[tuple[int, tuple[FormattingEdit, ...], bool]] = field(default_factory=list)

    def apply(
        self,
        buffer_id: int,
        edits: Sequence[FormattingEdit],
        *,
        persist: bool = False,
    ) -> None:
        self.applied.append((buffer_id, tuple(edits), persist))


@dataclass(frozen=True)
class StaticOptionsProvider:
    options: Mapping[str, Mapping[str, object]] = field(default_factory=dict)

    def options_for(self, name: str | None) -> Mapping[str, object]:
        if name is None:
            return {}
        return dict(self.options.get(name, {}))
