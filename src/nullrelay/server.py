from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Sequence

from pygls.lsp.server import LanguageServer
from lsprotocol.types import (
    TEXT_DOCUMENT_CODE_ACTION,
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DID_SAVE,
    TEXT_DOCUMENT_FORMATTING,
    TEXT_DOCUMENT_HOVER,
    TEXT_DOCUMENT_RANGE_FORMATTING,
    CodeAction,
    CodeActionKind,
    CodeActionParams,
    Command,
    CompletionItem as LspCompletionItem,
    CompletionItemKind,
    CompletionList,
    CompletionParams,
    Diagnostic as LspDiagnostic,
    DiagnosticSeverity,
    DocumentFormattingParams,
    DocumentRangeFormattingParams,
    Hover,
    HoverParams,
    MarkupContent,
    MarkupKind,
    MessageType,
    Position,
    PublishDiagnosticsParams,
    Range,
    ShowMessageParams,
    TextEdit,
)

from nullrelay import __version__
from nullrelay.aggregator import Superseded
from nullrelay.engine import Engine
from nullrelay.exceptions import UnknownBufferError
from nullrelay.host import BufferSnapshot
from nullrelay.invariants import never
from nullrelay.model import CompletionItem, Diagnostic, FormattingEdit, Method
from nullrelay.reporter import WarningEvent

server = LanguageServer("nullrelay", __version__)
INVOKE_ACTION_COMMAND = "nullrelay.invokeAction"


def _line_length(lines: Sequence[str], row: int) -> int:
    if 0 <= row < len(lines):
        return len(lines[row])
    return 0


def to_lsp_range(
    row: int,
    col: int,
    end_row: int,
    end_col: int,
    lines: Sequence[str],
) -> Range:
    if end_col < 0:
        end_col = _line_length(lines, end_row)
    return Range(
        start=Position(line=row, character=col),
        end=Position(line=end_row, character=end_col),
    )


def to_lsp_diagnostic(diagnostic: Diagnostic, lines: Sequence[str]) -> LspDiagnostic:
    return LspDiagnostic(
        range=to_lsp_range(
            diagnostic.row,
            diagnostic.col,
            diagnostic.end_row,
            diagnostic.end_col,
            lines,
        ),
        message=diagnostic.message,
        severity=DiagnosticSeverity(diagnostic.severity),
        source=diagnostic.source,
        code=diagnostic.code,
    )


def to_text_edit(edit: FormattingEdit, lines: Sequence[str]) -> TextEdit:
    return TextEdit(
        range=to_lsp_range(edit.row, edit.col, edit.end_row, edit.end_col, lines),
        new_text=edit.text,
    )


def to_lsp_completion(item: CompletionItem) -> LspCompletionItem:
    kind = None
    if item.kind is not None:
        try:
            kind = CompletionItemKind(item.kind)
        except ValueError:
            kind = None
    return LspCompletionItem(
        label=item.label,
        kind=kind,
        detail=item.detail,
        documentation=item.documentation,
        insert_text=item.insert_text,
    )


class WorkspaceBuffers:
    """Buffer provider backed by the language server's open documents."""

    def __init__(self, ls: LanguageServer) -> None:
        self._ls = ls
        self._ids: dict[str, int] = {}
        self._uris: dict[int, str] = {}
        self._next_id = 1

    def track(self, uri: str) -> int:
        buffer_id = self._ids.get(uri)
        if buffer_id is None:
            buffer_id = self._next_id
            self._next_id += 1
            self._ids[uri] = buffer_id
            self._uris[buffer_id] = uri
        return buffer_id

    def forget(self, uri: str) -> int | None:
        buffer_id = self._ids.pop(uri, None)
        if buffer_id is not None:
            self._uris.pop(buffer_id, None)
        return buffer_id

    def uri_for(self, buffer_id: int) -> str:
        try:
            return self._uris[buffer_id]
        except KeyError:
            raise UnknownBufferError(buffer_id) from None

    def snapshot(self, buffer_id: int) -> BufferSnapshot:
        uri = self.uri_for(buffer_id)
        document = self._ls.workspace.get_text_document(uri)
        return BufferSnapshot(
            buffer_id=buffer_id,
            name=document.path or uri,
            filetype=document.language_id or "",
            lines=tuple(line.rstrip("\r\n") for line in document.lines),
            root=self._ls.workspace.root_path,
            version=document.version or 0,
        )

    def open_buffers(self) -> list[BufferSnapshot]:
        return [self.snapshot(buffer_id) for buffer_id in list(self._uris)]


class PublishingDiagnosticsSink:
    def __init__(self, ls: LanguageServer, buffers: WorkspaceBuffers) -> None:
        self._ls = ls
        self._buffers = buffers

    def publish(self, buffer_id: int, diagnostics: Sequence[Diagnostic]) -> None:
        try:
            snapshot = self._buffers.snapshot(buffer_id)
        except UnknownBufferError:
            return
        uri = self._buffers.uri_for(buffer_id)
        self._ls.text_document_publish_diagnostics(
            PublishDiagnosticsParams(
                uri=uri,
                diagnostics=[to_lsp_diagnostic(item, snapshot.lines) for item in diagnostics],
            )
        )


@dataclass
class RelayState:
    engine: Engine
    buffers: WorkspaceBuffers
    source_specs: tuple[str, ...] = field(default_factory=tuple)


def load_source_spec(spec: str) -> object:
    """Resolve ``package.module:attribute`` to the object it names."""
    module_name, _, attribute = spec.partition(":")
    if not module_name or not attribute:
        never("source spec must look like module:attribute", spec=spec)
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


def register_source_specs(engine: Engine, specs: Iterable[str]) -> None:
    for spec in specs:
        target = load_source_spec(spec)
        if callable(target):
            target(engine)
        else:
            engine.register(target)


def _show_warning(ls: LanguageServer) -> Callable[[WarningEvent], None]:
    def _notify(event: WarningEvent) -> None:
        ls.window_show_message(
            ShowMessageParams(
                type=MessageType.Warning,
                message=f"[{event.source}] {event.method}: {event.message}",
            )
        )

    return _notify


def configure(
    ls: LanguageServer,
    *,
    source_specs: Sequence[str] = (),
    config_path: Path | None = None,
) -> None:
    ls.nullrelay_source_specs = tuple(source_specs)
    ls.nullrelay_config_path = config_path


def state_for(ls: LanguageServer) -> RelayState:
    state = getattr(ls, "nullrelay_state", None)
    if state is not None:
        return state
    buffers = WorkspaceBuffers(ls)
    root = ls.workspace.root_path
    engine = Engine.from_config(
        buffers=buffers,
        root=Path(root) if root else None,
        config_path=getattr(ls, "nullrelay_config_path", None),
        diagnostics_sink=PublishingDiagnosticsSink(ls, buffers),
    )
    engine.reporter.subscribe(_show_warning(ls))
    specs = tuple(getattr(ls, "nullrelay_source_specs", ()))
    register_source_specs(engine, specs)
    state = RelayState(engine=engine, buffers=buffers, source_specs=specs)
    ls.nullrelay_state = state
    return state


@server.feature(TEXT_DOCUMENT_DID_OPEN)
async def did_open(ls: LanguageServer, params) -> None:
    state = state_for(ls)
    buffer_id = state.buffers.track(params.text_document.uri)
    await state.engine.refresh_diagnostics(buffer_id)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
async def did_change(ls: LanguageServer, params) -> None:
    state = state_for(ls)
    buffer_id = state.buffers.track(params.text_document.uri)
    await state.engine.refresh_diagnostics(buffer_id)


@server.feature(TEXT_DOCUMENT_DID_SAVE)
async def did_save(ls: LanguageServer, params) -> None:
    state = state_for(ls)
    buffer_id = state.buffers.track(params.text_document.uri)
    await state.engine.refresh_diagnostics(buffer_id)


@server.feature(TEXT_DOCUMENT_DID_CLOSE)
def did_close(ls: LanguageServer, params) -> None:
    state = state_for(ls)
    uri = params.text_document.uri
    buffer_id = state.buffers.forget(uri)
    if buffer_id is not None:
        state.engine.close_buffer(buffer_id)
    ls.text_document_publish_diagnostics(PublishDiagnosticsParams(uri=uri, diagnostics=[]))


@server.feature(TEXT_DOCUMENT_CODE_ACTION)
async def code_action(ls: LanguageServer, params: CodeActionParams) -> list[CodeAction]:
    state = state_for(ls)
    uri = params.text_document.uri
    menu = await state.engine.request(
        Method.CODE_ACTION,
        state.buffers.track(uri),
        row=params.range.start.line,
        col=params.range.start.character,
    )
    if isinstance(menu, Superseded):
        return []
    return [
        CodeAction(
            title=entry.title,
            kind=CodeActionKind.QuickFix,
            command=Command(
                title=entry.title,
                command=INVOKE_ACTION_COMMAND,
                arguments=[uri, menu.generation, entry.index],
            ),
        )
        for entry in menu.titles
    ]


@server.command(INVOKE_ACTION_COMMAND)
def invoke_action(ls: LanguageServer, uri: str, generation: int, index: int) -> dict:
    state = state_for(ls)
    action = state.engine.invoke_action(
        state.buffers.track(uri),
        int(index),
        int(generation),
    )
    return {"title": action.title, "source": action.source_name}


async def _formatting(
    ls: LanguageServer,
    method: Method,
    uri: str,
    row_range: tuple[int, int, int, int] | None = None,
) -> list[TextEdit]:
    state = state_for(ls)
    buffer_id = state.buffers.track(uri)
    edits = await state.engine.request(method, buffer_id, range=row_range)
    if isinstance(edits, Superseded):
        return []
    lines = state.buffers.snapshot(buffer_id).lines
    return [to_text_edit(edit, lines) for edit in edits]


@server.feature(TEXT_DOCUMENT_FORMATTING)
async def formatting(ls: LanguageServer, params: DocumentFormattingParams) -> list[TextEdit]:
    return await _formatting(ls, Method.FORMATTING, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_RANGE_FORMATTING)
async def range_formatting(
    ls: LanguageServer, params: DocumentRangeFormattingParams
) -> list[TextEdit]:
    selected = params.range
    return await _formatting(
        ls,
        Method.RANGE_FORMATTING,
        params.text_document.uri,
        (
            selected.start.line,
            selected.start.character,
            selected.end.line,
            selected.end.character,
        ),
    )


@server.feature(TEXT_DOCUMENT_HOVER)
async def hover(ls: LanguageServer, params: HoverParams) -> Hover | None:
    state = state_for(ls)
    lines = await state.engine.request(
        Method.HOVER,
        state.buffers.track(params.text_document.uri),
        row=params.position.line,
        col=params.position.character,
    )
    if isinstance(lines, Superseded) or not lines:
        return None
    return Hover(contents=MarkupContent(kind=MarkupKind.Markdown, value="\n".join(lines)))


@server.feature(TEXT_DOCUMENT_COMPLETION)
async def completion(ls: LanguageServer, params: CompletionParams) -> CompletionList:
    state = state_for(ls)
    items = await state.engine.request(
        Method.COMPLETION,
        state.buffers.track(params.text_document.uri),
        row=params.position.line,
        col=params.position.character,
    )
    if isinstance(items, Superseded):
        items = []
    return CompletionList(
        is_incomplete=False,
        items=[to_lsp_completion(item) for item in items],
    )


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Start the language server on stdio."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
