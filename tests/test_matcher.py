from __future__ import annotations

import pytest

from nullrelay.exceptions import UnknownBufferError
from nullrelay.host import InMemoryBuffers
from nullrelay.matcher import RequestMatcher
from nullrelay.model import Method, Request
from nullrelay.registry import SourceRegistry
from nullrelay.reporter import ErrorReporter
from tests.source_helpers import returning, source


def _matcher(buffers: InMemoryBuffers, *records: dict) -> tuple[RequestMatcher, ErrorReporter]:
    registry = SourceRegistry()
    for record in records:
        registry.register(record)
    reporter = ErrorReporter()
    return RequestMatcher(registry, buffers, reporter), reporter


def test_matched_sources_share_one_params_snapshot(buffers: InMemoryBuffers) -> None:
    buffers.open(1, name="/w/init.lua", filetype="lua", lines=["local x = 1", "return x"], root="/w")
    matcher, _ = _matcher(
        buffers,
        source("a", returning([])),
        source("b", returning([])),
        source("py", returning([]), filetypes=["python"]),
    )

    matches = matcher.match(Request(method=Method.DIAGNOSTICS, buffer_id=1, row=1, col=4))

    assert [entry.name for entry, _ in matches] == ["a", "b"]
    params = matches[0][1]
    assert matches[1][1] is params
    assert params.content == ("local x = 1", "return x")
    assert params.text == "local x = 1\nreturn x"
    assert params.lsp_method == "textDocument/publishDiagnostics"
    assert (params.row, params.col) == (1, 4)
    assert params.buffer_name == "/w/init.lua"
    assert params.root == "/w"


def test_condition_filters_sources(buffers: InMemoryBuffers) -> None:
    buffers.open(1, name="a.lua", filetype="lua", lines=["-- skip"])
    matcher, reporter = _matcher(
        buffers,
        source("skips", returning([]), condition=lambda params: "skip" not in params.text),
        source("keeps", returning([]), condition=lambda params: True),
    )

    matches = matcher.match(Request(method=Method.DIAGNOSTICS, buffer_id=1))

    assert [entry.name for entry, _ in matches] == ["keeps"]
    assert reporter.events == ()


def test_raising_condition_excludes_with_warning(buffers: InMemoryBuffers) -> None:
    buffers.open(1, name="a.lua", filetype="lua")

    def _condition(params):
        raise KeyError("missing")

    matcher, reporter = _matcher(buffers, source("cond", returning([]), condition=_condition))

    assert matcher.match(Request(method=Method.DIAGNOSTICS, buffer_id=1)) == []
    (event,) = reporter.events
    assert event.source == "cond"
    assert event.method == "DIAGNOSTICS"
    assert "KeyError" in event.message


def test_unknown_buffer_raises(buffers: InMemoryBuffers) -> None:
    matcher, _ = _matcher(buffers)
    with pytest.raises(UnknownBufferError):
        matcher.match(Request(method=Method.HOVER, buffer_id=99))
