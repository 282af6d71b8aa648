from __future__ import annotations

import pytest
from pydantic import ValidationError

from nullrelay.model import Method
from nullrelay.schema import (
    HOVER_LINE,
    CodeActionDTO,
    DiagnosticDTO,
    FormattingEditDTO,
    SourceSpecDTO,
    is_wildcard,
)


def test_method_parse_accepts_names_and_lsp_methods() -> None:
    assert Method.parse("diagnostics") is Method.DIAGNOSTICS
    assert Method.parse(Method.HOVER) is Method.HOVER
    assert Method.parse("textDocument/rangeFormatting") is Method.RANGE_FORMATTING
    assert Method.CODE_ACTION.lsp_method == "textDocument/codeAction"
    with pytest.raises(ValueError):
        Method.parse("textDocument/definition")


def test_diagnostic_defaults_end_row_to_row() -> None:
    dto = DiagnosticDTO.model_validate({"message": "x", "row": 3})
    assert dto.end_row == 3
    assert dto.end_col == -1
    assert dto.severity is None


@pytest.mark.parametrize(
    "payload",
    [
        {"severity": 1},
        {"message": 5},
        {"message": "x", "severity": 9},
        {"message": "x", "row": -1},
        {"message": "x", "end_col": -2},
    ],
)
def test_diagnostic_rejects_malformed_items(payload: dict) -> None:
    with pytest.raises(ValidationError):
        DiagnosticDTO.model_validate(payload)


def test_formatting_edit_requires_text() -> None:
    with pytest.raises(ValidationError):
        FormattingEditDTO.model_validate({"row": 0})
    assert FormattingEditDTO.model_validate({"text": "", "row": 2}).end_row == 2


def test_code_action_requires_callable() -> None:
    with pytest.raises(ValidationError):
        CodeActionDTO.model_validate({"title": "fix", "action": "nope"})
    assert CodeActionDTO.model_validate({"title": "fix", "action": lambda: None}).title == "fix"


def test_hover_lines_are_strict_strings() -> None:
    assert HOVER_LINE.validate_python("doc") == "doc"
    with pytest.raises(ValidationError):
        HOVER_LINE.validate_python(3)


def test_source_spec_accepts_async_alias() -> None:
    spec = SourceSpecDTO.model_validate(
        {
            "method": "FORMATTING",
            "filetypes": "lua",
            "generator": {"fn": print, "async": True},
        }
    )
    assert spec.method is Method.FORMATTING
    assert spec.filetypes == ["lua"]
    assert spec.generator.is_async is True


def test_is_wildcard() -> None:
    assert is_wildcard([])
    assert is_wildcard(["*"])
    assert not is_wildcard(None)
    assert not is_wildcard(["lua"])
