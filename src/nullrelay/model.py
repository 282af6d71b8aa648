from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Tuple

ALL_FILETYPES = "*"
DEFAULT_DIAGNOSTIC_SOURCE = "null-ls"

RowRange = Tuple[int, int, int, int]
DoneFn = Callable[..., None]
GeneratorFn = Callable[..., object]
ConditionFn = Callable[["Params"], object]


class Method(str, Enum):
    CODE_ACTION = "CODE_ACTION"
    DIAGNOSTICS = "DIAGNOSTICS"
    FORMATTING = "FORMATTING"
    RANGE_FORMATTING = "RANGE_FORMATTING"
    HOVER = "HOVER"
    COMPLETION = "COMPLETION"

    @property
    def lsp_method(self) -> str:
        return _LSP_METHODS[self]

    @classmethod
    def parse(cls, value: object) -> "Method":
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        try:
            return cls(text.upper())
        except ValueError:
            pass
        for method, lsp_method in _LSP_METHODS.items():
            if lsp_method == text:
                return method
        raise ValueError(f"unknown method: {value!r}")


_LSP_METHODS: dict[Method, str] = {
    Method.CODE_ACTION: "textDocument/codeAction",
    Method.DIAGNOSTICS: "textDocument/publishDiagnostics",
    Method.FORMATTING: "textDocument/formatting",
    Method.RANGE_FORMATTING: "textDocument/rangeFormatting",
    Method.HOVER: "textDocument/hover",
    Method.COMPLETION: "textDocument/completion",
}


@dataclass(frozen=True)
class Generator:
    fn: GeneratorFn
    is_async: bool = False
    options: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))


@dataclass(frozen=True)
class Source:
    method: Method
    generator: Generator
    filetypes: frozenset[str] = frozenset({ALL_FILETYPES})
    name: Optional[str] = None
    disabled_filetypes: frozenset[str] = frozenset()
    condition: Optional[ConditionFn] = None

    @property
    def display_name(self) -> str:
        return self.name or "anonymous source"

    @property
    def all_filetypes(self) -> bool:
        return ALL_FILETYPES in self.filetypes

    def handles_filetype(self, filetype: str) -> bool:
        if filetype in self.disabled_filetypes:
            return False
        return self.all_filetypes or filetype in self.filetypes


@dataclass(frozen=True)
class Params:
    content: Tuple[str, ...]
    lsp_method: str
    method: Method
    row: int
    col: int
    buffer_id: int
    buffer_name: str
    filetype: str
    root: Optional[str] = None
    range: Optional[RowRange] = None

    @property
    def text(self) -> str:
        return "\n".join(self.content)


@dataclass(frozen=True)
class Request:
    method: Method
    buffer_id: int
    row: int = 0
    col: int = 0
    range: Optional[RowRange] = None
    timeout_ms: Optional[int] = None
    batch_timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class Diagnostic:
    message: str
    severity: int
    row: int = 0
    col: int = 0
    end_row: int = 0
    end_col: int = -1
    source: str = DEFAULT_DIAGNOSTIC_SOURCE
    code: Optional[str] = None

    def as_dict(self) -> dict[str, object]:
        payload = asdict(self)
        if payload["code"] is None:
            del payload["code"]
        return payload


@dataclass(frozen=True)
class FormattingEdit:
    text: str
    row: int = 0
    col: int = 0
    end_row: int = 0
    end_col: int = -1


@dataclass(frozen=True)
class CompletionItem:
    label: str
    kind: Optional[int] = None
    detail: Optional[str] = None
    documentation: Optional[str] = None
    insert_text: Optional[str] = None


@dataclass(frozen=True)
class CachedAction:
    title: str
    action: Callable[[], object]
    source_name: str


@dataclass(frozen=True)
class ActionTitle:
    index: int
    title: str


@dataclass(frozen=True)
class CodeActionMenu:
    buffer_id: int
    generation: int
    titles: Tuple[ActionTitle, ...] = ()

    def __len__(self) -> int:
        return len(self.titles)
