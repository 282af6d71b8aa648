from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, TypeAdapter, field_validator, model_validator

from nullrelay.model import ALL_FILETYPES, Method


def _filetype_list(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, (set, frozenset, tuple)):
        return sorted(value)
    return value


class GeneratorSpecDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    fn: Callable[..., Any]
    is_async: bool = Field(False, alias="async")
    options: Dict[str, Any] = {}


class SourceSpecDTO(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: Optional[str] = None
    method: Method
    filetypes: Optional[List[str]] = None
    disabled_filetypes: List[str] = []
    condition: Optional[Callable[..., Any]] = None
    generator: GeneratorSpecDTO

    @field_validator("method", mode="before")
    @classmethod
    def _parse_method(cls, value: object) -> Method:
        return Method.parse(value)

    @field_validator("filetypes", "disabled_filetypes", mode="before")
    @classmethod
    def _parse_filetypes(cls, value: object) -> object:
        return _filetype_list(value)


class SourceGroupDTO(BaseModel):
    name: Optional[str] = None
    filetypes: Optional[List[str]] = None
    options: Dict[str, Any] = {}
    sources: List[Any]

    @field_validator("filetypes", mode="before")
    @classmethod
    def _parse_filetypes(cls, value: object) -> object:
        return _filetype_list(value)


class DiagnosticDTO(BaseModel):
    message: StrictStr
    severity: Optional[int] = Field(None, ge=1, le=4)
    row: int = Field(0, ge=0)
    col: int = Field(0, ge=0)
    end_row: Optional[int] = Field(None, ge=0)
    end_col: int = Field(-1, ge=-1)
    source: Optional[str] = None
    code: Optional[Union[str, int]] = None

    @model_validator(mode="after")
    def _default_end_row(self) -> "DiagnosticDTO":
        if self.end_row is None:
            self.end_row = self.row
        return self


class FormattingEditDTO(BaseModel):
    text: StrictStr
    row: int = Field(0, ge=0)
    col: int = Field(0, ge=0)
    end_row: Optional[int] = Field(None, ge=0)
    end_col: int = Field(-1, ge=-1)

    @model_validator(mode="after")
    def _default_end_row(self) -> "FormattingEditDTO":
        if self.end_row is None:
            self.end_row = self.row
        return self


class CodeActionDTO(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    title: StrictStr
    action: Callable[[], Any]


class CompletionItemDTO(BaseModel):
    label: StrictStr
    kind: Optional[int] = None
    detail: Optional[str] = None
    documentation: Optional[str] = None
    insert_text: Optional[str] = None


HOVER_LINE = TypeAdapter(StrictStr)


def is_wildcard(filetypes: List[str] | None) -> bool:
    return filetypes is not None and (not filetypes or ALL_FILETYPES in filetypes)
