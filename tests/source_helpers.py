from __future__ import annotations

import asyncio
from typing import Callable

from nullrelay.model import Method


def source(
    name: str | None,
    fn: Callable[..., object],
    *,
    method: Method | str = Method.DIAGNOSTICS,
    filetypes: object = ("lua",),
    is_async: bool = False,
    options: dict[str, object] | None = None,
    **extra: object,
) -> dict[str, object]:
    record: dict[str, object] = {
        "method": method,
        "filetypes": list(filetypes) if not isinstance(filetypes, str) else filetypes,
        "generator": {"fn": fn, "async": is_async, "options": dict(options or {})},
    }
    if name is not None:
        record["name"] = name
    record.update(extra)
    return record


def returning(results: object) -> Callable[..., object]:
    def _fn(params):
        return results

    return _fn


def raising(message: str) -> Callable[..., object]:
    def _fn(params):
        raise RuntimeError(message)

    return _fn


def delayed(results: object, delay: float) -> Callable[..., None]:
    def _fn(params, done):
        asyncio.get_running_loop().call_later(delay, done, results)

    return _fn


def never_done(params, done) -> None:
    return None


class RecordingExecutor:
    """Safe executor that holds callbacks until ``run_all`` is called."""

    def __init__(self) -> None:
        self.scheduled: list[tuple[Callable[..., object], tuple[object, ...]]] = []

    def schedule(self, callback: Callable[..., object], *args: object) -> None:
        self.scheduled.append((callback, args))

    def run_all(self) -> int:
        pending, self.scheduled = self.scheduled, []
        for callback, args in pending:
            callback(*args)
        return len(pending)


def _lua_lint(params):
    return [
        {"message": "line too long", "row": index, "source": "lualint"}
        for index, line in enumerate(params.content)
        if len(line) > 20
    ]


def _lua_actions(params):
    return [{"title": "Remove trailing space", "action": lambda: None}]


def _lua_format(params):
    return [{"text": line.strip(), "row": index} for index, line in enumerate(params.content)]


LUA_SOURCES = [
    source("lualint", _lua_lint),
    source("luafix", _lua_actions, method="CODE_ACTION"),
    source("luafmt", _lua_format, method="FORMATTING"),
    source("luafmt-range", _lua_format, method="RANGE_FORMATTING"),
    source("luadoc", returning(["**local**", "declares a local"]), method="HOVER"),
    source("luawords", returning([{"label": "local", "kind": 14}]), method="COMPLETION"),
]


def register_lua_sources(engine) -> None:
    engine.register(LUA_SOURCES)


FAILING_SOURCES = [source("broken", raising("lint crashed"))]
