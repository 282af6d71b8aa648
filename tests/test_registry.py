from __future__ import annotations

import pytest

from nullrelay.exceptions import RegistrationError
from nullrelay.host import StaticOptionsProvider
from nullrelay.model import Generator, Method, Source
from nullrelay.registry import ChangeKind, SourceRegistry
from tests.source_helpers import returning, source


def test_wildcard_sources_match_every_filetype() -> None:
    registry = SourceRegistry()
    registry.register(source("any", returning([]), filetypes="*"))
    registry.register(source("empty", returning([]), filetypes=[]))

    for filetype in ("lua", "python", "text"):
        names = [entry.name for entry in registry.query(Method.DIAGNOSTICS, filetype)]
        assert names == ["any", "empty"]


def test_explicit_filetypes_match_only_members() -> None:
    registry = SourceRegistry()
    registry.register(source("luacheck", returning([]), filetypes=["lua", "moon"]))

    assert registry.query(Method.DIAGNOSTICS, "lua")
    assert registry.query(Method.DIAGNOSTICS, "moon")
    assert registry.query(Method.DIAGNOSTICS, "python") == []
    assert registry.query(Method.FORMATTING, "lua") == []


def test_missing_filetypes_is_a_registration_error() -> None:
    registry = SourceRegistry()
    record = source("broken", returning([]))
    del record["filetypes"]

    with pytest.raises(RegistrationError):
        registry.register(record)
    assert len(registry) == 0


def test_group_registration_is_idempotent() -> None:
    registry = SourceRegistry()
    group = {
        "name": "g",
        "sources": [
            source(None, returning([])),
            source(None, returning([]), method="FORMATTING"),
        ],
    }

    first = registry.register(group)
    second = registry.register(group)

    assert len(first) == 2
    assert second == ()
    assert len(registry) == 2
    assert registry.is_registered("g")


def test_group_defaults_apply_to_contained_sources() -> None:
    registry = SourceRegistry()
    registry.register(
        {
            "name": "lint",
            "filetypes": ["lua"],
            "options": {"timeout": 100, "args": ["-q"]},
            "sources": [
                source("inner", returning([]), filetypes=["python"], options={"args": ["-v"]}),
                source(None, returning([]), filetypes=["python"]),
            ],
        }
    )

    inner, anonymous = registry.sources
    assert inner.filetypes == frozenset({"lua"})
    assert inner.generator.options == {"timeout": 100, "args": ["-q"]}
    assert anonymous.name == "lint"
    assert anonymous.generator.options["timeout"] == 100
    assert registry.is_registered("inner")
    assert registry.get("lint") == (inner, anonymous)


def test_duplicate_single_source_is_skipped() -> None:
    registry = SourceRegistry()
    registry.register(source("stylua", returning([]), method="FORMATTING"))
    registry.register(source("stylua", returning([]), method="FORMATTING", filetypes=["lua", "luau"]))

    assert len(registry) == 1
    assert registry.sources[0].filetypes == frozenset({"lua"})


def test_duplicates_inside_one_batch_keep_the_first() -> None:
    registry = SourceRegistry()
    stored = registry.register(
        [
            source("a", returning([])),
            source("b", returning([])),
            source("a", returning([]), filetypes=["python"]),
        ]
    )

    assert [entry.name for entry in stored] == ["a", "b"]


def test_invalid_entry_leaves_registry_untouched() -> None:
    registry = SourceRegistry()
    with pytest.raises(RegistrationError):
        registry.register(
            [
                source("ok", returning([])),
                source("bad", returning([]), method="NOT_A_METHOD"),
            ]
        )
    assert len(registry) == 0
    assert not registry.is_registered("ok")


def test_non_callable_generator_is_rejected() -> None:
    registry = SourceRegistry()
    record = source("x", returning([]))
    record["generator"] = {"fn": "not callable"}

    with pytest.raises(RegistrationError):
        registry.register(record)


def test_unsupported_object_is_rejected() -> None:
    with pytest.raises(RegistrationError):
        SourceRegistry().register(42)


def test_source_instances_and_lsp_method_names_are_accepted() -> None:
    registry = SourceRegistry()
    registry.register(
        Source(
            method=Method.HOVER,
            generator=Generator(fn=returning(["doc"])),
            filetypes=frozenset({"lua"}),
            name="hover",
        )
    )
    registry.register(source("completion", returning([]), method="textDocument/completion"))

    assert registry.query("HOVER", "lua")[0].name == "hover"
    assert registry.query(Method.COMPLETION, "lua")[0].method is Method.COMPLETION


def test_generator_instance_in_mapping() -> None:
    registry = SourceRegistry()
    registry.register(
        {
            "name": "gen",
            "method": "CODE_ACTION",
            "filetypes": ["lua"],
            "generator": Generator(fn=returning([]), is_async=True, options={"k": 1}),
        }
    )

    stored = registry.sources[0]
    assert stored.generator.is_async is True
    assert stored.generator.options == {"k": 1}


def test_disabled_filetypes_override_wildcard() -> None:
    registry = SourceRegistry()
    registry.register(source("all", returning([]), filetypes="*", disabled_filetypes=["markdown"]))

    assert registry.query(Method.DIAGNOSTICS, "lua")
    assert registry.query(Method.DIAGNOSTICS, "markdown") == []


def test_configured_options_override_source_defaults() -> None:
    provider = StaticOptionsProvider({"luacheck": {"timeout": 50, "extra": True}})
    registry = SourceRegistry(options_provider=provider)
    registry.register(source("luacheck", returning([]), options={"timeout": 75}))

    assert dict(registry.sources[0].generator.options) == {"timeout": 50, "extra": True}


def test_deregister_removes_source_and_notifies() -> None:
    registry = SourceRegistry()
    changes = []
    registry.subscribe(changes.append)
    registry.register(source("a", returning([])))
    registry.register(source("b", returning([]), method="FORMATTING"))

    removed = registry.deregister("a")

    assert [entry.name for entry in removed] == ["a"]
    assert [entry.name for entry in registry.sources] == ["b"]
    assert not registry.is_registered("a")
    assert registry.deregister("a") == ()
    assert [change.kind for change in changes] == [
        ChangeKind.REGISTERED,
        ChangeKind.REGISTERED,
        ChangeKind.DEREGISTERED,
    ]
    assert changes[0].touches(Method.DIAGNOSTICS)
    assert not changes[1].touches(Method.DIAGNOSTICS)


def test_deregistering_group_drops_member_records() -> None:
    registry = SourceRegistry()
    registry.register({"name": "g", "sources": [source("member", returning([]))]})

    registry.deregister("g")

    assert not registry.is_registered("member")
    assert len(registry) == 0


def test_failing_listener_does_not_block_others() -> None:
    registry = SourceRegistry()
    seen = []

    def _boom(change) -> None:
        raise RuntimeError("listener failure")

    registry.subscribe(_boom)
    unsubscribe = registry.subscribe(seen.append)
    registry.register(source("a", returning([])))
    unsubscribe()
    registry.register(source("b", returning([])))

    assert len(seen) == 1


def test_reset_clears_everything() -> None:
    registry = SourceRegistry()
    registry.register(source("a", returning([])))
    registry.reset()

    assert len(registry) == 0
    assert not registry.is_registered("a")


def test_group_options_override_source_and_lose_to_config() -> None:
    provider = StaticOptionsProvider({"lint": {"timeout": 10}})
    registry = SourceRegistry(options_provider=provider)
    registry.register(
        {
            "name": "lint",
            "options": {"timeout": 20, "args": ["-q"]},
            "sources": [source(None, returning([]), options={"timeout": 30, "args": ["-v"], "own": 1})],
        }
    )

    assert dict(registry.sources[0].generator.options) == {"timeout": 10, "args": ["-q"], "own": 1}


def test_malformed_repeat_of_registered_name_is_ignored() -> None:
    registry = SourceRegistry()
    registry.register(source("luacheck", returning([])))
    malformed = source("luacheck", returning([]), method="NOT_A_METHOD")
    malformed["generator"] = {"fn": "not callable"}

    assert registry.register(malformed) == ()
    assert registry.register({"name": "luacheck", "sources": "not a list"}) == ()
    assert len(registry) == 1
