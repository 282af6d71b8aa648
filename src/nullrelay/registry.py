from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from nullrelay.config import merge_payload
from nullrelay.exceptions import RegistrationError
from nullrelay.host import OptionsProvider
from nullrelay.model import ALL_FILETYPES, Generator, Method, Source
from nullrelay.schema import SourceGroupDTO, SourceSpecDTO, is_wildcard

logger = logging.getLogger(__name__)

SourceLike = Union[Source, Mapping[str, object]]
Batch = Union[SourceLike, Sequence[SourceLike]]


class ChangeKind(str, Enum):
    REGISTERED = "registered"
    DEREGISTERED = "deregistered"


@dataclass(frozen=True)
class RegistryChange:
    kind: ChangeKind
    sources: tuple[Source, ...]

    def touches(self, method: Method) -> bool:
        return any(source.method is method for source in self.sources)


RegistryListener = Callable[[RegistryChange], None]


@dataclass(frozen=True)
class _Defaults:
    name: Optional[str] = None
    filetypes: Optional[frozenset[str]] = None
    options: Mapping[str, object] | None = None


def _declared_name(entry: object) -> str | None:
    if isinstance(entry, Source):
        return entry.name
    if isinstance(entry, Mapping):
        name = entry.get("name")
        return name if isinstance(name, str) else None
    return None


def _filetype_set(values: Iterable[str] | None) -> frozenset[str] | None:
    if values is None:
        return None
    items = list(values)
    if is_wildcard(items):
        return frozenset({ALL_FILETYPES})
    return frozenset(items)


class SourceRegistry:
    """Ordered store of sources, deduplicated by registration name."""

    def __init__(self, *, options_provider: OptionsProvider | None = None) -> None:
        self._options_provider = options_provider
        self._sources: list[Source] = []
        self._records: dict[str, tuple[Source, ...]] = {}
        self._listeners: list[RegistryListener] = []

    @property
    def sources(self) -> tuple[Source, ...]:
        return tuple(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def is_registered(self, name: str) -> bool:
        return name in self._records

    def get(self, name: str) -> tuple[Source, ...]:
        return self._records.get(name, ())

    def query(self, method: Method, filetype: str) -> list[Source]:
        method = Method.parse(method)
        return [
            source
            for source in self._sources
            if source.method is method and source.handles_filetype(filetype)
        ]

    def register(self, batch: Batch) -> tuple[Source, ...]:
        """Register one source, a list of sources, or a named group.

        Every entry is validated before anything is stored, so a malformed
        entry leaves the registry untouched. Entries whose name is already
        registered are skipped silently.
        """
        planned = self._plan(batch)
        stored: list[Source] = []
        for record_name, sources in planned:
            if record_name is not None and record_name in self._records:
                logger.debug("skipping duplicate registration of %s", record_name)
                continue
            self._store(record_name, sources)
            stored.extend(sources)
        if stored:
            self._notify(RegistryChange(ChangeKind.REGISTERED, tuple(stored)))
        return tuple(stored)

    def deregister(self, name: str) -> tuple[Source, ...]:
        removed = self._records.pop(name, ())
        if not removed:
            return ()
        removed_ids = {id(source) for source in removed}
        self._sources = [source for source in self._sources if id(source) not in removed_ids]
        for record_name, sources in list(self._records.items()):
            remaining = tuple(source for source in sources if id(source) not in removed_ids)
            if remaining:
                self._records[record_name] = remaining
            else:
                del self._records[record_name]
        self._notify(RegistryChange(ChangeKind.DEREGISTERED, removed))
        return removed

    def reset(self) -> None:
        self._sources.clear()
        self._records.clear()

    def _store(self, record_name: str | None, sources: tuple[Source, ...]) -> None:
        self._sources.extend(sources)
        if record_name is not None:
            self._records[record_name] = sources
        for source in sources:
            if source.name is None or source.name == record_name:
                continue
            self._records[source.name] = self._records.get(source.name, ()) + (source,)

    def _notify(self, change: RegistryChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("registry listener %r failed", listener)

    def _plan(self, batch: Batch) -> list[tuple[str | None, tuple[Source, ...]]]:
        name = _declared_name(batch)
        if name is not None and name in self._records:
            logger.debug("skipping duplicate registration of %s", name)
            return []
        if isinstance(batch, (list, tuple)):
            planned: list[tuple[str | None, tuple[Source, ...]]] = []
            for entry in batch:
                planned.extend(self._plan(entry))
            return self._dedupe_plan(planned)
        if isinstance(batch, Mapping) and "sources" in batch:
            return [self._plan_group(batch)]
        source = self._normalize(batch, _Defaults())
        return [(source.name, (source,))]

    @staticmethod
    def _dedupe_plan(
        planned: list[tuple[str | None, tuple[Source, ...]]],
    ) -> list[tuple[str | None, tuple[Source, ...]]]:
        seen: set[str] = set()
        result: list[tuple[str | None, tuple[Source, ...]]] = []
        for record_name, sources in planned:
            if record_name is not None:
                if record_name in seen:
                    continue
                seen.add(record_name)
            result.append((record_name, sources))
        return result

    def _plan_group(self, batch: Mapping[str, object]) -> tuple[str | None, tuple[Source, ...]]:
        try:
            group = SourceGroupDTO.model_validate(dict(batch))
        except ValidationError as exc:
            raise RegistrationError(str(exc), source_name=batch.get("name")) from None
        defaults = _Defaults(
            name=group.name,
            filetypes=_filetype_set(group.filetypes),
            options=group.options,
        )
        sources = tuple(self._normalize(entry, defaults) for entry in group.sources)
        return group.name, sources

    def _normalize(self, entry: object, defaults: _Defaults) -> Source:
        if isinstance(entry, Source):
            return self._finish(
                entry,
                filetypes=defaults.filetypes or entry.filetypes,
                defaults=defaults,
            )
        if not isinstance(entry, Mapping):
            raise RegistrationError(
                f"cannot register object of type {type(entry).__name__}"
            )
        raw = dict(entry)
        generator = raw.get("generator")
        if isinstance(generator, Generator):
            raw["generator"] = {
                "fn": generator.fn,
                "is_async": generator.is_async,
                "options": dict(generator.options),
            }
        try:
            spec = SourceSpecDTO.model_validate(raw)
        except ValidationError as exc:
            raise RegistrationError(str(exc), source_name=raw.get("name")) from None
        filetypes = defaults.filetypes or _filetype_set(spec.filetypes)
        if filetypes is None:
            raise RegistrationError(
                "source is missing filetypes", source_name=spec.name
            )
        source = Source(
            name=spec.name,
            method=spec.method,
            filetypes=filetypes,
            disabled_filetypes=frozenset(spec.disabled_filetypes),
            condition=spec.condition,
            generator=Generator(
                fn=spec.generator.fn,
                is_async=spec.generator.is_async,
                options=spec.generator.options,
            ),
        )
        return self._finish(source, filetypes=filetypes, defaults=defaults)

    def _finish(
        self,
        source: Source,
        *,
        filetypes: frozenset[str],
        defaults: _Defaults,
    ) -> Source:
        if not callable(source.generator.fn):
            raise RegistrationError("generator fn is not callable", source_name=source.name)
        name = source.name if source.name is not None else defaults.name
        options = merge_payload(dict(defaults.options or {}), dict(source.generator.options))
        if self._options_provider is not None:
            options = merge_payload(dict(self._options_provider.options_for(name)), options)
        generator = replace(source.generator, options=options)
        return replace(source, name=name, filetypes=filetypes, generator=generator)
