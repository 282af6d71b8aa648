from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from nullrelay.exceptions import StaleActionError
from nullrelay.host import SafeExecutor
from nullrelay.model import CachedAction, Method
from nullrelay.reporter import ErrorReporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionCacheEntry:
    generation: int
    actions: tuple[CachedAction, ...]


class ActionCache:
    """Code-action callbacks per buffer, valid for one generation only.

    Generations come from a single counter shared by every buffer, so a
    generation number never repeats even after ``clear``.
    """

    def __init__(self, executor: SafeExecutor, reporter: ErrorReporter) -> None:
        self._executor = executor
        self._reporter = reporter
        self._entries: dict[int, ActionCacheEntry] = {}
        self._generations = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def store(self, buffer_id: int, actions: Iterable[CachedAction]) -> int:
        entry = ActionCacheEntry(generation=next(self._generations), actions=tuple(actions))
        self._entries[buffer_id] = entry
        return entry.generation

    def current(self, buffer_id: int) -> Optional[ActionCacheEntry]:
        return self._entries.get(buffer_id)

    def invoke(
        self,
        buffer_id: int,
        index: int,
        generation: int | None = None,
    ) -> CachedAction:
        """Schedule the selected action and return it.

        Raises StaleActionError when the buffer has no entry, when the
        generation has been superseded, or when the index is out of range.
        """
        entry = self._entries.get(buffer_id)
        requested = generation if generation is not None else (entry.generation if entry else 0)
        if entry is None or entry.generation != requested:
            raise StaleActionError(
                f"code action {index} of generation {requested} is no longer valid",
                buffer_id=buffer_id,
                generation=requested,
                index=index,
            )
        if not 0 <= index < len(entry.actions):
            raise StaleActionError(
                f"generation {requested} has no code action {index}",
                buffer_id=buffer_id,
                generation=requested,
                index=index,
            )
        action = entry.actions[index]
        logger.debug("invoking %r from %s", action.title, action.source_name)
        self._executor.schedule(
            self._reporter.wrap(
                action.action,
                source=action.source_name,
                method=Method.CODE_ACTION.value,
            )
        )
        return action

    def clear(self, buffer_id: int) -> None:
        self._entries.pop(buffer_id, None)

    def reset(self) -> None:
        self._entries.clear()
