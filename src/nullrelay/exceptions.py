"""Exception taxonomy for the dispatch engine."""

from __future__ import annotations

from typing import Mapping


class NeverRaise(RuntimeError):
    """Sentinel exception for code paths that should be unreachable.

    Raising this exception signals a broken internal invariant rather than a
    failure of a user-supplied source. The keyword environment passed to
    ``never()`` is kept on the exception for debugging.
    """

    def __init__(self, message: str, *, env: Mapping[str, object] | None = None):
        super().__init__(message)
        self.reason = message
        self.env = dict(env or {})

    @property
    def env_payload(self) -> dict[str, str]:
        return {str(key): repr(value) for key, value in self.env.items()}


class NeverThrown(NeverRaise):
    """Alias for NeverRaise used by the explicit never() marker."""


class NullRelayError(Exception):
    """Base class for every error the engine raises on purpose."""


class RegistrationError(NullRelayError, ValueError):
    """A source record is malformed (missing method, generator or filetypes)."""

    def __init__(self, message: str, *, source_name: str | None = None):
        super().__init__(message)
        self.source_name = source_name


class GeneratorError(NullRelayError):
    """A generator raised or returned something other than a result list."""

    def __init__(self, message: str, *, source_name: str, method: str):
        super().__init__(message)
        self.source_name = source_name
        self.method = method


class GeneratorTimeout(NullRelayError, TimeoutError):
    """An asynchronous generator did not signal completion in time."""

    def __init__(self, *, source_name: str, method: str, timeout_ms: int):
        super().__init__(
            f"{source_name} did not complete {method} within {timeout_ms}ms"
        )
        self.source_name = source_name
        self.method = method
        self.timeout_ms = timeout_ms


class StaleActionError(NullRelayError, LookupError):
    """A code action was invoked against an invalidated generation."""

    def __init__(
        self,
        message: str,
        *,
        buffer_id: int,
        generation: int,
        index: int,
    ):
        super().__init__(message)
        self.buffer_id = buffer_id
        self.generation = generation
        self.index = index


class UnknownBufferError(NullRelayError, LookupError):
    """The host buffer provider has no snapshot for the requested buffer."""

    def __init__(self, buffer_id: int):
        super().__init__(f"no buffer with id {buffer_id}")
        self.buffer_id = buffer_id


class ConfigError(NullRelayError, ValueError):
    """A configuration value is present but invalid."""
