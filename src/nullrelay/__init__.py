"""nullrelay package root."""

from nullrelay.engine import Engine
from nullrelay.exceptions import (
    GeneratorError,
    GeneratorTimeout,
    NeverRaise,
    NeverThrown,
    NullRelayError,
    RegistrationError,
    StaleActionError,
)
from nullrelay.invariants import never
from nullrelay.model import Generator, Method, Params, Source

__all__ = [
    "__version__",
    "Engine",
    "Generator",
    "GeneratorError",
    "GeneratorTimeout",
    "Method",
    "NeverRaise",
    "NeverThrown",
    "NullRelayError",
    "Params",
    "RegistrationError",
    "Source",
    "StaleActionError",
    "never",
]

__version__ = "0.1.0"
