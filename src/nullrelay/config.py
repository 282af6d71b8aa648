from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Mapping, TypeAlias
import tomllib

from nullrelay.deadline import DEFAULT_BATCH_TIMEOUT_MS, DEFAULT_TIMEOUT_MS, coerce_timeout_ms
from nullrelay.exceptions import ConfigError

DEFAULT_CONFIG_NAME = "nullrelay.toml"
TIMEOUT_ENV = "NULLRELAY_TIMEOUT_MS"
LOG_LEVELS: tuple[str, ...] = ("off", "error", "warn", "info", "debug", "trace")

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def engine_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("engine", {})
    return section if isinstance(section, dict) else {}


def source_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("sources", {})
    return section if isinstance(section, dict) else {}


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def merge_payload(payload: Mapping[str, object], defaults: Mapping[str, object]) -> dict[str, object]:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def _timeout_value(table: Mapping[str, object], key: str, default: int) -> int:
    if table.get(key) is None:
        return default
    timeout = coerce_timeout_ms(table[key])
    if timeout is None:
        raise ConfigError(f"{key} must be a positive number of milliseconds, got {table[key]!r}")
    return timeout


@dataclass(frozen=True)
class EngineConfig:
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    batch_timeout_ms: int = DEFAULT_BATCH_TIMEOUT_MS
    fallback_severity: int = 1
    diagnostics_format: str = "#{m}"
    save_after_format: bool = False
    log_level: str = "warn"
    debug: bool = False

    @classmethod
    def from_table(
        cls,
        table: Mapping[str, object],
        *,
        env: Mapping[str, str] | None = None,
    ) -> "EngineConfig":
        environ = os.environ if env is None else env
        default_timeout = _timeout_value(table, "default_timeout_ms", DEFAULT_TIMEOUT_MS)
        env_timeout = environ.get(TIMEOUT_ENV, "").strip()
        if env_timeout:
            default_timeout = _timeout_value(
                {"default_timeout_ms": env_timeout}, "default_timeout_ms", default_timeout
            )
        severity = table.get("fallback_severity", 1)
        if isinstance(severity, bool) or not isinstance(severity, int) or not 1 <= severity <= 4:
            raise ConfigError(f"fallback_severity must be an integer in 1..4, got {severity!r}")
        log_level = str(table.get("log_level", "warn")).strip().lower()
        if log_level not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")
        diagnostics_format = table.get("diagnostics_format", "#{m}")
        if not isinstance(diagnostics_format, str):
            raise ConfigError("diagnostics_format must be a string")
        return cls(
            default_timeout_ms=default_timeout,
            batch_timeout_ms=_timeout_value(table, "batch_timeout_ms", DEFAULT_BATCH_TIMEOUT_MS),
            fallback_severity=severity,
            diagnostics_format=diagnostics_format,
            save_after_format=_as_bool(table.get("save_after_format", False)),
            log_level=log_level,
            debug=_as_bool(table.get("debug", False)),
        )

    def as_payload(self) -> dict[str, object]:
        return asdict(self)


def load_engine_config(
    root: Path | None = None,
    config_path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    return EngineConfig.from_table(
        engine_defaults(root=root, config_path=config_path),
        env=env,
    )


@dataclass(frozen=True)
class TomlOptionsProvider:
    """Per-source options read from the ``[sources.<name>]`` tables."""

    sources: TomlTable = field(default_factory=dict)

    @classmethod
    def from_config(
        cls, root: Path | None = None, config_path: Path | None = None
    ) -> "TomlOptionsProvider":
        return cls(sources=source_defaults(root=root, config_path=config_path))

    def options_for(self, name: str | None) -> dict[str, object]:
        if name is None:
            return {}
        section = self.sources.get(name, {})
        return dict(section) if isinstance(section, dict) else {}
