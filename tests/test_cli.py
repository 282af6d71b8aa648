from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from nullrelay import cli
from nullrelay.config import TIMEOUT_ENV


def _invoke(args: list[str], *, timeout_env: str | None = None):
    return CliRunner().invoke(cli.app, args, env={TIMEOUT_ENV: timeout_env})


def test_cli_help_lists_commands() -> None:
    result = _invoke(["--help"])
    assert result.exit_code == 0
    assert "serve" in result.output
    assert "config" in result.output


def test_config_command_prints_defaults(tmp_path: Path) -> None:
    result = _invoke(["config", "--root", str(tmp_path)])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["default_timeout_ms"] == 5000
    assert payload["batch_timeout_ms"] == 10000
    assert payload["log_level"] == "warn"


def test_config_command_reads_file_and_env(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.toml"
    config_path.write_text('[engine]\nfallback_severity = 3\nsave_after_format = true\n')

    result = _invoke(["config", "--config", str(config_path)], timeout_env="750")

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["fallback_severity"] == 3
    assert payload["save_after_format"] is True
    assert payload["default_timeout_ms"] == 750


def test_invalid_config_exits_with_usage_error(tmp_path: Path) -> None:
    (tmp_path / "nullrelay.toml").write_text('[engine]\nlog_level = "chatty"\n')

    for command in ("config", "serve"):
        result = _invoke([command, "--root", str(tmp_path)])
        assert result.exit_code == 2
        assert "invalid configuration" in result.output


def test_serve_rejects_unknown_log_level(tmp_path: Path) -> None:
    result = _invoke(["serve", "--root", str(tmp_path), "--log-level", "verbose"])
    assert result.exit_code == 2
    assert "unknown log level" in result.output
