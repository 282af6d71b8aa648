from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer

from nullrelay.config import load_engine_config
from nullrelay.exceptions import ConfigError
from nullrelay.logging_setup import configure_logging

app = typer.Typer(add_completion=False)


def _resolve_config(root: Path, config: Optional[Path]):
    try:
        return load_engine_config(root=root, config_path=config)
    except ConfigError as exc:
        typer.echo(f"invalid configuration: {exc}", err=True)
        raise typer.Exit(code=2)


@app.command()
def serve(
    source: List[str] = typer.Option(
        [],
        "--source",
        help="Sources to register, as module:attribute. Repeatable.",
    ),
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
) -> None:
    """Run the dispatch engine as a language server on stdio."""
    engine_config = _resolve_config(root, config)
    try:
        configure_logging(log_level or engine_config.log_level, debug=engine_config.debug)
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    from nullrelay import server

    server.configure(server.server, source_specs=source, config_path=config)
    server.start()


@app.command("config")
def show_config(
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Print the resolved engine configuration as JSON."""
    engine_config = _resolve_config(root, config)
    typer.echo(json.dumps(engine_config.as_payload(), indent=2, sort_keys=True))


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()  # pragma: no cover
