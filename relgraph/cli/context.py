from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from relgraph.core.config import Config, load_config
from relgraph.core.errors import ErrorCode
from relgraph.core.result import Err
from relgraph.output.console import ConsoleProtocol, RichConsole

DEFAULT_CONFIG_NAME = "relgraph.toml"


@dataclass(frozen=True, slots=True)
class CLIContext:
    config: Config
    console: ConsoleProtocol


def build_context(config_path: Path | None = None) -> CLIContext:
    """Load configuration and set up the console.

    An explicit ``--config`` must exist and parse. Without one, a
    ``relgraph.toml`` in the working directory is used if present.
    """
    console = RichConsole()
    path = config_path
    if path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_NAME
        path = candidate if candidate.is_file() else None

    config = Config()
    if path is not None:
        config_result = load_config(path)
        if isinstance(config_result, Err):
            typer.echo(f"error: {config_result.error.message}", err=True)
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
        config = config_result.value

    return CLIContext(config=config, console=console)
