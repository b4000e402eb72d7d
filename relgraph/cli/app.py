from __future__ import annotations

import typer

from relgraph import __version__
from relgraph.cli.commands.compile_cmd import compile_graph
from relgraph.cli.commands.cost_cmd import cost
from relgraph.cli.commands.validate_cmd import validate

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Commands
app.command("compile")(compile_graph)
app.command()(validate)
app.command()(cost)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit(code=0)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Compile and publish a release-notes resource graph."""


def main() -> None:
    app()
