"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

from relgraph.core.result import Err, Result
from relgraph.output.errors import graph_error_exit_code, print_graph_error
from relgraph.services.graph.errors import GraphError

if TYPE_CHECKING:
    from relgraph.cli.context import CLIContext


def exit_on_error[T](result: Result[T, GraphError], ctx: CLIContext) -> T:
    """Return the value of an Ok result; print the error and exit otherwise.

    The exit code depends on the error kind, see ``graph_error_exit_code``.
    """
    if isinstance(result, Err):
        print_graph_error(result.error, ctx.console)
        raise typer.Exit(code=graph_error_exit_code(result.error))
    return result.value

