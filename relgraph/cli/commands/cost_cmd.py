"""Cost command - estimate what a consumer pays to answer common queries."""

from __future__ import annotations

from pathlib import Path

import typer

from relgraph.cli.commands._helpers import exit_on_error
from relgraph.cli.context import build_context
from relgraph.services.graph.cost import QUERY_TRACES
from relgraph.services.graph.service import GraphService


def cost(
    root: Path = typer.Argument(..., help="Publish root or tree directory"),
    trace: list[str] | None = typer.Option(
        None, "--trace", "-t", help="Query trace name (repeatable, default: all)"
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Path to relgraph.toml", show_default=False
    ),
) -> None:
    """Print turns, context size and cumulative tokens per query trace."""
    ctx = build_context(config)
    service = GraphService(config=ctx.config, console=ctx.console)

    rows: list[list[str]] = []
    for name in trace or list(QUERY_TRACES):
        result = exit_on_error(service.cost(root, name), ctx)
        r = result.report
        rows.append(
            [
                name,
                str(r.turns),
                str(r.final_context),
                str(r.cumulative_bytes),
                str(r.cumulative_tokens),
            ]
        )

    ctx.console.table(
        "Query cost",
        ["trace", "turns", "context bytes", "cumulative bytes", "cumulative tokens"],
        rows,
    )
