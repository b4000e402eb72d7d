"""Validate command - re-check a published tree."""

from __future__ import annotations

from pathlib import Path

import typer

from relgraph.cli.commands._helpers import exit_on_error
from relgraph.cli.context import build_context
from relgraph.services.graph.service import GraphService


def validate(
    root: Path = typer.Argument(..., help="Publish root or tree directory"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to relgraph.toml", show_default=False
    ),
) -> None:
    """Run every consistency check over a tree on disk."""
    ctx = build_context(config)
    service = GraphService(config=ctx.config, console=ctx.console)

    report = exit_on_error(service.validate(root), ctx)
    ctx.console.success(
        f"{report.resources_checked} resources, {report.facts_checked} facts: no violations"
    )
