"""Compile command - build, validate and publish the resource tree."""

from __future__ import annotations

from pathlib import Path

import typer

from relgraph.cli.commands._helpers import exit_on_error
from relgraph.cli.context import build_context
from relgraph.output.console import Style
from relgraph.services.graph.service import GraphService


def compile_graph(
    snapshot: Path = typer.Argument(..., help="Record Store snapshot (JSON)"),
    out: Path = typer.Option(..., "--out", "-o", help="Publish root"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to relgraph.toml", show_default=False
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Compile and validate only"),
) -> None:
    """Compile a snapshot and atomically publish the tree if it validates."""
    ctx = build_context(config)
    service = GraphService(config=ctx.config, console=ctx.console)

    outcome = exit_on_error(
        service.compile(snapshot_path=snapshot, root=out, dry_run=dry_run), ctx
    )

    report = outcome.report
    ctx.console.print(
        f"{report.resources_checked} resources, {report.facts_checked} facts checked",
        Style.DIM,
    )
    if outcome.published is None:
        ctx.console.success("tree is valid (dry-run, nothing published)")
        return
    ctx.console.success(f"published {outcome.published.files} resources to {out}")
