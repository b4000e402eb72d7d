from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from relgraph.core.config import Config
from relgraph.core.result import Err, Ok, Result
from relgraph.output.console import ConsoleProtocol, Style
from relgraph.services.graph.compiler import compile_tree
from relgraph.services.graph.cost import CostReport, estimate, plan_query, trace_for_paths
from relgraph.services.graph.document import load_tree
from relgraph.services.graph.errors import GraphError
from relgraph.services.graph.links import resolve_links
from relgraph.services.graph.model import ResourceTree
from relgraph.services.graph.publish import PublishedTree, publish_tree, published_tree_dir
from relgraph.services.graph.records import Snapshot, load_snapshot
from relgraph.services.graph.validator import ValidationReport, validate_tree
from relgraph.services.graph.viewport import build_viewport


@dataclass(frozen=True, slots=True)
class CompileOutcome:
    tree: ResourceTree
    report: ValidationReport
    published: PublishedTree | None


@dataclass(frozen=True, slots=True)
class QueryCost:
    name: str
    turns: list[list[str]]
    report: CostReport


def assemble(
    snapshot: Snapshot, *, config: Config, console: ConsoleProtocol | None = None
) -> Result[ResourceTree, GraphError]:
    """Compile, resolve links and add the viewport. No I/O."""
    compiled = compile_tree(snapshot, config=config, console=console)
    if isinstance(compiled, Err):
        return Err(GraphError.from_compile_error(compiled.error))

    tree = resolve_links(compiled.value)
    viewport = build_viewport(tree, as_of=snapshot.snapshot_date, config=config)
    return Ok(tree.with_resources({viewport.path: viewport}))


def _rejected(report: ValidationReport) -> GraphError:
    return GraphError(
        kind="validation_failed",
        message=f"{len(report.diagnostics)} invariant violation(s); nothing was published",
        hint="the previously published tree is still current",
        diagnostics=report.diagnostics,
    )


class GraphService:
    """Compile cycles and read-only queries over a publish root."""

    def __init__(self, *, config: Config, console: ConsoleProtocol) -> None:
        self._config = config
        self._console = console

    def published(self, root: Path) -> Result[ResourceTree | None, GraphError]:
        """Load the currently published tree, or None before the first publish."""
        current = published_tree_dir(root)
        if current is None:
            return Ok(None)
        loaded = load_tree(current)
        if isinstance(loaded, Err):
            return loaded
        return Ok(loaded.value)

    def compile(
        self, *, snapshot_path: Path, root: Path, dry_run: bool = False
    ) -> Result[CompileOutcome, GraphError]:
        """Run one compile cycle: compile, validate, then publish or reject."""
        snapshot = load_snapshot(snapshot_path)
        if isinstance(snapshot, Err):
            return Err(GraphError.from_compile_error(snapshot.error))

        self._console.print(f"snapshot {snapshot_path} ({snapshot.value.snapshot_date})", Style.DIM)
        assembled = assemble(snapshot.value, config=self._config, console=self._console)
        if isinstance(assembled, Err):
            return assembled
        tree = assembled.value

        previous = self.published(root)
        if isinstance(previous, Err):
            return previous

        report = validate_tree(tree, previous=previous.value)
        if not report.ok:
            return Err(_rejected(report))

        if dry_run:
            self._console.print(f"dry-run: {len(tree)} resources validated", Style.DIM)
            return Ok(CompileOutcome(tree=tree, report=report, published=None))

        published = publish_tree(
            tree, root=root, workers=self._config.compile.workers, console=self._console
        )
        if isinstance(published, Err):
            return published
        return Ok(CompileOutcome(tree=tree, report=report, published=published.value))

    def load(self, root: Path) -> Result[ResourceTree, GraphError]:
        """Load the published tree under a publish root, or a plain tree directory."""
        current = published_tree_dir(root)
        return load_tree(current if current is not None else root)

    def validate(self, root: Path) -> Result[ValidationReport, GraphError]:
        loaded = self.load(root)
        if isinstance(loaded, Err):
            return loaded
        report = validate_tree(loaded.value)
        if not report.ok:
            return Err(
                GraphError(
                    kind="validation_failed",
                    message=f"{len(report.diagnostics)} invariant violation(s)",
                    diagnostics=report.diagnostics,
                )
            )
        return Ok(report)

    def cost(self, root: Path, name: str) -> Result[QueryCost, GraphError]:
        loaded = self.load(root)
        if isinstance(loaded, Err):
            return loaded
        turns = plan_query(loaded.value, name)
        if isinstance(turns, Err):
            return turns
        trace = trace_for_paths(loaded.value, turns.value)
        if isinstance(trace, Err):
            return trace
        report = estimate(trace.value, bytes_per_token=self._config.cost.bytes_per_token)
        return Ok(QueryCost(name=name, turns=turns.value, report=report))
