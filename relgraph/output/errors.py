"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from relgraph.core.errors import ErrorCode
from relgraph.output.console import Style
from relgraph.services.graph.errors import Diagnostic, GraphError

if TYPE_CHECKING:
    from relgraph.output.console import ConsoleProtocol

__all__ = ["print_graph_error", "print_diagnostics", "graph_error_exit_code"]

_MAX_DIAGNOSTIC_ROWS = 50


def print_diagnostics(diagnostics: tuple[Diagnostic, ...], console: ConsoleProtocol) -> None:
    """Render diagnostics as a table, path first."""
    shown = diagnostics[:_MAX_DIAGNOSTIC_ROWS]
    console.table(
        "Diagnostics",
        ["path", "fact", "code", "message"],
        [[d.path, d.fact, d.code, d.message] for d in shown],
    )
    hidden = len(diagnostics) - len(shown)
    if hidden > 0:
        console.print(f"... and {hidden} more", Style.DIM)


def print_graph_error(error: GraphError, console: ConsoleProtocol) -> None:
    """Print a graph error to console with appropriate formatting."""
    match error:
        case GraphError(kind="source_defect", message=message):
            console.error(f"source defect: {message}")
        case GraphError(kind="validation_failed", message=message, diagnostics=diagnostics):
            console.error(f"validation failed: {message}")
            if diagnostics:
                print_diagnostics(diagnostics, console)
        case GraphError(kind="tree_unreadable", message=message):
            console.error(f"cannot read tree: {message}")
        case GraphError(kind="publish_failed", message=message):
            console.error(f"publish failed: {message}")
        case GraphError(message=message):
            console.error(message)
    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)


def graph_error_exit_code(error: GraphError) -> int:
    """Get exit code for a graph error."""
    match error.kind:
        case "source_defect" | "validation_failed":
            return int(ErrorCode.BUILD_ERROR)
        case "tree_unreadable":
            return int(ErrorCode.ENV_ERROR)
        case "publish_failed":
            return int(ErrorCode.IO_ERROR)
        case "unknown_trace":
            return int(ErrorCode.USER_ERROR)
    # Fallback for exhaustiveness
    return int(ErrorCode.BUILD_ERROR)
