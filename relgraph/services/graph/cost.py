"""Cost Estimator.

Offline model of what a sequential, budget-bound consumer pays to answer a
query by fetching resources turn by turn. Everything fetched stays in the
context, so a resource fetched on turn 1 is paid for again on every later
turn:

    context[t]   = sum of sizes fetched on turns 1..t
    cumulative   = sum over t of context[t]
    attention    = sum over t of context[t] ** 2

Two shape decisions follow: fetch small, low-information resources first and
the large decisive one last (``defer_large``), and fetch independent resources
in the same turn (``collapse``). The estimator only backs regression tests and
the ``cost`` command; nothing at publish time depends on it.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from relgraph.core.config import DEFAULT_BYTES_PER_TOKEN
from relgraph.core.result import Err, Ok, Result
from relgraph.services.graph.document import render
from relgraph.services.graph.errors import GraphError
from relgraph.services.graph.model import (
    ROOT_PATH,
    TIMELINE_PATH,
    VIEWPORT_PATH,
    ResourceTree,
)

type Trace = tuple[tuple[int, ...], ...]
"""Sizes of the resources fetched on each turn, in bytes."""


@dataclass(frozen=True, slots=True)
class CostReport:
    turns: int
    context_sizes: tuple[int, ...]
    cumulative_bytes: int
    cumulative_tokens: int
    attention: int

    @property
    def final_context(self) -> int:
        return self.context_sizes[-1] if self.context_sizes else 0


def make_trace(turns: Sequence[Sequence[int]]) -> Trace:
    trace = tuple(tuple(t) for t in turns)
    for turn in trace:
        if any(size < 0 for size in turn):
            raise ValueError(f"resource sizes must be non-negative: {turn}")
    return trace


def estimate(trace: Trace, *, bytes_per_token: int = DEFAULT_BYTES_PER_TOKEN) -> CostReport:
    if bytes_per_token < 1:
        raise ValueError("bytes_per_token must be >= 1")

    context = 0
    sizes: list[int] = []
    for turn in make_trace(trace):
        context += sum(turn)
        sizes.append(context)

    cumulative = sum(sizes)
    return CostReport(
        turns=len(sizes),
        context_sizes=tuple(sizes),
        cumulative_bytes=cumulative,
        cumulative_tokens=-(-cumulative // bytes_per_token),
        attention=sum(s * s for s in sizes),
    )


def defer_large(trace: Trace) -> Trace:
    """Reorder turns so the largest ones come last (stable for ties)."""
    return tuple(sorted(make_trace(trace), key=sum))


def collapse(trace: Trace, first: int, last: int) -> Trace:
    """Merge turns ``first``..``last`` (inclusive, 0-based) into one turn."""
    turns = make_trace(trace)
    if not 0 <= first <= last < len(turns):
        raise ValueError(f"invalid turn range {first}..{last} for {len(turns)} turns")
    merged = tuple(size for turn in turns[first : last + 1] for size in turn)
    return turns[:first] + (merged,) + turns[last + 1 :]


def resource_size(tree: ResourceTree, path: str) -> int | None:
    resource = tree.get(path)
    if resource is None:
        return None
    return len(render(resource).encode("utf-8"))


def trace_for_paths(
    tree: ResourceTree, turns: Sequence[Sequence[str]]
) -> Result[Trace, GraphError]:
    """Size a trace of resource paths against a compiled tree."""
    out: list[tuple[int, ...]] = []
    for turn in turns:
        sizes: list[int] = []
        for path in turn:
            size = resource_size(tree, path)
            if size is None:
                return Err(
                    GraphError(kind="unknown_trace", message=f"trace fetches missing {path}")
                )
            sizes.append(size)
        out.append(tuple(sizes))
    return Ok(tuple(out))


# -----------------------------------------------------------------------------
# Representative query traces
# -----------------------------------------------------------------------------


def _href(tree: ResourceTree, path: str, rel: str) -> str | None:
    resource = tree.get(path)
    link = resource.links.get(rel) if resource else None
    return link.href if link else None


def _first_series(tree: ResourceTree) -> str | None:
    root = tree.get(ROOT_PATH)
    if root is None:
        return None
    for entry in root.embedded.get("series", []):
        link = entry.links.get("self")
        if link is not None:
            return link.href
    return None


def _latest_security_via_series(tree: ResourceTree) -> list[list[str]] | None:
    series = _first_series(tree)
    target = _href(tree, series, "latest-security") if series else None
    if series is None or target is None:
        return None
    return [[ROOT_PATH], [series], [target]]


def _latest_security_via_viewport(tree: ResourceTree) -> list[list[str]] | None:
    viewport = tree.get(VIEWPORT_PATH)
    if viewport is None:
        return None
    for entry in viewport.embedded.get("series", []):
        link = entry.links.get("latest-security")
        if link is not None:
            return [[VIEWPORT_PATH], [link.href]]
    return None


def _latest_month_via_timeline(tree: ResourceTree) -> list[list[str]] | None:
    year = _href(tree, TIMELINE_PATH, "latest")
    month = _href(tree, year, "latest") if year else None
    if year is None or month is None:
        return None
    return [[TIMELINE_PATH], [year], [month]]


def _security_history(tree: ResourceTree) -> list[list[str]] | None:
    series = _first_series(tree)
    current = _href(tree, series, "latest-security") if series else None
    if series is None or current is None:
        return None
    turns = [[series]]
    while current is not None:
        turns.append([current])
        current = _href(tree, current, "prev-security")
    return turns


QUERY_TRACES: dict[str, Callable[[ResourceTree], list[list[str]] | None]] = {
    "latest-security-via-series": _latest_security_via_series,
    "latest-security-via-viewport": _latest_security_via_viewport,
    "latest-month-via-timeline": _latest_month_via_timeline,
    "security-history": _security_history,
}


def plan_query(tree: ResourceTree, name: str) -> Result[list[list[str]], GraphError]:
    """Resolve a named query into the resource paths fetched on each turn."""
    planner = QUERY_TRACES.get(name)
    if planner is None:
        return Err(
            GraphError(
                kind="unknown_trace",
                message=f"unknown query trace: {name}",
                hint=f"available: {', '.join(QUERY_TRACES)}",
            )
        )
    turns = planner(tree)
    if turns is None:
        return Err(
            GraphError(kind="unknown_trace", message=f"tree cannot answer query trace {name}")
        )
    return Ok(turns)
