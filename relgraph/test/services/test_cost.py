from __future__ import annotations

import pytest

from relgraph.core.config import Config
from relgraph.core.result import Err, Ok
from relgraph.services.graph.cost import (
    QUERY_TRACES,
    collapse,
    defer_large,
    estimate,
    make_trace,
    plan_query,
    resource_size,
    trace_for_paths,
)
from relgraph.services.graph.model import ResourceTree
from relgraph.services.graph.records import Snapshot
from relgraph.services.graph.service import assemble


def _tree(snapshot: Snapshot) -> ResourceTree:
    result = assemble(snapshot, config=Config())
    assert isinstance(result, Ok), result
    return result.value


class TestEstimate:
    def test_context_accumulates(self) -> None:
        report = estimate(make_trace([[10], [20]]))

        assert report.turns == 2
        assert report.context_sizes == (10, 30)
        assert report.final_context == 30
        assert report.cumulative_bytes == 40
        assert report.cumulative_tokens == 10
        assert report.attention == 10 * 10 + 30 * 30

    def test_tokens_round_up(self) -> None:
        assert estimate(make_trace([[5]]), bytes_per_token=4).cumulative_tokens == 2

    def test_empty_trace(self) -> None:
        report = estimate(make_trace([]))
        assert report.turns == 0
        assert report.final_context == 0
        assert report.cumulative_bytes == 0

    def test_rejects_negative_sizes(self) -> None:
        with pytest.raises(ValueError):
            make_trace([[1, -1]])

    def test_rejects_zero_bytes_per_token(self) -> None:
        with pytest.raises(ValueError):
            estimate(make_trace([[1]]), bytes_per_token=0)


class TestShapes:
    def test_deferring_the_large_fetch_is_cheaper(self) -> None:
        large_first = make_trace([[900], [40], [60]])
        large_last = defer_large(large_first)

        assert large_last == ((40,), (60,), (900,))
        assert sum(map(sum, large_first)) == sum(map(sum, large_last))
        assert estimate(large_last).cumulative_bytes < estimate(large_first).cumulative_bytes
        assert estimate(large_last).attention < estimate(large_first).attention

    def test_defer_large_is_stable_for_ties(self) -> None:
        assert defer_large(make_trace([[5, 5], [10], [1]])) == ((1,), (5, 5), (10,))

    def test_collapsing_independent_fetches_is_cheaper(self) -> None:
        sequential = make_trace([[100], [30], [30], [200]])
        parallel = collapse(sequential, 1, 2)

        assert parallel == ((100,), (30, 30), (200,))
        assert estimate(parallel).turns == 3
        assert estimate(parallel).cumulative_bytes < estimate(sequential).cumulative_bytes

    @pytest.mark.parametrize(("first", "last"), [(-1, 0), (2, 1), (0, 4)])
    def test_collapse_rejects_bad_ranges(self, first: int, last: int) -> None:
        with pytest.raises(ValueError):
            collapse(make_trace([[1], [2], [3]]), first, last)


class TestQueryTraces:
    def test_viewport_needs_fewer_turns(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)

        via_series = plan_query(tree, "latest-security-via-series")
        via_viewport = plan_query(tree, "latest-security-via-viewport")

        assert isinstance(via_series, Ok) and isinstance(via_viewport, Ok)
        assert via_series.value == [
            ["index.json"],
            ["1.0/index.json"],
            ["1.0/1.0.3/index.json"],
        ]
        assert via_viewport.value == [["llms.json"], ["1.0/1.0.3/index.json"]]

    def test_security_history_walks_prev_security(self, snapshot: Snapshot) -> None:
        result = plan_query(_tree(snapshot), "security-history")
        assert isinstance(result, Ok)
        assert result.value == [["1.0/index.json"], ["1.0/1.0.3/index.json"]]

    def test_every_named_trace_resolves(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        for name in QUERY_TRACES:
            turns = plan_query(tree, name)
            assert isinstance(turns, Ok), name
            trace = trace_for_paths(tree, turns.value)
            assert isinstance(trace, Ok), name
            assert estimate(trace.value).cumulative_bytes > 0

    def test_sizes_match_rendered_documents(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        trace = trace_for_paths(tree, [["index.json", "llms.json"]])

        assert isinstance(trace, Ok)
        assert trace.value == (
            (resource_size(tree, "index.json"), resource_size(tree, "llms.json")),
        )

    def test_unknown_trace_name(self, snapshot: Snapshot) -> None:
        result = plan_query(_tree(snapshot), "everything")
        assert isinstance(result, Err)
        assert result.error.kind == "unknown_trace"
        assert result.error.hint is not None and "security-history" in result.error.hint

    def test_trace_with_missing_path(self, snapshot: Snapshot) -> None:
        result = trace_for_paths(_tree(snapshot), [["9.9/index.json"]])
        assert isinstance(result, Err)
