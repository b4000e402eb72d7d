from __future__ import annotations

from collections.abc import Callable

from relgraph.core.config import Config
from relgraph.core.result import Ok
from relgraph.services.graph.compiler import compile_tree
from relgraph.services.graph.links import latest_of, previous_of, resolve_links
from relgraph.services.graph.model import ResourceTree
from relgraph.services.graph.records import Snapshot


def _resolved(snapshot: Snapshot) -> ResourceTree:
    compiled = compile_tree(snapshot, config=Config())
    assert isinstance(compiled, Ok), compiled
    return resolve_links(compiled.value)


def _href(tree: ResourceTree, path: str, rel: str) -> str | None:
    link = tree.resources[path].links.get(rel)
    return link.href if link else None


def test_latest_of_picks_maximum() -> None:
    candidates = [(1, "a", False), (3, "c", False), (2, "b", True)]
    assert latest_of(candidates) == "c"
    assert latest_of(candidates, security=True) == "b"
    assert latest_of([], security=True) is None


def test_previous_of_is_strictly_less() -> None:
    ordered = [(1, "a", True), (2, "b", False), (3, "c", False)]
    assert previous_of(ordered, 3) == "b"
    assert previous_of(ordered, 3, security=True) == "a"
    assert previous_of(ordered, 1) is None


def test_series_index_wormholes(snapshot: Snapshot) -> None:
    tree = _resolved(snapshot)
    series = tree.resources["1.0/index.json"]

    assert series.links["self"].href == "1.0/index.json"
    assert series.links["latest"].href == "1.0/1.0.5/index.json"
    assert series.links["latest"].title == "1.0.5"
    assert series.links["latest-security"].href == "1.0/1.0.3/index.json"
    assert series.links["manifest"].href == "1.0/manifest.json"
    assert series.links["release-index"].href == "index.json"


def test_release_prev_chain(snapshot: Snapshot) -> None:
    tree = _resolved(snapshot)

    assert _href(tree, "1.0/1.0.5/index.json", "prev") == "1.0/1.0.4/index.json"
    assert _href(tree, "1.0/1.0.2/index.json", "prev") == "1.0/1.0.1/index.json"
    assert _href(tree, "1.0/1.0.5/index.json", "prev-security") == "1.0/1.0.3/index.json"
    assert _href(tree, "1.0/1.0.5/index.json", "release-year") == "timeline/2025/index.json"
    assert _href(tree, "1.0/1.0.5/index.json", "release-major") == "1.0/index.json"


def test_oldest_release_has_no_prev(snapshot: Snapshot) -> None:
    tree = _resolved(snapshot)
    links = tree.resources["1.0/1.0.1/index.json"].links
    assert "prev" not in links
    assert "prev-security" not in links
    assert "prev-security" not in tree.resources["1.0/1.0.3/index.json"].links


def test_no_forward_relations(snapshot: Snapshot) -> None:
    tree = _resolved(snapshot)
    for resource in tree.resources.values():
        assert not any(rel.startswith("next") for rel in resource.links)


def test_prev_only_on_leaves(snapshot: Snapshot) -> None:
    tree = _resolved(snapshot)
    for resource in tree.resources.values():
        if not resource.kind.is_leaf:
            assert "prev" not in resource.links
            assert "prev-security" not in resource.links


def test_timeline_links(snapshot: Snapshot) -> None:
    tree = _resolved(snapshot)

    assert _href(tree, "timeline/index.json", "latest") == "timeline/2025/index.json"
    assert _href(tree, "timeline/2025/index.json", "latest") == "timeline/2025/05/index.json"
    assert (
        _href(tree, "timeline/2025/index.json", "latest-security")
        == "timeline/2025/03/index.json"
    )
    assert _href(tree, "timeline/2025/05/index.json", "prev") == "timeline/2025/04/index.json"
    assert (
        _href(tree, "timeline/2025/05/index.json", "prev-security")
        == "timeline/2025/03/index.json"
    )
    assert _href(tree, "timeline/2025/05/index.json", "release-year") == "timeline/2025/index.json"
    assert "prev" not in tree.resources["timeline/2025/01/index.json"].links


def test_month_prev_crosses_years(
    snapshot_data: dict[str, object], make_snapshot: Callable[..., Snapshot]
) -> None:
    releases = snapshot_data["releases"]
    assert isinstance(releases, list)
    releases.insert(
        0, {"series": "1.0", "version": "1.0.0", "date": "2024-12-10", "security": False}
    )

    tree = _resolved(make_snapshot(snapshot_data))

    assert _href(tree, "timeline/2025/01/index.json", "prev") == "timeline/2024/12/index.json"
    assert _href(tree, "timeline/index.json", "latest") == "timeline/2025/index.json"
    assert _href(tree, "1.0/1.0.1/index.json", "prev") == "1.0/1.0.0/index.json"


def test_prev_stays_within_series(
    snapshot_data: dict[str, object], make_snapshot: Callable[..., Snapshot]
) -> None:
    series = snapshot_data["series"]
    releases = snapshot_data["releases"]
    assert isinstance(series, list) and isinstance(releases, list)
    series.append({"id": "2.0", "release_type": "sts", "ga_date": "2025-04-01"})
    releases.append({"series": "2.0", "version": "2.0.0", "date": "2025-04-20", "security": False})

    tree = _resolved(make_snapshot(snapshot_data))

    assert "prev" not in tree.resources["2.0/2.0.0/index.json"].links
    assert _href(tree, "1.0/1.0.5/index.json", "prev") == "1.0/1.0.4/index.json"
    assert _href(tree, "2.0/index.json", "latest") == "2.0/2.0.0/index.json"
    assert "latest-security" not in tree.resources["2.0/index.json"].links
