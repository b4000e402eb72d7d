from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace

from relgraph.core.config import Config
from relgraph.core.result import Ok
from relgraph.services.graph.document import render
from relgraph.services.graph.model import Entry, Link, ResourceTree
from relgraph.services.graph.records import Snapshot
from relgraph.services.graph.service import assemble
from relgraph.services.graph.validator import validate_tree


def _tree(snapshot: Snapshot) -> ResourceTree:
    result = assemble(snapshot, config=Config())
    assert isinstance(result, Ok), result
    return result.value


def _with(tree: ResourceTree, path: str, **changes: object) -> ResourceTree:
    return tree.with_resources({path: replace(tree.resources[path], **changes)})


def _with_link(tree: ResourceTree, path: str, rel: str, href: str | None) -> ResourceTree:
    links = dict(tree.resources[path].links)
    if href is None:
        del links[rel]
    else:
        links[rel] = Link(href)
    return _with(tree, path, links=links)


def _with_field(tree: ResourceTree, path: str, name: str, value: object) -> ResourceTree:
    fields = dict(tree.resources[path].fields)
    fields[name] = value  # type: ignore[assignment]
    return _with(tree, path, fields=fields)


def _paths(tree: ResourceTree, code: str) -> set[str]:
    return {d.path for d in validate_tree(tree).diagnostics if d.code == code}


class TestCompiledTree:
    def test_compiled_tree_is_valid(self, snapshot: Snapshot) -> None:
        report = validate_tree(_tree(snapshot))

        assert report.ok, [str(d) for d in report.diagnostics]
        assert report.resources_checked == 16
        assert report.facts_checked > 0

    def test_multi_series_multi_year_tree_is_valid(
        self, snapshot_data: dict[str, object], make_snapshot: Callable[..., Snapshot]
    ) -> None:
        series = snapshot_data["series"]
        releases = snapshot_data["releases"]
        disclosures = snapshot_data["disclosures"]
        assert isinstance(series, list)
        assert isinstance(releases, list)
        assert isinstance(disclosures, list)
        series.append(
            {
                "id": "0.9",
                "release_type": "sts",
                "support_phase": "eol",
                "ga_date": "2024-03-01",
                "eol_date": "2025-03-01",
            }
        )
        releases += [
            {"series": "0.9", "version": "0.9.0", "date": "2024-03-01", "security": False},
            {
                "series": "0.9",
                "version": "0.9.1",
                "date": "2024-11-12",
                "security": True,
                "disclosures": ["CVE-2024-0100"],
            },
            {
                "series": "0.9",
                "version": "0.9.2",
                "date": "2025-03-11",
                "security": True,
                "disclosures": ["CVE-2025-0001"],
            },
        ]
        disclosures.append({"id": "CVE-2024-0100", "title": "Path traversal", "severity": "low"})

        report = validate_tree(_tree(make_snapshot(snapshot_data)))

        assert report.ok, [str(d) for d in report.diagnostics]


class TestLinks:
    def test_dangling_link_in_series_index(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        series = tree.resources["1.0/index.json"]
        ghost = Entry(
            fields={"version": "1.0.7", "date": "2025-05-20", "security": False, "cve_ids": []},
            links={"self": Link("1.0/1.0.7/index.json")},
        )
        releases = [ghost, *series.embedded["releases"]]
        broken = _with(tree, "1.0/index.json", embedded={"releases": releases})

        report = validate_tree(broken)

        assert not report.ok
        dangling = report.by_code("dangling-link")
        assert [(d.path, d.fact) for d in dangling] == [("1.0/index.json", "self")]
        assert "1.0/1.0.7/index.json" in dangling[0].message

    def test_self_mismatch(self, snapshot: Snapshot) -> None:
        tree = _with_link(_tree(snapshot), "1.0/1.0.2/index.json", "self", "1.0/1.0.3/index.json")
        assert _paths(tree, "self-mismatch") == {"1.0/1.0.2/index.json"}

    def test_forward_link(self, snapshot: Snapshot) -> None:
        tree = _with_link(_tree(snapshot), "1.0/1.0.3/index.json", "next", "1.0/1.0.4/index.json")
        assert _paths(tree, "forward-link") == {"1.0/1.0.3/index.json"}

    def test_prev_on_non_leaf(self, snapshot: Snapshot) -> None:
        tree = _with_link(_tree(snapshot), "1.0/index.json", "prev", "1.0/1.0.4/index.json")
        assert _paths(tree, "prev-on-non-leaf") == {"1.0/index.json"}

    def test_leaf_wormhole_to_mutable_resource(self, snapshot: Snapshot) -> None:
        tree = _with_link(_tree(snapshot), "1.0/1.0.3/index.json", "latest", "1.0/index.json")
        assert _paths(tree, "wormhole-direction") == {"1.0/1.0.3/index.json"}

    def test_wormhole_to_resource_from_another_pass(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        stale = _with(tree, "timeline/2025/index.json", cycle="older")
        assert _paths(stale, "wormhole-direction") == {"timeline/index.json"}

    def test_wormhole_to_root(self, snapshot: Snapshot) -> None:
        tree = _with_link(_tree(snapshot), "timeline/2025/index.json", "shortcut", "index.json")
        assert _paths(tree, "wormhole-to-root") == {"timeline/2025/index.json"}

    def test_exit_links_are_not_resolved(self, snapshot: Snapshot) -> None:
        tree = _with_link(
            _tree(snapshot), "1.0/manifest.json", "downloads", "https://example.org/missing"
        )
        assert validate_tree(tree).ok


class TestChains:
    def test_broken_prev_chain(self, snapshot: Snapshot) -> None:
        tree = _with_link(_tree(snapshot), "1.0/1.0.3/index.json", "prev", None)

        gaps = validate_tree(tree).by_code("chain-gap")

        assert "1.0/index.json" in {d.path for d in gaps}
        assert any("missing 1.0/1.0.2/index.json" in d.message for d in gaps)

    def test_prev_skipping_an_element(self, snapshot: Snapshot) -> None:
        tree = _with_link(
            _tree(snapshot), "1.0/1.0.5/index.json", "prev", "1.0/1.0.3/index.json"
        )
        assert "1.0/index.json" in _paths(tree, "chain-gap")


class TestFacts:
    def test_root_fact_duplicated(self, snapshot: Snapshot) -> None:
        tree = _with_field(_tree(snapshot), "1.0/index.json", "release_type", "lts")
        assert "1.0/index.json" in _paths(tree, "root-fact-duplicated")

    def test_branch_fact_in_root_resource(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        root = tree.resources["index.json"]
        entry = root.embedded["series"][0]
        moved = Entry(fields={**entry.fields, "latest_version": "1.0.5"}, links=entry.links)
        broken = _with(tree, "index.json", embedded={"series": [moved]})

        diagnostics = validate_tree(broken).by_code("placement")

        assert [(d.path, d.fact) for d in diagnostics] == [
            ("index.json", "series:1.0#latest_version")
        ]

    def test_unclassified_field(self, snapshot: Snapshot) -> None:
        tree = _with_field(_tree(snapshot), "1.0/1.0.2/index.json", "download_size", 12)
        assert _paths(tree, "placement") == {"1.0/1.0.2/index.json"}

    def test_stale_copy(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        series = tree.resources["1.0/index.json"]
        entries = list(series.embedded["releases"])
        entries[0] = Entry(
            fields={**entries[0].fields, "date": "2025-05-14"}, links=entries[0].links
        )
        broken = _with(tree, "1.0/index.json", embedded={"releases": entries})

        stale = validate_tree(broken).by_code("stale-copy")

        assert [(d.path, d.fact) for d in stale] == [("1.0/index.json", "release:1.0.5#date")]

    def test_aggregate_mismatch(self, snapshot: Snapshot) -> None:
        tree = _with_field(_tree(snapshot), "1.0/index.json", "release_count", 4)
        diagnostics = validate_tree(tree).by_code("aggregate-mismatch")
        assert [(d.path, d.fact) for d in diagnostics] == [("1.0/index.json", "release_count")]

    def test_missing_canonical_disclosure(self, snapshot: Snapshot) -> None:
        tree = _with(_tree(snapshot), "timeline/2025/03/index.json", embedded={})
        assert "1.0/1.0.3/index.json" in _paths(tree, "existence-mismatch")

    def test_viewport_sole_source(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        viewport = tree.resources["llms.json"]
        extra = Entry(fields={"id": "CVE-2099-0001", "title": "Only here", "severity": "low"})
        broken = _with(
            tree,
            "llms.json",
            embedded={
                **viewport.embedded,
                "disclosures": [*viewport.embedded["disclosures"], extra],
            },
        )

        assert _paths(broken, "viewport-sole-source") == {"llms.json"}

    def test_viewport_is_exempt_from_placement(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        assert tree.resources["llms.json"].embedded["series"][0].fields["release_type"] == "lts"
        assert validate_tree(tree).ok


def _without_entry(
    tree: ResourceTree, path: str, section: str, name: str, value: object
) -> ResourceTree:
    resource = tree.resources[path]
    kept = [e for e in resource.embedded[section] if e.fields.get(name) != value]
    assert len(kept) == len(resource.embedded[section]) - 1
    return _with(tree, path, embedded={**resource.embedded, section: kept})


def _mismatches(tree: ResourceTree) -> set[tuple[str, str]]:
    return {(d.path, d.fact) for d in validate_tree(tree).by_code("existence-mismatch")}


class TestListings:
    def test_series_index_missing_a_release(self, snapshot: Snapshot) -> None:
        tree = _without_entry(_tree(snapshot), "1.0/index.json", "releases", "version", "1.0.2")
        tree = _with_field(tree, "1.0/index.json", "release_count", 4)

        diagnostics = validate_tree(tree).by_code("existence-mismatch")

        assert [(d.path, d.fact) for d in diagnostics] == [("1.0/index.json", "release:1.0.2")]
        assert "1.0/1.0.2/index.json exists" in diagnostics[0].message

    def test_month_missing_a_release(self, snapshot: Snapshot) -> None:
        path = "timeline/2025/02/index.json"
        tree = _without_entry(_tree(snapshot), path, "releases", "version", "1.0.2")
        assert _mismatches(tree) == {(path, "release:1.0.2")}

    def test_period_index_missing_a_month(self, snapshot: Snapshot) -> None:
        path = "timeline/2025/index.json"
        tree = _without_entry(_tree(snapshot), path, "months", "month", 2)
        tree = _with_field(tree, path, "month_count", 4)
        tree = _with_field(tree, path, "release_count", 4)

        assert _mismatches(tree) == {(path, "month:2025-02")}

    def test_timeline_root_missing_a_year(self, snapshot: Snapshot) -> None:
        tree = _without_entry(_tree(snapshot), "timeline/index.json", "years", "year", 2025)
        assert _mismatches(tree) == {("timeline/index.json", "year:2025")}

    def test_root_index_missing_a_series(self, snapshot: Snapshot) -> None:
        tree = _without_entry(_tree(snapshot), "index.json", "series", "series", "1.0")
        assert ("index.json", "series:1.0") in _mismatches(tree)

    def test_listed_release_without_resource(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        series = tree.resources["1.0/index.json"]
        ghost = Entry(
            fields={"version": "1.0.7", "date": "2025-05-20", "security": False, "cve_ids": []},
            links={"self": Link("1.0/1.0.7/index.json")},
        )
        broken = _with(
            tree,
            "1.0/index.json",
            embedded={"releases": [ghost, *series.embedded["releases"]]},
        )

        diagnostics = validate_tree(broken).by_code("existence-mismatch")

        assert any(
            d.path == "1.0/index.json"
            and d.fact == "release:1.0.7"
            and "no such resource exists" in d.message
            for d in diagnostics
        )

    def test_release_of_closed_month_listed_as_pending(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        path = "timeline/2025/index.json"
        year = tree.resources[path]
        may = tree.resources["timeline/2025/05/index.json"].embedded["releases"]
        broken = _with(tree, path, embedded={**year.embedded, "pending": list(may)})

        assert (path, "release:1.0.5") in _mismatches(broken)

    def test_release_of_open_month_must_be_pending(
        self, snapshot_data: dict[str, object], make_snapshot: Callable[..., Snapshot]
    ) -> None:
        snapshot_data["snapshot_date"] = "2025-05-20"
        tree = _tree(make_snapshot(snapshot_data))
        path = "timeline/2025/index.json"
        assert validate_tree(tree).ok

        broken = _without_entry(tree, path, "pending", "version", "1.0.5")

        assert _mismatches(broken) == {(path, "release:1.0.5")}
        assert "aggregate-mismatch" in validate_tree(broken).codes()

    def test_missing_listing_resource_is_reported_on_the_child(self, snapshot: Snapshot) -> None:
        tree = _tree(snapshot)
        broken = ResourceTree(
            resources={p: r for p, r in tree.resources.items() if p != "timeline/index.json"},
            cycle=tree.cycle,
        )

        assert ("timeline/2025/index.json", "year:2025") in _mismatches(broken)


class TestImmutability:
    def test_scenario_new_release_keeps_published_leaves(
        self, snapshot_data: dict[str, object], make_snapshot: Callable[..., Snapshot]
    ) -> None:
        before = _tree(make_snapshot(snapshot_data, "a" * 64))
        releases = snapshot_data["releases"]
        assert isinstance(releases, list)
        releases.append(
            {"series": "1.0", "version": "1.0.6", "date": "2025-06-10", "security": False}
        )
        snapshot_data["snapshot_date"] = "2025-06-30"

        after = _tree(make_snapshot(snapshot_data, "c" * 64))

        report = validate_tree(after, previous=before)
        assert report.ok, [str(d) for d in report.diagnostics]
        assert render(after.resources["1.0/1.0.5/index.json"]) == render(
            before.resources["1.0/1.0.5/index.json"]
        )
        assert after.resources["1.0/1.0.6/index.json"].links["prev"].href == "1.0/1.0.5/index.json"
        series = after.resources["1.0/index.json"]
        assert series.links["latest"].href == "1.0/1.0.6/index.json"
        assert series.links["latest-security"].href == "1.0/1.0.3/index.json"

    def test_changed_leaf_is_rejected(
        self, snapshot_data: dict[str, object], make_snapshot: Callable[..., Snapshot]
    ) -> None:
        before = _tree(make_snapshot(snapshot_data, "a" * 64))
        releases = snapshot_data["releases"]
        assert isinstance(releases, list)
        releases[1]["date"] = "2025-02-13"

        after = _tree(make_snapshot(snapshot_data, "c" * 64))

        mutated = validate_tree(after, previous=before).by_code("leaf-mutated")
        assert {d.path for d in mutated} == {
            "1.0/1.0.2/index.json",
            "timeline/2025/02/index.json",
        }

    def test_removed_leaf_is_rejected(self, snapshot: Snapshot) -> None:
        before = _tree(snapshot)
        after = ResourceTree(
            resources={
                p: r for p, r in before.resources.items() if p != "1.0/1.0.1/index.json"
            },
            cycle=before.cycle,
        )

        mutated = validate_tree(after, previous=before).by_code("leaf-mutated")

        assert [d.path for d in mutated] == ["1.0/1.0.1/index.json"]
