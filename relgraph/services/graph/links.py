"""Link Resolver.

Computes every top-level link relation of a compiled tree from the resources
alone:

- ``self`` and the structural parent/child relations. A release detail links
  to its year rather than its month, whose instant index may not exist yet;
- ``latest`` / ``latest-security``: maximum ``(date, version)`` candidate;
- ``prev`` / ``prev-security``: maximum candidate strictly below the origin.
  Only leaf resources carry them; the oldest element has no ``prev`` at all.

No ``next`` relation is emitted: leaves are immutable once published and
their successor does not exist when they are written.
"""

from __future__ import annotations

from bisect import bisect_left
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import replace

from relgraph.services.graph.model import (
    ROOT_PATH,
    TIMELINE_PATH,
    JsonValue,
    Link,
    Resource,
    ResourceKind,
    ResourceTree,
    manifest_path,
    series_path,
    year_path,
)
from relgraph.services.graph.versions import OrderKey, order_key

type MonthKey = tuple[int, int]
type Candidate[K] = tuple[K, str, bool]


def latest_of[K](candidates: Sequence[Candidate[K]], *, security: bool = False) -> str | None:
    """Path of the maximum candidate, optionally restricted to security ones."""
    best: Candidate[K] | None = None
    for c in candidates:
        if security and not c[2]:
            continue
        if best is None or c[0] > best[0]:  # type: ignore[operator]
            best = c
    return best[1] if best else None


def previous_of[K](
    ordered: Sequence[Candidate[K]], origin: K, *, security: bool = False
) -> str | None:
    """Path of the maximum candidate strictly less than ``origin``.

    ``ordered`` must be sorted ascending by key.
    """
    keys = [c[0] for c in ordered]
    index = bisect_left(keys, origin)  # type: ignore[type-var]
    for c in reversed(ordered[:index]):
        if c[2] or not security:
            return c[1]
    return None


def release_key(fields: dict[str, JsonValue]) -> OrderKey | None:
    version = fields.get("version")
    date = fields.get("date")
    if not isinstance(version, str) or not isinstance(date, str):
        return None
    return order_key(date, version)


def month_key(fields: dict[str, JsonValue]) -> MonthKey | None:
    year = fields.get("year")
    month = fields.get("month")
    if isinstance(year, bool) or isinstance(month, bool):
        return None
    if not isinstance(year, int) or not isinstance(month, int):
        return None
    return (year, month)


def _security(fields: dict[str, JsonValue]) -> bool:
    return fields.get("security") is True


class _Index:
    """Ordering of the leaf resources a tree contains."""

    def __init__(self, tree: ResourceTree) -> None:
        releases: dict[str, list[Candidate[OrderKey]]] = defaultdict(list)
        months: list[Candidate[MonthKey]] = []
        for r in tree.resources.values():
            if r.kind is ResourceKind.RELEASE_DETAIL:
                key = release_key(r.fields)
                series = r.fields.get("series")
                if key is not None and isinstance(series, str):
                    releases[series].append((key, r.path, _security(r.fields)))
            elif r.kind is ResourceKind.INSTANT_INDEX:
                mkey = month_key(r.fields)
                if mkey is not None:
                    months.append((mkey, r.path, _security(r.fields)))
        for items in releases.values():
            items.sort(key=lambda c: c[0])
        months.sort(key=lambda c: c[0])
        self.releases = dict(releases)
        self.months = months
        self.years = sorted(
            y
            for r in tree.by_kind(ResourceKind.PERIOD_INDEX)
            if isinstance(y := r.fields.get("year"), int)
        )

    def months_in(self, year: int) -> list[Candidate[MonthKey]]:
        return [c for c in self.months if c[0][0] == year]


def _put(links: dict[str, Link], rel: str, href: str | None, tree: ResourceTree) -> None:
    """Add ``rel`` only when its target exists; missing targets are omitted, not nulled."""
    if href is None:
        return
    target = tree.get(href)
    title = None
    if target is not None and target.kind is ResourceKind.RELEASE_DETAIL:
        version = target.fields.get("version")
        title = version if isinstance(version, str) else None
    links[rel] = Link(href, title=title)


def _links_for(resource: Resource, tree: ResourceTree, index: _Index) -> dict[str, Link]:
    links: dict[str, Link] = {"self": Link(resource.path)}
    f = resource.fields

    match resource.kind:
        case ResourceKind.ROOT_INDEX:
            _put(links, "timeline", TIMELINE_PATH, tree)
        case ResourceKind.SERIES_INDEX:
            series = str(f.get("series"))
            candidates = index.releases.get(series, [])
            _put(links, "release-index", ROOT_PATH, tree)
            _put(links, "manifest", manifest_path(series), tree)
            _put(links, "latest", latest_of(candidates), tree)
            _put(links, "latest-security", latest_of(candidates, security=True), tree)
        case ResourceKind.MANIFEST:
            _put(links, "release-major", series_path(str(f.get("series"))), tree)
            links.update({rel: link for rel, link in resource.links.items() if link.is_exit})
        case ResourceKind.RELEASE_DETAIL:
            series = str(f.get("series"))
            key = release_key(f)
            _put(links, "release-major", series_path(series), tree)
            if key is not None:
                _put(links, "release-year", year_path(int(key[0][0:4])), tree)
                ordered = index.releases.get(series, [])
                _put(links, "prev", previous_of(ordered, key), tree)
                _put(links, "prev-security", previous_of(ordered, key, security=True), tree)
        case ResourceKind.TIMELINE_ROOT:
            _put(links, "release-index", ROOT_PATH, tree)
            if index.years:
                _put(links, "latest", year_path(index.years[-1]), tree)
        case ResourceKind.PERIOD_INDEX:
            year = f.get("year")
            _put(links, "timeline", TIMELINE_PATH, tree)
            if isinstance(year, int):
                in_year = index.months_in(year)
                _put(links, "latest", latest_of(in_year), tree)
                _put(links, "latest-security", latest_of(in_year, security=True), tree)
        case ResourceKind.INSTANT_INDEX:
            mkey = month_key(f)
            if mkey is not None:
                _put(links, "release-year", year_path(mkey[0]), tree)
                _put(links, "prev", previous_of(index.months, mkey), tree)
                _put(links, "prev-security", previous_of(index.months, mkey, security=True), tree)
        case ResourceKind.VIEWPORT:
            return dict(resource.links)

    return links


def resolve_links(tree: ResourceTree) -> ResourceTree:
    """Return a copy of ``tree`` with every top-level relation computed."""
    index = _Index(tree)
    resolved = {
        path: replace(r, links=_links_for(r, tree, index)) for path, r in tree.resources.items()
    }
    return ResourceTree(resources=resolved, cycle=tree.cycle)
