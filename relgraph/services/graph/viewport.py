"""Viewport Generator.

Builds ``llms.json``, a bounded fast index for consumers with a small turn
budget. It denormalises lifecycle facts of the active series together with
their latest patches, and the disclosures of the still open month and of
the most recent security months.

The viewport is exempt from the placement rules and is published as
unstable. Everything in it is copied out of the compliant tree, so it is
never the only source of a fact.
"""

from __future__ import annotations

from relgraph.core.config import Config
from relgraph.services.graph.model import (
    ROOT_PATH,
    TIMELINE_PATH,
    VIEWPORT_PATH,
    Entry,
    JsonValue,
    Link,
    Resource,
    ResourceKind,
    ResourceTree,
)
from relgraph.services.graph.links import month_key

_LIFECYCLE_FIELDS = ("release_type", "support_phase", "eol_date")
_LATEST_FIELDS = ("latest_version", "latest_date", "latest_security_version")
_DISCLOSURE_FIELDS = ("id", "title", "severity", "cvss")


def is_active(fields: dict[str, JsonValue], *, as_of: str) -> bool:
    """A series is active until its end of life, whichever record says so first."""
    if fields.get("support_phase") == "eol":
        return False
    eol = fields.get("eol_date")
    return not (isinstance(eol, str) and eol < as_of)


def _series_entries(tree: ResourceTree, *, as_of: str) -> list[Entry]:
    root = tree.get(ROOT_PATH)
    if root is None:
        return []

    entries: list[Entry] = []
    for item in root.embedded.get("series", []):
        if not is_active(item.fields, as_of=as_of):
            continue
        self_link = item.links.get("self")
        index = tree.get(self_link.href) if self_link else None
        if index is None:
            continue

        fields: dict[str, JsonValue] = {"series": item.fields.get("series")}
        fields.update({k: item.fields[k] for k in _LIFECYCLE_FIELDS if k in item.fields})
        fields.update({k: index.fields[k] for k in _LATEST_FIELDS if k in index.fields})

        links = {"self": Link(index.path)}
        for rel in ("latest", "latest-security"):
            if rel in index.links:
                links[rel] = index.links[rel]
        entries.append(Entry(fields=fields, links=links))
    return entries


def _copy_disclosure(item: Entry, rel: str, href: str) -> Entry:
    fields = {k: item.fields[k] for k in _DISCLOSURE_FIELDS if k in item.fields}
    return Entry(fields=fields, links={rel: Link(href)})


def _disclosure_entries(tree: ResourceTree, *, window_months: int) -> list[Entry]:
    """Disclosures of the still open month, then of the last security months."""
    if window_months <= 0:
        return []
    entries: list[Entry] = []
    years = sorted(tree.by_kind(ResourceKind.PERIOD_INDEX), key=lambda r: r.path, reverse=True)
    for year in years:
        for item in year.embedded.get("disclosures", []):
            entries.append(_copy_disclosure(item, "release-year", year.path))

    security_months = sorted(
        (
            (key, r)
            for r in tree.by_kind(ResourceKind.INSTANT_INDEX)
            if r.fields.get("security") is True and (key := month_key(r.fields)) is not None
        ),
        key=lambda pair: pair[0],
        reverse=True,
    )[:window_months]

    for _, month in security_months:
        for item in month.embedded.get("disclosures", []):
            entries.append(_copy_disclosure(item, "release-month", month.path))
    return entries


def build_viewport(tree: ResourceTree, *, as_of: str, config: Config) -> Resource:
    """Build the viewport from an already link-resolved tree."""
    links: dict[str, Link] = {
        "self": Link(VIEWPORT_PATH),
        "release-index": Link(ROOT_PATH),
        "timeline": Link(TIMELINE_PATH),
    }
    months = sorted(
        (key, r.path)
        for r in tree.by_kind(ResourceKind.INSTANT_INDEX)
        if (key := month_key(r.fields)) is not None
    )
    if months:
        links["latest-month"] = Link(months[-1][1])

    return Resource(
        kind=ResourceKind.VIEWPORT,
        path=VIEWPORT_PATH,
        fields={},
        links=links,
        embedded={
            "series": _series_entries(tree, as_of=as_of),
            "disclosures": _disclosure_entries(
                tree, window_months=config.viewport.window_months
            ),
        },
        meta={
            "$schema": config.graph.schema_for(ResourceKind.VIEWPORT.value),
            "title": f"{config.graph.title} (fast index)",
            "stability": "unstable",
        },
        cycle=tree.cycle,
    )
