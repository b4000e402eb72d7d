"""Resource Compiler.

Turns a Record Store snapshot into the resource tree. Facts are placed at the
lowest-frequency resource that can still answer the common queries without an
extra fetch, and never pushed into a resource that changes more slowly than
the fact itself:

- series lifecycle facts (type, GA/EOL dates, support phase) live in the
  root index only;
- per-series "latest" facts and the release list live in the series index;
- per-release facts live in the frozen release detail;
- a month gets its instant index only once it has closed, that is once the
  snapshot is dated in a later month. Until then its releases are listed in
  the period index of their year, which is rebuilt every cycle;
- disclosures live in the month (instant index) of their earliest fixing
  release, or in the period index while that month is still open, and are
  copied verbatim into the release details that fix them.

Links other than the `self` links of embedded records are added afterwards by
the link resolver.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from relgraph.core.config import Config
from relgraph.core.result import Err, Ok, Result
from relgraph.output.console import ConsoleProtocol, Style
from relgraph.services.graph.errors import CompileError, CompileErrorKind
from relgraph.services.graph.model import (
    ROOT_PATH,
    TIMELINE_PATH,
    Entry,
    JsonValue,
    Link,
    Resource,
    ResourceKind,
    ResourceTree,
    manifest_path,
    month_path,
    release_path,
    series_path,
    year_path,
)
from relgraph.services.graph.records import (
    DisclosureRecord,
    ReleaseRecord,
    SeriesRecord,
    Snapshot,
)
from relgraph.services.graph.versions import OrderKey, order_key, parse_date, parse_version

_SERIES_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_RESERVED_SERIES = frozenset({"timeline", "index.json", "llms.json"})

type MonthKey = tuple[int, int]


@dataclass(frozen=True, slots=True)
class CheckedRelease:
    series: str
    version: str
    date: str
    security: bool
    disclosures: tuple[str, ...]
    key: OrderKey

    @property
    def month(self) -> MonthKey:
        return (int(self.date[0:4]), int(self.date[5:7]))


@dataclass(frozen=True, slots=True)
class SourceView:
    """Snapshot records after source-defect checks, indexed for compilation."""

    snapshot_date: str
    series: tuple[SeriesRecord, ...]
    releases: dict[str, list[CheckedRelease]]
    months: dict[MonthKey, list[CheckedRelease]]
    disclosures: dict[str, DisclosureRecord]
    disclosure_month: dict[str, MonthKey]

    def is_closed(self, month: MonthKey) -> bool:
        """True once the snapshot is dated after the last day of ``month``."""
        year, number = month
        following = f"{year + 1:04d}-01-01" if number == 12 else f"{year:04d}-{number + 1:02d}-01"
        return following <= self.snapshot_date

    def month_disclosures(self, month: MonthKey) -> list[DisclosureRecord]:
        ids = sorted(d for d, m in self.disclosure_month.items() if m == month)
        return [self.disclosures[d] for d in ids]

    def pending_disclosures(self, year: int) -> list[DisclosureRecord]:
        """Disclosures first fixed in a month of ``year`` that is still open."""
        ids = sorted(
            d
            for d, m in self.disclosure_month.items()
            if m[0] == year and not self.is_closed(m)
        )
        return [self.disclosures[d] for d in ids]


def _defect(kind: CompileErrorKind, message: str, hint: str | None = None) -> Err[CompileError]:
    return Err(CompileError(kind=kind, message=message, hint=hint))


def _check_series(snapshot: Snapshot) -> Result[None, CompileError]:
    seen: set[str] = set()
    for s in snapshot.series:
        if not _SERIES_ID_RE.match(s.id) or s.id in _RESERVED_SERIES:
            return _defect("invalid_identifier", f"invalid series id: {s.id!r}")
        if s.id in seen:
            return _defect("duplicate_series", f"series {s.id} is recorded twice")
        seen.add(s.id)
        for label, value in (("ga_date", s.ga_date), ("eol_date", s.eol_date)):
            if value is not None and parse_date(value) is None:
                return _defect("invalid_snapshot", f"series {s.id}: malformed {label} {value!r}")
        if s.ga_date and s.eol_date and s.eol_date < s.ga_date:
            return _defect("contradiction", f"series {s.id}: eol_date precedes ga_date")
    return Ok(None)


def _check_release(
    r: ReleaseRecord,
    *,
    snapshot: Snapshot,
    series_ids: set[str],
    disclosure_ids: set[str],
) -> Result[CheckedRelease, CompileError]:
    label = f"release {r.series}/{r.version}"
    if r.series not in series_ids:
        return _defect("unknown_series", f"{label}: series {r.series!r} is not recorded")
    if "/" in r.version or parse_version(r.version) is None:
        return _defect("invalid_identifier", f"{label}: unparseable version")
    if r.date is None:
        return _defect("missing_field", f"{label} has no recorded date", hint="fix the record")
    if r.security is None:
        return _defect("missing_field", f"{label} has no security flag", hint="fix the record")
    key = order_key(r.date, r.version)
    if key is None:
        return _defect("invalid_snapshot", f"{label}: malformed date {r.date!r}")
    if r.date > snapshot.snapshot_date:
        return _defect("contradiction", f"{label} is dated after the snapshot ({r.date})")
    if r.disclosures and not r.security:
        return _defect(
            "contradiction",
            f"{label} fixes disclosures but is not flagged as a security release",
        )
    for d in r.disclosures:
        if d not in disclosure_ids:
            return _defect("unknown_disclosure", f"{label} references unrecorded disclosure {d}")
    return Ok(
        CheckedRelease(
            series=r.series,
            version=r.version,
            date=r.date,
            security=r.security,
            disclosures=tuple(sorted(set(r.disclosures))),
            key=key,
        )
    )


def check_sources(snapshot: Snapshot) -> Result[SourceView, CompileError]:
    """Reject snapshots with gaps or contradictions; index the rest."""
    if parse_date(snapshot.snapshot_date) is None:
        return _defect("invalid_snapshot", f"malformed snapshot_date {snapshot.snapshot_date!r}")

    ok = _check_series(snapshot)
    if isinstance(ok, Err):
        return ok

    disclosures: dict[str, DisclosureRecord] = {}
    for d in snapshot.disclosures:
        if d.id in disclosures:
            return _defect("duplicate_disclosure", f"disclosure {d.id} is recorded twice")
        if d.title is None or d.severity is None:
            return _defect("missing_field", f"disclosure {d.id} needs a title and a severity")
        disclosures[d.id] = d

    series_ids = {s.id for s in snapshot.series}
    by_series: dict[str, list[CheckedRelease]] = {s.id: [] for s in snapshot.series}
    months: dict[MonthKey, list[CheckedRelease]] = defaultdict(list)
    seen_versions: set[str] = set()
    for r in snapshot.releases:
        checked = _check_release(
            r, snapshot=snapshot, series_ids=series_ids, disclosure_ids=set(disclosures)
        )
        if isinstance(checked, Err):
            return checked
        rel = checked.value
        if rel.version in seen_versions:
            return _defect("duplicate_release", f"release {rel.version} is recorded twice")
        seen_versions.add(rel.version)
        by_series[rel.series].append(rel)
        months[rel.month].append(rel)

    disclosure_month: dict[str, MonthKey] = {}
    for rel in sorted((r for rs in by_series.values() for r in rs), key=lambda r: r.key):
        for d in rel.disclosures:
            disclosure_month.setdefault(d, rel.month)

    unplaced = sorted(set(disclosures) - set(disclosure_month))
    if unplaced:
        return _defect(
            "unplaced_disclosure",
            f"disclosure {unplaced[0]} is not fixed by any recorded release",
            hint=f"{len(unplaced)} unplaced disclosure(s)",
        )

    for rs in by_series.values():
        rs.sort(key=lambda r: r.key)
    for ms in months.values():
        ms.sort(key=lambda r: r.key)

    def _series_order(s: SeriesRecord) -> tuple[str, str]:
        first = by_series[s.id][0].date if by_series[s.id] else ""
        return (s.ga_date or first, s.id)

    return Ok(
        SourceView(
            snapshot_date=snapshot.snapshot_date,
            series=tuple(sorted(snapshot.series, key=_series_order, reverse=True)),
            releases=by_series,
            months=dict(months),
            disclosures=disclosures,
            disclosure_month=disclosure_month,
        )
    )


# -----------------------------------------------------------------------------
# Compilation units
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Unit:
    config: Config
    cycle: str

    def resource(
        self,
        kind: ResourceKind,
        path: str,
        fields: dict[str, JsonValue],
        *,
        embedded: dict[str, list[Entry]] | None = None,
        links: dict[str, Link] | None = None,
        title: str | None = None,
    ) -> Resource:
        meta = {"$schema": self.config.graph.schema_for(kind.value)}
        if title is not None:
            meta["title"] = title
        return Resource(
            kind=kind,
            path=path,
            fields=fields,
            links=links or {},
            embedded=embedded or {},
            meta=meta,
            cycle=self.cycle,
        )


def _disclosure_fields(d: DisclosureRecord) -> dict[str, JsonValue]:
    return {
        "id": d.id,
        "title": d.title,
        "severity": d.severity,
        "cvss": d.cvss,
        "affected": list(d.affected),
        "fixes": list(d.fixes),
    }


def _latest(releases: list[CheckedRelease], *, security: bool = False) -> CheckedRelease | None:
    candidates = [r for r in releases if r.security or not security]
    return max(candidates, key=lambda r: r.key) if candidates else None


def compile_series(view: SourceView, series: SeriesRecord, unit: _Unit) -> dict[str, Resource]:
    """Series index, manifest and every release detail of one series."""
    releases = view.releases[series.id]
    latest = _latest(releases)
    latest_security = _latest(releases, security=True)
    out: dict[str, Resource] = {}

    out[series_path(series.id)] = unit.resource(
        ResourceKind.SERIES_INDEX,
        series_path(series.id),
        {
            "series": series.id,
            "latest_version": latest.version if latest else None,
            "latest_date": latest.date if latest else None,
            "latest_security_version": latest_security.version if latest_security else None,
            "release_count": len(releases),
        },
        embedded={
            "releases": [
                Entry(
                    fields={
                        "version": r.version,
                        "date": r.date,
                        "security": r.security,
                        "cve_ids": list(r.disclosures),
                    },
                    links={"self": Link(release_path(series.id, r.version), title=r.version)},
                )
                for r in reversed(releases)
            ]
        },
    )

    out[manifest_path(series.id)] = unit.resource(
        ResourceKind.MANIFEST,
        manifest_path(series.id),
        {"series": series.id},
        links={name: Link(href) for name, href in series.links},
    )

    for r in releases:
        path = release_path(series.id, r.version)
        # No link to the disclosure's month: it may not be closed yet.
        disclosures = [Entry(fields=_disclosure_fields(view.disclosures[d])) for d in r.disclosures]
        out[path] = unit.resource(
            ResourceKind.RELEASE_DETAIL,
            path,
            {
                "version": r.version,
                "series": r.series,
                "date": r.date,
                "security": r.security,
                "cve_ids": list(r.disclosures),
            },
            embedded={"disclosures": disclosures} if disclosures else None,
        )
    return out


def _release_entries(releases: list[CheckedRelease]) -> list[Entry]:
    """Month and pending listings: newest first, linking each release detail."""
    return [
        Entry(
            fields={
                "version": r.version,
                "series": r.series,
                "date": r.date,
                "security": r.security,
            },
            links={"self": Link(release_path(r.series, r.version), title=r.version)},
        )
        for r in reversed(releases)
    ]


def compile_year(
    view: SourceView, year: int, months: list[MonthKey], unit: _Unit
) -> dict[str, Resource]:
    """Period index for one year and the instant index of each of its closed months."""
    out: dict[str, Resource] = {}
    summaries: list[Entry] = []
    closed = [m for m in sorted(months) if view.is_closed(m)]
    pending = [r for m in sorted(months) if not view.is_closed(m) for r in view.months[m]]

    for key in closed:
        releases = view.months[key]
        disclosures = view.month_disclosures(key)
        month_fields: dict[str, JsonValue] = {
            "year": key[0],
            "month": key[1],
            "date": max(r.date for r in releases),
            "release_count": len(releases),
            "security": any(r.security for r in releases),
            "cve_count": len(disclosures),
        }
        path = month_path(*key)
        embedded: dict[str, list[Entry]] = {"releases": _release_entries(releases)}
        if disclosures:
            embedded["disclosures"] = [Entry(fields=_disclosure_fields(d)) for d in disclosures]
        out[path] = unit.resource(ResourceKind.INSTANT_INDEX, path, month_fields, embedded=embedded)
        summaries.append(Entry(fields=dict(month_fields), links={"self": Link(path)}))

    year_embedded: dict[str, list[Entry]] = {"months": list(reversed(summaries))}
    if pending:
        year_embedded["pending"] = _release_entries(sorted(pending, key=lambda r: r.key))
    open_disclosures = view.pending_disclosures(year)
    if open_disclosures:
        year_embedded["disclosures"] = [
            Entry(fields=_disclosure_fields(d)) for d in open_disclosures
        ]
    out[year_path(year)] = unit.resource(
        ResourceKind.PERIOD_INDEX,
        year_path(year),
        {
            "year": year,
            "month_count": len(closed),
            "release_count": sum(len(view.months[m]) for m in months),
        },
        embedded=year_embedded,
    )
    return out


def compile_root(view: SourceView, unit: _Unit) -> Resource:
    entries = [
        Entry(
            fields={
                "series": s.id,
                "release_type": s.release_type,
                "ga_date": s.ga_date,
                "eol_date": s.eol_date,
                "support_phase": s.support_phase,
            },
            links={"self": Link(series_path(s.id), title=s.id)},
        )
        for s in view.series
    ]
    return unit.resource(
        ResourceKind.ROOT_INDEX,
        ROOT_PATH,
        {},
        embedded={"series": entries},
        title=unit.config.graph.title,
    )


def compile_timeline(view: SourceView, unit: _Unit) -> Resource:
    years = sorted({m[0] for m in view.months}, reverse=True)
    return unit.resource(
        ResourceKind.TIMELINE_ROOT,
        TIMELINE_PATH,
        {},
        embedded={
            "years": [Entry(fields={"year": y}, links={"self": Link(year_path(y))}) for y in years]
        },
    )


def compile_tree(
    snapshot: Snapshot,
    *,
    config: Config,
    cycle: str | None = None,
    console: ConsoleProtocol | None = None,
) -> Result[ResourceTree, CompileError]:
    """Compile the full resource tree for one snapshot.

    Series and years are independent units: each writes a disjoint set of
    paths, so they run on a thread pool and are merged at the end.
    """
    checked = check_sources(snapshot)
    if isinstance(checked, Err):
        return checked
    view = checked.value
    unit = _Unit(config=config, cycle=cycle or snapshot.cycle or "local")

    by_year: dict[int, list[MonthKey]] = defaultdict(list)
    for key in view.months:
        by_year[key[0]].append(key)

    jobs: list[Callable[[], dict[str, Resource]]] = [
        (lambda s=s: compile_series(view, s, unit)) for s in view.series
    ]
    jobs += [(lambda y=y, ms=ms: compile_year(view, y, ms, unit)) for y, ms in by_year.items()]

    resources: dict[str, Resource] = {}
    with ThreadPoolExecutor(max_workers=config.compile.workers) as pool:
        for part in pool.map(lambda job: job(), jobs):
            overlap = resources.keys() & part.keys()
            if overlap:
                return _defect(
                    "invalid_identifier",
                    f"compilation units write the same paths: {sorted(overlap)}",
                    hint="series ids must not collide with timeline paths",
                )
            resources.update(part)

    resources[ROOT_PATH] = compile_root(view, unit)
    resources[TIMELINE_PATH] = compile_timeline(view, unit)

    if console is not None:
        console.print(
            f"compiled {len(resources)} resources "
            f"({len(view.series)} series, {len(by_year)} years) in cycle {unit.cycle}",
            Style.DIM,
        )

    return Ok(ResourceTree(resources=dict(sorted(resources.items())), cycle=unit.cycle))
