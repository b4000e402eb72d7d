"""Consistency Validator.

A total scan over a compiled (or loaded) tree. Every violation becomes one
Diagnostic keyed by resource path and fact name; any diagnostic fails the
build. The validator never repairs anything.

Checks:
- placement: root resources hold only root facts, leaf resources only leaf
  facts; fields outside the schema are unclassified and rejected;
- root facts appear in exactly one guaranteed resource, branch facts have
  exactly one canonical location, and every copy matches it verbatim;
- aggregates (counts, latest versions) agree with the records they summarise;
- every series, release, year, month and disclosure mentioned anywhere has a
  canonical record;
- every listing (series in the root index, releases in a series index, a
  month or the pending part of a year, months in a year, years in the
  timeline) names exactly the resources that exist, so no two reachable
  resources disagree about whether a record exists;
- links resolve, ``self`` is the resource's own path, wormholes target leaf
  resources or resources from the same compilation pass, ``prev`` only on
  leaves, no forward relations, no wormhole into a root resource;
- walking ``prev``/``prev-security`` from every ``latest`` pointer visits the
  full authoritative list in strictly decreasing order;
- against the previously published tree, no leaf changed or disappeared.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass

from relgraph.services.graph.document import render
from relgraph.services.graph.errors import Diagnostic, DiagnosticCode
from relgraph.services.graph.links import month_key, release_key
from relgraph.services.graph.model import (
    FORWARD_PREFIX,
    PREV_RELATIONS,
    ROOT_PATH,
    SECTIONS,
    TIMELINE_PATH,
    TOP,
    Fact,
    Frequency,
    Link,
    Resource,
    ResourceKind,
    ResourceTree,
    month_path,
    relation_category,
    series_path,
    year_path,
)


@dataclass(frozen=True, slots=True)
class ValidationReport:
    diagnostics: tuple[Diagnostic, ...]
    resources_checked: int
    facts_checked: int

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    def codes(self) -> set[str]:
        return {d.code for d in self.diagnostics}

    def by_code(self, code: DiagnosticCode) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.code == code]


class _Collector:
    def __init__(self) -> None:
        self._seen: set[Diagnostic] = set()

    def add(self, path: str, fact: str, code: DiagnosticCode, message: str) -> None:
        self._seen.add(Diagnostic(path=path, fact=fact, code=code, message=message))

    def sorted(self) -> tuple[Diagnostic, ...]:
        return tuple(sorted(self._seen))


def _guaranteed(resource: Resource) -> bool:
    return resource.kind.spec.guaranteed


# -----------------------------------------------------------------------------
# Facts
# -----------------------------------------------------------------------------


def _check_placement(fact: Fact, resource: Resource, out: _Collector) -> None:
    if fact.frequency is None:
        out.add(fact.path, fact.key, "placement", f"unclassified field '{fact.name}'")
        return
    if not _guaranteed(resource):
        return
    holder = resource.kind.frequency
    if holder is Frequency.ROOT and fact.frequency is not Frequency.ROOT:
        out.add(
            fact.path,
            fact.key,
            "placement",
            f"{fact.frequency.value} fact in root resource {resource.kind.value}",
        )
    elif holder is Frequency.LEAF and fact.frequency is not Frequency.LEAF:
        out.add(
            fact.path,
            fact.key,
            "placement",
            f"{fact.frequency.value} fact in leaf resource {resource.kind.value}",
        )


def _check_facts(tree: ResourceTree, out: _Collector) -> int:
    occurrences: dict[str, list[Fact]] = defaultdict(list)
    for resource in tree.resources.values():
        for fact in resource.facts():
            _check_placement(fact, resource, out)
            if fact.frequency is not None:
                occurrences[fact.key].append(fact)

    homed_entities = {f.entity for facts in occurrences.values() for f in facts if f.home}
    count = 0
    for key, facts in occurrences.items():
        count += len(facts)
        # Occurrences in a resource of the fact's own frequency come first and are kept.
        guaranteed = sorted(
            (f for f in facts if _guaranteed(tree.resources[f.path])),
            key=lambda f: tree.resources[f.path].kind.frequency is not f.frequency,
        )
        homes = [f for f in guaranteed if f.home]
        freq = facts[0].frequency

        if freq is Frequency.ROOT and len(guaranteed) > 1:
            for f in guaranteed[1:]:
                out.add(
                    f.path,
                    key,
                    "root-fact-duplicated",
                    f"root fact also held by {guaranteed[0].path}",
                )
        if len(homes) > 1:
            code: DiagnosticCode = "branch-fact-duplicated"
            if freq is Frequency.ROOT:
                code = "root-fact-duplicated"
            for f in homes[1:]:
                out.add(f.path, key, code, f"canonical copy also in {homes[0].path}")

        if not homes:
            # Unknown entities in guaranteed resources are reported by the existence check.
            entity_homed = facts[0].entity in homed_entities
            for f in facts:
                if not _guaranteed(tree.resources[f.path]):
                    out.add(f.path, key, "viewport-sole-source", "fact exists only here")
                elif entity_homed:
                    out.add(f.path, key, "stale-copy", "no canonical value to copy from")
            continue

        home = homes[0]
        for f in facts:
            if f is home or f.home:
                continue
            if f.value != home.value:
                out.add(
                    f.path,
                    key,
                    "stale-copy",
                    f"copy {f.value!r} differs from {home.path} value {home.value!r}",
                )
    return count


# -----------------------------------------------------------------------------
# Existence
# -----------------------------------------------------------------------------


def _home_sections() -> dict[str, list[tuple[ResourceKind, str]]]:
    out: dict[str, list[tuple[ResourceKind, str]]] = defaultdict(list)
    for kind, sections in SECTIONS.items():
        for name, schema in sections.items():
            if schema.home:
                out[schema.entity].append((kind, name))
    return dict(out)


_HOME_SECTIONS = _home_sections()


def _records(resource: Resource) -> Iterator[tuple[str, str]]:
    """Yield (section, entity id) for every record the resource describes."""
    sections = SECTIONS.get(resource.kind, {})
    top = sections.get(TOP)
    if top is not None:
        entity = top.entity_id(resource.fields)
        if entity is not None:
            yield TOP, entity
    for name, entries in resource.embedded.items():
        schema = sections.get(name)
        if schema is None:
            continue
        for entry in entries:
            entity = schema.entity_id(entry.fields)
            if entity is not None:
                yield name, entity


def _check_existence(tree: ResourceTree, out: _Collector) -> None:
    present: dict[tuple[ResourceKind, str], set[str]] = defaultdict(set)
    mentions: dict[str, set[str]] = defaultdict(set)
    for resource in tree.resources.values():
        for section, entity in _records(resource):
            present[(resource.kind, section)].add(entity)
            mentions[entity].add(resource.path)

    for entity, paths in mentions.items():
        homes = _HOME_SECTIONS.get(entity.split(":", 1)[0], [])
        if not homes or any(entity in present[home] for home in homes):
            continue
        where = " or ".join(
            kind.value if section == TOP else f"{kind.value}.{section}" for kind, section in homes
        )
        for path in paths:
            out.add(path, entity, "existence-mismatch", f"{entity} has no record in {where}")


def _listed(resource: Resource, section: str) -> set[str]:
    schema = SECTIONS[resource.kind][section]
    return {
        entity
        for entry in resource.embedded.get(section, [])
        if (entity := schema.entity_id(entry.fields)) is not None
    }


def _expected_listings(tree: ResourceTree) -> dict[tuple[str, str], dict[str, str]]:
    """(listing path, section) -> {entity: path of the resource it stands for}."""
    expected: dict[tuple[str, str], dict[str, str]] = defaultdict(dict)
    for r in tree.resources.values():
        match r.kind:
            case ResourceKind.SERIES_INDEX:
                entity = SECTIONS[r.kind][TOP].entity_id(r.fields)
                if entity is not None:
                    expected[(ROOT_PATH, "series")][entity] = r.path
            case ResourceKind.RELEASE_DETAIL:
                entity = SECTIONS[r.kind][TOP].entity_id(r.fields)
                series = r.fields.get("series")
                key = release_key(r.fields)
                if entity is None or not isinstance(series, str) or key is None:
                    continue
                expected[(series_path(series), "releases")][entity] = r.path
                year, month = int(key[0][0:4]), int(key[0][5:7])
                if month_path(year, month) in tree.resources:
                    expected[(month_path(year, month), "releases")][entity] = r.path
                else:
                    expected[(year_path(year), "pending")][entity] = r.path
            case ResourceKind.INSTANT_INDEX:
                entity = SECTIONS[r.kind][TOP].entity_id(r.fields)
                mkey = month_key(r.fields)
                if entity is not None and mkey is not None:
                    expected[(year_path(mkey[0]), "months")][entity] = r.path
            case ResourceKind.PERIOD_INDEX:
                entity = SECTIONS[r.kind][TOP].entity_id(r.fields)
                if entity is not None:
                    expected[(TIMELINE_PATH, "years")][entity] = r.path
    return expected


_LISTINGS = (
    (ResourceKind.ROOT_INDEX, "series"),
    (ResourceKind.SERIES_INDEX, "releases"),
    (ResourceKind.INSTANT_INDEX, "releases"),
    (ResourceKind.PERIOD_INDEX, "pending"),
    (ResourceKind.PERIOD_INDEX, "months"),
    (ResourceKind.TIMELINE_ROOT, "years"),
)


def _check_listings(tree: ResourceTree, out: _Collector) -> None:
    expected = _expected_listings(tree)

    for kind, section in _LISTINGS:
        for r in tree.by_kind(kind):
            want = expected.pop((r.path, section), {})
            have = _listed(r, section)
            for entity in sorted(want.keys() - have):
                out.add(
                    r.path,
                    entity,
                    "existence-mismatch",
                    f"{want[entity]} exists but is not listed in {section}",
                )
            for entity in sorted(have - want.keys()):
                out.add(
                    r.path,
                    entity,
                    "existence-mismatch",
                    f"listed in {section} but no such resource exists",
                )

    # Listings whose own resource is missing.
    for (path, section), want in expected.items():
        for entity, child in want.items():
            out.add(
                child,
                entity,
                "existence-mismatch",
                f"not listed: {path} ({section}) does not exist",
            )


# -----------------------------------------------------------------------------
# Aggregates
# -----------------------------------------------------------------------------


def _target_field(tree: ResourceTree, link: Link | None, name: str) -> object:
    if link is None:
        return None
    target = tree.get(link.href)
    return target.fields.get(name) if target else None


def _check_aggregates(tree: ResourceTree, out: _Collector) -> None:
    def expect(resource: Resource, name: str, actual: object) -> None:
        stored = resource.fields.get(name)
        if stored != actual:
            out.add(
                resource.path,
                name,
                "aggregate-mismatch",
                f"stored {stored!r}, records say {actual!r}",
            )

    for r in tree.by_kind(ResourceKind.SERIES_INDEX):
        entries = r.embedded.get("releases", [])
        expect(r, "release_count", len(entries))
        expect(r, "latest_version", _target_field(tree, r.links.get("latest"), "version"))
        expect(r, "latest_date", _target_field(tree, r.links.get("latest"), "date"))
        expect(
            r,
            "latest_security_version",
            _target_field(tree, r.links.get("latest-security"), "version"),
        )

    for r in tree.by_kind(ResourceKind.PERIOD_INDEX):
        entries = r.embedded.get("months", [])
        expect(r, "month_count", len(entries))
        total = 0
        for e in entries:
            value = e.fields.get("release_count")
            total += value if isinstance(value, int) else 0
        total += len(r.embedded.get("pending", []))
        expect(r, "release_count", total)

    for r in tree.by_kind(ResourceKind.INSTANT_INDEX):
        releases = r.embedded.get("releases", [])
        expect(r, "release_count", len(releases))
        expect(r, "cve_count", len(r.embedded.get("disclosures", [])))
        expect(r, "security", any(e.fields.get("security") is True for e in releases))


# -----------------------------------------------------------------------------
# Links
# -----------------------------------------------------------------------------


def _check_link(
    tree: ResourceTree,
    origin: Resource,
    rel: str,
    link: Link,
    out: _Collector,
) -> None:
    if rel.startswith(FORWARD_PREFIX):
        out.add(origin.path, rel, "forward-link", f"forward relation '{rel}' is not allowed")

    category = relation_category(rel, link)
    if category == "exit":
        return

    target = tree.get(link.href)
    if target is None:
        out.add(origin.path, rel, "dangling-link", f"'{rel}' points to missing {link.href}")
        return

    if category != "wormhole":
        return

    if rel in PREV_RELATIONS and not origin.kind.is_leaf:
        out.add(origin.path, rel, "prev-on-non-leaf", f"'{rel}' on {origin.kind.value}")
    if target.kind.frequency is Frequency.ROOT:
        out.add(origin.path, rel, "wormhole-to-root", f"'{rel}' targets {target.kind.value}")
    if target.kind.is_leaf:
        return
    if origin.kind.is_leaf:
        out.add(
            origin.path,
            rel,
            "wormhole-direction",
            f"leaf resource links via '{rel}' to mutable {target.kind.value}",
        )
    elif origin.cycle != target.cycle:
        out.add(
            origin.path,
            rel,
            "wormhole-direction",
            f"'{rel}' target compiled in pass {target.cycle!r}, origin in {origin.cycle!r}",
        )


def _check_links(tree: ResourceTree, out: _Collector) -> None:
    for resource in tree.resources.values():
        self_link = resource.links.get("self")
        if self_link is None:
            out.add(resource.path, "self", "self-mismatch", "resource has no self link")
        elif self_link.href != resource.path:
            out.add(
                resource.path,
                "self",
                "self-mismatch",
                f"self points to {self_link.href}",
            )

        for rel, link in resource.links.items():
            if rel != "self":
                _check_link(tree, resource, rel, link, out)
        for entries in resource.embedded.values():
            for entry in entries:
                for rel, link in entry.links.items():
                    _check_link(tree, resource, rel, link, out)


# -----------------------------------------------------------------------------
# Backward chains
# -----------------------------------------------------------------------------


def _leaf_key(resource: Resource) -> object | None:
    if resource.kind is ResourceKind.RELEASE_DETAIL:
        return release_key(resource.fields)
    if resource.kind is ResourceKind.INSTANT_INDEX:
        return month_key(resource.fields)
    return None


def _expected_chain(tree: ResourceTree, start: Resource, *, security: bool) -> list[str]:
    start_key = _leaf_key(start)
    if start_key is None:
        return []
    same_series = start.kind is ResourceKind.RELEASE_DETAIL
    candidates: list[tuple[object, str]] = []
    for r in tree.by_kind(start.kind):
        if same_series and r.fields.get("series") != start.fields.get("series"):
            continue
        if security and r.fields.get("security") is not True:
            continue
        key = _leaf_key(r)
        if key is not None and key <= start_key:  # type: ignore[operator]
            candidates.append((key, r.path))
    candidates.sort(key=lambda c: c[0], reverse=True)  # type: ignore[arg-type,return-value]
    return [path for _, path in candidates]


def _walk(tree: ResourceTree, start: Resource, rel: str, limit: int) -> list[str]:
    visited = [start.path]
    current = start
    while len(visited) <= limit:
        link = current.links.get(rel)
        if link is None:
            break
        nxt = tree.get(link.href)
        if nxt is None or nxt.path in visited:
            visited.append(link.href)
            break
        visited.append(nxt.path)
        current = nxt
    return visited


def _check_chains(tree: ResourceTree, out: _Collector) -> None:
    for origin in tree.resources.values():
        pointers: list[tuple[str, Link]] = [
            (rel, link) for rel, link in origin.links.items() if rel.startswith("latest")
        ]
        for entries in origin.embedded.values():
            for entry in entries:
                pointers += [(r, l) for r, l in entry.links.items() if r.startswith("latest")]

        for rel, link in pointers:
            start = tree.get(link.href)
            if start is None or not start.kind.is_leaf:
                continue
            security = rel == "latest-security"
            chain_rel = "prev-security" if security else "prev"
            expected = _expected_chain(tree, start, security=security)
            walked = _walk(tree, start, chain_rel, limit=len(tree))
            if walked != expected:
                missing = [p for p in expected if p not in walked]
                extra = [p for p in walked if p not in expected]
                if missing:
                    detail = f"missing {missing[0]}"
                elif extra:
                    detail = f"unexpected {extra[0]}"
                else:
                    detail = "out of order"
                out.add(
                    origin.path,
                    chain_rel,
                    "chain-gap",
                    f"walking '{chain_rel}' from {start.path} via '{rel}': {detail}",
                )


# -----------------------------------------------------------------------------
# Immutability
# -----------------------------------------------------------------------------


def _check_leaf_immutability(tree: ResourceTree, previous: ResourceTree, out: _Collector) -> None:
    for path, old in previous.resources.items():
        if not old.kind.is_leaf:
            continue
        new = tree.get(path)
        if new is None:
            out.add(path, "*", "leaf-mutated", "published leaf resource disappeared")
        elif render(new) != render(old):
            out.add(path, "*", "leaf-mutated", "published leaf resource changed")


def validate_tree(tree: ResourceTree, *, previous: ResourceTree | None = None) -> ValidationReport:
    """Check every invariant over ``tree``.

    Args:
        tree: The tree about to be published.
        previous: The currently published tree, if any, for the leaf
            immutability check.
    """
    out = _Collector()
    facts = _check_facts(tree, out)
    _check_existence(tree, out)
    _check_listings(tree, out)
    _check_aggregates(tree, out)
    _check_links(tree, out)
    _check_chains(tree, out)
    if previous is not None:
        _check_leaf_immutability(tree, previous, out)
    return ValidationReport(
        diagnostics=out.sorted(),
        resources_checked=len(tree),
        facts_checked=facts,
    )
