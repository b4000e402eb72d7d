"""Resource kinds, frequency classes, fact schema and link vocabulary.

Documents are modelled as a closed set of kinds. Each kind declares its
frequency class, its capabilities and, per section (top level or an embedded
collection), which entity the section describes and which fields are facts.
Facts are never stored separately: they are derived from a resource's fields
through this schema, so compiled trees and trees loaded back from disk are
checked the same way.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

__all__ = [
    "Frequency",
    "ResourceKind",
    "KindSpec",
    "KIND_SPECS",
    "SectionSchema",
    "SECTIONS",
    "TOP",
    "RESERVED_FIELDS",
    "FIELD_FREQUENCY",
    "JsonValue",
    "Link",
    "Entry",
    "Fact",
    "Resource",
    "ResourceTree",
    "RelationCategory",
    "relation_category",
    "WORMHOLE_RELATIONS",
    "PREV_RELATIONS",
    "FORWARD_PREFIX",
    "ROOT_PATH",
    "TIMELINE_PATH",
    "VIEWPORT_PATH",
    "series_path",
    "manifest_path",
    "release_path",
    "year_path",
    "month_path",
]


class Frequency(Enum):
    """Expected mutation rate of a fact or resource."""

    ROOT = "root"
    """Changes about once or twice a year."""

    BRANCH = "branch"
    """Changes about monthly."""

    LEAF = "leaf"
    """Immutable once written."""


class ResourceKind(Enum):
    ROOT_INDEX = "root-index"
    SERIES_INDEX = "series-index"
    RELEASE_DETAIL = "release-detail"
    TIMELINE_ROOT = "timeline-root"
    PERIOD_INDEX = "period-index"
    INSTANT_INDEX = "instant-index"
    MANIFEST = "manifest"
    VIEWPORT = "viewport"

    @property
    def spec(self) -> KindSpec:
        return KIND_SPECS[self]

    @property
    def frequency(self) -> Frequency:
        return KIND_SPECS[self].frequency

    @property
    def is_leaf(self) -> bool:
        return KIND_SPECS[self].frequency is Frequency.LEAF


@dataclass(frozen=True, slots=True)
class KindSpec:
    """Static capabilities of a resource kind.

    Attributes:
        frequency: How often the resource is rewritten.
        has_links: Carries a `_links` section.
        has_embedded: Carries an `_embedded` section.
        has_manifest: Links to a manifest of auxiliary links.
        guaranteed: False for resources exempt from placement rules.
    """

    frequency: Frequency
    has_links: bool = True
    has_embedded: bool = True
    has_manifest: bool = False
    guaranteed: bool = True


KIND_SPECS: dict[ResourceKind, KindSpec] = {
    ResourceKind.ROOT_INDEX: KindSpec(Frequency.ROOT),
    ResourceKind.SERIES_INDEX: KindSpec(Frequency.BRANCH, has_manifest=True),
    ResourceKind.RELEASE_DETAIL: KindSpec(Frequency.LEAF),
    ResourceKind.TIMELINE_ROOT: KindSpec(Frequency.ROOT),
    ResourceKind.PERIOD_INDEX: KindSpec(Frequency.BRANCH),
    ResourceKind.INSTANT_INDEX: KindSpec(Frequency.LEAF),
    ResourceKind.MANIFEST: KindSpec(Frequency.BRANCH, has_embedded=False),
    ResourceKind.VIEWPORT: KindSpec(Frequency.BRANCH, guaranteed=False),
}

EntityType = Literal["series", "release", "disclosure", "year", "month"]

TOP = ""
"""Section name for a resource's top-level fields."""


@dataclass(frozen=True, slots=True)
class SectionSchema:
    """How to read facts out of one section of a document.

    Attributes:
        entity: Entity type every record in the section describes.
        identity: Fields that together identify the entity. They are not facts.
        fields: Fact fields and their frequency class.
        home: True if this section is a canonical location of its facts. An
            entity may have several home sections but a record in only one.
    """

    entity: EntityType
    identity: tuple[str, ...]
    fields: Mapping[str, Frequency]
    home: bool = False

    def entity_id(self, values: Mapping[str, JsonValue]) -> str | None:
        parts: list[str] = []
        for name in self.identity:
            value = values.get(name)
            if value is None or isinstance(value, (bool, list)):
                return None
            if isinstance(value, int) and name == "month":
                parts.append(f"{value:02d}")
            else:
                parts.append(str(value))
        return f"{self.entity}:{'-'.join(parts)}"


_R = Frequency.ROOT
_B = Frequency.BRANCH
_L = Frequency.LEAF

_SERIES_LIFECYCLE = {"release_type": _R, "ga_date": _R, "eol_date": _R, "support_phase": _R}
_SERIES_LATEST = {
    "latest_version": _B,
    "latest_date": _B,
    "latest_security_version": _B,
    "release_count": _B,
}
_DISCLOSURE = {"title": _L, "severity": _L, "cvss": _L, "affected": _L, "fixes": _L}
_MONTH = {"date": _L, "release_count": _L, "security": _L, "cve_count": _L}

SECTIONS: dict[ResourceKind, dict[str, SectionSchema]] = {
    ResourceKind.ROOT_INDEX: {
        "series": SectionSchema("series", ("series",), _SERIES_LIFECYCLE, home=True),
    },
    ResourceKind.SERIES_INDEX: {
        TOP: SectionSchema("series", ("series",), _SERIES_LATEST, home=True),
        "releases": SectionSchema(
            "release", ("version",), {"date": _L, "security": _L, "cve_ids": _L}
        ),
    },
    ResourceKind.MANIFEST: {
        TOP: SectionSchema("series", ("series",), {}),
    },
    ResourceKind.RELEASE_DETAIL: {
        TOP: SectionSchema(
            "release",
            ("version",),
            {"series": _L, "date": _L, "security": _L, "cve_ids": _L},
            home=True,
        ),
        "disclosures": SectionSchema("disclosure", ("id",), _DISCLOSURE),
    },
    ResourceKind.TIMELINE_ROOT: {
        "years": SectionSchema("year", ("year",), {}),
    },
    ResourceKind.PERIOD_INDEX: {
        TOP: SectionSchema(
            "year", ("year",), {"month_count": _B, "release_count": _B}, home=True
        ),
        "months": SectionSchema("month", ("year", "month"), _MONTH),
        "pending": SectionSchema(
            "release", ("version",), {"series": _L, "date": _L, "security": _L}
        ),
        "disclosures": SectionSchema("disclosure", ("id",), _DISCLOSURE, home=True),
    },
    ResourceKind.INSTANT_INDEX: {
        TOP: SectionSchema("month", ("year", "month"), _MONTH, home=True),
        "releases": SectionSchema(
            "release", ("version",), {"series": _L, "date": _L, "security": _L}
        ),
        "disclosures": SectionSchema("disclosure", ("id",), _DISCLOSURE, home=True),
    },
    ResourceKind.VIEWPORT: {
        "series": SectionSchema(
            "series",
            ("series",),
            {
                "release_type": _R,
                "support_phase": _R,
                "eol_date": _R,
                "latest_version": _B,
                "latest_date": _B,
                "latest_security_version": _B,
            },
        ),
        "disclosures": SectionSchema(
            "disclosure", ("id",), {"title": _L, "severity": _L, "cvss": _L}
        ),
    },
}


def _field_frequencies() -> dict[tuple[str, str], Frequency]:
    out: dict[tuple[str, str], Frequency] = {}
    for sections in SECTIONS.values():
        for section in sections.values():
            for name, freq in section.fields.items():
                out[(section.entity, name)] = freq
    return out


FIELD_FREQUENCY = _field_frequencies()
"""Frequency class of every known (entity, field) pair."""

RESERVED_FIELDS = frozenset({"$schema", "kind", "title", "stability", "_links", "_embedded"})

JsonValue = str | int | float | bool | None | list[str]


@dataclass(frozen=True, slots=True)
class Link:
    """One entry of a `_links` section."""

    href: str
    title: str | None = None
    media_type: str | None = None

    @property
    def is_exit(self) -> bool:
        """Exit links point outside the tree and are not resolved."""
        return self.href.startswith(("http://", "https://"))


def _no_links() -> dict[str, Link]:
    return {}


@dataclass(frozen=True, slots=True)
class Entry:
    """An embedded (inline) record inside a resource."""

    fields: dict[str, JsonValue]
    links: dict[str, Link] = field(default_factory=_no_links)


@dataclass(frozen=True, slots=True)
class Fact:
    """One atomic value, located in a resource section."""

    entity: str
    name: str
    value: JsonValue
    frequency: Frequency | None
    path: str
    section: str
    home: bool

    @property
    def key(self) -> str:
        return f"{self.entity}#{self.name}"


def _no_meta() -> dict[str, str]:
    return {}


def _no_embedded() -> dict[str, list[Entry]]:
    return {}


@dataclass(frozen=True, slots=True)
class Resource:
    """A named, addressable document.

    ``cycle`` identifies the compilation pass that produced the resource. It
    is not serialised.
    """

    kind: ResourceKind
    path: str
    fields: dict[str, JsonValue]
    links: dict[str, Link] = field(default_factory=_no_links)
    embedded: dict[str, list[Entry]] = field(default_factory=_no_embedded)
    meta: dict[str, str] = field(default_factory=_no_meta)
    cycle: str = ""

    def facts(self) -> Iterator[Fact]:
        """Yield every fact carried by this resource, top level and embedded."""
        sections = SECTIONS.get(self.kind, {})
        top = sections.get(TOP)
        yield from _section_facts(self, TOP, top, self.fields)
        for name, entries in self.embedded.items():
            schema = sections.get(name)
            for entry in entries:
                yield from _section_facts(self, name, schema, entry.fields)


def _section_facts(
    resource: Resource,
    section: str,
    schema: SectionSchema | None,
    values: Mapping[str, JsonValue],
) -> Iterator[Fact]:
    if schema is None:
        for name, value in values.items():
            yield Fact(f"?:{resource.path}", name, value, None, resource.path, section, False)
        return

    entity = schema.entity_id(values) or f"{schema.entity}:?"
    for name, value in values.items():
        if name in schema.identity:
            continue
        freq = FIELD_FREQUENCY.get((schema.entity, name))
        yield Fact(entity, name, value, freq, resource.path, section, schema.home)


@dataclass(frozen=True, slots=True)
class ResourceTree:
    """A complete set of resources keyed by their path."""

    resources: dict[str, Resource]
    cycle: str = ""

    def get(self, path: str) -> Resource | None:
        return self.resources.get(path)

    def by_kind(self, kind: ResourceKind) -> list[Resource]:
        return [r for r in self.resources.values() if r.kind is kind]

    def with_resources(self, resources: Mapping[str, Resource]) -> ResourceTree:
        merged = dict(self.resources)
        merged.update(resources)
        return ResourceTree(resources=dict(sorted(merged.items())), cycle=self.cycle)

    def __len__(self) -> int:
        return len(self.resources)


# -----------------------------------------------------------------------------
# Link vocabulary
# -----------------------------------------------------------------------------

RelationCategory = Literal["canonical", "wormhole", "structural", "exit"]

WORMHOLE_RELATIONS = frozenset({"latest", "latest-security", "prev", "prev-security"})
PREV_RELATIONS = frozenset({"prev", "prev-security"})
STRUCTURAL_RELATIONS = frozenset(
    {"release-index", "release-major", "release-month", "release-year", "timeline", "manifest"}
)
FORWARD_PREFIX = "next"


def relation_category(rel: str, link: Link) -> RelationCategory:
    if link.is_exit:
        return "exit"
    if rel == "self":
        return "canonical"
    if rel in STRUCTURAL_RELATIONS:
        return "structural"
    return "wormhole"


# -----------------------------------------------------------------------------
# Paths
# -----------------------------------------------------------------------------

ROOT_PATH = "index.json"
TIMELINE_PATH = "timeline/index.json"
VIEWPORT_PATH = "llms.json"


def series_path(series: str) -> str:
    return f"{series}/index.json"


def manifest_path(series: str) -> str:
    return f"{series}/manifest.json"


def release_path(series: str, version: str) -> str:
    return f"{series}/{version}/index.json"


def year_path(year: int) -> str:
    return f"timeline/{year}/index.json"


def month_path(year: int, month: int) -> str:
    return f"timeline/{year}/{month:02d}/index.json"
