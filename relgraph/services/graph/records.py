"""Record Store snapshot reader.

The snapshot is a single JSON document holding series, release and
disclosure records. Reading it is purely structural: values are type-checked
and kept as found. Gaps that would force the compiler to guess (a release
without a date, say) are kept as None here and rejected by the compiler.
A value that is present but of the wrong shape is never coerced: it is an
``invalid_snapshot`` defect, because a silently dropped value would be frozen
into a leaf resource.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from relgraph.core.result import Err, Ok, Result
from relgraph.core.structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_float,
    get_list,
    get_str,
    get_str_list,
    get_table,
)
from relgraph.services.graph.errors import CompileError


@dataclass(frozen=True, slots=True)
class SeriesRecord:
    id: str
    release_type: str | None
    support_phase: str | None
    ga_date: str | None
    eol_date: str | None
    links: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class ReleaseRecord:
    series: str
    version: str
    date: str | None
    security: bool | None
    disclosures: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DisclosureRecord:
    id: str
    title: str | None
    severity: str | None
    cvss: float | None
    affected: tuple[str, ...] = ()
    fixes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Snapshot:
    """An immutable view of the Record Store at one instant."""

    snapshot_date: str
    series: tuple[SeriesRecord, ...]
    releases: tuple[ReleaseRecord, ...]
    disclosures: tuple[DisclosureRecord, ...]
    digest: str = ""

    @property
    def cycle(self) -> str:
        """Compilation pass id derived from the snapshot content."""
        return self.digest[:12]


def _invalid(message: str, hint: str | None = None) -> Err[CompileError]:
    return Err(CompileError(kind="invalid_snapshot", message=message, hint=hint))


class _Fields:
    """Typed reads of optional values in one record.

    Absent keys and JSON nulls read as None. The first value that is present
    but malformed is kept in ``error``.
    """

    def __init__(self, data: StrDict, label: str) -> None:
        self._data = data
        self._label = label
        self.error: CompileError | None = None

    def _read[V](
        self, key: str, reader: Callable[[Mapping[str, object], str], V | None], expected: str
    ) -> V | None:
        if self._data.get(key) is None:
            return None
        value = reader(self._data, key)
        if value is None and self.error is None:
            self.error = CompileError(
                kind="invalid_snapshot", message=f"{self._label}: '{key}' must be {expected}"
            )
        return value

    def text(self, key: str) -> str | None:
        return self._read(key, get_str, "a non-empty string")

    def flag(self, key: str) -> bool | None:
        return self._read(key, get_bool, "true or false")

    def number(self, key: str) -> float | None:
        return self._read(key, get_float, "a number")

    def texts(self, key: str) -> list[str] | None:
        return self._read(key, get_str_list, "a list of non-empty strings")

    def table(self, key: str) -> StrDict | None:
        return self._read(key, get_table, "an object")


def _records(data: StrDict, key: str) -> Result[list[StrDict], CompileError]:
    items = get_list(data, key)
    if items is None:
        return _invalid(f"snapshot is missing a '{key}' list")
    out: list[StrDict] = []
    for index, item in enumerate(items):
        d = as_str_dict(item)
        if d is None:
            return _invalid(f"{key}[{index}] must be an object")
        out.append(d)
    return Ok(out)


def _parse_series(d: StrDict, index: int) -> Result[SeriesRecord, CompileError]:
    series_id = get_str(d, "id")
    if series_id is None:
        return Err(CompileError(kind="missing_field", message=f"series[{index}] has no id"))
    fields = _Fields(d, f"series {series_id}")
    links: list[tuple[str, str]] = []
    for name, value in (fields.table("links") or {}).items():
        if not isinstance(value, str):
            return _invalid(f"series {series_id}: link '{name}' must be a string")
        links.append((name, value))
    record = SeriesRecord(
        id=series_id,
        release_type=fields.text("release_type"),
        support_phase=fields.text("support_phase"),
        ga_date=fields.text("ga_date"),
        eol_date=fields.text("eol_date"),
        links=tuple(links),
    )
    if fields.error is not None:
        return Err(fields.error)
    return Ok(record)


def _parse_release(d: StrDict, index: int) -> Result[ReleaseRecord, CompileError]:
    series = get_str(d, "series")
    version = get_str(d, "version")
    if series is None or version is None:
        return Err(
            CompileError(
                kind="missing_field",
                message=f"releases[{index}] needs both 'series' and 'version'",
            )
        )
    fields = _Fields(d, f"release {version}")
    record = ReleaseRecord(
        series=series,
        version=version,
        date=fields.text("date"),
        security=fields.flag("security"),
        disclosures=tuple(fields.texts("disclosures") or ()),
    )
    if fields.error is not None:
        return Err(fields.error)
    return Ok(record)


def _parse_disclosure(d: StrDict, index: int) -> Result[DisclosureRecord, CompileError]:
    disclosure_id = get_str(d, "id")
    if disclosure_id is None:
        return Err(CompileError(kind="missing_field", message=f"disclosures[{index}] has no id"))
    fields = _Fields(d, f"disclosure {disclosure_id}")
    record = DisclosureRecord(
        id=disclosure_id,
        title=fields.text("title"),
        severity=fields.text("severity"),
        cvss=fields.number("cvss"),
        affected=tuple(fields.texts("affected") or ()),
        fixes=tuple(fields.texts("fixes") or ()),
    )
    if fields.error is not None:
        return Err(fields.error)
    return Ok(record)


def parse_snapshot(data: StrDict, *, digest: str = "") -> Result[Snapshot, CompileError]:
    snapshot_date = get_str(data, "snapshot_date")
    if snapshot_date is None:
        return Err(CompileError(kind="missing_field", message="snapshot has no snapshot_date"))

    series_rows = _records(data, "series")
    if isinstance(series_rows, Err):
        return series_rows
    release_rows = _records(data, "releases")
    if isinstance(release_rows, Err):
        return release_rows
    disclosure_rows = _records(data, "disclosures") if "disclosures" in data else Ok([])
    if isinstance(disclosure_rows, Err):
        return disclosure_rows

    series: list[SeriesRecord] = []
    for index, row in enumerate(series_rows.value):
        parsed = _parse_series(row, index)
        if isinstance(parsed, Err):
            return parsed
        series.append(parsed.value)

    releases: list[ReleaseRecord] = []
    for index, row in enumerate(release_rows.value):
        parsed_release = _parse_release(row, index)
        if isinstance(parsed_release, Err):
            return parsed_release
        releases.append(parsed_release.value)

    disclosures: list[DisclosureRecord] = []
    for index, row in enumerate(disclosure_rows.value):
        parsed_disclosure = _parse_disclosure(row, index)
        if isinstance(parsed_disclosure, Err):
            return parsed_disclosure
        disclosures.append(parsed_disclosure.value)

    return Ok(
        Snapshot(
            snapshot_date=snapshot_date,
            series=tuple(series),
            releases=tuple(releases),
            disclosures=tuple(disclosures),
            digest=digest,
        )
    )


def load_snapshot(path: Path) -> Result[Snapshot, CompileError]:
    """Read and parse a snapshot file."""
    try:
        raw = path.read_bytes()
    except OSError as e:
        return _invalid(f"failed to read snapshot: {e}", hint=str(path))

    try:
        obj: object = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return _invalid(f"invalid JSON in snapshot: {e}", hint=str(path))

    data = as_str_dict(obj)
    if data is None:
        return _invalid("snapshot root must be a JSON object", hint=str(path))

    return parse_snapshot(data, digest=hashlib.sha256(raw).hexdigest())
