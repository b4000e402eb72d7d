from __future__ import annotations

import copy
from collections.abc import Callable

import pytest

from relgraph.core.config import Config
from relgraph.core.result import Ok
from relgraph.services.graph.records import Snapshot, parse_snapshot

_SERIES_1 = {
    "id": "1.0",
    "release_type": "lts",
    "support_phase": "active",
    "ga_date": "2025-01-15",
    "eol_date": "2028-01-15",
    "links": {"release-notes": "https://example.org/notes/1.0"},
}

_RELEASES_1 = [
    {"series": "1.0", "version": "1.0.1", "date": "2025-01-15", "security": False},
    {"series": "1.0", "version": "1.0.2", "date": "2025-02-12", "security": False},
    {
        "series": "1.0",
        "version": "1.0.3",
        "date": "2025-03-11",
        "security": True,
        "disclosures": ["CVE-2025-0001"],
    },
    {"series": "1.0", "version": "1.0.4", "date": "2025-04-08", "security": False},
    {"series": "1.0", "version": "1.0.5", "date": "2025-05-13", "security": False},
]

_DISCLOSURES = [
    {
        "id": "CVE-2025-0001",
        "title": "Header parsing denial of service",
        "severity": "high",
        "cvss": 7.5,
        "affected": ["1.0.1", "1.0.2"],
        "fixes": ["https://example.org/commits/abc123"],
    }
]

_BASE = {
    "snapshot_date": "2025-06-01",
    "series": [_SERIES_1],
    "releases": _RELEASES_1,
    "disclosures": _DISCLOSURES,
}


def _parse(data: dict[str, object], digest: str) -> Snapshot:
    result = parse_snapshot(data, digest=digest)
    assert isinstance(result, Ok), result
    return result.value


@pytest.fixture
def snapshot_data() -> dict[str, object]:
    """One series, five monthly releases, the third one fixing a disclosure."""
    return copy.deepcopy(_BASE)


@pytest.fixture
def snapshot(snapshot_data: dict[str, object]) -> Snapshot:
    return _parse(snapshot_data, "a" * 64)


@pytest.fixture
def make_snapshot() -> Callable[..., Snapshot]:
    """Parse snapshot data; distinct digests give distinct compilation passes."""

    def make(data: dict[str, object], digest: str = "b" * 64) -> Snapshot:
        return _parse(data, digest)

    return make


@pytest.fixture
def config() -> Config:
    return Config()
