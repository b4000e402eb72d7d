from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_VERSION_RE = re.compile(r"^(\d+(?:\.\d+)*)(?:-([A-Za-z][0-9A-Za-z]*)(?:\.(0|[1-9]\d*))?)?$")


@dataclass(frozen=True, slots=True, order=True)
class VersionKey:
    """Sortable form of a dotted release version.

    Pre-releases (``9.0.0-rc.2``) sort before the stable release with the same
    numbers; labels compare alphabetically, so ``preview`` < ``rc``.
    """

    numbers: tuple[int, ...]
    stable: bool
    label: str
    label_number: int

    def __str__(self) -> str:
        base = ".".join(str(n) for n in self.numbers)
        if self.stable:
            return base
        return f"{base}-{self.label}.{self.label_number}"


def parse_version(text: str) -> VersionKey | None:
    m = _VERSION_RE.match(text)
    if m is None:
        return None
    numbers = tuple(int(part) for part in m.group(1).split("."))
    label = m.group(2)
    if label is None:
        return VersionKey(numbers, True, "", 0)
    return VersionKey(numbers, False, label.lower(), int(m.group(3) or 0))


def parse_date(text: str) -> date | None:
    """Parse an ISO ``YYYY-MM-DD`` date, returning None when malformed."""
    if not _DATE_RE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


type OrderKey = tuple[str, VersionKey]


def order_key(release_date: str, version: str) -> OrderKey | None:
    """The ``(date, version-ordinal)`` pair that orders releases.

    ISO dates compare correctly as strings, so the date half stays a string.
    """
    key = parse_version(version)
    if key is None or parse_date(release_date) is None:
        return None
    return (release_date, key)
