from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

CompileErrorKind = Literal[
    "invalid_snapshot",
    "missing_field",
    "invalid_identifier",
    "unknown_series",
    "duplicate_series",
    "duplicate_release",
    "unknown_disclosure",
    "duplicate_disclosure",
    "unplaced_disclosure",
    "contradiction",
]


@dataclass(frozen=True, slots=True)
class CompileError:
    """A source defect found in the Record Store snapshot.

    Source defects are fatal: the compiler never guesses a placement for
    incomplete records.
    """

    kind: CompileErrorKind
    message: str
    hint: str | None = None


DiagnosticCode = Literal[
    "root-fact-duplicated",
    "branch-fact-duplicated",
    "placement",
    "stale-copy",
    "aggregate-mismatch",
    "dangling-link",
    "self-mismatch",
    "wormhole-direction",
    "wormhole-to-root",
    "forward-link",
    "prev-on-non-leaf",
    "chain-gap",
    "existence-mismatch",
    "viewport-sole-source",
    "leaf-mutated",
]


@dataclass(frozen=True, slots=True, order=True)
class Diagnostic:
    """One violated invariant, keyed by resource path and fact name."""

    path: str
    fact: str
    code: DiagnosticCode
    message: str

    def __str__(self) -> str:
        return f"{self.path} [{self.fact}] {self.code}: {self.message}"


@dataclass(frozen=True, slots=True)
class GraphError:
    kind: Literal[
        "source_defect",
        "validation_failed",
        "tree_unreadable",
        "publish_failed",
        "unknown_trace",
    ]
    message: str
    hint: str | None = None
    diagnostics: tuple[Diagnostic, ...] = ()

    @classmethod
    def from_compile_error(cls, error: CompileError) -> GraphError:
        return cls(kind="source_defect", message=f"{error.kind}: {error.message}", hint=error.hint)
