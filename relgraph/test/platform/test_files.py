from __future__ import annotations

import os
from pathlib import Path

import pytest

from relgraph.platform.files import atomic_symlink


def test_atomic_symlink_creates_link(tmp_path: Path) -> None:
    (tmp_path / "a").mkdir()

    atomic_symlink(tmp_path / "current", Path("a"))

    assert (tmp_path / "current").is_symlink()
    assert (tmp_path / "current").resolve() == (tmp_path / "a").resolve()


def test_atomic_symlink_retargets_existing_link(tmp_path: Path) -> None:
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "marker").write_text("b", encoding="utf-8")
    atomic_symlink(tmp_path / "current", Path("a"))

    atomic_symlink(tmp_path / "current", Path("b"))

    assert (tmp_path / "current" / "marker").read_text(encoding="utf-8") == "b"


def test_atomic_symlink_cleans_temp_link_on_replace_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    atomic_symlink(tmp_path / "current", Path("a"))

    def fail_replace(_src: Path, _dst: Path) -> None:
        raise OSError("replace failed")

    monkeypatch.setattr(os, "replace", fail_replace)

    with pytest.raises(OSError, match="replace failed"):
        atomic_symlink(tmp_path / "current", Path("b"))

    assert list(tmp_path.glob(".current.*.tmp")) == []
    assert (tmp_path / "current").resolve() == (tmp_path / "a").resolve()
