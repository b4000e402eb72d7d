"""Filesystem helpers."""

from __future__ import annotations

import os
from pathlib import Path

__all__ = ["atomic_symlink"]


def atomic_symlink(link: Path, target: Path) -> None:
    """Point ``link`` at ``target`` in a single rename.

    Readers following ``link`` see either the old target or the new one,
    never a missing path.
    """
    link.parent.mkdir(parents=True, exist_ok=True)
    tmp_link = link.with_name(f".{link.name}.{os.getpid()}.tmp")
    tmp_link.unlink(missing_ok=True)
    try:
        os.symlink(target, tmp_link, target_is_directory=True)
        os.replace(tmp_link, link)
    finally:
        if tmp_link.is_symlink():
            tmp_link.unlink(missing_ok=True)
