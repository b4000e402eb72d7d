"""Staging and all-or-nothing publication.

Layout under the publish root:

    .staging/<cycle>/     tree being written
    trees/<cycle>.<n>/    complete, validated trees
    current -> trees/...  the published tree (symlink)

A tree becomes visible only when ``current`` is retargeted, which is a single
rename. Anything that fails before that leaves ``current`` untouched.
"""

from __future__ import annotations

import shutil
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from relgraph.core.result import Err, Ok, Result
from relgraph.output.console import ConsoleProtocol, Style
from relgraph.platform.files import atomic_symlink
from relgraph.services.graph.document import render
from relgraph.services.graph.errors import GraphError
from relgraph.services.graph.model import Resource, ResourceTree

CURRENT_LINK = "current"
TREES_DIR = "trees"
STAGING_DIR = ".staging"


@dataclass(frozen=True, slots=True)
class PublishedTree:
    path: Path
    previous: Path | None
    files: int


def published_tree_dir(root: Path) -> Path | None:
    """Directory the ``current`` link points at, if a tree was ever published."""
    link = root / CURRENT_LINK
    if not link.is_symlink() and not link.is_dir():
        return None
    resolved = link.resolve()
    return resolved if resolved.is_dir() else None


def _subtree(path: str) -> str:
    head, sep, _ = path.partition("/")
    return head if sep else ""


def _layout_error(tree: ResourceTree) -> str | None:
    """Why ``tree`` cannot be laid out as files, or None."""
    for path, resource in tree.resources.items():
        if resource.path != path:
            return f"{path} holds resource {resource.path}"
        parts = PurePosixPath(path).parts
        if not parts or path.startswith("/") or ".." in parts:
            return f"{path} is not a relative path inside the tree"
        for depth in range(1, len(parts)):
            parent = "/".join(parts[:depth])
            if parent in tree.resources:
                return f"{path} would be written under the file {parent}"
    return None


def _write_group(base: Path, resources: list[Resource]) -> int:
    for resource in resources:
        target = base / resource.path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(render(resource), encoding="utf-8")
    return len(resources)


def stage_tree(tree: ResourceTree, *, root: Path, workers: int) -> Result[Path, GraphError]:
    """Write every resource under a fresh staging directory.

    Each worker owns one top-level subtree, so writes never overlap. A tree
    that cannot be laid out is rejected before anything is written, and a
    failed write removes the staging directory.
    """
    problem = _layout_error(tree)
    if problem is not None:
        return Err(GraphError(kind="publish_failed", message=f"cannot stage tree: {problem}"))

    staging = root / STAGING_DIR / (tree.cycle or "local")
    groups: dict[str, list[Resource]] = defaultdict(list)
    for resource in tree.resources.values():
        groups[_subtree(resource.path)].append(resource)

    try:
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            list(pool.map(lambda g: _write_group(staging, g), groups.values()))
    except OSError as e:
        shutil.rmtree(staging, ignore_errors=True)
        return Err(
            GraphError(
                kind="publish_failed", message=f"failed to stage tree: {e}", hint=str(staging)
            )
        )

    return Ok(staging)


def _prune(trees_dir: Path, keep: set[Path], console: ConsoleProtocol | None) -> None:
    for candidate in trees_dir.iterdir():
        if candidate.resolve() in keep or not candidate.is_dir():
            continue
        try:
            shutil.rmtree(candidate)
        except OSError as e:
            if console is not None:
                console.warning(f"could not prune {candidate}: {e}")


def publish_tree(
    tree: ResourceTree,
    *,
    root: Path,
    workers: int = 4,
    console: ConsoleProtocol | None = None,
) -> Result[PublishedTree, GraphError]:
    """Stage ``tree`` and atomically make it the published tree.

    The caller is responsible for validating ``tree`` first.
    """
    previous = published_tree_dir(root)

    staged = stage_tree(tree, root=root, workers=workers)
    if isinstance(staged, Err):
        return staged

    trees_dir = root / TREES_DIR
    final = trees_dir / f"{tree.cycle or 'local'}.{time.time_ns()}"
    try:
        trees_dir.mkdir(parents=True, exist_ok=True)
        staged.value.rename(final)
        atomic_symlink(root / CURRENT_LINK, Path(TREES_DIR) / final.name)
    except OSError as e:
        return Err(
            GraphError(
                kind="publish_failed",
                message=f"failed to swap published tree: {e}",
                hint="the previously published tree is still current",
            )
        )

    if console is not None:
        console.print(f"published {final}", Style.DIM)

    keep = {final.resolve()}
    if previous is not None:
        keep.add(previous.resolve())
    _prune(trees_dir, keep, console)

    return Ok(PublishedTree(path=final, previous=previous, files=len(tree)))
