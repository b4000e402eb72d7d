"""Filesystem primitives used by the publisher."""

from .files import atomic_symlink

__all__ = ["atomic_symlink"]
