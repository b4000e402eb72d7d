"""Versioned, consistency-checked release graph compiler."""

__version__ = "0.3.0"
