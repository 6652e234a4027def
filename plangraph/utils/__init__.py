"""Small shared helpers."""

from plangraph.utils.io import atomic_write

__all__ = ["atomic_write"]
