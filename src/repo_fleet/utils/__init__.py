"""Utility exports for filesystem helpers."""

from repo_fleet.utils.fs import ensure_directory, is_within

__all__ = [
    "ensure_directory",
    "is_within",
]
