"""
repo-fleet — filesystem utilities

File: src/repo_fleet/utils/fs.py

Purpose
- Provide minimal filesystem helpers for repository workspace directories.

Functional requirements
- Directory creation is idempotent and fails loudly when the path cannot be created.
- Containment checks resolve symlinks before comparing paths.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import os
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "ensure_directory",
    "is_within",
]


def ensure_directory(path: PathLike) -> Path:
    """
    Create ``path`` (and missing parents) if it does not exist yet.

    Calling this on an existing directory is a no-op. An existing non-directory
    at ``path`` or any other creation failure raises ``OSError``.
    """

    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    if not target.is_dir():
        raise NotADirectoryError(f"{target!s} is not a directory")
    return target


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    try:
        resolved_parent = Path(parent).resolve(strict=True)
    except FileNotFoundError:
        return False
    if not resolved_parent.is_dir():
        return False

    try:
        resolved_child = Path(child).resolve(strict=True)
    except FileNotFoundError:
        return False

    return _is_relative_to(resolved_child, resolved_parent)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True
