"""Unit tests for filesystem helpers."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from repo_fleet.utils.fs import ensure_directory, is_within


def test_ensure_directory_is_idempotent(tmp_path: Path) -> None:
    target = tmp_path / "repos" / "github" / "org" / "a"

    first = ensure_directory(target)
    second = ensure_directory(target)

    assert first == second == target
    assert target.is_dir()


def test_ensure_directory_fails_on_existing_file(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")

    with pytest.raises(OSError):
        ensure_directory(blocker)

    with pytest.raises(OSError):
        ensure_directory(blocker / "child")


def test_is_within_requires_existing_paths(tmp_path: Path) -> None:
    inner = tmp_path / "inner"
    inner.mkdir()

    assert is_within(inner, tmp_path)
    assert not is_within(tmp_path, inner)
    assert not is_within(tmp_path / "missing", tmp_path)
    assert not is_within(inner, tmp_path / "missing")


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_is_within_resolves_symlinks(tmp_path: Path) -> None:
    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    link = root / "escape"
    link.symlink_to(outside, target_is_directory=True)

    assert not is_within(link, root)
