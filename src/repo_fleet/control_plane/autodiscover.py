"""Repository autodiscovery: resolve the final repository list after platform init."""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

from repo_fleet.config.schema import merge_config
from repo_fleet.control_plane.scope import descriptor_name
from repo_fleet.utils.fs import is_within

logger = logging.getLogger(__name__)


class RepositorySource(Protocol):
    """Anything that can list repositories visible to the configured credentials."""

    async def list_repositories(self, config: Mapping[str, Any]) -> Sequence[str]: ...


class StaticRepositorySource:
    """Serve a fixed repository list."""

    def __init__(self, repositories: Sequence[str]) -> None:
        self._repositories = tuple(repositories)

    async def list_repositories(self, config: Mapping[str, Any]) -> Sequence[str]:
        return self._repositories


class LocalRepositorySource:
    """Discover ``<root>/<org>/<name>`` git checkouts for the ``local`` platform."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    async def list_repositories(self, config: Mapping[str, Any]) -> Sequence[str]:
        if not self._root.is_dir():
            return ()
        found: list[str] = []
        for git_dir in sorted(self._root.glob("*/*/.git")):
            checkout = git_dir.parent
            if not is_within(checkout, self._root):
                continue
            found.append(checkout.relative_to(self._root).as_posix())
        return tuple(found)


async def autodiscover_repositories(
    config: Mapping[str, Any],
    source: RepositorySource | None,
) -> dict[str, Any]:
    """
    Return config with the discovered repository list.

    Without ``autodiscover`` the configured list is kept as is. When
    repositories are configured as well, only discovered repositories that are
    also configured are kept, using the configured descriptor.
    """

    resolved = merge_config({}, config)
    configured: list[object] = list(resolved.get("repositories") or [])
    if not resolved.get("autodiscover"):
        if not configured:
            logger.warning(
                "No repositories found - did you want to run with flag --autodiscover?"
            )
        return resolved

    if source is None:
        logger.warning(
            "Autodiscovery is not available for this platform",
            extra={"platform": str(resolved.get("platform"))},
        )
        return resolved

    discovered = list(await source.list_repositories(resolved))
    if not discovered:
        logger.info("No repositories found")
        return resolved

    pattern = resolved.get("autodiscover_filter")
    if isinstance(pattern, str) and pattern:
        discovered = [name for name in discovered if fnmatch.fnmatchcase(name, pattern)]
        if not discovered:
            logger.debug("None of the discovered repositories matched the filter")
            return resolved

    if configured:
        by_name = {descriptor_name(item): item for item in configured}
        selected = [by_name[name] for name in discovered if name in by_name]
        logger.debug(
            "Intersected autodiscovered repositories with configured repositories",
            extra={"discovered": len(discovered), "selected": len(selected)},
        )
        resolved["repositories"] = selected
    else:
        resolved["repositories"] = discovered

    logger.info(
        "Autodiscovered %d repositories",
        len(resolved["repositories"]),
        extra={"repositories": [descriptor_name(item) for item in resolved["repositories"]]},
    )
    return resolved


__all__ = [
    "LocalRepositorySource",
    "RepositorySource",
    "StaticRepositorySource",
    "autodiscover_repositories",
]
