"""Derive repository-scoped config from the global config and a repository descriptor."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Any, TypeAlias

from repo_fleet.config.schema import (
    ConfigStage,
    filter_config,
    merge_child_config,
    validate_repository_name,
)
from repo_fleet.constants import REPOS_DIR_NAME
from repo_fleet.utils.fs import ensure_directory

RepositoryDescriptor: TypeAlias = str | Mapping[str, Any]
RepositoryConfig: TypeAlias = Mapping[str, Any]
DirectoryEnsurer: TypeAlias = Callable[[str], object]


def normalize_descriptor(descriptor: RepositoryDescriptor) -> dict[str, Any]:
    """Return the mapping form of ``descriptor``; a bare string names the repository."""

    if isinstance(descriptor, str):
        return {"repository": validate_repository_name(descriptor)}
    if not isinstance(descriptor, Mapping):
        raise TypeError(
            f"repository descriptor must be a string or mapping, got {type(descriptor).__name__}"
        )
    if "repository" not in descriptor:
        raise ValueError("repository descriptor is missing the 'repository' field")
    bad_keys = [key for key in descriptor if not isinstance(key, str)]
    if bad_keys:
        raise ValueError(f"repository descriptor keys must be strings, got {bad_keys!r}")
    normalized = dict(descriptor)
    normalized["repository"] = validate_repository_name(descriptor["repository"])
    return normalized


def descriptor_name(descriptor: object) -> str:
    """Repository name of a descriptor without validating it."""

    if isinstance(descriptor, Mapping):
        return str(descriptor.get("repository"))
    return str(descriptor)


def repository_local_dir(base_dir: str, platform: str, repository: str) -> str:
    """``<base_dir>/repos/<platform>/<repository>`` as a POSIX path string."""

    return str(PurePosixPath(base_dir, REPOS_DIR_NAME, platform, repository))


def scope_repository_config(
    global_config: Mapping[str, Any],
    descriptor: RepositoryDescriptor,
) -> RepositoryConfig:
    """
    Build the read-only repository config without touching the filesystem.

    Merge is shallow and right-biased: descriptor fields replace global ones.
    ``base_dir`` is dropped and the result is projected onto the
    repository-scope allowlist.
    """

    base_dir = global_config.get("base_dir")
    if not isinstance(base_dir, str) or not base_dir.strip():
        raise ValueError("global config must define a non-empty base_dir")

    merged = merge_child_config(global_config, normalize_descriptor(descriptor))
    platform = merged.get("platform")
    if not isinstance(platform, str) or not platform.strip():
        raise ValueError("config must define a platform")

    merged["local_dir"] = repository_local_dir(base_dir, platform, merged["repository"])
    merged.pop("base_dir", None)
    return MappingProxyType(filter_config(merged, ConfigStage.REPOSITORY))


async def derive_repository_config(
    global_config: Mapping[str, Any],
    descriptor: RepositoryDescriptor,
    *,
    ensure_dir: DirectoryEnsurer = ensure_directory,
) -> RepositoryConfig:
    """Scope the config and make sure its ``local_dir`` exists before returning it."""

    repo_config = scope_repository_config(global_config, descriptor)
    await asyncio.to_thread(ensure_dir, repo_config["local_dir"])
    return repo_config


__all__ = [
    "DirectoryEnsurer",
    "RepositoryConfig",
    "RepositoryDescriptor",
    "derive_repository_config",
    "descriptor_name",
    "normalize_descriptor",
    "repository_local_dir",
    "scope_repository_config",
]
