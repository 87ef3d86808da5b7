"""Stable constants shared across the run lifecycle."""

from __future__ import annotations

from typing import Final

# Environment and file naming.
ENV_PREFIX: Final[str] = "REPO_FLEET_"
DEFAULT_CONFIG_FILE: Final[str] = "repo-fleet.toml"
DEFAULT_TOKEN_ENV: Final[str] = "REPO_FLEET_TOKEN"
ROOT_LOGGER_NAME: Final[str] = "repo_fleet"

# Workspace layout below ``base_dir``.
REPOS_DIR_NAME: Final[str] = "repos"
CACHE_DIR_NAME: Final[str] = "cache"

# Error messages starting with this marker are user-actionable init failures.
INIT_ERROR_PREFIX: Final[str] = "Init: "

LOG_LEVEL_NAMES: Final[tuple[str, ...]] = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

SUPPORTED_PLATFORMS: Final[tuple[str, ...]] = (
    "azure",
    "bitbucket",
    "gitea",
    "github",
    "gitlab",
    "local",
)
DEFAULT_PLATFORM_ENDPOINTS: Final[dict[str, str]] = {
    "azure": "https://dev.azure.com/",
    "bitbucket": "https://api.bitbucket.org/",
    "gitea": "https://gitea.com/api/v1/",
    "github": "https://api.github.com/",
    "gitlab": "https://gitlab.com/api/v4/",
}

# Interpreter constraints checked during global initialization.
MINIMUM_PYTHON: Final[tuple[int, int]] = (3, 11)
NEXT_MINIMUM_PYTHON: Final[tuple[int, int]] = (3, 12)

__all__ = [
    "CACHE_DIR_NAME",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_PLATFORM_ENDPOINTS",
    "DEFAULT_TOKEN_ENV",
    "ENV_PREFIX",
    "INIT_ERROR_PREFIX",
    "LOG_LEVEL_NAMES",
    "MINIMUM_PYTHON",
    "NEXT_MINIMUM_PYTHON",
    "REPOS_DIR_NAME",
    "ROOT_LOGGER_NAME",
    "SUPPORTED_PLATFORMS",
]
