"""Global run initialization, environment checks and teardown."""

from __future__ import annotations

import logging
import os
import platform as _platform
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from repo_fleet.config.schema import merge_config
from repo_fleet.constants import (
    CACHE_DIR_NAME,
    DEFAULT_PLATFORM_ENDPOINTS,
    MINIMUM_PYTHON,
    NEXT_MINIMUM_PYTHON,
)
from repo_fleet.control_plane.host_rules import HostRule, HostRuleStore, coerce_host_rule
from repo_fleet.control_plane.limits import LimitKind, LimitStore
from repo_fleet.control_plane.outcome import InitializationError
from repo_fleet.utils.fs import ensure_directory

logger = logging.getLogger(__name__)


async def global_initialize(
    config: Mapping[str, Any],
    *,
    host_rules: HostRuleStore,
    limits: LimitStore,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """
    Prepare process-wide state and return the extended config.

    - creates ``base_dir`` and ``cache_dir``
    - resolves the platform token and prepends the platform host rule
    - resolves configured host rules and loads them into ``host_rules``
    - configures run limits
    """

    env_map = os.environ if environ is None else environ
    initialized = merge_config({}, config)

    base_dir = Path(str(initialized["base_dir"]))
    cache_dir = Path(str(initialized.get("cache_dir") or base_dir / CACHE_DIR_NAME))
    for directory in (base_dir, cache_dir):
        try:
            ensure_directory(directory)
        except OSError as exc:
            raise InitializationError(f"Cannot create directory {directory}: {exc}") from exc
    initialized["cache_dir"] = cache_dir.as_posix()

    platform_name = str(initialized["platform"])
    endpoint = initialized.get("endpoint") or DEFAULT_PLATFORM_ENDPOINTS.get(platform_name)
    if endpoint is not None:
        initialized["endpoint"] = endpoint

    rules: list[HostRule] = []
    if platform_name != "local":
        token = _platform_token(initialized, env_map)
        rules.append(HostRule(host_type=platform_name, match_host=endpoint, token=token))
    rules.extend(
        coerce_host_rule(item, environ=env_map) for item in initialized.get("host_rules") or ()
    )
    initialized["host_rules"] = rules

    host_rules.clear()
    for rule in rules:
        host_rules.add(rule)

    limits.set_max_limit(LimitKind.COMMITS, initialized.get("commits_per_run_limit"))

    logger.debug(
        "Global initialization complete",
        extra={"platform": platform_name, "host_rule_count": len(rules)},
    )
    return initialized


def check_environment(
    *,
    version_info: tuple[int, ...] | None = None,
    implementation: str | None = None,
) -> None:
    """Log (never raise) when the interpreter does not satisfy the supported range."""

    version = tuple(version_info if version_info is not None else sys.version_info[:3])
    impl = implementation if implementation is not None else _platform.python_implementation()
    rendered = _render(version)
    if impl != "CPython":
        logger.error(
            "Unsupported Python environment detected.",
            extra={"implementation": impl, "python_version": rendered},
        )
    elif version[:2] < MINIMUM_PYTHON:
        logger.error(
            "Unsupported Python environment detected. Please update your Python version.",
            extra={"python_version": rendered, "minimum": _render(MINIMUM_PYTHON)},
        )
    elif version[:2] < NEXT_MINIMUM_PYTHON:
        logger.warning(
            "Unsupported Python environment detected. Please check your Python version.",
            extra={"python_version": rendered, "next_minimum": _render(NEXT_MINIMUM_PYTHON)},
        )


async def global_finalize(
    config: Mapping[str, Any] | None,
    *,
    host_rules: HostRuleStore,
    limits: LimitStore,
) -> None:
    """Tear down process-wide state; accepts a config that was never loaded."""

    if config is not None:
        logger.debug(
            "Run limits at finalize",
            extra={"limits": [item.to_dict() for item in limits.snapshot()]},
        )
    host_rules.clear()


def _platform_token(config: Mapping[str, Any], environ: Mapping[str, str]) -> str:
    token_env = config.get("token_env")
    token = environ.get(token_env, "").strip() if isinstance(token_env, str) else ""
    if not token:
        raise InitializationError("You need to supply an authentication token.")
    return token


def _render(version: tuple[int, ...]) -> str:
    return ".".join(str(part) for part in version)


__all__ = [
    "check_environment",
    "global_finalize",
    "global_initialize",
]
