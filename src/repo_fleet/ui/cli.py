"""Command-line interface for repo-fleet."""

from __future__ import annotations

import argparse
import asyncio
import functools
import json
import os
import sys
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from repo_fleet import __version__
from repo_fleet.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    env_name_for_option,
    load_config,
)
from repo_fleet.constants import LOG_LEVEL_NAMES, SUPPORTED_PLATFORMS
from repo_fleet.control_plane import (
    ExitCode,
    HostRuleStore,
    LimitStore,
    LocalRepositorySource,
    RepositorySource,
    RunCollaborators,
    RunController,
    autodiscover_repositories,
    global_finalize,
    global_initialize,
)
from repo_fleet.observability import (
    LoggingConfig,
    parse_log_level,
    reset_correlation_fields,
    set_correlation_fields,
    setup_structured_logging,
    shutdown_logging,
)
from repo_fleet.worker import CommandRepositoryProcessor


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for a fleet run."""

    parser = argparse.ArgumentParser(
        prog="repo-fleet",
        description=(
            "repo-fleet — run one maintenance pass over a fleet of repositories.\n\n"
            "Examples:\n"
            "  repo-fleet org/a org/b --command 'make lint'\n"
            "  repo-fleet --autodiscover --autodiscover-filter 'org/*'\n"
            "  repo-fleet --print-config\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "repositories",
        nargs="*",
        help="Repositories to process (overrides configured repositories).",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to a TOML/YAML/JSON config file (default: ./repo-fleet.toml if present).",
    )
    parser.add_argument("--platform", choices=SUPPORTED_PLATFORMS, default=None)
    parser.add_argument("--endpoint", default=None, help="Platform API endpoint.")
    parser.add_argument("--base-dir", dest="base_dir", default=None)
    parser.add_argument(
        "--autodiscover",
        action="store_true",
        default=None,
        help="Discover repositories visible to the configured credentials.",
    )
    parser.add_argument(
        "--autodiscover-filter",
        dest="autodiscover_filter",
        default=None,
        help="Glob applied to autodiscovered repository names.",
    )
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", default=None)
    parser.add_argument(
        "--commits-per-run-limit",
        dest="commits_per_run_limit",
        type=int,
        default=None,
    )
    parser.add_argument(
        "--command",
        default=None,
        help="Command run inside each repository checkout.",
    )
    parser.add_argument("--log-level", dest="log_level", default=None)
    parser.add_argument("--log-dir", dest="log_dir", default=None)
    parser.add_argument(
        "--print-config",
        action="store_true",
        default=False,
        help="Print the redacted effective config and exit.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, run one fleet pass, and return the process exit code."""

    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    overrides = cli_overrides(args)

    if args.print_config:
        return _print_config(args.config_path, overrides)

    run_id = uuid.uuid4().hex
    bootstrap = _bootstrap_logging_config(run_id, overrides, os.environ)
    setup_structured_logging(bootstrap)
    token = set_correlation_fields(run_id=run_id)
    try:
        controller = RunController(
            build_collaborators(args.config_path, overrides, bootstrap=bootstrap)
        )
        return asyncio.run(controller.start())
    finally:
        reset_correlation_fields(token)
        shutdown_logging()


def cli_overrides(args: argparse.Namespace) -> dict[str, object]:
    """Config overrides carried by parsed arguments; unset flags are omitted."""

    overrides: dict[str, object] = {
        "platform": args.platform,
        "endpoint": args.endpoint,
        "base_dir": args.base_dir,
        "autodiscover": args.autodiscover,
        "autodiscover_filter": args.autodiscover_filter,
        "dry_run": args.dry_run,
        "commits_per_run_limit": args.commits_per_run_limit,
        "command": args.command,
        "log_level": args.log_level,
        "log_dir": args.log_dir,
        "repositories": list(args.repositories),
    }
    return {key: value for key, value in overrides.items() if value not in (None, [])}


def build_collaborators(
    config_path: str | None,
    overrides: Mapping[str, object],
    *,
    bootstrap: LoggingConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> RunCollaborators:
    """Wire the default collaborators for a CLI run."""

    env_map = os.environ if environ is None else environ
    host_rules = HostRuleStore()
    limits = LimitStore()

    async def load() -> dict[str, Any]:
        config = await asyncio.to_thread(
            load_config, config_path, cli_overrides=overrides, environ=env_map
        )
        if bootstrap is not None:
            _reconfigure_logging(bootstrap, config)
        return config

    return RunCollaborators(
        load_config=load,
        initialize=functools.partial(
            global_initialize, host_rules=host_rules, limits=limits, environ=env_map
        ),
        discover=_discover,
        processor=CommandRepositoryProcessor(),
        finalize=functools.partial(global_finalize, host_rules=host_rules, limits=limits),
        host_rules=host_rules,
        limits=limits,
        environ=env_map,
    )


def repository_source_for(config: Mapping[str, object]) -> RepositorySource | None:
    """Autodiscovery source for the configured platform, if one is available."""

    endpoint = config.get("endpoint")
    if config.get("platform") == "local" and isinstance(endpoint, str) and endpoint:
        return LocalRepositorySource(endpoint)
    return None


async def _discover(config: Mapping[str, object]) -> dict[str, Any]:
    return await autodiscover_repositories(config, repository_source_for(config))


def _bootstrap_logging_config(
    run_id: str,
    overrides: Mapping[str, object],
    environ: Mapping[str, str],
) -> LoggingConfig:
    level = overrides.get("log_level") or environ.get(env_name_for_option("log_level")) or "INFO"
    if str(level).strip().upper() not in LOG_LEVEL_NAMES:
        raise ConfigLoadError(
            f"invalid log level {level!r}; expected one of: {', '.join(LOG_LEVEL_NAMES)}"
        )
    log_dir = overrides.get("log_dir") or environ.get(env_name_for_option("log_dir")) or None
    return LoggingConfig(run_id=run_id, log_dir=log_dir, level=str(level))


def _reconfigure_logging(bootstrap: LoggingConfig, config: Mapping[str, object]) -> None:
    level = str(config.get("log_level") or bootstrap.level)
    log_dir = config.get("log_dir") or None
    same_level = parse_log_level(level) == parse_log_level(bootstrap.level)
    if same_level and log_dir == bootstrap.log_dir:
        return
    setup_structured_logging(
        LoggingConfig(run_id=bootstrap.run_id, log_dir=log_dir, level=level)
    )


def _print_config(config_path: str | None, overrides: Mapping[str, object]) -> int:
    try:
        config = load_config(config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return int(ExitCode.CONFIG_ERROR)
    print(json.dumps(effective_config(config), indent=2, sort_keys=True))
    return int(ExitCode.SUCCESS)


__all__ = [
    "build_collaborators",
    "build_parser",
    "cli_overrides",
    "repository_source_for",
    "run_cli",
]
