"""
repo-fleet — runtime config loader.

File: src/repo_fleet/config/loader.py

Purpose
- Load the effective global config from defaults, a config file, env vars, and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env (REPO_FLEET_) > file > defaults.
- File loading for TOML (``tomllib``), YAML (``yaml.safe_load``) and JSON.
- Deterministic environment variable mapping and coercion driven by the option table.
- Path normalization relative to the config file location.
- Redacted deterministic dump of effective config.

Functional requirements
- Reject invalid/embedded-secret config via schema validation.
"""

from __future__ import annotations

import json
import os
import shlex
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

import yaml

from repo_fleet.config.schema import (
    CONFIG_OPTIONS,
    PATH_FIELDS,
    ConfigOption,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
)
from repo_fleet.constants import DEFAULT_CONFIG_FILE, ENV_PREFIX

CONFIG_FILE_ENV: Final[str] = f"{ENV_PREFIX}CONFIG_FILE"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yaml", ".yml"})

# Derived per repository; never read from the environment.
_NON_ENV_OPTIONS: Final[frozenset[str]] = frozenset({"repository", "local_dir"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    env_map = dict(os.environ if environ is None else environ)
    if config_path is None and env_map.get(CONFIG_FILE_ENV, "").strip():
        config_path = env_map[CONFIG_FILE_ENV].strip()

    resolved_path = _resolve_config_path(config_path)
    file_payload = _load_config_file(resolved_path, required=config_path is not None)

    merged = merge_config(default_config(), file_payload)
    merged = normalize_paths(merged, base_dir=resolved_path.parent)
    merged = merge_config(merged, collect_env_overrides(env_map))
    merged = merge_config(merged, _materialize_cli_overrides(cli_overrides or {}))
    merged = normalize_paths(merged, base_dir=Path.cwd())
    return assert_valid_config(merged)


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load config from a specific file path, ignoring the process environment."""

    return load_config(path, environ={})


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Normalize configured path fields relative to ``base_dir``."""

    materialized = merge_config({}, config)
    for field_name in PATH_FIELDS:
        value = materialized.get(field_name)
        if isinstance(value, str) and value.strip():
            materialized[field_name] = _normalize_one_path(value.strip(), base_dir)
    return materialized


def collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Map ``REPO_FLEET_<OPTION>`` variables onto typed config values."""

    overrides: dict[str, Any] = {}
    for option in CONFIG_OPTIONS:
        if option.name in _NON_ENV_OPTIONS:
            continue
        env_name = env_name_for_option(option.name)
        raw = environ.get(env_name)
        if raw is None:
            continue
        overrides[option.name] = _coerce_env(raw, option, env_name)
    return overrides


def env_name_for_option(name: str) -> str:
    return ENV_PREFIX + name.upper()


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return dump_redacted(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    suffix = path.suffix.lower()
    try:
        if suffix in _YAML_SUFFIXES:
            with path.open("r", encoding="utf-8") as handle:
                parsed = yaml.safe_load(handle)
            if parsed is None:
                parsed = {}
        elif suffix == ".json":
            with path.open("r", encoding="utf-8") as handle:
                parsed = json.load(handle)
        else:
            with path.open("rb") as handle:
                parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"invalid YAML in {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigLoadError(f"invalid JSON in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ConfigLoadError(f"config root must be an object: {path}")

    return parsed


def _coerce_env(raw: str, option: ConfigOption, env_name: str) -> object:
    value = raw.strip()
    kind = option.value_type
    if kind in {"str", "path", "platform", "log_level"}:
        return value or None
    if kind == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {option.name} must be an integer") from exc
    if kind == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {option.name} must be a number") from exc
    if kind == "bool":
        lowered = value.lower()
        if lowered in _BOOLEAN_TRUE:
            return True
        if lowered in _BOOLEAN_FALSE:
            return False
        raise ConfigLoadError(
            f"{env_name} -> {option.name} must be a boolean (true/false/1/0/yes/no/on/off)"
        )
    if kind in {"str_list", "repositories"}:
        return [item.strip() for item in value.split(",") if item.strip()]
    if kind == "command":
        try:
            return shlex.split(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {option.name} cannot be parsed: {exc}") from exc

    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise ConfigLoadError(f"{env_name} -> {option.name} must be a JSON array") from exc
    if not isinstance(parsed, list):
        raise ConfigLoadError(f"{env_name} -> {option.name} must be a JSON array")
    return parsed


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        if key == "repositories" and isinstance(value, (list, tuple)) and not value:
            continue
        payload[key] = list(value) if isinstance(value, tuple) else value
    return payload


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    expanded = os.path.expandvars(raw)
    candidate = Path(expanded).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    normalized = Path(os.path.normpath(str(candidate)))
    return normalized.as_posix()


__all__ = [
    "CONFIG_FILE_ENV",
    "ConfigLoadError",
    "collect_env_overrides",
    "dump_effective_config",
    "effective_config",
    "env_name_for_option",
    "load_config",
    "load_config_file",
    "normalize_paths",
]
