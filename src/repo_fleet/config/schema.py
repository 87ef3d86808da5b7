"""
repo-fleet — configuration schema and validation.

File: src/repo_fleet/config/schema.py

Purpose
- Define the option table, built-in defaults, and strict validation rules.

What should be included in this file
- One ``ConfigOption`` per supported field with its scope stage and value type.
- Validation for required fields, types, enums, repository descriptors and host rules.
- Deterministic merge helpers: deep merge for layering sources, shallow
  right-biased merge for repository scoping.
- Stage filtering and redaction of sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Unknown top-level fields are extension fields: kept at global scope and
  dropped by the repository stage filter.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import dataclasses
import math
import re
import shlex
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Final, Literal

from repo_fleet.constants import DEFAULT_TOKEN_ENV, LOG_LEVEL_NAMES, SUPPORTED_PLATFORMS

ValueType = Literal[
    "str",
    "path",
    "int",
    "float",
    "bool",
    "str_list",
    "command",
    "platform",
    "log_level",
    "repository",
    "repositories",
    "host_rules",
]


class ConfigStage(StrEnum):
    """Scope at which an option is meaningful."""

    GLOBAL = "global"
    REPOSITORY = "repository"


@dataclass(frozen=True, slots=True)
class ConfigOption:
    """Single supported config field."""

    name: str
    stage: ConfigStage
    value_type: ValueType
    default: object = None
    nullable: bool = True
    description: str = ""


_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "token",
        "secret",
        "password",
        "passphrase",
        "apikey",
        "credential",
        "credentials",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_key",
    "private_key",
    "client_secret",
)

HOST_RULE_FIELDS: Final[frozenset[str]] = frozenset(
    {"host_type", "match_host", "username", "token_env", "password_env"}
)

CONFIG_OPTIONS: Final[tuple[ConfigOption, ...]] = (
    ConfigOption(
        "base_dir",
        ConfigStage.GLOBAL,
        "path",
        default=str(Path(tempfile.gettempdir()) / "repo-fleet"),
        nullable=False,
        description="Root of all run workspaces; never visible at repository scope.",
    ),
    ConfigOption("cache_dir", ConfigStage.GLOBAL, "path"),
    ConfigOption("log_dir", ConfigStage.GLOBAL, "path"),
    ConfigOption(
        "log_level", ConfigStage.GLOBAL, "log_level", default="INFO", nullable=False
    ),
    ConfigOption("token_env", ConfigStage.GLOBAL, "str", default=DEFAULT_TOKEN_ENV),
    ConfigOption("autodiscover", ConfigStage.GLOBAL, "bool", default=False, nullable=False),
    ConfigOption("autodiscover_filter", ConfigStage.GLOBAL, "str"),
    ConfigOption("repositories", ConfigStage.GLOBAL, "repositories", default=[], nullable=False),
    ConfigOption("commits_per_run_limit", ConfigStage.GLOBAL, "int"),
    ConfigOption("repository", ConfigStage.REPOSITORY, "repository"),
    ConfigOption("local_dir", ConfigStage.REPOSITORY, "path"),
    ConfigOption("platform", ConfigStage.REPOSITORY, "platform", default="github", nullable=False),
    ConfigOption("endpoint", ConfigStage.REPOSITORY, "str"),
    ConfigOption("host_rules", ConfigStage.REPOSITORY, "host_rules", default=[], nullable=False),
    ConfigOption("dry_run", ConfigStage.REPOSITORY, "bool", default=False, nullable=False),
    ConfigOption("branch_prefix", ConfigStage.REPOSITORY, "str", default="repo-fleet/"),
    ConfigOption("git_author", ConfigStage.REPOSITORY, "str"),
    ConfigOption("labels", ConfigStage.REPOSITORY, "str_list", default=[], nullable=False),
    ConfigOption("command", ConfigStage.REPOSITORY, "command"),
    ConfigOption("command_timeout_seconds", ConfigStage.REPOSITORY, "float", default=600.0),
)

OPTIONS_BY_NAME: Final[dict[str, ConfigOption]] = {option.name: option for option in CONFIG_OPTIONS}

REPOSITORY_SCOPE_FIELDS: Final[frozenset[str]] = frozenset(
    option.name for option in CONFIG_OPTIONS if option.stage is ConfigStage.REPOSITORY
)

PATH_FIELDS: Final[tuple[str, ...]] = tuple(
    option.name
    for option in CONFIG_OPTIONS
    if option.value_type == "path" and option.stage is ConfigStage.GLOBAL
)

DEFAULT_CONFIG: Final[dict[str, Any]] = {
    option.name: option.default
    for option in CONFIG_OPTIONS
    if option.default is not None
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> dict[str, Any]:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def merge_child_config(parent: Mapping[str, object], child: Mapping[str, object]) -> dict[str, Any]:
    """
    Shallow, right-biased merge used for scoping.

    Every top-level field of ``child`` replaces the same field of ``parent``
    wholesale (lists and mappings are not combined). The result never shares
    mutable values with either input.
    """

    merged = _deep_copy_mapping(parent)
    for key, value in child.items():
        merged[key] = _deep_copy_value(value)
    return merged


def filter_config(config: Mapping[str, object], stage: ConfigStage) -> dict[str, Any]:
    """Project ``config`` onto the fields allowed at ``stage``; others are dropped."""

    if stage is ConfigStage.GLOBAL:
        return _deep_copy_mapping(config)
    return {
        key: _deep_copy_value(config[key])
        for key in sorted(config)
        if key in REPOSITORY_SCOPE_FIELDS
    }


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized: dict[str, Any] = {}
    for key in sorted(root):
        value = root[key]
        option = OPTIONS_BY_NAME.get(key)
        if option is None:
            if _looks_sensitive_key(key):
                issues.add(
                    key,
                    "embedded secret values are forbidden; use an *_env key with an env var name",
                )
            else:
                normalized[key] = _deep_copy_value(value)
            continue
        parsed = _validate_option(option, value, key, issues)
        if parsed is not _INVALID:
            normalized[key] = parsed

    for option in CONFIG_OPTIONS:
        if not option.nullable and normalized.get(option.name) is None:
            if option.name not in root:
                issues.add(option.name, "missing required field")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def validate_repository_name(value: object) -> str:
    """Return the stripped repository name or raise ``ValueError``."""

    issues = _IssueCollector()
    parsed = _as_repository_name(value, "repository", issues)
    if parsed is None:
        raise ValueError("; ".join(issue.message for issue in issues.items()))
    return parsed


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def dump_redacted(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Alias for schema-level redacted dumps."""

    return redact_config(config)


class _Invalid:
    __slots__ = ()


_INVALID: Final = _Invalid()


def _validate_option(
    option: ConfigOption,
    value: object,
    path: str,
    issues: _IssueCollector,
) -> object:
    if value is None:
        if option.nullable:
            return None
        issues.add(path, "must not be null")
        return _INVALID

    parsed: object | None
    kind = option.value_type
    if kind == "str":
        parsed = _as_str(value, path, issues)
        if parsed is not None and option.name.endswith("_env"):
            parsed = _as_env_name(parsed, path, issues)
    elif kind == "path":
        parsed = _as_path_text(value, path, issues)
    elif kind == "int":
        parsed = _as_int(value, path, issues, minimum=0)
    elif kind == "float":
        parsed = _as_float(value, path, issues, minimum=0.0)
    elif kind == "bool":
        parsed = _as_bool(value, path, issues)
    elif kind == "str_list":
        parsed = _as_str_list(value, path, issues)
    elif kind == "command":
        parsed = _as_command(value, path, issues)
    elif kind == "platform":
        parsed = _as_enum(value, path, issues, allowed_values=SUPPORTED_PLATFORMS)
    elif kind == "log_level":
        parsed = _as_log_level(value, path, issues)
    elif kind == "repository":
        parsed = _as_repository_name(value, path, issues)
    elif kind == "repositories":
        parsed = _as_repositories(value, path, issues)
    else:
        parsed = _as_host_rules(value, path, issues)

    if parsed is None:
        return _INVALID
    return parsed


def _as_repositories(value: object, path: str, issues: _IssueCollector) -> list[object] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected list, got {type(value).__name__}")
        return None
    descriptors: list[object] = []
    failed = False
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        if isinstance(item, str):
            name = _as_repository_name(item, item_path, issues)
            if name is None:
                failed = True
            else:
                descriptors.append(name)
            continue
        descriptor = _as_descriptor(item, item_path, issues)
        if descriptor is None:
            failed = True
        else:
            descriptors.append(descriptor)
    if failed:
        return None
    return descriptors


def _as_descriptor(value: object, path: str, issues: _IssueCollector) -> dict[str, Any] | None:
    payload = _as_object(value, path, issues)
    if payload is None:
        return None
    if "repository" not in payload:
        issues.add(_join(path, "repository"), "missing required field")
        return None

    start = len(issues.items())
    descriptor: dict[str, Any] = {}
    for key in sorted(payload):
        key_path = _join(path, key)
        option = OPTIONS_BY_NAME.get(key)
        if option is None:
            if _looks_sensitive_key(key):
                issues.add(
                    key_path,
                    "embedded secret values are forbidden; use an *_env key with an env var name",
                )
            else:
                descriptor[key] = _deep_copy_value(payload[key])
            continue
        if option.stage is ConfigStage.GLOBAL:
            issues.add(key_path, "field is only valid at global scope")
            continue
        parsed = _validate_option(option, payload[key], key_path, issues)
        if parsed is not _INVALID:
            descriptor[key] = parsed
    if len(issues.items()) > start:
        return None
    return descriptor


def _as_host_rules(value: object, path: str, issues: _IssueCollector) -> list[object] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected list, got {type(value).__name__}")
        return None
    start = len(issues.items())
    rules: list[object] = []
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        if dataclasses.is_dataclass(item) and not isinstance(item, type):
            # Already-resolved rule objects (added during global initialization).
            rules.append(item)
            continue
        payload = _as_object(item, item_path, issues)
        if payload is None:
            continue
        rule: dict[str, Any] = {}
        for key in sorted(payload):
            key_path = _join(item_path, key)
            if key not in HOST_RULE_FIELDS:
                if _looks_sensitive_key(key):
                    issues.add(
                        key_path,
                        "embedded secret values are forbidden; use token_env or password_env",
                    )
                else:
                    issues.add(key_path, "unknown field")
                continue
            parsed = _as_str(payload[key], key_path, issues)
            if parsed is not None and key.endswith("_env"):
                parsed = _as_env_name(parsed, key_path, issues)
            if parsed is not None:
                rule[key] = parsed
        rules.append(rule)
    if len(issues.items()) > start:
        return None
    return rules


def _as_repository_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\\" in parsed or "\x00" in parsed:
        issues.add(path, "repository name must not contain backslashes or NUL bytes")
        return None
    segments = parsed.split("/")
    if any(segment in {"", ".", ".."} for segment in segments):
        issues.add(path, f"invalid repository name {parsed!r}")
        return None
    return parsed


def _as_command(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if isinstance(value, str):
        try:
            argv = shlex.split(value)
        except ValueError as exc:
            issues.add(path, f"cannot parse command: {exc}")
            return None
        if not argv:
            issues.add(path, "must not be empty")
            return None
        return argv
    parsed = _as_str_list(value, path, issues)
    if parsed is not None and not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected list, got {type(value).__name__}")
        return None
    items: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is None:
            return None
        items.append(parsed)
    return items


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_env_name(value: str, path: str, issues: _IssueCollector) -> str | None:
    if not _ENV_NAME_PATTERN.fullmatch(value):
        issues.add(path, "must be an env var name (example: REPO_FLEET_TOKEN)")
        return None
    return value


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _as_log_level(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    return _as_enum(parsed.upper(), path, issues, allowed_values=LOG_LEVEL_NAMES)


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay, key=str):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            elif isinstance(existing, Mapping):
                nested = _deep_copy_mapping(existing)
                _merge_into(nested, value)
                target[key] = nested
            else:
                nested_new: dict[str, Any] = {}
                _merge_into(nested_new, value)
                target[key] = nested_new
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(key for key in value if isinstance(key, str)):
        out[key] = _deep_copy_value(value[key])
    return out


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, str):
                out[key] = _deep_copy_value(item)
        return out
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_deep_copy_value(item) for item in value)
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _redact_value(dataclasses.asdict(value), parent_key)
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>" if item is not None else None
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "CONFIG_OPTIONS",
    "ConfigOption",
    "ConfigStage",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "HOST_RULE_FIELDS",
    "OPTIONS_BY_NAME",
    "PATH_FIELDS",
    "REPOSITORY_SCOPE_FIELDS",
    "assert_valid_config",
    "default_config",
    "dump_redacted",
    "filter_config",
    "merge_child_config",
    "merge_config",
    "redact_config",
    "validate_config",
    "validate_repository_name",
]
