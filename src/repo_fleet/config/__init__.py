"""
repo-fleet config package public API.

Exports config loading/validation entrypoints, the option table, the scoping
merge/filter helpers and public error types. No runtime side effects.
"""

from repo_fleet.config.loader import (
    CONFIG_FILE_ENV,
    ConfigLoadError,
    collect_env_overrides,
    dump_effective_config,
    effective_config,
    env_name_for_option,
    load_config,
    load_config_file,
    normalize_paths,
)
from repo_fleet.config.schema import (
    CONFIG_OPTIONS,
    DEFAULT_CONFIG,
    HOST_RULE_FIELDS,
    OPTIONS_BY_NAME,
    PATH_FIELDS,
    REPOSITORY_SCOPE_FIELDS,
    ConfigOption,
    ConfigStage,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    dump_redacted,
    filter_config,
    merge_child_config,
    merge_config,
    redact_config,
    validate_config,
    validate_repository_name,
)

__all__ = [
    "CONFIG_FILE_ENV",
    "CONFIG_OPTIONS",
    "ConfigLoadError",
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
    "collect_env_overrides",
    "default_config",
    "dump_effective_config",
    "dump_redacted",
    "effective_config",
    "env_name_for_option",
    "filter_config",
    "load_config",
    "load_config_file",
    "merge_child_config",
    "merge_config",
    "normalize_paths",
    "redact_config",
    "validate_config",
    "validate_repository_name",
]
