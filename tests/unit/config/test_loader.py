"""
repo-fleet — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, files, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- TOML, YAML and JSON files; the config-file env selector.
- Env var type coercion driven by the option table.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from repo_fleet.config.loader import (
    CONFIG_FILE_ENV,
    ConfigLoadError,
    collect_env_overrides,
    dump_effective_config,
    env_name_for_option,
    load_config,
)
from repo_fleet.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "repo-fleet.toml"
    _write_config(config_path, "commits_per_run_limit = 4\n")
    env = {"REPO_FLEET_COMMITS_PER_RUN_LIMIT": "6"}

    empty_path = tmp_path / "empty.toml"
    _write_config(empty_path, "")

    default_loaded = load_config(empty_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ=env)
    cli_loaded = load_config(
        config_path, environ=env, cli_overrides={"commits_per_run_limit": 7}
    )

    assert "commits_per_run_limit" not in default_loaded
    assert file_loaded["commits_per_run_limit"] == 4
    assert env_loaded["commits_per_run_limit"] == 6
    assert cli_loaded["commits_per_run_limit"] == 7


def test_missing_default_file_falls_back_to_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    loaded = load_config(environ={})

    assert loaded["platform"] == "github"
    assert loaded["repositories"] == []
    assert loaded["base_dir"].endswith("/repo-fleet")


def test_explicit_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "nope.toml", environ={})


def test_yaml_and_json_files_are_supported(tmp_path: Path) -> None:
    yaml_path = tmp_path / "fleet.yaml"
    _write_config(
        yaml_path,
        "platform: gitlab\n"
        "repositories:\n"
        "  - org/a\n"
        "  - repository: org/b\n"
        "    dry_run: true\n",
    )
    json_path = tmp_path / "fleet.json"
    _write_config(json_path, json.dumps({"platform": "gitea", "labels": ["deps"]}))

    from_yaml = load_config(yaml_path, environ={})
    from_json = load_config(json_path, environ={})

    assert from_yaml["platform"] == "gitlab"
    assert from_yaml["repositories"] == ["org/a", {"repository": "org/b", "dry_run": True}]
    assert from_json["platform"] == "gitea"
    assert from_json["labels"] == ["deps"]


def test_invalid_file_content_raises_config_load_error(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    _write_config(broken, "platform = [unterminated\n")
    not_a_mapping = tmp_path / "list.yaml"
    _write_config(not_a_mapping, "- a\n- b\n")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})
    with pytest.raises(ConfigLoadError, match="must be an object"):
        load_config(not_a_mapping, environ={})


def test_config_file_env_selects_file(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.toml"
    _write_config(config_path, 'platform = "bitbucket"\n')

    loaded = load_config(environ={CONFIG_FILE_ENV: str(config_path)})

    assert loaded["platform"] == "bitbucket"


def test_env_coercion_by_option_type() -> None:
    overrides = collect_env_overrides(
        {
            env_name_for_option("dry_run"): "yes",
            env_name_for_option("autodiscover"): "off",
            env_name_for_option("command_timeout_seconds"): "12.5",
            env_name_for_option("labels"): "deps, security ,",
            env_name_for_option("repositories"): "org/a,org/b",
            env_name_for_option("command"): "make 'lint all'",
            env_name_for_option("host_rules"): '[{"match_host": "git.example.com"}]',
        }
    )

    assert overrides == {
        "autodiscover": False,
        "command": ["make", "lint all"],
        "command_timeout_seconds": 12.5,
        "dry_run": True,
        "host_rules": [{"match_host": "git.example.com"}],
        "labels": ["deps", "security"],
        "repositories": ["org/a", "org/b"],
    }


@pytest.mark.parametrize(
    ("option", "raw"),
    [
        ("dry_run", "maybe"),
        ("commits_per_run_limit", "ten"),
        ("host_rules", '{"match_host": "x"}'),
    ],
)
def test_env_coercion_errors_are_config_load_errors(option: str, raw: str) -> None:
    with pytest.raises(ConfigLoadError, match=env_name_for_option(option)):
        collect_env_overrides({env_name_for_option(option): raw})


def test_derived_fields_are_not_read_from_env() -> None:
    overrides = collect_env_overrides({"REPO_FLEET_LOCAL_DIR": "/tmp/x"})

    assert overrides == {}


def test_paths_normalize_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "repo-fleet.toml"
    _write_config(config_path, 'base_dir = "../work"\nlog_dir = "logs"\n')

    loaded = load_config(config_path, environ={})

    assert loaded["base_dir"] == (tmp_path / "work").as_posix()
    assert loaded["log_dir"] == (tmp_path / "conf" / "logs").as_posix()


def test_cli_overrides_skip_unset_values(tmp_path: Path) -> None:
    config_path = tmp_path / "repo-fleet.toml"
    _write_config(config_path, 'repositories = ["org/a"]\ndry_run = true\n')

    loaded = load_config(
        config_path,
        environ={},
        cli_overrides={"dry_run": None, "repositories": [], "command": "echo hi"},
    )

    assert loaded["repositories"] == ["org/a"]
    assert loaded["dry_run"] is True
    assert loaded["command"] == ["echo", "hi"]


def test_validation_failures_propagate(tmp_path: Path) -> None:
    config_path = tmp_path / "repo-fleet.toml"
    _write_config(config_path, 'platform = "svn"\n')

    with pytest.raises(ConfigValidationError, match="platform"):
        load_config(config_path, environ={})


def test_dump_effective_config_is_redacted_and_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "repo-fleet.toml"
    _write_config(config_path, 'platform = "local"\n')
    loaded = load_config(config_path, environ={})
    loaded["host_rules"] = [{"match_host": "git.example.com", "token": "glpat-abcdefghij"}]

    first = dump_effective_config(loaded)
    second = dump_effective_config(loaded)

    assert first == second
    assert "glpat-abcdefghij" not in first
    assert json.loads(first)["platform"] == "local"
