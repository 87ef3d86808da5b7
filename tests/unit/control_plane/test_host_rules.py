"""Unit tests for host rules and their repository scoping."""

from __future__ import annotations

from types import MappingProxyType

import pytest

from repo_fleet.control_plane.host_rules import (
    HostRule,
    HostRuleStore,
    apply_repository_host_rules,
    coerce_host_rule,
)


def test_from_mapping_resolves_env_references() -> None:
    rule = HostRule.from_mapping(
        {"match_host": " git.example.com ", "token_env": "GIT_TOKEN", "password_env": "MISSING"},
        environ={"GIT_TOKEN": " s3cr3t "},
    )

    assert rule.match_host == "git.example.com"
    assert rule.token == "s3cr3t"
    assert rule.password is None
    assert "s3cr3t" not in repr(rule)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://git.example.com/org/repo", True),
        ("https://api.git.example.com/v4", True),
        ("git.example.com/org", True),
        ("https://example.com/org", False),
        (None, False),
    ],
)
def test_rule_matching_by_host(url: str | None, expected: bool) -> None:
    rule = HostRule(match_host="git.example.com")

    assert rule.matches(url=url) is expected


def test_rule_matching_by_host_type() -> None:
    rule = HostRule(host_type="gitlab")

    assert rule.matches(host_type="gitlab")
    assert not rule.matches(host_type="github")
    assert rule.matches()


def test_store_find_prefers_longest_match_host() -> None:
    store = HostRuleStore()
    generic = HostRule(host_type="github", token="generic")
    specific = HostRule(host_type="github", match_host="https://github.example.com", token="x")
    store.add(generic)
    store.add(specific)

    assert store.find(host_type="github", url="https://github.example.com/o/r") is specific
    assert store.find(host_type="github", url="https://github.com/o/r") is generic
    assert store.find(host_type="gitlab", url="https://gitlab.com") is None


def test_store_rejects_non_rules() -> None:
    store = HostRuleStore()

    with pytest.raises(TypeError):
        store.add({"match_host": "x"})  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        coerce_host_rule("x")  # type: ignore[arg-type]


def test_pending_rules_replace_store_and_are_drained() -> None:
    store = HostRuleStore()
    store.add(HostRule(match_host="old.example.com"))
    r1 = HostRule(match_host="r1.example.com")
    r2 = {"match_host": "r2.example.com", "token_env": "R2_TOKEN"}
    repo_config = MappingProxyType({"repository": "org/a", "host_rules": [r1, r2]})

    drained = apply_repository_host_rules(repo_config, store, environ={"R2_TOKEN": "t2"})

    assert drained["host_rules"] == []
    assert drained["repository"] == "org/a"
    assert isinstance(drained, MappingProxyType)
    assert store.rules() == (r1, HostRule(match_host="r2.example.com", token="t2"))
    assert repo_config["host_rules"] == [r1, r2]


def test_rules_carry_over_when_next_repository_has_none() -> None:
    store = HostRuleStore()
    r1 = HostRule(match_host="r1.example.com")
    first = apply_repository_host_rules({"repository": "org/a", "host_rules": [r1]}, store)
    second_config = MappingProxyType({"repository": "org/b", "host_rules": []})

    second = apply_repository_host_rules(second_config, store)

    assert first["host_rules"] == []
    assert second is second_config
    assert store.rules() == (r1,)


def test_invalid_pending_rule_leaves_store_untouched() -> None:
    store = HostRuleStore()
    existing = HostRule(match_host="keep.example.com")
    store.add(existing)

    with pytest.raises(TypeError):
        apply_repository_host_rules(
            {"repository": "org/a", "host_rules": [HostRule(), "not-a-rule"]}, store
        )

    assert store.rules() == (existing,)
