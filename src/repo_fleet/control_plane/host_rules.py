"""
repo-fleet — host rules and their repository scoping.

Purpose
- Hold credential/connection rules in an explicit, injectable store.
- Apply a scoped repository config's pending rules to that store.

Scoping contract
- A repository config with a non-empty ``host_rules`` list replaces the whole
  store with those rules; the returned config carries an empty list so the
  rules are neither re-applied nor serialized downstream.
- A repository config without rules leaves the store untouched, so rules
  applied for the previous repository stay active for this one.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import urlsplit


@dataclass(frozen=True, slots=True)
class HostRule:
    """Credential/connection rule for one host or host type."""

    host_type: str | None = None
    match_host: str | None = None
    username: str | None = None
    token: str | None = field(default=None, repr=False)
    password: str | None = field(default=None, repr=False)

    @classmethod
    def from_mapping(
        cls,
        payload: Mapping[str, object],
        *,
        environ: Mapping[str, str] | None = None,
    ) -> HostRule:
        """Build a rule from a config entry, resolving ``*_env`` references."""

        env_map = os.environ if environ is None else environ
        return cls(
            host_type=_optional_str(payload.get("host_type")),
            match_host=_optional_str(payload.get("match_host")),
            username=_optional_str(payload.get("username")),
            token=_resolve_env(payload.get("token_env"), env_map),
            password=_resolve_env(payload.get("password_env"), env_map),
        )

    def matches(self, *, host_type: str | None = None, url: str | None = None) -> bool:
        if self.host_type is not None and host_type is not None and self.host_type != host_type:
            return False
        if self.match_host is None:
            return True
        if url is None:
            return False
        if url.startswith(self.match_host):
            return True
        hostname = urlsplit(url if "://" in url else f"https://{url}").hostname or ""
        return hostname == self.match_host or hostname.endswith(f".{self.match_host}")


class HostRuleStore:
    """Process-wide host rules, injected wherever credentials are looked up."""

    def __init__(self) -> None:
        self._rules: list[HostRule] = []

    def clear(self) -> None:
        self._rules.clear()

    def add(self, rule: HostRule) -> None:
        if not isinstance(rule, HostRule):
            raise TypeError(f"expected HostRule, got {type(rule).__name__}")
        self._rules.append(rule)

    def rules(self) -> tuple[HostRule, ...]:
        return tuple(self._rules)

    def find(self, *, host_type: str | None = None, url: str | None = None) -> HostRule | None:
        """Return the most specific matching rule (longest ``match_host``; later wins ties)."""

        best: HostRule | None = None
        best_rank = -1
        for rule in self._rules:
            if not rule.matches(host_type=host_type, url=url):
                continue
            rank = len(rule.match_host or "")
            if rule.host_type is not None and host_type is not None:
                rank += 1
            if rank >= best_rank:
                best = rule
                best_rank = rank
        return best

    def __len__(self) -> int:
        return len(self._rules)


def coerce_host_rule(
    item: HostRule | Mapping[str, object],
    *,
    environ: Mapping[str, str] | None = None,
) -> HostRule:
    if isinstance(item, HostRule):
        return item
    if isinstance(item, Mapping):
        return HostRule.from_mapping(item, environ=environ)
    raise TypeError(f"host rule must be a HostRule or mapping, got {type(item).__name__}")


def apply_repository_host_rules(
    repo_config: Mapping[str, Any],
    store: HostRuleStore,
    *,
    environ: Mapping[str, str] | None = None,
) -> Mapping[str, Any]:
    """Apply pending host rules of ``repo_config`` to ``store`` and return the drained config."""

    pending = repo_config.get("host_rules")
    if not pending:
        return repo_config

    rules = [coerce_host_rule(item, environ=environ) for item in pending]
    store.clear()
    for rule in rules:
        store.add(rule)

    drained = dict(repo_config)
    drained["host_rules"] = []
    return MappingProxyType(drained)


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _resolve_env(name: object, environ: Mapping[str, str]) -> str | None:
    if not isinstance(name, str) or not name.strip():
        return None
    value = environ.get(name.strip())
    if value is None or not value.strip():
        return None
    return value.strip()


__all__ = [
    "HostRule",
    "HostRuleStore",
    "apply_repository_host_rules",
    "coerce_host_rule",
]
