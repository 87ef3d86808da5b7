"""
Run-wide limit counters and the circuit-breaker check.

Collaborators increment named counters while processing repositories (for
example each commit created); the run controller asks ``limit_reached`` once
before every repository and stops the whole run when a limit is hit.

Counters are never reset mid-run. Limit configuration and threshold crossings
are logged with ``structlog`` so they show up as machine-parseable events.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog


class LimitKind(StrEnum):
    """Named run-wide counters."""

    COMMITS = "commits"


@dataclass(frozen=True, slots=True)
class LimitSnapshot:
    """Point-in-time view of one counter."""

    kind: LimitKind
    current: int
    maximum: int | None

    @property
    def reached(self) -> bool:
        return self.maximum is not None and self.current >= self.maximum

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "current": self.current,
            "maximum": self.maximum,
            "reached": self.reached,
        }


class LimitStore:
    """
    Process-wide limit counters.

    A limit without a maximum (``None`` or a non-positive value) is never
    reached, however high its counter climbs.
    """

    def __init__(self, *, logger: Any | None = None) -> None:
        self._current: dict[LimitKind, int] = {}
        self._maximum: dict[LimitKind, int] = {}
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def set_max_limit(self, kind: LimitKind, maximum: int | None) -> None:
        kind = LimitKind(kind)
        if maximum is None or maximum <= 0:
            self._maximum.pop(kind, None)
            self._current.setdefault(kind, 0)
            return
        self._maximum[kind] = int(maximum)
        self._current.setdefault(kind, 0)
        self._logger.debug("run_limit_configured", kind=kind.value, maximum=maximum)

    def increment(self, kind: LimitKind, by: int = 1) -> int:
        if by < 0:
            raise ValueError("limit counters only move forward")
        kind = LimitKind(kind)
        was_reached = self.limit_reached(kind)
        self._current[kind] = self._current.get(kind, 0) + by
        if not was_reached and self.limit_reached(kind):
            self._logger.info(
                "run_limit_reached",
                kind=kind.value,
                current=self._current[kind],
                maximum=self._maximum[kind],
            )
        return self._current[kind]

    def count(self, kind: LimitKind) -> int:
        return self._current.get(LimitKind(kind), 0)

    def limit_reached(self, kind: LimitKind) -> bool:
        kind = LimitKind(kind)
        maximum = self._maximum.get(kind)
        if maximum is None:
            return False
        return self._current.get(kind, 0) >= maximum

    def snapshot(self) -> tuple[LimitSnapshot, ...]:
        return tuple(
            LimitSnapshot(kind=kind, current=self.count(kind), maximum=self._maximum.get(kind))
            for kind in LimitKind
        )

    def reset(self) -> None:
        """Forget all counters and maxima; only valid between runs."""
        self._current.clear()
        self._maximum.clear()


__all__ = [
    "LimitKind",
    "LimitSnapshot",
    "LimitStore",
]
