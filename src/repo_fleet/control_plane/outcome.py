"""
repo-fleet — failure classification and exit-code resolution.

Exit-code contract
- 0: the run completed and nothing at ERROR or above was logged.
- 1: configuration was loaded but the run logged at least one ERROR/CRITICAL
  record (including the fatal record of an aborted run).
- 2: configuration could not be loaded.
- 3: reserved for the CLI boundary (unhandled internal error).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum, StrEnum

from repo_fleet.constants import INIT_ERROR_PREFIX


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    LOGGED_ERRORS = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 3


class FailureKind(StrEnum):
    CONFIG_LOAD = "config_load"
    INITIALIZATION = "initialization"
    UNEXPECTED = "unexpected"


class InitializationError(RuntimeError):
    """User-actionable failure raised while preparing the run."""

    def __init__(self, message: str) -> None:
        if not message.startswith(INIT_ERROR_PREFIX):
            message = f"{INIT_ERROR_PREFIX}{message}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class FatalError:
    """Classified run-aborting failure."""

    kind: FailureKind
    message: str
    phase: str
    include_traceback: bool

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind.value, "message": self.message, "phase": self.phase}


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """What the run looked like once finalize completed."""

    config_loaded: bool
    fatal: FatalError | None
    max_severity: int | None

    @property
    def logged_errors(self) -> bool:
        return self.max_severity is not None and self.max_severity >= logging.ERROR


def classify_error(exc: BaseException, *, phase: str, config_loaded: bool) -> FatalError:
    """
    Classify a run-aborting exception.

    Messages carrying the init marker are reported without it and without a
    traceback; everything else is reported in full.
    """

    message = str(exc)
    if message.startswith(INIT_ERROR_PREFIX):
        kind = FailureKind.INITIALIZATION if config_loaded else FailureKind.CONFIG_LOAD
        return FatalError(
            kind=kind,
            message=message[len(INIT_ERROR_PREFIX) :],
            phase=phase,
            include_traceback=False,
        )
    return FatalError(
        kind=FailureKind.UNEXPECTED if config_loaded else FailureKind.CONFIG_LOAD,
        message=f"Fatal error: {message or type(exc).__name__}",
        phase=phase,
        include_traceback=True,
    )


def resolve_exit_code(outcome: RunOutcome) -> ExitCode:
    if not outcome.config_loaded:
        return ExitCode.CONFIG_ERROR
    if outcome.logged_errors:
        return ExitCode.LOGGED_ERRORS
    return ExitCode.SUCCESS


__all__ = [
    "ExitCode",
    "FailureKind",
    "FatalError",
    "InitializationError",
    "RunOutcome",
    "classify_error",
    "resolve_exit_code",
]
