"""
repo-fleet — run lifecycle controller.

Purpose
- Drive one run through its phases: load config, global init, discovery,
  per-repository iteration, finalize, exit-code resolution.
- Convert any run-aborting failure into a single CRITICAL log record.

Phase contract
- Phases run strictly in table order; a failed phase ends the loop.
- Finalize is awaited exactly once on every path, with ``None`` when the
  config never loaded.
- Repositories are processed one at a time, in discovered order. The commit
  limit is checked before each repository; once reached, nothing further is
  scoped or processed.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, TypeAlias

from repo_fleet.constants import ROOT_LOGGER_NAME
from repo_fleet.control_plane.host_rules import HostRuleStore, apply_repository_host_rules
from repo_fleet.control_plane.initialize import check_environment as _check_environment
from repo_fleet.control_plane.limits import LimitKind, LimitStore
from repo_fleet.control_plane.outcome import (
    ExitCode,
    FatalError,
    RunOutcome,
    classify_error,
    resolve_exit_code,
)
from repo_fleet.control_plane.scope import (
    DirectoryEnsurer,
    RepositoryConfig,
    derive_repository_config,
    descriptor_name,
)
from repo_fleet.observability.logging import correlation_scope
from repo_fleet.observability.problems import ProblemCollector
from repo_fleet.utils.fs import ensure_directory as _ensure_directory

logger = logging.getLogger(__name__)

GlobalConfig: TypeAlias = Mapping[str, Any]


class RunPhase(StrEnum):
    START = "start"
    CONFIG_LOADED = "config_loaded"
    GLOBALLY_INITIALIZED = "globally_initialized"
    DISCOVERED = "discovered"
    ITERATING = "iterating"
    FINALIZED = "finalized"
    TERMINAL = "terminal"


@dataclass(frozen=True, slots=True)
class RepositoryRunContext:
    """Everything a repository processor gets for one repository."""

    config: RepositoryConfig
    host_rules: HostRuleStore
    limits: LimitStore

    @property
    def repository(self) -> str:
        return str(self.config["repository"])


class RepositoryProcessor(Protocol):
    async def process(self, context: RepositoryRunContext) -> None: ...


@dataclass(slots=True)
class RunCollaborators:
    """Injected dependencies of a run; the stores default to fresh instances."""

    load_config: Callable[[], Awaitable[GlobalConfig]]
    initialize: Callable[[GlobalConfig], Awaitable[GlobalConfig | None]]
    discover: Callable[[GlobalConfig], Awaitable[GlobalConfig | None]]
    processor: RepositoryProcessor
    finalize: Callable[[GlobalConfig | None], Awaitable[None]]
    host_rules: HostRuleStore = field(default_factory=HostRuleStore)
    limits: LimitStore = field(default_factory=LimitStore)
    problems: ProblemCollector = field(default_factory=ProblemCollector)
    ensure_directory: DirectoryEnsurer = _ensure_directory
    check_environment: Callable[[], None] = _check_environment
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)


class RunController:
    """Single-use controller for one run."""

    def __init__(self, collaborators: RunCollaborators) -> None:
        self._collaborators = collaborators
        self._config: GlobalConfig | None = None
        self._phase = RunPhase.START
        self._fatal: FatalError | None = None
        self._outcome: RunOutcome | None = None
        self._phases: tuple[tuple[RunPhase, Callable[[], Awaitable[None]]], ...] = (
            (RunPhase.CONFIG_LOADED, self._load_config),
            (RunPhase.GLOBALLY_INITIALIZED, self._initialize),
            (RunPhase.DISCOVERED, self._discover),
            (RunPhase.ITERATING, self._iterate),
        )

    @property
    def phase(self) -> RunPhase:
        return self._phase

    @property
    def config(self) -> GlobalConfig | None:
        return self._config

    @property
    def fatal(self) -> FatalError | None:
        return self._fatal

    @property
    def outcome(self) -> RunOutcome | None:
        return self._outcome

    async def start(self) -> int:
        """Run every phase, always finalize, and return the process exit code."""

        if self._phase is not RunPhase.START:
            raise RuntimeError("RunController.start() can only be called once")

        problems = self._collaborators.problems
        with problems.attached(logging.getLogger(ROOT_LOGGER_NAME)):
            try:
                await self._run_phases()
            finally:
                await self._collaborators.finalize(self._config)
                self._phase = RunPhase.FINALIZED
                logger.debug("repo-fleet exiting")
            return int(self._resolve(problems))

    async def _run_phases(self) -> None:
        for target, step in self._phases:
            try:
                await step()
            except Exception as exc:
                self._record_fatal(exc, target)
                return
            self._phase = target

    async def _load_config(self) -> None:
        self._config = await self._collaborators.load_config()

    async def _initialize(self) -> None:
        initialized = await self._collaborators.initialize(self._require_config())
        if initialized is not None:
            self._config = initialized
        self._collaborators.check_environment()

    async def _discover(self) -> None:
        discovered = await self._collaborators.discover(self._require_config())
        if discovered is not None:
            self._config = discovered

    async def _iterate(self) -> None:
        config = self._require_config()
        collaborators = self._collaborators
        for descriptor in list(config.get("repositories") or ()):
            if collaborators.limits.limit_reached(LimitKind.COMMITS):
                logger.info("Max commits created for this run.")
                break
            with correlation_scope(
                repository=descriptor_name(descriptor),
                platform=_optional_str(config.get("platform")),
            ):
                repo_config = await derive_repository_config(
                    config,
                    descriptor,
                    ensure_dir=collaborators.ensure_directory,
                )
                repo_config = apply_repository_host_rules(
                    repo_config,
                    collaborators.host_rules,
                    environ=collaborators.environ,
                )
                await collaborators.processor.process(
                    RepositoryRunContext(
                        config=repo_config,
                        host_rules=collaborators.host_rules,
                        limits=collaborators.limits,
                    )
                )

    def _record_fatal(self, exc: Exception, phase: RunPhase) -> None:
        fatal = classify_error(exc, phase=phase.value, config_loaded=self._config is not None)
        self._fatal = fatal
        logger.critical(
            fatal.message,
            exc_info=exc if fatal.include_traceback else None,
            extra={"phase": fatal.phase, "failure_kind": fatal.kind.value},
        )

    def _resolve(self, problems: ProblemCollector) -> ExitCode:
        outcome = RunOutcome(
            config_loaded=self._config is not None,
            fatal=self._fatal,
            max_severity=problems.max_level(),
        )
        self._outcome = outcome
        exit_code = resolve_exit_code(outcome)
        if exit_code is ExitCode.CONFIG_ERROR:
            logger.debug("Missing config")
        elif exit_code is ExitCode.LOGGED_ERRORS:
            logger.info(
                "repo-fleet is exiting with a non-zero code due to the following logged errors",
                extra={"logged_errors": [problem.to_dict() for problem in problems.errors()]},
            )
        self._phase = RunPhase.TERMINAL
        return exit_code

    def _require_config(self) -> GlobalConfig:
        if self._config is None:
            raise RuntimeError("config is not loaded")
        return self._config


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


__all__ = [
    "GlobalConfig",
    "RepositoryProcessor",
    "RepositoryRunContext",
    "RunCollaborators",
    "RunController",
    "RunPhase",
]
