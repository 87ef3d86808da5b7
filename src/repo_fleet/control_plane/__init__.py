"""Control-plane public API."""

from repo_fleet.control_plane.autodiscover import (
    LocalRepositorySource,
    RepositorySource,
    StaticRepositorySource,
    autodiscover_repositories,
)
from repo_fleet.control_plane.controller import (
    RepositoryProcessor,
    RepositoryRunContext,
    RunCollaborators,
    RunController,
    RunPhase,
)
from repo_fleet.control_plane.host_rules import (
    HostRule,
    HostRuleStore,
    apply_repository_host_rules,
)
from repo_fleet.control_plane.initialize import (
    check_environment,
    global_finalize,
    global_initialize,
)
from repo_fleet.control_plane.limits import LimitKind, LimitSnapshot, LimitStore
from repo_fleet.control_plane.outcome import (
    ExitCode,
    FailureKind,
    FatalError,
    InitializationError,
    RunOutcome,
    classify_error,
    resolve_exit_code,
)
from repo_fleet.control_plane.scope import (
    derive_repository_config,
    repository_local_dir,
    scope_repository_config,
)

__all__ = [
    "ExitCode",
    "FailureKind",
    "FatalError",
    "HostRule",
    "HostRuleStore",
    "InitializationError",
    "LimitKind",
    "LimitSnapshot",
    "LimitStore",
    "LocalRepositorySource",
    "RepositoryProcessor",
    "RepositoryRunContext",
    "RepositorySource",
    "RunCollaborators",
    "RunController",
    "RunOutcome",
    "RunPhase",
    "StaticRepositorySource",
    "apply_repository_host_rules",
    "autodiscover_repositories",
    "check_environment",
    "classify_error",
    "derive_repository_config",
    "global_finalize",
    "global_initialize",
    "repository_local_dir",
    "resolve_exit_code",
    "scope_repository_config",
]
