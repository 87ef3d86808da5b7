"""
repo-fleet — batch repository automation run orchestrator.

Applies one repository operation across a list of target repositories in a
single process invocation: global config assembly, per-repository config
scoping, a run-wide limit circuit breaker, and exit-code resolution.

Importing the package has no side effects (no config loading, no logging init).
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
