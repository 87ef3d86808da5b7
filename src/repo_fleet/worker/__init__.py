"""Repository processors."""

from repo_fleet.worker.command import CommandRepositoryProcessor, CommandResult

__all__ = ["CommandRepositoryProcessor", "CommandResult"]
