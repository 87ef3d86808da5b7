"""In-memory collection of warning-and-above log records for exit-code decisions."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from repo_fleet.observability.logging import get_correlation_context


@dataclass(frozen=True, slots=True)
class LogProblem:
    """A single collected log record."""

    level: int
    logger: str
    message: str
    repository: str | None = None

    @property
    def level_name(self) -> str:
        return logging.getLevelName(self.level)

    def to_dict(self) -> dict[str, object]:
        return {
            "level": self.level_name,
            "logger": self.logger,
            "message": self.message,
            "repository": self.repository,
        }


class ProblemCollector(logging.Handler):
    """
    Logging handler that keeps every record at or above ``level``.

    Attach it to the package root logger for the duration of a run; the run
    controller reads ``max_level()`` to decide whether errors were logged.
    """

    def __init__(self, level: int = logging.WARNING) -> None:
        super().__init__(level)
        self._problems: list[LogProblem] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            repository = getattr(record, "repository", None)
            if not isinstance(repository, str):
                repository = get_correlation_context().get("repository")
            message = record.getMessage()
        except Exception:
            # Keep the severity even when the message cannot be rendered.
            self.handleError(record)
            message = str(record.msg)
            repository = None
        problem = LogProblem(
            level=record.levelno,
            logger=record.name,
            message=message,
            repository=repository,
        )
        # Handler.handle() already holds self.lock here.
        self._problems.append(problem)

    def records(self) -> tuple[LogProblem, ...]:
        return tuple(self._problems)

    def errors(self) -> tuple[LogProblem, ...]:
        """Collected records at ERROR severity or above."""
        return tuple(problem for problem in self._problems if problem.level >= logging.ERROR)

    def max_level(self) -> int | None:
        if not self._problems:
            return None
        return max(problem.level for problem in self._problems)

    def clear(self) -> None:
        self._problems.clear()

    @contextmanager
    def attached(self, logger: logging.Logger) -> Iterator[ProblemCollector]:
        """Attach to ``logger`` for the duration of the block."""
        logger.addHandler(self)
        try:
            yield self
        finally:
            logger.removeHandler(self)


__all__ = ["LogProblem", "ProblemCollector"]
