"""Unit tests for the log problem collector."""

from __future__ import annotations

import logging
from uuid import uuid4

from repo_fleet.observability.logging import correlation_scope
from repo_fleet.observability.problems import LogProblem, ProblemCollector


def _logger() -> logging.Logger:
    logger = logging.getLogger(f"repo_fleet.tests.problems.{uuid4().hex}")
    logger.setLevel(logging.DEBUG)
    return logger


def test_collects_warning_and_above_only() -> None:
    logger = _logger()
    collector = ProblemCollector()

    with collector.attached(logger):
        logger.info("fine")
        logger.warning("careful %s", "now")
        logger.error("broken")

    assert [problem.message for problem in collector.records()] == ["careful now", "broken"]
    assert [problem.message for problem in collector.errors()] == ["broken"]
    assert collector.max_level() == logging.ERROR


def test_detaches_after_block() -> None:
    logger = _logger()
    collector = ProblemCollector()

    with collector.attached(logger):
        pass
    logger.error("after")

    assert collector.records() == ()
    assert collector.max_level() is None
    assert collector not in logger.handlers


def test_repository_comes_from_record_or_correlation_context() -> None:
    logger = _logger()
    collector = ProblemCollector()

    with collector.attached(logger):
        with correlation_scope(repository="org/a"):
            logger.error("scoped")
        logger.error("explicit", extra={"repository": "org/b"})
        logger.error("unscoped")

    assert [problem.repository for problem in collector.records()] == ["org/a", "org/b", None]


def test_problem_serialization_and_clear() -> None:
    logger = _logger()
    collector = ProblemCollector()

    with collector.attached(logger):
        logger.critical("fatal")

    assert collector.records()[0].to_dict() == {
        "level": "CRITICAL",
        "logger": logger.name,
        "message": "fatal",
        "repository": None,
    }
    collector.clear()
    assert collector.records() == ()


def test_level_name() -> None:
    assert LogProblem(level=logging.WARNING, logger="x", message="m").level_name == "WARNING"


def test_unrenderable_message_is_still_collected() -> None:
    logger = _logger()
    collector = ProblemCollector()

    with collector.attached(logger):
        logger.error("%s %s", "only-one")
        logger.error("after")

    assert [problem.level for problem in collector.records()] == [logging.ERROR, logging.ERROR]
    assert collector.records()[0].message == "%s %s"
    assert collector.records()[1].message == "after"
