"""Repository processor that runs a configured command inside each checkout."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING

from repo_fleet.constants import ENV_PREFIX
from repo_fleet.control_plane.host_rules import HostRule
from repo_fleet.control_plane.limits import LimitKind

if TYPE_CHECKING:
    from repo_fleet.control_plane.controller import RepositoryRunContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_CHARS = 4000

# Credentials of the matching host rule; never logged.
CREDENTIAL_ENV_FIELDS = {
    f"{ENV_PREFIX}HOST_USERNAME": "username",
    f"{ENV_PREFIX}HOST_TOKEN": "token",
    f"{ENV_PREFIX}HOST_PASSWORD": "password",
}


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of one command execution."""

    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.error is None and self.exit_code == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "argv": list(self.argv),
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "error": self.error,
        }


class _CommandTimeoutError(Exception):
    def __init__(self, stdout: bytes, stderr: bytes) -> None:
        super().__init__("command timed out")
        self.stdout = stdout
        self.stderr = stderr


class CommandRepositoryProcessor:
    """
    Run the repository's ``command`` with ``local_dir`` as working directory.

    The host rule matching the repository's platform and endpoint provides
    credentials through ``REPO_FLEET_HOST_*`` variables. Failures (launch
    error, non-zero exit, timeout) are logged at ERROR and do not abort the run.
    A successful command counts as one commit toward the run's commit limit.
    """

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        max_output_chars: int | None = DEFAULT_MAX_OUTPUT_CHARS,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self._default_timeout_seconds = default_timeout_seconds
        self._max_output_chars = max_output_chars
        self._base_env = base_env
        self._results: list[CommandResult] = []

    @property
    def results(self) -> tuple[CommandResult, ...]:
        return tuple(self._results)

    async def process(self, context: RepositoryRunContext) -> None:
        config = context.config
        argv = tuple(str(part) for part in config.get("command") or ())
        if not argv:
            logger.info("No command configured, nothing to do")
            return
        if config.get("dry_run"):
            logger.info("DRY-RUN: would run command", extra={"argv": list(argv)})
            return

        timeout = config.get("command_timeout_seconds") or self._default_timeout_seconds
        logger.debug("Running command", extra={"argv": list(argv)})
        rule = context.host_rules.find(
            host_type=_optional_str(config.get("platform")),
            url=_optional_str(config.get("endpoint")),
        )
        result = await self._run(
            argv,
            cwd=str(config["local_dir"]),
            env=self.build_env(config, rule),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )
        self._results.append(result)

        if result.succeeded:
            logger.info(
                "Command finished",
                extra={"duration_ms": result.duration_ms, "exit_code": result.exit_code},
            )
            if result.stdout:
                logger.debug("Command output", extra={"stdout": result.stdout})
            context.limits.increment(LimitKind.COMMITS)
            return

        if result.timed_out:
            message = "Command timed out"
        elif result.error is not None:
            message = "Command could not be started"
        else:
            message = "Command failed"
        logger.error(message, extra={**result.to_dict(), "stderr": result.stderr})

    def build_env(
        self,
        config: Mapping[str, object],
        rule: HostRule | None = None,
    ) -> dict[str, str]:
        """Process environment plus ``REPO_FLEET_*`` variables describing the repository."""

        env = dict(os.environ if self._base_env is None else self._base_env)
        env[f"{ENV_PREFIX}REPOSITORY"] = str(config["repository"])
        env[f"{ENV_PREFIX}LOCAL_DIR"] = str(config["local_dir"])
        env[f"{ENV_PREFIX}PLATFORM"] = str(config.get("platform") or "")
        env[f"{ENV_PREFIX}ENDPOINT"] = str(config.get("endpoint") or "")
        env[f"{ENV_PREFIX}DRY_RUN"] = "true" if config.get("dry_run") else "false"
        for name, attribute in CREDENTIAL_ENV_FIELDS.items():
            value = getattr(rule, attribute, None) if rule is not None else None
            if value:
                env[name] = value
            else:
                env.pop(name, None)
        return env

    async def _run(
        self,
        argv: Sequence[str],
        *,
        cwd: str,
        env: Mapping[str, str],
        timeout_seconds: float | None,
    ) -> CommandResult:
        started_ns = time.monotonic_ns()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=dict(env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return CommandResult(
                argv=tuple(argv),
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process, timeout_seconds=timeout_seconds
            )
            timed_out = False
            error_text: str | None = None
            exit_code = process.returncode
        except _CommandTimeoutError as exc:
            stdout_bytes, stderr_bytes = exc.stdout, exc.stderr
            timed_out = True
            error_text = f"command timed out after {timeout_seconds or 0.0:.3f}s"
            exit_code = None

        return CommandResult(
            argv=tuple(argv),
            exit_code=exit_code,
            stdout=_truncate_text(_decode(stdout_bytes), self._max_output_chars),
            stderr=_truncate_text(_decode(stderr_bytes), self._max_output_chars),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
            error=error_text,
        )


async def _communicate_with_timeout(
    process: asyncio.subprocess.Process,
    *,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate()
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        with suppress(ProcessLookupError):
            process.kill()
        stdout_bytes, stderr_bytes = await process.communicate()
        raise _CommandTimeoutError(stdout_bytes, stderr_bytes) from exc
    except asyncio.CancelledError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.communicate()
        raise


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _elapsed_ms(started_ns: int) -> int:
    return max(0, (time.monotonic_ns() - started_ns) // 1_000_000)


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace").replace("\r\n", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}\n...[truncated {len(text) - max_chars} chars]"


__all__ = ["CommandRepositoryProcessor", "CommandResult"]
