"""Subprocess helpers for running external commands."""

from __future__ import annotations

import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

from . import log

TIMEOUT_RETURNCODE = 124


@dataclass(frozen=True)
class CommandRequest:
    """Typed command invocation request."""

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class CommandResult:
    """Typed command execution result."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandRunner(Protocol):
    """Runtime command-execution interface.

    Implementations return ``None`` when the executable does not exist.
    """

    def run(self, request: CommandRequest) -> CommandResult | None: ...


def _kill_process_group(process: subprocess.Popen[str]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        process.kill()


class SubprocessCommandRunner:
    """Default command-runner adapter backed by subprocess.

    Each child runs in its own session so a timeout can kill the whole
    process group. Output gathered before a timeout is discarded.
    """

    def run(self, request: CommandRequest) -> CommandResult | None:
        try:
            process = subprocess.Popen(
                list(request.argv),
                cwd=request.cwd,
                env=request.env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except FileNotFoundError:
            return None
        try:
            stdout, stderr = process.communicate(timeout=request.timeout_seconds)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            process.communicate()
            log.debug(f"timed out after {request.timeout_seconds}s: {' '.join(request.argv)}")
            return CommandResult(
                argv=request.argv,
                returncode=TIMEOUT_RETURNCODE,
                stdout="",
                stderr="",
                timed_out=True,
            )
        return CommandResult(
            argv=request.argv,
            returncode=process.returncode,
            stdout=stdout if isinstance(stdout, str) else "",
            stderr=stderr if isinstance(stderr, str) else "",
        )


_DEFAULT_COMMAND_RUNNER: CommandRunner = SubprocessCommandRunner()


@dataclass(frozen=True)
class CommandExecutionError(RuntimeError):
    """Raised when command execution fails before parsing can occur."""

    request: CommandRequest
    detail: str
    result: CommandResult | None = None

    @property
    def missing(self) -> bool:
        """True when the executable itself could not be found."""
        return self.result is None

    @property
    def timed_out(self) -> bool:
        return self.result is not None and self.result.timed_out

    def __str__(self) -> str:
        return self.detail


def run_with_runner(
    request: CommandRequest, *, runner: CommandRunner | None = None
) -> CommandResult | None:
    """Execute a typed command request with the given runner."""
    active_runner = runner or _DEFAULT_COMMAND_RUNNER
    log.trace(f"run: {' '.join(request.argv)}")
    return active_runner.run(request)


def _missing_command_detail(request: CommandRequest) -> str:
    argv = request.argv
    if not argv:
        return "missing required command"
    return f"missing required command: {argv[0]}"


def _command_failure_detail(request: CommandRequest, result: CommandResult) -> str:
    command_text = " ".join(request.argv)
    if result.timed_out:
        return f"command timed out after {request.timeout_seconds}s: {command_text}"
    output = (result.stderr or result.stdout or "").strip()
    if output:
        return f"command failed: {command_text}\n{output}"
    return f"command failed: {command_text}"


def run_checked(
    request: CommandRequest, *, runner: CommandRunner | None = None
) -> CommandResult:
    """Execute a command and raise ``CommandExecutionError`` unless it succeeds."""
    result = run_with_runner(request, runner=runner)
    if result is None:
        raise CommandExecutionError(request=request, detail=_missing_command_detail(request))
    if not result.ok:
        raise CommandExecutionError(
            request=request,
            result=result,
            detail=_command_failure_detail(request, result),
        )
    return result


def run_best_effort(
    request: CommandRequest, *, runner: CommandRunner | None = None
) -> CommandResult | None:
    """Run a fire-and-forget command; callers decide whether to look at the result."""
    result = run_with_runner(request, runner=runner)
    if result is None or not result.ok:
        log.debug(f"best-effort command did not succeed: {' '.join(request.argv)}")
    return result
