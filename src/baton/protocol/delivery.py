"""Shared plumbing between command handlers and the terminal.

Handlers build guidance from a collected context; this module collects that
context, turns collection failures into guidance or exit errors, runs steps
in execute mode, and prints the rendered result.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass

from .. import exec, io, log
from ..models import BatonConfig
from . import shell
from .context import ContextError, ProtocolContext
from .executor import ExecutionError, ExecutionReport, execute_steps
from .exit_policy import ProtocolExitError
from .guidance import ProtocolGuidance, ProtocolStatus
from .mutex import MergeMutex, MergeMutexTimeout, merge_mutex
from .render import OutputFormat, render


@dataclass(frozen=True)
class ProtocolRequest:
    """Caller identity and options, resolved once at the CLI boundary."""

    agent: str
    project: str
    config: BatonConfig
    fmt: OutputFormat = OutputFormat.TEXT
    execute: bool = False
    runner: exec.CommandRunner | None = None

    @property
    def channel(self) -> str:
        return self.config.project.resolved_channel(self.project)

    def merge_mutex(self, memo: str) -> MergeMutex:
        settings = self.config.protocol
        return MergeMutex(
            self.agent,
            self.project,
            memo,
            ttl_seconds=settings.merge_lease_ttl_seconds,
            timeout_seconds=settings.merge_lock_timeout_seconds,
            runner=self.runner,
            command_timeout_seconds=settings.command_timeout_seconds,
        )


def collect_context(request: ProtocolRequest, *, mine_only: bool = False) -> ProtocolContext:
    return ProtocolContext.collect(
        request.project,
        request.agent,
        runner=request.runner,
        timeout_seconds=request.config.protocol.command_timeout_seconds,
        mine_only=mine_only,
    )


def state_unavailable(command: str, exc: ContextError) -> ProtocolGuidance:
    """Convert a collection failure into Blocked guidance.

    Raises:
        ProtocolExitError: When the tool is missing entirely.
    """
    if exc.spawn:
        raise ProtocolExitError.operational(command, str(exc)) from exc
    log.debug(f"{command}: state unavailable: {exc}")
    guidance = ProtocolGuidance(command)
    guidance.blocked(f"failed to collect state: {exc}")
    return guidance


def emit(request: ProtocolRequest, guidance: ProtocolGuidance) -> None:
    """Render ``guidance`` to stdout, failing closed on invalid identifiers."""
    try:
        output = render(guidance, request.fmt)
    except shell.ValidationError as exc:
        raise ProtocolExitError.operational(guidance.command, f"render error: {exc}") from exc
    io.say(output.rstrip("\n"))


def execute_guidance(
    request: ProtocolRequest,
    guidance: ProtocolGuidance,
    *,
    mutex: MergeMutex | None = None,
) -> ExecutionReport:
    """Run the guidance steps and attach the report, optionally under the merge lease."""
    timeout = request.config.protocol.step_timeout_seconds
    try:
        if mutex is None:
            report = execute_steps(guidance.steps, runner=request.runner, timeout_seconds=timeout)
        else:
            with merge_mutex(mutex):
                report = execute_steps(
                    guidance.steps, runner=request.runner, timeout_seconds=timeout
                )
    except (ExecutionError, MergeMutexTimeout, exec.CommandExecutionError) as exc:
        raise ProtocolExitError.operational(guidance.command, str(exc)) from exc
    guidance.attach_report(report)
    return report


def fail_on_failed_steps(guidance: ProtocolGuidance, report: ExecutionReport) -> None:
    if not report.succeeded:
        raise ProtocolExitError.operational(
            guidance.command, "one or more steps failed during execution"
        )


def deliver(
    request: ProtocolRequest,
    guidance: ProtocolGuidance,
    *,
    executable: Collection[ProtocolStatus] = (ProtocolStatus.READY,),
    mutex: MergeMutex | None = None,
) -> ProtocolGuidance:
    """Print guidance, or in execute mode run it first and print the report.

    Steps only run when the guidance status is one of ``executable``.

    Raises:
        ProtocolExitError: When a step fails or the guidance cannot be rendered.
    """
    if not (request.execute and guidance.status in executable and guidance.steps):
        emit(request, guidance)
        return guidance
    report = execute_guidance(request, guidance, mutex=mutex)
    emit(request, guidance)
    fail_on_failed_steps(guidance, report)
    return guidance
