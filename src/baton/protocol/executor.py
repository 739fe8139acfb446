"""Sequential step executor for ``--execute`` mode.

Steps run one at a time through ``sh -c``. Execution stops at the first
failure; later steps are returned untouched in ``remaining``.

The only state carried between steps is the workspace name: once a
``maw ws create`` step succeeds, the literal token ``$WS`` in every later step
is replaced with the name parsed from that step's stdout.

Example:
    >>> extract_workspace_name("Creating workspace 'frost-castle'\\n")
    'frost-castle'
    >>> extract_workspace_name("warming up...\\nfrost-castle\\n")
    'frost-castle'
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field

from .. import exec, log

WORKSPACE_PLACEHOLDER = "$WS"
WORKSPACE_CREATE_SIGNATURE = "maw ws create"
_QUOTED_NAME_PREFIX = "Creating workspace '"
_ALNUM = frozenset(string.ascii_letters + string.digits)
_NAME_CHARS = _ALNUM | {"-"}


class ExecutionError(RuntimeError):
    """Raised when a step cannot be started at all."""


@dataclass(frozen=True)
class StepResult:
    command: str
    success: bool
    stdout: str = ""
    stderr: str = ""

    def to_payload(self) -> dict[str, object]:
        return {
            "command": self.command,
            "success": self.success,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


@dataclass
class ExecutionReport:
    """Results of executed steps plus the steps a failure left unexecuted.

    ``remaining`` is non-empty only when a step failed, and nothing after a
    failed step is ever run.
    """

    results: list[StepResult] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)

    @property
    def steps_total(self) -> int:
        return len(self.results) + len(self.remaining)

    @property
    def succeeded(self) -> bool:
        return not self.remaining and all(result.success for result in self.results)

    def to_payload(self) -> dict[str, object]:
        return {
            "steps_run": len(self.results),
            "steps_total": self.steps_total,
            "success": self.succeeded,
            "results": [result.to_payload() for result in self.results],
            "remaining": list(self.remaining),
        }


def creates_workspace(command: str) -> bool:
    return WORKSPACE_CREATE_SIGNATURE in command


def extract_workspace_name(stdout: str) -> str | None:
    """Parse the workspace name out of ``maw ws create`` output.

    Tries ``Creating workspace '<name>'`` first, then the first line made up
    entirely of alphanumerics and hyphens that starts with an alphanumeric.
    """
    start = stdout.find(_QUOTED_NAME_PREFIX)
    if start != -1:
        after = stdout[start + len(_QUOTED_NAME_PREFIX) :]
        end = after.find("'")
        if end > 0:
            return after[:end]
    for line in stdout.splitlines():
        candidate = line.strip()
        if candidate and candidate[0] in _ALNUM and all(ch in _NAME_CHARS for ch in candidate):
            return candidate
    return None


def execute_steps(
    steps: list[str],
    *,
    runner: exec.CommandRunner | None = None,
    timeout_seconds: float | None = None,
) -> ExecutionReport:
    """Run ``steps`` in order and report what happened.

    A step that times out counts as failed and its output is discarded.

    Raises:
        ExecutionError: When ``sh`` itself cannot be started.
    """
    report = ExecutionReport()
    workspace: str | None = None
    for index, step in enumerate(steps):
        command = step.replace(WORKSPACE_PLACEHOLDER, workspace) if workspace else step
        log.debug(f"step {index + 1}/{len(steps)}: {command}")
        request = exec.CommandRequest(argv=("sh", "-c", command), timeout_seconds=timeout_seconds)
        result = exec.run_with_runner(request, runner=runner)
        if result is None:
            raise ExecutionError(f"failed to spawn command: {command}")

        if creates_workspace(step) and result.ok:
            workspace = extract_workspace_name(result.stdout)

        report.results.append(
            StepResult(
                command=command,
                success=result.ok,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        )
        if not result.ok:
            report.remaining = list(steps[index + 1 :])
            log.debug(f"step {index + 1} failed; {len(report.remaining)} step(s) not executed")
            break
    return report
