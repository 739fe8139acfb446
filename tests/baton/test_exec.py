"""Tests for typed command execution helpers."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from baton import exec as exec_util


class FakePopen:
    instances: list[FakePopen] = []

    def __init__(self, argv: list[str], **kwargs: object) -> None:
        self.argv = argv
        self.kwargs = kwargs
        self.pid = 4242
        self.returncode = 0
        self.communicate_calls = 0
        FakePopen.instances.append(self)

    def communicate(self, timeout: float | None = None) -> tuple[str, str]:
        self.communicate_calls += 1
        return "ok", ""

    def kill(self) -> None:
        self.returncode = -9


@pytest.fixture(autouse=True)
def _reset_popen() -> None:
    FakePopen.instances = []


def test_subprocess_command_runner_success(monkeypatch: pytest.MonkeyPatch) -> None:
    """Runner returns typed output and forwards execution options."""
    monkeypatch.setattr(subprocess, "Popen", FakePopen)

    request = exec_util.CommandRequest(
        argv=("bus", "claims", "list"),
        cwd=Path("/tmp"),
        env={"BOTBUS_AGENT": "amber-reef"},
        timeout_seconds=5.0,
    )
    result = exec_util.SubprocessCommandRunner().run(request)

    assert result == exec_util.CommandResult(
        argv=("bus", "claims", "list"),
        returncode=0,
        stdout="ok",
        stderr="",
    )
    process = FakePopen.instances[0]
    assert process.argv == ["bus", "claims", "list"]
    assert process.kwargs["cwd"] == Path("/tmp")
    assert process.kwargs["env"] == {"BOTBUS_AGENT": "amber-reef"}
    assert process.kwargs["stdin"] == subprocess.DEVNULL
    assert process.kwargs["start_new_session"] is True
    assert process.kwargs["text"] is True


def test_subprocess_command_runner_returns_none_when_missing_executable(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Runner returns None when executable is not found."""

    def fake_popen(argv: list[str], **kwargs: object) -> FakePopen:
        del argv, kwargs
        raise FileNotFoundError

    monkeypatch.setattr(subprocess, "Popen", fake_popen)

    result = exec_util.SubprocessCommandRunner().run(exec_util.CommandRequest(argv=("maw",)))

    assert result is None


def test_subprocess_command_runner_timeout_kills_process_group(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Timeouts kill the whole group and discard partial output."""
    killed: list[int] = []

    class SlowPopen(FakePopen):
        def communicate(self, timeout: float | None = None) -> tuple[str, str]:
            self.communicate_calls += 1
            if self.communicate_calls == 1:
                raise subprocess.TimeoutExpired(cmd=self.argv, timeout=timeout or 0)
            return "partial", "partial"

    monkeypatch.setattr(subprocess, "Popen", SlowPopen)
    monkeypatch.setattr(exec_util.os, "killpg", lambda pid, sig: killed.append(pid))

    request = exec_util.CommandRequest(argv=("sleep", "10"), timeout_seconds=0.05)
    result = exec_util.SubprocessCommandRunner().run(request)

    assert result is not None
    assert result.timed_out is True
    assert result.ok is False
    assert result.returncode == exec_util.TIMEOUT_RETURNCODE
    assert result.stdout == ""
    assert result.stderr == ""
    assert killed == [4242]


def test_run_with_runner_uses_injected_runner() -> None:
    """run_with_runner uses the provided command-runner implementation."""

    class FakeRunner:
        def run(
            self, request: exec_util.CommandRequest
        ) -> exec_util.CommandResult | None:
            assert request.argv == ("maw", "ws", "list")
            return exec_util.CommandResult(
                argv=request.argv,
                returncode=0,
                stdout="{}",
                stderr="",
            )

    result = exec_util.run_with_runner(
        exec_util.CommandRequest(argv=("maw", "ws", "list")),
        runner=FakeRunner(),
    )

    assert result is not None
    assert result.stdout == "{}"


def test_run_checked_raises_for_missing_command() -> None:
    """run_checked reports a missing executable distinctly from a failure."""

    class MissingRunner:
        def run(
            self, request: exec_util.CommandRequest
        ) -> exec_util.CommandResult | None:
            del request
            return None

    with pytest.raises(exec_util.CommandExecutionError) as excinfo:
        exec_util.run_checked(exec_util.CommandRequest(argv=("bus",)), runner=MissingRunner())

    assert excinfo.value.missing is True
    assert str(excinfo.value) == "missing required command: bus"


def test_run_checked_raises_with_output_for_failure() -> None:
    class FailingRunner:
        def run(
            self, request: exec_util.CommandRequest
        ) -> exec_util.CommandResult | None:
            return exec_util.CommandResult(
                argv=request.argv, returncode=3, stdout="", stderr="no such bead"
            )

    with pytest.raises(exec_util.CommandExecutionError) as excinfo:
        exec_util.run_checked(
            exec_util.CommandRequest(argv=("br", "show", "bd-1")), runner=FailingRunner()
        )

    assert excinfo.value.missing is False
    assert excinfo.value.timed_out is False
    assert "command failed: br show bd-1" in str(excinfo.value)
    assert "no such bead" in str(excinfo.value)


def test_run_checked_reports_timeouts() -> None:
    class TimeoutRunner:
        def run(
            self, request: exec_util.CommandRequest
        ) -> exec_util.CommandResult | None:
            return exec_util.CommandResult(
                argv=request.argv, returncode=124, stdout="", stderr="", timed_out=True
            )

    with pytest.raises(exec_util.CommandExecutionError) as excinfo:
        exec_util.run_checked(
            exec_util.CommandRequest(argv=("bus", "history"), timeout_seconds=2.0),
            runner=TimeoutRunner(),
        )

    assert excinfo.value.timed_out is True
    assert "timed out after 2.0s" in str(excinfo.value)


def test_run_best_effort_returns_failures_without_raising() -> None:
    class FailingRunner:
        def run(
            self, request: exec_util.CommandRequest
        ) -> exec_util.CommandResult | None:
            return exec_util.CommandResult(argv=request.argv, returncode=1, stdout="", stderr="")

    result = exec_util.run_best_effort(
        exec_util.CommandRequest(argv=("bus", "send")), runner=FailingRunner()
    )

    assert result is not None
    assert result.ok is False
