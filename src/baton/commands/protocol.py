"""Implementation for the ``baton protocol`` commands.

Each ``*_cmd`` resolves the caller identity and config once, then hands an
explicit ``ProtocolRequest`` to the handler. Errors are mapped to exit codes
here: operational failures exit 1, invalid arguments exit 2.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace

from .. import config
from ..io import die
from ..protocol import shell
from ..protocol.cleanup import run_cleanup
from ..protocol.delivery import ProtocolRequest
from ..protocol.exit_policy import ProtocolExitCode, ProtocolExitError
from ..protocol.finish import run_finish
from ..protocol.merge import run_merge
from ..protocol.render import OutputFormat
from ..protocol.resume import run_resume
from ..protocol.review import run_review
from ..protocol.start import run_start


def resolve_format(value: object) -> OutputFormat:
    """Use the requested format, else ``pretty`` on a TTY and ``text`` otherwise."""
    if value:
        return OutputFormat(str(getattr(value, "value", value)).lower())
    return OutputFormat.PRETTY if sys.stdout.isatty() else OutputFormat.TEXT


def build_request(args: SimpleNamespace) -> ProtocolRequest:
    """Resolve config, project, agent, and format from CLI arguments.

    Raises:
        config.ConfigError: When no usable ``.baton.json`` is found.
        shell.ValidationError: When the agent or project name is unsafe.
    """
    root_value = getattr(args, "project_root", None)
    project_root = Path(root_value) if root_value else Path.cwd()
    project_config = config.load_config(config.find_config(project_root))
    project = config.resolve_project(getattr(args, "project", None), project_config)
    agent = config.resolve_agent(getattr(args, "agent", None), project_config, os.environ)
    shell.validate_identifier("project", project)
    shell.validate_identifier("agent", agent)
    return ProtocolRequest(
        agent=agent,
        project=project,
        config=project_config,
        fmt=resolve_format(getattr(args, "format", None)),
        execute=bool(getattr(args, "execute", False)),
    )


def _guarded(command: str, action: Callable[[], object]) -> None:
    try:
        action()
    except ProtocolExitError as exc:
        die(str(exc), int(exc.code))
    except shell.ValidationError as exc:
        die(f"baton protocol: {command}: {exc}", int(ProtocolExitCode.USAGE_ERROR))
    except config.ConfigError as exc:
        die(f"baton protocol: {command}: {exc}", int(ProtocolExitCode.OPERATIONAL_ERROR))


def start_cmd(args: SimpleNamespace) -> None:
    """Check state and print the steps to start work on a bead."""
    _guarded(
        "start",
        lambda: run_start(
            build_request(args),
            args.bead_id,
            dispatched=bool(getattr(args, "dispatched", False)),
        ),
    )


def finish_cmd(args: SimpleNamespace) -> None:
    """Check state and print the steps to finish a bead."""
    _guarded(
        "finish",
        lambda: run_finish(
            build_request(args),
            args.bead_id,
            no_merge=bool(getattr(args, "no_merge", False)),
            force=bool(getattr(args, "force", False)),
        ),
    )


def review_cmd(args: SimpleNamespace) -> None:
    """Check state and print the steps to request or follow up on review."""
    _guarded(
        "review",
        lambda: run_review(
            build_request(args),
            args.bead_id,
            reviewers=getattr(args, "reviewers", None),
            review_id=getattr(args, "review_id", None),
        ),
    )


def merge_cmd(args: SimpleNamespace) -> None:
    """Check merge preconditions and print the steps to merge a workspace."""
    _guarded(
        "merge",
        lambda: run_merge(
            build_request(args),
            args.workspace,
            force=bool(getattr(args, "force", False)),
        ),
    )


def resume_cmd(args: SimpleNamespace) -> None:
    """Report in-progress work from a previous session."""
    _guarded("resume", lambda: run_resume(build_request(args)))


def cleanup_cmd(args: SimpleNamespace) -> None:
    """Print (or run) the steps to release everything the agent holds."""
    _guarded("cleanup", lambda: run_cleanup(build_request(args)))
