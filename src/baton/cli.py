"""Baton command-line interface."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Annotated, Optional

import typer

from . import __version__
from . import log as baton_log
from .commands import (
    cleanup_cmd,
    finish_cmd,
    merge_cmd,
    resume_cmd,
    review_cmd,
    start_cmd,
)
from .protocol.render import OutputFormat

app = typer.Typer(
    help="Coordination guidance for multi-agent work on beads, workspaces, and reviews.",
    no_args_is_help=True,
    add_completion=False,
)
protocol_app = typer.Typer(
    help="Check shared state and print the exact commands to run next.",
    no_args_is_help=True,
)
app.add_typer(protocol_app, name="protocol")


def _validate_log_level(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in baton_log.LEVEL_NAMES:
        raise typer.BadParameter(f"expected one of: {', '.join(baton_log.LEVEL_NAMES)}")
    return normalized


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"baton {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    log_level: Annotated[
        Optional[str],
        typer.Option(
            "--log-level",
            help="Log level (trace, debug, info, success, warning, error).",
            callback=_validate_log_level,
        ),
    ] = None,
    no_color: Annotated[
        bool, typer.Option("--no-color", help="Disable colorized output.")
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show the version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    if log_level is not None:
        baton_log.set_level(log_level)
    if no_color:
        baton_log.set_no_color(True)


AgentOption = Annotated[
    Optional[str],
    typer.Option("--agent", help="Agent name (default: $AGENT, $BOTBUS_AGENT, or config)."),
]
ProjectOption = Annotated[
    Optional[str], typer.Option("--project", help="Project name (default: from .baton.json).")
]
ProjectRootOption = Annotated[
    Optional[Path],
    typer.Option("--project-root", help="Project root directory (default: current directory)."),
]
FormatOption = Annotated[
    Optional[OutputFormat],
    typer.Option("--format", help="Output format (default: pretty on a TTY, text otherwise)."),
]
ExecuteOption = Annotated[
    bool, typer.Option("--execute", help="Run the steps instead of printing them.")
]


def _args(**values: object) -> SimpleNamespace:
    return SimpleNamespace(**values)


@protocol_app.command("start")
def protocol_start(
    bead_id: Annotated[str, typer.Argument(help="Bead to start working on.")],
    dispatched: Annotated[
        bool, typer.Option("--dispatched", help="Omit the claim announcement.")
    ] = False,
    execute: ExecuteOption = False,
    agent: AgentOption = None,
    project: ProjectOption = None,
    project_root: ProjectRootOption = None,
    format: FormatOption = None,
) -> None:
    """Claim a bead and open a workspace for it."""
    start_cmd(
        _args(
            bead_id=bead_id,
            dispatched=dispatched,
            execute=execute,
            agent=agent,
            project=project,
            project_root=project_root,
            format=format,
        )
    )


@protocol_app.command("finish")
def protocol_finish(
    bead_id: Annotated[str, typer.Argument(help="Bead to finish.")],
    no_merge: Annotated[
        bool, typer.Option("--no-merge", help="Leave the merge to the lead.")
    ] = False,
    force: Annotated[
        bool, typer.Option("--force", help="Finish without review approval.")
    ] = False,
    execute: ExecuteOption = False,
    agent: AgentOption = None,
    project: ProjectOption = None,
    project_root: ProjectRootOption = None,
    format: FormatOption = None,
) -> None:
    """Commit, merge, close, and release a finished bead."""
    finish_cmd(
        _args(
            bead_id=bead_id,
            no_merge=no_merge,
            force=force,
            execute=execute,
            agent=agent,
            project=project,
            project_root=project_root,
            format=format,
        )
    )


@protocol_app.command("review")
def protocol_review(
    bead_id: Annotated[str, typer.Argument(help="Bead under review.")],
    reviewers: Annotated[
        Optional[str],
        typer.Option("--reviewers", help="Comma-separated reviewer names (overrides config)."),
    ] = None,
    review_id: Annotated[
        Optional[str], typer.Option("--review-id", help="Follow up on an existing review.")
    ] = None,
    execute: ExecuteOption = False,
    agent: AgentOption = None,
    project: ProjectOption = None,
    project_root: ProjectRootOption = None,
    format: FormatOption = None,
) -> None:
    """Request review for a bead, or follow up on its review."""
    review_cmd(
        _args(
            bead_id=bead_id,
            reviewers=reviewers,
            review_id=review_id,
            execute=execute,
            agent=agent,
            project=project,
            project_root=project_root,
            format=format,
        )
    )


@protocol_app.command("merge")
def protocol_merge(
    workspace: Annotated[str, typer.Argument(help="Worker workspace to merge.")],
    force: Annotated[
        bool, typer.Option("--force", help="Skip the bead and review checks.")
    ] = False,
    execute: ExecuteOption = False,
    agent: AgentOption = None,
    project: ProjectOption = None,
    project_root: ProjectRootOption = None,
    format: FormatOption = None,
) -> None:
    """Merge a worker's finished workspace into default."""
    merge_cmd(
        _args(
            workspace=workspace,
            force=force,
            execute=execute,
            agent=agent,
            project=project,
            project_root=project_root,
            format=format,
        )
    )


@protocol_app.command("resume")
def protocol_resume(
    agent: AgentOption = None,
    project: ProjectOption = None,
    project_root: ProjectRootOption = None,
    format: FormatOption = None,
) -> None:
    """Report in-progress work from a previous session."""
    resume_cmd(
        _args(agent=agent, project=project, project_root=project_root, format=format)
    )


@protocol_app.command("cleanup")
def protocol_cleanup(
    execute: ExecuteOption = False,
    agent: AgentOption = None,
    project: ProjectOption = None,
    project_root: ProjectRootOption = None,
    format: FormatOption = None,
) -> None:
    """Sign off and release every claim the agent holds."""
    cleanup_cmd(
        _args(
            execute=execute,
            agent=agent,
            project=project,
            project_root=project_root,
            format=format,
        )
    )


if __name__ == "__main__":
    app()
