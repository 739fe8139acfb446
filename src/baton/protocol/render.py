"""Renderers for protocol guidance and execution reports.

``OutputFormat`` is closed; ``render`` is the one place that switches on it.
Every renderer shows every populated field of the guidance.
"""

from __future__ import annotations

import io
import json
from enum import Enum

from rich.console import Console
from rich.text import Text

from .. import log
from . import shell
from .executor import ExecutionReport, creates_workspace, extract_workspace_name
from .guidance import ProtocolGuidance, ProtocolStatus

_STATUS_STYLES = {
    ProtocolStatus.READY: "green",
    ProtocolStatus.CLEAN: "green",
    ProtocolStatus.FRESH: "green",
    ProtocolStatus.BLOCKED: "red",
}


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    PRETTY = "pretty"


def validate_guidance(guidance: ProtocolGuidance) -> None:
    """Re-check every embedded identifier before anything is rendered.

    Raises:
        shell.ValidationError: When a bead id, workspace name, or review id
            fails its grammar.
    """
    if guidance.bead is not None:
        shell.validate_bead_id(guidance.bead.id)
    if guidance.workspace is not None:
        shell.validate_workspace_name(guidance.workspace)
    if guidance.review is not None:
        shell.validate_review_id(guidance.review.review_id)


# --- execution reports ---


def _workspace_suffix(command: str, success: bool, stdout: str) -> str | None:
    if not (success and creates_workspace(command)):
        return None
    return extract_workspace_name(stdout)


def _report_text(report: ExecutionReport) -> str:
    total = report.steps_total
    lines: list[str] = []
    for number, result in enumerate(report.results, start=1):
        status = "ok" if result.success else "FAILED"
        line = f"step {number}/{total}  {result.command}  {status}"
        workspace = _workspace_suffix(result.command, result.success, result.stdout)
        if workspace:
            line += f"  ws={workspace}"
        lines.append(line)
    for number in range(len(report.results) + 1, total + 1):
        lines.append(f"step {number}/{total}  (not executed)")
    return "".join(f"{line}\n" for line in lines)


def _report_json(report: ExecutionReport) -> str:
    return json.dumps(report.to_payload(), indent=2)


def _report_lines(report: ExecutionReport) -> list[Text]:
    total = report.steps_total
    lines: list[Text] = []
    for number, result in enumerate(report.results, start=1):
        line = Text(f"step {number}/{total}  {result.command}  ")
        if result.success:
            line.append("✓", style="green")
        else:
            line.append("✗", style="red")
        workspace = _workspace_suffix(result.command, result.success, result.stdout)
        if workspace:
            line.append("  ")
            line.append(f"ws={workspace}", style="bright_black")
        lines.append(line)
    for number in range(len(report.results) + 1, total + 1):
        line = Text(f"step {number}/{total}  ")
        line.append("(not executed)", style="bright_black")
        lines.append(line)
    return lines


def _console(buffer: io.StringIO) -> Console:
    return Console(
        file=buffer,
        force_terminal=True,
        color_system="standard",
        no_color=log.no_color(),
        highlight=False,
        soft_wrap=True,
        width=200,
    )


def _print_lines(lines: list[Text]) -> str:
    buffer = io.StringIO()
    console = _console(buffer)
    for line in lines:
        console.print(line)
    return buffer.getvalue()


def render_report(report: ExecutionReport, fmt: OutputFormat) -> str:
    if fmt is OutputFormat.JSON:
        return _report_json(report)
    if fmt is OutputFormat.PRETTY:
        return _print_lines(_report_lines(report))
    return _report_text(report)


# --- guidance ---


def render_text(guidance: ProtocolGuidance) -> str:
    """Plain text for agents.

    Example:
        >>> guidance = ProtocolGuidance("finish", snapshot_at="2026-01-18T12:00:00Z")
        >>> guidance.step("maw ws merge frost-castle --destroy")
        >>> print(render_text(guidance), end="")
        Command: finish
        Status: Ready
        Snapshot: 2026-01-18T12:00:00Z (valid for 300s)
        <BLANKLINE>
        Steps:
          1. maw ws merge frost-castle --destroy
    """
    lines = [
        f"Command: {guidance.command}",
        f"Status: {guidance.status.display_name}",
        f"Snapshot: {guidance.snapshot_at} (valid for {guidance.valid_for_sec}s)",
    ]
    if guidance.bead is not None:
        lines.append(f"Bead: {guidance.bead.id} ({guidance.bead.title})")
    if guidance.workspace is not None:
        lines.append(f"Workspace: {guidance.workspace}")
    if guidance.review is not None:
        lines.append(f"Review: {guidance.review.review_id} ({guidance.review.status})")
    if guidance.revalidate_cmd:
        lines.append(f"Revalidate: {guidance.revalidate_cmd}")

    if guidance.diagnostics:
        lines.extend(["", "Diagnostics:"])
        lines.extend(
            f"  {number}. {message}"
            for number, message in enumerate(guidance.diagnostics, start=1)
        )

    if guidance.executed and guidance.execution_report is not None:
        lines.extend(["", "Execution:"])
        report = render_report(guidance.execution_report, OutputFormat.TEXT)
        lines.extend(f"  {line}" for line in report.splitlines())
    elif guidance.steps:
        lines.extend(["", "Steps:"])
        lines.extend(f"  {number}. {step}" for number, step in enumerate(guidance.steps, start=1))

    if guidance.advice:
        lines.extend(["", f"Advice: {guidance.advice}"])
    return "".join(f"{line}\n" for line in lines)


def render_json(guidance: ProtocolGuidance) -> str:
    return json.dumps(guidance.to_payload(), indent=2)


def _labelled(label: str, value: str = "", *, style: str = "") -> Text:
    line = Text(f"{label}:", style="bold")
    if value:
        line.append(" ")
        line.append(value, style=style)
    return line


def render_pretty(guidance: ProtocolGuidance) -> str:
    """Colorized text for humans."""
    lines = [
        _labelled("Command", guidance.command),
        _labelled(
            "Status",
            guidance.status.display_name,
            style=_STATUS_STYLES.get(guidance.status, "yellow"),
        ),
        Text(""),
        _labelled("Snapshot", f"{guidance.snapshot_at} (valid for {guidance.valid_for_sec}s)"),
    ]
    if guidance.bead is not None:
        lines.append(_labelled("Bead", f"{guidance.bead.id} ({guidance.bead.title})"))
    if guidance.workspace is not None:
        lines.append(_labelled("Workspace", guidance.workspace))
    if guidance.review is not None:
        lines.append(
            _labelled("Review", f"{guidance.review.review_id} ({guidance.review.status})")
        )
    if guidance.revalidate_cmd:
        lines.append(_labelled("Revalidate", guidance.revalidate_cmd))

    if guidance.diagnostics:
        lines.extend([Text(""), _labelled("Diagnostics")])
        lines.extend(Text(f"  {message}", style="red") for message in guidance.diagnostics)

    if guidance.executed and guidance.execution_report is not None:
        lines.extend([Text(""), _labelled("Execution")])
        for line in _report_lines(guidance.execution_report):
            lines.append(Text("  ") + line)
    elif guidance.steps:
        lines.extend([Text(""), _labelled("Steps")])
        lines.extend(
            Text(f"  {number}. {step}") for number, step in enumerate(guidance.steps, start=1)
        )

    if guidance.advice:
        lines.extend([Text(""), _labelled("Advice", guidance.advice)])
    return _print_lines(lines)


def render(guidance: ProtocolGuidance, fmt: OutputFormat) -> str:
    """Validate, then render ``guidance`` in ``fmt``.

    Raises:
        shell.ValidationError: When the guidance embeds an invalid identifier.
    """
    validate_guidance(guidance)
    if fmt is OutputFormat.JSON:
        return render_json(guidance)
    if fmt is OutputFormat.PRETTY:
        return render_pretty(guidance)
    return render_text(guidance)
