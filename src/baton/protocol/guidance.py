"""Guidance value object emitted by every protocol command."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..config import utc_now
from .executor import ExecutionReport

GUIDANCE_SCHEMA = "protocol-guidance.v1"
DEFAULT_VALID_FOR_SEC = 300


class ProtocolStatus(str, Enum):
    """Business outcome of a protocol command.

    Every status is a successful answer; operational failures never show up
    here.
    """

    READY = "Ready"
    BLOCKED = "Blocked"
    RESUMABLE = "Resumable"
    NEEDS_REVIEW = "NeedsReview"
    HAS_RESOURCES = "HasResources"
    CLEAN = "Clean"
    HAS_WORK = "HasWork"
    FRESH = "Fresh"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    ProtocolStatus.READY: "Ready",
    ProtocolStatus.BLOCKED: "Blocked",
    ProtocolStatus.RESUMABLE: "Resumable",
    ProtocolStatus.NEEDS_REVIEW: "Needs Review",
    ProtocolStatus.HAS_RESOURCES: "Has Resources",
    ProtocolStatus.CLEAN: "Clean",
    ProtocolStatus.HAS_WORK: "Has Work",
    ProtocolStatus.FRESH: "Fresh",
}


@dataclass(frozen=True)
class BeadRef:
    id: str
    title: str = ""


@dataclass(frozen=True)
class ReviewRef:
    review_id: str
    status: str = ""


@dataclass
class ProtocolGuidance:
    """Status, literal next steps, and diagnostics for one command.

    A new guidance starts Ready with a fresh snapshot timestamp and a
    five-minute validity window.

    Example:
        >>> guidance = ProtocolGuidance("cleanup")
        >>> guidance.blocked("bus claims list: timed out")
        >>> guidance.status.display_name, guidance.diagnostics
        ('Blocked', ['bus claims list: timed out'])
    """

    command: str
    status: ProtocolStatus = ProtocolStatus.READY
    snapshot_at: str = field(default_factory=utc_now)
    valid_for_sec: int = DEFAULT_VALID_FOR_SEC
    revalidate_cmd: str | None = None
    bead: BeadRef | None = None
    workspace: str | None = None
    review: ReviewRef | None = None
    steps: list[str] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)
    advice: str | None = None
    executed: bool = False
    execution_report: ExecutionReport | None = None

    def step(self, command: str) -> None:
        self.steps.append(command)

    def add_steps(self, commands: list[str]) -> None:
        self.steps.extend(commands)

    def diagnostic(self, message: str) -> None:
        self.diagnostics.append(message)

    def blocked(self, reason: str) -> None:
        self.status = ProtocolStatus.BLOCKED
        self.diagnostic(reason)

    def advise(self, message: str) -> None:
        self.advice = message

    def set_freshness(self, valid_for_sec: int, revalidate_cmd: str | None = None) -> None:
        self.valid_for_sec = valid_for_sec
        self.revalidate_cmd = revalidate_cmd

    def attach_report(self, report: ExecutionReport) -> None:
        self.executed = True
        self.execution_report = report

    def to_payload(self) -> dict[str, object]:
        """Return the versioned JSON shape; new fields are only ever added."""
        payload: dict[str, object] = {
            "schema": GUIDANCE_SCHEMA,
            "command": self.command,
            "status": self.status.value,
            "snapshot_at": self.snapshot_at,
            "valid_for_sec": self.valid_for_sec,
            "revalidate_cmd": self.revalidate_cmd,
            "bead": {"id": self.bead.id, "title": self.bead.title} if self.bead else None,
            "workspace": self.workspace,
            "review": (
                {"review_id": self.review.review_id, "status": self.review.status}
                if self.review
                else None
            ),
            "steps": list(self.steps),
            "diagnostics": list(self.diagnostics),
            "advice": self.advice,
            "executed": self.executed,
        }
        if self.execution_report is not None:
            payload["execution_report"] = self.execution_report.to_payload()
        return payload
