"""``baton protocol resume``: pick up in-progress work from a previous session.

Every bead claim the agent holds is assessed (bead state, workspace, review
gate) and gets its own block of steps; the advice line summarizes them.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import BatonConfig
from . import shell
from .context import ContextError, ProtocolContext
from .delivery import ProtocolRequest, collect_context, deliver, state_unavailable
from .guidance import BeadRef, ProtocolGuidance, ProtocolStatus, ReviewRef
from .review_gate import ReviewGateDecision, ReviewGateStatus, evaluate_review_gate

UNKNOWN_STATUS = "unknown"


@dataclass(frozen=True)
class BeadAssessment:
    """Resume state for one held bead."""

    bead_id: str
    title: str = ""
    status: str = UNKNOWN_STATUS
    workspace: str | None = None
    review_id: str | None = None
    gate: ReviewGateDecision | None = None
    open_threads: int = 0

    @property
    def closed(self) -> bool:
        return self.status in {"closed", "done"}


def assess_bead(ctx: ProtocolContext, config: BatonConfig, bead_id: str) -> BeadAssessment:
    """Gather bead, workspace, and review state for ``bead_id``.

    Read failures leave the corresponding field unknown; a missing tool
    still escalates.
    """
    title, status = "", UNKNOWN_STATUS
    try:
        bead = ctx.bead_status(bead_id)
    except ContextError as exc:
        if exc.spawn:
            raise
    else:
        title, status = bead.title, bead.status or UNKNOWN_STATUS

    workspace = ctx.workspace_for_bead(bead_id)
    if workspace is None:
        return BeadAssessment(bead_id, title, status)
    try:
        shell.validate_workspace_name(workspace)
        review = ctx.find_review_for_workspace(workspace)
    except ContextError as exc:
        if exc.spawn:
            raise
        review = None
    except shell.ValidationError:
        return BeadAssessment(bead_id, title, status)
    if review is None:
        return BeadAssessment(bead_id, title, status, workspace)
    return BeadAssessment(
        bead_id,
        title,
        status,
        workspace,
        review_id=review.review_id,
        gate=evaluate_review_gate(review, config.required_reviewers(ctx.project)),
        open_threads=review.open_thread_count,
    )


def _bead_steps(
    guidance: ProtocolGuidance, ctx: ProtocolContext, item: BeadAssessment, reviewers: list[str]
) -> None:
    agent, project = ctx.agent, ctx.project
    bead_id, workspace = item.bead_id, item.workspace

    if item.closed:
        guidance.diagnostic(
            f"Bead {bead_id} is already {item.status} but still claimed. Release it with: "
            f"{shell.claims_release_cmd(agent, f'bead://{project}/{bead_id}')}"
        )

    if item.review_id is not None and item.gate is not None and workspace is not None:
        review_id = item.review_id
        status = item.gate.status
        if status is ReviewGateStatus.APPROVED:
            guidance.add_steps(
                [
                    f"# {bead_id}: review {review_id} approved, ready to finish",
                    shell.crit_show_cmd(workspace, review_id),
                    shell.protocol_cmd("finish", bead_id, project=project),
                ]
            )
        elif status is ReviewGateStatus.BLOCKED:
            guidance.add_steps(
                [
                    f"# {bead_id}: review {review_id} blocked, address feedback",
                    shell.crit_show_cmd(workspace, review_id),
                    f"# Fix issues in ws/{workspace}/, then re-request review:",
                    shell.crit_request_cmd(
                        workspace, review_id, reviewers or list(item.gate.blocked_by), agent
                    ),
                ]
            )
        else:
            guidance.add_steps(
                [
                    f"# {bead_id}: review {review_id} pending",
                    shell.crit_show_cmd(workspace, review_id),
                ]
            )
    elif workspace is not None:
        guidance.add_steps(
            [
                f"# {bead_id}: continue implementation in {workspace}",
                shell.br_show_cmd(bead_id),
                f"# Work in ws/{workspace}/, then request review when ready:",
                shell.protocol_cmd("review", bead_id, project=project),
            ]
        )
    else:
        guidance.add_steps(
            [
                f"# {bead_id}: claimed but no workspace",
                shell.ws_create_cmd(),
                "# Stake the workspace claim after creation:",
                shell.claims_stake_cmd(agent, f"workspace://{project}/$WS", bead_id),
            ]
        )


def _summary(item: BeadAssessment) -> str:
    if item.review_id is not None and item.gate is not None:
        if item.gate.status is ReviewGateStatus.APPROVED:
            return f"Review {item.review_id} is approved. Ready to finish bead {item.bead_id}."
        if item.gate.status is ReviewGateStatus.BLOCKED:
            return (
                f"Review {item.review_id} has blocking feedback ({item.open_threads} open "
                "thread(s)). Address feedback and request re-review."
            )
        return (
            f"Review {item.review_id} is pending. Wait for reviewer feedback or check "
            "review status."
        )
    if item.workspace is not None:
        return f"Bead {item.bead_id} is in progress with a workspace. Continue implementation."
    return f"Bead {item.bead_id} is claimed but has no workspace. Create one to continue."


def _no_claims_guidance(ctx: ProtocolContext, guidance: ProtocolGuidance) -> ProtocolGuidance:
    try:
        ready = ctx.ready_beads()
    except ContextError as exc:
        if exc.spawn:
            raise
        guidance.diagnostic(f"Could not list ready beads: {exc}")
        ready = []

    guidance.step(shell.br_ready_cmd())
    startable = []
    for bead in ready:
        try:
            startable.append(shell.validate_bead_id(bead.id))
        except shell.ValidationError:
            continue
    if not startable:
        guidance.status = ProtocolStatus.FRESH
        guidance.advise(
            f"No in-progress work found. Run `{shell.br_ready_cmd()}` to find available beads."
        )
        return guidance

    guidance.status = ProtocolStatus.HAS_WORK
    guidance.step(shell.protocol_cmd("start", startable[0], project=ctx.project))
    guidance.advise(
        f"No in-progress work found; {len(startable)} bead(s) ready. "
        f"Start with {startable[0]} or pick another from the ready list."
    )
    return guidance


def build_resume_guidance(ctx: ProtocolContext, config: BatonConfig) -> ProtocolGuidance:
    guidance = ProtocolGuidance("resume")
    guidance.set_freshness(
        guidance.valid_for_sec, shell.protocol_cmd("resume", project=ctx.project)
    )

    bead_ids = list(dict.fromkeys(bead_id for bead_id, _ in ctx.held_bead_claims()))
    if not bead_ids:
        return _no_claims_guidance(ctx, guidance)

    guidance.status = ProtocolStatus.RESUMABLE
    reviewers = config.required_reviewers(ctx.project)
    assessments: list[BeadAssessment] = []
    for bead_id in bead_ids:
        try:
            shell.validate_bead_id(bead_id)
        except shell.ValidationError as exc:
            guidance.diagnostic(f"Skipping claim with an invalid bead id: {exc}")
            continue
        assessments.append(assess_bead(ctx, config, bead_id))

    if len(assessments) == 1:
        item = assessments[0]
        guidance.bead = BeadRef(item.bead_id, item.title)
        guidance.workspace = item.workspace
        if item.review_id is not None and item.gate is not None:
            guidance.review = ReviewRef(item.review_id, item.gate.status.value)

    for item in assessments:
        if len(assessments) > 1:
            guidance.diagnostic(f"--- {item.bead_id} ({item.title}) ---")
        _bead_steps(guidance, ctx, item, reviewers)

    if len(assessments) == 1:
        guidance.advise(_summary(assessments[0]))
    else:
        guidance.advise(
            f"Agent {ctx.agent} has {len(assessments)} in-progress bead(s). "
            "Review each and continue or finish as appropriate."
        )
    return guidance


def run_resume(request: ProtocolRequest) -> ProtocolGuidance:
    try:
        ctx = collect_context(request, mine_only=True)
        guidance = build_resume_guidance(ctx, request.config)
    except ContextError as exc:
        guidance = state_unavailable("resume", exc)
    return deliver(request, guidance, executable=())
