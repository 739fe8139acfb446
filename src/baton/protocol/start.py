"""``baton protocol start <bead-id>``: claim a bead and open a workspace for it."""

from __future__ import annotations

from . import shell
from .context import ContextError, ProtocolContext
from .delivery import ProtocolRequest, collect_context, deliver, state_unavailable
from .guidance import BeadRef, ProtocolGuidance, ProtocolStatus


def build_start_guidance(
    ctx: ProtocolContext,
    bead_id: str,
    *,
    dispatched: bool = False,
    channel: str | None = None,
) -> ProtocolGuidance:
    """Decide whether ``bead_id`` can be started, resumed, or is blocked.

    Ready guidance stakes the bead, creates a workspace, stakes the workspace
    under the ``$WS`` placeholder, marks the bead in progress, and announces
    the claim (unless the worker was dispatched by a lead who already did).
    """
    agent, project = ctx.agent, ctx.project
    guidance = ProtocolGuidance("start")
    guidance.set_freshness(
        guidance.valid_for_sec, shell.protocol_cmd("start", bead_id, project=project)
    )

    try:
        bead = ctx.bead_status(bead_id)
    except ContextError as exc:
        if exc.spawn:
            raise
        guidance.blocked(
            f"bead {bead_id} not found ({exc.detail}). "
            f"Check the ID with: {shell.br_show_cmd(bead_id)}"
        )
        return guidance
    guidance.bead = BeadRef(id=bead_id, title=bead.title)

    if bead.is_closed:
        guidance.blocked(f"bead {bead_id} is already {bead.status}")
        return guidance

    try:
        other_agent = ctx.check_bead_claim_conflict(bead_id)
    except ContextError as exc:
        if exc.spawn:
            raise
        guidance.blocked(f"failed to check claim conflict: {exc}")
        return guidance
    if other_agent is not None:
        guidance.blocked(f"bead {bead_id} already claimed by agent '{other_agent}'")
        guidance.diagnostic("Check current claims with: bus claims list --format json")
        return guidance

    workspace = ctx.workspace_for_bead(bead_id)
    if workspace is not None and ctx.holds_bead(bead_id):
        try:
            shell.validate_workspace_name(workspace)
        except shell.ValidationError as exc:
            guidance.blocked(f"invalid workspace name from claims: {exc}")
            return guidance
        guidance.status = ProtocolStatus.RESUMABLE
        guidance.workspace = workspace
        guidance.advise(
            f"Resume work in workspace {workspace} with: {shell.protocol_cmd('resume')}"
        )
        return guidance

    guidance.status = ProtocolStatus.READY
    guidance.add_steps(
        [
            shell.claims_stake_cmd(agent, f"bead://{project}/{bead_id}", bead_id),
            shell.ws_create_cmd(),
            "# Capture the workspace name from the output above, then stake it:",
            shell.claims_stake_cmd(agent, f"workspace://{project}/$WS", bead_id),
            shell.br_update_cmd(agent, bead_id, "in_progress", set_owner=True),
            shell.br_comment_cmd(agent, bead_id, "Started in workspace $WS"),
        ]
    )
    if not dispatched:
        guidance.step(
            shell.bus_send_cmd(
                agent, channel or project, f"Working on {bead_id}: {bead.title}", "task-claim"
            )
        )
    guidance.advise(
        "Stake the bead claim first, then create the workspace, stake the workspace "
        "claim, mark the bead in progress, and announce."
    )
    return guidance


def run_start(
    request: ProtocolRequest, bead_id: str, *, dispatched: bool = False
) -> ProtocolGuidance:
    shell.validate_bead_id(bead_id)
    try:
        ctx = collect_context(request)
        guidance = build_start_guidance(
            ctx, bead_id, dispatched=dispatched, channel=request.channel
        )
    except ContextError as exc:
        guidance = state_unavailable("start", exc)
    return deliver(request, guidance)
