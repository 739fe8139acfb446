"""``baton protocol finish <bead-id>``: commit, merge, close, and release.

The caller must hold the bead claim. When review is enabled the gate decides
between the finish steps (approved), feedback steps (blocked), and review
request steps (pending or missing). ``--force`` bypasses the gate with a
visible warning.
"""

from __future__ import annotations

from ..models import BatonConfig
from . import shell
from .context import ContextError, ProtocolContext
from .delivery import ProtocolRequest, collect_context, deliver, state_unavailable
from .guidance import BeadRef, ProtocolGuidance, ProtocolStatus, ReviewRef
from .merge import deliver_merge
from .review_gate import ReviewGateStatus, evaluate_review_gate

FINISH_VALID_FOR_SEC = 120


def finish_steps(
    agent: str,
    channel: str,
    bead_id: str,
    title: str,
    workspace: str,
    *,
    review_id: str | None = None,
    no_merge: bool = False,
) -> list[str]:
    steps = [
        shell.ws_exec_cmd(workspace, "git add -A"),
        shell.ws_exec_cmd(
            workspace, f"git commit -m {shell.shell_escape(f'{bead_id}: {title}')}"
        ),
    ]
    if not no_merge:
        steps.append(shell.ws_merge_cmd(workspace, f"feat: {title}"))
    if review_id is not None:
        steps.append(shell.crit_mark_merged_cmd(review_id))
    steps.extend(
        [
            shell.br_close_cmd(agent, bead_id, f"Completed in workspace {workspace}"),
            shell.bus_send_cmd(agent, channel, f"Finished {bead_id}: {title}", "task-done"),
            shell.claims_release_all_cmd(agent),
        ]
    )
    return steps


def build_finish_guidance(
    ctx: ProtocolContext,
    config: BatonConfig,
    bead_id: str,
    *,
    no_merge: bool = False,
    force: bool = False,
    channel: str | None = None,
) -> ProtocolGuidance:
    agent, project = ctx.agent, ctx.project
    channel = channel or project
    guidance = ProtocolGuidance("finish")
    guidance.set_freshness(
        FINISH_VALID_FOR_SEC, shell.protocol_cmd("finish", bead_id, project=project)
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

    if not ctx.holds_bead(bead_id):
        guidance.blocked(
            f"agent '{agent}' does not hold a claim for bead {bead_id}. "
            f"Check with: bus claims list --agent {shell.safe_ident(agent)} --format json"
        )
        return guidance

    workspace = ctx.workspace_for_bead(bead_id)
    if workspace is None:
        guidance.blocked(
            f"no workspace claim found for bead {bead_id}. "
            "Cannot determine which workspace to merge."
        )
        return guidance
    try:
        shell.validate_workspace_name(workspace)
    except shell.ValidationError as exc:
        guidance.blocked(f"invalid workspace name from claims: {exc}")
        return guidance
    guidance.workspace = workspace

    required = config.required_reviewers(project)
    review_enabled = config.review_required(project)

    if not review_enabled or force:
        guidance.status = ProtocolStatus.READY
        guidance.add_steps(
            finish_steps(agent, channel, bead_id, bead.title, workspace, no_merge=no_merge)
        )
        if force and review_enabled:
            guidance.diagnostic("WARNING: --force flag used, bypassing review gate.")
            guidance.advise(
                f"Force-finishing bead {bead_id} without review approval. "
                "Run these commands to finish."
            )
        else:
            guidance.advise(f"Review not required. Run these commands to finish bead {bead_id}.")
        return guidance

    try:
        review = ctx.find_review_for_workspace(workspace)
    except ContextError as exc:
        if exc.spawn:
            raise
        guidance.blocked(f"could not check review status: {exc}")
        return guidance

    if review is None:
        guidance.status = ProtocolStatus.NEEDS_REVIEW
        guidance.diagnostic("No review found for this workspace.")
        guidance.add_steps(
            [
                shell.crit_create_cmd(workspace, agent, f"{bead_id}: {bead.title}", required),
                shell.bus_send_cmd(
                    agent,
                    channel,
                    f"Review requested: {bead_id} {shell.mentions(required)}",
                    "review-request",
                ),
            ]
        )
        guidance.advise(
            "No review exists yet. Create one and request reviewers before finishing."
        )
        return guidance

    review_id = review.review_id
    decision = evaluate_review_gate(review, required)
    guidance.review = ReviewRef(review_id, decision.status.value)

    if decision.status is ReviewGateStatus.APPROVED:
        guidance.status = ProtocolStatus.READY
        guidance.add_steps(
            finish_steps(
                agent,
                channel,
                bead_id,
                bead.title,
                workspace,
                review_id=review_id,
                no_merge=no_merge,
            )
        )
        guidance.advise(
            f"Review {review_id} approved. Run these commands to finish bead {bead_id}."
        )
    elif decision.status is ReviewGateStatus.BLOCKED:
        guidance.status = ProtocolStatus.BLOCKED
        guidance.diagnostic(f"Review {review_id} is blocked by: {', '.join(decision.blocked_by)}")
        if decision.newer_block_after_lgtm:
            guidance.diagnostic(
                f"Blocked after an earlier lgtm: {', '.join(decision.newer_block_after_lgtm)}"
            )
        if review.open_thread_count > 0:
            guidance.diagnostic(f"{review.open_thread_count} open thread(s) need resolution")
        guidance.add_steps(
            [
                shell.crit_show_cmd(workspace, review_id),
                shell.crit_request_cmd(workspace, review_id, required, agent),
                shell.bus_send_cmd(
                    agent,
                    channel,
                    f"Review re-requested: {review_id} {shell.mentions(required)}",
                    "review-request",
                ),
            ]
        )
        guidance.advise(
            f"Review {review_id} is blocked. Address reviewer feedback, then re-request review."
        )
    else:
        guidance.status = ProtocolStatus.NEEDS_REVIEW
        guidance.step(shell.crit_show_cmd(workspace, review_id))
        missing = list(decision.missing_approvals)
        if missing:
            guidance.diagnostic(f"Awaiting votes from: {', '.join(missing)}")
            guidance.add_steps(
                [
                    shell.crit_request_cmd(workspace, review_id, missing, agent),
                    shell.bus_send_cmd(
                        agent,
                        channel,
                        f"Review pending: {review_id} {shell.mentions(missing)}",
                        "review-request",
                    ),
                ]
            )
        guidance.advise(f"Review {review_id} needs approval. Wait for reviewers or re-request.")
    return guidance


def run_finish(
    request: ProtocolRequest,
    bead_id: str,
    *,
    no_merge: bool = False,
    force: bool = False,
) -> ProtocolGuidance:
    shell.validate_bead_id(bead_id)
    try:
        ctx = collect_context(request)
        guidance = build_finish_guidance(
            ctx, request.config, bead_id, no_merge=no_merge, force=force, channel=request.channel
        )
    except ContextError as exc:
        guidance = state_unavailable("finish", exc)

    if no_merge or guidance.workspace is None:
        return deliver(request, guidance)
    return deliver_merge(request, guidance, memo=f"merging {guidance.workspace} for {bead_id}")
