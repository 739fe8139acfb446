"""``baton protocol review <bead-id>``: request review or follow up on one."""

from __future__ import annotations

from ..models import BatonConfig
from . import shell
from .adapters import ReviewDetail
from .context import MERGED_REVIEW_STATUS, ContextError, ProtocolContext
from .delivery import ProtocolRequest, collect_context, deliver, state_unavailable
from .guidance import BeadRef, ProtocolGuidance, ProtocolStatus, ReviewRef
from .review_gate import ReviewGateStatus, evaluate_review_gate


def resolve_reviewers(override: str | None, config: BatonConfig, project: str) -> list[str]:
    """Return reviewer identities from ``--reviewers`` or the project config.

    The override is a comma-separated list of literal names; config entries
    are role names mapped to ``<project>-<role>``.

    Raises:
        shell.ValidationError: When any reviewer name is not a safe identifier.

    Example:
        >>> config = BatonConfig.model_validate({"project": {"name": "p"}})
        >>> resolve_reviewers("p-security, p-perf,", config, "p")
        ['p-security', 'p-perf']
    """
    if override is not None:
        names = [name.strip() for name in override.split(",") if name.strip()]
    else:
        names = config.required_reviewers(project)
    return [shell.validate_identifier("reviewer name", name) for name in names]


def _follow_up(
    ctx: ProtocolContext,
    guidance: ProtocolGuidance,
    review: ReviewDetail,
    workspace: str,
    reviewers: list[str],
    bead_id: str,
    channel: str,
) -> ProtocolGuidance:
    agent = ctx.agent
    review_id = review.review_id
    guidance.review = ReviewRef(review_id, review.status)
    decision = evaluate_review_gate(review, reviewers)

    if decision.status is ReviewGateStatus.APPROVED:
        guidance.status = ProtocolStatus.READY
        guidance.advise(
            f"Review {review_id} approved by {', '.join(decision.approved_by)}. "
            f"Proceed to finish: {shell.protocol_cmd('finish', bead_id, project=ctx.project)}"
        )
    elif decision.status is ReviewGateStatus.BLOCKED:
        guidance.status = ProtocolStatus.BLOCKED
        guidance.add_steps(
            [
                shell.crit_show_cmd(workspace, review_id),
                shell.crit_request_cmd(workspace, review_id, reviewers, agent),
                shell.bus_send_cmd(
                    agent,
                    channel,
                    f"Review updated: {review_id}: addressed feedback, re-requesting "
                    f"{shell.mentions(list(decision.blocked_by))}",
                    "review-request",
                ),
            ]
        )
        guidance.diagnostic(
            f"Blocked by: {', '.join(decision.blocked_by)}. "
            f"Open threads: {review.open_thread_count}"
        )
        if decision.newer_block_after_lgtm:
            guidance.diagnostic(
                f"Blocked after an earlier lgtm: {', '.join(decision.newer_block_after_lgtm)}"
            )
        guidance.advise("Read review feedback, address issues, then re-request review.")
    else:
        guidance.status = ProtocolStatus.NEEDS_REVIEW
        missing = list(decision.missing_approvals)
        if missing:
            guidance.add_steps(
                [
                    shell.crit_request_cmd(workspace, review_id, missing, agent),
                    shell.bus_send_cmd(
                        agent,
                        channel,
                        f"Review requested: {review_id} {shell.mentions(missing)}",
                        "review-request",
                    ),
                ]
            )
        guidance.advise(
            f"Awaiting review from: {', '.join(missing) or 'nobody'}. "
            f"{len(decision.approved_by)} of {decision.total_required} required reviewers "
            "have approved."
        )
    return guidance


def build_review_guidance(
    ctx: ProtocolContext,
    bead_id: str,
    reviewers: list[str],
    *,
    review_id: str | None = None,
    channel: str | None = None,
) -> ProtocolGuidance:
    """Decide whether to create a review, re-request one, or move on to finish."""
    agent, project = ctx.agent, ctx.project
    channel = channel or project
    guidance = ProtocolGuidance("review")
    guidance.set_freshness(
        guidance.valid_for_sec, shell.protocol_cmd("review", bead_id, project=project)
    )

    try:
        bead = ctx.bead_status(bead_id)
    except ContextError as exc:
        if exc.spawn:
            raise
        guidance.blocked(f"bead {bead_id} not found: {exc.detail}")
        return guidance
    guidance.bead = BeadRef(id=bead_id, title=bead.title)

    if not ctx.holds_bead(bead_id):
        stake = shell.claims_stake_cmd(agent, f"bead://{project}/{bead_id}", bead_id)
        guidance.blocked(
            f"agent {agent} does not hold a claim for bead {bead_id}. "
            f"Stake a claim first with: {stake}"
        )
        return guidance

    workspace = ctx.workspace_for_bead(bead_id)
    if workspace is None:
        guidance.blocked(
            f"no workspace claim found for bead {bead_id}. "
            "Create a workspace and stake its claim first."
        )
        return guidance
    try:
        shell.validate_workspace_name(workspace)
    except shell.ValidationError as exc:
        guidance.blocked(f"invalid workspace name from claims: {exc}")
        return guidance
    guidance.workspace = workspace

    if not reviewers:
        guidance.blocked(
            "no reviewers configured. Pass --reviewers or set review.reviewers in .baton.json."
        )
        return guidance

    if review_id is None:
        try:
            reviews = ctx.reviews_in_workspace(workspace)
        except ContextError as exc:
            if exc.spawn:
                raise
            guidance.diagnostic(
                f"Could not list existing reviews ({exc.detail}); proceeding with creation."
            )
            reviews = []
        open_reviews = [review for review in reviews if review.status != MERGED_REVIEW_STATUS]
        if open_reviews:
            review_id = open_reviews[0].review_id

    if review_id is not None:
        try:
            review = ctx.review_status(review_id, workspace)
        except ContextError as exc:
            if exc.spawn:
                raise
            guidance.blocked(f"could not fetch review {review_id}: {exc}")
            return guidance
        except shell.ValidationError as exc:
            guidance.blocked(f"review listed with an invalid id: {exc}")
            return guidance
        return _follow_up(ctx, guidance, review, workspace, reviewers, bead_id, channel)

    guidance.status = ProtocolStatus.NEEDS_REVIEW
    guidance.add_steps(
        [
            shell.crit_create_cmd(workspace, agent, f"{bead_id}: {bead.title}", reviewers),
            shell.bus_send_cmd(
                agent,
                channel,
                f"Review requested: {bead_id} {shell.mentions(reviewers)}",
                "review-request",
            ),
        ]
    )
    guidance.advise(f"Create review and announce. Reviewers: {', '.join(reviewers)}")
    return guidance


def run_review(
    request: ProtocolRequest,
    bead_id: str,
    *,
    reviewers: str | None = None,
    review_id: str | None = None,
) -> ProtocolGuidance:
    shell.validate_bead_id(bead_id)
    if review_id is not None:
        shell.validate_review_id(review_id)
    names = resolve_reviewers(reviewers, request.config, request.project)
    try:
        ctx = collect_context(request)
        guidance = build_review_guidance(
            ctx, bead_id, names, review_id=review_id, channel=request.channel
        )
    except ContextError as exc:
        guidance = state_unavailable("review", exc)
    return deliver(request, guidance, executable=(ProtocolStatus.NEEDS_REVIEW,))
