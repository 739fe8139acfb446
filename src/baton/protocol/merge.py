"""``baton protocol merge <workspace>``: lead-side merge of a worker's workspace.

Preconditions: the workspace exists and is not ``default``, its bead is
closed, the review gate passes, and the pre-flight check reports no
conflicts. Conflicts are never auto-resolved; the guidance explains how to
recover instead.
"""

from __future__ import annotations

from ..models import BatonConfig
from . import shell
from .context import DEFAULT_WORKSPACE, ContextError, ProtocolContext
from .delivery import (
    ProtocolRequest,
    collect_context,
    emit,
    execute_guidance,
    fail_on_failed_steps,
    state_unavailable,
)
from .executor import ExecutionReport
from .exit_policy import ProtocolExitError
from .guidance import BeadRef, ProtocolGuidance, ProtocolStatus, ReviewRef
from .mutex import MERGE_LABEL
from .review_gate import ReviewGateStatus, evaluate_review_gate

MERGE_VALID_FOR_SEC = 120
CONFLICT_MARKERS = ("WARNING: Merge has conflicts", "conflict(s) remaining")


def conflict_recovery(workspace: str) -> str:
    """Recovery instructions for a workspace whose merge conflicted."""
    ws = shell.safe_ident(workspace)
    message = shell.shell_escape(f"resolve: merge conflicts in {workspace}")
    return "\n".join(
        [
            "Conflict recovery: the workspace is preserved (not destroyed).",
            "",
            "1. Inspect conflicted files:",
            f"   maw exec {ws} -- jj status",
            f"   maw exec {ws} -- jj resolve --list",
            "2. Sync a stale workspace before retrying:",
            f"   maw ws sync {ws}",
            "3. Restore auto-mergeable tool state (.beads/, .claude/, .agents/):",
            f"   maw exec {ws} -- jj restore --from main .beads/",
            "4. Resolve code conflicts (remove <<<<<<< markers):",
            f"   maw exec {ws} -- jj resolve",
            f"   maw exec {ws} -- jj resolve --tool :ours",
            f"   maw exec {ws} -- jj resolve --tool :theirs",
            "5. Record the resolution and retry the merge:",
            f"   maw exec {ws} -- jj describe -m {message}",
            f"   {shell.ws_merge_cmd(workspace)}",
            "6. Undo the merge entirely:",
            "   maw exec default -- jj op undo",
            f"   maw ws restore {ws}",
        ]
    )


def merge_had_conflicts(report: ExecutionReport) -> bool:
    return any(
        marker in result.stdout for result in report.results for marker in CONFLICT_MARKERS
    )


def _resolve_bead(ctx: ProtocolContext, guidance: ProtocolGuidance, workspace: str) -> str | None:
    bead_id = ctx.bead_for_workspace(workspace)
    if bead_id is None:
        guidance.diagnostic(
            "No associated bead found for this workspace. Proceeding without bead check."
        )
        return None
    try:
        shell.validate_bead_id(bead_id)
    except shell.ValidationError as exc:
        guidance.diagnostic(f"Ignoring workspace claim memo: {exc}")
        return None
    return bead_id


def build_merge_guidance(
    ctx: ProtocolContext,
    config: BatonConfig,
    workspace: str,
    *,
    force: bool = False,
    channel: str | None = None,
) -> ProtocolGuidance:
    """Check merge preconditions for ``workspace`` and build the merge steps."""
    agent, project = ctx.agent, ctx.project
    guidance = ProtocolGuidance("merge")
    guidance.workspace = workspace
    guidance.set_freshness(
        MERGE_VALID_FOR_SEC, shell.protocol_cmd("merge", workspace, project=project)
    )

    if ctx.find_workspace(workspace) is None:
        guidance.blocked(f"workspace '{workspace}' not found. Check with: maw ws list")
        return guidance

    bead_id = _resolve_bead(ctx, guidance, workspace)
    if bead_id is not None:
        guidance.bead = BeadRef(id=bead_id)
        try:
            bead = ctx.bead_status(bead_id)
        except ContextError as exc:
            if exc.spawn:
                raise
            guidance.diagnostic(
                f"Could not fetch bead {bead_id} ({exc.detail}). Proceeding with merge."
            )
        else:
            guidance.bead = BeadRef(id=bead_id, title=bead.title)
            if not bead.is_closed and not force:
                guidance.blocked(
                    f"Bead {bead_id} is '{bead.status}', expected 'closed'. "
                    "Worker may still be working."
                )
                guidance.step(shell.br_show_cmd(bead_id))
                guidance.advise(
                    f"Wait for the worker to close bead {bead_id}, or use --force to merge anyway."
                )
                return guidance

    required = config.required_reviewers(project)
    review_id: str | None = None
    if config.review_required(project):
        if force:
            guidance.diagnostic("WARNING: --force flag used, bypassing review gate.")
        else:
            try:
                review = ctx.find_review_for_workspace(workspace)
            except ContextError as exc:
                if exc.spawn:
                    raise
                guidance.blocked(f"could not check review status: {exc}")
                return guidance
            if review is None:
                guidance.status = ProtocolStatus.NEEDS_REVIEW
                guidance.diagnostic("Review is enabled but no review exists for this workspace.")
                guidance.step(
                    shell.crit_create_cmd(
                        workspace, agent, f"Work from {bead_id or workspace}", required
                    )
                )
                guidance.advise(
                    "Create a review before merging, or use --force to skip the review gate."
                )
                return guidance
            decision = evaluate_review_gate(review, required)
            guidance.review = ReviewRef(review.review_id, decision.status.value)
            if decision.status is ReviewGateStatus.BLOCKED:
                guidance.blocked(
                    f"Review {review.review_id} is blocked by: {', '.join(decision.blocked_by)}. "
                    "Resolve feedback before merging."
                )
                guidance.step(shell.crit_show_cmd(workspace, review.review_id))
                guidance.advise("Address reviewer feedback, then re-request review.")
                return guidance
            if decision.status is ReviewGateStatus.NEEDS_REVIEW:
                guidance.status = ProtocolStatus.NEEDS_REVIEW
                guidance.diagnostic(
                    f"Review {review.review_id} still awaiting votes from: "
                    f"{', '.join(decision.missing_approvals)}"
                )
                guidance.step(shell.crit_show_cmd(workspace, review.review_id))
                guidance.advise("Wait for reviewers or re-request review before merging.")
                return guidance
            review_id = review.review_id

    try:
        check = ctx.merge_check(workspace)
    except ContextError as exc:
        if exc.spawn:
            raise
        guidance.diagnostic(
            f"Pre-flight check failed ({exc.detail}). Proceeding without conflict detection."
        )
    else:
        if not check.ready:
            guidance.status = ProtocolStatus.BLOCKED
            if check.conflicts:
                guidance.diagnostic(
                    f"Merge would produce conflicts in {len(check.conflicts)} file(s): "
                    f"{', '.join(check.conflicts)}"
                )
            if check.stale:
                guidance.diagnostic(f"Workspace is stale. Run `maw ws sync {workspace}` first.")
            if not check.conflicts and not check.stale:
                guidance.diagnostic("Pre-flight check reports the workspace is not ready to merge.")
            guidance.diagnostic(conflict_recovery(workspace))
            guidance.advise("Resolve the conflicts in the workspace, then re-run merge.")
            return guidance

    guidance.status = ProtocolStatus.READY
    guidance.step(shell.ws_merge_cmd(workspace))
    if review_id is not None:
        guidance.step(shell.crit_mark_merged_cmd(review_id))
    guidance.step(shell.br_sync_cmd())
    if config.push_main:
        guidance.step("maw push")
    announcement = f"Merged workspace {workspace}"
    if bead_id is not None:
        announcement += f" ({bead_id})"
    guidance.step(shell.bus_send_cmd(agent, channel or project, announcement, MERGE_LABEL))
    guidance.diagnostic(conflict_recovery(workspace))
    if force:
        guidance.advise(
            f"Force-merging workspace {workspace} (review/bead checks bypassed). "
            "Run these commands to merge."
        )
    else:
        guidance.advise(
            f"All preconditions met. Run these commands to merge workspace {workspace}."
        )
    return guidance


def deliver_merge(
    request: ProtocolRequest, guidance: ProtocolGuidance, *, memo: str
) -> ProtocolGuidance:
    """Deliver merge-bearing guidance; execute mode holds the merge lease.

    A merge that reports conflicts after running is replaced by Blocked
    guidance with recovery steps and exits 1.
    """
    if not (request.execute and guidance.status is ProtocolStatus.READY and guidance.steps):
        emit(request, guidance)
        return guidance

    report = execute_guidance(request, guidance, mutex=request.merge_mutex(memo))
    if merge_had_conflicts(report):
        workspace = guidance.workspace or ""
        conflicted = ProtocolGuidance(guidance.command, workspace=guidance.workspace)
        conflicted.bead = guidance.bead
        conflicted.attach_report(report)
        conflicted.blocked(
            f"Merge completed with CONFLICTS. Workspace {workspace} is preserved (not destroyed)."
        )
        conflicted.diagnostic(conflict_recovery(workspace))
        emit(request, conflicted)
        raise ProtocolExitError.operational(guidance.command, "merge completed with conflicts")

    emit(request, guidance)
    fail_on_failed_steps(guidance, report)
    return guidance


def run_merge(request: ProtocolRequest, workspace: str, *, force: bool = False) -> ProtocolGuidance:
    shell.validate_workspace_name(workspace)
    if workspace == DEFAULT_WORKSPACE:
        guidance = ProtocolGuidance("merge")
        guidance.blocked(
            "cannot merge the default workspace. "
            "Default is the merge TARGET; other workspaces merge INTO it."
        )
        emit(request, guidance)
        return guidance

    try:
        ctx = collect_context(request)
        guidance = build_merge_guidance(
            ctx, request.config, workspace, force=force, channel=request.channel
        )
    except ContextError as exc:
        guidance = state_unavailable("merge", exc)
    bead = guidance.bead.id if guidance.bead else workspace
    return deliver_merge(request, guidance, memo=f"merging {workspace} for {bead}")
