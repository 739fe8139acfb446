"""``baton protocol cleanup``: sign off and release everything the agent holds."""

from __future__ import annotations

from .. import exec
from . import shell
from .context import ContextError, ProtocolContext
from .delivery import ProtocolRequest, collect_context, deliver, state_unavailable
from .guidance import ProtocolGuidance, ProtocolStatus


def build_cleanup_guidance(ctx: ProtocolContext, *, channel: str | None = None) -> ProtocolGuidance:
    """Clean when nothing is held; otherwise the sign-off and release steps.

    The first step is always the idle announcement.
    """
    agent = ctx.agent
    guidance = ProtocolGuidance("cleanup")
    guidance.set_freshness(
        guidance.valid_for_sec, shell.protocol_cmd("cleanup", project=ctx.project)
    )

    bead_claims = ctx.held_bead_claims()
    workspace_claims = ctx.held_workspace_claims()
    if not bead_claims and not workspace_claims:
        guidance.status = ProtocolStatus.CLEAN
        guidance.advise("No cleanup needed.")
        return guidance

    guidance.status = ProtocolStatus.HAS_RESOURCES
    if bead_claims:
        held = ", ".join(bead_id for bead_id, _ in bead_claims)
        guidance.diagnostic(
            f"WARNING: Active bead claim(s) held: {held}. Releasing these leaves them "
            "unowned in in_progress state."
        )
    guidance.add_steps(
        [
            shell.bus_send_cmd(agent, channel or ctx.project, "Agent idle", "agent-idle"),
            shell.bus_statuses_clear_cmd(agent),
            shell.claims_release_all_cmd(agent),
            shell.br_sync_cmd(),
        ]
    )
    guidance.advise(
        f"Agent {agent} has {len(bead_claims)} bead claim(s) and {len(workspace_claims)} "
        "workspace claim(s). Run these commands to clean up and mark as idle."
    )
    return guidance


def run_cleanup(request: ProtocolRequest) -> ProtocolGuidance:
    try:
        ctx = collect_context(request, mine_only=True)
        guidance = build_cleanup_guidance(ctx, channel=request.channel)
    except ContextError as exc:
        guidance = state_unavailable("cleanup", exc)

    if request.execute and guidance.status is ProtocolStatus.HAS_RESOURCES:
        announcement, *release_steps = guidance.steps
        # The sign-off never gates the release steps.
        result = exec.run_best_effort(
            exec.CommandRequest(
                argv=("sh", "-c", announcement),
                timeout_seconds=request.config.protocol.command_timeout_seconds,
            ),
            runner=request.runner,
        )
        outcome = "sent" if result is not None and result.ok else "failed"
        guidance.diagnostic(f"agent-idle announcement {outcome} (result ignored): {announcement}")
        guidance.steps = release_steps
    return deliver(request, guidance, executable=(ProtocolStatus.HAS_RESOURCES,))
