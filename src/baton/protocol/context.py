"""Cross-tool state collector for protocol commands.

``ProtocolContext.collect`` fetches claims and workspaces once, synchronously,
for the lifetime of one command. Every derived query is pure over that
snapshot. Bead and review state is fetched on demand, after the identifier
argument has been validated.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from .. import exec, log
from . import adapters, shell
from .adapters import (
    BeadInfo,
    Claim,
    MergeCheckResult,
    ReviewDetail,
    ReviewSummary,
    Workspace,
    WorkspaceAdvice,
)

ParsedT = TypeVar("ParsedT")

DEFAULT_WORKSPACE = "default"
MERGED_REVIEW_STATUS = "merged"


class ContextError(RuntimeError):
    """Raised when state cannot be collected from a companion tool.

    ``spawn`` is true when the tool itself is missing; read failures (non-zero
    exit, timeout, unparseable output) leave it false.
    """

    def __init__(self, tool: str, detail: str, *, spawn: bool = False) -> None:
        self.tool = tool
        self.detail = detail
        self.spawn = spawn
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.tool}: {self.detail}"


class ProtocolContext:
    """Snapshot of claims and workspaces for one agent in one project."""

    def __init__(
        self,
        *,
        project: str,
        agent: str,
        claims: list[Claim],
        workspaces: list[Workspace],
        advice: list[WorkspaceAdvice] | None = None,
        runner: exec.CommandRunner | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.project = project
        self.agent = agent
        self.claims = list(claims)
        self.workspaces = list(workspaces)
        self.advice = list(advice or [])
        self._runner = runner
        self._timeout_seconds = timeout_seconds

    @classmethod
    def collect(
        cls,
        project: str,
        agent: str,
        *,
        runner: exec.CommandRunner | None = None,
        timeout_seconds: float | None = None,
        mine_only: bool = False,
    ) -> ProtocolContext:
        """Fetch claims and workspaces.

        Calls ``bus claims list --agent <agent> [--mine] --format json`` and
        ``maw ws list --format json``.

        Raises:
            ContextError: When either tool fails or returns unparseable output.
        """
        shell.validate_identifier("agent", agent)
        shell.validate_identifier("project", project)
        ctx = cls(
            project=project,
            agent=agent,
            claims=[],
            workspaces=[],
            runner=runner,
            timeout_seconds=timeout_seconds,
        )
        argv = ["bus", "claims", "list", "--agent", agent]
        if mine_only:
            argv.append("--mine")
        argv.extend(["--format", "json"])
        ctx.claims = ctx._fetch(argv, "bus claims list", adapters.parse_claims).claims
        workspaces = ctx._fetch(
            ["maw", "ws", "list", "--format", "json"], "maw ws list", adapters.parse_workspaces
        )
        ctx.workspaces = workspaces.workspaces
        ctx.advice = workspaces.advice
        log.debug(
            f"collected {len(ctx.claims)} claim(s) and {len(ctx.workspaces)} workspace(s) "
            f"for {agent} in {project}"
        )
        return ctx

    # --- subprocess plumbing ---

    def _request(self, argv: list[str]) -> exec.CommandRequest:
        return exec.CommandRequest(argv=tuple(argv), timeout_seconds=self._timeout_seconds)

    def _run(self, argv: list[str], tool: str) -> str:
        try:
            result = exec.run_checked(self._request(argv), runner=self._runner)
        except exec.CommandExecutionError as exc:
            raise ContextError(tool, exc.detail, spawn=exc.missing) from exc
        return result.stdout

    def _fetch(
        self, argv: list[str], tool: str, parser: Callable[[str], ParsedT]
    ) -> ParsedT:
        output = self._run(argv, tool)
        try:
            return parser(output)
        except adapters.AdapterError as exc:
            raise ContextError(tool, exc.detail) from exc

    # --- snapshot queries ---

    def held(self, scheme: str) -> list[tuple[str, str]]:
        """Return ``(id, pattern)`` pairs for this agent's claims on ``scheme``."""
        if scheme not in adapters.CLAIM_SCHEMES:
            raise ValueError(f"unknown claim scheme: {scheme}")
        pairs: list[tuple[str, str]] = []
        for claim in self.claims:
            if claim.agent != self.agent:
                continue
            for pattern in claim.patterns:
                value = adapters.pattern_id(pattern, scheme)
                if value is not None:
                    pairs.append((value, pattern))
        return pairs

    def held_bead_claims(self) -> list[tuple[str, str]]:
        return self.held("bead")

    def held_workspace_claims(self) -> list[tuple[str, str]]:
        return self.held("workspace")

    def holds_bead(self, bead_id: str) -> bool:
        return any(value == bead_id for value, _ in self.held_bead_claims())

    def find_workspace(self, name: str) -> Workspace | None:
        for workspace in self.workspaces:
            if workspace.name == name:
                return workspace
        return None

    def workspace_for_bead(self, bead_id: str) -> str | None:
        """Correlate a bead with the workspace this agent holds for it.

        An exact memo match on a workspace claim wins. When the claims
        service reports no memos at all, fall back to the single non-default
        workspace claim held by this agent. The fallback is only sound while
        a worker holds at most one bead and one workspace claim at a time.
        """
        own_claims = [claim for claim in self.claims if claim.agent == self.agent]
        for claim in own_claims:
            if claim.memo == bead_id:
                for name in claim.workspace_names():
                    if name != DEFAULT_WORKSPACE:
                        return name
        workspace_claims = [claim for claim in own_claims if claim.workspace_names()]
        if any(claim.memo for claim in workspace_claims):
            return None
        names = {
            name
            for claim in workspace_claims
            for name in claim.workspace_names()
            if name != DEFAULT_WORKSPACE
        }
        if len(names) == 1:
            return names.pop()
        return None

    def bead_for_workspace(self, workspace: str) -> str | None:
        """Find the bead a workspace was created for, across all agents.

        Uses the workspace claim's memo; otherwise the claim owner's single
        bead claim, under the same one-bead-per-worker precondition.
        """
        owners: list[str] = []
        for claim in self.claims:
            if workspace not in claim.workspace_names():
                continue
            if claim.memo:
                return claim.memo
            owners.append(claim.agent)
        for owner in owners:
            bead_ids = {
                bead_id
                for claim in self.claims
                if claim.agent == owner
                for bead_id in claim.bead_ids()
            }
            if len(bead_ids) == 1:
                return bead_ids.pop()
        return None

    # --- on-demand fetches ---

    def check_bead_claim_conflict(self, bead_id: str) -> str | None:
        """Return the other agent holding ``bead_id``, if any.

        Re-fetches every agent's claims rather than trusting the snapshot,
        which may be filtered to this agent.
        """
        shell.validate_bead_id(bead_id)
        response = self._fetch(
            ["bus", "claims", "list", "--format", "json"],
            "bus claims list",
            adapters.parse_claims,
        )
        for claim in response.claims:
            if claim.agent != self.agent and bead_id in claim.bead_ids():
                return claim.agent
        return None

    def bead_status(self, bead_id: str) -> BeadInfo:
        shell.validate_bead_id(bead_id)
        return self._fetch(
            ["maw", "exec", DEFAULT_WORKSPACE, "--", "br", "show", bead_id, "--json"],
            "br show",
            adapters.parse_bead_show,
        )

    def ready_beads(self) -> list[BeadInfo]:
        return self._fetch(
            ["maw", "exec", DEFAULT_WORKSPACE, "--", "br", "ready", "--json"],
            "br ready",
            adapters.parse_bead_list,
        )

    def reviews_in_workspace(self, workspace: str) -> list[ReviewSummary]:
        shell.validate_workspace_name(workspace)
        response = self._fetch(
            ["maw", "exec", workspace, "--", "crit", "reviews", "list", "--format", "json"],
            "crit reviews list",
            adapters.parse_reviews_list,
        )
        return response.reviews

    def review_status(self, review_id: str, workspace: str) -> ReviewDetail:
        shell.validate_review_id(review_id)
        shell.validate_workspace_name(workspace)
        response = self._fetch(
            ["maw", "exec", workspace, "--", "crit", "review", review_id, "--format", "json"],
            "crit review",
            adapters.parse_review_detail,
        )
        return response.review

    def find_review_for_workspace(self, workspace: str) -> ReviewDetail | None:
        """Return the first review in ``workspace`` that is not merged yet."""
        for summary in self.reviews_in_workspace(workspace):
            if summary.status != MERGED_REVIEW_STATUS:
                try:
                    shell.validate_review_id(summary.review_id)
                except shell.ValidationError as exc:
                    raise ContextError(
                        "crit reviews list", f"listed an invalid review: {exc}"
                    ) from exc
                return self.review_status(summary.review_id, workspace)
        return None

    def merge_check(self, workspace: str) -> MergeCheckResult:
        """Run the merge pre-flight; its JSON is parsed even on non-zero exit."""
        shell.validate_workspace_name(workspace)
        tool = "maw ws merge --check"
        request = self._request(["maw", "ws", "merge", workspace, "--check", "--format", "json"])
        result = exec.run_with_runner(request, runner=self._runner)
        if result is None:
            raise ContextError(tool, "missing required command: maw", spawn=True)
        if result.timed_out:
            raise ContextError(tool, f"timed out after {self._timeout_seconds}s")
        try:
            return adapters.parse_merge_check(result.stdout)
        except adapters.AdapterError as exc:
            raise ContextError(tool, exc.detail) from exc
