# ruff: noqa: E402

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from baton.exec import CommandRequest, CommandResult
from baton.models import BatonConfig
from baton.protocol.adapters import Claim, Workspace
from baton.protocol.context import ProtocolContext
from baton.protocol.delivery import ProtocolRequest
from baton.protocol.render import OutputFormat

MISSING = object()


@dataclass(frozen=True)
class Reply:
    stdout: str = ""
    returncode: int = 0
    stderr: str = ""
    timed_out: bool = False


class FakeRunner:
    """Command runner that answers by longest matching argv prefix.

    A reply may be ``MISSING`` (executable not found) or a list of replies
    consumed in order; the last one repeats.
    """

    def __init__(self, replies: dict[tuple[str, ...], object] | None = None) -> None:
        self.replies: dict[tuple[str, ...], object] = dict(replies or {})
        self.default: object = Reply()
        self.calls: list[tuple[str, ...]] = []
        self.requests: list[CommandRequest] = []

    def on(self, *prefix: str, reply: object) -> FakeRunner:
        self.replies[tuple(prefix)] = reply
        return self

    def _lookup(self, argv: tuple[str, ...]) -> object:
        best: tuple[str, ...] | None = None
        for prefix in self.replies:
            if argv[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return self.default
        reply = self.replies[best]
        if isinstance(reply, list):
            return reply.pop(0) if len(reply) > 1 else reply[0]
        return reply

    def run(self, request: CommandRequest) -> CommandResult | None:
        argv = tuple(request.argv)
        self.calls.append(argv)
        self.requests.append(request)
        reply = self._lookup(argv)
        if reply is MISSING:
            return None
        assert isinstance(reply, Reply)
        return CommandResult(
            argv=argv,
            returncode=reply.returncode,
            stdout=reply.stdout,
            stderr=reply.stderr,
            timed_out=reply.timed_out,
        )

    def shell_steps(self) -> list[str]:
        return [argv[2] for argv in self.calls if argv[:2] == ("sh", "-c")]


def claim(agent: str, *patterns: str, memo: str | None = None) -> dict:
    payload: dict = {"agent": agent, "patterns": list(patterns), "active": True}
    if memo is not None:
        payload["memo"] = memo
    return payload


def claims_json(*claims: dict) -> str:
    return json.dumps({"claims": list(claims)})


def workspaces_json(*names: str) -> str:
    workspaces = [{"name": "default", "is_default": True, "is_current": False}]
    workspaces.extend({"name": name, "is_default": False, "is_current": False} for name in names)
    return json.dumps({"workspaces": workspaces, "advice": []})


def bead_json(bead_id: str, title: str = "Fix the thing", status: str = "in_progress") -> str:
    return json.dumps([{"id": bead_id, "title": title, "status": status}])


def ready_json(*bead_ids: str) -> str:
    return json.dumps([{"id": bead_id, "title": f"Task {bead_id}", "status": "open"} for bead_id in bead_ids])


def reviews_json(*reviews: tuple[str, str]) -> str:
    return json.dumps(
        {"reviews": [{"review_id": review_id, "status": status} for review_id, status in reviews]}
    )


def vote(reviewer: str, value: str, voted_at: str) -> dict:
    return {"reviewer": reviewer, "vote": value, "voted_at": voted_at}


def review_json(
    review_id: str, *votes: dict, status: str = "open", open_thread_count: int = 0
) -> str:
    return json.dumps(
        {
            "review": {
                "review_id": review_id,
                "status": status,
                "votes": list(votes),
                "open_thread_count": open_thread_count,
            },
            "threads": [],
        }
    )


def make_config(
    *,
    project: str = "p",
    review_enabled: bool = False,
    reviewers: list[str] | None = None,
    push_main: bool = False,
) -> BatonConfig:
    return BatonConfig.model_validate(
        {
            "project": {"name": project},
            "review": {"enabled": review_enabled, "reviewers": reviewers or []},
            "push_main": push_main,
        }
    )


def make_context(
    runner: FakeRunner,
    *,
    agent: str = "amber-reef",
    project: str = "p",
    claims: list[dict] | None = None,
    workspaces: list[str] | None = None,
) -> ProtocolContext:
    names = ["default", *(workspaces or [])]
    return ProtocolContext(
        project=project,
        agent=agent,
        claims=[Claim.model_validate(item) for item in claims or []],
        workspaces=[Workspace(name=name, is_default=name == "default") for name in names],
        runner=runner,
    )


def make_request(
    runner: FakeRunner,
    config: BatonConfig | None = None,
    *,
    agent: str = "amber-reef",
    project: str = "p",
    execute: bool = False,
    fmt: OutputFormat = OutputFormat.TEXT,
) -> ProtocolRequest:
    return ProtocolRequest(
        agent=agent,
        project=project,
        config=config or make_config(project=project),
        fmt=fmt,
        execute=execute,
        runner=runner,
    )


def state_runner(
    *,
    claims: list[dict] | None = None,
    workspaces: list[str] | None = None,
    all_claims: list[dict] | None = None,
) -> FakeRunner:
    """Runner preloaded with claims (own and all-agents) and workspace listings."""
    own = claims_json(*(claims or []))
    runner = FakeRunner()
    runner.on("bus", "claims", "list", "--agent", reply=Reply(own))
    runner.on(
        "bus",
        "claims",
        "list",
        "--format",
        reply=Reply(claims_json(*(all_claims if all_claims is not None else claims or []))),
    )
    runner.on("maw", "ws", "list", reply=Reply(workspaces_json(*(workspaces or []))))
    return runner
