from __future__ import annotations

import pytest

from baton.protocol import shell
from baton.protocol.context import ContextError, ProtocolContext
from tests.baton.helpers import (
    MISSING,
    FakeRunner,
    Reply,
    bead_json,
    claim,
    claims_json,
    make_context,
    ready_json,
    review_json,
    reviews_json,
    vote,
    workspaces_json,
)


def test_collect_fetches_claims_and_workspaces() -> None:
    runner = FakeRunner()
    runner.on("bus", "claims", "list", reply=Reply(claims_json(claim("amber-reef", "bead://p/bd-1"))))
    runner.on("maw", "ws", "list", reply=Reply(workspaces_json("frost-castle")))

    ctx = ProtocolContext.collect("p", "amber-reef", runner=runner, timeout_seconds=5.0)

    assert runner.calls == [
        ("bus", "claims", "list", "--agent", "amber-reef", "--format", "json"),
        ("maw", "ws", "list", "--format", "json"),
    ]
    assert runner.requests[0].timeout_seconds == 5.0
    assert ctx.held_bead_claims() == [("bd-1", "bead://p/bd-1")]
    assert ctx.find_workspace("frost-castle") is not None


def test_collect_mine_only_adds_flag() -> None:
    runner = FakeRunner()
    runner.on("bus", reply=Reply(claims_json()))
    runner.on("maw", reply=Reply(workspaces_json()))

    ProtocolContext.collect("p", "amber-reef", runner=runner, mine_only=True)

    assert runner.calls[0] == ("bus", "claims", "list", "--agent", "amber-reef", "--mine", "--format", "json")


def test_collect_rejects_unsafe_agent_before_running_anything() -> None:
    runner = FakeRunner()

    with pytest.raises(shell.ValidationError):
        ProtocolContext.collect("p", "amber;reef", runner=runner)
    assert runner.calls == []


def test_collect_missing_tool_is_spawn_error() -> None:
    runner = FakeRunner().on("bus", reply=MISSING)

    with pytest.raises(ContextError) as excinfo:
        ProtocolContext.collect("p", "amber-reef", runner=runner)

    assert excinfo.value.spawn is True
    assert str(excinfo.value) == "bus claims list: missing required command: bus"


def test_collect_read_failures_are_not_spawn_errors() -> None:
    runner = FakeRunner()
    runner.on("bus", reply=Reply(claims_json()))
    runner.on("maw", reply=Reply("not json"))

    with pytest.raises(ContextError) as excinfo:
        ProtocolContext.collect("p", "amber-reef", runner=runner)

    assert excinfo.value.spawn is False
    assert excinfo.value.tool == "maw ws list"


def test_collect_timeouts_are_read_failures() -> None:
    runner = FakeRunner().on("bus", reply=Reply(returncode=124, timed_out=True))

    with pytest.raises(ContextError) as excinfo:
        ProtocolContext.collect("p", "amber-reef", runner=runner, timeout_seconds=1.0)

    assert excinfo.value.spawn is False
    assert "timed out" in excinfo.value.detail


def test_held_only_counts_own_claims() -> None:
    ctx = make_context(
        FakeRunner(),
        claims=[
            claim("amber-reef", "bead://p/bd-1", "workspace://p/frost-castle"),
            claim("other", "bead://p/bd-2"),
        ],
    )

    assert ctx.held_bead_claims() == [("bd-1", "bead://p/bd-1")]
    assert ctx.held_workspace_claims() == [("frost-castle", "workspace://p/frost-castle")]
    assert ctx.holds_bead("bd-1") is True
    assert ctx.holds_bead("bd-2") is False
    with pytest.raises(ValueError, match="unknown claim scheme"):
        ctx.held("file")


def test_workspace_for_bead_prefers_memo() -> None:
    ctx = make_context(
        FakeRunner(),
        claims=[
            claim("amber-reef", "bead://p/bd-1", memo="bd-1"),
            claim("amber-reef", "workspace://p/ws-a", memo="bd-2"),
            claim("amber-reef", "workspace://p/ws-b", memo="bd-1"),
        ],
    )

    assert ctx.workspace_for_bead("bd-1") == "ws-b"
    assert ctx.workspace_for_bead("bd-9") is None


def test_workspace_for_bead_falls_back_to_single_workspace_without_memos() -> None:
    ctx = make_context(
        FakeRunner(),
        claims=[claim("amber-reef", "bead://p/bd-1"), claim("amber-reef", "workspace://p/ws-a")],
    )

    assert ctx.workspace_for_bead("bd-1") == "ws-a"


def test_workspace_for_bead_fallback_needs_exactly_one_workspace() -> None:
    ctx = make_context(
        FakeRunner(),
        claims=[
            claim("amber-reef", "workspace://p/ws-a"),
            claim("amber-reef", "workspace://p/ws-b"),
        ],
    )

    assert ctx.workspace_for_bead("bd-1") is None


def test_workspace_for_bead_ignores_default_workspace() -> None:
    ctx = make_context(
        FakeRunner(), claims=[claim("amber-reef", "workspace://p/default", memo="bd-1")]
    )

    assert ctx.workspace_for_bead("bd-1") is None


def test_bead_for_workspace_uses_memo_then_owner_claim() -> None:
    with_memo = make_context(
        FakeRunner(), claims=[claim("worker", "workspace://p/ws-a", memo="bd-7")]
    )
    without_memo = make_context(
        FakeRunner(),
        claims=[claim("worker", "workspace://p/ws-a"), claim("worker", "bead://p/bd-8")],
    )

    assert with_memo.bead_for_workspace("ws-a") == "bd-7"
    assert without_memo.bead_for_workspace("ws-a") == "bd-8"
    assert without_memo.bead_for_workspace("ws-z") is None


def test_check_bead_claim_conflict_refetches_all_claims() -> None:
    runner = FakeRunner().on(
        "bus", "claims", "list", reply=Reply(claims_json(claim("other-agent", "bead://p/bd-1")))
    )
    ctx = make_context(runner)

    assert ctx.check_bead_claim_conflict("bd-1") == "other-agent"
    assert ctx.check_bead_claim_conflict("bd-2") is None
    assert runner.calls[0] == ("bus", "claims", "list", "--format", "json")


def test_bead_status_validates_before_running() -> None:
    runner = FakeRunner().on("maw", reply=Reply(bead_json("bd-1", "Fix", "open")))
    ctx = make_context(runner)

    with pytest.raises(shell.ValidationError):
        ctx.bead_status("bd-1; rm -rf /")
    assert runner.calls == []

    bead = ctx.bead_status("bd-1")
    assert bead.title == "Fix"
    assert runner.calls == [("maw", "exec", "default", "--", "br", "show", "bd-1", "--json")]


def test_ready_beads_lists_beads() -> None:
    ctx = make_context(FakeRunner().on("maw", reply=Reply(ready_json("bd-1", "bd-2"))))

    assert [bead.id for bead in ctx.ready_beads()] == ["bd-1", "bd-2"]


def test_find_review_for_workspace_skips_merged_reviews() -> None:
    runner = FakeRunner()
    runner.on(
        "maw", "exec", "ws-a", "--", "crit", "reviews", "list",
        reply=Reply(reviews_json(("cr-old", "merged"), ("cr-new", "open"))),
    )
    runner.on(
        "maw", "exec", "ws-a", "--", "crit", "review",
        reply=Reply(review_json("cr-new", vote("p-security", "lgtm", "2026-01-01T00:00:00Z"))),
    )
    ctx = make_context(runner)

    review = ctx.find_review_for_workspace("ws-a")

    assert review is not None
    assert review.review_id == "cr-new"
    assert runner.calls[-1] == ("maw", "exec", "ws-a", "--", "crit", "review", "cr-new", "--format", "json")


def test_find_review_for_workspace_returns_none_when_all_merged() -> None:
    runner = FakeRunner().on("maw", reply=Reply(reviews_json(("cr-old", "merged"))))

    assert make_context(runner).find_review_for_workspace("ws-a") is None


def test_merge_check_parses_output_on_nonzero_exit() -> None:
    runner = FakeRunner().on(
        "maw", "ws", "merge",
        reply=Reply('{"ready": false, "conflicts": ["a.py"], "stale": false}', returncode=1),
    )
    check = make_context(runner).merge_check("ws-a")

    assert check.ready is False
    assert check.conflicts == ["a.py"]
    assert runner.calls == [("maw", "ws", "merge", "ws-a", "--check", "--format", "json")]


def test_merge_check_missing_tool_is_spawn_error() -> None:
    runner = FakeRunner().on("maw", reply=MISSING)

    with pytest.raises(ContextError) as excinfo:
        make_context(runner).merge_check("ws-a")

    assert excinfo.value.spawn is True


def test_find_review_for_workspace_invalid_listed_id_is_read_failure() -> None:
    runner = FakeRunner().on("maw", reply=Reply(reviews_json(("CR_weird id", "open"))))

    with pytest.raises(ContextError) as excinfo:
        make_context(runner).find_review_for_workspace("ws-a")

    assert excinfo.value.spawn is False
    assert excinfo.value.tool == "crit reviews list"
    assert "invalid review ID 'CR_weird id'" in excinfo.value.detail
    assert len(runner.calls) == 1
