from __future__ import annotations

import shlex

import pytest
from hypothesis import given
from hypothesis import strategies as st

from baton.protocol import shell

no_nul_text = st.text(alphabet=st.characters(exclude_characters="\x00"), max_size=40)


@given(no_nul_text)
def test_shell_escape_yields_one_word(value: str) -> None:
    assert shlex.split(shell.shell_escape(value)) == [value]


@given(no_nul_text)
def test_bus_send_message_survives_shell_parsing(message: str) -> None:
    words = shlex.split(shell.bus_send_cmd("amber-reef", "p", message, "task-claim"))

    assert words == ["bus", "send", "--agent", "amber-reef", "p", message, "-L", "task-claim"]


def test_shell_escape_examples() -> None:
    assert shell.shell_escape("") == "''"
    assert shell.shell_escape("hello world") == "'hello world'"
    assert shell.shell_escape("it's") == "'it'\\''s'"
    assert shell.shell_escape("$HOME `id`") == "'$HOME `id`'"


def test_safe_ident_passes_clean_values_and_escapes_the_rest() -> None:
    assert shell.safe_ident("bd-3cqv") == "bd-3cqv"
    assert shell.safe_ident("workspace://p/ws") == "workspace://p/ws"
    assert shell.safe_ident("a b") == "'a b'"
    assert shell.safe_ident("") == "''"


@pytest.mark.parametrize("value", ["bd-3cqv", "bd-abc", "BD-1", "a-b-c", "x-" + "a" * 18])
def test_validate_bead_id_accepts(value: str) -> None:
    assert shell.validate_bead_id(value) == value


@pytest.mark.parametrize(
    "value",
    ["", "bd3cqv", "bd-3cqv;rm", "bd 1", "bd-$(id)", "bd-" + "a" * 18, "bd_1"],
)
def test_validate_bead_id_rejects(value: str) -> None:
    with pytest.raises(shell.ValidationError):
        shell.validate_bead_id(value)


def test_validation_error_messages() -> None:
    with pytest.raises(shell.ValidationError, match="bead ID cannot be empty"):
        shell.validate_bead_id("")
    with pytest.raises(shell.ValidationError, match="too long"):
        shell.validate_bead_id("bd-" + "a" * 30)


@pytest.mark.parametrize("value", ["cr-2rnh", "cr-ABC123"])
def test_validate_review_id_accepts(value: str) -> None:
    assert shell.validate_review_id(value) == value


@pytest.mark.parametrize("value", ["", "cr-", "rv-123", "cr-12 3", "cr-1;x"])
def test_validate_review_id_rejects(value: str) -> None:
    with pytest.raises(shell.ValidationError):
        shell.validate_review_id(value)


@pytest.mark.parametrize("value", ["frost-castle", "default", "ws1", "9lives"])
def test_validate_workspace_name_accepts(value: str) -> None:
    assert shell.validate_workspace_name(value) == value


@pytest.mark.parametrize("value", ["", "-frost", "frost castle", "frost/castle", "a" * 65])
def test_validate_workspace_name_rejects(value: str) -> None:
    with pytest.raises(shell.ValidationError):
        shell.validate_workspace_name(value)


@pytest.mark.parametrize("value", ["amber-reef", "p-security", "bot_1.dev"])
def test_validate_identifier_accepts(value: str) -> None:
    assert shell.validate_identifier("agent", value) == value


@pytest.mark.parametrize("value", ["", "a b", "a;b", "a$b", "a'b", "a|b", "a\nb"])
def test_validate_identifier_rejects(value: str) -> None:
    with pytest.raises(shell.ValidationError):
        shell.validate_identifier("agent", value)


def test_claims_stake_cmd() -> None:
    assert (
        shell.claims_stake_cmd("amber-reef", "bead://p/bd-1", "bd-1")
        == "bus claims stake --agent amber-reef 'bead://p/bd-1' -m 'bd-1'"
    )
    assert (
        shell.claims_stake_cmd("amber-reef", "workspace://p/default", ttl=120)
        == "bus claims stake --agent amber-reef 'workspace://p/default' --ttl 120"
    )


def test_release_and_status_builders() -> None:
    assert (
        shell.claims_release_cmd("amber-reef", "bead://p/bd-1")
        == "bus claims release --agent amber-reef 'bead://p/bd-1'"
    )
    assert shell.claims_release_all_cmd("amber-reef") == "bus claims release --agent amber-reef --all"
    assert shell.bus_statuses_clear_cmd("amber-reef") == "bus statuses clear --agent amber-reef"


def test_bead_builders() -> None:
    assert (
        shell.br_update_cmd("amber-reef", "bd-1", "in_progress", set_owner=True)
        == "maw exec default -- br update --actor amber-reef bd-1 --status=in_progress "
        "--owner=amber-reef"
    )
    assert (
        shell.br_comment_cmd("amber-reef", "bd-1", "Started in workspace $WS")
        == "maw exec default -- br comments add --actor amber-reef --author amber-reef bd-1 "
        "'Started in workspace $WS'"
    )
    assert (
        shell.br_close_cmd("amber-reef", "bd-1", "Completed in workspace frost-castle")
        == "maw exec default -- br close --actor amber-reef bd-1 "
        "--reason='Completed in workspace frost-castle'"
    )
    assert shell.br_show_cmd("bd-1") == "maw exec default -- br show bd-1"
    assert shell.br_ready_cmd() == "maw exec default -- br ready"
    assert shell.br_sync_cmd() == "maw exec default -- br sync --flush-only"


def test_workspace_builders() -> None:
    assert shell.ws_create_cmd() == "maw ws create --random"
    assert shell.ws_merge_cmd("frost-castle") == "maw ws merge frost-castle --destroy"
    assert (
        shell.ws_merge_cmd("frost-castle", "feat: it's done")
        == "maw ws merge frost-castle --destroy --message 'feat: it'\\''s done'"
    )
    assert shell.ws_exec_cmd("frost-castle", "git add -A") == "maw exec frost-castle -- git add -A"


def test_review_builders() -> None:
    assert (
        shell.crit_create_cmd("frost-castle", "amber-reef", "bd-1: Fix it", ["p-security", "p-perf"])
        == "maw exec frost-castle -- crit reviews create --agent amber-reef "
        "--title 'bd-1: Fix it' --reviewers p-security,p-perf"
    )
    assert (
        shell.crit_request_cmd("frost-castle", "cr-2rnh", ["p-security"], "amber-reef")
        == "maw exec frost-castle -- crit reviews request cr-2rnh --reviewers p-security "
        "--agent amber-reef"
    )
    assert shell.crit_show_cmd("frost-castle", "cr-2rnh") == "maw exec frost-castle -- crit review cr-2rnh"
    assert (
        shell.crit_mark_merged_cmd("cr-2rnh")
        == "maw exec default -- crit reviews mark-merged cr-2rnh"
    )


def test_protocol_cmd_and_mentions() -> None:
    assert shell.protocol_cmd("start", "bd-1", project="p") == "baton protocol start bd-1 --project p"
    assert shell.protocol_cmd("resume") == "baton protocol resume"
    assert shell.mentions(["p-security", "p-perf"]) == "@p-security @p-perf"
    assert shell.mentions([]) == ""


def test_builders_are_deterministic() -> None:
    first = shell.bus_send_cmd("amber-reef", "p", "Working on bd-1: it's 'quoted'", "task-claim")
    second = shell.bus_send_cmd("amber-reef", "p", "Working on bd-1: it's 'quoted'", "task-claim")

    assert first == second
