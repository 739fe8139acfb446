"""Shell-safe primitives for protocol guidance.

Single-quote escaping, identifier validation, and command builders. Builders
are pure string formatting over validated or escaped arguments; they perform
no I/O. Renderers and handlers compose these rather than quoting on their own.

Example:
    >>> shell_escape("it's")
    "'it'\\\\''s'"
    >>> ws_merge_cmd("frost-castle")
    'maw ws merge frost-castle --destroy'
"""

from __future__ import annotations

import re
import string

BEAD_ID_MAX_LENGTH = 20
WORKSPACE_NAME_MAX_LENGTH = 64
SHELL_METACHARACTERS = frozenset(" \t\n\r'\"`$\\!&|;()<>*?[]{}#~\0")

_ALNUM = frozenset(string.ascii_letters + string.digits)
_ALNUM_HYPHEN = _ALNUM | {"-"}
_SAFE_IDENT_CHARS = _ALNUM | set("-_./:,")
_REVIEW_ID_RE = re.compile(r"cr-[A-Za-z0-9]+")


class ValidationError(ValueError):
    """Raised when a structural identifier fails its grammar."""

    def __init__(self, field: str, value: str, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.value:
            return f"{self.field} cannot be empty"
        return f"invalid {self.field} {self.value!r}: {self.reason}"


def shell_escape(value: str) -> str:
    """Return ``value`` as exactly one single-quoted POSIX shell word.

    Each embedded single quote closes the quoting, emits an escaped quote,
    and reopens quoting: ``'`` becomes ``'\\''``.
    """
    return "'" + value.replace("'", "'\\''") + "'"


def safe_ident(value: str) -> str:
    """Pass a clean structural value through; escape anything else.

    Structural values are expected to be validated already. A value outside
    ``[A-Za-z0-9._/:,-]`` is escaped rather than interpolated raw.
    """
    if value and all(ch in _SAFE_IDENT_CHARS for ch in value):
        return value
    return shell_escape(value)


def validate_bead_id(value: str) -> str:
    """Validate a bead id such as ``bd-3cqv``.

    Returns:
        The id, unchanged.

    Raises:
        ValidationError: When the id is empty, too long, has no hyphen, or
            contains anything other than ASCII alphanumerics and hyphens.
    """
    field = "bead ID"
    if not value:
        raise ValidationError(field, value, "empty")
    if len(value) > BEAD_ID_MAX_LENGTH:
        raise ValidationError(
            field, value, f"too long ({len(value)} chars, max {BEAD_ID_MAX_LENGTH})"
        )
    if "-" not in value or not all(ch in _ALNUM_HYPHEN for ch in value):
        raise ValidationError(field, value, "expected alphanumerics and hyphens, e.g. bd-3cqv")
    return value


def validate_review_id(value: str) -> str:
    """Validate a review id such as ``cr-2rnh``."""
    field = "review ID"
    if not value:
        raise ValidationError(field, value, "empty")
    if not _REVIEW_ID_RE.fullmatch(value):
        raise ValidationError(field, value, "expected cr-[a-z0-9]+")
    return value


def validate_workspace_name(value: str) -> str:
    """Validate a workspace name such as ``frost-castle``."""
    field = "workspace name"
    if not value:
        raise ValidationError(field, value, "empty")
    if len(value) > WORKSPACE_NAME_MAX_LENGTH:
        raise ValidationError(
            field,
            value,
            f"too long ({len(value)} chars, max {WORKSPACE_NAME_MAX_LENGTH})",
        )
    if value[0] not in _ALNUM or not all(ch in _ALNUM_HYPHEN for ch in value):
        raise ValidationError(field, value, "expected [a-z0-9][a-z0-9-]*")
    return value


def validate_identifier(field: str, value: str) -> str:
    """Validate an agent, project, or reviewer name."""
    if not value:
        raise ValidationError(field, value, "empty")
    if any(ch in SHELL_METACHARACTERS for ch in value):
        raise ValidationError(field, value, "contains shell metacharacters")
    return value


# --- Command builders ---


def claims_stake_cmd(agent: str, uri: str, memo: str = "", *, ttl: int | None = None) -> str:
    """Build ``bus claims stake --agent <agent> '<uri>' [--ttl N] [-m '<memo>']``."""
    parts = ["bus claims stake --agent", safe_ident(agent), shell_escape(uri)]
    if ttl is not None:
        parts.extend(["--ttl", str(int(ttl))])
    if memo:
        parts.extend(["-m", shell_escape(memo)])
    return " ".join(parts)


def claims_release_cmd(agent: str, uri: str) -> str:
    return f"bus claims release --agent {safe_ident(agent)} {shell_escape(uri)}"


def claims_release_all_cmd(agent: str) -> str:
    return f"bus claims release --agent {safe_ident(agent)} --all"


def bus_send_cmd(agent: str, channel: str, message: str, label: str = "") -> str:
    """Build ``bus send --agent <agent> <channel> '<message>' [-L <label>]``."""
    cmd = f"bus send --agent {safe_ident(agent)} {safe_ident(channel)} {shell_escape(message)}"
    if label:
        cmd += f" -L {safe_ident(label)}"
    return cmd


def bus_statuses_clear_cmd(agent: str) -> str:
    return f"bus statuses clear --agent {safe_ident(agent)}"


def br_update_cmd(agent: str, bead_id: str, status: str, *, set_owner: bool = False) -> str:
    cmd = (
        f"maw exec default -- br update --actor {safe_ident(agent)} "
        f"{safe_ident(bead_id)} --status={safe_ident(status)}"
    )
    if set_owner:
        cmd += f" --owner={safe_ident(agent)}"
    return cmd


def br_comment_cmd(agent: str, bead_id: str, message: str) -> str:
    actor = safe_ident(agent)
    return (
        f"maw exec default -- br comments add --actor {actor} --author {actor} "
        f"{safe_ident(bead_id)} {shell_escape(message)}"
    )


def br_close_cmd(agent: str, bead_id: str, reason: str) -> str:
    return (
        f"maw exec default -- br close --actor {safe_ident(agent)} "
        f"{safe_ident(bead_id)} --reason={shell_escape(reason)}"
    )


def br_show_cmd(bead_id: str) -> str:
    return f"maw exec default -- br show {safe_ident(bead_id)}"


def br_ready_cmd() -> str:
    return "maw exec default -- br ready"


def br_sync_cmd() -> str:
    return "maw exec default -- br sync --flush-only"


def ws_create_cmd() -> str:
    return "maw ws create --random"


def ws_merge_cmd(workspace: str, message: str | None = None) -> str:
    cmd = f"maw ws merge {safe_ident(workspace)} --destroy"
    if message:
        cmd += f" --message {shell_escape(message)}"
    return cmd


def ws_exec_cmd(workspace: str, command: str) -> str:
    """Prefix an already-rendered command with ``maw exec <ws> --``."""
    return f"maw exec {safe_ident(workspace)} -- {command}"


def crit_create_cmd(workspace: str, agent: str, title: str, reviewers: list[str]) -> str:
    return ws_exec_cmd(
        workspace,
        f"crit reviews create --agent {safe_ident(agent)} --title {shell_escape(title)} "
        f"--reviewers {safe_ident(','.join(reviewers))}",
    )


def crit_request_cmd(workspace: str, review_id: str, reviewers: list[str], agent: str) -> str:
    return ws_exec_cmd(
        workspace,
        f"crit reviews request {safe_ident(review_id)} "
        f"--reviewers {safe_ident(','.join(reviewers))} --agent {safe_ident(agent)}",
    )


def crit_show_cmd(workspace: str, review_id: str) -> str:
    return ws_exec_cmd(workspace, f"crit review {safe_ident(review_id)}")


def crit_mark_merged_cmd(review_id: str) -> str:
    return ws_exec_cmd("default", f"crit reviews mark-merged {safe_ident(review_id)}")


def protocol_cmd(command: str, *args: str, project: str | None = None) -> str:
    """Build a ``baton protocol`` self-invocation, e.g. for revalidation."""
    parts = ["baton protocol", safe_ident(command), *(safe_ident(arg) for arg in args)]
    if project:
        parts.extend(["--project", safe_ident(project)])
    return " ".join(parts)


def mentions(names: list[str]) -> str:
    return " ".join(f"@{name}" for name in names)
