"""Exit-code policy for protocol commands.

Exit 0 means guidance was produced, whatever its status; agents branch on
the status in stdout, never on the exit code. Exit 1 is an operational
failure (tool missing, failed step, unrenderable guidance) and exit 2 a
usage error. Stderr carries only the latter two.
"""

from __future__ import annotations

from enum import IntEnum

from .guidance import ProtocolStatus


class ProtocolExitCode(IntEnum):
    SUCCESS = 0
    OPERATIONAL_ERROR = 1
    USAGE_ERROR = 2


class ProtocolExitError(RuntimeError):
    """Raised to end a protocol command with a non-zero exit code.

    Example:
        >>> str(ProtocolExitError.operational("start", "bus: missing required command: bus"))
        'baton protocol: start: bus: missing required command: bus'
    """

    def __init__(self, code: ProtocolExitCode, context: str, detail: str) -> None:
        self.code = code
        self.context = context
        self.detail = detail
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"baton protocol: {self.context}: {self.detail}"

    @classmethod
    def operational(cls, context: str, detail: str) -> ProtocolExitError:
        return cls(ProtocolExitCode.OPERATIONAL_ERROR, context, detail)


def exit_code_for_status(status: ProtocolStatus) -> ProtocolExitCode:
    """Every status is a successful answer."""
    return ProtocolExitCode.SUCCESS
