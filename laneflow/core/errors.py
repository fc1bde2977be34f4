"""Typed error taxonomy for the coordination core.

The legality state machine reports these codes inside `ValidationResult`;
the lifecycle manager raises the matching `CoreError` subclasses. Only the
CLI boundary turns them into exit codes.
"""

from __future__ import annotations

from typing import Literal

ErrorCode = Literal[
    "UnknownCommand",
    "WrongLocation",
    "WrongWuStatus",
    "WuNotFound",
    "PredicateFailed",
    "RetryExhaustion",
    "StateInconsistent",
    "StagedFileNotAllowed",
    "TrunkOutOfSync",
    "LaneOccupied",
    "CleanupLocked",
    "GateFailed",
    "InvalidWuRecord",
]


def format_error(code: str, message: str, next_call: str = "") -> str:
    """Format an error message with optional next step."""
    result = f"ERROR: {code}\n{message}"
    if next_call:
        result += f"\n\nNEXT: {next_call}"
    return result


class CoreError(RuntimeError):
    """Base class for every failure the core reports to its callers."""

    code: ErrorCode = "UnknownCommand"

    def __init__(self, message: str, *, fix_command: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.fix_command = fix_command

    def render(self) -> str:
        return format_error(self.code, self.message, self.fix_command or "")


class UnknownCommandError(CoreError):
    code: ErrorCode = "UnknownCommand"


class WrongLocationError(CoreError):
    code: ErrorCode = "WrongLocation"


class WrongWuStatusError(CoreError):
    code: ErrorCode = "WrongWuStatus"


class WuNotFoundError(CoreError):
    code: ErrorCode = "WuNotFound"


class PredicateFailedError(CoreError):
    code: ErrorCode = "PredicateFailed"

    def __init__(self, predicate_id: str, message: str, *, fix_command: str | None = None) -> None:
        super().__init__(message, fix_command=fix_command)
        self.predicate_id = predicate_id


class StateInconsistentError(CoreError):
    code: ErrorCode = "StateInconsistent"


class StagedFileNotAllowedError(CoreError):
    code: ErrorCode = "StagedFileNotAllowed"

    def __init__(self, unexpected: list[str], *, fix_command: str | None = None) -> None:
        listing = "\n".join(f"  - {path}" for path in unexpected)
        super().__init__(f"Unexpected files staged:\n{listing}", fix_command=fix_command)
        self.unexpected = unexpected


class TrunkOutOfSyncError(CoreError):
    code: ErrorCode = "TrunkOutOfSync"

    def __init__(self, message: str, *, ahead: int, behind: int, fix_command: str | None = None) -> None:
        super().__init__(message, fix_command=fix_command)
        self.ahead = ahead
        self.behind = behind


class LaneOccupiedError(CoreError):
    code: ErrorCode = "LaneOccupied"

    def __init__(self, lane: str, holders: list[str], wip_limit: int) -> None:
        super().__init__(
            f"Lane '{lane}' is at its WIP limit ({wip_limit}); held by {', '.join(holders)}",
            fix_command="laneflow wu:status",
        )
        self.lane = lane
        self.holders = holders
        self.wip_limit = wip_limit


class CleanupLockedError(CoreError):
    code: ErrorCode = "CleanupLocked"


class GateFailedError(CoreError):
    code: ErrorCode = "GateFailed"

    def __init__(self, gate_name: str, message: str | None = None) -> None:
        super().__init__(message or f"{gate_name} failed")
        self.gate_name = gate_name


class InvalidWuRecordError(CoreError):
    code: ErrorCode = "InvalidWuRecord"
