"""Command legality state machine.

`validate_command` never raises: every failure is reported in the returned
`ValidationResult` together with a runnable fix command where one exists.
"""

from __future__ import annotations

from dataclasses import dataclass

from laneflow.constants import CMD_CLAIM, CMD_UNBLOCK, worktree_dir_name
from laneflow.core.command_registry import COMMAND_REGISTRY, CommandDefinition, get_command_definition, wu_arg
from laneflow.core.errors import (
    CoreError,
    ErrorCode,
    PredicateFailedError,
    StateInconsistentError,
    UnknownCommandError,
    WrongLocationError,
    WrongWuStatusError,
)
from laneflow.core.models import Context


@dataclass(frozen=True)
class ValidationIssue:
    code: ErrorCode
    message: str
    fix_command: str | None = None
    predicate_id: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()

    def error_codes(self) -> list[ErrorCode]:
        return [issue.code for issue in self.errors]


def _location_fix(definition: CommandDefinition, ctx: Context) -> str | None:
    command = f"laneflow {definition.name}{wu_arg(ctx)}"
    if definition.required_location == "main":
        if ctx.location.main_checkout:
            return f"cd {ctx.location.main_checkout} && {command}"
        return None
    if ctx.wu is not None and ctx.location.main_checkout:
        path = ctx.wu.worktree_path or f"{ctx.location.main_checkout}/worktrees/{worktree_dir_name(ctx.wu.lane, ctx.wu.id)}"
        return f"cd {path} && {command}"
    return None


def _status_fix(ctx: Context, expected: str) -> str | None:
    if ctx.wu is None:
        return None
    actual = ctx.wu.status
    if expected == "in_progress" and actual == "ready":
        return f"laneflow {CMD_CLAIM}{wu_arg(ctx)}"
    if expected == "in_progress" and actual == "blocked":
        return f"laneflow {CMD_UNBLOCK}{wu_arg(ctx)}"
    return None


def validate_command(name: str, ctx: Context) -> ValidationResult:
    """Decide whether `name` is legal for `ctx`, collecting every reason it is not."""
    definition = get_command_definition(name)
    if definition is None:
        known = ", ".join(sorted(COMMAND_REGISTRY))
        return ValidationResult(
            valid=False,
            errors=(ValidationIssue(code="UnknownCommand", message=f"Unknown command '{name}'. Known: {known}"),),
        )

    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    required_location = definition.required_location
    if required_location is not None and ctx.location.type != required_location:
        errors.append(
            ValidationIssue(
                code="WrongLocation",
                message=f"{name} must be run from the {required_location} checkout (current: {ctx.location.type})",
                fix_command=_location_fix(definition, ctx),
            )
        )

    required_status = definition.required_wu_status
    actual_status = ctx.wu.status if ctx.wu is not None else None
    if required_status is not None and actual_status != required_status:
        subject = ctx.wu.id if ctx.wu is not None else "WU"
        errors.append(
            ValidationIssue(
                code="WrongWuStatus",
                message=f"{name} requires {subject} status {required_status}, but status is {actual_status}",
                fix_command=_status_fix(ctx, required_status),
            )
        )

    for predicate in definition.predicates:
        if predicate.check(ctx):
            continue
        issue = ValidationIssue(
            code="PredicateFailed",
            message=f"{predicate.id}: {predicate.description}",
            fix_command=predicate.fix_message(ctx),
            predicate_id=predicate.id,
        )
        if predicate.severity == "error":
            errors.append(issue)
        else:
            warnings.append(issue)

    return ValidationResult(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))


def get_valid_commands_for_context(ctx: Context) -> list[str]:
    """Return every registered command that fully validates for `ctx`."""
    return [name for name in COMMAND_REGISTRY if validate_command(name, ctx).valid]


def next_steps_for(name: str, ctx: Context) -> list[str]:
    definition = get_command_definition(name)
    if definition is None:
        return []
    return definition.next_steps(ctx)


_ERRORS_BY_CODE: dict[str, type[CoreError]] = {
    "UnknownCommand": UnknownCommandError,
    "WrongLocation": WrongLocationError,
    "WrongWuStatus": WrongWuStatusError,
    "StateInconsistent": StateInconsistentError,
}


def raise_for_validation(result: ValidationResult) -> None:
    """Raise the typed error for the first blocking issue, listing all of them."""
    if result.valid:
        return
    first = result.errors[0]
    details = "\n".join(issue.message for issue in result.errors)
    if first.code == "PredicateFailed":
        raise PredicateFailedError(first.predicate_id or "unknown", details, fix_command=first.fix_command)
    error_class = _ERRORS_BY_CODE.get(first.code, CoreError)
    raise error_class(details, fix_command=first.fix_command)
