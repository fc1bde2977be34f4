"""Push with optimistic-concurrency retries.

A rejected push almost always means another agent advanced trunk. Before
each retry the remote ref is refetched and the local branch rebased onto it,
with exponential backoff (optionally jittered) between attempts. A fetch or
rebase that fails is one more failed attempt.
"""

from __future__ import annotations

import random
import re
import time
from dataclasses import dataclass
from typing import Callable

from git.exc import GitCommandError

from laneflow.config.schema import PushRetryConfig
from laneflow.core.errors import CoreError, ErrorCode
from laneflow.core.git_ops import GitOps
from laneflow.core.integration.force import NO_FORCE, ForceAuthorization, force_authorized
from laneflow.logging_config import get_logger

logger = get_logger(__name__)

SleepFn = Callable[[float], None]
RandomFn = Callable[[], float]
# Settles the conflicts of a stopped rebase and stages them; False when it cannot.
ConflictResolver = Callable[[GitOps], bool]

_LEGACY_EXHAUSTION = re.compile(r"push failed after \d+ attempts", re.IGNORECASE)
_MAX_REBASE_STEPS = 20


@dataclass(frozen=True)
class RetryPolicy:
    enabled: bool = True
    max_attempts: int = 3
    min_delay_ms: int = 100
    max_delay_ms: int = 1000
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_config(cls, config: PushRetryConfig) -> RetryPolicy:
        return cls(
            enabled=config.enabled,
            max_attempts=config.retries,
            min_delay_ms=config.min_delay_ms,
            max_delay_ms=config.max_delay_ms,
            jitter=config.jitter,
        )


DEFAULT_PUSH_RETRY_POLICY = RetryPolicy()


class RetryExhaustionError(CoreError):
    code: ErrorCode = "RetryExhaustion"

    def __init__(self, operation_name: str, attempts_made: int, *, fix_command: str | None = None) -> None:
        super().__init__(
            f"Push failed after {attempts_made} attempts. "
            f"Origin main may have significant traffic during {operation_name}.",
            fix_command=fix_command,
        )
        self.operation_name = operation_name
        self.attempts_made = attempts_made


def is_retry_exhaustion_error(error: object) -> bool:
    """Recognize the typed error and the legacy free-text message."""
    if isinstance(error, RetryExhaustionError):
        return True
    if isinstance(error, BaseException):
        return bool(_LEGACY_EXHAUSTION.search(str(error)))
    if isinstance(error, str):
        return bool(_LEGACY_EXHAUSTION.search(error))
    return False


def compute_retry_delay_ms(policy: RetryPolicy, attempt: int, rng: RandomFn = random.random) -> float:
    """Delay after failed `attempt` (1-based): min(min * 2^(attempt-1), max), jittered up to 2x."""
    base = min(policy.min_delay_ms * 2 ** (attempt - 1), policy.max_delay_ms)
    if not policy.jitter:
        return float(base)
    return float(min(base * (1 + rng()), policy.max_delay_ms))


def push_refspec_with_retry(
    git: GitOps,
    *,
    remote: str,
    local_ref: str,
    remote_ref: str,
    operation_name: str,
    policy: RetryPolicy = DEFAULT_PUSH_RETRY_POLICY,
    force: ForceAuthorization = NO_FORCE,
    resolve_conflicts: ConflictResolver | None = None,
    sleep: SleepFn = time.sleep,
    rng: RandomFn = random.random,
) -> int:
    """Push `local_ref` to `remote/remote_ref`, rebasing onto the remote before each retry.

    A failed fetch or rebase counts as a failed attempt, the same as a
    rejected push. When the rebase stops on conflicts, `resolve_conflicts`
    gets a chance to settle them before the rebase is aborted.

    Returns:
        The number of push attempts made.

    Raises:
        RetryExhaustionError: no attempt succeeded.
        GitCommandError: with retries disabled, the single push error unchanged.
    """
    refspec = f"{local_ref}:{remote_ref}"
    if not policy.enabled:
        _push(git, remote, refspec, force)
        return 1

    for attempt in range(1, policy.max_attempts + 1):
        try:
            if attempt > 1:
                _refresh_onto_remote(git, remote, remote_ref, resolve_conflicts)
            _push(git, remote, refspec, force)
            logger.info("Pushed %s to %s/%s (attempt %s/%s)", local_ref, remote, remote_ref, attempt, policy.max_attempts)
            return attempt
        except GitCommandError as exc:
            logger.warning(
                "Push of %s to %s/%s failed (attempt %s/%s): %s",
                local_ref,
                remote,
                remote_ref,
                attempt,
                policy.max_attempts,
                exc,
            )
            if attempt < policy.max_attempts:
                sleep(compute_retry_delay_ms(policy, attempt, rng) / 1000.0)

    raise RetryExhaustionError(
        operation_name,
        policy.max_attempts,
        fix_command=f"git fetch {remote} {remote_ref} && git rebase {remote}/{remote_ref}",
    )


def _push(git: GitOps, remote: str, refspec: str, force: ForceAuthorization) -> None:
    with force_authorized(force):
        git.push(remote, refspec, env=force.env())


def _refresh_onto_remote(
    git: GitOps, remote: str, remote_ref: str, resolve_conflicts: ConflictResolver | None
) -> None:
    onto = f"{remote}/{remote_ref}"
    git.fetch(remote, remote_ref)
    try:
        git.rebase(onto)
        return
    except GitCommandError:
        if resolve_conflicts is not None and _settle_rebase(git, resolve_conflicts):
            logger.info("Resolved rebase conflicts onto %s", onto)
            return
        logger.error("Rebase onto %s failed; aborting rebase", onto)
        try:
            git.rebase_abort()
        except GitCommandError as abort_exc:
            logger.warning("git rebase --abort failed: %s", abort_exc)
        raise


def _settle_rebase(git: GitOps, resolve_conflicts: ConflictResolver) -> bool:
    """Resolve and continue until the rebase finishes. False leaves it for the caller to abort."""
    for _ in range(_MAX_REBASE_STEPS):
        try:
            if not resolve_conflicts(git):
                return False
            git.rebase_continue()
            return True
        except GitCommandError as exc:
            if not git.rebase_in_progress():
                logger.warning("Rebase could not be continued: %s", exc)
                return False
            logger.info("Rebase stopped on the next commit: %s", exc)
    return False
