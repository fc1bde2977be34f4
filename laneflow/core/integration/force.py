"""Scoped force-push authorization.

Protective git hooks consult `LANEFLOW_FORCE` / `LANEFLOW_FORCE_REASON` to
allow tooling pushes to trunk. The authorization is passed explicitly to the
push and also exposed in the process environment for exactly the duration of
one push, after which the prior values are restored.
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from laneflow.constants import FORCE_ENV, FORCE_REASON_ENV


@dataclass(frozen=True)
class ForceAuthorization:
    granted: bool
    reason: str | None = None

    def env(self) -> dict[str, str]:
        """Environment overrides to pass to the push subprocess."""
        if not self.granted:
            return {}
        return {FORCE_ENV: "1", FORCE_REASON_ENV: self.reason or ""}


NO_FORCE = ForceAuthorization(granted=False)

_FORCE_GUARD = threading.RLock()


def current_force_authorization() -> ForceAuthorization:
    """Read the ambient authorization from the process environment."""
    granted = os.environ.get(FORCE_ENV) == "1"
    return ForceAuthorization(granted=granted, reason=os.environ.get(FORCE_REASON_ENV) if granted else None)


def _snapshot() -> dict[str, str | None]:
    return {key: os.environ.get(key) for key in (FORCE_ENV, FORCE_REASON_ENV)}


def _restore(previous: dict[str, str | None]) -> None:
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@contextmanager
def force_authorized(authorization: ForceAuthorization) -> Iterator[ForceAuthorization]:
    """Expose `authorization` in the environment for the body, then restore."""
    if not authorization.granted:
        yield authorization
        return

    with _FORCE_GUARD:
        previous = _snapshot()
        os.environ.update(authorization.env())
        try:
            yield authorization
        finally:
            _restore(previous)
