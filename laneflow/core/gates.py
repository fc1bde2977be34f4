"""Gate scheduler: decide, sequence and run validation steps before completion.

Steps run strictly in order. A failing step aborts the run unless it is
warn-only; the summary always records every step that ran (or was skipped)
up to that point.
"""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Literal, Mapping, TypedDict

from laneflow.core.risk import RiskAssessment
from laneflow.logging_config import get_logger

logger = get_logger(__name__)

GateMode = Literal["full", "incremental"]
GateStatus = Literal["passed", "failed", "warned", "skipped"]

GATE_INVARIANTS = "invariants"
GATE_FORMAT = "format:check"
GATE_SPEC_LINT = "spec:linter"
GATE_BACKLOG_SYNC = "backlog-sync"
GATE_SYSTEM_MAP = "system-map"
GATE_LINT = "lint"
GATE_TYPECHECK = "typecheck"
GATE_SAFETY_TESTS = "safety-critical-test"
GATE_TEST = "test"
GATE_INTEGRATION_TEST = "integration-test"
GATE_COVERAGE = "coverage"


@dataclass(frozen=True)
class GateResult:
    """Uniform result contract for any gate body."""

    ok: bool
    duration_ms: float
    is_incremental: bool = False
    output: str = ""


GateRunner = Callable[[], GateResult]


@dataclass(frozen=True)
class GateStep:
    name: str
    warn_only: bool = False
    mode: GateMode | None = None


@dataclass(frozen=True)
class GateOutcome:
    name: str
    ok: bool
    duration_ms: float
    status: GateStatus
    reason: str | None = None


@dataclass(frozen=True)
class GateRunSummary:
    ok: bool
    outcomes: tuple[GateOutcome, ...]
    failed_gate: str | None = None

    def render(self) -> str:
        lines = []
        for outcome in self.outcomes:
            reason = f" ({outcome.reason})" if outcome.reason else ""
            lines.append(f"{outcome.status.upper():8} {outcome.name} {outcome.duration_ms:.0f}ms{reason}")
        return "\n".join(lines)


class GateEvent(TypedDict):
    wu_id: str | None
    lane: str | None
    gate_name: str
    passed: bool
    duration_ms: float


TelemetrySink = Callable[[GateEvent], None]
# Maps a planned step to its runner; None means the backing script is absent.
GateRunnerResolver = Callable[[GateStep], GateRunner | None]


def build_gate_plan(
    risk: RiskAssessment,
    *,
    docs_only: bool,
    full_lint: bool = False,
    full_tests: bool = False,
    full_coverage: bool = False,
    on_trunk: bool = False,
) -> list[GateStep]:
    """Assemble the ordered step list for a change of the given risk."""
    steps = [GateStep(GATE_INVARIANTS)]
    if docs_only or risk.is_docs_only:
        steps += [
            GateStep(GATE_FORMAT),
            GateStep(GATE_SPEC_LINT),
            GateStep(GATE_BACKLOG_SYNC),
            GateStep(GATE_SYSTEM_MAP, warn_only=True),
        ]
        return steps

    # Incremental lint has no well-defined base on trunk itself.
    lint_mode: GateMode = "full" if (full_lint or on_trunk) else "incremental"
    test_mode: GateMode = "full" if (full_tests or full_coverage) else "incremental"
    steps += [
        GateStep(GATE_FORMAT),
        GateStep(GATE_LINT, mode=lint_mode),
        GateStep(GATE_TYPECHECK),
        GateStep(GATE_SPEC_LINT),
        GateStep(GATE_BACKLOG_SYNC),
        GateStep(GATE_SYSTEM_MAP, warn_only=True),
        GateStep(GATE_SAFETY_TESTS),
        GateStep(GATE_TEST, mode=test_mode),
    ]
    if risk.should_run_integration:
        steps.append(GateStep(GATE_INTEGRATION_TEST))
    steps.append(GateStep(GATE_COVERAGE))
    return steps


@dataclass
class GateScheduler:
    """Runs a gate plan sequentially and applies the pass/fail policy."""

    resolver: GateRunnerResolver
    telemetry: TelemetrySink | None = None
    strict_scripts: bool = False
    full_coverage: bool = False
    wu_id: str | None = None
    lane: str | None = None
    _outcomes: list[GateOutcome] = field(default_factory=list, init=False)

    def run(self, plan: list[GateStep]) -> GateRunSummary:
        self._outcomes = []
        last_test_incremental = False

        for step in plan:
            if step.name == GATE_COVERAGE and last_test_incremental and not self.full_coverage:
                self._record(step, ok=True, duration_ms=0.0, status="skipped", reason="tests ran incrementally")
                continue

            runner = self.resolver(step)
            if runner is None:
                if self.strict_scripts:
                    self._record(step, ok=False, duration_ms=0.0, status="failed", reason="script missing")
                    logger.error("Gate %s has no script (strict mode)", step.name)
                    return self._summary(failed_gate=step.name)
                logger.warning("Gate %s has no script; skipping", step.name)
                self._record(step, ok=True, duration_ms=0.0, status="skipped", reason="script missing")
                continue

            logger.info("Running gate %s%s", step.name, f" ({step.mode})" if step.mode else "")
            result = runner()
            if step.name == GATE_TEST:
                last_test_incremental = result.is_incremental
            self._emit(step, result)

            if result.ok:
                self._record(step, ok=True, duration_ms=result.duration_ms, status="passed")
                continue
            if step.warn_only:
                logger.warning("Gate %s failed (warn only); continuing", step.name)
                self._record(step, ok=False, duration_ms=result.duration_ms, status="warned", reason="warn only")
                continue

            logger.error("%s failed", step.name)
            self._record(step, ok=False, duration_ms=result.duration_ms, status="failed", reason=f"{step.name} failed")
            return self._summary(failed_gate=step.name)

        return self._summary(failed_gate=None)

    def _record(self, step: GateStep, *, ok: bool, duration_ms: float, status: GateStatus, reason: str | None = None) -> None:
        self._outcomes.append(GateOutcome(name=step.name, ok=ok, duration_ms=duration_ms, status=status, reason=reason))

    def _summary(self, *, failed_gate: str | None) -> GateRunSummary:
        return GateRunSummary(ok=failed_gate is None, outcomes=tuple(self._outcomes), failed_gate=failed_gate)

    def _emit(self, step: GateStep, result: GateResult) -> None:
        if self.telemetry is None:
            return
        event: GateEvent = {
            "wu_id": self.wu_id,
            "lane": self.lane,
            "gate_name": step.name,
            "passed": result.ok,
            "duration_ms": result.duration_ms,
        }
        try:
            self.telemetry(event)
        except Exception as exc:  # noqa: BLE001 - telemetry must never fail a gate run
            logger.warning("Gate telemetry emit failed for %s: %s", step.name, exc)


def run_shell_gate(command: str, *, cwd: Path, timeout_seconds: int, is_incremental: bool = False) -> GateResult:
    """Run one gate command and reduce it to the uniform result contract."""
    start = time.monotonic()
    try:
        completed = subprocess.run(
            command,
            shell=True,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired:
        duration_ms = (time.monotonic() - start) * 1000
        logger.error("Gate command timed out after %ss: %s", timeout_seconds, command)
        return GateResult(ok=False, duration_ms=duration_ms, is_incremental=is_incremental, output="timed out")
    except OSError as exc:
        duration_ms = (time.monotonic() - start) * 1000
        logger.error("Gate command could not start: %s (%s)", command, exc)
        return GateResult(ok=False, duration_ms=duration_ms, is_incremental=is_incremental, output=str(exc))

    duration_ms = (time.monotonic() - start) * 1000
    output = (completed.stdout or "")[-2000:] + (completed.stderr or "")[-500:]
    if completed.returncode != 0:
        logger.warning("Gate command failed (exit %s): %s\n%s", completed.returncode, command, output)
    return GateResult(ok=completed.returncode == 0, duration_ms=duration_ms, is_incremental=is_incremental, output=output)


def command_resolver(
    commands: Mapping[str, str],
    *,
    cwd: Path,
    timeout_seconds: int,
    builtins: Mapping[str, GateRunner] | None = None,
) -> GateRunnerResolver:
    """Resolve steps to configured shell commands.

    An incremental step uses `<name>:incremental` when configured and falls
    back to the full command otherwise (reported as not incremental).
    """
    builtin_runners = dict(builtins or {})

    def resolve(step: GateStep) -> GateRunner | None:
        if step.name in builtin_runners:
            return builtin_runners[step.name]
        command = None
        incremental = False
        if step.mode == "incremental":
            command = commands.get(f"{step.name}:incremental")
            incremental = command is not None
        if command is None:
            command = commands.get(step.name)
        if not command:
            return None
        resolved_command = command
        return lambda: run_shell_gate(
            resolved_command, cwd=cwd, timeout_seconds=timeout_seconds, is_incremental=incremental
        )

    return resolve
