"""Risk classifier: tier a change set by the paths it touches."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Literal

RiskTierName = Literal["docs-only", "standard", "high-risk"]

DOCS_ONLY: RiskTierName = "docs-only"
STANDARD: RiskTierName = "standard"
HIGH_RISK: RiskTierName = "high-risk"

# Test selectors that always run, whatever the tier.
SAFETY_CRITICAL_TEST_PATTERNS: tuple[str, ...] = (
    "**/*red-flag*",
    "**/*RedFlag*",
    "**/phi/**",
    "**/*PHI*",
    "**/*.phi.*",
    "**/*escalation*",
    "**/*Escalation*",
    "**/*privacyDetector*",
    "**/*constitutionalEnforcer*",
    "**/*safePromptWrapper*",
)

_SAFETY_CRITICAL_TEST_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"red-?flag", re.IGNORECASE),
    re.compile(r"(^|[/._-])phi([/._-]|$)", re.IGNORECASE),
    re.compile(r"PHI[A-Z]"),
    re.compile(r"escalation", re.IGNORECASE),
    re.compile(r"privacyDetector"),
    re.compile(r"constitutionalEnforcer"),
    re.compile(r"safePromptWrapper"),
)

HIGH_RISK_PATH_PATTERNS: tuple[str, ...] = (
    r"(^|/)auth/",
    r"(^|/)phi/",
    r"(^|/)rls/",
    r"(^|/)polic(y|ies)/",
)
_HIGH_RISK_PATH_RES = tuple(re.compile(pattern, re.IGNORECASE) for pattern in HIGH_RISK_PATH_PATTERNS)

_MIGRATION_DIR_RE = re.compile(r"(^|/)migrations/")
_MIGRATION_KEYWORD_RE = re.compile(r"polic(y|ies)|enable_rls|row_level_security|(^|[_-])rls([_.-]|$)", re.IGNORECASE)

DOCS_PATH_PATTERNS: tuple[str, ...] = (
    r"^memory-bank/",
    r"^docs/",
    r"\.md$",
    r"^\.claude/",
    r"^ai/",
    r"^README\.md$",
    r"^CLAUDE\.md$",
)
_DOCS_PATH_RES = tuple(re.compile(pattern, re.IGNORECASE) for pattern in DOCS_PATH_PATTERNS)


@dataclass(frozen=True)
class RiskAssessment:
    tier: RiskTierName
    safety_critical_patterns: tuple[str, ...]
    high_risk_paths: tuple[str, ...]
    is_docs_only: bool
    should_run_integration: bool


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def is_docs_path(path: str) -> bool:
    normalized = normalize_path(path)
    return any(pattern.search(normalized) for pattern in _DOCS_PATH_RES)


def is_safety_critical_test(path: str) -> bool:
    normalized = normalize_path(path)
    return any(pattern.search(normalized) for pattern in _SAFETY_CRITICAL_TEST_RES)


def is_high_risk_path(path: str) -> bool:
    """Auth/PHI/RLS/policy directories. Migrations are judged by filename, not here."""
    normalized = normalize_path(path)
    return any(pattern.search(normalized) for pattern in _HIGH_RISK_PATH_RES)


def is_high_risk_migration(path: str) -> bool:
    """A migration file whose name mentions policies or row-level security."""
    normalized = normalize_path(path)
    if not _MIGRATION_DIR_RE.search(normalized):
        return False
    filename = normalized.rsplit("/", 1)[-1]
    return bool(_MIGRATION_KEYWORD_RE.search(filename))


def classify(changed_paths: Iterable[str] | None) -> RiskAssessment:
    """Tier a change set. An empty or missing list is docs-only."""
    paths = [normalize_path(path) for path in (changed_paths or ()) if path]

    high_risk_paths = tuple(path for path in paths if is_high_risk_path(path) or is_high_risk_migration(path))
    docs_only = all(is_docs_path(path) for path in paths)

    if high_risk_paths:
        tier = HIGH_RISK
    elif docs_only:
        tier = DOCS_ONLY
    else:
        tier = STANDARD

    return RiskAssessment(
        tier=tier,
        safety_critical_patterns=SAFETY_CRITICAL_TEST_PATTERNS,
        high_risk_paths=high_risk_paths,
        is_docs_only=tier == DOCS_ONLY,
        should_run_integration=tier == HIGH_RISK,
    )
