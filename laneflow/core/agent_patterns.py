"""Agent branch patterns from the shared registry.

Branches matching these globs belong to autonomous agents. The registry is
fetched over HTTP with an explicit timeout and cached for seven days; any
failure falls back to the stale cache and then to the built-in default.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Literal, Sequence

import httpx

from laneflow.config.schema import AgentPatternsConfig
from laneflow.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_AGENT_PATTERNS: tuple[str, ...] = ("agent/*",)
CACHE_TTL_SECONDS = 7 * 24 * 60 * 60
CACHE_FILENAME = "agent-patterns-cache.json"

PatternSource = Literal["override", "config", "registry", "merged", "defaults"]


@dataclass(frozen=True)
class AgentPatternResult:
    patterns: tuple[str, ...]
    source: PatternSource
    registry_fetched: bool = False


def _read_cache(cache_dir: Path) -> tuple[list[str], float] | None:
    path = cache_dir / CACHE_FILENAME
    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        patterns = [str(p) for p in payload["patterns"]]
        return patterns, float(payload["fetched_at"])
    except (OSError, ValueError, KeyError, TypeError) as exc:
        logger.warning("Ignoring unreadable agent pattern cache %s: %s", path, exc)
        return None


def _write_cache(cache_dir: Path, patterns: list[str], version: str | None, now: float) -> None:
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        payload = {"version": version, "patterns": patterns, "fetched_at": now}
        (cache_dir / CACHE_FILENAME).write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not write agent pattern cache in %s: %s", cache_dir, exc)


def _fetch_registry(url: str, timeout_seconds: float, client: httpx.Client | None) -> tuple[list[str], str | None]:
    owned = client is None
    http = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))
    try:
        response = http.get(url, timeout=timeout_seconds)
        response.raise_for_status()
        payload = response.json()
    finally:
        if owned:
            http.close()
    patterns = payload.get("patterns") if isinstance(payload, dict) else None
    if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
        raise ValueError(f"registry at {url} returned no pattern list")
    version = payload.get("version")
    return patterns, str(version) if version is not None else None


def get_agent_patterns(
    *,
    cache_dir: Path,
    registry_url: str,
    timeout_seconds: float = 5.0,
    client: httpx.Client | None = None,
    now: float | None = None,
) -> tuple[list[str], bool]:
    """Return (patterns, fetched) using a fresh cache, the registry, a stale cache or the default."""
    current = time.time() if now is None else now
    cached = _read_cache(cache_dir)
    if cached is not None and current - cached[1] < CACHE_TTL_SECONDS:
        return cached[0], False

    try:
        patterns, version = _fetch_registry(registry_url, timeout_seconds, client)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Agent pattern registry unavailable (%s): %s", registry_url, exc)
        if cached is not None:
            return cached[0], False
        return list(DEFAULT_AGENT_PATTERNS), False

    _write_cache(cache_dir, patterns, version, current)
    return patterns, True


def resolve_agent_patterns(
    config: AgentPatternsConfig,
    *,
    cache_dir: Path,
    client: httpx.Client | None = None,
    now: float | None = None,
) -> AgentPatternResult:
    """Apply override, airgapped and merge modes on top of the registry."""
    if config.override is not None:
        return AgentPatternResult(patterns=tuple(config.override), source="override")

    if config.disable_registry:
        if config.patterns:
            return AgentPatternResult(patterns=tuple(config.patterns), source="config")
        return AgentPatternResult(patterns=DEFAULT_AGENT_PATTERNS, source="defaults")

    registry, fetched = get_agent_patterns(
        cache_dir=cache_dir,
        registry_url=config.registry_url,
        timeout_seconds=config.timeout_seconds,
        client=client,
        now=now,
    )
    if not config.patterns:
        return AgentPatternResult(patterns=tuple(registry), source="registry", registry_fetched=fetched)
    merged = list(config.patterns) + [p for p in registry if p not in config.patterns]
    return AgentPatternResult(patterns=tuple(merged), source="merged", registry_fetched=fetched)


def is_agent_branch(branch: str | None, patterns: Sequence[str]) -> bool:
    if not branch:
        return False
    return any(fnmatchcase(branch, pattern) for pattern in patterns)
