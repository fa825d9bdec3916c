"""Roster resolution: parse the requested agent list, disambiguate repeats,
and run concurrent availability checks on the distinct backend types."""

import asyncio
import logging
from collections import Counter

from battle.backends.base import Backend
from battle.errors import BackendUnavailable, RosterInvalid
from battle.models import AgentIdentity
from battle.registry import AgentRegistry

logger = logging.getLogger(__name__)

MIN_ROSTER_SIZE = 2


def parse_roster(spec: str | list[str]) -> list[str]:
    """Split a comma-separated roster string into trimmed base names, keeping repeats."""
    raw = spec.split(",") if isinstance(spec, str) else spec
    return [name.strip() for name in raw if name.strip()]


def disambiguate(names: list[str]) -> list[AgentIdentity]:
    """Give repeated base names suffixes _1.._k; names that occur once stay bare."""
    totals = Counter(names)
    seen: Counter[str] = Counter()
    roster: list[AgentIdentity] = []
    for name in names:
        if totals[name] > 1:
            seen[name] += 1
            roster.append(AgentIdentity(name, seen[name]))
        else:
            roster.append(AgentIdentity(name))
    return roster


async def _check_one(name: str, backend: Backend) -> tuple[str, bool, str]:
    """Check a single backend. Returns (name, ok, diagnostic)."""
    try:
        ok, diagnostic = await backend.availability_check()
    except Exception as exc:
        return name, False, str(exc)
    return name, ok, diagnostic


async def run_availability_checks(
    backends: dict[str, Backend],
) -> dict[str, tuple[bool, str]]:
    """Check all backends in parallel and wait for every one of them.

    Returns:
        Dict mapping backend name -> (ok, diagnostic).
        diagnostic is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, b) for n, b in backends.items()))
    return {name: (ok, err) for name, ok, err in results}


async def resolve_roster(
    spec: str | list[str],
    registry: AgentRegistry,
    extra_backends: list[str] | None = None,
    check_availability: bool = True,
) -> list[AgentIdentity]:
    """Resolve a roster string into ordered, disambiguated identities.

    Args:
        spec: Comma-separated names ("claude,claude,codex") or a list of names.
        registry: Registry the names are looked up in.
        extra_backends: Additional base names to check alongside the roster
            (e.g. a referee that does not take part in the discussion).
        check_availability: Skip the concurrent availability checks when False.

    Raises:
        RosterInvalid: Unregistered name, or fewer than 2 identities.
        BackendUnavailable: A backend failed to build or its check failed.
    """
    names = parse_roster(spec)
    for name in names + list(extra_backends or []):
        registry.ensure_registered(name)

    roster = disambiguate(names)
    if len(roster) < MIN_ROSTER_SIZE:
        raise RosterInvalid(
            f"At least {MIN_ROSTER_SIZE} agents are needed for a discussion, got {len(roster)}. "
            f"Registered: {', '.join(registry.names())}"
        )

    distinct = list(dict.fromkeys(names + list(extra_backends or [])))
    backends = {name: registry.get(name) for name in distinct}

    if check_availability:
        logger.info("Checking %d backend(s) concurrently: %s", len(backends), ", ".join(backends))
        results = await run_availability_checks(backends)
        for name in distinct:
            ok, diagnostic = results[name]
            if not ok:
                raise BackendUnavailable(name, diagnostic or "unknown error")
            logger.info("Backend available: %s", name)

    return roster
