"""Provider health checks: probe every registered provider before a session."""

import asyncio
import logging

from quorum.models import ProviderKind
from quorum.registry import ProviderRegistry

logger = logging.getLogger(__name__)

_FAILURE_HINTS = {
    ProviderKind.LOCAL_EXECUTABLE: "executable not on PATH",
    ProviderKind.LOCAL_ENDPOINT: "endpoint not reachable",
    ProviderKind.REMOTE_API: "missing credential or API host unreachable",
}


async def _check_one(registry: ProviderRegistry, provider_id: str) -> tuple[str, bool, str]:
    """Probe a single provider. Returns (id, ok, detail)."""
    descriptor = registry.descriptor(provider_id)
    if not descriptor.enabled:
        return provider_id, False, "disabled"
    try:
        ok = await registry.probe(provider_id)
    except Exception as exc:
        logger.warning("Probe for %s raised: %s", provider_id, exc)
        return provider_id, False, str(exc)
    return provider_id, ok, "" if ok else _FAILURE_HINTS[descriptor.kind]


async def run_health_checks(registry: ProviderRegistry) -> dict[str, tuple[bool, str]]:
    """Probe all providers in parallel.

    Returns:
        Dict mapping provider id -> (ok, detail), in registry order.
        detail is "" when ok is True.
    """
    ids = [d.id for d in registry.list()]
    results = await asyncio.gather(*(_check_one(registry, pid) for pid in ids))
    return {pid: (ok, detail) for pid, ok, detail in results}
