"""Unit tests for quorum/healthcheck.py. No real provider calls."""

from unittest.mock import AsyncMock

from quorum.healthcheck import run_health_checks
from quorum.registry import ProviderRegistry
from tests.conftest import FakeConnector


async def test_all_providers_pass():
    """All probes succeed -> all marked ok, no detail."""
    registry = ProviderRegistry([FakeConnector("claude-cli"), FakeConnector("gemini-cli")])
    registry.probe = AsyncMock(return_value=True)

    results = await run_health_checks(registry)

    assert results == {"claude-cli": (True, ""), "gemini-cli": (True, "")}


async def test_failed_probe_has_hint():
    registry = ProviderRegistry([FakeConnector("claude-cli"), FakeConnector("gemini-cli")])
    registry.probe = AsyncMock(side_effect=lambda pid: pid == "claude-cli")

    results = await run_health_checks(registry)

    assert results["claude-cli"] == (True, "")
    assert results["gemini-cli"] == (False, "executable not on PATH")


async def test_disabled_provider_not_probed():
    registry = ProviderRegistry([FakeConnector("claude-cli"), FakeConnector("openai", enabled=False)])
    registry.probe = AsyncMock(return_value=True)

    results = await run_health_checks(registry)

    assert results["openai"] == (False, "disabled")
    registry.probe.assert_awaited_once_with("claude-cli")


async def test_probe_exception_reported():
    registry = ProviderRegistry([FakeConnector("ollama")])
    registry.probe = AsyncMock(side_effect=OSError("socket exploded"))

    results = await run_health_checks(registry)

    assert results["ollama"] == (False, "socket exploded")


async def test_results_keep_registry_order():
    registry = ProviderRegistry([FakeConnector(pid) for pid in ("c", "a", "b")])
    registry.probe = AsyncMock(return_value=True)

    results = await run_health_checks(registry)

    assert list(results) == ["c", "a", "b"]
