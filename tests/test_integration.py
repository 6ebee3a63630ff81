"""Integration tests. Real provider calls, no fakes. Needs at least one reachable provider."""

import asyncio

import pytest
from dotenv import load_dotenv

from config.config_loader import load_config
from quorum.models import RequestOptions
from quorum.orchestrator import Orchestrator

load_dotenv()

pytestmark = pytest.mark.integration


def _reachable_orchestrator(tmp_path) -> tuple[Orchestrator, list[str]]:
    config = load_config()
    config.cache.dir = tmp_path / "cache"
    orchestrator = Orchestrator.from_config(config)
    health = asyncio.run(orchestrator.registry.probe_all())
    reachable = [pid for pid in orchestrator.registry.enabled_ids() if health.get(pid)]
    if not reachable:
        pytest.skip("No configured provider is reachable")
    return orchestrator, reachable


def test_single_provider_request_then_cache(tmp_path):
    """Answer a short request with a real provider, then serve it from cache."""
    orchestrator, reachable = _reachable_orchestrator(tmp_path)
    options = RequestOptions(provider_override=reachable[0], council_enabled=False)

    first = asyncio.run(orchestrator.run("Reply with the single word: pong", options))
    second = asyncio.run(orchestrator.run("Reply with the single word: pong", options))

    assert first.text
    assert first.provider == reachable[0]
    assert second.cached is True
    assert second.text == first.text


def test_council_request(tmp_path):
    """Run a one-round council across every reachable configured member."""
    orchestrator, reachable = _reachable_orchestrator(tmp_path)
    council = orchestrator._council
    members = [m for m in council.config.members if m in reachable]
    if len(members) < 2:
        pytest.skip(f"Need 2+ reachable council members, found {len(members)}")
    council.config.members = members
    council.config.rounds = 1
    council.config.synthesizer = None

    result = asyncio.run(
        orchestrator.run("Name one benefit of unit tests.", RequestOptions(council_enabled=True, use_cache=False))
    )

    assert result.provider == "council"
    assert result.rounds == 1
    assert result.text
