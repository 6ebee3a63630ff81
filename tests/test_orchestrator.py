"""Tests for quorum/orchestrator.py."""

import asyncio
import sys
from pathlib import Path

import pytest

from config.config_loader import load_config
from quorum.cache import ResponseCache
from quorum.council import Council
from quorum.errors import AllProvidersUnavailable, DeliberationFailed, RequestCancelled, UnknownProvider
from quorum.models import FailureKind, RequestOptions, StreamEvent, TaskCategory
from quorum.orchestrator import Orchestrator
from quorum.providers.cli import CliConnector
from quorum.registry import ProviderRegistry
from quorum.router import TaskRouter
from tests.conftest import FakeConnector, make_descriptor


def _orchestrator(connectors, cache, routing=None, council_config=None, prompts=None) -> Orchestrator:
    registry = ProviderRegistry(connectors)
    router = TaskRouter(registry, routing or {}, prompts)
    council = Council(registry, council_config, prompts, cache=cache) if council_config else None
    return Orchestrator(
        registry,
        router,
        cache,
        council,
        council_enabled=bool(council_config and council_config.enabled),
    )


async def test_second_identical_request_is_cached(cache):
    alpha = FakeConnector("alpha", "Jazz began in New Orleans.")
    orchestrator = _orchestrator([alpha], cache)

    first = await orchestrator.run("research the history of jazz")
    second = await orchestrator.run("research the history of jazz")

    assert first.cached is False
    assert second.cached is True
    assert second.text == first.text
    assert second.provider == "alpha"
    assert len(alpha.calls) == 1


async def test_request_after_ttl_is_fresh(cache, clock):
    alpha = FakeConnector("alpha", "answer")
    orchestrator = _orchestrator([alpha], cache)

    await orchestrator.run("hello there")
    clock.advance(61)
    result = await orchestrator.run("hello there")

    assert result.cached is False
    assert len(alpha.calls) == 2


async def test_whitespace_variants_share_cache_entry(cache):
    alpha = FakeConnector("alpha", "answer")
    orchestrator = _orchestrator([alpha], cache)

    await orchestrator.run("hello   there")
    result = await orchestrator.run("  hello there ")

    assert result.cached is True


async def test_fallback_chain_reaches_third_provider(cache):
    connectors = [
        FakeConnector("a", fail=FailureKind.NOT_FOUND),
        FakeConnector("b", fail=FailureKind.RATE_LIMITED),
        FakeConnector("c", "answer from c"),
    ]
    orchestrator = _orchestrator(connectors, cache)

    result = await orchestrator.run("hello")

    assert result.provider == "c"
    assert result.text == "answer from c"
    assert [a.provider for a in result.attempts] == ["a", "b", "c"]
    assert [len(c.calls) for c in connectors] == [1, 1, 1]


async def test_fallback_stops_at_first_success(cache):
    connectors = [FakeConnector("a", "first"), FakeConnector("b", "second")]
    orchestrator = _orchestrator(connectors, cache)

    result = await orchestrator.run("hello")

    assert result.provider == "a"
    assert connectors[1].calls == []


async def test_timeout_falls_back(cache):
    connectors = [FakeConnector("slow", delay=5.0, timeout_sec=0.05), FakeConnector("fast", "quick")]
    orchestrator = _orchestrator(connectors, cache)

    result = await orchestrator.run("hello")

    assert result.provider == "fast"
    assert result.attempts[0].outcome.ok is False


async def test_exhausted_chain_raises_and_skips_cache(cache):
    connectors = [
        FakeConnector("a", fail=FailureKind.NOT_FOUND),
        FakeConnector("b", fail=FailureKind.PROCESS_EXIT_NONZERO),
    ]
    orchestrator = _orchestrator(connectors, cache)

    with pytest.raises(AllProvidersUnavailable) as exc_info:
        await orchestrator.run("hello")

    assert "a: not-found" in str(exc_info.value)
    assert "b: process-exit-nonzero" in str(exc_info.value)
    assert cache.stats().total_entries == 0


async def test_no_enabled_providers_raises(cache):
    orchestrator = _orchestrator([FakeConnector("a", enabled=False)], cache)
    with pytest.raises(AllProvidersUnavailable):
        await orchestrator.run("hello")


async def test_routing_default_heads_the_chain(cache, routing):
    connectors = [FakeConnector("alpha", "A"), FakeConnector("beta", "B"), FakeConnector("gamma", "C")]
    orchestrator = _orchestrator(connectors, cache, routing)

    result = await orchestrator.run("research the history of jazz")

    assert result.category is TaskCategory.RESEARCH
    assert result.provider == "beta"


async def test_task_hint_skips_classification(cache, routing):
    connectors = [FakeConnector("alpha", "A"), FakeConnector("beta", "B")]
    orchestrator = _orchestrator(connectors, cache, routing)

    result = await orchestrator.run("hello", RequestOptions(task_hint=TaskCategory.RESEARCH))

    assert result.category is TaskCategory.RESEARCH
    assert result.provider == "beta"


async def test_connector_receives_role_prompt(cache, prompts):
    alpha = FakeConnector("alpha", "A")
    orchestrator = _orchestrator([alpha], cache, prompts=prompts)

    await orchestrator.run("write a haiku")

    assert alpha.calls[0] == "You are a skilled writer. Create clear, engaging content.\n\nwrite a haiku"


async def test_provider_override(cache):
    connectors = [FakeConnector("alpha", "A"), FakeConnector("beta", fail=FailureKind.NETWORK_ERROR)]
    orchestrator = _orchestrator(connectors, cache)

    with pytest.raises(AllProvidersUnavailable):
        await orchestrator.run("hello", RequestOptions(provider_override="beta"))
    assert connectors[0].calls == []


async def test_unknown_override_raises(cache):
    orchestrator = _orchestrator([FakeConnector("alpha")], cache)
    with pytest.raises(UnknownProvider):
        await orchestrator.run("hello", RequestOptions(provider_override="grok"))


async def test_empty_request_rejected(cache):
    orchestrator = _orchestrator([FakeConnector("alpha")], cache)
    with pytest.raises(ValueError):
        orchestrator.submit("   ")


async def test_use_cache_false_neither_reads_nor_writes(cache):
    alpha = FakeConnector("alpha", "answer")
    orchestrator = _orchestrator([alpha], cache)

    await orchestrator.run("hello", RequestOptions(use_cache=False))
    await orchestrator.run("hello", RequestOptions(use_cache=False))

    assert len(alpha.calls) == 2
    assert cache.stats().total_entries == 0


async def test_cache_io_errors_degrade(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    alpha = FakeConnector("alpha", "still answered")
    orchestrator = _orchestrator([alpha], ResponseCache(blocker / "cache"))

    result = await orchestrator.run("hello")

    assert result.text == "still answered"
    assert result.cached is False


async def test_streaming_events(cache):
    alpha = FakeConnector("alpha", chunks=["Hel", "lo"])
    orchestrator = _orchestrator([alpha], cache)
    events: list[StreamEvent] = []

    result = await orchestrator.run("hello", on_event=events.append)

    assert [(e.kind, e.text) for e in events] == [("chunk", "Hel"), ("chunk", "lo"), ("result", "Hello")]
    assert result.text == "Hello"


async def test_non_streaming_answer_sent_as_one_chunk(cache):
    orchestrator = _orchestrator([FakeConnector("alpha", "whole answer")], cache)
    events: list[StreamEvent] = []

    await orchestrator.run("hello", on_event=events.append)

    assert [e.kind for e in events] == ["chunk", "result"]
    assert events[0].text == "whole answer"


async def test_attempt_failed_event(cache):
    connectors = [FakeConnector("a", fail=FailureKind.RATE_LIMITED), FakeConnector("b", "ok")]
    orchestrator = _orchestrator(connectors, cache)
    events: list[StreamEvent] = []

    await orchestrator.run("hello", on_event=events.append)

    failed = [e for e in events if e.kind == "attempt_failed"]
    assert len(failed) == 1
    assert failed[0].provider == "a"
    assert "rate-limited" in failed[0].text


async def test_handle_events_then_result(cache):
    orchestrator = _orchestrator([FakeConnector("alpha", "answer")], cache)
    handle = orchestrator.submit("hello")

    kinds = [event.kind async for event in handle.events()]
    result = await handle.result()

    assert kinds == ["chunk", "result"]
    assert result.text == "answer"
    assert handle.done is True


async def test_cancel_kills_call_and_skips_cache(cache):
    slow = FakeConnector("slow", "never", delay=5.0)
    orchestrator = _orchestrator([slow], cache)

    handle = orchestrator.submit("hello")
    await asyncio.sleep(0.05)
    handle.cancel()

    with pytest.raises(RequestCancelled):
        await handle.result()
    assert slow.cancelled is True
    assert cache.stats().total_entries == 0


async def test_requests_are_independent(cache):
    orchestrator = _orchestrator([FakeConnector("alpha", lambda prompt: prompt.split()[-1])], cache)

    first, second = await asyncio.gather(
        orchestrator.run("say one", RequestOptions(use_cache=False)),
        orchestrator.run("say two", RequestOptions(use_cache=False)),
    )

    assert first.text == "one"
    assert second.text == "two"


async def test_council_result_and_cache(cache, council_config, prompts):
    council_config.rounds = 1
    connectors = [
        FakeConnector("alpha", "Answer A"),
        FakeConnector("beta", "Answer B"),
        FakeConnector("gamma", "Answer C"),
    ]
    orchestrator = _orchestrator(connectors, cache, council_config=council_config, prompts=prompts)
    events: list[StreamEvent] = []

    result = await orchestrator.run("Which is better?", on_event=events.append)

    assert result.provider == "council"
    assert result.rounds == 1
    assert result.degraded is False
    assert any(e.kind == "round_complete" and e.round_index == 1 for e in events)
    # Three staged member answers plus the final answer.
    assert cache.stats().total_entries == 4

    again = await orchestrator.run("Which is better?")
    assert again.cached is True
    assert again.provider == "council"


async def test_council_failure_writes_nothing(cache, council_config, prompts):
    connectors = [FakeConnector(pid, fail=FailureKind.NETWORK_ERROR) for pid in ("alpha", "beta", "gamma")]
    orchestrator = _orchestrator(connectors, cache, council_config=council_config, prompts=prompts)

    with pytest.raises(DeliberationFailed):
        await orchestrator.run("Which is better?")
    assert cache.stats().total_entries == 0


async def test_council_can_be_disabled_per_request(cache, council_config, prompts):
    connectors = [FakeConnector("alpha", "A"), FakeConnector("beta", "B"), FakeConnector("gamma", "C")]
    orchestrator = _orchestrator(connectors, cache, council_config=council_config, prompts=prompts)

    result = await orchestrator.run("hello", RequestOptions(council_enabled=False))

    assert result.provider == "alpha"
    assert len(connectors[1].calls) == 0


async def test_provider_override_bypasses_council(cache, council_config, prompts):
    connectors = [FakeConnector("alpha", "A"), FakeConnector("beta", "B"), FakeConnector("gamma", "C")]
    orchestrator = _orchestrator(connectors, cache, council_config=council_config, prompts=prompts)

    result = await orchestrator.run("hello", RequestOptions(provider_override="gamma"))

    assert result.provider == "gamma"


def test_from_config_wires_components(settings_file):
    orchestrator = Orchestrator.from_config(load_config(settings_file))
    assert "claude-cli" in orchestrator.registry
    assert orchestrator.router.default_for(TaskCategory.RESEARCH) == "gemini-cli"
    assert orchestrator.cache.directory == settings_file.parent / "cache"


async def test_fallback_answer_not_served_to_other_provider(cache):
    a = FakeConnector("a", "answer from a", fail=FailureKind.NETWORK_ERROR)
    c = FakeConnector("c", "answer from c")
    orchestrator = _orchestrator([a, c], cache)

    first = await orchestrator.run("hello")
    assert first.provider == "c"

    a._fail = None
    result = await orchestrator.run("hello", RequestOptions(provider_override="a"))

    assert result.provider == "a"
    assert result.text == "answer from a"
    assert result.cached is False
    assert len(a.calls) == 2


async def test_cache_hit_on_later_plan_member(cache):
    a = FakeConnector("a", "answer from a", fail=FailureKind.NETWORK_ERROR)
    c = FakeConnector("c", "answer from c")
    orchestrator = _orchestrator([a, c], cache)

    await orchestrator.run("hello")
    result = await orchestrator.run("hello")

    assert result.cached is True
    assert result.provider == "c"
    assert len(c.calls) == 1


async def test_unexpected_connector_error_falls_back(cache):
    bad = CliConnector(make_descriptor("bad", command=(sys.executable, "-c", "pass")))
    good = FakeConnector("good", "still answered")
    orchestrator = _orchestrator([bad, good], cache)

    result = await orchestrator.run("hello\x00world")

    assert result.provider == "good"
    assert result.attempts[0].outcome.kind is FailureKind.NETWORK_ERROR
    assert "Unexpected error" in result.attempts[0].outcome.message
    assert len(good.calls) == 1
