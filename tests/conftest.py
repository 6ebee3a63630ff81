"""Shared pytest fixtures."""

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from config.config_loader import CouncilConfig, PromptsConfig
from quorum.cache import ResponseCache
from quorum.models import FailureKind, ProviderDescriptor, ProviderKind, TaskCategory
from quorum.providers.base import ChunkCallback, Connector, ProviderError
from quorum.registry import ProviderRegistry

SETTINGS_YAML = """\
defaults:
  timeout_sec: 30
  probe_timeout_sec: 1

providers:
  claude-cli:
    kind: local-executable
    command: ["claude", "-p"]
    model: default
  gemini-cli:
    kind: local-executable
    command: ["gemini", "-p"]
    model: default
  ollama:
    kind: local-endpoint
    endpoint: http://localhost:11434
    model: llama3.2
  openai:
    kind: remote-api
    sdk: openai
    model: gpt-4o-mini
    api_key_env: OPENAI_API_KEY
    enabled: false

routing:
  research: gemini-cli
  writing: claude-cli

council:
  enabled: false
  members: [claude-cli, gemini-cli, ollama]
  rounds: 2
  consensus_threshold: 0.7
  synthesizer: claude-cli
  round_timeout_sec: 60

cache:
  enabled: true
  ttl_sec: 3600
  dir: {cache_dir}
"""


def make_descriptor(
    provider_id: str,
    kind: ProviderKind = ProviderKind.LOCAL_EXECUTABLE,
    enabled: bool = True,
    model: str = "fake-model",
    **kwargs,
) -> ProviderDescriptor:
    if kind is ProviderKind.LOCAL_EXECUTABLE and "command" not in kwargs:
        kwargs["command"] = (provider_id,)
    return ProviderDescriptor(id=provider_id, kind=kind, enabled=enabled, model=model, **kwargs)


class FakeConnector(Connector):
    """In-memory connector with a scripted reply, failure or delay."""

    def __init__(
        self,
        provider_id: str,
        reply: str | Callable[[str], str] = "Fake answer",
        fail: FailureKind | None = None,
        delay: float = 0.0,
        enabled: bool = True,
        chunks: list[str] | None = None,
        timeout_sec: float | None = None,
    ) -> None:
        super().__init__(make_descriptor(provider_id, enabled=enabled, timeout_sec=timeout_sec))
        self._reply = reply
        self._fail = fail
        self._delay = delay
        self._chunks = chunks
        self.calls: list[str] = []
        self.cancelled = False

    def streams(self) -> bool:
        return self._chunks is not None

    async def _generate(self, prompt: str, model: str, on_chunk: ChunkCallback | None) -> str:
        self.calls.append(prompt)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self._fail is not None:
            raise ProviderError(self.name(), f"scripted {self._fail.value}", self._fail)
        if self._chunks is not None:
            for chunk in self._chunks:
                if on_chunk is not None:
                    on_chunk(chunk)
            return "".join(self._chunks)
        return self._reply(prompt) if callable(self._reply) else self._reply


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(tmp_path: Path, clock: FakeClock) -> ResponseCache:
    return ResponseCache(tmp_path / "cache", ttl_sec=60.0, clock=clock)


@pytest.fixture
def prompts() -> PromptsConfig:
    return PromptsConfig(
        task="{role}\n\n{request}",
        initial="Answer: {request}",
        refine="Round {round}. Task: {request}\n\nOthers said:\n{previous_responses_anonymized}",
        synthesis="Task: {request}\n\n{rounds} rounds:\n{responses}\n\nSynthesize:",
    )


@pytest.fixture
def council_config() -> CouncilConfig:
    return CouncilConfig(
        enabled=True,
        members=["alpha", "beta", "gamma"],
        rounds=2,
        consensus_threshold=0.9,
        synthesizer=None,
        round_timeout_sec=5.0,
    )


@pytest.fixture
def three_connectors() -> list[FakeConnector]:
    return [
        FakeConnector("alpha", "Answer from alpha"),
        FakeConnector("beta", "Answer from beta"),
        FakeConnector("gamma", "Answer from gamma"),
    ]


@pytest.fixture
def registry(three_connectors: list[FakeConnector]) -> ProviderRegistry:
    return ProviderRegistry(three_connectors)


@pytest.fixture
def routing() -> dict[TaskCategory, str]:
    return {TaskCategory.RESEARCH: "beta", TaskCategory.WRITING: "alpha"}


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(SETTINGS_YAML.format(cache_dir=tmp_path / "cache"), encoding="utf-8")
    return path
