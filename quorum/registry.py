"""Provider registry: which connectors exist, which are enabled, and which are reachable."""

import asyncio
import contextlib
import logging
import shutil
from collections.abc import Iterable
from urllib.parse import urlsplit

from config.config_loader import AppConfig, resolve_api_key
from quorum.errors import UnknownProvider
from quorum.models import ProviderDescriptor, ProviderKind
from quorum.providers.anthropic import AnthropicConnector
from quorum.providers.base import DEFAULT_TIMEOUT_SEC, Connector
from quorum.providers.cli import CliConnector
from quorum.providers.gemini import GeminiConnector
from quorum.providers.ollama import OllamaConnector
from quorum.providers.openai_provider import OpenAIConnector

logger = logging.getLogger(__name__)

CONNECTOR_CLASSES: dict[tuple[ProviderKind, str | None], type[Connector]] = {
    (ProviderKind.LOCAL_EXECUTABLE, None): CliConnector,
    (ProviderKind.LOCAL_ENDPOINT, None): OllamaConnector,
    (ProviderKind.REMOTE_API, "openai"): OpenAIConnector,
    (ProviderKind.REMOTE_API, "anthropic"): AnthropicConnector,
    (ProviderKind.REMOTE_API, "gemini"): GeminiConnector,
}

_DEFAULT_API_HOSTS = {
    "openai": "api.openai.com",
    "anthropic": "api.anthropic.com",
    "gemini": "generativelanguage.googleapis.com",
}


def build_connector(descriptor: ProviderDescriptor, default_timeout_sec: float = DEFAULT_TIMEOUT_SEC) -> Connector:
    """Instantiate the connector class for a descriptor.

    Raises:
        ValueError: If no connector handles the descriptor's kind/sdk pair.
    """
    sdk = descriptor.sdk if descriptor.kind is ProviderKind.REMOTE_API else None
    cls = CONNECTOR_CLASSES.get((descriptor.kind, sdk))
    if cls is None:
        raise ValueError(f"No connector for provider '{descriptor.id}' ({descriptor.kind.value}, sdk={sdk})")
    return cls(descriptor, default_timeout_sec)


async def _tcp_reachable(host: str, port: int, timeout: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, TimeoutError) as exc:
        logger.debug("TCP probe %s:%d failed: %s", host, port, exc)
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


def _host_port(url: str, default_port: int) -> tuple[str, int] | None:
    parts = urlsplit(url if "://" in url else f"http://{url}")
    if not parts.hostname:
        return None
    port = parts.port or (443 if parts.scheme == "https" else default_port)
    return parts.hostname, port


class ProviderRegistry:
    """Read-only set of connectors for one session.

    Insertion order is the registry order used for fallback chains.
    Reconfiguration means building a new registry.
    """

    def __init__(self, connectors: Iterable[Connector], probe_timeout_sec: float = 2.0) -> None:
        self._connectors: dict[str, Connector] = {}
        for connector in connectors:
            provider_id = connector.name()
            if provider_id in self._connectors:
                raise ValueError(f"Duplicate provider id: {provider_id}")
            self._connectors[provider_id] = connector
        self._probe_timeout_sec = probe_timeout_sec

    @classmethod
    def from_config(cls, config: AppConfig) -> "ProviderRegistry":
        connectors = [
            build_connector(provider.to_descriptor(), config.defaults.timeout_sec)
            for provider in config.providers.values()
        ]
        registry = cls(connectors, probe_timeout_sec=config.defaults.probe_timeout_sec)
        logger.info("Registry built: %s enabled", ", ".join(registry.enabled_ids()) or "none")
        return registry

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._connectors

    def __len__(self) -> int:
        return len(self._connectors)

    def descriptors(self) -> list[ProviderDescriptor]:
        return [c.descriptor for c in self._connectors.values()]

    def descriptor(self, provider_id: str) -> ProviderDescriptor:
        connector = self._connectors.get(provider_id)
        if connector is None:
            raise UnknownProvider(provider_id)
        return connector.descriptor

    def enabled_ids(self) -> list[str]:
        return [pid for pid, c in self._connectors.items() if c.descriptor.enabled]

    def is_enabled(self, provider_id: str) -> bool:
        connector = self._connectors.get(provider_id)
        return connector is not None and connector.descriptor.enabled

    def resolve(self, provider_id: str) -> Connector:
        """Return the connector for an enabled provider.

        Raises:
            UnknownProvider: If the id is not registered or the provider is disabled.
        """
        connector = self._connectors.get(provider_id)
        if connector is None:
            raise UnknownProvider(provider_id)
        if not connector.descriptor.enabled:
            raise UnknownProvider(provider_id, "disabled")
        return connector

    async def probe(self, provider_id: str) -> bool:
        """Cheap reachability check. Never sends a prompt.

        local-executable: the executable is on PATH.
        local-endpoint: a TCP connection to the endpoint succeeds.
        remote-api: a credential is configured and the API host accepts TCP.
        """
        d = self.descriptor(provider_id)
        timeout = self._probe_timeout_sec

        if d.kind is ProviderKind.LOCAL_EXECUTABLE:
            return bool(d.command) and shutil.which(d.command[0]) is not None

        if d.kind is ProviderKind.LOCAL_ENDPOINT:
            target = _host_port(d.endpoint or "", 80)
            return target is not None and await _tcp_reachable(*target, timeout)

        if not resolve_api_key(d.api_key_env):
            return False
        url = d.endpoint or f"https://{_DEFAULT_API_HOSTS.get(d.sdk or '', '')}"
        target = _host_port(url, 443)
        return target is not None and await _tcp_reachable(*target, timeout)

    async def probe_all(self) -> dict[str, bool]:
        ids = list(self._connectors)
        results = await asyncio.gather(*(self.probe(pid) for pid in ids))
        return dict(zip(ids, results))

    # Defined last so the annotations above still see the builtin.
    def list(self) -> "list[ProviderDescriptor]":
        return self.descriptors()
