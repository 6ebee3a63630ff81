"""Ollama local inference endpoint, streamed over httpx."""

import json
import logging
from typing import Any

import httpx

from quorum.models import FailureKind, ProviderDescriptor
from quorum.providers.base import DEFAULT_TIMEOUT_SEC, ChunkCallback, Connector, ProviderError

logger = logging.getLogger(__name__)


def _status_kind(status: int) -> FailureKind:
    if status == 404:
        return FailureKind.NOT_FOUND
    if status in (401, 403):
        return FailureKind.PERMISSION_DENIED
    if status == 429:
        return FailureKind.RATE_LIMITED
    return FailureKind.NETWORK_ERROR


class OllamaConnector(Connector):
    """Calls ``POST /api/generate`` with ``stream: true`` and joins the chunks."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        default_timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(descriptor, default_timeout_sec)
        self._base_url = (descriptor.endpoint or "http://localhost:11434").rstrip("/")
        self._transport = transport

    def streams(self) -> bool:
        return True

    def _payload(self, prompt: str, model: str) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.descriptor.temperature is not None:
            options["temperature"] = self.descriptor.temperature
        if self.descriptor.max_tokens:
            options["num_predict"] = self.descriptor.max_tokens
        return {"model": model, "prompt": prompt, "stream": True, "options": options}

    async def _generate(self, prompt: str, model: str, on_chunk: ChunkCallback | None) -> str:
        name = self.name()
        parts: list[str] = []
        try:
            # The overall bound comes from Connector.invoke; httpx only guards the connect.
            timeout = httpx.Timeout(None, connect=10.0)
            async with httpx.AsyncClient(base_url=self._base_url, timeout=timeout, transport=self._transport) as client:
                async with client.stream("POST", "/api/generate", json=self._payload(prompt, model)) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")[:200]
                        raise ProviderError(name, f"HTTP {resp.status_code}: {body}", _status_kind(resp.status_code))

                    async for line in resp.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError as exc:
                            raise ProviderError(name, f"Invalid JSON chunk: {line[:80]}", FailureKind.MALFORMED_RESPONSE) from exc
                        if not isinstance(data, dict):
                            raise ProviderError(name, "Unexpected chunk shape", FailureKind.MALFORMED_RESPONSE)
                        if "error" in data:
                            message = str(data["error"])
                            kind = FailureKind.NOT_FOUND if "not found" in message.lower() else FailureKind.NETWORK_ERROR
                            raise ProviderError(name, message, kind)

                        piece = data.get("response")
                        if piece is None and not data.get("done"):
                            raise ProviderError(name, "Chunk without 'response' field", FailureKind.MALFORMED_RESPONSE)
                        if piece:
                            parts.append(piece)
                            if on_chunk is not None:
                                on_chunk(piece)
                        if data.get("done"):
                            break
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"{name} request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(name, f"Connection failed: {exc}", FailureKind.NETWORK_ERROR) from exc

        logger.debug("%s streamed %d chunks", name, len(parts))
        return "".join(parts)
