"""OpenAI and OpenAI-compatible APIs via the openai SDK, streamed."""

import logging

import openai
from openai import AsyncOpenAI

from config.config_loader import resolve_api_key
from quorum.models import FailureKind, ProviderDescriptor
from quorum.providers.base import DEFAULT_TIMEOUT_SEC, ChunkCallback, Connector, ProviderError

logger = logging.getLogger(__name__)


class OpenAIConnector(Connector):
    """OpenAI chat completions. ``endpoint`` selects a compatible API (xAI, DeepSeek, ...)."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        default_timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        client: AsyncOpenAI | None = None,
    ) -> None:
        super().__init__(descriptor, default_timeout_sec)
        self._client = client
        if self._client is None:
            api_key = resolve_api_key(descriptor.api_key_env)
            if api_key:
                self._client = AsyncOpenAI(api_key=api_key, base_url=descriptor.endpoint or None, max_retries=0)

    def streams(self) -> bool:
        return True

    async def _generate(self, prompt: str, model: str, on_chunk: ChunkCallback | None) -> str:
        name = self.name()
        if self._client is None:
            raise ProviderError(name, f"Missing API key: {self.descriptor.api_key_env}", FailureKind.PERMISSION_DENIED)

        kwargs = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.descriptor.max_tokens,
            "stream": True,
        }
        if self.descriptor.temperature is not None:
            kwargs["temperature"] = self.descriptor.temperature

        parts: list[str] = []
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async with stream:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta.content
                    if delta:
                        parts.append(delta)
                        if on_chunk is not None:
                            on_chunk(delta)
        except openai.APITimeoutError as exc:
            raise TimeoutError(f"{name} request timed out") from exc
        except openai.RateLimitError as exc:
            raise ProviderError(name, f"Rate limited: {exc.message}", FailureKind.RATE_LIMITED) from exc
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise ProviderError(name, f"Access denied: {exc.message}", FailureKind.PERMISSION_DENIED) from exc
        except openai.NotFoundError as exc:
            raise ProviderError(name, f"Not found: {exc.message}", FailureKind.NOT_FOUND) from exc
        except openai.APIConnectionError as exc:
            raise ProviderError(name, f"Connection failed: {exc.message}", FailureKind.NETWORK_ERROR) from exc
        except openai.APIStatusError as exc:
            raise ProviderError(name, f"HTTP {exc.status_code}: {exc.message}", FailureKind.NETWORK_ERROR) from exc
        except openai.APIError as exc:
            raise ProviderError(name, f"Invalid response: {exc.message}", FailureKind.MALFORMED_RESPONSE) from exc

        return "".join(parts)
