"""Anthropic Claude API via the anthropic SDK, streamed."""

import logging

import anthropic as anthropic_sdk

from config.config_loader import resolve_api_key
from quorum.models import FailureKind, ProviderDescriptor
from quorum.providers.base import DEFAULT_TIMEOUT_SEC, ChunkCallback, Connector, ProviderError

logger = logging.getLogger(__name__)


class AnthropicConnector(Connector):
    """Anthropic messages API."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        default_timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        client: anthropic_sdk.AsyncAnthropic | None = None,
    ) -> None:
        super().__init__(descriptor, default_timeout_sec)
        self._client = client
        if self._client is None:
            api_key = resolve_api_key(descriptor.api_key_env)
            if api_key:
                kwargs = {"api_key": api_key, "max_retries": 0}
                if descriptor.endpoint:
                    kwargs["base_url"] = descriptor.endpoint
                self._client = anthropic_sdk.AsyncAnthropic(**kwargs)

    def streams(self) -> bool:
        return True

    async def _generate(self, prompt: str, model: str, on_chunk: ChunkCallback | None) -> str:
        name = self.name()
        if self._client is None:
            raise ProviderError(name, f"Missing API key: {self.descriptor.api_key_env}", FailureKind.PERMISSION_DENIED)

        kwargs = {
            "model": model,
            "max_tokens": self.descriptor.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.descriptor.temperature is not None:
            kwargs["temperature"] = self.descriptor.temperature

        parts: list[str] = []
        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if text:
                        parts.append(text)
                        if on_chunk is not None:
                            on_chunk(text)
        except anthropic_sdk.APITimeoutError as exc:
            raise TimeoutError(f"{name} request timed out") from exc
        except anthropic_sdk.RateLimitError as exc:
            raise ProviderError(name, f"Rate limited: {exc.message}", FailureKind.RATE_LIMITED) from exc
        except (anthropic_sdk.AuthenticationError, anthropic_sdk.PermissionDeniedError) as exc:
            raise ProviderError(name, f"Access denied: {exc.message}", FailureKind.PERMISSION_DENIED) from exc
        except anthropic_sdk.NotFoundError as exc:
            raise ProviderError(name, f"Not found: {exc.message}", FailureKind.NOT_FOUND) from exc
        except anthropic_sdk.APIConnectionError as exc:
            raise ProviderError(name, f"Connection failed: {exc.message}", FailureKind.NETWORK_ERROR) from exc
        except anthropic_sdk.APIStatusError as exc:
            raise ProviderError(name, f"HTTP {exc.status_code}: {exc.message}", FailureKind.NETWORK_ERROR) from exc
        except anthropic_sdk.APIError as exc:
            raise ProviderError(name, f"Invalid response: {exc.message}", FailureKind.MALFORMED_RESPONSE) from exc

        return "".join(parts)
