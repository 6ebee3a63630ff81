"""Gemini API via the google-genai SDK, streamed."""

import logging

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import resolve_api_key
from quorum.models import FailureKind, ProviderDescriptor
from quorum.providers.base import DEFAULT_TIMEOUT_SEC, ChunkCallback, Connector, ProviderError

logger = logging.getLogger(__name__)


def _code_kind(code: int | None) -> FailureKind:
    if code == 429:
        return FailureKind.RATE_LIMITED
    if code in (401, 403):
        return FailureKind.PERMISSION_DENIED
    if code == 404:
        return FailureKind.NOT_FOUND
    return FailureKind.NETWORK_ERROR


class GeminiConnector(Connector):
    """Google Gemini via google-genai."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        default_timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        client: genai.Client | None = None,
    ) -> None:
        super().__init__(descriptor, default_timeout_sec)
        self._client = client
        if self._client is None:
            api_key = resolve_api_key(descriptor.api_key_env)
            if api_key:
                self._client = genai.Client(api_key=api_key)

    def streams(self) -> bool:
        return True

    async def _generate(self, prompt: str, model: str, on_chunk: ChunkCallback | None) -> str:
        name = self.name()
        if self._client is None:
            raise ProviderError(name, f"Missing API key: {self.descriptor.api_key_env}", FailureKind.PERMISSION_DENIED)

        config = genai_types.GenerateContentConfig(
            max_output_tokens=self.descriptor.max_tokens,
            temperature=self.descriptor.temperature,
        )
        parts: list[str] = []
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=model,
                contents=prompt,
                config=config,
            )
            async for chunk in stream:
                text = chunk.text
                if text:
                    parts.append(text)
                    if on_chunk is not None:
                        on_chunk(text)
        except genai_errors.APIError as exc:
            raise ProviderError(name, f"API error {exc.code}: {exc.message}", _code_kind(exc.code)) from exc
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"{name} request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(name, f"Connection failed: {exc}", FailureKind.NETWORK_ERROR) from exc
        except ValueError as exc:
            raise ProviderError(name, f"Invalid response: {exc}", FailureKind.MALFORMED_RESPONSE) from exc

        return "".join(parts)
