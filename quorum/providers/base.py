"""Abstract base for all backend connectors."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from quorum.cancel import CancelToken
from quorum.errors import RequestCancelled
from quorum.models import (
    Failure,
    FailureKind,
    InvokeParams,
    Outcome,
    ProviderDescriptor,
    Success,
    Timeout,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]

DEFAULT_TIMEOUT_SEC = 120.0


class ProviderError(Exception):
    """Raised inside a connector when a backend call fails."""

    def __init__(
        self,
        provider_name: str,
        message: str,
        kind: FailureKind = FailureKind.NETWORK_ERROR,
    ) -> None:
        self.provider_name = provider_name
        self.message = message
        self.kind = kind
        super().__init__(f"[{provider_name}] {message}")


class Connector(ABC):
    """Uniform call interface over one provider.

    Subclasses implement ``_generate`` and raise ``ProviderError`` on failure.
    ``invoke`` owns validation, timing, the timeout bound, cancellation and
    the conversion of every failure into an ``Outcome``. It makes exactly one
    attempt.
    """

    def __init__(self, descriptor: ProviderDescriptor, default_timeout_sec: float = DEFAULT_TIMEOUT_SEC) -> None:
        self._descriptor = descriptor
        self._default_timeout_sec = default_timeout_sec

    @property
    def descriptor(self) -> ProviderDescriptor:
        return self._descriptor

    def name(self) -> str:
        return self._descriptor.id

    def model_string(self) -> str:
        return self._descriptor.model

    def streams(self) -> bool:
        """Whether ``_generate`` reports incremental chunks."""
        return False

    def _timeout_for(self, params: InvokeParams) -> float:
        if params.timeout_sec is not None:
            timeout = params.timeout_sec
        elif self._descriptor.timeout_sec is not None:
            timeout = self._descriptor.timeout_sec
        else:
            timeout = self._default_timeout_sec
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout}")
        return timeout

    async def invoke(
        self,
        prompt: str,
        params: InvokeParams | None = None,
        cancel: CancelToken | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> Outcome:
        """Send ``prompt`` to the backend once.

        Args:
            prompt: The full prompt text. Must be non-empty after trimming.
            params: Model override, task hint and timeout.
            cancel: Token that aborts the call and tears down its resources.
            on_chunk: Receives partial output when the backend streams.

        Returns:
            Success, Failure or Timeout. Never raises for backend problems.

        Raises:
            ValueError: On an empty prompt or non-positive timeout.
            RequestCancelled: If ``cancel`` fires before the call completes.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")
        params = params or InvokeParams()
        timeout = self._timeout_for(params)
        model = params.model or self._descriptor.model
        provider = self._descriptor.id

        start = time.monotonic()
        call = asyncio.wait_for(self._generate(prompt, model, on_chunk), timeout=timeout)
        try:
            text = await (cancel.guard(call) if cancel is not None else call)
        except TimeoutError:
            elapsed = (time.monotonic() - start) * 1000
            logger.warning("%s timed out after %.1fs", provider, timeout)
            return Timeout(provider=provider, elapsed_ms=elapsed)
        except ProviderError as exc:
            elapsed = (time.monotonic() - start) * 1000
            logger.warning("%s failed (%s): %s", provider, exc.kind.value, exc.message)
            return Failure(provider=provider, kind=exc.kind, message=exc.message, elapsed_ms=elapsed)
        except RequestCancelled:
            raise
        except Exception as exc:
            elapsed = (time.monotonic() - start) * 1000
            logger.warning("%s raised unexpectedly: %s", provider, exc)
            return Failure(
                provider=provider,
                kind=FailureKind.NETWORK_ERROR,
                message=f"Unexpected error: {exc}",
                elapsed_ms=elapsed,
            )

        elapsed = (time.monotonic() - start) * 1000
        if not text or not text.strip():
            return Failure(
                provider=provider,
                kind=FailureKind.MALFORMED_RESPONSE,
                message="Empty response",
                elapsed_ms=elapsed,
            )

        logger.info("%s answered in %.2fs", provider, elapsed / 1000)
        return Success(provider=provider, text=text.strip(), elapsed_ms=elapsed)

    @abstractmethod
    async def _generate(self, prompt: str, model: str, on_chunk: ChunkCallback | None) -> str:
        """Produce the complete answer text.

        Raises:
            ProviderError: On any backend failure, with the matching kind.
            TimeoutError: When the backend itself reports a timeout.
        """
        ...
