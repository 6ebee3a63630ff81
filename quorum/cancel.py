"""Cancellation token shared by every connector call of one request."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from quorum.errors import RequestCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """One-shot cancellation flag that can interrupt in-flight coroutines.

    A token is created per request and handed to every connector call. Calling
    ``cancel()`` wakes every ``guard()`` currently awaiting, which cancels the
    wrapped task so subprocesses get killed and HTTP clients get closed.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "Request cancelled by user"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self._reason = reason
        if not self._event.is_set():
            logger.info("Cancelling request: %s", self._reason)
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self._reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            RequestCancelled: If the token was already set or fires while waiting.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelled(self._reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            await asyncio.gather(task, waiter, return_exceptions=True)
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise RequestCancelled(self._reason)
