"""Orchestration loop: route, read the cache, run the chain or the council, stream events."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable

from config.config_loader import AppConfig
from quorum.cache import ResponseCache, make_key
from quorum.cancel import CancelToken
from quorum.council import Council
from quorum.errors import AllProvidersUnavailable, CacheIOError
from quorum.models import (
    Attempt,
    CacheEntry,
    DeliberationRound,
    InvokeParams,
    RequestOptions,
    RequestResult,
    StreamEvent,
    Success,
    TaskCategory,
    describe_outcome,
)
from quorum.registry import ProviderRegistry
from quorum.router import TaskRouter

logger = logging.getLogger(__name__)

COUNCIL_PROVIDER = "council"

EventCallback = Callable[[StreamEvent], None]


class RequestHandle:
    """A submitted request: stream its events, await its result, or cancel it."""

    def __init__(self, task: "asyncio.Task[RequestResult]", queue: "asyncio.Queue[StreamEvent | None]", cancel: CancelToken):
        self._task = task
        self._queue = queue
        self._cancel = cancel

    @property
    def cancel_token(self) -> CancelToken:
        return self._cancel

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self, reason: str | None = None) -> None:
        self._cancel.cancel(reason)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events until the request finishes, successfully or not."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def result(self) -> RequestResult:
        """Wait for the final result.

        Raises:
            AllProvidersUnavailable, DeliberationFailed, UnknownProvider,
            RequestCancelled: Whatever ended the request.
        """
        return await self._task


class Orchestrator:
    """Drives one request at a time through router, cache, connectors and council.

    Every request gets its own ``CancelToken`` and event queue, so concurrent
    submissions never share state beyond the cache on disk.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        router: TaskRouter,
        cache: ResponseCache,
        council: Council | None = None,
        council_enabled: bool = False,
    ) -> None:
        self._registry = registry
        self._router = router
        self._cache = cache
        self._council = council
        self._council_enabled = council_enabled

    @classmethod
    def from_config(cls, config: AppConfig) -> "Orchestrator":
        registry = ProviderRegistry.from_config(config)
        cache = ResponseCache.from_config(config.cache)
        router = TaskRouter.from_config(config, registry)
        council = Council.from_config(config, registry, cache)
        return cls(registry, router, cache, council, council_enabled=config.council.enabled)

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def router(self) -> TaskRouter:
        return self._router

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def submit(self, request: str, options: RequestOptions | None = None) -> RequestHandle:
        """Start processing ``request`` and return its handle immediately.

        Raises:
            ValueError: If the request text is empty.
        """
        if not request or not request.strip():
            raise ValueError("Request must not be empty")
        options = options or RequestOptions()
        cancel = CancelToken()
        queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        task = asyncio.ensure_future(self._process(request.strip(), options, cancel, queue))
        return RequestHandle(task, queue, cancel)

    async def run(
        self,
        request: str,
        options: RequestOptions | None = None,
        on_event: EventCallback | None = None,
    ) -> RequestResult:
        handle = self.submit(request, options)
        async for event in handle.events():
            if on_event is not None:
                on_event(event)
        return await handle.result()

    def _use_council(self, options: RequestOptions) -> bool:
        if options.provider_override or self._council is None:
            return False
        if options.council_enabled is not None:
            return options.council_enabled
        return self._council_enabled

    def _council_key(self, request: str, category: TaskCategory) -> str:
        config = self._council.config
        return make_key(
            COUNCIL_PROVIDER,
            request,
            None,
            category,
            members=config.members,
            rounds=config.rounds,
            threshold=config.consensus_threshold,
        )

    def _provider_key(self, provider_id: str, request: str, category: TaskCategory) -> str:
        descriptor = self._registry.descriptor(provider_id)
        return make_key(descriptor.id, request, descriptor.model, category)

    def _cache_lookup(self, keys: list[str]) -> CacheEntry | None:
        """First live entry among ``keys``, checked in plan order."""
        for key in keys:
            try:
                entry = self._cache.get(key)
            except CacheIOError as exc:
                logger.warning("Cache read failed, treating as miss: %s", exc)
                continue
            if entry is not None:
                return entry
        return None

    def _cache_commit(self, entries: Iterable[CacheEntry]) -> None:
        try:
            self._cache.put_many(entries)
        except CacheIOError as exc:
            logger.warning("Cache write failed, result not cached: %s", exc)

    async def _process(
        self,
        request: str,
        options: RequestOptions,
        cancel: CancelToken,
        queue: "asyncio.Queue[StreamEvent | None]",
    ) -> RequestResult:
        try:
            return await self._pipeline(request, options, cancel, queue.put_nowait)
        finally:
            queue.put_nowait(None)

    async def _pipeline(
        self,
        request: str,
        options: RequestOptions,
        cancel: CancelToken,
        emit: EventCallback,
    ) -> RequestResult:
        start = time.monotonic()
        category = options.task_hint or self._router.classify(request)
        use_council = self._use_council(options)

        if use_council:
            plan: list[str] = []
            keys = [self._council_key(request, category)]
            logger.info("Request classified as %s, routed to council", category.value)
        else:
            plan = self._router.plan(category, options.provider_override)
            if not plan:
                raise AllProvidersUnavailable([])
            keys = [self._provider_key(pid, request, category) for pid in plan]
            logger.info("Request classified as %s, plan: %s", category.value, " -> ".join(plan))

        if options.use_cache:
            entry = self._cache_lookup(keys)
            if entry is not None:
                logger.info("Cache hit for %s", entry.provider_id)
                result = RequestResult(
                    text=entry.response,
                    provider=entry.provider_id,
                    cached=True,
                    elapsed_ms=(time.monotonic() - start) * 1000,
                    category=category,
                )
                emit(StreamEvent("chunk", provider=entry.provider_id, text=entry.response))
                emit(StreamEvent("result", provider=entry.provider_id, text=entry.response))
                return result

        cancel.raise_if_cancelled()
        if use_council:
            result, staged = await self._run_council(request, category, options, cancel, emit)
        else:
            result, staged = await self._run_chain(request, category, plan, cancel, emit)
        result.elapsed_ms = (time.monotonic() - start) * 1000

        cancel.raise_if_cancelled()
        if options.use_cache:
            key = keys[0] if use_council else self._provider_key(result.provider, request, category)
            final = self._cache.new_entry(key, result.text, result.provider, request)
            self._cache_commit([*staged, final])

        emit(StreamEvent("result", provider=result.provider, text=result.text, round_index=result.rounds or None))
        return result

    async def _run_chain(
        self,
        request: str,
        category: TaskCategory,
        plan: list[str],
        cancel: CancelToken,
        emit: EventCallback,
    ) -> tuple[RequestResult, list[CacheEntry]]:
        """Try each provider in order until one succeeds."""
        prompt = self._router.task_prompt(request, category)
        attempts: list[Attempt] = []
        for pid in plan:
            connector = self._registry.resolve(pid)
            chunks: list[str] = []

            def forward(text: str, provider: str = pid, sink: list[str] = chunks) -> None:
                sink.append(text)
                emit(StreamEvent("chunk", provider=provider, text=text))

            outcome = await connector.invoke(prompt, InvokeParams(task_hint=category), cancel=cancel, on_chunk=forward)
            attempts.append(Attempt(provider=pid, outcome=outcome))
            if isinstance(outcome, Success):
                if not chunks:
                    emit(StreamEvent("chunk", provider=pid, text=outcome.text))
                result = RequestResult(
                    text=outcome.text,
                    provider=pid,
                    cached=False,
                    elapsed_ms=outcome.elapsed_ms,
                    category=category,
                    attempts=attempts,
                )
                return result, []

            logger.warning("Provider %s failed, falling back: %s", pid, describe_outcome(outcome))
            emit(StreamEvent("attempt_failed", provider=pid, text=describe_outcome(outcome)))

        raise AllProvidersUnavailable(attempts)

    async def _run_council(
        self,
        request: str,
        category: TaskCategory,
        options: RequestOptions,
        cancel: CancelToken,
        emit: EventCallback,
    ) -> tuple[RequestResult, list[CacheEntry]]:
        def on_round(rnd: DeliberationRound) -> None:
            for pid, outcome in rnd.failures.items():
                emit(StreamEvent("attempt_failed", provider=pid, text=describe_outcome(outcome), round_index=rnd.index))
            emit(StreamEvent(
                "round_complete",
                provider=COUNCIL_PROVIDER,
                text=", ".join(rnd.answers),
                round_index=rnd.index,
            ))

        council_result = await self._council.deliberate(
            request,
            cancel=cancel,
            category=category,
            use_cache=options.use_cache,
            on_round_complete=on_round,
        )
        emit(StreamEvent("chunk", provider=COUNCIL_PROVIDER, text=council_result.text))
        result = RequestResult(
            text=council_result.text,
            provider=COUNCIL_PROVIDER,
            cached=False,
            elapsed_ms=0.0,
            category=category,
            attempts=council_result.attempts,
            degraded=council_result.degraded,
            rounds=len(council_result.rounds),
        )
        return result, council_result.staged_entries
