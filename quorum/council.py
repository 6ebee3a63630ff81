"""Council deliberation: parallel member calls, refinement rounds, convergence, synthesis."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from config.config_loader import AppConfig, CouncilConfig, PromptsConfig
from quorum.cache import ResponseCache, make_key
from quorum.cancel import CancelToken
from quorum.consensus import Agreement, extract_confidence, lexical_agreement
from quorum.errors import CacheIOError, DeliberationFailed, RequestCancelled, UnknownProvider
from quorum.models import (
    Attempt,
    CacheEntry,
    CouncilResult,
    DeliberationRound,
    Failure,
    FailureKind,
    InvokeParams,
    Outcome,
    Success,
    TaskCategory,
    Timeout,
)
from quorum.providers.base import Connector
from quorum.registry import ProviderRegistry
from quorum.synthesis import longest_answer, synthesize

logger = logging.getLogger(__name__)


def anonymize_answers(answers: list[str]) -> str:
    """Label answers A, B, C... in the order given."""
    labels = [chr(ord("A") + i) for i in range(len(answers))]
    return "\n\n".join(f"--- Proposal {label} ---\n{text.strip()}" for label, text in zip(labels, answers))


@dataclass
class DeliberationSession:
    """Mutable state of one ``deliberate`` call. Never shared between calls."""

    request: str
    category: TaskCategory | None
    survivors: list[str]
    rounds: list[DeliberationRound] = field(default_factory=list)
    attempts: list[Attempt] = field(default_factory=list)
    staged: dict[str, CacheEntry] = field(default_factory=dict)

    def failures(self) -> list[Attempt]:
        return [a for a in self.attempts if not a.outcome.ok]


class Council:
    """Runs multi-round deliberation across the configured members."""

    def __init__(
        self,
        registry: ProviderRegistry,
        config: CouncilConfig,
        prompts: PromptsConfig | None = None,
        agreement: Agreement = lexical_agreement,
        cache: ResponseCache | None = None,
    ) -> None:
        self._registry = registry
        self._config = config
        self._prompts = prompts or PromptsConfig()
        self._agreement = agreement
        self._cache = cache

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        registry: ProviderRegistry,
        cache: ResponseCache | None = None,
    ) -> "Council":
        return cls(registry, config.council, config.prompts, cache=cache)

    @property
    def config(self) -> CouncilConfig:
        return self._config

    def _member_prompt(self, session: DeliberationSession, member: str, round_index: int) -> str:
        if round_index == 1:
            return self._prompts.initial.format(request=session.request)
        previous = session.rounds[-1].answers
        others = [previous[pid] for pid in session.survivors if pid != member and pid in previous]
        return self._prompts.refine.format(
            request=session.request,
            round=round_index,
            previous_responses_anonymized=anonymize_answers(others),
        )

    async def _ask(
        self,
        connector: Connector,
        prompt: str,
        session: DeliberationSession,
        cancel: CancelToken | None,
        use_cache: bool,
    ) -> Outcome:
        """One member call, read through the member's cache entry."""
        pid = connector.name()
        key = make_key(pid, prompt, connector.model_string(), session.category)
        if use_cache and self._cache is not None:
            try:
                entry = self._cache.get(key)
            except CacheIOError as exc:
                logger.warning("Cache read failed for %s: %s", pid, exc)
                entry = None
            if entry is not None:
                logger.debug("Council member %s answered from cache", pid)
                return Success(provider=pid, text=entry.response, elapsed_ms=0.0)

        outcome = await connector.invoke(prompt, InvokeParams(task_hint=session.category), cancel=cancel)
        if isinstance(outcome, Success) and use_cache and self._cache is not None:
            session.staged[key] = self._cache.new_entry(key, outcome.text, pid, prompt)
        return outcome

    async def _run_round(
        self,
        session: DeliberationSession,
        connectors: dict[str, Connector],
        round_index: int,
        cancel: CancelToken | None,
        use_cache: bool,
    ) -> DeliberationRound:
        members = list(session.survivors)
        logger.info("Starting round %d with %d members", round_index, len(members))
        start = time.monotonic()
        tasks = {
            pid: asyncio.ensure_future(
                self._ask(connectors[pid], self._member_prompt(session, pid, round_index), session, cancel, use_cache)
            )
            for pid in members
        }
        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=self._config.round_timeout_sec)
        finally:
            unfinished = [t for t in tasks.values() if not t.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        if cancel is not None and cancel.cancelled:
            # Mark member exceptions as retrieved before abandoning the round.
            for task in tasks.values():
                if not task.cancelled():
                    task.exception()
            cancel.raise_if_cancelled()

        current = DeliberationRound(index=round_index)
        elapsed = (time.monotonic() - start) * 1000
        for pid, task in tasks.items():
            if task in pending:
                logger.warning("Council member %s missed the round %d deadline", pid, round_index)
                outcome: Outcome = Timeout(provider=pid, elapsed_ms=elapsed)
            elif isinstance(task.exception(), RequestCancelled):
                raise task.exception()
            elif task.exception() is not None:
                exc = task.exception()
                logger.warning("Council member %s raised in round %d: %s", pid, round_index, exc)
                outcome = Failure(pid, FailureKind.NETWORK_ERROR, f"Unexpected error: {exc}", elapsed)
            else:
                outcome = task.result()

            session.attempts.append(Attempt(provider=pid, outcome=outcome))
            if isinstance(outcome, Success):
                current.answers[pid] = outcome.text
                confidence = extract_confidence(outcome.text)
                if confidence is not None:
                    current.confidence[pid] = confidence
            else:
                current.failures[pid] = outcome
                logger.warning("Dropping council member %s after round %d", pid, round_index)

        session.survivors = [pid for pid in members if pid in current.answers]
        session.rounds.append(current)
        logger.info(
            "Round %d complete: %d/%d members answered",
            round_index, len(current.answers), len(members),
        )
        return current

    def _resolve_members(self, session: DeliberationSession) -> dict[str, Connector]:
        connectors: dict[str, Connector] = {}
        for pid in self._config.members:
            try:
                connectors[pid] = self._registry.resolve(pid)
            except UnknownProvider as exc:
                logger.warning("Skipping council member %s: %s", pid, exc.reason)
                session.attempts.append(
                    Attempt(provider=pid, outcome=Failure(pid, FailureKind.NOT_FOUND, exc.message))
                )
        session.survivors = list(connectors)
        return connectors

    def _resolve_synthesizer(self, survivors: list[str]) -> Connector | None:
        synth_id = self._config.synthesizer or survivors[0]
        try:
            return self._registry.resolve(synth_id)
        except UnknownProvider as exc:
            logger.warning("Synthesizer unavailable: %s", exc.message)
            return None

    async def deliberate(
        self,
        request: str,
        cancel: CancelToken | None = None,
        category: TaskCategory | None = None,
        use_cache: bool = True,
        on_round_complete: Callable[[DeliberationRound], None] | None = None,
    ) -> CouncilResult:
        """Run the full council session.

        Args:
            request: The user's request text.
            cancel: Cancellation token shared with every member call.
            category: Task category, used as the member cache task hint.
            use_cache: Read member answers through the cache and stage new ones.
            on_round_complete: Optional callback invoked after each round.

        Returns:
            CouncilResult. Staged cache entries are returned, not written.

        Raises:
            DeliberationFailed: If no member survives a round.
            RequestCancelled: If the request is cancelled.
        """
        session = DeliberationSession(request=request, category=category, survivors=[])
        connectors = self._resolve_members(session)
        if not connectors:
            raise DeliberationFailed(1, session.failures())

        agreement: float | None = None
        stopped_early = False
        for round_index in range(1, self._config.rounds + 1):
            current = await self._run_round(session, connectors, round_index, cancel, use_cache)
            if on_round_complete is not None:
                on_round_complete(current)

            if not session.survivors:
                raise DeliberationFailed(round_index, session.failures())

            if round_index == 1 and len(session.survivors) < 2:
                provider, text = longest_answer(current.answers)
                logger.warning("Only %s answered in round 1, skipping deliberation", provider)
                return CouncilResult(
                    text=text,
                    rounds=session.rounds,
                    synthesizer=None,
                    degraded=True,
                    agreement=None,
                    stopped_early=False,
                    survivors=list(session.survivors),
                    staged_entries=list(session.staged.values()),
                    attempts=list(session.attempts),
                )

            agreement = self._agreement(list(current.answers.values()))
            logger.info("Round %d agreement: %.2f", round_index, agreement)
            if agreement >= self._config.consensus_threshold and round_index < self._config.rounds:
                logger.info("Consensus reached after round %d", round_index)
                stopped_early = True
                break

        final_answers = session.rounds[-1].answers
        synthesis = await synthesize(
            request,
            final_answers,
            len(session.rounds),
            self._resolve_synthesizer(session.survivors),
            self._prompts,
            cancel=cancel,
            timeout_sec=self._config.round_timeout_sec,
        )
        if synthesis.outcome is not None:
            session.attempts.append(Attempt(provider=synthesis.outcome.provider, outcome=synthesis.outcome))

        return CouncilResult(
            text=synthesis.text,
            rounds=session.rounds,
            synthesizer=synthesis.synthesizer,
            degraded=synthesis.degraded,
            agreement=agreement,
            stopped_early=stopped_early,
            survivors=list(session.survivors),
            staged_entries=list(session.staged.values()),
            attempts=list(session.attempts),
        )
