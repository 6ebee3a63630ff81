"""Final synthesis: merge surviving council answers into one, or fall back to the longest."""

import logging
from dataclasses import dataclass

from config.config_loader import PromptsConfig
from quorum.cancel import CancelToken
from quorum.models import InvokeParams, Outcome, Success, describe_outcome
from quorum.providers.base import Connector

logger = logging.getLogger(__name__)


@dataclass
class Synthesis:
    text: str
    synthesizer: str | None      # provider that wrote the text; None for the fallback
    degraded: bool
    outcome: Outcome | None = None


def longest_answer(answers: dict[str, str]) -> tuple[str, str]:
    """Return (provider, text) of the longest answer; ties go to the first listed."""
    if not answers:
        raise ValueError("No answers to choose from")
    provider = max(answers, key=lambda pid: len(answers[pid]))
    return provider, answers[provider]


def format_responses(answers: dict[str, str]) -> str:
    """Number the answers without naming their providers."""
    return "\n\n".join(
        f"Response {i}:\n{text.strip()}" for i, text in enumerate(answers.values(), start=1)
    )


def build_synthesis_prompt(request: str, answers: dict[str, str], rounds: int, prompts: PromptsConfig) -> str:
    return prompts.synthesis.format(
        request=request,
        rounds=rounds,
        responses=format_responses(answers),
    )


async def synthesize(
    request: str,
    answers: dict[str, str],
    rounds: int,
    synthesizer: Connector | None,
    prompts: PromptsConfig,
    cancel: CancelToken | None = None,
    timeout_sec: float | None = None,
) -> Synthesis:
    """Ask the synthesizer to merge the surviving answers.

    Args:
        request: The original request text.
        answers: Final answer per surviving provider, in survivor order.
        rounds: Number of completed deliberation rounds.
        synthesizer: Connector to call, or None when none could be resolved.
        prompts: Prompt templates from config.
        cancel: Cancellation token for the request.
        timeout_sec: Optional timeout override for the synthesis call.

    Returns:
        Synthesis with ``degraded=True`` when the longest answer was used instead.

    Raises:
        RequestCancelled: If the request is cancelled during the call.
    """
    if synthesizer is None:
        provider, text = longest_answer(answers)
        logger.warning("No synthesizer available, using longest answer from %s", provider)
        return Synthesis(text=text, synthesizer=None, degraded=True)

    prompt = build_synthesis_prompt(request, answers, rounds, prompts)
    logger.info("Running synthesis via %s", synthesizer.name())
    outcome = await synthesizer.invoke(prompt, InvokeParams(timeout_sec=timeout_sec), cancel=cancel)

    if isinstance(outcome, Success):
        return Synthesis(text=outcome.text, synthesizer=outcome.provider, degraded=False, outcome=outcome)

    provider, text = longest_answer(answers)
    logger.warning("Synthesis failed (%s), using longest answer from %s", describe_outcome(outcome), provider)
    return Synthesis(text=text, synthesizer=None, degraded=True, outcome=outcome)
