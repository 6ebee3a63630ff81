"""Exceptions raised by the orchestration engine."""

from typing import Any

from quorum.models import Attempt, Failure, FailureKind, Outcome, Timeout, describe_outcome


class QuorumError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Provider errors
# =============================================================================


class ProviderUnavailable(QuorumError):
    """Raised when the registry cannot resolve or reach a provider."""


class UnknownProvider(ProviderUnavailable):
    """Raised when a provider id is not registered or not enabled."""

    def __init__(self, provider_id: str, reason: str = "not registered", **kwargs: Any):
        super().__init__(f"Unknown provider '{provider_id}': {reason}", **kwargs)
        self.provider_id = provider_id
        self.reason = reason


class ConnectorFailure(QuorumError):
    """A single connector call failed."""

    def __init__(self, provider_id: str, kind: FailureKind, message: str, **kwargs: Any):
        super().__init__(f"[{provider_id}] {kind.value}: {message}", **kwargs)
        self.provider_id = provider_id
        self.kind = kind


class ConnectorTimeout(QuorumError):
    """A single connector call exceeded its timeout."""

    def __init__(self, provider_id: str, elapsed_ms: float, **kwargs: Any):
        super().__init__(f"[{provider_id}] timed out after {elapsed_ms:.0f}ms", **kwargs)
        self.provider_id = provider_id
        self.elapsed_ms = elapsed_ms


def outcome_error(outcome: Outcome) -> QuorumError:
    """Convert a non-success outcome into the matching exception."""
    if isinstance(outcome, Timeout):
        return ConnectorTimeout(outcome.provider, outcome.elapsed_ms)
    if isinstance(outcome, Failure):
        return ConnectorFailure(outcome.provider, outcome.kind, outcome.message)
    raise ValueError(f"Outcome from {outcome.provider} is a success")


# =============================================================================
# Strategy errors
# =============================================================================


def _format_attempts(attempts: list[Attempt]) -> str:
    if not attempts:
        return "no providers were tried"
    return "; ".join(describe_outcome(a.outcome) for a in attempts)


class AllProvidersUnavailable(QuorumError):
    """Raised when a fallback chain is exhausted without a success."""

    def __init__(self, attempts: list[Attempt], **kwargs: Any):
        super().__init__(f"All providers failed: {_format_attempts(attempts)}", **kwargs)
        self.attempts = list(attempts)


class DeliberationFailed(QuorumError):
    """Raised when no council member survives a round."""

    def __init__(self, round_index: int, attempts: list[Attempt], **kwargs: Any):
        super().__init__(
            f"Council deliberation failed in round {round_index}: {_format_attempts(attempts)}",
            **kwargs,
        )
        self.round_index = round_index
        self.attempts = list(attempts)


# =============================================================================
# Infrastructure errors
# =============================================================================


class CacheIOError(QuorumError):
    """Raised when the on-disk cache cannot be read or written."""


class RequestCancelled(QuorumError):
    """Raised when a request is cancelled by the user."""

    def __init__(self, message: str = "Request cancelled by user", **kwargs: Any):
        super().__init__(message, **kwargs)
