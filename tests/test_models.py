"""Tests for quorum/models.py and quorum/errors.py."""

import pytest

from quorum.errors import (
    AllProvidersUnavailable,
    ConnectorFailure,
    ConnectorTimeout,
    DeliberationFailed,
    QuorumError,
    RequestCancelled,
    UnknownProvider,
    outcome_error,
)
from quorum.models import (
    Attempt,
    CacheEntry,
    CacheStats,
    Failure,
    FailureKind,
    RequestOptions,
    Success,
    Timeout,
    describe_outcome,
)


def test_outcome_variants_ok_flag():
    assert Success("a", "text", 1.0).ok is True
    assert Failure("a", FailureKind.NOT_FOUND, "missing").ok is False
    assert Timeout("a", 10.0).ok is False


def test_describe_outcome():
    assert describe_outcome(Success("a", "x", 12.0)) == "a: ok (12ms)"
    assert describe_outcome(Timeout("b", 1500.0)) == "b: timeout after 1500ms"
    assert describe_outcome(Failure("c", FailureKind.RATE_LIMITED, "429")) == "c: rate-limited (429)"


def test_cache_entry_expiry_boundary():
    entry = CacheEntry(key="k", response="r", created_at=100.0, ttl_sec=10.0, provider_id="a")
    assert entry.is_expired(110.0) is False
    assert entry.is_expired(110.5) is True


def test_cache_stats_active_entries():
    stats = CacheStats(total_entries=5, expired_entries=2, total_bytes=100)
    assert stats.active_entries == 3


def test_request_options_defaults():
    options = RequestOptions()
    assert options.use_cache is True
    assert options.council_enabled is None
    assert options.provider_override is None


def test_outcome_error_failure():
    err = outcome_error(Failure("claude-cli", FailureKind.PROCESS_EXIT_NONZERO, "exit 1"))
    assert isinstance(err, ConnectorFailure)
    assert err.kind is FailureKind.PROCESS_EXIT_NONZERO
    assert "claude-cli" in str(err)


def test_outcome_error_timeout():
    err = outcome_error(Timeout("ollama", 2000.0))
    assert isinstance(err, ConnectorTimeout)
    assert err.provider_id == "ollama"


def test_outcome_error_rejects_success():
    with pytest.raises(ValueError):
        outcome_error(Success("a", "fine", 1.0))


def test_all_providers_unavailable_names_every_attempt():
    attempts = [
        Attempt("a", Failure("a", FailureKind.NOT_FOUND, "Executable not found: a")),
        Attempt("b", Timeout("b", 3000.0)),
    ]
    err = AllProvidersUnavailable(attempts)
    assert isinstance(err, QuorumError)
    assert "a: not-found (Executable not found: a)" in err.message
    assert "b: timeout after 3000ms" in err.message
    assert err.attempts == attempts


def test_all_providers_unavailable_without_attempts():
    assert "no providers were tried" in str(AllProvidersUnavailable([]))


def test_deliberation_failed_message():
    err = DeliberationFailed(2, [Attempt("a", Timeout("a", 10.0))])
    assert "round 2" in str(err)
    assert err.round_index == 2


def test_unknown_provider_reason():
    err = UnknownProvider("grok", "disabled")
    assert err.provider_id == "grok"
    assert str(err) == "Unknown provider 'grok': disabled"


def test_request_cancelled_default_message():
    assert RequestCancelled().message == "Request cancelled by user"
