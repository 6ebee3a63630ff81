"""Pure dataclasses for the provider orchestration pipeline. No I/O, no deps."""

from dataclasses import dataclass, field
from enum import Enum


class ProviderKind(str, Enum):
    LOCAL_EXECUTABLE = "local-executable"
    LOCAL_ENDPOINT = "local-endpoint"
    REMOTE_API = "remote-api"


class FailureKind(str, Enum):
    NOT_FOUND = "not-found"
    PERMISSION_DENIED = "permission-denied"
    NETWORK_ERROR = "network-error"
    MALFORMED_RESPONSE = "malformed-response"
    RATE_LIMITED = "rate-limited"
    PROCESS_EXIT_NONZERO = "process-exit-nonzero"


class TaskCategory(str, Enum):
    RESEARCH = "research"
    ANALYSIS = "analysis"
    WRITING = "writing"
    CREATIVE = "creative"
    EDITING = "editing"
    GENERAL = "general"


@dataclass(frozen=True)
class ProviderDescriptor:
    id: str                          # "ollama", "claude-cli", "openai", ...
    kind: ProviderKind
    enabled: bool
    model: str
    endpoint: str | None = None      # base URL for endpoints / remote APIs
    command: tuple[str, ...] = ()    # argv prefix for local executables
    api_key_env: str | None = None   # credential reference, never the key itself
    timeout_sec: float | None = None
    sdk: str | None = None           # "openai", "anthropic", "gemini" for remote APIs
    max_tokens: int = 4096
    temperature: float | None = None
    prompt_mode: str = "arg"         # "arg" or "stdin"
    model_flag: str | None = None    # e.g. "--model"; omitted when None


@dataclass(frozen=True)
class InvokeParams:
    model: str | None = None
    task_hint: TaskCategory | None = None
    timeout_sec: float | None = None


@dataclass(frozen=True)
class Success:
    provider: str
    text: str
    elapsed_ms: float

    ok = True


@dataclass(frozen=True)
class Failure:
    provider: str
    kind: FailureKind
    message: str
    elapsed_ms: float = 0.0

    ok = False


@dataclass(frozen=True)
class Timeout:
    provider: str
    elapsed_ms: float

    ok = False


Outcome = Success | Failure | Timeout


def describe_outcome(outcome: Outcome) -> str:
    """One-line diagnostic for an outcome, e.g. ``claude-cli: rate-limited (429)``."""
    if isinstance(outcome, Success):
        return f"{outcome.provider}: ok ({outcome.elapsed_ms:.0f}ms)"
    if isinstance(outcome, Timeout):
        return f"{outcome.provider}: timeout after {outcome.elapsed_ms:.0f}ms"
    return f"{outcome.provider}: {outcome.kind.value} ({outcome.message})"


@dataclass(frozen=True)
class Attempt:
    provider: str
    outcome: Outcome


@dataclass
class CacheEntry:
    key: str
    response: str
    created_at: float        # epoch seconds
    ttl_sec: float
    provider_id: str
    prompt: str = ""         # diagnostics only, never part of the key

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl_sec


@dataclass
class CacheStats:
    total_entries: int = 0
    expired_entries: int = 0
    total_bytes: int = 0

    @property
    def active_entries(self) -> int:
        return max(self.total_entries - self.expired_entries, 0)


@dataclass
class DeliberationRound:
    index: int
    answers: dict[str, str] = field(default_factory=dict)
    confidence: dict[str, float] = field(default_factory=dict)
    failures: dict[str, Outcome] = field(default_factory=dict)


@dataclass
class CouncilResult:
    text: str
    rounds: list[DeliberationRound]
    synthesizer: str | None      # None when a single surviving answer was used
    degraded: bool
    agreement: float | None
    stopped_early: bool
    survivors: list[str]
    staged_entries: list[CacheEntry] = field(default_factory=list)
    attempts: list[Attempt] = field(default_factory=list)


@dataclass(frozen=True)
class RequestOptions:
    provider_override: str | None = None
    task_hint: TaskCategory | None = None
    use_cache: bool = True
    council_enabled: bool | None = None   # None: use the configured default


@dataclass
class RequestResult:
    text: str
    provider: str                # answering provider id, or "council"
    cached: bool
    elapsed_ms: float
    category: TaskCategory
    attempts: list[Attempt] = field(default_factory=list)
    degraded: bool = False
    rounds: int = 0


@dataclass(frozen=True)
class StreamEvent:
    kind: str                    # "chunk", "attempt_failed", "round_complete", "result"
    provider: str | None = None
    text: str = ""
    round_index: int | None = None
