"""Load settings.yaml into typed dataclasses. Treated as an immutable snapshot per session."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from quorum.models import ProviderDescriptor, ProviderKind, TaskCategory

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_DEFAULT_CACHE_DIR = Path.home() / ".cache" / "quorum"


@dataclass
class ProviderConfig:
    name: str
    kind: ProviderKind
    model: str
    enabled: bool = True
    endpoint: str | None = None
    command: list[str] = field(default_factory=list)
    api_key_env: str | None = None
    sdk: str | None = None
    timeout_sec: float | None = None
    max_tokens: int = 4096
    temperature: float | None = None
    prompt_mode: str = "arg"
    model_flag: str | None = None

    def to_descriptor(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            id=self.name,
            kind=self.kind,
            enabled=self.enabled,
            model=self.model,
            endpoint=self.endpoint,
            command=tuple(self.command),
            api_key_env=self.api_key_env,
            timeout_sec=self.timeout_sec,
            sdk=self.sdk,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            prompt_mode=self.prompt_mode,
            model_flag=self.model_flag,
        )


@dataclass
class CouncilConfig:
    enabled: bool = False
    members: list[str] = field(default_factory=list)
    rounds: int = 2
    consensus_threshold: float = 0.7
    synthesizer: str | None = None
    round_timeout_sec: float = 180.0


@dataclass
class CacheConfig:
    enabled: bool = True
    ttl_sec: float = 86400.0
    dir: Path = _DEFAULT_CACHE_DIR


_DEFAULT_ROLES = {
    TaskCategory.WRITING: "You are a skilled writer. Create clear, engaging content.",
    TaskCategory.RESEARCH: "You are a thorough researcher. Find accurate, relevant information.",
    TaskCategory.ANALYSIS: "You are an analytical expert. Provide detailed, logical analysis.",
    TaskCategory.CREATIVE: "You are a creative thinker. Generate innovative, original ideas.",
    TaskCategory.EDITING: "You are a meticulous editor. Improve clarity and quality.",
    TaskCategory.GENERAL: "You are a helpful assistant. Provide useful, friendly assistance.",
}

_DEFAULT_TASK = "{role}\n\nPlease help with this request:\n\n{request}"

_DEFAULT_INITIAL = (
    "Task: {request}\n\n"
    "Please provide your response to this task.\n"
    "End with a line 'Confidence: <0-1>' stating how sure you are."
)

_DEFAULT_REFINE = (
    "Task: {request}\n\n"
    "Round {round}. Previous responses from other council members:\n\n"
    "{previous_responses_anonymized}\n\n"
    "Please review the previous responses and provide your updated response. "
    "Consider the strengths of each approach and aim for consensus.\n"
    "End with a line 'Confidence: <0-1>' stating how sure you are."
)

_DEFAULT_SYNTHESIS = (
    "You are synthesizing responses from multiple AI council members.\n\n"
    "Original task: {request}\n\n"
    "Council responses after {rounds} round(s):\n\n{responses}\n\n"
    "Please synthesize these responses into a single, cohesive answer that "
    "incorporates the best ideas from each response and resolves any contradictions.\n"
    "Provide only the synthesized response, without meta-commentary."
)


@dataclass
class PromptsConfig:
    task: str = _DEFAULT_TASK
    initial: str = _DEFAULT_INITIAL
    refine: str = _DEFAULT_REFINE
    synthesis: str = _DEFAULT_SYNTHESIS
    roles: dict[TaskCategory, str] = field(default_factory=lambda: dict(_DEFAULT_ROLES))


@dataclass
class DefaultsConfig:
    timeout_sec: float = 120.0
    probe_timeout_sec: float = 2.0


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    providers: dict[str, ProviderConfig]
    council: CouncilConfig = field(default_factory=CouncilConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    routing: dict[TaskCategory, str] = field(default_factory=dict)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)


def resolve_api_key(api_key_env: str | None) -> str | None:
    """Resolve a credential reference to the key itself.

    Accepts a bare variable name (``OPENAI_API_KEY``) or a ``$``-prefixed one.
    Returns None when the reference is empty or the variable is unset.
    """
    if not api_key_env:
        return None
    var = api_key_env[1:] if api_key_env.startswith("$") else api_key_env
    value = os.environ.get(var, "").strip()
    return value or None


def _parse_provider(name: str, raw: dict) -> ProviderConfig:
    try:
        kind = ProviderKind(raw["kind"])
    except ValueError as exc:
        raise ValueError(f"Provider '{name}' has unknown kind: {raw['kind']!r}") from exc

    command = raw.get("command") or []
    if isinstance(command, str):
        command = command.split()

    timeout = raw.get("timeout_sec")
    temperature = raw.get("temperature")
    cfg = ProviderConfig(
        name=name,
        kind=kind,
        model=str(raw.get("model", "default")),
        enabled=bool(raw.get("enabled", True)),
        endpoint=raw.get("endpoint"),
        command=[str(part) for part in command],
        api_key_env=raw.get("api_key_env"),
        sdk=raw.get("sdk"),
        timeout_sec=float(timeout) if timeout is not None else None,
        max_tokens=int(raw.get("max_tokens", 4096)),
        temperature=float(temperature) if temperature is not None else None,
        prompt_mode=str(raw.get("prompt_mode", "arg")),
        model_flag=raw.get("model_flag"),
    )

    if cfg.kind is ProviderKind.LOCAL_EXECUTABLE and not cfg.command:
        raise ValueError(f"Provider '{name}' is a local executable but has no command")
    if cfg.kind is ProviderKind.LOCAL_ENDPOINT and not cfg.endpoint:
        raise ValueError(f"Provider '{name}' is a local endpoint but has no endpoint")
    if cfg.kind is ProviderKind.REMOTE_API and not cfg.sdk:
        raise ValueError(f"Provider '{name}' is a remote API but has no sdk")
    if cfg.prompt_mode not in ("arg", "stdin"):
        raise ValueError(f"Provider '{name}' has invalid prompt_mode: {cfg.prompt_mode!r}")
    if cfg.timeout_sec is not None and cfg.timeout_sec <= 0:
        raise ValueError(f"Provider '{name}' timeout_sec must be positive")
    return cfg


def _parse_council(raw: dict, providers: dict[str, ProviderConfig]) -> CouncilConfig:
    council = CouncilConfig(
        enabled=bool(raw.get("enabled", False)),
        members=[str(m) for m in raw.get("members", [])],
        rounds=int(raw.get("rounds", 2)),
        consensus_threshold=float(raw.get("consensus_threshold", 0.7)),
        synthesizer=raw.get("synthesizer"),
        round_timeout_sec=float(raw.get("round_timeout_sec", 180.0)),
    )
    if council.rounds < 1:
        raise ValueError("council.rounds must be at least 1")
    if not 0.0 <= council.consensus_threshold <= 1.0:
        raise ValueError("council.consensus_threshold must be within [0, 1]")
    if council.round_timeout_sec <= 0:
        raise ValueError("council.round_timeout_sec must be positive")
    if len(set(council.members)) != len(council.members):
        raise ValueError("council.members contains duplicates")
    if council.enabled and len(council.members) < 2:
        raise ValueError("council.members needs at least 2 providers when the council is enabled")
    for member in council.members:
        if member not in providers:
            raise ValueError(f"council member '{member}' is not a configured provider")
    return council


_REQUIRED_PLACEHOLDERS = {
    "task": ("{request}",),
    "initial": ("{request}",),
    "refine": ("{request}", "{previous_responses_anonymized}"),
    "synthesis": ("{request}", "{responses}"),
}


def _parse_prompts(raw: dict) -> PromptsConfig:
    prompts = PromptsConfig()
    for name, placeholders in _REQUIRED_PLACEHOLDERS.items():
        template = raw.get(name)
        if template is None:
            continue
        template = str(template)
        missing = [p for p in placeholders if p not in template]
        if missing:
            raise ValueError(f"prompts.{name} is missing {', '.join(missing)}")
        setattr(prompts, name, template)

    for category_name, role in (raw.get("roles") or {}).items():
        try:
            category = TaskCategory(category_name)
        except ValueError as exc:
            raise ValueError(f"Unknown role category: {category_name!r}") from exc
        prompts.roles[category] = str(role).strip()
    return prompts


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if the settings file is missing and ValueError on
    invalid values. Missing credentials are logged, not raised: remote
    providers without a key still register and report the problem on probe.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    defaults_raw = raw.get("defaults", {})
    defaults = DefaultsConfig(
        timeout_sec=float(defaults_raw.get("timeout_sec", 120.0)),
        probe_timeout_sec=float(defaults_raw.get("probe_timeout_sec", 2.0)),
    )
    if defaults.timeout_sec <= 0:
        raise ValueError("defaults.timeout_sec must be positive")

    providers: dict[str, ProviderConfig] = {}
    for name, provider_raw in (raw.get("providers") or {}).items():
        cfg = _parse_provider(str(name), provider_raw)
        providers[cfg.name] = cfg
        if cfg.enabled and cfg.api_key_env and not resolve_api_key(cfg.api_key_env):
            logger.info("Provider %s enabled but %s is not set", cfg.name, cfg.api_key_env)

    council = _parse_council(raw.get("council", {}), providers)

    cache_raw = raw.get("cache", {})
    cache = CacheConfig(
        enabled=bool(cache_raw.get("enabled", True)),
        ttl_sec=float(cache_raw.get("ttl_sec", 86400.0)),
        dir=Path(cache_raw["dir"]).expanduser() if cache_raw.get("dir") else _DEFAULT_CACHE_DIR,
    )

    routing: dict[TaskCategory, str] = {}
    for category_name, provider_name in (raw.get("routing") or {}).items():
        try:
            category = TaskCategory(category_name)
        except ValueError as exc:
            raise ValueError(f"Unknown routing category: {category_name!r}") from exc
        routing[category] = str(provider_name)

    return AppConfig(
        defaults=defaults,
        providers=providers,
        council=council,
        cache=cache,
        routing=routing,
        prompts=_parse_prompts(raw.get("prompts") or {}),
    )
