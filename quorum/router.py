"""Task routing: classify a request and pick the providers that should answer it."""

import logging
import re
from dataclasses import dataclass, field

from config.config_loader import AppConfig, PromptsConfig
from quorum.models import TaskCategory
from quorum.registry import ProviderRegistry

logger = logging.getLogger(__name__)

# First matching category wins, so order matters.
CATEGORY_KEYWORDS: tuple[tuple[TaskCategory, tuple[str, ...]], ...] = (
    (TaskCategory.WRITING, (
        "write", "draft", "compose", "author", "blog", "article", "email",
        "letter", "document", "report", "essay", "story", "script", "post",
    )),
    (TaskCategory.RESEARCH, (
        "research", "find", "search", "look up", "discover", "learn about",
        "what is", "who is", "where is", "when did", "how many", "statistics",
        "facts", "information", "sources", "reference", "explain", "how does",
        "why does", "teach", "help me understand", "clarify", "describe",
        "what does", "meaning of", "define", "tutorial",
    )),
    (TaskCategory.ANALYSIS, (
        "analyze", "analyse", "review", "examine", "inspect", "assess",
        "evaluate", "code", "debug", "data", "compare", "contrast", "check",
        "audit", "test", "verify", "validate", "diagnose", "solve", "problem",
        "issue", "error", "broken", "not working", "troubleshoot", "resolve",
        "stuck", "failing", "crashed",
    )),
    (TaskCategory.CREATIVE, (
        "create", "brainstorm", "ideas", "design", "imagine", "invent",
        "generate", "come up with", "think of", "suggest", "propose",
        "innovate", "concept", "vision", "plan",
    )),
    (TaskCategory.EDITING, (
        "edit", "proofread", "improve", "fix", "rewrite", "polish", "refine",
        "revise", "correct", "enhance", "clean up", "format", "restructure",
        "reorganize",
    )),
)


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    words = [re.escape(w) for w in keyword.split()]
    return re.compile(r"\b" + r"\s+".join(words) + r"\b")


_PATTERNS: list[tuple[TaskCategory, list[tuple[str, re.Pattern[str]]]]] = [
    (category, [(kw, _keyword_pattern(kw)) for kw in keywords])
    for category, keywords in CATEGORY_KEYWORDS
]


@dataclass
class TaskAnalysis:
    category: TaskCategory
    keywords: list[str] = field(default_factory=list)   # matches for the winning category
    matches: dict[TaskCategory, list[str]] = field(default_factory=dict)


def analyze(text: str) -> TaskAnalysis:
    """Match ``text`` against every category and report what was found."""
    lower = text.lower()
    matches: dict[TaskCategory, list[str]] = {}
    for category, patterns in _PATTERNS:
        found = [kw for kw, pattern in patterns if pattern.search(lower)]
        if found:
            matches[category] = found

    for category, _ in _PATTERNS:
        if category in matches:
            return TaskAnalysis(category=category, keywords=matches[category], matches=matches)
    return TaskAnalysis(category=TaskCategory.GENERAL)


def classify(text: str) -> TaskCategory:
    """Pure keyword classification; ``general`` when nothing matches."""
    return analyze(text).category


class TaskRouter:
    """Maps a task category to an ordered provider plan."""

    def __init__(
        self,
        registry: ProviderRegistry,
        routing: dict[TaskCategory, str] | None = None,
        prompts: PromptsConfig | None = None,
    ) -> None:
        self._registry = registry
        self._routing = dict(routing or {})
        self._prompts = prompts or PromptsConfig()
        for category, provider_id in self._routing.items():
            if provider_id not in registry:
                logger.warning("Routing for %s names unknown provider %s", category.value, provider_id)

    @classmethod
    def from_config(cls, config: AppConfig, registry: ProviderRegistry) -> "TaskRouter":
        return cls(registry, config.routing, config.prompts)

    def classify(self, text: str) -> TaskCategory:
        return classify(text)

    def analyze(self, text: str) -> TaskAnalysis:
        return analyze(text)

    def default_for(self, category: TaskCategory) -> str | None:
        return self._routing.get(category)

    def plan(self, category: TaskCategory, override: str | None = None) -> list[str]:
        """Ordered provider ids to try for a category.

        Args:
            category: The classified task category.
            override: Explicit provider id; when given it is the whole plan.

        Returns:
            The category default (if enabled) followed by the remaining enabled
            providers in registry order, without duplicates.

        Raises:
            UnknownProvider: If ``override`` is unregistered or disabled.
        """
        if override:
            self._registry.resolve(override)
            return [override]

        chain: list[str] = []
        default = self._routing.get(category)
        if default and self._registry.is_enabled(default):
            chain.append(default)
        elif default:
            logger.debug("Default provider %s for %s is unavailable", default, category.value)
        chain.extend(pid for pid in self._registry.enabled_ids() if pid not in chain)
        return chain

    def task_prompt(self, text: str, category: TaskCategory) -> str:
        """Wrap the request in the role prompt for its category."""
        role = self._prompts.roles.get(category) or self._prompts.roles.get(TaskCategory.GENERAL, "")
        return self._prompts.task.format(role=role, request=text).strip()
