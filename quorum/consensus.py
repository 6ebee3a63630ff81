"""Agreement metrics between council answers and self-reported confidence parsing."""

import itertools
import re
from collections.abc import Callable, Sequence

Agreement = Callable[[Sequence[str]], float]

_WORD_RE = re.compile(r"[a-z0-9']+")
_CONFIDENCE_RE = re.compile(
    r"^\W*confidence\W*[:=]\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<pct>%)?",
    re.IGNORECASE | re.MULTILINE,
)


def _words(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


def lexical_agreement(answers: Sequence[str]) -> float:
    """Mean pairwise Jaccard similarity of lowercase word sets.

    A single answer agrees with itself (1.0); no answers score 0.0.
    """
    if not answers:
        return 0.0
    if len(answers) == 1:
        return 1.0
    scores = []
    for a, b in itertools.combinations([_words(t) for t in answers], 2):
        union = a | b
        scores.append(len(a & b) / len(union) if union else 1.0)
    return sum(scores) / len(scores)


def exact_agreement(answers: Sequence[str]) -> float:
    """1.0 when all answers are identical after trimming, else 0.0."""
    if not answers:
        return 0.0
    return 1.0 if len({a.strip() for a in answers}) == 1 else 0.0


def extract_confidence(text: str) -> float | None:
    """Find a ``Confidence: 0.8`` or ``Confidence: 80%`` line.

    Values above 1 without a percent sign are read as percentages. The last
    such line wins. Returns None when the answer states no confidence.
    """
    found = list(_CONFIDENCE_RE.finditer(text))
    if not found:
        return None
    match = found[-1]
    value = float(match.group("value"))
    if match.group("pct") or value > 1.0:
        value /= 100.0
    return min(max(value, 0.0), 1.0)
