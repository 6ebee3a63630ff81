"""Tests for quorum/consensus.py."""

import pytest

from quorum.consensus import exact_agreement, extract_confidence, lexical_agreement


def test_lexical_identical_answers():
    assert lexical_agreement(["Use YAML for config.", "use yaml for config"]) == 1.0


def test_lexical_disjoint_answers():
    assert lexical_agreement(["alpha beta", "gamma delta"]) == 0.0


def test_lexical_partial_overlap():
    # {a, b, c} vs {b, c, d}: 2 shared of 4 total
    assert lexical_agreement(["a b c", "b c d"]) == pytest.approx(0.5)


def test_lexical_mean_of_pairs():
    score = lexical_agreement(["a b", "a b", "c d"])
    assert score == pytest.approx((1.0 + 0.0 + 0.0) / 3)


def test_lexical_edge_sizes():
    assert lexical_agreement([]) == 0.0
    assert lexical_agreement(["only one"]) == 1.0


def test_exact_agreement():
    assert exact_agreement(["same", " same "]) == 1.0
    assert exact_agreement(["same", "different"]) == 0.0
    assert exact_agreement([]) == 0.0


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Answer text.\nConfidence: 0.8", 0.8),
        ("Answer text.\nConfidence: 80%", 0.8),
        ("**Confidence**: 65", 0.65),
        ("confidence = 1", 1.0),
        ("Confidence: 0.2\nrevised\nConfidence: 0.9", 0.9),
        ("No stated confidence here.", None),
        ("I have confidence in this: it works.", None),
    ],
)
def test_extract_confidence(text, expected):
    result = extract_confidence(text)
    if expected is None:
        assert result is None
    else:
        assert result == pytest.approx(expected)
