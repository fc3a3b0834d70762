"""
Lexicon sentiment for mention snippets and whole answers.

Deliberately small and deterministic: a fixed list of positive and
negative marketing words, counted per word. Ties (including no hits) are
neutral.
"""

import re

from ai_visibility.extractor.models import SentimentResult

POSITIVE_WORDS = frozenset(
    [
        "excellent",
        "great",
        "best",
        "amazing",
        "outstanding",
        "superior",
        "top",
        "leading",
        "premium",
        "advanced",
    ]
)

NEGATIVE_WORDS = frozenset(
    [
        "poor",
        "worst",
        "terrible",
        "awful",
        "bad",
        "inferior",
        "cheap",
        "basic",
        "limited",
        "outdated",
    ]
)

_WORD_RE = re.compile(r"[a-z]+")


def _score(text: str) -> tuple[int, int]:
    positive = negative = 0
    for word in _WORD_RE.findall(text.lower()):
        if word in POSITIVE_WORDS:
            positive += 1
        elif word in NEGATIVE_WORDS:
            negative += 1
    return positive, negative


def analyze_sentiment(text: str) -> str:
    """
    Classify a snippet as positive, negative or neutral.

    Example:
        >>> analyze_sentiment("Acme is the best and most advanced option")
        'positive'
        >>> analyze_sentiment("Acme feels outdated")
        'negative'
    """
    positive, negative = _score(text)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def classify_answer_sentiment(text: str) -> SentimentResult:
    """
    Answer-level sentiment with a score in [-1.0, 1.0].

    score = (positive - negative) / (positive + negative), 0.0 without hits.
    """
    positive, negative = _score(text)
    total = positive + negative
    if total == 0:
        return SentimentResult(label="neutral", score=0.0)

    score = round((positive - negative) / total, 3)
    return SentimentResult(label=analyze_sentiment(text), score=score)
