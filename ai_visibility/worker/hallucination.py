"""
Rule-based hallucination detection against a workspace knowledge profile.

A profile lists facts the workspace knows to be true:

    {"facts": [
        {"type": "founding_year", "value": "2008",
         "keywords": ["founded", "established"], "severity": "high"},
        {"type": "headquarters", "value": "San Francisco",
         "keywords": ["headquartered", "based in"]}
    ]}

For every sentence of the answer that mentions one of a fact's keywords
but not its value:
- numeric facts are contradicted when the sentence states a different
  number (confidence 0.85)
- text facts are contradicted when the sentence is about the workspace
  brand (confidence 0.7)

Findings below the minimum confidence or severity are dropped.
"""

import re
from dataclasses import dataclass

SEVERITIES = ("low", "medium", "high", "critical")

DEFAULT_MIN_CONFIDENCE = 0.7
DEFAULT_SEVERITY_THRESHOLD = "medium"

NUMERIC_CONTRADICTION_CONFIDENCE = 0.85
TEXT_CONTRADICTION_CONFIDENCE = 0.7

_SENTENCE_RE = re.compile(r"[^.!?\n]+(?:[.!?]+|$)")
_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")


@dataclass
class HallucinationFinding:
    fact_type: str
    ai_statement: str
    correct_fact: str
    severity: str
    confidence: float
    context: str


def _numbers(text: str) -> set[str]:
    return {match.group(0).replace(",", "") for match in _NUMBER_RE.finditer(text)}


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def _mentions_any(sentence_lower: str, terms: list[str]) -> bool:
    return any(term.lower() in sentence_lower for term in terms if term)


def detect_hallucinations(
    answer_text: str,
    profile: dict,
    brands: list[str],
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    severity_threshold: str = DEFAULT_SEVERITY_THRESHOLD,
) -> list[HallucinationFinding]:
    """
    Compare an answer with the profile facts.

    Args:
        answer_text: Answer to check
        profile: Workspace knowledge profile ({"facts": [...]})
        brands: Workspace brand terms; text facts are only checked in
            sentences about the brand (every sentence when empty)
        min_confidence: Findings below this are dropped
        severity_threshold: Findings less severe than this are dropped

    Returns:
        At most one finding per (fact, sentence)

    Raises:
        ValueError: On an unknown severity threshold

    Example:
        >>> profile = {"facts": [{"type": "founding_year", "value": "2008",
        ...                       "keywords": ["founded"]}]}
        >>> [f.ai_statement for f in detect_hallucinations("Acme was founded in 2011.", profile, ["Acme"])]
        ['Acme was founded in 2011.']
    """
    if severity_threshold not in SEVERITIES:
        raise ValueError(f"Unknown severity threshold: {severity_threshold}")
    min_rank = SEVERITIES.index(severity_threshold)

    facts = profile.get("facts") if isinstance(profile, dict) else None
    if not facts or not answer_text:
        return []

    sentences = split_sentences(answer_text)
    findings: list[HallucinationFinding] = []

    for fact in facts:
        if not isinstance(fact, dict):
            continue
        value = str(fact.get("value") or "").strip()
        keywords = [str(k) for k in fact.get("keywords") or [] if str(k).strip()]
        if not value or not keywords:
            continue

        severity = fact.get("severity") if fact.get("severity") in SEVERITIES else "medium"
        if SEVERITIES.index(severity) < min_rank:
            continue

        fact_type = str(fact.get("type") or "fact")
        fact_numbers = _numbers(value)

        for sentence in sentences:
            lower = sentence.lower()
            if not _mentions_any(lower, keywords) or value.lower() in lower:
                continue

            if fact_numbers:
                stated = _numbers(sentence)
                if not stated or stated & fact_numbers:
                    continue
                confidence = NUMERIC_CONTRADICTION_CONFIDENCE
            else:
                if brands and not _mentions_any(lower, brands):
                    continue
                confidence = TEXT_CONTRADICTION_CONFIDENCE

            if confidence < min_confidence:
                continue

            findings.append(
                HallucinationFinding(
                    fact_type=fact_type,
                    ai_statement=sentence,
                    correct_fact=value,
                    severity=severity,
                    confidence=confidence,
                    context=answer_text[:500],
                )
            )

    return findings
