"""
Structured extraction data model.

StructuredExtraction is the single canonical shape produced by every
extraction strategy (rule-based or LLM-assisted) and stored in the
extraction cache. Records coming from untrusted sources (model output,
cache rows) always pass through normalize_mention() /
normalize_competitor() before use.

Serialized form (to_dict) uses camelCase keys so the JSON written to the
cache and to answer payloads matches the extraction prompt's schema.
"""

from dataclasses import dataclass, field
from typing import Any

from ai_visibility.config.constants import (
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_FUZZY_THRESHOLD,
    MAX_EXTRACTION_ANSWER_CHARS,
)

SENTIMENTS = ("positive", "neutral", "negative")
RELATIONSHIPS = ("direct_competitor", "indirect_competitor", "partner", "supplier", "other")

DEFAULT_RECORD_CONFIDENCE = 0.7
DEFAULT_METADATA_CONFIDENCE = 0.8


@dataclass
class ExtractedMention:
    """
    A brand mention found in an answer.

    Attributes:
        brand: Brand as it appeared in the text
        canonical_brand: Normalized brand name ("" when unknown)
        position: Character offset of the mention, None when not locatable
        sentiment: positive / neutral / negative
        snippet: Text around the mention
        context: Sentence or context description
        relationship: Relationship to the tracked brand
        comparison: Comparison statement, "" when none
        confidence: 0.0-1.0
        list_rank: 1-based rank when the mention sits in a numbered or
            bulleted list, else None
        source: "rule", "sweep" or "llm"
    """

    brand: str
    canonical_brand: str = ""
    position: int | None = None
    sentiment: str = "neutral"
    snippet: str = ""
    context: str = ""
    relationship: str = "other"
    comparison: str = ""
    confidence: float = DEFAULT_RECORD_CONFIDENCE
    list_rank: int | None = None
    source: str = "rule"

    def dedupe_key(self) -> tuple[str, int | None]:
        """Mentions with the same key are the same mention."""
        return self.brand.lower(), self.position

    def to_dict(self) -> dict[str, Any]:
        return {
            "brand": self.brand,
            "canonicalBrand": self.canonical_brand,
            "position": self.position,
            "sentiment": self.sentiment,
            "snippet": self.snippet,
            "context": self.context,
            "relationship": self.relationship,
            "comparison": self.comparison,
            "confidence": self.confidence,
            "listRank": self.list_rank,
            "source": self.source,
        }


@dataclass
class CompetitorRecord:
    """A competing brand seen in the answer."""

    brand: str
    relationship: str = "other"
    mention_count: int = 0
    contexts: list[str] = field(default_factory=list)
    confidence: float = DEFAULT_RECORD_CONFIDENCE

    def to_dict(self) -> dict[str, Any]:
        return {
            "brand": self.brand,
            "relationship": self.relationship,
            "mentionCount": self.mention_count,
            "contexts": list(self.contexts),
            "confidence": self.confidence,
        }


@dataclass
class CitationRecord:
    """A cited URL or bare domain, ranked by first appearance (1-based)."""

    url: str
    domain: str
    rank: int
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "domain": self.domain,
            "rank": self.rank,
            "confidence": self.confidence,
        }


@dataclass
class SentimentResult:
    """Answer-level sentiment: label plus score in [-1.0, 1.0]."""

    label: str = "neutral"
    score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "score": self.score}


@dataclass
class ExtractionMetadata:
    """
    How an extraction was produced.

    Attributes:
        method: "rule_based" or "llm"
        model: Extraction model ("rule-based" for local heuristics)
        timestamp: ISO 8601 'Z' timestamp
        confidence: Overall confidence (0.0 for the empty bundle)
        parse_stage: Repair stage that produced the data (llm only):
            direct, repaired, scraped or empty
    """

    method: str = "rule_based"
    model: str = "rule-based"
    timestamp: str = ""
    confidence: float = DEFAULT_METADATA_CONFIDENCE
    parse_stage: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "model": self.model,
            "timestamp": self.timestamp,
            "confidence": self.confidence,
            "parseStage": self.parse_stage,
        }


@dataclass
class StructuredExtraction:
    """Canonical extraction bundle."""

    mentions: list[ExtractedMention] = field(default_factory=list)
    competitors: list[CompetitorRecord] = field(default_factory=list)
    citations: list[CitationRecord] = field(default_factory=list)
    sentiment: SentimentResult = field(default_factory=SentimentResult)
    insights: list[str] = field(default_factory=list)
    metadata: ExtractionMetadata = field(default_factory=ExtractionMetadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mentions": [m.to_dict() for m in self.mentions],
            "competitors": [c.to_dict() for c in self.competitors],
            "citations": [c.to_dict() for c in self.citations],
            "sentiment": self.sentiment.to_dict(),
            "insights": list(self.insights),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StructuredExtraction":
        """
        Rebuild a bundle from its serialized form (e.g. a cache row).

        Every record is re-normalized, so partially valid data still yields
        the canonical shape.
        """
        if not isinstance(data, dict):
            return cls()

        mentions = [
            normalize_mention(m) for m in data.get("mentions") or [] if isinstance(m, dict)
        ]
        competitors = [
            normalize_competitor(c) for c in data.get("competitors") or [] if isinstance(c, dict)
        ]

        citations = []
        for item in data.get("citations") or []:
            if isinstance(item, dict) and item.get("url"):
                citations.append(
                    CitationRecord(
                        url=str(item["url"]),
                        domain=str(item.get("domain") or ""),
                        rank=_as_int(item.get("rank")) or len(citations) + 1,
                        confidence=_as_confidence(item.get("confidence"), 1.0),
                    )
                )

        raw_sentiment = data.get("sentiment") or {}
        sentiment = SentimentResult(
            label=_as_choice(raw_sentiment.get("label"), SENTIMENTS, "neutral"),
            score=float(raw_sentiment.get("score") or 0.0),
        )

        raw_meta = data.get("metadata") or {}
        metadata = ExtractionMetadata(
            method=str(raw_meta.get("method") or "rule_based"),
            model=str(raw_meta.get("model") or "rule-based"),
            timestamp=str(raw_meta.get("timestamp") or ""),
            confidence=_as_confidence(raw_meta.get("confidence"), DEFAULT_METADATA_CONFIDENCE),
            parse_stage=raw_meta.get("parseStage"),
        )

        insights = [str(i) for i in data.get("insights") or [] if i]

        return cls(
            mentions=mentions,
            competitors=competitors,
            citations=citations,
            sentiment=sentiment,
            insights=insights,
            metadata=metadata,
        )


@dataclass
class ExtractionOptions:
    """
    Knobs for one extract() call.

    Attributes:
        method: "rule_based" or "llm"
        min_confidence: Threshold; None uses the method default
            (0.4 rule-based, 0.7 llm)
        include_insights: Keep insights from the llm strategy
        context_window: Snippet characters on each side of a mention
        fuzzy_threshold: rapidfuzz ratio for typo matches, 0 disables
        max_answer_chars: Truncation for the llm extraction prompt
    """

    method: str = "rule_based"
    min_confidence: float | None = None
    include_insights: bool = True
    context_window: int = DEFAULT_CONTEXT_WINDOW
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD
    max_answer_chars: int = MAX_EXTRACTION_ANSWER_CHARS


# ============================================================================
# Normalization
# ============================================================================


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_confidence(value: Any, default: float) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(0.0, min(1.0, number))


def _as_choice(value: Any, choices: tuple[str, ...], default: str) -> str:
    text = _as_str(value).lower()
    return text if text in choices else default


def normalize_mention(raw: dict[str, Any]) -> ExtractedMention:
    """
    Coerce an untrusted mention record into an ExtractedMention.

    Accepts both camelCase (model output, cache) and snake_case keys.
    Missing strings become "", confidence defaults to 0.7, sentiment to
    "neutral" and relationship to "other".

    Example:
        >>> normalize_mention({"brand": "Acme"}).confidence
        0.7
    """
    return ExtractedMention(
        brand=_as_str(raw.get("brand")),
        canonical_brand=_as_str(raw.get("canonicalBrand", raw.get("canonical_brand"))),
        position=_as_int(raw.get("position")),
        sentiment=_as_choice(raw.get("sentiment"), SENTIMENTS, "neutral"),
        snippet=_as_str(raw.get("snippet")),
        context=_as_str(raw.get("context")),
        relationship=_as_choice(raw.get("relationship"), RELATIONSHIPS, "other"),
        comparison=_as_str(raw.get("comparison")),
        confidence=_as_confidence(raw.get("confidence"), DEFAULT_RECORD_CONFIDENCE),
        list_rank=_as_int(raw.get("listRank", raw.get("list_rank"))),
        source=_as_str(raw.get("source")) or "llm",
    )


def normalize_competitor(raw: dict[str, Any]) -> CompetitorRecord:
    """Coerce an untrusted competitor record into a CompetitorRecord."""
    contexts = raw.get("contexts")
    if not isinstance(contexts, list):
        contexts = []

    mention_count = _as_int(raw.get("mentionCount", raw.get("mention_count")))

    return CompetitorRecord(
        brand=_as_str(raw.get("brand")),
        relationship=_as_choice(raw.get("relationship"), RELATIONSHIPS, "other"),
        mention_count=mention_count if mention_count and mention_count > 0 else 0,
        contexts=[_as_str(c) for c in contexts if _as_str(c)],
        confidence=_as_confidence(raw.get("confidence"), DEFAULT_RECORD_CONFIDENCE),
    )
