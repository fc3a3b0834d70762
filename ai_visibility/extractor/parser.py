"""
Answer extraction entry point.

extract() turns a raw answer into a StructuredExtraction: brand mentions,
competitors, ranked citations, answer sentiment and (LLM strategy)
insights. It is the single entry point the orchestrator uses.

Two strategies, selected by ExtractionOptions.method:

1. rule_based (default): local heuristics, no network calls.
   - find_brand_mentions() for the workspace brand terms
   - sweep_brand_mentions() for every other brand-looking token
   - merged by lower(brand)+position, brand-term matches win
   - sweep hits that aren't brand terms become competitors
2. llm: structured extraction through an injected `ask` callable with
   JSON repair (see extractor.structured).

extract() never raises. Any failure is logged and produces the empty
canonical bundle (metadata confidence 0.0), so extraction problems can
never fail a job.

Example:
    >>> result = await extract(
    ...     answer_text="1. Acme CRM is the best. 2. Globex is limited.",
    ...     prompt_text="Best CRM tools?",
    ...     brands_to_search=["Acme"],
    ... )
    >>> [m.brand for m in result.mentions]
    ['Acme', 'Globex']
"""

import logging

from ai_visibility.config.constants import DEFAULT_BRAND_MIN_CONFIDENCE, DEFAULT_LLM_MIN_CONFIDENCE
from ai_visibility.exceptions import ExtractionParseError
from ai_visibility.extractor.citations import extract_citations
from ai_visibility.extractor.json_repair import STAGE_EMPTY
from ai_visibility.extractor.mention_detector import (
    brand_variations,
    find_brand_mentions,
    merge_mentions,
    sweep_brand_mentions,
)
from ai_visibility.extractor.models import (
    DEFAULT_METADATA_CONFIDENCE,
    CompetitorRecord,
    ExtractedMention,
    ExtractionMetadata,
    ExtractionOptions,
    StructuredExtraction,
)
from ai_visibility.extractor.sentiment import classify_answer_sentiment
from ai_visibility.extractor.structured import AskCallable, extract_with_llm
from ai_visibility.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

RULE_BASED_MODEL = "rule-based"

# Contexts kept per competitor record
MAX_COMPETITOR_CONTEXTS = 3


def empty_extraction(method: str = "rule_based") -> StructuredExtraction:
    """The canonical empty bundle (metadata confidence 0.0)."""
    return StructuredExtraction(
        metadata=ExtractionMetadata(
            method=method,
            model=RULE_BASED_MODEL if method == "rule_based" else "llm",
            timestamp=utc_timestamp(),
            confidence=0.0,
        )
    )


def competitors_from_mentions(
    mentions: list[ExtractedMention], brands: list[str]
) -> list[CompetitorRecord]:
    """
    Group sweep mentions that aren't brand terms into competitor records.

    Records are ordered by first appearance; confidence is the highest
    confidence seen for that competitor.
    """
    own = set(brand_variations(brands))
    grouped: dict[str, CompetitorRecord] = {}

    for mention in mentions:
        if mention.source != "sweep" or mention.brand.lower() in own:
            continue
        key = mention.brand.lower()
        record = grouped.get(key)
        if record is None:
            record = CompetitorRecord(brand=mention.brand, relationship="other", confidence=0.0)
            grouped[key] = record
        record.mention_count += 1
        record.confidence = max(record.confidence, mention.confidence)
        if mention.snippet and len(record.contexts) < MAX_COMPETITOR_CONTEXTS:
            record.contexts.append(mention.snippet)

    return list(grouped.values())


def _rule_based(
    answer_text: str, brands: list[str], options: ExtractionOptions, min_confidence: float
) -> StructuredExtraction:
    brand_hits = find_brand_mentions(
        answer_text,
        brands,
        min_confidence=min_confidence,
        context_window=options.context_window,
        fuzzy_threshold=options.fuzzy_threshold,
    )
    sweep_hits = [
        m
        for m in sweep_brand_mentions(
            answer_text, exclude_brands=brands, context_window=options.context_window
        )
        if m.confidence >= min_confidence
    ]
    mentions = merge_mentions(brand_hits, sweep_hits)

    return StructuredExtraction(
        mentions=mentions,
        competitors=competitors_from_mentions(mentions, brands),
        citations=extract_citations(answer_text),
        sentiment=classify_answer_sentiment(answer_text),
        insights=[],
        metadata=ExtractionMetadata(
            method="rule_based",
            model=RULE_BASED_MODEL,
            timestamp=utc_timestamp(),
            confidence=DEFAULT_METADATA_CONFIDENCE,
        ),
    )


async def extract(
    answer_text: str,
    prompt_text: str,
    brands_to_search: list[str],
    options: ExtractionOptions | None = None,
    ask: AskCallable | None = None,
) -> StructuredExtraction:
    """
    Extract structured signals from an answer. Never raises.

    Args:
        answer_text: Raw answer text
        prompt_text: Prompt that produced the answer
        brands_to_search: Brand terms to look for (may be empty)
        options: Strategy and thresholds (defaults to rule-based)
        ask: Coroutine for the llm strategy; without it the llm strategy
            falls back to rule-based

    Returns:
        StructuredExtraction in canonical shape
    """
    options = options or ExtractionOptions()
    brands = [b for b in brands_to_search if b and b.strip()]

    if not answer_text or not answer_text.strip():
        return empty_extraction(options.method)

    try:
        if options.method == "llm" and ask is not None:
            min_confidence = (
                options.min_confidence
                if options.min_confidence is not None
                else DEFAULT_LLM_MIN_CONFIDENCE
            )
            mentions, competitors, insights, metadata = await extract_with_llm(
                answer_text, prompt_text, brands, ask, options, min_confidence
            )
            return StructuredExtraction(
                mentions=mentions,
                competitors=competitors,
                citations=extract_citations(answer_text),
                sentiment=classify_answer_sentiment(answer_text),
                insights=insights,
                metadata=metadata,
            )

        if options.method == "llm":
            logger.warning("LLM extraction requested without an ask callable, using rule-based")

        min_confidence = (
            options.min_confidence
            if options.min_confidence is not None
            else DEFAULT_BRAND_MIN_CONFIDENCE
        )
        return _rule_based(answer_text, brands, options, min_confidence)

    except ExtractionParseError as e:
        logger.warning(f"{e}, returning empty result")
        result = empty_extraction(options.method)
        result.metadata.parse_stage = STAGE_EMPTY
        # citations and sentiment don't depend on the extraction model
        result.citations = extract_citations(answer_text)
        result.sentiment = classify_answer_sentiment(answer_text)
        return result

    except Exception as e:
        logger.error(
            f"Extraction failed, returning empty result: {e}",
            extra={"context": {"method": options.method, "error_type": type(e).__name__}},
        )
        return empty_extraction(options.method)
