"""
LLM-assisted structured extraction.

Sends a secondary prompt (the structured-extraction template with the
truncated answer, the original prompt and the brand list) through an
`ask` callable, then recovers JSON from the reply with the repair
pipeline. Records are normalized and filtered by confidence.

The `ask` callable is injected (the orchestrator passes one backed by the
provider router) so this module has no provider dependency.
"""

import logging
from collections.abc import Awaitable, Callable

from ai_visibility.exceptions import ExtractionParseError
from ai_visibility.extractor.json_repair import parse_extraction_json
from ai_visibility.extractor.mention_detector import extract_snippet, list_rank_at, sort_mentions
from ai_visibility.extractor.models import (
    DEFAULT_METADATA_CONFIDENCE,
    CompetitorRecord,
    ExtractedMention,
    ExtractionMetadata,
    ExtractionOptions,
    normalize_competitor,
    normalize_mention,
)
from ai_visibility.system_prompts import get_extraction_template
from ai_visibility.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

AskCallable = Callable[[str], Awaitable[str]]

NO_BRANDS_PLACEHOLDER = "all brands mentioned"


def build_extraction_prompt(
    answer_text: str, prompt_text: str, brands: list[str], max_answer_chars: int
) -> str:
    """
    Render the extraction instruction for one answer.

    Example:
        >>> text = build_extraction_prompt("Acme is great", "Best CRM?", [], 8000)
        >>> "Brands to specifically look for: all brands mentioned" in text
        True
    """
    template = get_extraction_template()
    return template.render(
        prompt_text=prompt_text,
        answer_text=answer_text[:max_answer_chars],
        brands=", ".join(brands) or NO_BRANDS_PLACEHOLDER,
    )


def _locate(mention: ExtractedMention, answer_text: str, context_window: int) -> ExtractedMention:
    """Fill position, snippet and list rank when the model left them out."""
    if mention.position is None or not 0 <= mention.position < len(answer_text):
        index = answer_text.lower().find(mention.brand.lower()) if mention.brand else -1
        mention.position = index if index >= 0 else None

    if mention.position is not None:
        if not mention.snippet:
            mention.snippet = extract_snippet(answer_text, mention.position, context_window)
        if mention.list_rank is None:
            mention.list_rank = list_rank_at(answer_text, mention.position)

    if not mention.snippet:
        mention.snippet = mention.context
    return mention


async def extract_with_llm(
    answer_text: str,
    prompt_text: str,
    brands: list[str],
    ask: AskCallable,
    options: ExtractionOptions,
    min_confidence: float,
) -> tuple[list[ExtractedMention], list[CompetitorRecord], list[str], ExtractionMetadata]:
    """
    Run the LLM strategy.

    Args:
        answer_text: Answer to analyze
        prompt_text: Prompt that produced the answer
        brands: Brand terms to look for
        ask: Coroutine sending a prompt to an extraction model
        options: Extraction options
        min_confidence: Records below this are dropped

    Returns:
        (mentions, competitors, insights, metadata). metadata.parse_stage
        records which repair stage produced the data.

    Raises:
        ExtractionParseError: If no repair stage recovers an object
        Whatever `ask` raises; extract() turns both into an empty bundle.
    """
    instruction = build_extraction_prompt(
        answer_text, prompt_text, brands, options.max_answer_chars
    )
    raw = await ask(instruction)
    outcome = parse_extraction_json(raw)

    logger.debug(f"Extraction output parsed at stage: {outcome.stage}")

    if outcome.data is None:
        raise ExtractionParseError(
            f"Extraction output could not be parsed ({len(raw or '')} chars)"
        )

    data = outcome.data

    mentions: list[ExtractedMention] = []
    for raw_mention in data.get("mentions") or []:
        if not isinstance(raw_mention, dict):
            continue
        mention = normalize_mention({**raw_mention, "source": "llm"})
        if not mention.brand or mention.confidence < min_confidence:
            continue
        mentions.append(_locate(mention, answer_text, options.context_window))

    competitors = []
    for raw_competitor in data.get("competitors") or []:
        if not isinstance(raw_competitor, dict):
            continue
        competitor = normalize_competitor(raw_competitor)
        if competitor.brand and competitor.confidence >= min_confidence:
            competitors.append(competitor)

    insights: list[str] = []
    if options.include_insights:
        insights = [str(item).strip() for item in data.get("insights") or [] if str(item).strip()]

    raw_meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    metadata = ExtractionMetadata(
        method="llm",
        model=str(raw_meta.get("model") or "llm"),
        timestamp=utc_timestamp(),
        confidence=DEFAULT_METADATA_CONFIDENCE,
        parse_stage=outcome.stage,
    )

    # one record per (brand, position); first occurrence wins
    unique: dict[tuple[str, int | None], ExtractedMention] = {}
    for mention in mentions:
        unique.setdefault(mention.dedupe_key(), mention)

    return sort_mentions(list(unique.values())), competitors, insights, metadata
