"""
Rule-based brand mention detection.

Two passes run over every answer:

1. Brand matching (find_brand_mentions) against the workspace's brand
   terms and their derived variations ("booking.com" also matches
   "booking"). Exact matches use word-boundary regex; near-misses use
   rapidfuzz over word windows. Each match gets a confidence score and is
   filtered by a minimum confidence.

2. Brand sweep (sweep_brand_mentions) for every other brand-looking token:
   domain names (confidence 0.8) and capitalized phrases (confidence 0.6).
   These feed the competitor list.

Key features:
- Word-boundary matching ("hub" never matches inside "GitHub")
- Case-insensitive detection
- Position = character offset of the mention in the answer
- List rank for mentions inside numbered or bulleted lists

Security:
- Always uses re.escape() on brand terms to prevent regex injection
"""

import re

from rapidfuzz import fuzz

from ai_visibility.config.constants import (
    DEFAULT_BRAND_MIN_CONFIDENCE,
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_FUZZY_THRESHOLD,
)
from ai_visibility.extractor.models import ExtractedMention
from ai_visibility.extractor.sentiment import analyze_sentiment

# Top-level domains stripped when deriving brand variations
STRIPPABLE_TLDS = ("com", "net", "org", "io", "co", "ai", "app")

# Words in the 20 characters before a match that suggest a product name
BRAND_INDICATORS = ("by", "from", "using", "with", "via", "powered by")

# Brand terms that are also everyday words get a confidence penalty
PENALIZED_BRAND_WORDS = frozenset(["the", "and", "or", "but", "in", "on", "at", "to", "for"])

INDICATOR_LOOKBEHIND = 20
INDICATOR_BOOST = 0.1
COMMON_WORD_PENALTY = 0.3
FUZZY_WORD_CREDIT = 0.8

SWEEP_DOMAIN_CONFIDENCE = 0.8
SWEEP_PHRASE_CONFIDENCE = 0.6
SWEEP_MIN_LENGTH = 3

_INDICATOR_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(i) for i in BRAND_INDICATORS) + r")\b"
)
_TLD_SUFFIX_RE = re.compile(r"\.(?:" + "|".join(STRIPPABLE_TLDS) + r")$")
_TOKEN_RE = re.compile(r"\S+")

_DOMAIN_RE = re.compile(
    r"\b([a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9]\."
    r"(?:com|net|org|io|co|ai|app|dev|tv|me|us|uk|ca|au|de|fr|es|it|nl|se|no|dk|fi|pl|"
    r"ch|at|be|ie|pt|jp|kr|in|sg|hk|tw|br|mx|ru|cn))\b",
    re.IGNORECASE,
)

_PHRASE_RE = re.compile(
    r"(?:^|[.!?;:\-–—\s])"
    r"([A-Z][a-z]+(?:[A-Z][a-z]+)*(?:\s+[A-Z][a-z]+(?:[A-Z][a-z]+)*)*(?:\.[a-z]+)?)"
    r"(?=\s|$|[.!?;:\-–—,])"
)

_NUMBERED_ITEM_RE = re.compile(r"(\d+)[.)]\s*(?:\*\*)?$")
_BULLET_ITEM_RE = re.compile(r"(?:^|\n)[ \t]*[-*•][ \t]*(?:\*\*)?$")
_BULLET_LINE_RE = re.compile(r"^[ \t]*[-*•][ \t]", re.MULTILINE)

# Capitalized words that start sentences far more often than they name brands
SWEEP_STOPWORDS = frozenset(
    """
    the a an and or but in on at to for of with by from as is was are were been be
    have has had do does did will would could should may might must can this that
    these those i you he she it we they what which who when where why how all each
    every some any no many much more most few little less least one two three first
    second third last next previous other another here there everywhere somewhere
    nowhere anywhere today yesterday tomorrow now then before after during while
    about above across against along among around behind below beneath beside
    between beyond except inside outside through throughout under underneath until
    upon within without if however also overall finally additionally consider
    compare try use choose check see visit note both either yes
    monday tuesday wednesday thursday friday saturday sunday
    """.split()
)

MONTH_WORDS = frozenset(
    """
    jan feb mar apr may jun jul aug sep sept oct nov dec january february march
    april june july august september october november december
    """.split()
)


# ============================================================================
# Helpers
# ============================================================================


def create_brand_pattern(term: str) -> re.Pattern:
    """
    Create a word-boundary, case-insensitive pattern for a brand term.

    Example:
        >>> bool(create_brand_pattern("HubSpot").search("I recommend hubspot"))
        True
        >>> bool(create_brand_pattern("hub").search("I use GitHub"))
        False
    """
    if not term or term.isspace():
        raise ValueError("Brand term cannot be empty or whitespace")
    return re.compile(r"\b" + re.escape(term) + r"\b", re.IGNORECASE)


def brand_variations(brands: list[str]) -> dict[str, str]:
    """
    Map every matchable variation (lower case) to its original brand term.

    Variations added per brand:
    - the brand itself
    - the first domain label ("booking.com" -> "booking")
    - the brand without a common TLD ("acme.io" -> "acme")
    Derived variations shorter than 3 characters are ignored. The first
    brand claiming a variation keeps it.

    Example:
        >>> brand_variations(["Booking.com"])
        {'booking.com': 'Booking.com', 'booking': 'Booking.com'}
    """
    variations: dict[str, str] = {}

    for brand in brands:
        original = brand.strip()
        if not original:
            continue
        lowered = original.lower()
        variations.setdefault(lowered, original)

        if "." in lowered:
            base = lowered.split(".", 1)[0]
            if base != lowered and len(base) > 2:
                variations.setdefault(base, original)

        without_tld = _TLD_SUFFIX_RE.sub("", lowered)
        if without_tld != lowered and len(without_tld) > 2:
            variations.setdefault(without_tld, original)

    return variations


def extract_snippet(text: str, index: int, context_window: int = DEFAULT_CONTEXT_WINDOW) -> str:
    """Text from index - context_window to index + context_window."""
    start = max(0, index - context_window)
    end = min(len(text), index + context_window)
    return text[start:end]


def list_rank_at(text: str, index: int) -> int | None:
    """
    Rank of the list item a mention sits in, if any.

    Numbered items ("3. Acme") return their number; bullet items return how
    many bullets precede them, counting their own.

    Example:
        >>> list_rank_at("1. Foo\\n2. Acme", 10)
        2
    """
    before = text[max(0, index - 50) : index]

    numbered = _NUMBERED_ITEM_RE.search(before)
    if numbered:
        return int(numbered.group(1))

    if _BULLET_ITEM_RE.search(before):
        line_start = text.rfind("\n", 0, index) + 1
        return len(_BULLET_LINE_RE.findall(text[:line_start])) + 1

    return None


def exact_match_confidence(term: str, index: int, lowered_text: str) -> float:
    """
    Confidence of an exact match.

    Starts at 1.0; +0.1 when a brand indicator ("by", "using", ...) appears
    in the 20 preceding characters; -0.3 when the term is a common word.
    Clamped to [0, 1].
    """
    confidence = 1.0

    before = lowered_text[max(0, index - INDICATOR_LOOKBEHIND) : index]
    if _INDICATOR_RE.search(before):
        confidence += INDICATOR_BOOST

    if term.lower() in PENALIZED_BRAND_WORDS:
        confidence -= COMMON_WORD_PENALTY

    return max(0.0, min(1.0, confidence))


def _first_content_word_offset(phrase: str) -> int | None:
    """Offset of the first word that is not a sweep stopword, or None."""
    for word in _TOKEN_RE.finditer(phrase):
        if word.group().lower() not in SWEEP_STOPWORDS:
            return word.start()
    return None


def _clean_token(token: str) -> str:
    return token.strip(".,;:!?()[]{}\"'*`").lower()


def fuzzy_window_confidence(
    term_words: list[str], window_words: list[str], threshold: float
) -> float:
    """
    Confidence for a word window that nearly matches a multi-word term.

    Each word scores 1.0 when equal and 0.8 when its rapidfuzz ratio
    exceeds threshold; a window with any unmatched word, or with every
    word equal (an exact match), scores 0.0.
    """
    if len(term_words) != len(window_words):
        return 0.0

    total = 0.0
    all_equal = True
    for expected, actual in zip(term_words, window_words, strict=True):
        if expected == actual:
            total += 1.0
            continue
        all_equal = False
        if fuzz.ratio(expected, actual) > threshold:
            total += FUZZY_WORD_CREDIT
        else:
            return 0.0

    if all_equal:
        return 0.0
    return total / len(term_words)


def remove_overlapping_mentions(mentions: list[ExtractedMention]) -> list[ExtractedMention]:
    """
    Keep one mention per (brand, position) key, highest confidence first.

    Output is sorted by position (unlocatable mentions last).
    """
    best: dict[tuple[str, int | None], ExtractedMention] = {}
    for mention in mentions:
        key = mention.dedupe_key()
        current = best.get(key)
        if current is None or mention.confidence > current.confidence:
            best[key] = mention
    return sort_mentions(list(best.values()))


def sort_mentions(mentions: list[ExtractedMention]) -> list[ExtractedMention]:
    return sorted(
        mentions,
        key=lambda m: (m.position is None, m.position if m.position is not None else 0),
    )


def merge_mentions(
    primary: list[ExtractedMention], secondary: list[ExtractedMention]
) -> list[ExtractedMention]:
    """
    Merge two mention lists by lower(brand)+position; primary wins.

    Example:
        >>> rule = [ExtractedMention(brand="Acme", position=4, confidence=1.0)]
        >>> sweep = [ExtractedMention(brand="acme", position=4, confidence=0.6)]
        >>> [m.confidence for m in merge_mentions(rule, sweep)]
        [1.0]
    """
    merged: dict[tuple[str, int | None], ExtractedMention] = {}
    for mention in primary:
        merged.setdefault(mention.dedupe_key(), mention)
    for mention in secondary:
        merged.setdefault(mention.dedupe_key(), mention)
    return sort_mentions(list(merged.values()))


# ============================================================================
# Detection
# ============================================================================


def find_brand_mentions(
    text: str,
    brands: list[str],
    min_confidence: float = DEFAULT_BRAND_MIN_CONFIDENCE,
    context_window: int = DEFAULT_CONTEXT_WINDOW,
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> list[ExtractedMention]:
    """
    Find mentions of the given brands (and their variations) in text.

    Args:
        text: Answer text
        brands: Brand terms to look for
        min_confidence: Mentions below this confidence are dropped
        context_window: Snippet characters on each side of a mention
        fuzzy_threshold: rapidfuzz ratio a word must exceed to count as a
            typo match; 0 disables fuzzy matching

    Returns:
        Deduplicated mentions sorted by position. brand is the original
        brand term even when a variation matched.

    Example:
        >>> mentions = find_brand_mentions("Try booking.com or Booking today", ["booking.com"])
        >>> [(m.brand, m.position) for m in mentions]
        [('booking.com', 4), ('booking.com', 19)]
    """
    if not text or not brands:
        return []

    lowered = text.lower()
    variations = brand_variations(brands)
    mentions: list[ExtractedMention] = []
    exact_spans: list[tuple[int, int]] = []

    for term, original in variations.items():
        for match in create_brand_pattern(term).finditer(text):
            index = match.start()
            exact_spans.append((index, match.end()))
            confidence = exact_match_confidence(term, index, lowered)
            if confidence < min_confidence:
                continue
            snippet = extract_snippet(text, index, context_window)
            mentions.append(
                ExtractedMention(
                    brand=original,
                    canonical_brand=original,
                    position=index,
                    sentiment=analyze_sentiment(snippet),
                    snippet=snippet,
                    confidence=confidence,
                    list_rank=list_rank_at(text, index),
                    source="rule",
                )
            )

    if fuzzy_threshold > 0:
        tokens = [(m.start(), m.end(), _clean_token(m.group())) for m in _TOKEN_RE.finditer(text)]
        for term, original in variations.items():
            term_words = term.split()
            width = len(term_words)
            for i in range(len(tokens) - width + 1):
                window = tokens[i : i + width]
                start, end = window[0][0], window[-1][1]
                if any(start < e and s < end for s, e in exact_spans):
                    continue
                confidence = fuzzy_window_confidence(
                    term_words, [w[2] for w in window], fuzzy_threshold
                )
                if confidence == 0.0 or confidence < min_confidence:
                    continue
                snippet = extract_snippet(text, start, context_window)
                mentions.append(
                    ExtractedMention(
                        brand=original,
                        canonical_brand=original,
                        position=start,
                        sentiment=analyze_sentiment(snippet),
                        snippet=snippet,
                        confidence=round(confidence, 3),
                        list_rank=list_rank_at(text, start),
                        source="rule",
                    )
                )

    return remove_overlapping_mentions(mentions)


def sweep_brand_mentions(
    text: str,
    exclude_brands: list[str] | None = None,
    min_length: int = SWEEP_MIN_LENGTH,
    context_window: int = DEFAULT_CONTEXT_WINDOW,
) -> list[ExtractedMention]:
    """
    Find brand-looking tokens regardless of the brand list.

    Domain names score 0.8, capitalized phrases 0.6. Leading stopwords are
    stripped from a phrase ("The Salesforce" -> "Salesforce"). Terms in
    exclude_brands (and their variations), month names and tokens shorter
    than min_length are skipped.

    Example:
        >>> [m.brand for m in sweep_brand_mentions("Compare Vrbo and expedia.com")]
        ['Vrbo', 'expedia.com']

    Note:
        Capitalized phrases are greedy: adjacent capitalized words form a
        single phrase ("Google Cloud Platform").
    """
    if not text:
        return []

    excluded = set(brand_variations(exclude_brands or []))
    mentions: list[ExtractedMention] = []

    for match in _DOMAIN_RE.finditer(text):
        brand = match.group(1)
        if brand.lower() in excluded or len(brand) < min_length:
            continue
        index = match.start(1)
        snippet = extract_snippet(text, index, context_window)
        mentions.append(
            ExtractedMention(
                brand=brand,
                canonical_brand=brand,
                position=index,
                sentiment=analyze_sentiment(snippet),
                snippet=snippet,
                confidence=SWEEP_DOMAIN_CONFIDENCE,
                list_rank=list_rank_at(text, index),
                source="sweep",
            )
        )

    for match in _PHRASE_RE.finditer(text):
        phrase = match.group(1)
        offset = _first_content_word_offset(phrase)
        if offset is None:
            continue

        brand = phrase[offset:].strip()
        lowered = brand.lower()
        first_word = lowered.split()[0]

        if lowered in excluded or len(brand) < min_length:
            continue
        if first_word in MONTH_WORDS:
            continue

        index = match.start(1) + offset
        snippet = extract_snippet(text, index, context_window)
        mentions.append(
            ExtractedMention(
                brand=brand,
                canonical_brand=brand,
                position=index,
                sentiment=analyze_sentiment(snippet),
                snippet=snippet,
                confidence=SWEEP_PHRASE_CONFIDENCE,
                list_rank=list_rank_at(text, index),
                source="sweep",
            )
        )

    return remove_overlapping_mentions(mentions)
