"""
Citation extraction.

Finds full URLs and bare domain names in answer text and ranks them by
first appearance. Full URLs get confidence 1.0; bare domains (no scheme,
e.g. "see hubspot.com") get 0.6 and are stored as https://<domain>.
Citations are deduplicated by normalized URL, first occurrence wins.
"""

import re
from urllib.parse import urlsplit

from ai_visibility.extractor.models import CitationRecord

FULL_URL_CONFIDENCE = 1.0
BARE_DOMAIN_CONFIDENCE = 0.6

_URL_RE = re.compile(r"https?://[^\s<>()\[\]\"'`]+", re.IGNORECASE)

_BARE_DOMAIN_RE = re.compile(
    r"(?<![@/\w.-])((?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+"
    r"(?:com|net|org|io|co|ai|app|dev|tv|me|us|uk|ca|au|de|fr|es|it|nl|ch|jp|in))"
    r"(?![\w-])",
    re.IGNORECASE,
)

_TRAILING_PUNCTUATION = ".,;:!?)]}'\"*"


def _domain_of(url: str) -> str:
    host = urlsplit(url).hostname or ""
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def normalize_url(url: str) -> str:
    """
    Canonical form used for deduplication.

    Lower-cases scheme and host and drops a trailing slash.

    Example:
        >>> normalize_url("HTTPS://Example.com/Docs/")
        'https://example.com/Docs'
    """
    parts = urlsplit(url)
    normalized = f"{parts.scheme.lower()}://{parts.netloc.lower()}{parts.path}"
    if parts.query:
        normalized += f"?{parts.query}"
    return normalized.rstrip("/")


def extract_citations(text: str) -> list[CitationRecord]:
    """
    Extract ranked citations from answer text.

    Args:
        text: Answer text

    Returns:
        Citations ordered by first appearance, rank starting at 1

    Example:
        >>> [c.url for c in extract_citations("See https://acme.io/docs and globex.com.")]
        ['https://acme.io/docs', 'https://globex.com']
    """
    if not text:
        return []

    found: list[tuple[int, str, float]] = []
    url_spans: list[tuple[int, int]] = []

    for match in _URL_RE.finditer(text):
        url = match.group().rstrip(_TRAILING_PUNCTUATION)
        if not _domain_of(url):
            continue
        url_spans.append((match.start(), match.end()))
        found.append((match.start(), url, FULL_URL_CONFIDENCE))

    for match in _BARE_DOMAIN_RE.finditer(text):
        start, end = match.span(1)
        if any(s <= start < e for s, e in url_spans):
            continue
        found.append((start, f"https://{match.group(1).lower()}", BARE_DOMAIN_CONFIDENCE))

    found.sort(key=lambda item: item[0])

    citations: list[CitationRecord] = []
    seen: set[str] = set()
    for _, url, confidence in found:
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        citations.append(
            CitationRecord(
                url=url,
                domain=_domain_of(url),
                rank=len(citations) + 1,
                confidence=confidence,
            )
        )

    return citations
