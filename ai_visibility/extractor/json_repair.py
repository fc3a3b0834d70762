"""
Recovery of JSON objects from extraction-model output.

Models asked for "ONLY valid JSON" still wrap it in code fences, prepend
prose, emit invalid escapes or stop mid-object when they hit a token
limit. parse_extraction_json() runs an ordered pipeline and stops at the
first stage that yields an object:

    1. direct    strip fences, take the first balanced {...}, json.loads
    2. repaired  trim to the first '{', fix invalid escapes, then close the
                 longest prefix that ends on a complete value with the
                 closers still open (in nesting order) and re-parse
    3. scraped   pull "brand": "<value>" pairs out of the "mentions" and
                 "competitors" sections with a string-aware tokenizer
    4. empty     nothing recoverable

The scanner used by stages 1 and 2 understands string literals and
backslash escapes, so braces inside strings never count toward depth.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

STAGE_DIRECT = "direct"
STAGE_REPAIRED = "repaired"
STAGE_SCRAPED = "scraped"
STAGE_EMPTY = "empty"

# Candidate prefixes tried in stage 2, newest cut point first
MAX_REPAIR_ATTEMPTS = 64

SCRAPED_DEFAULTS = {"confidence": 0.7, "sentiment": "neutral", "relationship": "other"}

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_VALID_ESCAPES = frozenset('"\\/bfnrt')
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_LITERALS = frozenset(["true", "false", "null"])
_CLOSERS = {"{": "}", "[": "]"}


@dataclass
class RepairOutcome:
    """
    Result of parse_extraction_json().

    Attributes:
        data: Parsed object, None only for the empty stage
        stage: direct, repaired, scraped or empty
    """

    data: dict[str, Any] | None
    stage: str

    @property
    def ok(self) -> bool:
        return self.data is not None


# ============================================================================
# Stage 1 helpers
# ============================================================================


def strip_code_fences(text: str) -> str:
    """
    Return the body of the first fenced block, or the text unchanged.

    Example:
        >>> strip_code_fences('```json\\n{"a": 1}\\n```')
        '{"a": 1}\\n'
    """
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1)
    return text.replace("```", "")


def find_balanced_object(text: str) -> str | None:
    """
    First {...} substring whose braces balance outside string literals.

    Returns None when there is no '{' or the object never closes.

    Example:
        >>> find_balanced_object('Sure! {"a": "}"} trailing')
        '{"a": "}"}'
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]

    return None


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


# ============================================================================
# Stage 2: escape repair and truncation closing
# ============================================================================


def repair_escapes(text: str) -> str:
    """
    Make string literals legal JSON.

    Inside strings: a backslash before a character that is not a valid
    escape is doubled, a unicode escape without four hex digits is
    doubled, and raw newlines, tabs and carriage returns are escaped.
    Text outside strings is copied unchanged.
    """
    out: list[str] = []
    in_string = False
    index = 0
    length = len(text)

    while index < length:
        char = text[index]

        if not in_string:
            if char == '"':
                in_string = True
            out.append(char)
            index += 1
            continue

        if char == '"':
            in_string = False
            out.append(char)
        elif char == "\\":
            nxt = text[index + 1] if index + 1 < length else ""
            if nxt in _VALID_ESCAPES:
                out.append(char + nxt)
                index += 2
                continue
            if (
                nxt == "u"
                and index + 6 <= length
                and all(c in _HEX_DIGITS for c in text[index + 2 : index + 6])
            ):
                out.append(text[index : index + 6])
                index += 6
                continue
            out.append("\\\\")
        elif char == "\n":
            out.append("\\n")
        elif char == "\r":
            out.append("\\r")
        elif char == "\t":
            out.append("\\t")
        else:
            out.append(char)
        index += 1

    return "".join(out)


@dataclass
class _Frame:
    kind: str  # "{" or "["
    expect: str  # object: key/colon/value/comma; array: value/comma


def scan_cut_points(text: str) -> list[tuple[int, str]]:
    """
    Positions where text[:pos] ends on a complete value, with open closers.

    Each entry is (pos, closers) where closers is the string that closes
    every container still open at pos, innermost first. Scanning stops
    when the outermost object closes.

    Example:
        >>> scan_cut_points('{"a": [1, 2')[-1]
        (11, ']}')
    """
    cuts: list[tuple[int, str]] = []
    stack: list[_Frame] = []
    in_string = False
    escaped = False
    string_is_key = False
    token_start: int | None = None
    index = 0
    length = len(text)

    def closers() -> str:
        return "".join(_CLOSERS[frame.kind] for frame in reversed(stack))

    def value_done(end: int) -> None:
        if stack:
            stack[-1].expect = "comma"
            cuts.append((end, closers()))

    def finish_token(end: int) -> None:
        nonlocal token_start
        if token_start is None:
            return
        token = text[token_start:end]
        token_start = None
        if token in _LITERALS or _NUMBER_RE.fullmatch(token):
            value_done(end)

    while index < length:
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                if string_is_key:
                    stack[-1].expect = "colon"
                else:
                    value_done(index + 1)
            index += 1
            continue

        if token_start is not None and (char.isspace() or char in ',:]}{["'):
            finish_token(index)

        if char == '"':
            in_string = True
            string_is_key = bool(stack) and stack[-1].kind == "{" and stack[-1].expect == "key"
        elif char in "{[":
            stack.append(_Frame(kind=char, expect="key" if char == "{" else "value"))
        elif char in "}]":
            if not stack:
                break
            stack.pop()
            if not stack:
                cuts.append((index + 1, ""))
                break
            value_done(index + 1)
        elif char == ":":
            if stack and stack[-1].kind == "{":
                stack[-1].expect = "value"
        elif char == ",":
            if stack:
                stack[-1].expect = "key" if stack[-1].kind == "{" else "value"
        elif not char.isspace() and token_start is None:
            token_start = index

        index += 1

    if token_start is not None and not in_string:
        finish_token(length)

    return cuts


def close_truncated_json(text: str) -> dict[str, Any] | None:
    """
    Parse the longest prefix of text that can be closed into an object.

    Example:
        >>> close_truncated_json('{"mentions": [{"brand": "Acme", "confidence": 0.9}')
        {'mentions': [{'brand': 'Acme', 'confidence': 0.9}]}
    """
    start = text.find("{")
    if start == -1:
        return None

    body = text[start:]
    cuts = scan_cut_points(body)

    for position, closing in reversed(cuts[-MAX_REPAIR_ATTEMPTS:]):
        parsed = _loads_object(body[:position] + closing)
        if parsed is not None:
            return parsed
    return None


# ============================================================================
# Stage 3: scraping
# ============================================================================


def _string_tokens(text: str) -> list[tuple[int, int, str]]:
    """
    (start, end, value) for every string literal, escapes decoded loosely.

    An unterminated final string runs to the end of the text.
    """
    tokens: list[tuple[int, int, str]] = []
    index = 0
    length = len(text)

    while index < length:
        if text[index] != '"':
            index += 1
            continue

        start = index
        index += 1
        chars: list[str] = []
        while index < length:
            char = text[index]
            if char == "\\" and index + 1 < length:
                chars.append(text[index + 1])
                index += 2
                continue
            if char == '"':
                break
            chars.append(char)
            index += 1

        end = min(index + 1, length)
        tokens.append((start, end, "".join(chars)))
        index = end

    return tokens


def _next_significant(text: str, index: int) -> str:
    """First non-whitespace character at or after index ("" at end)."""
    length = len(text)
    while index < length and text[index].isspace():
        index += 1
    return text[index] if index < length else ""


def scrape_brand_records(text: str) -> dict[str, Any] | None:
    """
    Salvage brand names from output too broken to parse.

    A section starts at a "mentions" or "competitors" string followed by
    ':' or '[' and ends at the next section string. Inside it every
    "brand": "<value>" pair becomes a record with default confidence,
    sentiment and relationship.

    Example:
        >>> scrape_brand_records('{"mentions" [{"brand": "Acme"}]}')["mentions"][0]["brand"]
        'Acme'
    """
    tokens = _string_tokens(text)
    sections: dict[str, list[dict[str, Any]]] = {"mentions": [], "competitors": []}
    current: str | None = None

    for position, (_, end, value) in enumerate(tokens):
        following = _next_significant(text, end)

        if value in sections and following in (":", "["):
            current = value
            continue

        if current is None or value != "brand" or following != ":":
            continue
        if position + 1 >= len(tokens):
            continue

        value_start, _, brand = tokens[position + 1]
        between = text[end:value_start]
        if between.strip() != ":":
            continue

        brand = brand.strip()
        if brand:
            sections[current].append({"brand": brand, **SCRAPED_DEFAULTS})

    if not sections["mentions"] and not sections["competitors"]:
        return None
    return sections


# ============================================================================
# Pipeline
# ============================================================================


def parse_extraction_json(raw: str) -> RepairOutcome:
    """
    Recover a JSON object from model output.

    Args:
        raw: Raw model output

    Returns:
        RepairOutcome; stage "empty" (data None) when nothing was recoverable

    Example:
        >>> parse_extraction_json('{"mentions": [{"brand": "Acme", "confidence": 0.9}').stage
        'repaired'
    """
    if not raw or not raw.strip():
        return RepairOutcome(data=None, stage=STAGE_EMPTY)

    text = strip_code_fences(raw).strip()

    candidate = find_balanced_object(text)
    if candidate is not None:
        parsed = _loads_object(candidate)
        if parsed is not None:
            return RepairOutcome(data=parsed, stage=STAGE_DIRECT)

    start = text.find("{")
    if start != -1:
        end = text.rfind("}")
        trimmed = text[start : end + 1] if end > start else text[start:]
        repaired = repair_escapes(trimmed)

        parsed = _loads_object(repaired)
        if parsed is None:
            parsed = close_truncated_json(repaired)
        if parsed is None and trimmed != text[start:]:
            # last '}' may sit inside a truncated tail; retry on the full tail
            parsed = close_truncated_json(repair_escapes(text[start:]))
        if parsed is not None:
            return RepairOutcome(data=parsed, stage=STAGE_REPAIRED)

    scraped = scrape_brand_records(text)
    if scraped is not None:
        return RepairOutcome(data=scraped, stage=STAGE_SCRAPED)

    return RepairOutcome(data=None, stage=STAGE_EMPTY)
