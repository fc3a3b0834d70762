"""
Tests for extractor.json_repair module.

Tests cover:
- Code fence stripping and balanced-object scanning
- Escape repair inside string literals
- Closing truncated output at the last complete value
- Scraping brand records from unparseable output
- Stage reporting of the full pipeline
- Serialized extraction output parsing without repair
"""

import json

import pytest

from ai_visibility.extractor import StructuredExtraction, extract
from ai_visibility.extractor.json_repair import (
    STAGE_DIRECT,
    STAGE_EMPTY,
    STAGE_REPAIRED,
    STAGE_SCRAPED,
    close_truncated_json,
    find_balanced_object,
    parse_extraction_json,
    repair_escapes,
    scan_cut_points,
    scrape_brand_records,
    strip_code_fences,
)


class TestScanning:
    """Test suite for the string-aware scanners."""

    def test_strip_code_fences(self):
        """Test that the fenced body is returned."""
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}\n'

    def test_strip_unfenced_text_unchanged(self):
        """Test that text without fences is returned as-is."""
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_balanced_object_ignores_braces_in_strings(self):
        """Test that a closing brace inside a string doesn't end the object."""
        assert find_balanced_object('Sure! {"a": "}"} trailing') == '{"a": "}"}'

    def test_balanced_object_handles_escaped_quotes(self):
        """Test that an escaped quote doesn't end the string."""
        text = '{"a": "say \\"}\\" now"} tail'

        assert find_balanced_object(text) == '{"a": "say \\"}\\" now"}'

    def test_unclosed_object_is_none(self):
        """Test that an object that never closes gives None."""
        assert find_balanced_object('{"a": [1, 2') is None
        assert find_balanced_object("no braces here") is None

    def test_cut_points_report_open_closers(self):
        """Test closers for a truncated nested value."""
        assert scan_cut_points('{"a": [1, 2')[-1] == (11, "]}")


class TestRepair:
    """Test suite for escape repair and truncation closing."""

    def test_invalid_escape_doubled(self):
        """Test that a Windows path becomes a legal JSON string."""
        assert repair_escapes('{"p": "C:\\data"}') == '{"p": "C:\\\\data"}'

    def test_valid_escapes_kept(self):
        """Test that legal escapes and unicode escapes are untouched."""
        text = '{"p": "line\\nnext \\u00e9 \\"q\\""}'

        assert repair_escapes(text) == text

    def test_raw_newline_in_string_escaped(self):
        """Test that a literal newline inside a string becomes \\n."""
        assert repair_escapes('{"p": "a\nb"}') == '{"p": "a\\nb"}'

    def test_close_truncated_object(self):
        """Test that a cut-off array of objects is closed."""
        result = close_truncated_json('{"mentions": [{"brand": "Acme", "confidence": 0.9}')

        assert result == {"mentions": [{"brand": "Acme", "confidence": 0.9}]}

    def test_close_drops_incomplete_tail(self):
        """Test that a half-written record is dropped, earlier ones kept."""
        result = close_truncated_json('{"mentions": [{"brand": "Acme"}, {"brand": "Glob')

        assert result == {"mentions": [{"brand": "Acme"}]}

    def test_close_without_brace_is_none(self):
        """Test that text without an object gives None."""
        assert close_truncated_json("nothing") is None


class TestScrape:
    """Test suite for scrape_brand_records()."""

    def test_scrape_sections(self):
        """Test that brand pairs are collected per section with defaults."""
        text = '{"mentions" [{"brand": "Acme"}], "competitors" [{"brand": "Globex"'

        result = scrape_brand_records(text)

        assert [m["brand"] for m in result["mentions"]] == ["Acme"]
        assert [c["brand"] for c in result["competitors"]] == ["Globex"]
        assert result["mentions"][0]["confidence"] == 0.7
        assert result["mentions"][0]["sentiment"] == "neutral"

    def test_brand_outside_sections_ignored(self):
        """Test that brand pairs before any section are ignored."""
        assert scrape_brand_records('"brand": "Acme"') is None


class TestParseExtractionJson:
    """Test suite for the full pipeline."""

    def test_direct_from_fenced_output(self):
        """Test that fenced valid JSON parses at the direct stage."""
        outcome = parse_extraction_json('Here you go:\n```json\n{"mentions": []}\n```')

        assert outcome.stage == STAGE_DIRECT
        assert outcome.data == {"mentions": []}
        assert outcome.ok is True

    def test_direct_with_prose(self):
        """Test that prose around the object is ignored."""
        outcome = parse_extraction_json('Result: {"insights": ["a"]} Hope this helps!')

        assert outcome.stage == STAGE_DIRECT
        assert outcome.data == {"insights": ["a"]}

    def test_repaired_escape(self):
        """Test that an invalid escape is repaired."""
        outcome = parse_extraction_json('{"snippet": "C:\\path"}')

        assert outcome.stage == STAGE_REPAIRED
        assert outcome.data == {"snippet": "C:\\path"}

    def test_repaired_truncation(self):
        """Test the truncated Acme output recovers one mention."""
        outcome = parse_extraction_json('{"mentions": [{"brand": "Acme", "confidence": 0.9}')

        assert outcome.stage == STAGE_REPAIRED
        assert outcome.data["mentions"][0]["brand"] == "Acme"
        assert outcome.data["mentions"][0]["confidence"] == 0.9

    def test_scraped(self):
        """Test that structurally broken output falls back to scraping."""
        outcome = parse_extraction_json('{"mentions" [{"brand": "Acme"}]}')

        assert outcome.stage == STAGE_SCRAPED
        assert outcome.data["mentions"][0]["brand"] == "Acme"

    @pytest.mark.parametrize("raw", ["", "   ", "I cannot help with that."])
    def test_empty(self, raw):
        """Test that unrecoverable output reports the empty stage."""
        outcome = parse_extraction_json(raw)

        assert outcome.stage == STAGE_EMPTY
        assert outcome.data is None
        assert outcome.ok is False


class TestExtractionOutputParses:
    """Test suite for feeding extract() output back through the pipeline."""

    @pytest.mark.asyncio
    async def test_serialized_bundle_parses_directly(self):
        """Test that a serialized bundle needs no repair."""
        bundle = await extract(
            '1. Airbnb is the best "family" pick. Vrbo\\Homeaway is limited. '
            "See https://www.airbnb.com/help",
            "Best rentals?",
            ["Airbnb", "Vrbo"],
        )
        serialized = bundle.to_dict()

        outcome = parse_extraction_json(json.dumps(serialized))

        assert outcome.stage == STAGE_DIRECT
        assert outcome.data == serialized
        rebuilt = StructuredExtraction.from_dict(outcome.data)
        assert [m.brand for m in rebuilt.mentions] == [m.brand for m in bundle.mentions]
        assert [c.url for c in rebuilt.citations] == [c.url for c in bundle.citations]
