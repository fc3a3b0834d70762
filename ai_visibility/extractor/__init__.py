"""
Extractor module for turning answer text into structured signals.

Public API:
    - extract: Single entry point (rule-based or LLM-assisted)
    - StructuredExtraction / ExtractionOptions: result and knobs
    - ExtractedMention / CompetitorRecord / CitationRecord: records
    - parse_extraction_json: JSON recovery pipeline for model output
"""

from ai_visibility.extractor.json_repair import RepairOutcome, parse_extraction_json
from ai_visibility.extractor.models import (
    CitationRecord,
    CompetitorRecord,
    ExtractedMention,
    ExtractionOptions,
    StructuredExtraction,
)
from ai_visibility.extractor.parser import extract

__all__ = [
    "CitationRecord",
    "CompetitorRecord",
    "ExtractedMention",
    "ExtractionOptions",
    "RepairOutcome",
    "StructuredExtraction",
    "extract",
    "parse_extraction_json",
]
