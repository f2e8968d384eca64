"""Unit tests for the response parser."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from models.response import ParseStrategy
from services.response_parser import parse_ai_response, normalize_page, validate_citation


class TestNormalizePage:
    """Test suite for page normalization."""

    @pytest.mark.parametrize("page,expected", [
        (2, "2"),
        (2.0, "2"),
        ("3-4", "3-4"),
        (" 5 ", "5"),
        ("", None),
        (None, None),
        (True, None),
        (float("nan"), None),
        ([1], None),
    ])
    def test_normalize_page(self, page, expected):
        assert normalize_page(page) == expected


class TestValidateCitation:
    """Test suite for citation validation."""

    def test_snippet_is_capped(self):
        citation = validate_citation({"page": 1, "snippet": "s" * 500})
        assert len(citation.snippet) == 200

    def test_missing_snippet_is_invalid(self):
        assert validate_citation({"page": 1}) is None
        assert validate_citation({"page": 1, "snippet": "   "}) is None
        assert validate_citation("page 1") is None

    def test_confidence_kept_only_when_string(self):
        assert validate_citation({"page": 1, "snippet": "s", "confidence": "high"}).confidence == "high"
        assert validate_citation({"page": 1, "snippet": "s", "confidence": 0.9}).confidence is None


class TestParseAIResponse:
    """Test suite for parse_ai_response."""

    def test_structured_json(self):
        result = parse_ai_response('{"answer":"x","citations":[{"page":2,"snippet":"s"}]}')

        assert result.strategy == ParseStrategy.STRUCTURED_JSON
        assert result.answer == "x"
        assert result.citations[0].page == "2"
        assert result.citations[0].snippet == "s"

    def test_json_embedded_in_prose(self):
        raw = 'Sure! Here is the result: {"answer": "Cells divide.", "citations": []} Hope that helps {'
        result = parse_ai_response(raw)

        assert result.strategy == ParseStrategy.EXTRACTED_JSON
        assert result.answer == "Cells divide."

    def test_fenced_json(self):
        raw = (
            "Using the {E} notation from the passages:\n"
            '```json\n{"answer": "Energy is conserved", "citations": [{"page": "4", "snippet": "first law"}]}\n```'
        )
        result = parse_ai_response(raw)

        assert result.strategy == ParseStrategy.FENCED_JSON
        assert result.answer == "Energy is conserved"
        assert result.citations[0].page == "4"

    def test_heuristic_answer_and_pages(self):
        raw = (
            "Answer: Osmosis moves water across membranes.\n"
            "Citations: see page 3 for the definition and pages 5-6 for examples, also page 3 again."
        )
        result = parse_ai_response(raw)

        assert result.strategy == ParseStrategy.HEURISTIC
        assert result.answer == "Osmosis moves water across membranes."
        assert [c.page for c in result.citations] == ["3", "5-6"]

    def test_heuristic_page_reference_only(self):
        result = parse_ai_response("The definition is on page 12 of the notes.")

        assert result.strategy == ParseStrategy.HEURISTIC
        assert result.answer == "The definition is on page 12 of the notes."
        assert result.citations[0].page == "12"

    def test_plain_text_falls_back_to_raw(self):
        result = parse_ai_response("  Just a plain answer.  ")

        assert result.strategy == ParseStrategy.RAW_FALLBACK
        assert result.answer == "Just a plain answer."
        assert result.citations == []

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_input_never_raises(self, raw):
        result = parse_ai_response(raw)
        assert result.answer == ""
        assert result.citations == []

    def test_json_without_answer_is_not_structured(self):
        result = parse_ai_response('{"citations": []}')
        assert result.strategy != ParseStrategy.STRUCTURED_JSON
        assert result.answer == '{"citations": []}'

    def test_invalid_citations_dropped_individually(self):
        raw = (
            '{"answer": "x", "citations": ['
            '{"page": 1, "snippet": "good"}, {"page": null, "snippet": "no page"}, '
            '{"page": 2}, {"page": 3.0, "snippet": "float page"}]}'
        )
        result = parse_ai_response(raw)

        assert [c.page for c in result.citations] == ["1", "3"]

    def test_non_list_citations_ignored(self):
        result = parse_ai_response('{"answer": "x", "citations": "page 1"}')
        assert result.citations == []

    @pytest.mark.parametrize("raw", ["[" * 100000, '{"a":' * 100000])
    def test_deeply_nested_input_falls_back_to_raw(self, raw):
        result = parse_ai_response(raw)

        assert result.strategy == ParseStrategy.RAW_FALLBACK
        assert result.answer == raw.strip()
        assert result.citations == []
