"""Recover a structured {answer, citations} result from free-form model output.

Strategies are tried in order and the first one that yields a result wins:
whole-text JSON, first embedded JSON object, fenced code block, regex
heuristics, and finally the raw text itself. Each strategy returns
Optional[ParsedResponse] rather than raising.
"""
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.response import Citation, ParsedResponse, ParseStrategy

logger = logging.getLogger(__name__)

MAX_SNIPPET_LENGTH = 200
SNIPPET_CONTEXT_CHARS = 100

_decoder = json.JSONDecoder()

FENCED_BLOCK_PATTERN = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
ANSWER_JSON_FIELD_PATTERN = re.compile(r'"answer"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
ANSWER_LABEL_PATTERN = re.compile(
    r"^\s*\**answer\**\s*[:\-]\s*(.+?)(?=\n\s*\**(?:citations?|sources?|references?)\**\s*[:\-]|\Z)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
PAGE_REFERENCE_PATTERN = re.compile(r"\bpages?\s+(\d+(?:\s*[-–]\s*\d+)?)", re.IGNORECASE)


def _load_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _from_record(record: Optional[Dict[str, Any]], strategy: ParseStrategy) -> Optional[ParsedResponse]:
    """Accept a decoded object only if it carries a non-empty string answer."""
    if not record:
        return None
    answer = record.get("answer")
    if not isinstance(answer, str) or not answer.strip():
        return None
    # Raw citation entries; parse_ai_response validates them
    citations = record.get("citations")
    return ParsedResponse(
        answer=answer.strip(),
        citations=citations if isinstance(citations, list) else [],
        strategy=strategy,
    )


def _first_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Decode the JSON object that opens at the first '{'.

    Trailing prose after the object is ignored. If that fails, the widest
    span from the first '{' to the last '}' is tried as a whole.
    """
    start = text.find("{")
    if start == -1:
        return None
    try:
        value, _ = _decoder.raw_decode(text, start)
    except (ValueError, RecursionError):
        end = text.rfind("}")
        value = _load_object(text[start:end + 1]) if end > start else None
    return value if isinstance(value, dict) else None


def parse_structured(text: str) -> Optional[ParsedResponse]:
    return _from_record(_load_object(text.strip()), ParseStrategy.STRUCTURED_JSON)


def parse_extracted(text: str) -> Optional[ParsedResponse]:
    return _from_record(_first_object(text), ParseStrategy.EXTRACTED_JSON)


def parse_fenced(text: str) -> Optional[ParsedResponse]:
    for block in FENCED_BLOCK_PATTERN.findall(text):
        if "{" not in block:
            continue
        record = _load_object(block.strip()) or _first_object(block)
        parsed = _from_record(record, ParseStrategy.FENCED_JSON)
        if parsed:
            return parsed
    return None


def parse_heuristic(text: str) -> Optional[ParsedResponse]:
    """Regex recovery of an answer span and "page N" references."""
    answer = None
    field_match = ANSWER_JSON_FIELD_PATTERN.search(text)
    if field_match:
        try:
            answer = json.loads(f'"{field_match.group(1)}"')
        except ValueError:
            answer = field_match.group(1)
    else:
        label_match = ANSWER_LABEL_PATTERN.search(text)
        if label_match:
            answer = label_match.group(1)

    citations: List[Dict[str, Any]] = []
    seen_pages = set()
    for match in PAGE_REFERENCE_PATTERN.finditer(text):
        page = re.sub(r"\s*[-–]\s*", "-", match.group(1))
        if page in seen_pages:
            continue
        seen_pages.add(page)
        start = max(0, match.start() - SNIPPET_CONTEXT_CHARS)
        end = min(len(text), match.end() + SNIPPET_CONTEXT_CHARS)
        citations.append({"page": page, "snippet": " ".join(text[start:end].split())})

    if not (answer and answer.strip()) and not citations:
        return None

    return ParsedResponse(
        answer=(answer or "").strip(),
        citations=citations,
        strategy=ParseStrategy.HEURISTIC,
    )


def parse_raw(text: str) -> Optional[ParsedResponse]:
    return ParsedResponse(answer=text.strip(), citations=[], strategy=ParseStrategy.RAW_FALLBACK)


STRATEGIES: List[Tuple[ParseStrategy, Callable[[str], Optional[ParsedResponse]]]] = [
    (ParseStrategy.STRUCTURED_JSON, parse_structured),
    (ParseStrategy.EXTRACTED_JSON, parse_extracted),
    (ParseStrategy.FENCED_JSON, parse_fenced),
    (ParseStrategy.HEURISTIC, parse_heuristic),
    (ParseStrategy.RAW_FALLBACK, parse_raw),
]


def normalize_page(page: Any) -> Optional[str]:
    """Numeric pages become their string form; non-empty strings are kept; anything else is invalid."""
    if isinstance(page, bool):
        return None
    if isinstance(page, int):
        return str(page)
    if isinstance(page, float):
        if page != page or page in (float("inf"), float("-inf")):
            return None
        return str(int(page)) if page.is_integer() else str(page)
    if isinstance(page, str) and page.strip():
        return page.strip()
    return None


def validate_citation(raw: Any) -> Optional[Citation]:
    """Build a Citation from one raw entry, or None if its page or snippet is unusable."""
    if not isinstance(raw, dict):
        return None

    page = normalize_page(raw.get("page"))
    snippet = raw.get("snippet")
    if page is None or not isinstance(snippet, str) or not snippet.strip():
        return None

    confidence = raw.get("confidence")
    return Citation(
        page=page,
        snippet=snippet.strip()[:MAX_SNIPPET_LENGTH],
        confidence=confidence if isinstance(confidence, str) else None,
    )


def parse_ai_response(raw_text: Optional[str]) -> ParsedResponse:
    """
    Parse arbitrary model output into a well-formed ParsedResponse.

    Never raises. The answer is always a string (the raw text when no
    better answer is found) and citations are individually validated.
    """
    text = raw_text if isinstance(raw_text, str) else ""

    parsed = None
    for strategy, attempt in STRATEGIES:
        parsed = attempt(text)
        if parsed is not None:
            break

    answer = parsed.answer if parsed.answer.strip() else text.strip()
    citations = [c for c in (validate_citation(raw) for raw in parsed.citations) if c is not None]

    dropped = len(parsed.citations) - len(citations)
    if parsed.strategy != ParseStrategy.STRUCTURED_JSON or dropped:
        logger.info(
            f"Parsed model output via {parsed.strategy.value}: "
            f"{len(citations)} citations kept, {dropped} dropped"
        )

    return ParsedResponse(answer=answer, citations=citations, strategy=parsed.strategy)
