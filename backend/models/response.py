"""Answer and citation data models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ParseStrategy(str, Enum):
    """Which step of the response parser recovered the answer."""
    STRUCTURED_JSON = "structured_json"
    EXTRACTED_JSON = "extracted_json"
    FENCED_JSON = "fenced_json"
    HEURISTIC = "heuristic"
    RAW_FALLBACK = "raw_fallback"


@dataclass
class Citation:
    """A page reference plus supporting snippet."""
    page: str
    snippet: str  # at most 200 characters
    confidence: Optional[str] = None


@dataclass
class ParsedResponse:
    """Structured result recovered from raw model output."""
    answer: str
    citations: List[Citation] = field(default_factory=list)
    strategy: ParseStrategy = ParseStrategy.RAW_FALLBACK


@dataclass
class TurnResult:
    """Outcome of one processed chat turn."""
    answer: str
    citations: List[Citation]
    chunks_used: int
    context_messages: int
    chat_id: str
    pdf_id: Optional[str]
    timestamp: str
