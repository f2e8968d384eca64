"""Chunk data models."""
from dataclasses import dataclass
from typing import Optional, List, Union

# Page attribution methods
PATTERN_BASED = "pattern_based"
DISTRIBUTION_BASED = "distribution_based"
SINGLE_PAGE = "single_page"

# Page attribution confidence levels
CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"


@dataclass(frozen=True)
class Chunk:
    """Represents a document chunk for retrieval."""
    document_id: str
    chunk_index: int
    text: str
    page: Union[int, str]  # single page, or "start-end" when the chunk spans pages
    start_char: int
    end_char: int
    embedding: Optional[List[float]] = None
    estimation_method: str = SINGLE_PAGE
    confidence: str = CONFIDENCE_HIGH

    @property
    def page_label(self) -> str:
        """Page reference as shown to the model and in citations."""
        return str(self.page)

    @property
    def page_start(self) -> int:
        """First page covered by this chunk."""
        if isinstance(self.page, int):
            return self.page
        return int(str(self.page).split("-")[0])


@dataclass(frozen=True)
class ScoredChunk:
    """Chunk with similarity score from retrieval."""
    chunk: Chunk
    similarity: float  # 0.0 to 1.0
