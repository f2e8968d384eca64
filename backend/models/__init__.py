"""Data models for the PDF Study Assistant chat core."""
from .chunk import Chunk, ScoredChunk
from .conversation import ConversationContext, Turn
from .document import ExtractedDocument
from .response import Citation, ParsedResponse, ParseStrategy, TurnResult
from .api import ChatRequest, ChatResponse, ChatMetadata, CitationOut

__all__ = [
    "Chunk",
    "ScoredChunk",
    "ConversationContext",
    "Turn",
    "ExtractedDocument",
    "Citation",
    "ParsedResponse",
    "ParseStrategy",
    "TurnResult",
    "ChatRequest",
    "ChatResponse",
    "ChatMetadata",
    "CitationOut",
]
