"""Request and response schemas for the chat HTTP adapter."""
from typing import List, Optional
from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Body of POST /chat."""
    chat_id: str = Field(..., min_length=1)
    message: str
    pdf_id: Optional[str] = None
    user_id: Optional[str] = None


class CitationOut(BaseModel):
    """Citation as returned to clients."""
    page: str
    snippet: str
    confidence: Optional[str] = None


class ChatMetadata(BaseModel):
    """Bookkeeping about how the answer was produced."""
    chat_id: str
    pdf_id: Optional[str] = None
    chunks_used: int
    context_messages: int
    timestamp: str


class ChatResponse(BaseModel):
    """Body returned by POST /chat."""
    success: bool = True
    answer: str
    citations: List[CitationOut]
    metadata: ChatMetadata
