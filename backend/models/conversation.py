"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

USER = "user"
ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """Represents a single message in a conversation."""
    role: str  # "user" or "assistant"
    content: str
    timestamp: datetime


@dataclass
class ConversationContext:
    """Recent turns of one chat session, as held by the conversation cache."""
    chat_id: str
    user_id: str
    pdf_id: Optional[str] = None
    title: str = ""
    turns: Tuple[Turn, ...] = field(default_factory=tuple)
    last_accessed: float = 0.0
